"""
Transaction coordinator tests.

Covers the full mint flow against the mock ledger and signer:
- Success path (two signatures, four ordered instructions, fresh anchor)
- Input errors before any ledger access
- Rejection, cancellation and corrupt signatures before submission
- Anchor expiry, on-chain failure and confirmation timeout after submission
- Attempt state machine transitions

Copyright (c) 2026 Momentum. All rights reserved.
"""

import asyncio

import pytest

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from soulforge.accounts import derive_holding_address
from soulforge.constants import LAMPORTS_PER_SIGNATURE, Cluster
from soulforge.coordinator import AttemptState, MintAttempt, MintCoordinator, MintResult
from soulforge.errors import (
    AnchorExpired,
    ConfirmationTimeout,
    InsufficientFunds,
    InternalError,
    InvalidConfiguration,
    InvalidSignature,
    InvalidSupply,
    LedgerExecutionError,
    LedgerUnavailable,
    OracleUnavailable,
    SupplyOverflow,
    UserRejected,
)
from soulforge.instructions import MINT_SEQUENCE, classify_instruction
from soulforge.ledger import LedgerStatus, MockLedger
from soulforge.manifest import TokenManifest
from soulforge.observability import Tracer
from soulforge.signer import MockSigner, verify_signature


def make_manifest(supply="1000000000"):
    return TokenManifest(name="Soul Token", symbol="SOUL", human_supply=supply)


def make_coordinator(config, ledger=None, signer=None):
    ledger = ledger or MockLedger()
    signer = signer or MockSigner()
    return MintCoordinator(ledger, signer, config=config, tracer=Tracer()), ledger, signer


# =============================================================================
# SUCCESS PATH
# =============================================================================

class TestMintSuccess:
    """Tests for a confirmed mint."""

    def test_mint_returns_result(self, fast_config):
        coordinator, ledger, signer = make_coordinator(fast_config)
        result = asyncio.run(coordinator.mint(make_manifest()))

        assert isinstance(result, MintResult)
        assert result.raw_amount == 10**18
        assert result.cluster == Cluster.DEVNET
        assert result.transaction_id == str(ledger.submitted[0].signatures[0])
        assert result.holding_address == str(
            derive_holding_address(Pubkey.from_string(result.asset_address), signer.public_key)
        )
        assert result.metadata["symbol"] == "SOUL"
        assert result.transaction_id in result.explorer_url

    def test_transaction_is_dual_signed(self, fast_config):
        coordinator, ledger, signer = make_coordinator(fast_config)
        result = asyncio.run(coordinator.mint(make_manifest()))

        transaction = ledger.submitted[0]
        message = transaction.message
        message_bytes = bytes(message)

        assert len(transaction.signatures) == 2
        assert message.header.num_required_signatures == 2
        assert message.account_keys[0] == signer.public_key
        assert str(message.account_keys[1]) == result.asset_address

        for key, signature in zip(message.account_keys, transaction.signatures):
            assert verify_signature(key, message_bytes, bytes(signature))

    def test_transaction_contents(self, fast_config):
        coordinator, ledger, signer = make_coordinator(fast_config)
        asyncio.run(coordinator.mint(make_manifest()))

        transaction = ledger.submitted[0]
        assert len(transaction.message.instructions) == 4
        assert transaction.message.recent_blockhash == ledger.anchors[0].blockhash
        assert signer.requests == [bytes(transaction.message)]

    def test_ledger_calls(self, fast_config):
        coordinator, ledger, _ = make_coordinator(fast_config)
        asyncio.run(coordinator.mint(make_manifest()))

        assert ledger.calls["submit"] == 1
        assert ledger.calls["get_recent_anchor"] == 1
        # Mint account rent plus holding account rent for the balance check.
        assert ledger.calls["get_minimum_rent_exempt_balance"] == 2
        assert ledger.calls["get_balance"] == 1

    def test_balance_check_disabled(self, fast_config):
        fast_config.coordinator.check_payer_balance.set(False)
        coordinator, ledger, _ = make_coordinator(fast_config)
        asyncio.run(coordinator.mint(make_manifest()))

        assert ledger.calls["get_balance"] == 0
        assert ledger.calls["get_minimum_rent_exempt_balance"] == 1

    def test_waits_through_pending(self, fast_config):
        ledger = MockLedger(statuses=[LedgerStatus.pending()] * 3 + [LedgerStatus.confirmed()])
        coordinator, _, _ = make_coordinator(fast_config, ledger=ledger)
        asyncio.run(coordinator.mint(make_manifest()))

        assert ledger.calls["get_status"] == 4
        assert coordinator.last_attempt.state == AttemptState.CONFIRMED

    def test_identical_manifests_create_distinct_assets(self, fast_config):
        coordinator, _, _ = make_coordinator(fast_config)

        async def twice():
            return await coordinator.mint(make_manifest()), await coordinator.mint(make_manifest())

        first, second = asyncio.run(twice())
        assert first.asset_address != second.asset_address
        assert first.holding_address != second.holding_address
        assert first.transaction_id != second.transaction_id

    def test_state_sequence(self, fast_config):
        coordinator, _, _ = make_coordinator(fast_config)
        seen = []
        coordinator.add_listener(lambda attempt, transition: seen.append(transition.to_state))

        asyncio.run(coordinator.mint(make_manifest()))

        assert seen == [
            AttemptState.PREPARING,
            AttemptState.BUILT,
            AttemptState.AWAITING_SIGNATURE,
            AttemptState.SUBMITTED,
            AttemptState.CONFIRMED,
        ]

    def test_instruction_order_in_transaction(self, fast_config):
        coordinator, ledger, _ = make_coordinator(fast_config)
        asyncio.run(coordinator.mint(make_manifest()))

        message = ledger.submitted[0].message
        decoded = [
            Instruction(
                program_id=message.account_keys[ix.program_id_index],
                data=bytes(ix.data),
                accounts=[],
            )
            for ix in message.instructions
        ]
        assert tuple(classify_instruction(ix) for ix in decoded) == MINT_SEQUENCE

    def test_span_exported(self, fast_config):
        tracer = Tracer()
        spans = []
        tracer.add_exporter(spans.append)
        coordinator = MintCoordinator(MockLedger(), MockSigner(), config=fast_config, tracer=tracer)

        result = asyncio.run(coordinator.mint(make_manifest()))

        assert [s.name for s in spans] == ["mint"]
        assert spans[0].attributes["transaction_id"] == result.transaction_id


# =============================================================================
# FAILURES BEFORE SUBMISSION
# =============================================================================

class TestMintFailsBeforeSubmission:
    """Tests for failures that leave nothing on the ledger."""

    @pytest.mark.parametrize("supply", ["0", "-5", "abc", "1.5"])
    def test_invalid_supply_touches_nothing(self, fast_config, supply):
        coordinator, ledger, signer = make_coordinator(fast_config)

        with pytest.raises(InvalidSupply):
            asyncio.run(coordinator.mint(make_manifest(supply)))

        assert ledger.total_calls == 0
        assert signer.requests == []
        assert coordinator.last_attempt.state == AttemptState.FAILED

    def test_supply_overflow_touches_nothing(self, fast_config):
        fast_config.coordinator.max_raw_amount.set(2**53 - 1)
        coordinator, ledger, _ = make_coordinator(fast_config)

        with pytest.raises(SupplyOverflow):
            asyncio.run(coordinator.mint(make_manifest("10000000")))

        assert ledger.total_calls == 0

    def test_bad_cluster_override_touches_nothing(self, fast_config, monkeypatch):
        monkeypatch.setenv("SOULFORGE_CLUSTER", "mainnet")
        coordinator, ledger, signer = make_coordinator(fast_config)

        with pytest.raises(InvalidConfiguration):
            asyncio.run(coordinator.mint(make_manifest()))

        assert ledger.total_calls == 0
        assert signer.requests == []
        assert coordinator.last_attempt.state == AttemptState.FAILED

    def test_rent_failure(self, fast_config):
        ledger = MockLedger(rent_error=LedgerUnavailable("rpc down"))
        coordinator, _, signer = make_coordinator(fast_config, ledger=ledger)

        with pytest.raises(OracleUnavailable):
            asyncio.run(coordinator.mint(make_manifest()))

        assert signer.requests == []
        assert ledger.calls["submit"] == 0

    def test_insufficient_funds(self, fast_config):
        ledger = MockLedger(rent=1_000, balance=1_000)
        coordinator, _, signer = make_coordinator(fast_config, ledger=ledger)

        with pytest.raises(InsufficientFunds) as exc:
            asyncio.run(coordinator.mint(make_manifest()))

        assert exc.value.required == 2_000 + 2 * LAMPORTS_PER_SIGNATURE
        assert exc.value.available == 1_000
        assert signer.requests == []

    def test_user_rejection(self, fast_config):
        coordinator, ledger, signer = make_coordinator(fast_config, signer=MockSigner(reject=True))

        with pytest.raises(UserRejected):
            asyncio.run(coordinator.mint(make_manifest()))

        attempt = coordinator.last_attempt
        assert attempt.state == AttemptState.FAILED
        assert isinstance(attempt.error, UserRejected)
        assert ledger.calls["submit"] == 0

    def test_corrupt_signature(self, fast_config):
        coordinator, ledger, _ = make_coordinator(fast_config, signer=MockSigner(corrupt=True))

        with pytest.raises(InvalidSignature):
            asyncio.run(coordinator.mint(make_manifest()))

        assert ledger.calls["submit"] == 0

    def test_anchor_expired_while_signing(self, fast_config):
        ledger = MockLedger(anchor_valid=False)
        coordinator, _, _ = make_coordinator(fast_config, ledger=ledger)

        with pytest.raises(AnchorExpired):
            asyncio.run(coordinator.mint(make_manifest()))

        assert ledger.calls["submit"] == 0
        assert not coordinator.last_attempt.error.may_have_landed

    def test_cancellation_while_awaiting_signature(self, fast_config):
        signer = MockSigner()
        coordinator, ledger, _ = make_coordinator(fast_config, signer=signer)

        async def run():
            signer.release = asyncio.Event()
            task = asyncio.create_task(coordinator.mint(make_manifest()))
            while not signer.requests:
                await asyncio.sleep(0)
            assert coordinator.last_attempt.state == AttemptState.AWAITING_SIGNATURE
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())

        attempt = coordinator.last_attempt
        assert attempt.state == AttemptState.FAILED
        assert isinstance(attempt.error, UserRejected)
        assert ledger.calls["submit"] == 0


# =============================================================================
# FAILURES AFTER SUBMISSION
# =============================================================================

class TestMintFailsAfterSubmission:
    """Tests for failures once the transaction was sent."""

    def test_confirmation_timeout_keeps_transaction_id(self, fast_config):
        ledger = MockLedger(statuses=[LedgerStatus.pending()])
        coordinator, _, _ = make_coordinator(fast_config, ledger=ledger)

        with pytest.raises(ConfirmationTimeout) as exc:
            asyncio.run(coordinator.mint(make_manifest()))

        assert exc.value.may_have_landed
        assert exc.value.transaction_id == str(ledger.submitted[0].signatures[0])
        assert ledger.calls["submit"] == 1

    def test_on_chain_failure(self, fast_config):
        ledger = MockLedger(statuses=[LedgerStatus.failed("InstructionError(0, Custom(1))")])
        coordinator, _, _ = make_coordinator(fast_config, ledger=ledger)

        with pytest.raises(LedgerExecutionError) as exc:
            asyncio.run(coordinator.mint(make_manifest()))

        assert exc.value.error_code == "InstructionError(0, Custom(1))"
        assert exc.value.transaction_id is not None
        assert not exc.value.may_have_landed

    def test_anchor_expired_after_submission(self, fast_config):
        ledger = MockLedger(statuses=[LedgerStatus.pending()], expire_after_submit=True)
        coordinator, _, _ = make_coordinator(fast_config, ledger=ledger)

        with pytest.raises(AnchorExpired) as exc:
            asyncio.run(coordinator.mint(make_manifest()))

        assert exc.value.transaction_id == str(ledger.submitted[0].signatures[0])
        # One poll, then a final re-check after expiry.
        assert ledger.calls["get_status"] == 2
        assert ledger.calls["submit"] == 1

    def test_landed_just_before_expiry(self, fast_config):
        ledger = MockLedger(
            statuses=[LedgerStatus.pending(), LedgerStatus.confirmed()],
            expire_after_submit=True,
        )
        coordinator, _, _ = make_coordinator(fast_config, ledger=ledger)

        result = asyncio.run(coordinator.mint(make_manifest()))
        assert result.transaction_id == str(ledger.submitted[0].signatures[0])

    def test_submission_transport_failure_carries_transaction_id(self, fast_config):
        ledger = MockLedger(submit_error=LedgerUnavailable("connection reset", may_have_landed=True))
        coordinator, _, _ = make_coordinator(fast_config, ledger=ledger)

        with pytest.raises(LedgerUnavailable) as exc:
            asyncio.run(coordinator.mint(make_manifest()))

        assert exc.value.may_have_landed
        assert exc.value.transaction_id is not None
        assert coordinator.last_attempt.transaction_id == exc.value.transaction_id

    def test_status_read_failure_keeps_waiting(self, fast_config):
        ledger = MockLedger(statuses=[LedgerUnavailable("status rpc down"), LedgerStatus.confirmed()])
        coordinator, _, _ = make_coordinator(fast_config, ledger=ledger)

        result = asyncio.run(coordinator.mint(make_manifest()))

        assert result.transaction_id == str(ledger.submitted[0].signatures[0])
        assert ledger.calls["submit"] == 1
        assert ledger.calls["get_status"] == 2
        assert coordinator.last_attempt.state == AttemptState.CONFIRMED

    def test_status_reads_failing_until_deadline_time_out(self, fast_config):
        fast_config.coordinator.confirmation_timeout_seconds.set(0.05)
        ledger = MockLedger(statuses=[LedgerUnavailable("status rpc down")])
        coordinator, _, _ = make_coordinator(fast_config, ledger=ledger)

        with pytest.raises(ConfirmationTimeout) as exc:
            asyncio.run(coordinator.mint(make_manifest()))

        assert exc.value.may_have_landed
        assert exc.value.transaction_id == str(ledger.submitted[0].signatures[0])
        assert ledger.calls["submit"] == 1

    def test_unexpected_error_after_submission_may_have_landed(self, fast_config):
        ledger = MockLedger(statuses=[RuntimeError("malformed status")])
        coordinator, _, _ = make_coordinator(fast_config, ledger=ledger)

        with pytest.raises(RuntimeError):
            asyncio.run(coordinator.mint(make_manifest()))

        attempt = coordinator.last_attempt
        assert attempt.state == AttemptState.FAILED
        assert isinstance(attempt.error, InternalError)
        assert attempt.error.may_have_landed
        assert attempt.error.transaction_id == str(ledger.submitted[0].signatures[0])

    def test_lookup(self, fast_config):
        coordinator, _, _ = make_coordinator(fast_config)
        result = asyncio.run(coordinator.mint(make_manifest()))

        status = asyncio.run(coordinator.lookup(result.transaction_id))
        assert status == LedgerStatus.confirmed()


# =============================================================================
# ATTEMPT STATE MACHINE
# =============================================================================

class TestMintAttempt:
    """Tests for the attempt state machine."""

    def attempt(self):
        return MintAttempt(make_manifest(), MockSigner().public_key)

    def test_starts_preparing(self):
        attempt = self.attempt()
        assert attempt.state == AttemptState.PREPARING
        assert attempt.attempt_id.startswith("mint-")
        assert len(attempt.transitions) == 1

    def test_cannot_skip_states(self):
        attempt = self.attempt()
        assert not attempt.advance_to(AttemptState.SUBMITTED)
        assert not attempt.advance_to(AttemptState.CONFIRMED)
        assert attempt.state == AttemptState.PREPARING

    def test_failed_is_terminal(self):
        attempt = self.attempt()
        assert attempt.fail(UserRejected())
        assert attempt.is_complete
        assert not attempt.advance_to(AttemptState.BUILT)
        assert not attempt.fail(UserRejected())

    def test_to_dict(self):
        attempt = self.attempt()
        attempt.fail(UserRejected())
        data = attempt.to_dict()

        assert data["state"] == "failed"
        assert data["error"]["code"] == "user_rejected"
        assert [t["to_state"] for t in data["transitions"]] == ["preparing", "failed"]
