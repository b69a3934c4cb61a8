"""
SOULFORGE Transaction Coordinator

Drives one mint attempt from manifest to finality. Each call to
``MintCoordinator.mint`` creates a fresh ``MintAttempt`` with its own asset
identity and walks it through:

State Machine:

    PREPARING ──▶ BUILT ──▶ AWAITING_SIGNATURE ──▶ SUBMITTED ──▶ CONFIRMED
        │           │               │                   │
        └───────────┴───────────────┴───────────────────┴──────▶ FAILED

    PREPARING            supply converted, identity generated, holding
                         address derived, rent queried, payer funds checked
    BUILT                four instructions assembled, fee payer = owner,
                         fresh anchor (recent blockhash) attached
    AWAITING_SIGNATURE   asset key co-signs locally, then the external
                         signer is awaited with no timeout
    SUBMITTED            dual-signed transaction sent exactly once
    CONFIRMED            status reached the configured commitment
    FAILED               terminal; ``attempt.error`` holds the typed error

Every failure is terminal for the attempt. Nothing is retried here: a retry
is a new ``mint`` call and therefore a new asset address. The ephemeral
private key lives inside a context manager and is dropped before submission,
whatever the outcome.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from soulforge.accounts import AssetIdentity, derive_holding_address, new_asset_identity
from soulforge.config import ConfigError, ForgeConfig, get_config
from soulforge.constants import (
    DECIMALS,
    LAMPORTS_PER_SIGNATURE,
    MINT_ACCOUNT_SIZE,
    TOKEN_ACCOUNT_SIZE,
    Cluster,
)
from soulforge.errors import (
    AnchorExpired,
    AssemblyError,
    ConfirmationTimeout,
    ForgeError,
    InsufficientFunds,
    InternalError,
    InvalidConfiguration,
    InvalidSignature,
    LedgerExecutionError,
    LedgerUnavailable,
    UserRejected,
)
from soulforge.instructions import assemble_mint_instructions
from soulforge.ledger import Anchor, Ledger, LedgerStatus, TxStatusKind, ledger_from_config
from soulforge.manifest import TokenManifest
from soulforge.observability import (
    ForgeLayer,
    Tracer,
    correlation_id_var,
    get_logger,
    get_tracer,
    set_correlation_id,
)
from soulforge.rent import RentOracle
from soulforge.signer import Signer, verify_signature
from soulforge.units import to_human_amount, to_raw_amount

logger = get_logger("coordinator", ForgeLayer.COORDINATOR)


# =============================================================================
# ATTEMPT STATES
# =============================================================================

class AttemptState(Enum):
    """States of a single mint attempt."""
    PREPARING = "preparing"
    BUILT = "built"
    AWAITING_SIGNATURE = "awaiting_signature"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        return self in {AttemptState.CONFIRMED, AttemptState.FAILED}


@dataclass
class StateTransition:
    """Record of a state transition in a mint attempt."""
    from_state: Optional[AttemptState]
    to_state: AttemptState
    timestamp: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.value if self.from_state else None,
            "to_state": self.to_state.value,
            "timestamp": self.timestamp,
            "reason": self.reason,
        }


@dataclass
class MintResult:
    """Outcome of a confirmed mint."""
    asset_address: str
    holding_address: str
    transaction_id: str
    raw_amount: int
    cluster: Cluster = Cluster.MAINNET_BETA
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def explorer_url(self) -> str:
        """Block explorer URL for the transaction."""
        return self.cluster.explorer_url("tx", self.transaction_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_address": self.asset_address,
            "holding_address": self.holding_address,
            "transaction_id": self.transaction_id,
            "raw_amount": str(self.raw_amount),
            "supply": to_human_amount(self.raw_amount, DECIMALS),
            "cluster": self.cluster.value,
            "explorer_url": self.explorer_url,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class AttemptSettings:
    """Configuration resolved once, before an attempt touches the ledger."""
    cluster: Cluster
    max_raw_amount: int
    check_payer_balance: bool
    confirmation_timeout_seconds: float
    poll_interval_seconds: float

    @classmethod
    def from_config(cls, config: ForgeConfig) -> "AttemptSettings":
        """
        Raises:
            InvalidConfiguration: a value (usually an environment override) is unusable
        """
        cfg = config.coordinator
        try:
            return cls(
                cluster=Cluster(config.ledger.cluster.get()),
                max_raw_amount=cfg.max_raw_amount.get(),
                check_payer_balance=cfg.check_payer_balance.get(),
                confirmation_timeout_seconds=cfg.confirmation_timeout_seconds.get(),
                poll_interval_seconds=cfg.poll_interval_seconds.get(),
            )
        except (ConfigError, ValueError) as e:
            raise InvalidConfiguration(str(e)) from e


TransitionListener = Callable[["MintAttempt", StateTransition], None]


# =============================================================================
# MINT ATTEMPT
# =============================================================================

class MintAttempt:
    """
    State and evidence of one mint attempt.

    Holds public data only: addresses, amounts, the anchor, the transaction
    id and the final result or error. Listeners are notified after every
    transition, including the initial PREPARING entry.
    """

    VALID_TRANSITIONS: Dict[AttemptState, Set[AttemptState]] = {
        AttemptState.PREPARING: {AttemptState.BUILT, AttemptState.FAILED},
        AttemptState.BUILT: {AttemptState.AWAITING_SIGNATURE, AttemptState.FAILED},
        AttemptState.AWAITING_SIGNATURE: {AttemptState.SUBMITTED, AttemptState.FAILED},
        AttemptState.SUBMITTED: {AttemptState.CONFIRMED, AttemptState.FAILED},
        AttemptState.CONFIRMED: set(),
        AttemptState.FAILED: set(),
    }

    def __init__(
        self,
        manifest: TokenManifest,
        owner: Pubkey,
        listeners: Optional[List[TransitionListener]] = None,
        attempt_id: Optional[str] = None,
    ):
        self.manifest = manifest
        self.owner = owner
        self.attempt_id = attempt_id or self._generate_attempt_id()
        self._state = AttemptState.PREPARING
        self._listeners: List[TransitionListener] = list(listeners or [])
        self.transitions: List[StateTransition] = []

        self.raw_amount: Optional[int] = None
        self.asset_address: Optional[Pubkey] = None
        self.holding_address: Optional[Pubkey] = None
        self.rent_lamports: Optional[int] = None
        self.anchor: Optional[Anchor] = None
        self.transaction_id: Optional[str] = None
        self.result: Optional[MintResult] = None
        self.error: Optional[ForgeError] = None

        self._record_transition(None, AttemptState.PREPARING, "Mint attempt created")

    def _generate_attempt_id(self) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        return f"mint-{timestamp}-{secrets.token_hex(8)}"

    @property
    def state(self) -> AttemptState:
        return self._state

    @property
    def is_complete(self) -> bool:
        return self._state.is_terminal()

    def can_transition_to(self, target_state: AttemptState) -> bool:
        """Check if transition to target state is valid."""
        return target_state in self.VALID_TRANSITIONS.get(self._state, set())

    def advance_to(self, target_state: AttemptState, reason: str = "") -> bool:
        """
        Advance the attempt to a new state.

        Returns True if the transition was made, False if the state machine
        does not allow it.
        """
        if not self.can_transition_to(target_state):
            return False

        old_state = self._state
        self._state = target_state
        self._record_transition(old_state, target_state, reason or f"Advanced to {target_state.value}")
        return True

    def complete(self, result: MintResult) -> bool:
        """Record the result and enter CONFIRMED."""
        if not self.can_transition_to(AttemptState.CONFIRMED):
            return False
        self.result = result
        return self.advance_to(AttemptState.CONFIRMED, "Transaction confirmed")

    def fail(self, error: ForgeError) -> bool:
        """Record the error and enter FAILED. No-op once terminal."""
        if self._state.is_terminal():
            return False
        if error.transaction_id is None and self.transaction_id is not None:
            error.transaction_id = self.transaction_id
        self.error = error
        return self.advance_to(AttemptState.FAILED, f"{error.code}: {error.message}")

    def _record_transition(
        self,
        from_state: Optional[AttemptState],
        to_state: AttemptState,
        reason: str,
    ) -> None:
        transition = StateTransition(
            from_state=from_state,
            to_state=to_state,
            timestamp=datetime.now(timezone.utc).isoformat(),
            reason=reason,
        )
        self.transitions.append(transition)

        logger.info(
            f"Mint attempt entered {to_state.value}",
            operation="transition",
            attempt_id=self.attempt_id,
            from_state=from_state.value if from_state else None,
            to_state=to_state.value,
        )

        for listener in self._listeners:
            listener(self, transition)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "state": self._state.value,
            "owner": str(self.owner),
            "manifest": self.manifest.to_dict(),
            "raw_amount": str(self.raw_amount) if self.raw_amount is not None else None,
            "asset_address": str(self.asset_address) if self.asset_address else None,
            "holding_address": str(self.holding_address) if self.holding_address else None,
            "rent_lamports": self.rent_lamports,
            "anchor": self.anchor.to_dict() if self.anchor else None,
            "transaction_id": self.transaction_id,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error.to_dict() if self.error else None,
            "transitions": [t.to_dict() for t in self.transitions],
        }


# =============================================================================
# COORDINATOR
# =============================================================================

class MintCoordinator:
    """
    Builds, co-signs, submits and confirms token-creation transactions.

    The ledger and signer are injected; the coordinator holds no state
    across attempts besides ``last_attempt`` for inspection.

    Example:
        coordinator = MintCoordinator(ledger, signer)
        result = await coordinator.mint(manifest)
        print(result.asset_address, result.transaction_id)
    """

    def __init__(
        self,
        ledger: Ledger,
        signer: Signer,
        config: Optional[ForgeConfig] = None,
        tracer: Optional[Tracer] = None,
    ):
        self._ledger = ledger
        self._signer = signer
        self._config = config or get_config()
        self._tracer = tracer or get_tracer()
        self._rent_oracle = RentOracle(ledger)
        self._listeners: List[TransitionListener] = []
        self.last_attempt: Optional[MintAttempt] = None

    @property
    def owner(self) -> Pubkey:
        return self._signer.public_key

    def add_listener(self, listener: TransitionListener) -> None:
        """Observe transitions of every future attempt."""
        self._listeners.append(listener)

    async def mint(self, manifest: TokenManifest) -> MintResult:
        """
        Create the token described by ``manifest``.

        Returns:
            MintResult with asset address, holding address and transaction id

        Raises:
            ForgeError: typed failure; the attempt is left in FAILED
            asyncio.CancelledError: caller cancelled; the attempt is left in FAILED
        """
        attempt = MintAttempt(manifest, self.owner, listeners=self._listeners)
        self.last_attempt = attempt
        token = set_correlation_id(attempt.attempt_id)

        try:
            with self._tracer.span("mint", ForgeLayer.COORDINATOR, attempt_id=attempt.attempt_id) as span:
                result = await self._run(attempt)
                span.set_attribute("transaction_id", result.transaction_id)
                return result
        except ForgeError as e:
            failed_in = attempt.state
            attempt.fail(e)
            logger.error(
                "Mint attempt failed",
                error_code=e.code,
                attempt_id=attempt.attempt_id,
                failed_in=failed_in.value,
                may_have_landed=e.may_have_landed,
                transaction_id=e.transaction_id,
            )
            raise
        except asyncio.CancelledError:
            attempt.fail(self._cancellation_error(attempt))
            logger.warning("Mint attempt cancelled", attempt_id=attempt.attempt_id)
            raise
        except Exception as e:
            failed_in = attempt.state
            attempt.fail(InternalError(
                f"{type(e).__name__}: {e}",
                may_have_landed=failed_in == AttemptState.SUBMITTED,
            ))
            logger.error(
                "Mint attempt failed",
                error_code=InternalError.code,
                exc_info=True,
                attempt_id=attempt.attempt_id,
                failed_in=failed_in.value,
                transaction_id=attempt.transaction_id,
            )
            raise
        finally:
            correlation_id_var.reset(token)

    async def lookup(self, transaction_id: str) -> LedgerStatus:
        """Single status read for a previously submitted transaction."""
        return await self._ledger.get_status(transaction_id)

    def _cancellation_error(self, attempt: MintAttempt) -> ForgeError:
        if attempt.state == AttemptState.SUBMITTED and attempt.transaction_id:
            return ConfirmationTimeout(attempt.transaction_id, 0.0)
        return UserRejected("Mint cancelled by caller before submission")

    async def _run(self, attempt: MintAttempt) -> MintResult:
        # Input and configuration errors surface before any ledger access.
        settings = AttemptSettings.from_config(self._config)
        attempt.raw_amount = to_raw_amount(
            attempt.manifest.human_supply,
            DECIMALS,
            settings.max_raw_amount,
        )

        with new_asset_identity() as asset:
            attempt.asset_address = asset.public
            message = await self._build(attempt, asset, settings)
            self._advance(attempt, AttemptState.AWAITING_SIGNATURE, "Requesting owner signature")
            transaction = await self._collect_signatures(message, asset)

        attempt.transaction_id = str(transaction.signatures[0])

        if not await self._ledger.is_anchor_valid(attempt.anchor):
            raise AnchorExpired("Recent blockhash expired while awaiting the signature; rebuild required")

        try:
            transaction_id = await self._ledger.submit(bytes(transaction))
        except ForgeError as e:
            if e.may_have_landed and e.transaction_id is None:
                e.transaction_id = attempt.transaction_id
            raise

        if transaction_id != attempt.transaction_id:
            logger.warning(
                "Ledger returned unexpected transaction id",
                expected=attempt.transaction_id,
                returned=transaction_id,
            )
            attempt.transaction_id = transaction_id
        self._advance(attempt, AttemptState.SUBMITTED, f"Submitted {transaction_id}")

        await self._await_confirmation(attempt, settings)

        result = MintResult(
            asset_address=str(attempt.asset_address),
            holding_address=str(attempt.holding_address),
            transaction_id=transaction_id,
            raw_amount=attempt.raw_amount,
            cluster=settings.cluster,
            metadata=attempt.manifest.to_metadata(),
        )
        attempt.complete(result)
        return result

    async def _build(self, attempt: MintAttempt, asset: AssetIdentity, settings: AttemptSettings) -> Message:
        owner = attempt.owner
        attempt.holding_address = derive_holding_address(asset.public, owner)
        attempt.rent_lamports = await self._rent_oracle.minimum_rent_exempt_balance(MINT_ACCOUNT_SIZE)

        if settings.check_payer_balance:
            await self._check_payer_funds(owner, attempt.rent_lamports)

        instructions = assemble_mint_instructions(
            asset_public=asset.public,
            owner_public=owner,
            holding_address=attempt.holding_address,
            rent_lamports=attempt.rent_lamports,
            raw_amount=attempt.raw_amount,
        )

        attempt.anchor = await self._ledger.get_recent_anchor()
        message = Message.new_with_blockhash(instructions, owner, attempt.anchor.blockhash)
        self._advance(attempt, AttemptState.BUILT, "Instructions assembled and anchor attached")
        return message

    async def _check_payer_funds(self, owner: Pubkey, mint_rent: int) -> None:
        holding_rent = await self._rent_oracle.minimum_rent_exempt_balance(TOKEN_ACCOUNT_SIZE)
        required = mint_rent + holding_rent + 2 * LAMPORTS_PER_SIGNATURE
        available = await self._ledger.get_balance(owner)
        if available < required:
            raise InsufficientFunds(
                f"Fee payer {owner} holds {available} lamports, needs {required}",
                required=required,
                available=available,
            )

    async def _collect_signatures(self, message: Message, asset: AssetIdentity) -> Transaction:
        message_bytes = bytes(message)
        asset_signature = asset.sign(message_bytes)

        owner = self.owner
        owner_signature = await self._signer.request_signature(message_bytes)
        if not verify_signature(owner, message_bytes, owner_signature):
            raise InvalidSignature(f"Signature returned by signer does not verify for {owner}")

        by_signer = {
            str(owner): Signature.from_bytes(owner_signature),
            str(asset.public): asset_signature,
        }
        signer_keys = message.account_keys[:message.header.num_required_signatures]
        try:
            signatures = [by_signer[str(key)] for key in signer_keys]
        except KeyError as e:
            raise AssemblyError(f"Message requires unexpected signer {e}") from e
        if len(signatures) != len(by_signer):
            raise AssemblyError(f"Message requires {len(signatures)} signers, expected {len(by_signer)}")

        return Transaction.populate(message, signatures)

    async def _await_confirmation(self, attempt: MintAttempt, settings: AttemptSettings) -> None:
        timeout = settings.confirmation_timeout_seconds
        interval = settings.poll_interval_seconds
        transaction_id = attempt.transaction_id

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            # The transaction is out; a failed read says nothing about whether it landed.
            try:
                if await self._poll_once(attempt):
                    return
            except LedgerUnavailable as e:
                logger.warning(
                    "Status poll failed, still waiting",
                    transaction_id=transaction_id,
                    reason=e.message,
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ConfirmationTimeout(transaction_id, timeout)
            await asyncio.sleep(min(interval, remaining))

    async def _poll_once(self, attempt: MintAttempt) -> bool:
        transaction_id = attempt.transaction_id
        if self._settled(await self._ledger.get_status(transaction_id), transaction_id):
            return True

        if not await self._ledger.is_anchor_valid(attempt.anchor):
            # The blockhash may have expired just after the transaction landed.
            if self._settled(await self._ledger.get_status(transaction_id), transaction_id):
                return True
            raise AnchorExpired(
                f"Recent blockhash expired before {transaction_id} was confirmed",
                transaction_id,
            )
        return False

    def _settled(self, status: LedgerStatus, transaction_id: str) -> bool:
        if status.kind == TxStatusKind.CONFIRMED:
            return True
        if status.kind == TxStatusKind.FAILED:
            raise LedgerExecutionError(status.error_code or "unknown", transaction_id)
        return False

    def _advance(self, attempt: MintAttempt, target: AttemptState, reason: str) -> None:
        if not attempt.advance_to(target, reason):
            raise RuntimeError(f"Invalid transition {attempt.state.value} -> {target.value}")


def create_coordinator(signer: Signer, config: Optional[ForgeConfig] = None) -> MintCoordinator:
    """Coordinator talking JSON-RPC to the configured cluster."""
    config = config or get_config()
    return MintCoordinator(ledger_from_config(config), signer, config=config)
