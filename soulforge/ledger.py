"""
SOULFORGE Ledger Layer

The coordinator talks to the ledger only through the ``Ledger`` protocol:

    get_minimum_rent_exempt_balance(size)   lamports for a rent-exempt account
    get_recent_anchor()                     recent blockhash + validity bound
    is_anchor_valid(anchor)                 still inside its validity window?
    get_balance(pubkey)                     fee payer funds
    submit(raw_transaction)                 send once, returns signature
    get_status(transaction_id)              pending | confirmed | failed(code)

Implementations:

    SolanaRpcLedger   JSON-RPC through solana-py's AsyncClient
    MockLedger        in-process, scriptable, counts every call

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import secrets
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Protocol, Union

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus

from soulforge.config import ForgeConfig, get_config
from soulforge.constants import LAMPORTS_PER_SOL
from soulforge.errors import (
    AnchorExpired,
    ForgeError,
    InsufficientFunds,
    LedgerUnavailable,
    SimulationFailed,
)
from soulforge.observability import ForgeLayer, get_logger

logger = get_logger("ledger", ForgeLayer.LEDGER)


# =============================================================================
# LEDGER TYPES
# =============================================================================

@dataclass(frozen=True)
class Anchor:
    """Recent blockhash and the last block height at which it is accepted."""
    blockhash: Hash
    last_valid_block_height: int

    def to_dict(self) -> dict:
        return {
            "blockhash": str(self.blockhash),
            "last_valid_block_height": self.last_valid_block_height,
        }


class TxStatusKind(Enum):
    """Observed status of a submitted transaction."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class LedgerStatus:
    """Status of a transaction at the requested finality level."""
    kind: TxStatusKind
    error_code: Optional[str] = None

    @classmethod
    def pending(cls) -> "LedgerStatus":
        return cls(TxStatusKind.PENDING)

    @classmethod
    def confirmed(cls) -> "LedgerStatus":
        return cls(TxStatusKind.CONFIRMED)

    @classmethod
    def failed(cls, error_code: str) -> "LedgerStatus":
        return cls(TxStatusKind.FAILED, error_code)


class Ledger(Protocol):
    """
    Protocol for ledger endpoints.

    Every method is a single round trip; none of them retry.
    """

    async def get_minimum_rent_exempt_balance(self, size: int) -> int:
        ...

    async def get_recent_anchor(self) -> Anchor:
        ...

    async def is_anchor_valid(self, anchor: Anchor) -> bool:
        ...

    async def get_balance(self, pubkey: Pubkey) -> int:
        ...

    async def submit(self, raw_transaction: bytes) -> str:
        ...

    async def get_status(self, transaction_id: str) -> LedgerStatus:
        ...


# =============================================================================
# SUBMISSION ERROR CLASSIFICATION
# =============================================================================

def classify_send_error(
    message: str,
    err: Optional[str] = None,
    logs: Optional[Iterable[str]] = None,
) -> ForgeError:
    """
    Map a rejected send into the error taxonomy.

    A rejected send never reached a block, so none of the results here
    can have landed.
    """
    logs = list(logs or [])
    haystack = " ".join([message, err or "", *logs]).lower()

    if "blockhash not found" in haystack or "blockhashnotfound" in haystack:
        return AnchorExpired(f"Recent blockhash expired before submission: {message}")
    if "insufficient" in haystack:
        return InsufficientFunds(f"Fee payer cannot cover rent and fees: {message}")
    if err is not None or "simulation failed" in haystack or logs:
        return SimulationFailed(f"Preflight simulation failed: {err or message}", logs)
    return LedgerUnavailable(f"Ledger rejected submission: {message}")


_REQUIRED_RANK = {
    "confirmed": 1,
    "finalized": 2,
}


def _confirmation_rank(status: Optional[TransactionConfirmationStatus]) -> int:
    if status == TransactionConfirmationStatus.Finalized:
        return 2
    if status == TransactionConfirmationStatus.Confirmed:
        return 1
    return 0


# =============================================================================
# SOLANA JSON-RPC LEDGER
# =============================================================================

class SolanaRpcLedger:
    """
    Ledger backed by a Solana JSON-RPC endpoint.

    Transport failures surface as ``LedgerUnavailable``; rejected sends are
    classified with ``classify_send_error``.

    Example:
        async with SolanaRpcLedger("https://api.devnet.solana.com") as ledger:
            anchor = await ledger.get_recent_anchor()
    """

    def __init__(
        self,
        endpoint: str,
        commitment: str = "confirmed",
        timeout: float = 10.0,
        skip_preflight: bool = False,
        client: Optional[AsyncClient] = None,
    ):
        if commitment not in _REQUIRED_RANK:
            raise ValueError(f"Unsupported commitment: {commitment}")
        self.endpoint = endpoint
        self._commitment = Commitment(commitment)
        self._required_rank = _REQUIRED_RANK[commitment]
        self._skip_preflight = skip_preflight
        self._client = client or AsyncClient(endpoint, commitment=self._commitment, timeout=timeout)

    async def __aenter__(self) -> "SolanaRpcLedger":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.close()

    async def get_minimum_rent_exempt_balance(self, size: int) -> int:
        try:
            resp = await self._client.get_minimum_balance_for_rent_exemption(size, commitment=self._commitment)
        except (SolanaRpcException, RPCException, httpx.HTTPError) as e:
            raise LedgerUnavailable(f"Rent query failed: {e}") from e
        return resp.value

    async def get_recent_anchor(self) -> Anchor:
        try:
            resp = await self._client.get_latest_blockhash(commitment=self._commitment)
        except (SolanaRpcException, RPCException, httpx.HTTPError) as e:
            raise LedgerUnavailable(f"Blockhash query failed: {e}") from e
        return Anchor(
            blockhash=resp.value.blockhash,
            last_valid_block_height=resp.value.last_valid_block_height,
        )

    async def is_anchor_valid(self, anchor: Anchor) -> bool:
        try:
            resp = await self._client.get_block_height(commitment=self._commitment)
        except (SolanaRpcException, RPCException, httpx.HTTPError) as e:
            raise LedgerUnavailable(f"Block height query failed: {e}") from e
        return resp.value <= anchor.last_valid_block_height

    async def get_balance(self, pubkey: Pubkey) -> int:
        try:
            resp = await self._client.get_balance(pubkey, commitment=self._commitment)
        except (SolanaRpcException, RPCException, httpx.HTTPError) as e:
            raise LedgerUnavailable(f"Balance query failed: {e}") from e
        return resp.value

    async def submit(self, raw_transaction: bytes) -> str:
        opts = TxOpts(skip_preflight=self._skip_preflight, preflight_commitment=self._commitment)
        try:
            resp = await self._client.send_raw_transaction(raw_transaction, opts=opts)
        except RPCException as e:
            rpc_error = e.args[0] if e.args else e
            data = getattr(rpc_error, "data", None)
            err = getattr(data, "err", None)
            error = classify_send_error(
                str(getattr(rpc_error, "message", rpc_error)),
                str(err) if err is not None else None,
                getattr(data, "logs", None),
            )
            logger.warning("Submission rejected", error_code=error.code, endpoint=self.endpoint)
            raise error from e
        except (SolanaRpcException, httpx.HTTPError) as e:
            # The request may have been delivered before the transport failed.
            logger.error("Submission transport failed", error_code=LedgerUnavailable.code, endpoint=self.endpoint)
            raise LedgerUnavailable(f"Submission transport failed: {e}", may_have_landed=True) from e
        return str(resp.value)

    async def get_status(self, transaction_id: str) -> LedgerStatus:
        signature = Signature.from_string(transaction_id)
        try:
            resp = await self._client.get_signature_statuses([signature])
        except (SolanaRpcException, RPCException, httpx.HTTPError) as e:
            raise LedgerUnavailable(f"Status query failed: {e}", transaction_id) from e

        status = resp.value[0] if resp.value else None
        if status is None:
            return LedgerStatus.pending()
        if status.err is not None:
            return LedgerStatus.failed(str(status.err))

        if _confirmation_rank(status.confirmation_status) >= self._required_rank:
            return LedgerStatus.confirmed()
        return LedgerStatus.pending()


# =============================================================================
# MOCK LEDGER
# =============================================================================

class MockLedger:
    """
    Mock ledger for testing.

    Simulates the JSON-RPC endpoint without network calls. Every method
    increments ``calls[<method name>]``. Status polls walk ``statuses`` and
    repeat the last entry; an exception in ``statuses`` is raised for that poll.
    """

    def __init__(
        self,
        rent: int = 1_461_600,
        balance: int = 10 * LAMPORTS_PER_SOL,
        statuses: Optional[List[Union[LedgerStatus, Exception]]] = None,
        anchor_valid: bool = True,
        expire_after_submit: bool = False,
        rent_error: Optional[Exception] = None,
        submit_error: Optional[Exception] = None,
    ):
        self.rent = rent
        self.balance = balance
        self.statuses = list(statuses or [LedgerStatus.confirmed()])
        self.anchor_valid = anchor_valid
        self.expire_after_submit = expire_after_submit
        self.rent_error = rent_error
        self.submit_error = submit_error
        self.calls: Counter = Counter()
        self.submitted: List[Transaction] = []
        self.anchors: List[Anchor] = []
        self._block_height = 200_000_000
        self._poll_index = 0

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def get_minimum_rent_exempt_balance(self, size: int) -> int:
        self.calls["get_minimum_rent_exempt_balance"] += 1
        if self.rent_error is not None:
            raise self.rent_error
        return self.rent

    async def get_recent_anchor(self) -> Anchor:
        self.calls["get_recent_anchor"] += 1
        anchor = Anchor(
            blockhash=Hash(secrets.token_bytes(32)),
            last_valid_block_height=self._block_height + 150,
        )
        self.anchors.append(anchor)
        return anchor

    async def is_anchor_valid(self, anchor: Anchor) -> bool:
        self.calls["is_anchor_valid"] += 1
        if self.expire_after_submit and self.calls["submit"]:
            return False
        return self.anchor_valid

    async def get_balance(self, pubkey: Pubkey) -> int:
        self.calls["get_balance"] += 1
        return self.balance

    async def submit(self, raw_transaction: bytes) -> str:
        self.calls["submit"] += 1
        if self.submit_error is not None:
            raise self.submit_error
        transaction = Transaction.from_bytes(raw_transaction)
        self.submitted.append(transaction)
        return str(transaction.signatures[0])

    async def get_status(self, transaction_id: str) -> LedgerStatus:
        self.calls["get_status"] += 1
        index = min(self._poll_index, len(self.statuses) - 1)
        self._poll_index += 1
        status = self.statuses[index]
        if isinstance(status, Exception):
            raise status
        return status


def ledger_from_config(config: Optional[ForgeConfig] = None) -> SolanaRpcLedger:
    """Create a JSON-RPC ledger from the ledger and coordinator sections."""
    config = config or get_config()
    return SolanaRpcLedger(
        config.ledger.endpoint(),
        commitment=config.coordinator.commitment.get(),
        timeout=config.ledger.request_timeout_seconds.get(),
        skip_preflight=config.coordinator.skip_preflight.get(),
    )
