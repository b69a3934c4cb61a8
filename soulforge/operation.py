"""
SOULFORGE Operation State

User-facing status of a mint, derived from coordinator transitions:

    IDLE ──▶ PENDING(step message) ──▶ SUCCESS(asset, holding, tx)
                      │
                      └──────────────▶ ERROR(message, code)

Exactly one status is current at a time. A new ``run`` resets to IDLE first,
so a stale success or error never lingers next to a new attempt.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from soulforge.coordinator import AttemptState, MintAttempt, MintCoordinator, StateTransition
from soulforge.errors import ForgeError, InternalError, UserRejected
from soulforge.manifest import TokenManifest
from soulforge.observability import ForgeLayer, get_logger

logger = get_logger("operation", ForgeLayer.OPERATION)


class OperationKind(Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


PENDING_MESSAGES: Dict[AttemptState, str] = {
    AttemptState.PREPARING: "Preparing token accounts",
    AttemptState.BUILT: "Building transaction",
    AttemptState.AWAITING_SIGNATURE: "Waiting for wallet signature",
    AttemptState.SUBMITTED: "Waiting for confirmation",
}


@dataclass(frozen=True)
class OperationStatus:
    """Snapshot of the current operation."""
    kind: OperationKind
    message: str = ""
    asset_address: Optional[str] = None
    holding_address: Optional[str] = None
    transaction_id: Optional[str] = None
    error_code: Optional[str] = None
    may_have_landed: bool = False

    @classmethod
    def idle(cls) -> "OperationStatus":
        return cls(OperationKind.IDLE)

    @classmethod
    def pending(cls, message: str) -> "OperationStatus":
        return cls(OperationKind.PENDING, message)

    @classmethod
    def success(cls, asset_address: str, holding_address: str, transaction_id: str) -> "OperationStatus":
        return cls(
            OperationKind.SUCCESS,
            "Token created",
            asset_address=asset_address,
            holding_address=holding_address,
            transaction_id=transaction_id,
        )

    @classmethod
    def error(cls, error: ForgeError) -> "OperationStatus":
        return cls(
            OperationKind.ERROR,
            error.message,
            transaction_id=error.transaction_id,
            error_code=error.code,
            may_have_landed=error.may_have_landed,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        for key in ("asset_address", "holding_address", "transaction_id", "error_code"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.kind == OperationKind.ERROR:
            data["may_have_landed"] = self.may_have_landed
        return data


StatusListener = Callable[[OperationStatus], None]


class MintOperation:
    """
    Tracks one user-triggered mint at a time.

    Example:
        operation = MintOperation(coordinator)
        operation.subscribe(lambda status: print(status.kind, status.message))
        status = await operation.run(manifest)
    """

    def __init__(self, coordinator: MintCoordinator):
        self._coordinator = coordinator
        self._status = OperationStatus.idle()
        self._subscribers: List[StatusListener] = []
        self._active: Optional[str] = None
        coordinator.add_listener(self._on_transition)

    @property
    def status(self) -> OperationStatus:
        return self._status

    @property
    def is_pending(self) -> bool:
        return self._status.kind == OperationKind.PENDING

    def subscribe(self, listener: StatusListener) -> None:
        self._subscribers.append(listener)

    def reset(self) -> None:
        """Return to IDLE. Refused while an attempt is in flight."""
        if self.is_pending:
            raise RuntimeError("Cannot reset while a mint is pending")
        self._set(OperationStatus.idle())

    async def run(self, manifest: TokenManifest) -> OperationStatus:
        """
        Run one mint and return the final status.

        Typed failures end in ERROR rather than propagating. Cancellation and
        unexpected exceptions propagate after the status moves to ERROR.
        """
        if self.is_pending:
            raise RuntimeError("A mint is already pending")
        self.reset()

        try:
            result = await self._coordinator.mint(manifest)
        except ForgeError as e:
            self._set(OperationStatus.error(e))
        except asyncio.CancelledError:
            error = self._active_error() or UserRejected("Mint cancelled by caller")
            self._set(OperationStatus.error(error))
            raise
        except Exception as e:
            error = self._active_error() or InternalError(f"{type(e).__name__}: {e}")
            self._set(OperationStatus.error(error))
            raise
        else:
            self._set(OperationStatus.success(
                result.asset_address,
                result.holding_address,
                result.transaction_id,
            ))
        finally:
            self._active = None

        return self._status

    def _active_error(self) -> Optional[ForgeError]:
        attempt = self._coordinator.last_attempt
        if attempt is None or attempt.attempt_id != self._active:
            return None
        return attempt.error

    def _on_transition(self, attempt: MintAttempt, transition: StateTransition) -> None:
        if transition.to_state == AttemptState.PREPARING:
            self._active = attempt.attempt_id
        if attempt.attempt_id != self._active:
            return

        message = PENDING_MESSAGES.get(transition.to_state)
        if message is not None:
            self._set(OperationStatus.pending(message))

    def _set(self, status: OperationStatus) -> None:
        if status == self._status:
            return
        self._status = status
        logger.debug("Operation status", kind=status.kind.value, status_message=status.message)
        for listener in self._subscribers:
            listener(status)
