"""
SOULFORGE Error Taxonomy

Every failure of a mint attempt is raised as a ForgeError subclass. The
category tells callers how to react:

    INPUT        bad manifest, supply or configuration, detected before any
                 network access
    DERIVATION   program-derived address search exhausted
    ASSEMBLY     instruction list violates its structural invariants, or
                 another internal fault
    LEDGER       rent, anchor, submission or confirmation failures
    USER         the external signer declined (a normal cancellation path)

None of these are retried inside the core. ``may_have_landed`` is only set
when the transaction may have reached the ledger but its outcome is unknown
(confirmation timeout, or a transport failure during submission); callers
must then look the transaction up by id instead of minting again.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Classes of mint failures."""
    INPUT = "input"
    DERIVATION = "derivation"
    ASSEMBLY = "assembly"
    LEDGER = "ledger"
    USER = "user"


class ForgeError(Exception):
    """Base exception for all mint failures."""

    code: str = "forge_error"
    category: ErrorCategory = ErrorCategory.LEDGER
    may_have_landed: bool = False

    def __init__(self, message: str, transaction_id: Optional[str] = None):
        self.message = message
        self.transaction_id = transaction_id
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
            "may_have_landed": self.may_have_landed,
            "transaction_id": self.transaction_id,
        }


# =============================================================================
# INPUT ERRORS
# =============================================================================

class InvalidSupply(ForgeError):
    """Supply string is not a strictly positive decimal integer."""
    code = "invalid_supply"
    category = ErrorCategory.INPUT

    def __init__(self, value: Any, reason: str):
        self.value = value
        super().__init__(f"Invalid supply {value!r}: {reason}")


class SupplyOverflow(ForgeError):
    """Raw amount does not fit the signer/ledger amount field."""
    code = "supply_overflow"
    category = ErrorCategory.INPUT

    def __init__(self, raw_amount: int, limit: int):
        self.raw_amount = raw_amount
        self.limit = limit
        super().__init__(f"Raw amount {raw_amount} exceeds maximum {limit}")


class ManifestFieldError(Exception):
    """A single failing manifest field."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class ManifestError(ForgeError):
    """Manifest failed validation."""
    code = "invalid_manifest"
    category = ErrorCategory.INPUT

    def __init__(self, errors: List[ManifestFieldError]):
        self.errors = errors
        messages = "; ".join(str(e) for e in errors)
        super().__init__(f"Manifest validation failed: {messages}")


class InvalidConfiguration(ForgeError):
    """Configuration for the attempt is unusable, detected before any network access."""
    code = "invalid_configuration"
    category = ErrorCategory.INPUT


# =============================================================================
# PROGRAMMING ERRORS
# =============================================================================

class DerivationError(ForgeError):
    """No off-curve address exists for the seeds."""
    code = "derivation_error"
    category = ErrorCategory.DERIVATION


class AssemblyError(ForgeError):
    """Instruction list violates its structural invariants."""
    code = "assembly_error"
    category = ErrorCategory.ASSEMBLY


class InternalError(ForgeError):
    """Unexpected failure inside the core; ``may_have_landed`` once submitted."""
    code = "internal_error"
    category = ErrorCategory.ASSEMBLY

    def __init__(self, message: str, transaction_id: Optional[str] = None, may_have_landed: bool = False):
        super().__init__(message, transaction_id)
        self.may_have_landed = may_have_landed


# =============================================================================
# LEDGER ERRORS
# =============================================================================

class LedgerUnavailable(ForgeError):
    """Ledger endpoint could not be reached or returned a transport error."""
    code = "ledger_unavailable"

    def __init__(
        self,
        message: str,
        transaction_id: Optional[str] = None,
        may_have_landed: bool = False,
    ):
        super().__init__(message, transaction_id)
        self.may_have_landed = may_have_landed


class OracleUnavailable(ForgeError):
    """Rent-exempt minimum could not be obtained."""
    code = "oracle_unavailable"


class AnchorExpired(ForgeError):
    """Recent blockhash expired before the transaction landed."""
    code = "anchor_expired"


class InsufficientFunds(ForgeError):
    """Fee payer cannot cover rent plus fees."""
    code = "insufficient_funds"

    def __init__(
        self,
        message: str,
        required: Optional[int] = None,
        available: Optional[int] = None,
        transaction_id: Optional[str] = None,
    ):
        self.required = required
        self.available = available
        super().__init__(message, transaction_id)


class SimulationFailed(ForgeError):
    """Preflight simulation rejected the transaction before submission."""
    code = "simulation_failed"

    def __init__(self, message: str, logs: Optional[List[str]] = None):
        self.logs = list(logs or [])
        super().__init__(message)


class InvalidSignature(ForgeError):
    """External signer returned a signature that does not verify."""
    code = "invalid_signature"


class LedgerExecutionError(ForgeError):
    """Transaction landed and failed on-chain."""
    code = "ledger_execution_error"

    def __init__(self, error_code: str, transaction_id: Optional[str] = None):
        self.error_code = error_code
        super().__init__(f"Transaction failed on-chain: {error_code}", transaction_id)


class ConfirmationTimeout(ForgeError):
    """Confirmation wait elapsed; the transaction may still land."""
    code = "confirmation_timeout"
    may_have_landed = True

    def __init__(self, transaction_id: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Transaction {transaction_id} not confirmed within {timeout_seconds}s; "
            "check its status by id before minting again",
            transaction_id,
        )


# =============================================================================
# USER ERRORS
# =============================================================================

class UserRejected(ForgeError):
    """External signer declined, or the caller cancelled the signature request."""
    code = "user_rejected"
    category = ErrorCategory.USER

    def __init__(self, message: str = "Signature request was rejected"):
        super().__init__(message)
