"""
SOULFORGE: Token Creation Transaction Core

Builds, co-signs, submits and confirms the single atomic Solana transaction
that brings a new fungible token into existence and credits its full supply
to the creator's wallet.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       TOKEN CREATION CORE                            │
    │                                                                      │
    │  ORCHESTRATION                                                       │
    │    operation.py     IDLE / PENDING / SUCCESS / ERROR for callers     │
    │    coordinator.py   Mint attempt state machine, dual signing         │
    │                                                                      │
    │  TRANSACTION CONSTRUCTION                                            │
    │    instructions.py  Four ordered instructions, structurally checked  │
    │    accounts.py      Ephemeral asset identity, holding address PDA    │
    │    rent.py          Rent-exempt minimum, queried every attempt       │
    │    units.py         Human supply to raw units, exact integers        │
    │    manifest.py      Validated token manifest and policy bindings     │
    │                                                                      │
    │  BOUNDARIES                                                          │
    │    ledger.py        JSON-RPC ledger and in-process mock              │
    │    signer.py        External owner signer and in-process mocks       │
    │                                                                      │
    │  AMBIENT                                                             │
    │    errors.py        Typed error taxonomy                             │
    │    config.py        Environment and YAML configuration               │
    │    observability.py Structured logging and tracing                   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Fresh Identity: Every attempt generates a new asset keypair. Its private
    half never leaves the attempt and is dropped before submission.

    Atomicity: Account creation, initialization, holding account and supply
    issuance land together or not at all.

    No Silent Retries: Any failure is terminal for the attempt. Errors that
    may have landed carry the transaction id for later lookup.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.3.0"


# Lazy imports keep ``import soulforge`` free of the solana stack.
def __getattr__(name):
    """Lazy import SOULFORGE modules on first access."""

    # Manifest exports
    if name in ("TokenManifest", "PolicyBindings", "normalize_payload"):
        from soulforge import manifest
        return getattr(manifest, name)

    # Unit exports
    if name in ("parse_supply", "to_raw_amount", "to_human_amount", "max_human_supply"):
        from soulforge import units
        return getattr(units, name)

    # Account exports
    if name in ("AssetIdentity", "new_asset_identity", "derive_holding_address",
                "derive_holding_address_with_bump"):
        from soulforge import accounts
        return getattr(accounts, name)

    # Rent exports
    if name == "RentOracle":
        from soulforge import rent
        return rent.RentOracle

    # Assembler exports
    if name in ("assemble_mint_instructions", "verify_instruction_order",
                "InstructionKind", "MINT_SEQUENCE"):
        from soulforge import instructions
        return getattr(instructions, name)

    # Coordinator exports
    if name in ("MintCoordinator", "MintAttempt", "MintResult", "AttemptState",
                "create_coordinator"):
        from soulforge import coordinator
        return getattr(coordinator, name)

    # Operation exports
    if name in ("MintOperation", "OperationStatus", "OperationKind"):
        from soulforge import operation
        return getattr(operation, name)

    # Ledger exports
    if name in ("Ledger", "SolanaRpcLedger", "MockLedger", "LedgerStatus",
                "TxStatusKind", "Anchor", "ledger_from_config"):
        from soulforge import ledger
        return getattr(ledger, name)

    # Signer exports
    if name in ("Signer", "KeypairSigner", "MockSigner", "verify_signature"):
        from soulforge import signer
        return getattr(signer, name)

    # Error exports
    if name in ("ForgeError", "ErrorCategory", "InvalidSupply", "SupplyOverflow",
                "ManifestError", "DerivationError", "AssemblyError", "LedgerUnavailable",
                "OracleUnavailable", "AnchorExpired", "InsufficientFunds",
                "SimulationFailed", "InvalidSignature", "LedgerExecutionError",
                "ConfirmationTimeout", "UserRejected", "InvalidConfiguration",
                "InternalError"):
        from soulforge import errors
        return getattr(errors, name)

    raise AttributeError(f"module 'soulforge' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Manifest
    "TokenManifest",
    "PolicyBindings",
    # Units
    "to_raw_amount",
    "to_human_amount",
    # Accounts
    "AssetIdentity",
    "new_asset_identity",
    "derive_holding_address",
    # Rent
    "RentOracle",
    # Assembler
    "assemble_mint_instructions",
    # Coordinator
    "MintCoordinator",
    "MintAttempt",
    "MintResult",
    "AttemptState",
    "create_coordinator",
    # Operation
    "MintOperation",
    "OperationStatus",
    "OperationKind",
    # Boundaries
    "SolanaRpcLedger",
    "MockLedger",
    "KeypairSigner",
    "MockSigner",
    # Errors
    "ForgeError",
]
