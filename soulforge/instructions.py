"""
SOULFORGE Instruction Assembler

A mint is four instructions executed atomically, in a fixed order:

    1. CREATE_ACCOUNT           system program allocates 82 bytes at the
                                asset address, funded with the rent-exempt
                                minimum, owned by the token program
    2. INITIALIZE_MINT          token program stamps the account as a mint:
                                9 decimals, owner as mint authority, no
                                freeze authority
    3. CREATE_HOLDING_ACCOUNT   associated-token program creates the owner's
                                token account for the new mint
    4. ISSUE                    token program mints the raw supply into the
                                holding account

Each step depends on the previous one's result, so the order is checked
structurally after assembly. Everything here is pure data construction; a
failure is a programming error (``AssemblyError``).

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account
from spl.token.instructions import (
    InitializeMintParams,
    MintToParams,
    create_associated_token_account,
    initialize_mint,
    mint_to,
)

from soulforge.accounts import derive_holding_address
from soulforge.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    DECIMALS,
    MINT_ACCOUNT_SIZE,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    U64_MAX,
)
from soulforge.errors import AssemblyError
from soulforge.observability import ForgeLayer, get_logger, timed_operation

logger = get_logger("assembler", ForgeLayer.ASSEMBLER)

# Instruction discriminators.
SYSTEM_CREATE_ACCOUNT = 0
TOKEN_INITIALIZE_MINT = 0
TOKEN_MINT_TO = 7
ASSOCIATED_TOKEN_CREATE = 0


class InstructionKind(Enum):
    """Steps of a mint transaction."""
    CREATE_ACCOUNT = "create_account"
    INITIALIZE_MINT = "initialize_mint"
    CREATE_HOLDING_ACCOUNT = "create_holding_account"
    ISSUE = "issue"


MINT_SEQUENCE = (
    InstructionKind.CREATE_ACCOUNT,
    InstructionKind.INITIALIZE_MINT,
    InstructionKind.CREATE_HOLDING_ACCOUNT,
    InstructionKind.ISSUE,
)


def classify_instruction(instruction: Instruction) -> InstructionKind:
    """Identify a mint step by program id and discriminator."""
    program_id = instruction.program_id
    data = bytes(instruction.data)

    if program_id == SYSTEM_PROGRAM_ID:
        if data[:4] == SYSTEM_CREATE_ACCOUNT.to_bytes(4, "little"):
            return InstructionKind.CREATE_ACCOUNT
    elif program_id == TOKEN_PROGRAM_ID and data:
        if data[0] == TOKEN_INITIALIZE_MINT:
            return InstructionKind.INITIALIZE_MINT
        if data[0] == TOKEN_MINT_TO:
            return InstructionKind.ISSUE
    elif program_id == ASSOCIATED_TOKEN_PROGRAM_ID:
        if not data or data[0] == ASSOCIATED_TOKEN_CREATE:
            return InstructionKind.CREATE_HOLDING_ACCOUNT

    raise AssemblyError(f"Unrecognized instruction for program {program_id}")


def verify_instruction_order(instructions: Sequence[Instruction]) -> None:
    """
    Require exactly CREATE_ACCOUNT, INITIALIZE_MINT, CREATE_HOLDING_ACCOUNT, ISSUE.

    Raises:
        AssemblyError: wrong count, unknown step, or steps out of order
    """
    kinds = tuple(classify_instruction(ix) for ix in instructions)
    if kinds != MINT_SEQUENCE:
        found = ", ".join(k.value for k in kinds) or "<empty>"
        raise AssemblyError(f"Mint instructions out of order: [{found}]")


def _check_links(instructions: Sequence[Instruction], mint: Pubkey, holding_address: Pubkey) -> None:
    create, init, holding, issue = instructions
    expected = [
        (create.accounts[1].pubkey, mint, "create_account target"),
        (init.accounts[0].pubkey, mint, "initialize_mint mint"),
        (holding.accounts[1].pubkey, holding_address, "holding account address"),
        (holding.accounts[3].pubkey, mint, "holding account mint"),
        (issue.accounts[0].pubkey, mint, "issue mint"),
        (issue.accounts[1].pubkey, holding_address, "issue destination"),
    ]
    for actual, wanted, label in expected:
        if actual != wanted:
            raise AssemblyError(f"{label} is {actual}, expected {wanted}")


@timed_operation(logger, "assemble_mint_instructions")
def assemble_mint_instructions(
    asset_public: Pubkey,
    owner_public: Pubkey,
    holding_address: Pubkey,
    rent_lamports: int,
    raw_amount: int,
    decimals: int = DECIMALS,
) -> List[Instruction]:
    """
    Build the four mint instructions.

    Args:
        asset_public: New mint account (signs CREATE_ACCOUNT)
        owner_public: Fee payer, mint authority and holder
        holding_address: Owner's associated token account for the mint
        rent_lamports: Rent-exempt minimum for the mint account
        raw_amount: Units to issue, already scaled by ``decimals``
        decimals: Mint precision

    Raises:
        AssemblyError: invalid amounts or a structural violation
    """
    if rent_lamports <= 0:
        raise AssemblyError(f"Rent lamports must be positive, got {rent_lamports}")
    if not 0 < raw_amount <= U64_MAX:
        raise AssemblyError(f"Raw amount out of u64 range: {raw_amount}")
    if not 0 <= decimals <= 255:
        raise AssemblyError(f"Decimals out of u8 range: {decimals}")
    if asset_public == owner_public:
        raise AssemblyError("Asset and owner must be distinct accounts")
    if holding_address != derive_holding_address(asset_public, owner_public):
        raise AssemblyError(f"Holding address {holding_address} is not derived from asset and owner")

    instructions = [
        create_account(CreateAccountParams(
            from_pubkey=owner_public,
            to_pubkey=asset_public,
            lamports=rent_lamports,
            space=MINT_ACCOUNT_SIZE,
            owner=TOKEN_PROGRAM_ID,
        )),
        initialize_mint(InitializeMintParams(
            decimals=decimals,
            program_id=TOKEN_PROGRAM_ID,
            mint=asset_public,
            mint_authority=owner_public,
            freeze_authority=None,
        )),
        create_associated_token_account(
            payer=owner_public,
            owner=owner_public,
            mint=asset_public,
        ),
        mint_to(MintToParams(
            program_id=TOKEN_PROGRAM_ID,
            mint=asset_public,
            dest=holding_address,
            mint_authority=owner_public,
            amount=raw_amount,
        )),
    ]

    verify_instruction_order(instructions)
    _check_links(instructions, asset_public, holding_address)
    return instructions
