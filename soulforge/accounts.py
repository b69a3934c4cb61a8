"""
SOULFORGE Account Deriver

Two sources of addresses feed a mint:

    AssetIdentity        fresh random Ed25519 keypair; its public key becomes
                         the mint account. The private half co-signs exactly
                         one transaction and is then discarded.

    Holding address      associated token account of the owner for the new
                         mint. Derived, not generated: a program-derived
                         address under the associated-token program with
                         seeds [owner, token program, mint].

The bump search is the ledger's own (``Pubkey.find_program_address``): bumps
255 downward, first off-curve digest wins, so no private key exists for it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Optional, Tuple

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from soulforge.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID


# =============================================================================
# ASSET IDENTITY
# =============================================================================

class AssetIdentity:
    """
    Ephemeral keypair for one mint attempt.

    Use as a context manager so the private key is dropped on every exit
    path. After ``discard()`` only the public key remains readable.

    Example:
        with new_asset_identity() as asset:
            signature = asset.sign(message_bytes)
        # asset.sign(...) now raises
    """

    __slots__ = ("_keypair", "_public")

    def __init__(self, keypair: Keypair):
        self._keypair: Optional[Keypair] = keypair
        self._public = keypair.pubkey()

    @property
    def public(self) -> Pubkey:
        return self._public

    @property
    def discarded(self) -> bool:
        return self._keypair is None

    def sign(self, message: bytes) -> Signature:
        """Sign message bytes with the ephemeral private key."""
        if self._keypair is None:
            raise RuntimeError(f"Asset identity {self._public} was already discarded")
        return self._keypair.sign_message(message)

    def discard(self) -> None:
        """Drop the private key reference."""
        self._keypair = None

    def __enter__(self) -> "AssetIdentity":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.discard()

    def __repr__(self) -> str:
        state = "discarded" if self.discarded else "live"
        return f"AssetIdentity({self._public}, {state})"


def new_asset_identity() -> AssetIdentity:
    """Generate a fresh, independently random asset identity."""
    return AssetIdentity(Keypair())


# =============================================================================
# PROGRAM-DERIVED ADDRESSES
# =============================================================================

def derive_holding_address_with_bump(
    asset_public: Pubkey,
    owner_public: Pubkey,
    token_program_id: Pubkey = TOKEN_PROGRAM_ID,
) -> Tuple[Pubkey, int]:
    """Associated token account address and its bump seed."""
    seeds = [bytes(owner_public), bytes(token_program_id), bytes(asset_public)]
    return Pubkey.find_program_address(seeds, ASSOCIATED_TOKEN_PROGRAM_ID)


def derive_holding_address(
    asset_public: Pubkey,
    owner_public: Pubkey,
    token_program_id: Pubkey = TOKEN_PROGRAM_ID,
) -> Pubkey:
    """Associated token account holding ``owner_public``'s units of ``asset_public``."""
    address, _ = derive_holding_address_with_bump(asset_public, owner_public, token_program_id)
    return address
