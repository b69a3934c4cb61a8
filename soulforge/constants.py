"""
Protocol constants for SPL token creation.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from enum import Enum

from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID

__all__ = [
    "ASSOCIATED_TOKEN_PROGRAM_ID",
    "Cluster",
    "DECIMALS",
    "LAMPORTS_PER_SIGNATURE",
    "LAMPORTS_PER_SOL",
    "MINT_ACCOUNT_SIZE",
    "SYSTEM_PROGRAM_ID",
    "TOKEN_ACCOUNT_SIZE",
    "TOKEN_PROGRAM_ID",
    "U64_MAX",
]

# Fixed precision for every mint created by this core.
DECIMALS = 9

LAMPORTS_PER_SOL = 1_000_000_000
LAMPORTS_PER_SIGNATURE = 5_000

# SPL Token account layouts (bytes).
MINT_ACCOUNT_SIZE = 82
TOKEN_ACCOUNT_SIZE = 165

# MintTo carries the amount as a little-endian u64.
U64_MAX = 2**64 - 1


class Cluster(Enum):
    """Solana clusters the core can target."""
    MAINNET_BETA = "mainnet-beta"
    DEVNET = "devnet"
    TESTNET = "testnet"
    LOCALNET = "localnet"

    @property
    def rpc_url(self) -> str:
        """Public JSON-RPC endpoint for the cluster."""
        return {
            Cluster.MAINNET_BETA: "https://api.mainnet-beta.solana.com",
            Cluster.DEVNET: "https://api.devnet.solana.com",
            Cluster.TESTNET: "https://api.testnet.solana.com",
            Cluster.LOCALNET: "http://127.0.0.1:8899",
        }[self]

    def explorer_url(self, kind: str, value: str) -> str:
        """Explorer link for a transaction ("tx") or account ("address")."""
        url = f"https://explorer.solana.com/{kind}/{value}"
        if self is Cluster.MAINNET_BETA:
            return url
        if self is Cluster.LOCALNET:
            return f"{url}?cluster=custom&customUrl=http%3A%2F%2F127.0.0.1%3A8899"
        return f"{url}?cluster={self.value}"
