"""
Rent-exempt minimum lookup.

One ledger read per call. The answer is never cached or substituted: rent
parameters are protocol state and an under-funded mint account fails to
initialize on-chain.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from soulforge.constants import MINT_ACCOUNT_SIZE
from soulforge.errors import LedgerUnavailable, OracleUnavailable
from soulforge.ledger import Ledger
from soulforge.observability import ForgeLayer, get_logger

logger = get_logger("rent", ForgeLayer.RENT)


class RentOracle:
    """Queries the ledger for the rent-exempt minimum of an account size."""

    def __init__(self, ledger: Ledger):
        self._ledger = ledger

    async def minimum_rent_exempt_balance(self, account_byte_size: int = MINT_ACCOUNT_SIZE) -> int:
        """
        Lamports an account of ``account_byte_size`` bytes must hold.

        Raises:
            OracleUnavailable: ledger failure or a malformed answer
        """
        if account_byte_size < 0:
            raise ValueError(f"account size must be non-negative, got {account_byte_size}")

        try:
            lamports = await self._ledger.get_minimum_rent_exempt_balance(account_byte_size)
        except LedgerUnavailable as e:
            logger.error("Rent query failed", error_code=OracleUnavailable.code, size=account_byte_size)
            raise OracleUnavailable(f"Rent-exempt minimum unavailable: {e.message}") from e

        if isinstance(lamports, bool) or not isinstance(lamports, int) or lamports <= 0:
            logger.error("Rent query returned invalid value", error_code=OracleUnavailable.code, value=repr(lamports))
            raise OracleUnavailable(f"Ledger returned invalid rent-exempt minimum: {lamports!r}")

        logger.debug("Rent-exempt minimum", size=account_byte_size, lamports=lamports)
        return lamports
