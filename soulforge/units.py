"""
Unit conversion between human-readable supply and raw token units.

All arithmetic is on Python integers; floats never touch an amount.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import re
from typing import Any

from soulforge.constants import DECIMALS, U64_MAX
from soulforge.errors import InvalidSupply, SupplyOverflow

SUPPLY_PATTERN = re.compile(r"[0-9]+")


def parse_supply(human_supply: Any) -> int:
    """
    Parse a supply string made only of ASCII decimal digits.

    Raises:
        InvalidSupply: if the value is not a digit string or is zero
    """
    if not isinstance(human_supply, str):
        raise InvalidSupply(human_supply, f"expected string, got {type(human_supply).__name__}")
    if not SUPPLY_PATTERN.fullmatch(human_supply):
        raise InvalidSupply(human_supply, "must contain decimal digits only")

    value = int(human_supply)
    if value <= 0:
        raise InvalidSupply(human_supply, "must be greater than zero")
    return value


def to_raw_amount(
    human_supply: Any,
    decimals: int = DECIMALS,
    max_raw_amount: int = U64_MAX,
) -> int:
    """
    Convert a human supply to raw units: ``supply * 10**decimals``.

    Args:
        human_supply: Decimal digit string, e.g. "1000000000"
        decimals: Mint precision
        max_raw_amount: Largest amount the downstream signer can carry

    Returns:
        Raw integer amount

    Raises:
        InvalidSupply: malformed or non-positive supply
        SupplyOverflow: raw amount above ``max_raw_amount``
    """
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")

    raw = parse_supply(human_supply) * 10**decimals
    if raw > max_raw_amount:
        raise SupplyOverflow(raw, max_raw_amount)
    return raw


def max_human_supply(decimals: int = DECIMALS, max_raw_amount: int = U64_MAX) -> int:
    """Largest whole-token supply that still converts."""
    return max_raw_amount // 10**decimals


def to_human_amount(raw_amount: int, decimals: int = DECIMALS) -> str:
    """Format a raw amount as a decimal string, trimming trailing zeros."""
    if raw_amount < 0:
        raise ValueError(f"raw amount must be non-negative, got {raw_amount}")

    whole, fraction = divmod(raw_amount, 10**decimals)
    if not fraction:
        return str(whole)
    return f"{whole}.{str(fraction).rjust(decimals, '0').rstrip('0')}"
