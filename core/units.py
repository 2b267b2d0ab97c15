from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

WEI_PER_GWEI = 10**9
WEI_PER_ETH = 10**18


def parse_wei(value: Any) -> Optional[int]:
    """
    Parse a wei amount given as int, decimal string or 0x-prefixed hex string.

    Returns None for a missing value. Raises ValueError when the value cannot be read as a
    non-negative integer amount.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid wei amount: {value!r}")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, float):
        amount = int(value)
    else:
        s = str(value).strip()
        if not s:
            return None
        try:
            if s.lower().startswith("0x"):
                amount = int(s, 16)
            else:
                amount = int(Decimal(s))
        except (ValueError, OverflowError, InvalidOperation):
            raise ValueError(f"Invalid wei amount: {value!r}") from None
    if amount < 0:
        raise ValueError(f"Invalid wei amount: {value!r}")
    return amount


def wei_to_gwei(wei: int) -> float:
    return wei / WEI_PER_GWEI
