"""
Decimal helpers for currency amounts.

All monetary values are Decimal quantized to two places with ROUND_HALF_UP.
Floats are accepted on input only through their string form so that 0.1
stays 0.1.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Any) -> Decimal:
    """Coerce int/str/float/Decimal to Decimal. Raises InvalidOperation/TypeError on junk."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("booleans are not amounts")
    if isinstance(value, (int, str)):
        return Decimal(value.strip() if isinstance(value, str) else value)
    if isinstance(value, float):
        return Decimal(repr(value))
    raise TypeError(f"unsupported amount type: {type(value).__name__}")


def quantize(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def floor_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def format_amount(value) -> str | None:
    """JSON representation: string with two decimals."""
    if value is None:
        return None
    return str(quantize(value))


__all__ = ["CENT", "ZERO", "InvalidOperation", "to_decimal", "quantize", "floor_int", "format_amount"]
