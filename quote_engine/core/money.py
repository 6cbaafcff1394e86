"""
Decimal helpers for monetary arithmetic.

Every rounding step in the engine goes through these helpers so that all
callers round the same way.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """Convert a number or numeric string to Decimal.

    Floats go through ``str`` so 0.1 becomes Decimal("0.1"), not its
    binary expansion. ``None`` becomes zero.

    Raises:
        ValueError: If the value is not numeric
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be a number, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"{field_name} must be a number, got {value!r}")
    else:
        raise ValueError(f"{field_name} must be a number, got {value!r}")
    if not result.is_finite():
        raise ValueError(f"{field_name} must be finite, got {value!r}")
    return result


def quantize(value: Decimal, decimals: int = 2) -> Decimal:
    """Round half-up to a fixed number of decimal places."""
    exponent = Decimal(1).scaleb(-decimals)
    return value.quantize(exponent, rounding=ROUND_HALF_UP)
