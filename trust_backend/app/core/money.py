"""
Fixed-point money helpers.

All balances and amounts are held as integer minor units (cents). Decimal
values only appear at the HTTP boundary and for rates. Rounding is
round-half-up and happens only when a value becomes a stored or displayed
amount.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

MINOR_UNITS = 100
_CENT = Decimal("0.01")
_ONE = Decimal("1")

Number = Union[int, str, float, Decimal]


def as_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps the shortest repr, avoiding binary float noise
        return Decimal(str(value))
    return Decimal(value)


def to_minor(amount: Number) -> int:
    """Convert a major-unit amount (e.g. "1250.505") to integer cents."""
    scaled = as_decimal(amount) * MINOR_UNITS
    return int(scaled.quantize(_ONE, rounding=ROUND_HALF_UP))


def to_major(minor: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal."""
    return (Decimal(minor) / MINOR_UNITS).quantize(_CENT)


def apply_rate(minor: int, rate: Number) -> int:
    """Multiply cents by a rate, rounding the product half-up to whole cents."""
    product = Decimal(minor) * as_decimal(rate)
    return int(product.quantize(_ONE, rounding=ROUND_HALF_UP))
