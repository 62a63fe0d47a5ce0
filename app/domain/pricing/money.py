"""Fixed-point money helpers - all prices are Decimal rounded to cents"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert to Decimal without binary float drift (floats go through str)"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a monetary value: {value!r}") from e


def quantize(value: Number) -> Decimal:
    """Round half-up to the currency minor unit"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage_of(amount: Decimal, percentage: Number) -> Decimal:
    return quantize(amount * to_decimal(percentage) / Decimal(100))
