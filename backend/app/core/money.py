# backend/app/core/money.py
"""
Money conversion helpers.

Stripe takes integer minor units (cents). The database and API responses use
Decimal major units. Every boundary crossing goes through these helpers.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

CENTS = Decimal("0.01")
MINOR_UNITS_PER_MAJOR = 100

Amount = Union[Decimal, int, float, str]


def to_decimal(value: Amount) -> Decimal:
    """Normalize to a two-place Decimal. Floats go through str to avoid binary noise."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_minor_units(value: Amount) -> int:
    """Decimal("110.00") -> 11000"""
    return int((to_decimal(value) * MINOR_UNITS_PER_MAJOR).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(cents: int) -> Decimal:
    """11000 -> Decimal("110.00")"""
    return (Decimal(int(cents)) / MINOR_UNITS_PER_MAJOR).quantize(CENTS)


def percentage_of(value: Amount, percent: Amount) -> Decimal:
    return to_decimal(to_decimal(value) * Decimal(str(percent)) / Decimal(100))
