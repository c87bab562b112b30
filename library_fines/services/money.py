"""Conversions between Decimal money columns and integer cents.

Allocation and fine arithmetic run on integer cents so that repeated
splitting never drifts. Decimals are only used at the database boundary.

Example:
    >>> to_cents(Decimal("1.25"))
    125
    >>> from_cents(125)
    Decimal('1.25')
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

CENT = Decimal("0.01")

Amount = Union[Decimal, int, float, str]


def to_cents(amount: Amount | None) -> int:
    """Convert a money amount to integer cents, rounding half up.

    None is treated as zero. Floats go through str() first so that
    0.1 becomes 10 cents rather than 9.
    """
    if amount is None:
        return 0
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Convert integer cents to a two-place Decimal."""
    return (Decimal(cents) / 100).quantize(CENT)


def quantize(amount: Amount) -> Decimal:
    """Round an amount to two places."""
    return from_cents(to_cents(amount))


__all__ = ["to_cents", "from_cents", "quantize", "CENT"]
