"""
Money helpers.

All amounts are Decimal quantized to cents; floats are never used for money.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce a number or numeric string to a cent-quantized Decimal."""
    if value is None:
        raise ValueError("money value cannot be None")
    if isinstance(value, float):
        # str() avoids binary float artifacts such as 0.1 -> 0.1000000000000000055
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[Decimal]) -> Decimal:
    return to_money(sum(values, ZERO))
