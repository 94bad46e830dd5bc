"""Money / rounding helpers.

Centralized so the repository, totals and response models share identical
rounding semantics. Amounts are stored as integer cents so sums stay exact.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

CENT = Decimal("0.01")


def to_money(value: Union[Decimal, float, int, str, None]) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    return int(to_money(value) * 100)


def from_cents(cents: Optional[int]) -> Decimal:
    if cents is None:
        return Decimal("0.00")
    return (Decimal(int(cents)) / 100).quantize(CENT)
