"""Fixed-point money values for ledger arithmetic."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
MINOR_UNITS = 100
# amounts are stored as signed 64-bit hundredths
MAX_MINOR_UNITS = 2**63 - 1

MoneyLike = Union["Money", Decimal, int, float, str]


def _to_decimal(value: MoneyLike) -> Decimal:
    if isinstance(value, Money):
        return value.amount
    if isinstance(value, float):
        # str() first so 0.1 stays 0.1 instead of its binary expansion
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        return result.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Monetary amount out of range: {value!r}") from exc


@dataclass(frozen=True, order=True, slots=True)
class Money:
    """Currency amount with exactly two fractional digits."""

    amount: Decimal

    def __init__(self, amount: MoneyLike = 0) -> None:
        object.__setattr__(self, "amount", _to_decimal(amount))

    @classmethod
    def zero(cls) -> "Money":
        return cls(0)

    @classmethod
    def of(cls, value: MoneyLike) -> "Money":
        return value if isinstance(value, Money) else cls(value)

    @classmethod
    def from_minor_units(cls, units: int) -> "Money":
        """Build from an integer count of hundredths (the storage format)."""
        return cls(Decimal(int(units)) / MINOR_UNITS)

    @property
    def minor_units(self) -> int:
        return int(self.amount * MINOR_UNITS)

    def percent(self, rate: MoneyLike) -> "Money":
        """Return ``rate`` percent of this amount, rounded half-up to the cent."""
        return Money(self.amount * _to_decimal(rate) / Decimal(100))

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_negative(self) -> bool:
        return self.amount < 0

    def __add__(self, other: MoneyLike) -> "Money":
        return Money(self.amount + Money.of(other).amount)

    __radd__ = __add__

    def __sub__(self, other: MoneyLike) -> "Money":
        return Money(self.amount - Money.of(other).amount)

    def __rsub__(self, other: MoneyLike) -> "Money":
        return Money(Money.of(other).amount - self.amount)

    def __neg__(self) -> "Money":
        return Money(-self.amount)

    def __bool__(self) -> bool:
        return not self.is_zero()

    def __str__(self) -> str:
        return f"{self.amount:.2f}"

    def __repr__(self) -> str:
        return f"Money('{self}')"


def money_sum(values) -> Money:
    """Sum an iterable of money-like values."""

    total = Money.zero()
    for value in values:
        total = total + value
    return total


# largest amount the store can hold
MAX_AMOUNT = Money.from_minor_units(MAX_MINOR_UNITS)

__all__ = ["MAX_AMOUNT", "MAX_MINOR_UNITS", "Money", "MoneyLike", "money_sum"]
