"""Savings policy constants passed explicitly into the ledger engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from .money import Money, MoneyLike


@dataclass(frozen=True, slots=True)
class SavingsPolicy:
    """Business constants for the savings module.

    New accounts copy ``min_monthly_contribution`` and
    ``max_withdrawals_per_month`` onto themselves, so later policy changes do
    not rewrite existing members' terms.
    """

    min_monthly_contribution: Money = Money(15000)
    withdrawal_fee_percent: Money = Money(2)
    max_withdrawals_per_month: int = 2
    fine_amount: Money = Money(10000)
    min_deposit_amount: Money = Money(1000)
    min_withdrawal_amount: Money = Money(5000)

    def __post_init__(self) -> None:
        for name in (
            "min_monthly_contribution",
            "withdrawal_fee_percent",
            "fine_amount",
            "min_deposit_amount",
            "min_withdrawal_amount",
        ):
            value = getattr(self, name)
            if not isinstance(value, Money):
                object.__setattr__(self, name, Money.of(value))
            if getattr(self, name).is_negative():
                raise ValueError(f"{name} cannot be negative")
        if self.max_withdrawals_per_month < 0:
            raise ValueError("max_withdrawals_per_month cannot be negative")
        if self.withdrawal_fee_percent.amount >= 100:
            raise ValueError("withdrawal_fee_percent must be below 100")

    def withdrawal_fee(self, amount: MoneyLike) -> Money:
        return Money.of(amount).percent(self.withdrawal_fee_percent)

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "SavingsPolicy":
        """Build from upper-case constant names, e.g. ``BaseConfig.POLICY``."""

        return cls(
            min_monthly_contribution=Money(values["MIN_MONTHLY_CONTRIBUTION"]),
            withdrawal_fee_percent=Money(values["WITHDRAWAL_FEE_PERCENT"]),
            max_withdrawals_per_month=int(values["MAX_WITHDRAWALS_PER_MONTH"]),
            fine_amount=Money(values["FINE_AMOUNT"]),
            min_deposit_amount=Money(values["MIN_DEPOSIT_AMOUNT"]),
            min_withdrawal_amount=Money(values["MIN_WITHDRAWAL_AMOUNT"]),
        )

    @classmethod
    def from_config(cls, config) -> "SavingsPolicy":
        return cls.from_mapping(config.POLICY)


DEFAULT_POLICY = SavingsPolicy()

__all__ = ["DEFAULT_POLICY", "SavingsPolicy"]
