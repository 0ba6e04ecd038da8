"""Monthly summaries and savings statistics derived from the ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from decimal import Decimal
from typing import Iterable, Optional

from ..domain.entities import Account, FineAction, Transaction, TransactionType
from ..domain.money import Money, money_sum
from .invariants import ordered
from .monthly_cycle import month_bounds, month_key, months_elapsed


@dataclass(frozen=True, slots=True)
class MonthlySummary:
    """Per-member totals for one calendar month."""

    user_id: str
    month: str
    total_deposits: Money
    total_withdrawals: Money
    net_savings: Money
    fines_applied: Money
    contribution_met: bool
    withdrawal_count: int
    final_balance: Money


@dataclass(frozen=True, slots=True)
class SavingsStats:
    total_balance: Money
    total_deposited: Money
    total_withdrawn: Money
    average_monthly_contribution: Money
    contribution_streak: int
    account_age_months: int
    fines_paid: Money
    last_activity: Optional[datetime]


def _in_range(txn: Transaction, start: datetime, end: datetime) -> bool:
    return start <= txn.created_at < end


def monthly_summary(
    account: Account,
    transactions: Iterable[Transaction],
    month: str,
    *,
    tz: tzinfo = timezone.utc,
) -> MonthlySummary:
    """Summarize ``month`` (``YYYY-MM``) for one account.

    Withdrawals include their fees. Fines count when they were assessed, which
    is the month after the one that missed its contribution.
    """

    start, end = month_bounds(month, tz)
    history = ordered(transactions)
    in_month = [t for t in history if _in_range(t, start, end)]

    deposits = money_sum(t.amount for t in in_month if t.type is TransactionType.DEPOSIT)
    withdrawals = [t for t in in_month if t.type is TransactionType.WITHDRAWAL]
    withdrawn = money_sum(t.amount + t.fee for t in withdrawals)
    fines = money_sum(t.amount for t in in_month if t.is_fine_assessment)

    final_balance = Money.zero()
    for txn in history:
        if txn.created_at >= end:
            break
        final_balance = txn.balance

    return MonthlySummary(
        user_id=account.user_id,
        month=month,
        total_deposits=deposits,
        total_withdrawals=withdrawn,
        net_savings=deposits - withdrawn,
        fines_applied=fines,
        contribution_met=deposits >= account.min_monthly_contribution,
        withdrawal_count=len(withdrawals),
        final_balance=final_balance,
    )


def savings_stats(
    account: Account,
    transactions: Iterable[Transaction],
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> SavingsStats:
    history = list(transactions)
    age = len(months_elapsed(month_key(account.created_at, tz), month_key(now, tz)))
    months_open = age + 1
    average = Money(account.total_deposits.amount / Decimal(months_open))
    fines_paid = money_sum(
        t.amount
        for t in history
        if t.type is TransactionType.FINE and t.metadata.fine_action is FineAction.PAID
    )
    last_activity = max((t.created_at for t in history), default=None)

    return SavingsStats(
        total_balance=account.balance,
        total_deposited=account.total_deposits,
        total_withdrawn=account.total_withdrawals,
        average_monthly_contribution=average,
        contribution_streak=account.contribution_streak,
        account_age_months=age,
        fines_paid=fines_paid,
        last_activity=last_activity,
    )


__all__ = ["MonthlySummary", "SavingsStats", "monthly_summary", "savings_stats"]
