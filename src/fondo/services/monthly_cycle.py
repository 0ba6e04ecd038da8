"""Month-boundary evaluation of contribution compliance.

An account tracks one open month (``Account.period``). When activity arrives
in a later month, every elapsed month is closed in order:

- ``MET`` when the qualifying deposits reached the account's floor, which
  extends the contribution streak;
- ``MISSED`` otherwise, which assesses a fine and resets the streak.

Closing a month always resets the withdrawal counter and the running monthly
contribution. Inactive accounts are not evaluated; only their counters reset.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from ..domain.entities import (
    SYSTEM_ACTOR,
    Account,
    AccountStatus,
    FineAction,
    Transaction,
    TransactionMetadata,
    TransactionType,
    new_id,
)
from ..domain.money import Money
from ..domain.policy import SavingsPolicy

FINE_CONCEPT = "Missed monthly contribution fine"


class ContributionState(str, Enum):
    PENDING = "pending"
    MET = "met"
    MISSED = "missed"


@dataclass(frozen=True, slots=True)
class MonthClosure:
    period: str
    state: ContributionState
    contribution: Money
    fine: Optional[Transaction] = None


@dataclass(frozen=True, slots=True)
class Rollover:
    account: Account
    previous_period: str
    transactions: list[Transaction] = field(default_factory=list)
    closures: list[MonthClosure] = field(default_factory=list)

    @property
    def rolled(self) -> bool:
        return self.account.period != self.previous_period


def resolve_timezone(name: str | None) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def month_key(moment: datetime, tz: tzinfo = timezone.utc) -> str:
    """Return the ``YYYY-MM`` calendar month of ``moment`` in ``tz``."""

    local = _aware(moment).astimezone(tz)
    return f"{local.year:04d}-{local.month:02d}"


def parse_month(key: str) -> tuple[int, int]:
    try:
        year_text, month_text = key.split("-")
        year, month = int(year_text), int(month_text)
    except ValueError as exc:
        raise ValueError(f"Month must look like YYYY-MM, got {key!r}") from exc
    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range in {key!r}")
    return year, month


def next_month(key: str) -> str:
    year, month = parse_month(key)
    if month == 12:
        return f"{year + 1:04d}-01"
    return f"{year:04d}-{month + 1:02d}"


def month_start(key: str, tz: tzinfo = timezone.utc) -> datetime:
    """First instant of the month in ``tz``, expressed in UTC."""

    year, month = parse_month(key)
    return datetime(year, month, 1, tzinfo=tz).astimezone(timezone.utc)


def month_bounds(key: str, tz: tzinfo = timezone.utc) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of the month as UTC datetimes."""

    return month_start(key, tz), month_start(next_month(key), tz)


def months_elapsed(start_key: str, end_key: str) -> list[str]:
    """Months from ``start_key`` (inclusive) up to ``end_key`` (exclusive)."""

    months: list[str] = []
    cursor = start_key
    while cursor < end_key:
        months.append(cursor)
        cursor = next_month(cursor)
    return months


def contribution_state(account: Account) -> ContributionState:
    """State of the open month: MET once the floor is reached, else PENDING."""

    if account.monthly_contribution >= account.min_monthly_contribution:
        return ContributionState.MET
    return ContributionState.PENDING


def _close_month(
    account: Account,
    period: str,
    *,
    policy: SavingsPolicy,
    now: datetime,
    id_factory: Callable[[], str],
) -> tuple[Account, MonthClosure]:
    contribution = account.monthly_contribution
    if contribution_state(account) is ContributionState.MET:
        closed = account.evolve(contribution_streak=account.contribution_streak + 1)
        return closed, MonthClosure(period=period, state=ContributionState.MET, contribution=contribution)

    closed = account.evolve(contribution_streak=0)
    fine: Optional[Transaction] = None
    if policy.fine_amount.is_positive():
        shortfall = account.min_monthly_contribution - contribution
        sequence = account.last_sequence + 1
        fine = Transaction(
            id=id_factory(),
            account_id=account.id,
            user_id=account.user_id,
            type=TransactionType.FINE,
            amount=policy.fine_amount,
            balance=account.balance,
            concept=FINE_CONCEPT,
            created_at=now,
            created_by=SYSTEM_ACTOR,
            sequence=sequence,
            metadata=TransactionMetadata(
                fine_reason=(
                    f"Contribution for {period} was {contribution}, "
                    f"{shortfall} short of the {account.min_monthly_contribution} minimum"
                ),
                fine_action=FineAction.ASSESSED,
            ),
        )
        closed = closed.evolve(
            total_fines=account.total_fines + policy.fine_amount,
            fines_pending=account.fines_pending + policy.fine_amount,
            last_transaction_id=fine.id,
            last_sequence=sequence,
        )
    return closed, MonthClosure(
        period=period, state=ContributionState.MISSED, contribution=contribution, fine=fine
    )


def roll_over(
    account: Account,
    *,
    policy: SavingsPolicy,
    now: datetime,
    tz: tzinfo = timezone.utc,
    id_factory: Callable[[], str] = new_id,
) -> Rollover:
    """Close every month between ``account.period`` and the month of ``now``.

    Returns the input snapshot untouched when ``now`` is still in the open
    month (or earlier, e.g. a skewed clock).
    """

    current = month_key(now, tz)
    if current <= account.period:
        return Rollover(account=account, previous_period=account.period)

    state = account
    closures: list[MonthClosure] = []
    fines: list[Transaction] = []
    for period in months_elapsed(account.period, current):
        if state.status is not AccountStatus.INACTIVE:
            state, closure = _close_month(
                state, period, policy=policy, now=now, id_factory=id_factory
            )
            closures.append(closure)
            if closure.fine is not None:
                fines.append(closure.fine)
        state = state.evolve(monthly_contribution=Money.zero(), withdrawals_this_month=0)

    state = state.evolve(period=current, updated_at=now)
    return Rollover(
        account=state,
        previous_period=account.period,
        transactions=fines,
        closures=closures,
    )


def previous_month(key: str) -> str:
    year, month = parse_month(key)
    first = datetime(year, month, 1)
    prior = first - timedelta(days=1)
    return f"{prior.year:04d}-{prior.month:02d}"


__all__ = [
    "ContributionState",
    "MonthClosure",
    "Rollover",
    "contribution_state",
    "month_bounds",
    "month_key",
    "month_start",
    "months_elapsed",
    "next_month",
    "parse_month",
    "previous_month",
    "resolve_timezone",
    "roll_over",
]
