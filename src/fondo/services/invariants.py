"""Replay a transaction log and compare it with the stored account snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..domain.entities import Account, FineAction, Transaction, TransactionType
from ..domain.errors import LedgerCorruptionError
from ..domain.money import Money


@dataclass(frozen=True, slots=True)
class LedgerTotals:
    """Account aggregates derived purely from the transaction log."""

    balance: Money = Money(0)
    total_deposits: Money = Money(0)
    total_withdrawals: Money = Money(0)
    total_fines: Money = Money(0)
    fines_pending: Money = Money(0)
    interest_applied: Money = Money(0)
    fines_paid: Money = Money(0)
    last_sequence: int = 0
    count: int = 0


def ordered(transactions: Iterable[Transaction]) -> list[Transaction]:
    return sorted(transactions, key=lambda t: (t.created_at, t.sequence))


def replay(account_id: str, transactions: Iterable[Transaction]) -> tuple[LedgerTotals, list[str]]:
    """Fold the log into totals, collecting per-record problems on the way.

    Returns ``(totals, problems)``; an empty ``problems`` list means every
    record was internally consistent.
    """

    balance = Money.zero()
    deposits = Money.zero()
    withdrawals = Money.zero()
    fines = Money.zero()
    pending = Money.zero()
    interest = Money.zero()
    paid = Money.zero()
    expected_sequence = 1
    count = 0
    problems: list[str] = []

    for txn in ordered(transactions):
        count += 1
        if txn.account_id != account_id:
            problems.append(f"transaction {txn.id} belongs to account {txn.account_id}")
        if txn.sequence != expected_sequence:
            problems.append(
                f"transaction {txn.id} has sequence {txn.sequence}, expected {expected_sequence}"
            )
        expected_sequence = txn.sequence + 1
        if not txn.amount.is_positive():
            problems.append(f"transaction {txn.id} has non-positive amount {txn.amount}")

        if txn.type is TransactionType.DEPOSIT:
            balance += txn.amount
            deposits += txn.amount
        elif txn.type is TransactionType.WITHDRAWAL:
            debit = txn.amount + txn.fee
            balance -= debit
            withdrawals += debit
        elif txn.type is TransactionType.INTEREST:
            balance += txn.amount
            interest += txn.amount
        elif txn.metadata.fine_action is FineAction.ASSESSED:
            fines += txn.amount
            pending += txn.amount
        elif txn.metadata.fine_action is FineAction.PAID:
            balance -= txn.amount
            pending -= txn.amount
            paid += txn.amount
        else:
            problems.append(f"fine transaction {txn.id} has no fine action")

        if txn.balance != balance:
            problems.append(
                f"transaction {txn.id} records balance {txn.balance}, replay gives {balance}"
            )
        if balance.is_negative():
            problems.append(f"balance goes negative ({balance}) at transaction {txn.id}")
        if pending.is_negative():
            problems.append(f"pending fines go negative ({pending}) at transaction {txn.id}")

    totals = LedgerTotals(
        balance=balance,
        total_deposits=deposits,
        total_withdrawals=withdrawals,
        total_fines=fines,
        fines_pending=pending,
        interest_applied=interest,
        fines_paid=paid,
        last_sequence=expected_sequence - 1,
        count=count,
    )
    return totals, problems


_CHECKED_FIELDS = (
    "balance",
    "total_deposits",
    "total_withdrawals",
    "total_fines",
    "fines_pending",
    "last_sequence",
)


def find_discrepancies(account: Account, transactions: Iterable[Transaction]) -> list[str]:
    totals, problems = replay(account.id, transactions)
    for name in _CHECKED_FIELDS:
        stored = getattr(account, name)
        derived = getattr(totals, name)
        if stored != derived:
            problems.append(f"{name} is {stored}, replay gives {derived}")
    return problems


def verify_account(account: Account, transactions: Iterable[Transaction]) -> LedgerTotals:
    """Raise ``LedgerCorruptionError`` unless the log reproduces the snapshot."""

    history = list(transactions)
    problems = find_discrepancies(account, history)
    if problems:
        raise LedgerCorruptionError(account.id, problems)
    totals, _ = replay(account.id, history)
    return totals


__all__ = ["LedgerTotals", "find_discrepancies", "ordered", "replay", "verify_account"]
