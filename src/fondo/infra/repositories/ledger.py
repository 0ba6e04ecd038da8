"""SQLModel implementation of the ledger store."""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from ...domain.entities import (
    Account,
    AccountStatus,
    Transaction,
    TransactionMetadata,
    TransactionPage,
    TransactionType,
)
from ...domain.errors import LedgerError, StoreError, VersionConflictError
from ...domain.money import Money
from ...logging_config import get_logger
from ...models.savings_account import SavingsAccount
from ...models.savings_transaction import SavingsTransaction

logger = get_logger("infra.ledger_store")

T = TypeVar("T")

_MONEY_FIELDS = (
    "balance",
    "total_deposits",
    "total_withdrawals",
    "monthly_contribution",
    "min_monthly_contribution",
    "total_fines",
    "fines_pending",
)
_PLAIN_FIELDS = (
    "user_id",
    "period",
    "contribution_streak",
    "last_contribution_date",
    "withdrawals_this_month",
    "max_withdrawals_per_month",
    "last_withdrawal_date",
    "created_at",
    "updated_at",
    "last_transaction_id",
    "last_sequence",
    "reconciliation_required",
)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _account_values(account: Account) -> dict:
    values = {name: getattr(account, name) for name in _PLAIN_FIELDS}
    for name in ("last_contribution_date", "last_withdrawal_date", "created_at", "updated_at"):
        values[name] = _utc(values[name])
    values.update({name: getattr(account, name).minor_units for name in _MONEY_FIELDS})
    values["status"] = account.status.value
    return values


def _to_account(row: SavingsAccount) -> Account:
    return Account(
        id=row.id,
        user_id=row.user_id,
        period=row.period,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
        status=AccountStatus(row.status),
        contribution_streak=row.contribution_streak,
        last_contribution_date=_utc(row.last_contribution_date),
        withdrawals_this_month=row.withdrawals_this_month,
        max_withdrawals_per_month=row.max_withdrawals_per_month,
        last_withdrawal_date=_utc(row.last_withdrawal_date),
        last_transaction_id=row.last_transaction_id,
        last_sequence=row.last_sequence,
        version=row.version,
        reconciliation_required=row.reconciliation_required,
        **{name: Money.from_minor_units(getattr(row, name)) for name in _MONEY_FIELDS},
    )


def _to_row(transaction: Transaction) -> SavingsTransaction:
    return SavingsTransaction(
        id=transaction.id,
        account_id=transaction.account_id,
        user_id=transaction.user_id,
        sequence=transaction.sequence,
        type=transaction.type.value,
        amount=transaction.amount.minor_units,
        balance=transaction.balance.minor_units,
        concept=transaction.concept,
        details=transaction.metadata.to_dict(),
        created_at=_utc(transaction.created_at),
        created_by=transaction.created_by,
    )


def _to_transaction(row: SavingsTransaction) -> Transaction:
    return Transaction(
        id=row.id,
        account_id=row.account_id,
        user_id=row.user_id,
        type=TransactionType(row.type),
        amount=Money.from_minor_units(row.amount),
        balance=Money.from_minor_units(row.balance),
        concept=row.concept,
        created_at=_utc(row.created_at),
        created_by=row.created_by,
        sequence=row.sequence,
        metadata=TransactionMetadata.from_dict(row.details),
    )


class SQLModelLedgerStore:
    """SQLModel-based ledger store.

    Writes are conditional on the account version read by the caller, so two
    writers starting from the same snapshot cannot both commit. Transient
    database errors are retried with exponential backoff before surfacing as
    ``StoreError``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        retries: int = 3,
        backoff: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize with a session factory and retry policy."""
        self.session_factory = session_factory
        self.retries = retries
        self.backoff = backoff
        self._sleep = sleep

    def _run(self, operation: str, fn: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return fn()
            except LedgerError:
                raise
            except OverflowError as exc:
                logger.error("Ledger store value out of range", extra={"operation": operation})
                raise StoreError(f"{operation} failed: {exc}") from exc
            except SQLAlchemyError as exc:
                if attempt >= self.retries:
                    logger.error(
                        "Ledger store operation failed",
                        extra={"operation": operation, "attempts": attempt + 1},
                        exc_info=True,
                    )
                    raise StoreError(f"{operation} failed: {exc}") from exc
                delay = self.backoff * (2**attempt)
                logger.warning(
                    "Retrying ledger store operation",
                    extra={"operation": operation, "attempt": attempt + 1, "delay": delay},
                )
                self._sleep(delay)
                attempt += 1

    def read_account(self, account_id: str) -> Optional[Account]:
        """Retrieve an account snapshot by ID."""

        def _read() -> Optional[Account]:
            with self.session_factory() as session:
                row = session.get(SavingsAccount, account_id)
                return _to_account(row) if row else None

        return self._run("read_account", _read)

    def read_account_by_user(self, user_id: str) -> Optional[Account]:
        """Retrieve the account owned by a member."""

        def _read() -> Optional[Account]:
            with self.session_factory() as session:
                row = session.exec(
                    select(SavingsAccount).where(SavingsAccount.user_id == user_id)
                ).first()
                return _to_account(row) if row else None

        return self._run("read_account_by_user", _read)

    def list_accounts(self) -> list[Account]:
        """List all account snapshots, oldest first."""

        def _list() -> list[Account]:
            with self.session_factory() as session:
                statement = select(SavingsAccount).order_by(
                    SavingsAccount.created_at, SavingsAccount.id  # type: ignore
                )
                return [_to_account(row) for row in session.exec(statement).all()]

        return self._run("list_accounts", _list)

    def create_account(self, account: Account) -> Account:
        """Persist a brand new account at version 0."""

        def _create() -> Account:
            try:
                with self.session_factory() as session:
                    session.add(
                        SavingsAccount(id=account.id, version=0, **_account_values(account))
                    )
            except IntegrityError as exc:
                raise VersionConflictError(account.id, 0) from exc
            return replace(account, version=0)

        return self._run("create_account", _create)

    def write_account_and_transactions(
        self,
        account_id: str,
        expected_version: int,
        account: Account,
        transactions: Sequence[Transaction],
    ) -> Account:
        """Atomically replace the snapshot and append transactions.

        Raises ``VersionConflictError`` when the stored version is no longer
        ``expected_version``; nothing is written in that case.
        """

        if account.id != account_id:
            raise ValueError(f"Snapshot {account.id} cannot be written as {account_id}")
        for txn in transactions:
            if txn.account_id != account_id:
                raise ValueError(f"Transaction {txn.id} does not belong to {account_id}")

        def _write() -> Account:
            try:
                with self.session_factory() as session:
                    result = session.connection().execute(
                        update(SavingsAccount)
                        .where(SavingsAccount.id == account_id)
                        .where(SavingsAccount.version == expected_version)
                        .values(version=expected_version + 1, **_account_values(account))
                    )
                    if result.rowcount != 1:
                        raise VersionConflictError(account_id, expected_version)
                    for txn in transactions:
                        session.add(_to_row(txn))
                    session.flush()
            except IntegrityError as exc:
                # duplicate (account_id, sequence): another writer got there first
                raise VersionConflictError(account_id, expected_version) from exc
            return replace(account, version=expected_version + 1)

        return self._run("write_account_and_transactions", _write)

    def write_account_and_transaction(
        self,
        account_id: str,
        expected_version: int,
        account: Account,
        transaction: Transaction,
    ) -> Account:
        """Single-transaction form of ``write_account_and_transactions``."""
        return self.write_account_and_transactions(
            account_id, expected_version, account, [transaction]
        )

    def list_transactions(
        self,
        account_id: str,
        *,
        since: Optional[datetime] = None,
        cursor: Optional[int] = None,
        limit: int = 100,
    ) -> TransactionPage:
        """Oldest-first page of transactions; pass ``next_cursor`` to continue."""

        limit = max(1, limit)

        def _list() -> TransactionPage:
            with self.session_factory() as session:
                statement = select(SavingsTransaction).where(
                    SavingsTransaction.account_id == account_id
                )
                if since is not None:
                    statement = statement.where(SavingsTransaction.created_at >= _utc(since))
                if cursor is not None:
                    statement = statement.where(SavingsTransaction.sequence > cursor)
                statement = statement.order_by(SavingsTransaction.sequence).limit(limit + 1)  # type: ignore
                rows = list(session.exec(statement).all())
                items = [_to_transaction(row) for row in rows[:limit]]

            next_cursor = items[-1].sequence if len(rows) > limit else None
            return TransactionPage(items=items, next_cursor=next_cursor)

        return self._run("list_transactions", _list)

    def list_recent_transactions(self, account_id: str, limit: int = 50) -> list[Transaction]:
        """Newest-first transactions for history views."""

        def _list() -> list[Transaction]:
            with self.session_factory() as session:
                statement = (
                    select(SavingsTransaction)
                    .where(SavingsTransaction.account_id == account_id)
                    .order_by(SavingsTransaction.sequence.desc())  # type: ignore
                    .limit(max(1, limit))
                )
                return [_to_transaction(row) for row in session.exec(statement).all()]

        return self._run("list_recent_transactions", _list)


__all__ = ["SQLModelLedgerStore"]
