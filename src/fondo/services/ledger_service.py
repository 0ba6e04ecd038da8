"""Savings ledger orchestration: read, roll over, apply, conditional write."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Callable, Optional

from ..domain.entities import (
    Account,
    AccountStatus,
    RequestContext,
    Transaction,
    TransactionPage,
    TransactionRequest,
    TransactionType,
    new_id,
)
from ..domain.errors import (
    AccountNotFoundError,
    LedgerCorruptionError,
    Rejection,
    RejectionReason,
    VersionConflictError,
)
from ..domain.money import MoneyLike
from ..domain.policy import DEFAULT_POLICY, SavingsPolicy
from ..domain.repositories import LedgerStore
from ..logging_config import get_logger
from . import reports
from .applier import apply_transaction
from .invariants import LedgerTotals, find_discrepancies, verify_account
from .monthly_cycle import MonthClosure, month_key, month_start, roll_over

logger = get_logger("services.ledger")

AWAITING_RECONCILIATION = "account is awaiting manual reconciliation"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class TransactionResult:
    """What a caller gets back from ``LedgerService.submit``.

    ``account`` is the stored snapshot after the call: the new one on success,
    the untouched one on rejection.
    """

    account: Account
    transaction: Optional[Transaction] = None
    rejection: Optional[Rejection] = None
    closures: list[MonthClosure] = field(default_factory=list)
    fines: list[Transaction] = field(default_factory=list)
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @property
    def message(self) -> str:
        if self.rejection is not None:
            return self.rejection.message
        return f"{self.transaction.type.value} recorded" if self.transaction else "ok"


class LedgerService:
    """Entry point for every ledger mutation.

    The store and policy are injected; nothing is read from module globals.
    Each mutation reads the latest snapshot, computes the new one purely, and
    writes it conditioned on the version it read. Lost races are retried up to
    ``max_retries`` times before ``CONCURRENT_MODIFICATION`` is returned.
    """

    def __init__(
        self,
        store: LedgerStore,
        policy: SavingsPolicy = DEFAULT_POLICY,
        *,
        tz: tzinfo = timezone.utc,
        max_retries: int = 5,
        verify_before_write: bool = False,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = new_id,
    ):
        self.store = store
        self.policy = policy
        self.tz = tz
        self.max_retries = max_retries
        self.verify_before_write = verify_before_write
        self._clock = clock
        self._id_factory = id_factory

    # ------------------------------------------------------------------ reads

    def get_account(self, account_id: str) -> Account:
        account = self.store.read_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def get_account_for_user(self, user_id: str) -> Optional[Account]:
        return self.store.read_account_by_user(user_id)

    def history(
        self,
        account_id: str,
        *,
        since_month: Optional[str] = None,
        cursor: Optional[int] = None,
        limit: int = 100,
    ) -> TransactionPage:
        since = month_start(since_month, self.tz) if since_month else None
        return self.store.list_transactions(account_id, since=since, cursor=cursor, limit=limit)

    def full_history(self, account_id: str, *, since_month: Optional[str] = None) -> list[Transaction]:
        """Follow pagination cursors until the log is exhausted."""

        items: list[Transaction] = []
        cursor: Optional[int] = None
        while True:
            page = self.history(account_id, since_month=since_month, cursor=cursor, limit=500)
            items.extend(page.items)
            if page.next_cursor is None:
                return items
            cursor = page.next_cursor

    def recent_transactions(self, account_id: str, limit: int = 50) -> list[Transaction]:
        return self.store.list_recent_transactions(account_id, limit=limit)

    def monthly_summary(self, account_id: str, month: Optional[str] = None) -> reports.MonthlySummary:
        account = self.get_account(account_id)
        month = month or month_key(self._clock(), self.tz)
        return reports.monthly_summary(account, self.full_history(account_id), month, tz=self.tz)

    def stats(self, account_id: str) -> reports.SavingsStats:
        account = self.get_account(account_id)
        return reports.savings_stats(
            account, self.full_history(account_id), now=self._clock(), tz=self.tz
        )

    # --------------------------------------------------------------- accounts

    def open_account(self, user_id: str, *, context: RequestContext) -> Account:
        """Return the member's account, creating it on first use."""

        existing = self.get_account_for_user(user_id)
        if existing is not None:
            return existing

        now = self._clock()
        account = Account.open(
            user_id=user_id,
            policy=self.policy,
            now=now,
            period=month_key(now, self.tz),
            account_id=self._id_factory(),
        )
        try:
            created = self.store.create_account(account)
        except VersionConflictError:
            # another caller opened it between our read and write
            existing = self.get_account_for_user(user_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "Savings account opened",
            extra={"account_id": created.id, "user_id": user_id, "actor": context.actor_id},
        )
        return created

    def set_status(
        self, account_id: str, status: AccountStatus | str, *, context: RequestContext
    ) -> Account:
        """Change an account's status after closing any elapsed months."""

        status = AccountStatus(status)
        for attempt in range(self.max_retries + 1):
            stored = self.get_account(account_id)
            self._guard(stored)
            now = self._now(stored)
            rollover = roll_over(
                stored, policy=self.policy, now=now, tz=self.tz, id_factory=self._id_factory
            )
            updated = rollover.account.evolve(status=status, updated_at=now)
            try:
                written = self.store.write_account_and_transactions(
                    stored.id, stored.version, updated, rollover.transactions
                )
            except VersionConflictError:
                self._log_conflict(stored, attempt)
                continue
            logger.info(
                "Account status changed",
                extra={
                    "account_id": account_id,
                    "from_status": stored.status.value,
                    "to_status": status.value,
                    "actor": context.actor_id,
                },
            )
            return written
        raise VersionConflictError(account_id, stored.version)

    # -------------------------------------------------------------- mutations

    def submit(
        self,
        request: TransactionRequest,
        *,
        context: RequestContext,
        cancel: Optional[threading.Event] = None,
    ) -> TransactionResult:
        """Apply a request, rolling the account into the current month first.

        Business-rule failures come back as a rejected result. Setting
        ``cancel`` before the write lands abandons the request; once the write
        is acknowledged the transaction is durable.
        """

        attempts = 0
        while True:
            attempts += 1
            stored = self.get_account(request.account_id)
            self._guard(stored)
            if self.verify_before_write:
                self._verify_or_flag(stored)

            now = self._now(stored)
            rollover = roll_over(
                stored, policy=self.policy, now=now, tz=self.tz, id_factory=self._id_factory
            )
            outcome = apply_transaction(
                rollover.account,
                request,
                policy=self.policy,
                now=now,
                created_by=context.actor_id,
                id_factory=self._id_factory,
            )
            if not outcome.ok:
                logger.info(
                    "Transaction request rejected",
                    extra={
                        "account_id": stored.id,
                        "type": request.type.value,
                        "amount": str(request.amount),
                        "reason": outcome.rejection.reason.value,
                        "actor": context.actor_id,
                    },
                )
                return TransactionResult(
                    account=stored, rejection=outcome.rejection, attempts=attempts
                )

            if cancel is not None and cancel.is_set():
                return TransactionResult(
                    account=stored,
                    rejection=Rejection(RejectionReason.CANCELLED, "Request cancelled before commit"),
                    attempts=attempts,
                )

            records = [*rollover.transactions, outcome.transaction]
            try:
                written = self.store.write_account_and_transactions(
                    stored.id, stored.version, outcome.account, records
                )
            except VersionConflictError:
                self._log_conflict(stored, attempts - 1)
                if attempts > self.max_retries:
                    return TransactionResult(
                        account=stored,
                        rejection=Rejection(
                            RejectionReason.CONCURRENT_MODIFICATION,
                            f"Account changed concurrently; gave up after {attempts} attempts",
                        ),
                        attempts=attempts,
                    )
                continue

            self._log_applied(written, outcome.transaction, rollover.closures, context)
            if outcome.contribution_reached:
                logger.info(
                    "Monthly contribution met",
                    extra={"account_id": written.id, "period": written.period},
                )
            return TransactionResult(
                account=written,
                transaction=outcome.transaction,
                closures=rollover.closures,
                fines=rollover.transactions,
                attempts=attempts,
            )

    def deposit(
        self,
        account_id: str,
        amount: MoneyLike,
        concept: str = "Deposit",
        *,
        context: RequestContext,
        receipt_url: Optional[str] = None,
    ) -> TransactionResult:
        request = TransactionRequest.build(
            account_id, TransactionType.DEPOSIT, amount, concept, receipt_url=receipt_url
        )
        return self.submit(request, context=context)

    def withdraw(
        self,
        account_id: str,
        amount: MoneyLike,
        concept: str = "Withdrawal",
        *,
        context: RequestContext,
        approved_by: Optional[str] = None,
    ) -> TransactionResult:
        request = TransactionRequest.build(
            account_id, TransactionType.WITHDRAWAL, amount, concept, approved_by=approved_by
        )
        return self.submit(request, context=context)

    def pay_fine(
        self,
        account_id: str,
        amount: MoneyLike,
        fine_reason: str,
        concept: str = "Fine payment",
        *,
        context: RequestContext,
    ) -> TransactionResult:
        request = TransactionRequest.build(
            account_id, TransactionType.FINE, amount, concept, fine_reason=fine_reason
        )
        return self.submit(request, context=context)

    def credit_interest(
        self,
        account_id: str,
        amount: MoneyLike,
        concept: str = "Interest",
        *,
        context: RequestContext,
    ) -> TransactionResult:
        request = TransactionRequest.build(account_id, TransactionType.INTEREST, amount, concept)
        return self.submit(request, context=context)

    # ---------------------------------------------------------- month closing

    def close_month(self, account_id: str) -> list[MonthClosure]:
        """Persist the rollover for one account; no-op inside the open month."""

        for attempt in range(self.max_retries + 1):
            stored = self.get_account(account_id)
            self._guard(stored)
            now = self._now(stored)
            rollover = roll_over(
                stored, policy=self.policy, now=now, tz=self.tz, id_factory=self._id_factory
            )
            if not rollover.rolled:
                return []
            try:
                self.store.write_account_and_transactions(
                    stored.id, stored.version, rollover.account, rollover.transactions
                )
            except VersionConflictError:
                self._log_conflict(stored, attempt)
                continue
            for closure in rollover.closures:
                logger.info(
                    "Month closed",
                    extra={
                        "account_id": stored.id,
                        "period": closure.period,
                        "state": closure.state.value,
                        "fine_id": closure.fine.id if closure.fine else None,
                    },
                )
            return rollover.closures
        raise VersionConflictError(account_id, stored.version)

    def close_all_months(self) -> dict[str, list[MonthClosure]]:
        """Close elapsed months on every account.

        Accounts that are awaiting reconciliation or keep losing races are
        logged and skipped so one bad account does not block the rest.
        """

        results: dict[str, list[MonthClosure]] = {}
        for account in self.store.list_accounts():
            try:
                results[account.id] = self.close_month(account.id)
            except (LedgerCorruptionError, VersionConflictError) as exc:
                logger.error(
                    "Month close skipped",
                    extra={"account_id": account.id, "error": str(exc)},
                )
        return results

    # ------------------------------------------------------------ invariants

    def verify(self, account_id: str) -> LedgerTotals:
        """Replay the log; on mismatch flag the account and raise."""

        stored = self.get_account(account_id)
        history = self.full_history(account_id)
        try:
            return verify_account(stored, history)
        except LedgerCorruptionError as exc:
            self._flag(stored, exc.discrepancies)
            raise

    def mark_reconciled(self, account_id: str, *, context: RequestContext) -> Account:
        """Lift the mutation block once the log and snapshot agree again."""

        stored = self.get_account(account_id)
        problems = find_discrepancies(stored, self.full_history(account_id))
        if problems:
            raise LedgerCorruptionError(account_id, problems)
        written = self.store.write_account_and_transactions(
            stored.id,
            stored.version,
            stored.evolve(reconciliation_required=False, updated_at=self._now(stored)),
            [],
        )
        logger.warning(
            "Account reconciled", extra={"account_id": account_id, "actor": context.actor_id}
        )
        return written

    # -------------------------------------------------------------- internals

    def _now(self, account: Account) -> datetime:
        # keep created_at monotonic per account even if the clock steps back
        now = self._clock()
        return account.updated_at if now < account.updated_at else now

    def _guard(self, account: Account) -> None:
        if account.reconciliation_required:
            raise LedgerCorruptionError(account.id, [AWAITING_RECONCILIATION])

    def _verify_or_flag(self, stored: Account) -> None:
        problems = find_discrepancies(stored, self.full_history(stored.id))
        if problems:
            self._flag(stored, problems)
            raise LedgerCorruptionError(stored.id, problems)

    def _flag(self, stored: Account, problems: list[str]) -> None:
        logger.error(
            "Ledger corruption detected",
            extra={"account_id": stored.id, "discrepancies": problems},
        )
        if stored.reconciliation_required:
            return
        try:
            self.store.write_account_and_transactions(
                stored.id, stored.version, stored.evolve(reconciliation_required=True), []
            )
        except VersionConflictError:
            logger.warning(
                "Could not flag account for reconciliation; it changed concurrently",
                extra={"account_id": stored.id},
            )

    def _log_conflict(self, stored: Account, attempt: int) -> None:
        logger.warning(
            "Version conflict on account write",
            extra={"account_id": stored.id, "version": stored.version, "attempt": attempt + 1},
        )

    def _log_applied(
        self,
        account: Account,
        transaction: Transaction,
        closures: list[MonthClosure],
        context: RequestContext,
    ) -> None:
        logger.info(
            "Transaction applied",
            extra={
                "account_id": account.id,
                "transaction_id": transaction.id,
                "type": transaction.type.value,
                "amount": str(transaction.amount),
                "balance": str(account.balance),
                "months_closed": [c.period for c in closures],
                "actor": context.actor_id,
            },
        )


__all__ = ["LedgerService", "TransactionResult"]
