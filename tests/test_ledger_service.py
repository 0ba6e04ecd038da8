"""Tests for the ledger service: rollover, concurrency, cancellation, reconciliation."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from fondo.domain import (
    DEFAULT_POLICY,
    AccountNotFoundError,
    AccountStatus,
    FineAction,
    LedgerCorruptionError,
    Money,
    RejectionReason,
    TransactionRequest,
    TransactionType,
)
from fondo.services.ledger_service import LedgerService
from fondo.services.monthly_cycle import ContributionState

MAY = datetime(2024, 5, 5, 10, 0, tzinfo=timezone.utc)


class RacingStore:
    """Store wrapper that lets a competing write land just before ours."""

    def __init__(self, inner, interloper, races: int = 1):
        self.inner = inner
        self.interloper = interloper
        self.races = races
        self.writes = 0

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def write_account_and_transactions(self, account_id, expected_version, account, transactions):
        self.writes += 1
        if self.races > 0:
            self.races -= 1
            self.interloper()
        return self.inner.write_account_and_transactions(
            account_id, expected_version, account, transactions
        )


@pytest.fixture
def funded(ledger, opened, member):
    """Account holding 100000 from a single March deposit."""

    result = ledger.deposit(opened.id, 100000, context=member)
    assert result.ok
    return result.account


class TestOpenAccount:
    def test_new_account_defaults(self, opened):
        assert opened.balance == Money(0)
        assert opened.status is AccountStatus.ACTIVE
        assert opened.period == "2024-03"
        assert opened.min_monthly_contribution == DEFAULT_POLICY.min_monthly_contribution
        assert opened.max_withdrawals_per_month == 2
        assert opened.version == 0

    def test_open_is_idempotent(self, ledger, opened, member):
        assert ledger.open_account("user-1", context=member).id == opened.id

    def test_open_race_returns_winner(self, store, clock, id_factory, member):
        winner = LedgerService(store, clock=clock, id_factory=id_factory)

        class LateReader:
            def __init__(self):
                self.first = True

            def __getattr__(self, name):
                return getattr(store, name)

            def read_account_by_user(self, user_id):
                if self.first:
                    self.first = False
                    winner.open_account(user_id, context=member)
                    return None
                return store.read_account_by_user(user_id)

        loser = LedgerService(LateReader(), clock=clock, id_factory=id_factory)
        account = loser.open_account("user-9", context=member)
        assert account.id == store.read_account_by_user("user-9").id
        assert len(store.list_accounts()) == 1

    def test_unknown_account(self, ledger):
        with pytest.raises(AccountNotFoundError):
            ledger.get_account("nope")

    def test_account_for_user(self, ledger, opened):
        assert ledger.get_account_for_user("user-1") == opened
        assert ledger.get_account_for_user("user-2") is None


class TestSubmit:
    def test_deposit_then_withdraw(self, ledger, funded, member):
        ledger.deposit(funded.id, 20000, context=member)
        result = ledger.withdraw(funded.id, 50000, context=member)

        assert result.ok
        assert result.account.balance == Money(69000)
        assert result.transaction.fee == Money(1000)
        assert result.account.withdrawals_this_month == 1
        assert result.message == "withdrawal recorded"
        assert ledger.get_account(funded.id) == result.account

    def test_rejection_leaves_store_untouched(self, ledger, funded, member):
        result = ledger.withdraw(funded.id, 200000, context=member)

        assert not result.ok
        assert result.rejection.reason is RejectionReason.INSUFFICIENT_FUNDS
        assert result.account == funded
        assert ledger.get_account(funded.id).version == funded.version

    def test_deposit_above_storage_ceiling_is_rejected(self, ledger, opened, member):
        result = ledger.deposit(opened.id, "100000000000000000", context=member)

        assert result.rejection.reason is RejectionReason.AMOUNT_ABOVE_MAXIMUM
        stored = ledger.get_account(opened.id)
        assert stored.version == opened.version
        assert stored.balance == Money(0)
        assert ledger.full_history(opened.id) == []

    def test_amount_beyond_decimal_precision_is_a_value_error(self, opened):
        with pytest.raises(ValueError):
            TransactionRequest.build(opened.id, TransactionType.DEPOSIT, "1e30")

    def test_created_by_comes_from_context(self, ledger, funded, admin):
        result = ledger.credit_interest(funded.id, 100, context=admin)
        assert result.transaction.created_by == "admin-1"

    def test_pay_fine_requires_pending(self, ledger, funded, member):
        result = ledger.pay_fine(funded.id, 1000, "nothing owed", context=member)
        assert result.rejection.reason is RejectionReason.FINE_EXCEEDS_PENDING

    def test_clock_going_backwards_keeps_order(self, ledger, funded, member, clock):
        clock.advance(hours=-5)
        result = ledger.deposit(funded.id, 1000, context=member)
        assert result.transaction.created_at == funded.updated_at
        ledger.verify(funded.id)


class TestRollover:
    def test_lazy_rollover_on_next_request(self, ledger, opened, member, clock):
        ledger.deposit(opened.id, 20000, context=member)
        clock.set(MAY)
        result = ledger.deposit(opened.id, 5000, context=member)

        assert result.ok
        assert [c.period for c in result.closures] == ["2024-03", "2024-04"]
        assert [c.state for c in result.closures] == [ContributionState.MET, ContributionState.MISSED]
        [fine] = result.fines
        assert fine.metadata.fine_action is FineAction.ASSESSED
        assert fine.is_fine_assessment
        assert not result.transaction.is_fine_assessment
        account = result.account
        assert account.period == "2024-05"
        assert account.contribution_streak == 0
        assert account.fines_pending == Money(10000)
        assert account.monthly_contribution == Money(5000)
        assert [t.sequence for t in ledger.full_history(opened.id)] == [1, 2, 3]
        ledger.verify(opened.id)

    def test_fine_then_settle(self, ledger, funded, member, clock):
        clock.set(datetime(2024, 4, 2, tzinfo=timezone.utc))
        ledger.close_month(funded.id)
        # March had 100000 deposited, so it was met; April is still open
        assert ledger.get_account(funded.id).fines_pending == Money(0)

        clock.set(MAY)
        result = ledger.pay_fine(funded.id, 10000, "April missed", context=member)
        assert result.ok
        assert result.account.fines_pending == Money(0)
        assert result.account.total_fines == Money(10000)
        assert result.account.balance == Money(90000)
        assert not result.transaction.is_fine_assessment
        assert [t.is_fine_assessment for t in ledger.full_history(funded.id)] == [
            False,
            True,
            False,
        ]

    def test_rejected_request_does_not_persist_rollover(self, ledger, opened, member, clock):
        clock.set(MAY)
        result = ledger.withdraw(opened.id, 10, context=member)

        assert result.rejection.reason is RejectionReason.AMOUNT_BELOW_MINIMUM
        assert ledger.get_account(opened.id).period == "2024-03"

    def test_close_month_persists_and_is_idempotent(self, ledger, opened, clock):
        clock.set(MAY)
        closures = ledger.close_month(opened.id)

        assert [c.state for c in closures] == [ContributionState.MISSED, ContributionState.MISSED]
        assert ledger.get_account(opened.id).fines_pending == Money(20000)
        assert ledger.close_month(opened.id) == []
        assert all(t.created_by == "system" for t in ledger.full_history(opened.id))

    def test_close_all_skips_flagged_accounts(self, ledger, opened, member, store, clock):
        other = ledger.open_account("user-2", context=member)
        stored = store.read_account(other.id)
        store.write_account_and_transactions(
            other.id, stored.version, stored.evolve(reconciliation_required=True), []
        )

        clock.set(MAY)
        results = ledger.close_all_months()

        assert list(results) == [opened.id]
        assert ledger.get_account(other.id).period == "2024-03"


class TestConcurrency:
    def _interloper(self, store, clock, id_factory, member, account_id):
        rival = LedgerService(store, clock=clock, id_factory=id_factory)
        return lambda: rival.deposit(account_id, 1000, context=member)

    def test_conflict_without_retries(self, store, clock, id_factory, funded, member):
        racing = RacingStore(
            store, self._interloper(store, clock, id_factory, member, funded.id)
        )
        service = LedgerService(racing, clock=clock, id_factory=id_factory, max_retries=0)

        result = service.deposit(funded.id, 5000, context=member)

        assert result.rejection.reason is RejectionReason.CONCURRENT_MODIFICATION
        assert result.attempts == 1
        assert store.read_account(funded.id).balance == Money(101000)

    def test_conflict_is_retried_against_new_version(self, store, clock, id_factory, funded, member):
        racing = RacingStore(
            store, self._interloper(store, clock, id_factory, member, funded.id)
        )
        service = LedgerService(racing, clock=clock, id_factory=id_factory, max_retries=5)

        result = service.deposit(funded.id, 5000, context=member)

        assert result.ok
        assert result.attempts == 2
        assert result.account.balance == Money(106000)
        assert result.transaction.sequence == 3
        service.verify(funded.id)

    def test_retries_are_bounded(self, store, clock, id_factory, funded, member):
        racing = RacingStore(
            store, self._interloper(store, clock, id_factory, member, funded.id), races=10
        )
        service = LedgerService(racing, clock=clock, id_factory=id_factory, max_retries=2)

        result = service.deposit(funded.id, 5000, context=member)

        assert result.rejection.reason is RejectionReason.CONCURRENT_MODIFICATION
        assert result.attempts == 3

    def test_threads_never_lose_a_deposit(self, store, clock, id_factory, funded, member):
        service = LedgerService(store, clock=clock, id_factory=id_factory, max_retries=50)
        results = []

        def worker():
            results.append(service.deposit(funded.id, 1000, context=member))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        applied = [r for r in results if r.ok]
        assert store.read_account(funded.id).balance == Money(100000) + 1000 * len(applied)
        service.verify(funded.id)


class TestCancellation:
    def test_cancelled_request_writes_nothing(self, ledger, funded, member):
        cancel = threading.Event()
        cancel.set()
        request = TransactionRequest.build(funded.id, TransactionType.DEPOSIT, 5000, "Deposit")

        result = ledger.submit(request, context=member, cancel=cancel)

        assert result.rejection.reason is RejectionReason.CANCELLED
        assert ledger.get_account(funded.id).version == funded.version

    def test_unset_event_does_not_interfere(self, ledger, funded, member):
        request = TransactionRequest.build(funded.id, TransactionType.DEPOSIT, 5000, "Deposit")
        assert ledger.submit(request, context=member, cancel=threading.Event()).ok


class TestStatus:
    def test_suspend_blocks_deposits(self, ledger, funded, member, admin):
        ledger.set_status(funded.id, "suspended", context=admin)
        result = ledger.deposit(funded.id, 5000, context=member)
        assert result.rejection.reason is RejectionReason.ACCOUNT_NOT_ACTIVE

    def test_status_change_closes_elapsed_months_first(self, ledger, opened, admin, clock):
        clock.set(datetime(2024, 4, 3, tzinfo=timezone.utc))
        account = ledger.set_status(opened.id, AccountStatus.INACTIVE, context=admin)

        assert account.status is AccountStatus.INACTIVE
        assert account.fines_pending == Money(10000)

        clock.set(MAY)
        assert ledger.close_month(opened.id) == []
        assert ledger.get_account(opened.id).fines_pending == Money(10000)


class TestReconciliation:
    def _corrupt(self, store, account_id):
        stored = store.read_account(account_id)
        return store.write_account_and_transactions(
            account_id, stored.version, stored.evolve(balance=stored.balance + 1), []
        )

    def test_verify_flags_and_blocks(self, ledger, funded, member, store):
        self._corrupt(store, funded.id)

        with pytest.raises(LedgerCorruptionError):
            ledger.verify(funded.id)
        assert ledger.get_account(funded.id).reconciliation_required

        with pytest.raises(LedgerCorruptionError):
            ledger.deposit(funded.id, 5000, context=member)

    def test_mark_reconciled_requires_clean_log(self, ledger, funded, member, admin, store):
        corrupted = self._corrupt(store, funded.id)
        with pytest.raises(LedgerCorruptionError):
            ledger.verify(funded.id)
        with pytest.raises(LedgerCorruptionError):
            ledger.mark_reconciled(funded.id, context=admin)

        stored = store.read_account(funded.id)
        store.write_account_and_transactions(
            funded.id, stored.version, stored.evolve(balance=corrupted.balance - 1), []
        )
        account = ledger.mark_reconciled(funded.id, context=admin)

        assert not account.reconciliation_required
        assert ledger.deposit(funded.id, 5000, context=member).ok

    def test_verify_before_write(self, store, clock, id_factory, funded, member):
        self._corrupt(store, funded.id)
        service = LedgerService(
            store, clock=clock, id_factory=id_factory, verify_before_write=True
        )

        with pytest.raises(LedgerCorruptionError):
            service.deposit(funded.id, 5000, context=member)
        assert store.read_account(funded.id).reconciliation_required
