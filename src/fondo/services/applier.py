"""Transaction applier: validate one request against one account snapshot.

``apply_transaction`` is pure. It never raises for business-rule failures and
never mutates its input; a rejection returns the original snapshot.

Validation order:

1. status (active; fine settlement also allowed while suspended)
2. type-specific amount floor and the storage ceiling
3. withdrawal limit and funds (amount plus fee)
4. fine reason and pending balance for settlements
5. running totals that would no longer fit in storage
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from ..domain.entities import (
    Account,
    AccountStatus,
    ApplyResult,
    FineAction,
    Transaction,
    TransactionMetadata,
    TransactionRequest,
    TransactionType,
    new_id,
)
from ..domain.errors import Rejection, RejectionReason
from ..domain.money import MAX_AMOUNT, Money
from ..domain.policy import SavingsPolicy


def _reject(account: Account, reason: RejectionReason, message: str) -> ApplyResult:
    return ApplyResult(account=account, rejection=Rejection(reason=reason, message=message))


def _check_status(account: Account, request: TransactionRequest) -> Optional[Rejection]:
    if account.status is AccountStatus.ACTIVE:
        return None
    if account.status is AccountStatus.SUSPENDED and request.type is TransactionType.FINE:
        return None
    return Rejection(
        RejectionReason.ACCOUNT_NOT_ACTIVE,
        f"Account is {account.status.value}; {request.type.value} requests are not accepted",
    )


def _check_amount(request: TransactionRequest, policy: SavingsPolicy) -> Optional[Rejection]:
    amount = request.amount
    if request.type is TransactionType.DEPOSIT:
        floor = policy.min_deposit_amount
    elif request.type is TransactionType.WITHDRAWAL:
        floor = policy.min_withdrawal_amount
    else:
        floor = None

    if not amount.is_positive():
        return Rejection(RejectionReason.AMOUNT_BELOW_MINIMUM, "Amount must be positive")
    if floor is not None and amount < floor:
        return Rejection(
            RejectionReason.AMOUNT_BELOW_MINIMUM,
            f"Minimum {request.type.value} amount is {floor}",
        )
    if amount > MAX_AMOUNT:
        return Rejection(RejectionReason.AMOUNT_ABOVE_MAXIMUM, f"Maximum amount is {MAX_AMOUNT}")
    return None


def _check_totals(account: Account) -> Optional[Rejection]:
    for name in ("balance", "total_deposits", "total_withdrawals", "monthly_contribution"):
        if getattr(account, name) > MAX_AMOUNT:
            return Rejection(
                RejectionReason.AMOUNT_ABOVE_MAXIMUM,
                f"{name} would exceed {MAX_AMOUNT}",
            )
    return None


def _record(
    account: Account,
    request: TransactionRequest,
    *,
    balance: Money,
    metadata: TransactionMetadata,
    now: datetime,
    created_by: str,
    id_factory: Callable[[], str],
) -> Transaction:
    return Transaction(
        id=id_factory(),
        account_id=account.id,
        user_id=account.user_id,
        type=request.type,
        amount=request.amount,
        balance=balance,
        concept=request.concept,
        created_at=now,
        created_by=created_by,
        sequence=account.last_sequence + 1,
        metadata=metadata,
    )


def _commit(account: Account, transaction: Transaction, now: datetime, **changes) -> Account:
    return account.evolve(
        balance=transaction.balance,
        last_transaction_id=transaction.id,
        last_sequence=transaction.sequence,
        updated_at=now,
        **changes,
    )


def apply_transaction(
    account: Account,
    request: TransactionRequest,
    *,
    policy: SavingsPolicy,
    now: datetime,
    created_by: str,
    id_factory: Callable[[], str] = new_id,
) -> ApplyResult:
    """Apply ``request`` to ``account`` and return the outcome."""

    result = _apply(
        account, request, policy=policy, now=now, created_by=created_by, id_factory=id_factory
    )
    if result.ok:
        rejection = _check_totals(result.account)
        if rejection is not None:
            return ApplyResult(account=account, rejection=rejection)
    return result


def _apply(
    account: Account,
    request: TransactionRequest,
    *,
    policy: SavingsPolicy,
    now: datetime,
    created_by: str,
    id_factory: Callable[[], str],
) -> ApplyResult:
    rejection = _check_status(account, request) or _check_amount(request, policy)
    if rejection is not None:
        return ApplyResult(account=account, rejection=rejection)

    amount = request.amount
    record = dict(now=now, created_by=created_by, id_factory=id_factory)

    if request.type is TransactionType.WITHDRAWAL:
        if account.withdrawals_this_month >= account.max_withdrawals_per_month:
            return _reject(
                account,
                RejectionReason.WITHDRAWAL_LIMIT_EXCEEDED,
                f"Limit of {account.max_withdrawals_per_month} withdrawals per month reached",
            )
        fee = policy.withdrawal_fee(amount)
        debit = amount + fee
        if account.balance - debit < Money.zero():
            return _reject(
                account,
                RejectionReason.INSUFFICIENT_FUNDS,
                f"Balance {account.balance} does not cover {amount} plus fee {fee}",
            )
        metadata = replace(
            request.metadata,
            fee=fee,
            approved_by=request.metadata.approved_by or created_by,
            fine_reason=None,
            fine_action=None,
        )
        txn = _record(account, request, balance=account.balance - debit, metadata=metadata, **record)
        updated = _commit(
            account,
            txn,
            now,
            total_withdrawals=account.total_withdrawals + debit,
            withdrawals_this_month=account.withdrawals_this_month + 1,
            last_withdrawal_date=now,
        )
        return ApplyResult(account=updated, transaction=txn)

    if request.type is TransactionType.DEPOSIT:
        metadata = replace(request.metadata, fee=None, fine_reason=None, fine_action=None)
        txn = _record(account, request, balance=account.balance + amount, metadata=metadata, **record)
        contribution = account.monthly_contribution + amount
        reached = (
            account.monthly_contribution < account.min_monthly_contribution
            and contribution >= account.min_monthly_contribution
        )
        updated = _commit(
            account,
            txn,
            now,
            total_deposits=account.total_deposits + amount,
            monthly_contribution=contribution,
            last_contribution_date=now,
        )
        return ApplyResult(account=updated, transaction=txn, contribution_reached=reached)

    if request.type is TransactionType.FINE:
        if not (request.metadata.fine_reason or "").strip():
            return _reject(
                account, RejectionReason.FINE_REASON_REQUIRED, "Fine payments need a fine reason"
            )
        if amount > account.fines_pending:
            return _reject(
                account,
                RejectionReason.FINE_EXCEEDS_PENDING,
                f"Payment {amount} exceeds pending fines {account.fines_pending}",
            )
        if amount > account.balance:
            return _reject(
                account,
                RejectionReason.INSUFFICIENT_FUNDS,
                f"Balance {account.balance} does not cover fine payment {amount}",
            )
        metadata = replace(request.metadata, fee=None, fine_action=FineAction.PAID)
        txn = _record(account, request, balance=account.balance - amount, metadata=metadata, **record)
        updated = _commit(account, txn, now, fines_pending=account.fines_pending - amount)
        return ApplyResult(account=updated, transaction=txn)

    # interest: credit only, never counted as a deposit or contribution
    metadata = replace(request.metadata, fee=None, fine_reason=None, fine_action=None)
    txn = _record(account, request, balance=account.balance + amount, metadata=metadata, **record)
    return ApplyResult(account=_commit(account, txn, now), transaction=txn)


__all__ = ["apply_transaction"]
