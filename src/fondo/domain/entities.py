"""Immutable ledger snapshots, transaction records, and request objects."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from .errors import Rejection
from .money import Money, MoneyLike
from .policy import SavingsPolicy

SYSTEM_ACTOR = "system"


def new_id() -> str:
    """Return a fresh opaque identifier for accounts and transactions."""
    return uuid.uuid4().hex


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    FINE = "fine"
    INTEREST = "interest"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class FineAction(str, Enum):
    """Distinguishes a fine being charged from a fine being paid."""

    ASSESSED = "assessed"
    PAID = "paid"


@dataclass(frozen=True, slots=True)
class TransactionMetadata:
    fee: Optional[Money] = None
    fine_reason: Optional[str] = None
    approved_by: Optional[str] = None
    receipt_url: Optional[str] = None
    fine_action: Optional[FineAction] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize non-empty fields, money as decimal strings."""

        data: dict[str, Any] = {}
        if self.fee is not None:
            data["fee"] = str(self.fee)
        if self.fine_reason:
            data["fine_reason"] = self.fine_reason
        if self.approved_by:
            data["approved_by"] = self.approved_by
        if self.receipt_url:
            data["receipt_url"] = self.receipt_url
        if self.fine_action is not None:
            data["fine_action"] = self.fine_action.value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "TransactionMetadata":
        data = data or {}
        fee = data.get("fee")
        action = data.get("fine_action")
        return cls(
            fee=Money(fee) if fee is not None else None,
            fine_reason=data.get("fine_reason"),
            approved_by=data.get("approved_by"),
            receipt_url=data.get("receipt_url"),
            fine_action=FineAction(action) if action else None,
        )


@dataclass(frozen=True, slots=True)
class Account:
    """Snapshot of a member's savings account.

    Snapshots are never edited in place; the applier and the monthly cycle
    return new ones via ``dataclasses.replace``.
    """

    id: str
    user_id: str
    period: str
    created_at: datetime
    updated_at: datetime
    balance: Money = Money(0)
    total_deposits: Money = Money(0)
    total_withdrawals: Money = Money(0)
    status: AccountStatus = AccountStatus.ACTIVE
    monthly_contribution: Money = Money(0)
    min_monthly_contribution: Money = Money(15000)
    contribution_streak: int = 0
    last_contribution_date: Optional[datetime] = None
    withdrawals_this_month: int = 0
    max_withdrawals_per_month: int = 2
    last_withdrawal_date: Optional[datetime] = None
    total_fines: Money = Money(0)
    fines_pending: Money = Money(0)
    last_transaction_id: Optional[str] = None
    last_sequence: int = 0
    version: int = 0
    reconciliation_required: bool = False

    @classmethod
    def open(
        cls,
        *,
        user_id: str,
        policy: SavingsPolicy,
        now: datetime,
        period: str,
        account_id: Optional[str] = None,
    ) -> "Account":
        """Fresh account: zero balance, active, counters at zero."""

        return cls(
            id=account_id or new_id(),
            user_id=user_id,
            period=period,
            created_at=now,
            updated_at=now,
            min_monthly_contribution=policy.min_monthly_contribution,
            max_withdrawals_per_month=policy.max_withdrawals_per_month,
        )

    def evolve(self, **changes: Any) -> "Account":
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class Transaction:
    """Append-only ledger record; ``balance`` is the post-transaction value."""

    id: str
    account_id: str
    user_id: str
    type: TransactionType
    amount: Money
    balance: Money
    concept: str
    created_at: datetime
    created_by: str
    sequence: int
    metadata: TransactionMetadata = field(default_factory=TransactionMetadata)

    @property
    def fee(self) -> Money:
        return self.metadata.fee or Money.zero()

    @property
    def is_fine_assessment(self) -> bool:
        return (
            self.type is TransactionType.FINE
            and self.metadata.fine_action is FineAction.ASSESSED
        )


@dataclass(frozen=True, slots=True)
class TransactionRequest:
    account_id: str
    type: TransactionType
    amount: Money
    concept: str
    metadata: TransactionMetadata = field(default_factory=TransactionMetadata)

    @classmethod
    def build(
        cls,
        account_id: str,
        type: TransactionType | str,
        amount: MoneyLike,
        concept: str = "",
        **metadata: Any,
    ) -> "TransactionRequest":
        return cls(
            account_id=account_id,
            type=TransactionType(type),
            amount=Money.of(amount),
            concept=concept,
            metadata=TransactionMetadata(**metadata),
        )


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Who is acting on the ledger for one call."""

    actor_id: str
    role: str = "member"

    @classmethod
    def system(cls) -> "RequestContext":
        return cls(actor_id=SYSTEM_ACTOR, role="system")


@dataclass(frozen=True, slots=True)
class ApplyResult:
    """Outcome of applying one request to one snapshot."""

    account: Account
    transaction: Optional[Transaction] = None
    rejection: Optional[Rejection] = None
    contribution_reached: bool = False

    @property
    def ok(self) -> bool:
        return self.rejection is None


@dataclass(frozen=True, slots=True)
class TransactionPage:
    items: list[Transaction]
    next_cursor: Optional[int] = None


__all__ = [
    "Account",
    "AccountStatus",
    "ApplyResult",
    "FineAction",
    "RequestContext",
    "SYSTEM_ACTOR",
    "Transaction",
    "TransactionMetadata",
    "TransactionPage",
    "TransactionRequest",
    "TransactionType",
    "new_id",
]
