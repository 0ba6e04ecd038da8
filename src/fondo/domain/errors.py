"""Ledger rejection reasons and exception types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class RejectionReason(str, Enum):
    """Why a transaction request was turned down.

    Rejections are returned to callers inside results; they are never raised.
    """

    ACCOUNT_NOT_ACTIVE = "account_not_active"
    AMOUNT_BELOW_MINIMUM = "amount_below_minimum"
    AMOUNT_ABOVE_MAXIMUM = "amount_above_maximum"
    WITHDRAWAL_LIMIT_EXCEEDED = "withdrawal_limit_exceeded"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    FINE_EXCEEDS_PENDING = "fine_exceeds_pending"
    FINE_REASON_REQUIRED = "fine_reason_required"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class Rejection:
    reason: RejectionReason
    message: str

    def __str__(self) -> str:
        return f"{self.reason.value}: {self.message}"


class LedgerError(Exception):
    """Base class for ledger failures raised as exceptions."""


class AccountNotFoundError(LedgerError):
    def __init__(self, account_id: str) -> None:
        super().__init__(f"Savings account not found: {account_id}")
        self.account_id = account_id


class StoreError(LedgerError):
    """Transient storage failure; retried with backoff by the store adapter."""


class VersionConflictError(LedgerError):
    """The stored account moved past the version the write was computed from."""

    def __init__(self, account_id: str, expected_version: int) -> None:
        super().__init__(
            f"Account {account_id} is no longer at version {expected_version}"
        )
        self.account_id = account_id
        self.expected_version = expected_version


class LedgerCorruptionError(LedgerError):
    """Stored account fields disagree with the transaction log.

    Fatal: never retried, and the account accepts no further mutation until an
    operator reconciles it.
    """

    def __init__(self, account_id: str, discrepancies: Sequence[str]) -> None:
        self.account_id = account_id
        self.discrepancies = list(discrepancies)
        detail = "; ".join(self.discrepancies) or "reconciliation required"
        super().__init__(f"Ledger corruption on account {account_id}: {detail}")


__all__ = [
    "AccountNotFoundError",
    "LedgerCorruptionError",
    "LedgerError",
    "Rejection",
    "RejectionReason",
    "StoreError",
    "VersionConflictError",
]
