"""Ledger domain types: money, policy, snapshots and errors."""

from .entities import (
    Account,
    AccountStatus,
    ApplyResult,
    FineAction,
    RequestContext,
    Transaction,
    TransactionMetadata,
    TransactionPage,
    TransactionRequest,
    TransactionType,
)
from .errors import (
    AccountNotFoundError,
    LedgerCorruptionError,
    LedgerError,
    Rejection,
    RejectionReason,
    StoreError,
    VersionConflictError,
)
from .money import Money
from .policy import DEFAULT_POLICY, SavingsPolicy

__all__ = [
    "Account",
    "AccountNotFoundError",
    "AccountStatus",
    "ApplyResult",
    "DEFAULT_POLICY",
    "FineAction",
    "LedgerCorruptionError",
    "LedgerError",
    "Money",
    "Rejection",
    "RejectionReason",
    "RequestContext",
    "SavingsPolicy",
    "StoreError",
    "Transaction",
    "TransactionMetadata",
    "TransactionPage",
    "TransactionRequest",
    "TransactionType",
    "VersionConflictError",
]
