"""Ledger store protocol."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from ..entities import Account, Transaction, TransactionPage


class LedgerStore(Protocol):
    """Persistence boundary for savings accounts and their transactions.

    Implementations raise ``VersionConflictError`` when a conditional write
    loses a race and ``StoreError`` when storage is unavailable after retries.
    """

    def read_account(self, account_id: str) -> Optional[Account]:
        """Retrieve an account snapshot by ID."""
        ...

    def read_account_by_user(self, user_id: str) -> Optional[Account]:
        """Retrieve the account owned by a member."""
        ...

    def list_accounts(self) -> list[Account]:
        """List all account snapshots."""
        ...

    def create_account(self, account: Account) -> Account:
        """Persist a brand new account at version 0."""
        ...

    def write_account_and_transactions(
        self,
        account_id: str,
        expected_version: int,
        account: Account,
        transactions: Sequence[Transaction],
    ) -> Account:
        """Atomically replace the snapshot and append transactions."""
        ...

    def write_account_and_transaction(
        self,
        account_id: str,
        expected_version: int,
        account: Account,
        transaction: Transaction,
    ) -> Account:
        """Single-transaction form of ``write_account_and_transactions``."""
        ...

    def list_transactions(
        self,
        account_id: str,
        *,
        since: Optional[datetime] = None,
        cursor: Optional[int] = None,
        limit: int = 100,
    ) -> TransactionPage:
        """Oldest-first page of transactions; pass ``next_cursor`` to continue."""
        ...

    def list_recent_transactions(self, account_id: str, limit: int = 50) -> list[Transaction]:
        """Newest-first transactions for history views."""
        ...
