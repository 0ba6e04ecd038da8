"""Repository protocol definitions for domain layer."""

from .ledger import LedgerStore

__all__ = ["LedgerStore"]
