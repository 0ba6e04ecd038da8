"""Concrete repository implementations using SQLModel."""

from .ledger import SQLModelLedgerStore

__all__ = ["SQLModelLedgerStore"]
