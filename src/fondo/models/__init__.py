"""SQLModel table exports."""

from .savings_account import SavingsAccount
from .savings_transaction import SavingsTransaction

__all__ = ["SavingsAccount", "SavingsTransaction"]
