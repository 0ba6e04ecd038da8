"""SQLModel definitions for savings ledger transactions."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import JSON, BigInteger, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover - import guard for circular dependency
    from .savings_account import SavingsAccount


class SavingsTransaction(SQLModel, table=True):
    """Append-only ledger row. Never updated or deleted once written."""

    __tablename__: ClassVar[str] = "savings_transaction"
    __table_args__ = (
        UniqueConstraint("account_id", "sequence", name="uq_savings_transaction_sequence"),
    )

    id: str = Field(primary_key=True, max_length=32)
    account_id: str = Field(foreign_key="savings_account.id", nullable=False, index=True)
    user_id: str = Field(nullable=False, index=True, max_length=128)
    sequence: int = Field(nullable=False)
    type: str = Field(nullable=False, max_length=16, index=True)
    amount: int = Field(nullable=False, sa_type=BigInteger, description="Hundredths, always positive")
    balance: int = Field(nullable=False, sa_type=BigInteger, description="Post-transaction balance")
    concept: str = Field(default="", max_length=255)
    details: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    created_at: datetime = Field(nullable=False, index=True, sa_type=DateTime(timezone=True))
    created_by: str = Field(nullable=False, max_length=128)

    account: "SavingsAccount" = Relationship(
        back_populates="transactions",
        sa_relationship=relationship("SavingsAccount", back_populates="transactions"),
    )
