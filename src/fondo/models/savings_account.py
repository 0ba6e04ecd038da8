"""SQLModel table for savings account snapshots."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, ClassVar, Optional

from sqlalchemy import BigInteger, DateTime
from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover - import guard for circular dependency
    from .savings_transaction import SavingsTransaction


class SavingsAccount(SQLModel, table=True):
    """One row per member; money columns hold integer hundredths."""

    __tablename__: ClassVar[str] = "savings_account"

    id: str = Field(primary_key=True, max_length=32)
    user_id: str = Field(nullable=False, unique=True, index=True, max_length=128)
    status: str = Field(default="active", nullable=False, max_length=16, index=True)
    period: str = Field(nullable=False, max_length=7, index=True)

    balance: int = Field(default=0, nullable=False, sa_type=BigInteger)
    total_deposits: int = Field(default=0, nullable=False, sa_type=BigInteger)
    total_withdrawals: int = Field(default=0, nullable=False, sa_type=BigInteger)

    monthly_contribution: int = Field(default=0, nullable=False, sa_type=BigInteger)
    min_monthly_contribution: int = Field(default=1_500_000, nullable=False, sa_type=BigInteger)
    contribution_streak: int = Field(default=0, nullable=False)
    last_contribution_date: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )

    withdrawals_this_month: int = Field(default=0, nullable=False)
    max_withdrawals_per_month: int = Field(default=2, nullable=False)
    last_withdrawal_date: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )

    total_fines: int = Field(default=0, nullable=False, sa_type=BigInteger)
    fines_pending: int = Field(default=0, nullable=False, sa_type=BigInteger)

    created_at: datetime = Field(nullable=False, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(nullable=False, sa_type=DateTime(timezone=True))
    last_transaction_id: Optional[str] = Field(default=None, max_length=32)
    last_sequence: int = Field(default=0, nullable=False)

    # optimistic concurrency token, bumped by every committed write
    version: int = Field(default=0, nullable=False)
    reconciliation_required: bool = Field(default=False, nullable=False)

    transactions: list["SavingsTransaction"] = Relationship(
        back_populates="account",
        sa_relationship=relationship("SavingsTransaction", back_populates="account"),
    )
