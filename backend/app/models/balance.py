"""Balance snapshot (loan_remaining) and append-only balance history."""

import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Numeric, Integer, Enum, DateTime, ForeignKey, Index, func, text
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class BalanceSource(str, enum.Enum):
    PAYMENT = "PAYMENT"
    CHARGE = "CHARGE"
    REVERSAL = "REVERSAL"
    SETTLEMENT = "SETTLEMENT"


class LoanRemaining(Base):
    """Point-in-time outstanding balance of a loan.

    Never updated in place except for ``deleted_at``: each allocation marks
    the active row superseded and inserts a new one.
    """
    __tablename__ = "loan_remaining"
    __table_args__ = (
        # At most one active snapshot per loan
        Index(
            "uq_loan_remaining_active",
            "loan_id",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    principal: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    interest: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    penalty: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    other_fee: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    legal_charges: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    current_debt: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    agreement_min: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LoanBalanceHistory(Base):
    __tablename__ = "loan_balance_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    source_type: Mapped[BalanceSource] = mapped_column(Enum(BalanceSource), nullable=False)
    # Transaction id for PAYMENT/REVERSAL, charge id for CHARGE
    source_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    principal: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    interest: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    penalty: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    other_fee: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    legal_charges: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    current_debt: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
