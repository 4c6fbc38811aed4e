"""Transaction, reversal, collector attribution and online payment log models."""

from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    String, Numeric, Integer, DateTime, Date, ForeignKey, Index, Text, func, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class Transaction(Base):
    """One payment event. Written once with its allocation breakdown."""
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    public_id: Mapped[str] = mapped_column(String(36), unique=True, index=True, nullable=False)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 6), default=1, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_channel_account_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Allocation breakdown
    principal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    interest: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    penalty: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    fees: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    legal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )

    reversal = relationship("TransactionReversal", uselist=False, back_populates="transaction")


class TransactionReversal(Base):
    __tablename__ = "transaction_reversals"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id"), unique=True, nullable=False
    )
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    transaction = relationship("Transaction", back_populates="reversal")


class TransactionUserAssignment(Base):
    """Attribution of a transaction to the collector responsible that month."""
    __tablename__ = "transaction_user_assignments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    transaction = relationship("Transaction")


class OnlinePaymentLog(Base):
    """Every CHECK/PAY call received from a bill-payment provider."""
    __tablename__ = "online_payment_log"
    __table_args__ = (
        # A provider transaction id is applied at most once
        Index(
            "uq_online_payment_applied_txn",
            "provider",
            "txn_id",
            unique=True,
            postgresql_where=text("command = 'PAY' AND result_code = 0"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    txn_id: Mapped[str | None] = mapped_column(String(100), index=True, nullable=True)
    command: Mapped[str] = mapped_column(String(10), nullable=False)
    case_id: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    result_code: Mapped[int] = mapped_column(Integer, nullable=False)
    result_message: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    transaction_id: Mapped[int | None] = mapped_column(ForeignKey("transactions.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
