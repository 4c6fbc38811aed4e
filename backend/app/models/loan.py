"""Loan case, debtor, assignment and status-history models."""

import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    String, Numeric, Integer, Enum, DateTime, ForeignKey, Text, Boolean, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class LoanStatusId(enum.IntEnum):
    """Known loan status ids. Ids are a fixed contract with the status table."""
    NEW = 1
    COMMUNICATION = 2
    AGREEMENT = 3
    PROPOSAL_OFFERED_PHONE = 4
    PROPOSAL_OFFERED_FACEBOOK = 5
    PROPOSAL_OFFERED_OFFICE = 6
    PROPOSAL_OFFERED_VISITED = 7
    UNREACHABLE = 8
    RESTRUCTURED = 9
    HOPELESS_DEAD = 10
    HOPELESS_EXECUTION = 11
    CLOSED_PAID = 12
    CLOSED_OTHER = 13
    AGREEMENT_CANCELED = 14
    REFUSE_TO_PAY = 17
    PROMISED_TO_PAY = 26
    CLOSED_RETURNING_COURT_FEE = 27
    FAILED_PROMISE = 41


CLOSED_STATUS_IDS = frozenset({
    LoanStatusId.CLOSED_PAID,
    LoanStatusId.CLOSED_OTHER,
    LoanStatusId.CLOSED_RETURNING_COURT_FEE,
})


def status_name(status_id: int) -> str:
    """Status label used in reports; unknown ids become ``UNKNOWN_<id>``."""
    try:
        return LoanStatusId(status_id).name
    except ValueError:
        return f"UNKNOWN_{status_id}"


class AssignmentRole(str, enum.Enum):
    COLLECTOR = "collector"
    LAWYER = "lawyer"


class Debtor(Base):
    __tablename__ = "debtors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    id_number: Mapped[str] = mapped_column(String(30), index=True, nullable=False)
    status_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    loans = relationship("Loan", back_populates="debtor")


class DebtorStatusHistory(Base):
    __tablename__ = "debtor_status_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    debtor_id: Mapped[int] = mapped_column(ForeignKey("debtors.id"), nullable=False, index=True)
    old_status_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_status_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Loan(Base):
    __tablename__ = "loans"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    case_id: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    debtor_id: Mapped[int] = mapped_column(ForeignKey("debtors.id"), nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), default="GEL", nullable=False)

    # Balances at origination / import
    principal: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    interest: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    penalty: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    other_fee: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    legal_charges: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    total_debt: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    status_id: Mapped[int] = mapped_column(
        Integer, default=LoanStatusId.NEW, nullable=False, index=True
    )
    act_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    debtor = relationship("Debtor", back_populates="loans")
    assignments = relationship("LoanAssignment", back_populates="loan")


class LoanStatusHistory(Base):
    __tablename__ = "loan_status_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    old_status_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_status_id: Mapped[int] = mapped_column(Integer, nullable=False)
    changed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("transactions.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LoanAssignment(Base):
    __tablename__ = "loan_assignments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    role: Mapped[AssignmentRole] = mapped_column(
        Enum(AssignmentRole), default=AssignmentRole.COLLECTOR, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    unassigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    loan = relationship("Loan", back_populates="assignments")
