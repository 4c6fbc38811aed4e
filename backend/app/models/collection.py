"""Collector activity records: SMS, marks, comments, committee requests, charges, legal stages."""

import enum
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    String, Numeric, Integer, Enum, DateTime, Date, ForeignKey, Text, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


# Legal-stage ids counted by the plan report
COURT_STAGE_ID = 61
EXECUTION_STAGE_ID = 62


class ChargeClass(str, enum.Enum):
    LEGAL = "legal"
    OTHER = "other"


# Court and execution fees are legal charges; other, post and registry fees are other fees
LEGAL_CHARGE_TYPE_IDS = frozenset({1, 2})
OTHER_CHARGE_TYPE_IDS = frozenset({3, 4, 5})


def classify_charge_type(charge_type_id: int) -> ChargeClass | None:
    if charge_type_id in LEGAL_CHARGE_TYPE_IDS:
        return ChargeClass.LEGAL
    if charge_type_id in OTHER_CHARGE_TYPE_IDS:
        return ChargeClass.OTHER
    return None


class SmsStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


class CommitteeStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SmsHistory(Base):
    __tablename__ = "sms_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[SmsStatus] = mapped_column(Enum(SmsStatus), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LoanMark(Base):
    __tablename__ = "loan_marks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    mark_id: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LoanComment(Base):
    __tablename__ = "loan_comments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CommitteeRequest(Base):
    """Request for approval of discounted settlement terms."""
    __tablename__ = "committee_requests"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    requester_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    request_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    agreement_min_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    status: Mapped[CommitteeStatus] = mapped_column(
        Enum(CommitteeStatus), default=CommitteeStatus.PENDING, nullable=False
    )
    responded_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ChargeType(Base):
    __tablename__ = "charge_types"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(50), nullable=False)


class Charge(Base):
    __tablename__ = "charges"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    charge_type_id: Mapped[int] = mapped_column(ForeignKey("charge_types.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    charge_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_channel_account_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    collector_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    lawyer_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    charge_type = relationship("ChargeType")


class LoanLegalStage(Base):
    __tablename__ = "loan_legal_stages"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id"), nullable=False, index=True)
    legal_stage_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
