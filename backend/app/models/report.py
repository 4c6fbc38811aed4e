"""Collector monthly plan targets and legacy precomputed monthly reports."""

import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    String, Numeric, Integer, Enum, DateTime, ForeignKey, JSON, UniqueConstraint, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class ReportStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    FROZEN = "FROZEN"


class CollectorMonthlyTarget(Base):
    """One collector's plan for one month. ``created_at`` opens the counting window."""
    __tablename__ = "collector_monthly_targets"
    __table_args__ = (
        UniqueConstraint("collector_id", "year", "month", name="uq_collector_target_period"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    collector_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    target_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    loan_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    collector = relationship("User", back_populates="monthly_targets", foreign_keys=[collector_id])


class CollectorMonthlyReport(Base):
    """Precomputed KPI row served for years before the data-source cutover.

    A FROZEN row is final and is never overwritten.
    """
    __tablename__ = "collector_monthly_reports"
    __table_args__ = (
        UniqueConstraint("collector_id", "year", "month", name="uq_collector_report_period"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    collector_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    collector_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ReportStatus] = mapped_column(
        Enum(ReportStatus), default=ReportStatus.ACTIVE, nullable=False
    )

    monthly_plan: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    adjusted_plan: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    opening_principal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    collected_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    collection_rate_percent: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=0, nullable=False)
    paid_loan_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payment_success_rate: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=0, nullable=False)

    new_loan_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    communicated_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unreachable_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    agreement_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    agreement_cancelled_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refuse_to_pay_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    promise_to_pay_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_loan_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    call_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_call_duration_sec: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sms_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    mark_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    committee_request_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    inactive_over_40_days_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    debtor_status_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_activities: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    total_legal_charges: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    total_other_charges: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    court_case_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    court_principal_sum: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)
    execution_case_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    execution_principal_sum: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0, nullable=False)

    generated_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
