"""Audit trail of balance-changing operations and plan imports."""

import enum
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, ForeignKey, JSON, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class AuditAction(str, enum.Enum):
    PAYMENT_RECORDED = "payment_recorded"
    CHARGE_ADDED = "charge_added"
    TRANSACTION_REVERSED = "transaction_reversed"
    AGREEMENT_SETTLED = "agreement_settled"
    PLAN_IMPORTED = "plan_imported"


class AuditLog(Base):
    """One row per committed operation; the loan's trail is ``WHERE loan_id = ?``.

    ``old_values``/``new_values`` hold money as strings so JSON keeps the cents.
    """
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # Empty for batch operations such as a plan import
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    loan_id: Mapped[int | None] = mapped_column(ForeignKey("loans.id"), nullable=True, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # Free-text reason (reversal reason, committee note)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
