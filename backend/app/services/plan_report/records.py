"""Read-only records the plan report works on.

The fetcher selects only the columns the metric calculator needs and wraps
each row in one of these frozen records, so the pure stages never touch a
session or a lazy-loaded relationship.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class PlanTarget:
    id: int
    collector_id: int
    collector_name: str
    target_amount: Decimal
    year: int
    month: int
    loan_ids: tuple[int, ...]
    created_at: datetime

    @classmethod
    def from_row(cls, row: Any, collector_name: str) -> "PlanTarget":
        """Build from a ``CollectorMonthlyTarget``; non-integer and repeated loan ids are dropped."""
        raw_ids = row.loan_ids if isinstance(row.loan_ids, list) else []
        loan_ids = tuple(dict.fromkeys(
            i for i in raw_ids if isinstance(i, int) and not isinstance(i, bool)
        ))
        return cls(
            id=row.id,
            collector_id=row.collector_id,
            collector_name=collector_name,
            target_amount=Decimal(row.target_amount),
            year=row.year,
            month=row.month,
            loan_ids=loan_ids,
            created_at=row.created_at,
        )


@dataclass(frozen=True)
class LoanRecord:
    id: int
    principal: Decimal
    status_id: int
    act_days: int
    debtor_id: int | None


@dataclass(frozen=True)
class ActivityRecord:
    """SMS, mark, comment or committee request; ``user_id`` is the actor."""
    id: int
    loan_id: int
    user_id: int | None
    created_at: datetime


@dataclass(frozen=True)
class ChargeRecord:
    id: int
    loan_id: int
    amount: Decimal
    charge_type_id: int
    created_at: datetime


@dataclass(frozen=True)
class LegalStageRecord:
    id: int
    loan_id: int
    created_at: datetime


@dataclass(frozen=True)
class DebtorStatusRecord:
    id: int
    debtor_id: int
    new_status_id: int
    created_at: datetime


@dataclass(frozen=True)
class CollectorTransaction:
    """One collector attribution of a payment."""
    user_id: int
    year: int
    month: int
    loan_id: int | None
    amount: Decimal
    created_at: datetime


@dataclass(frozen=True)
class CollectionData:
    loans: list[LoanRecord] = field(default_factory=list)
    sms: list[ActivityRecord] = field(default_factory=list)
    marks: list[ActivityRecord] = field(default_factory=list)
    comments: list[ActivityRecord] = field(default_factory=list)
    committee_requests: list[ActivityRecord] = field(default_factory=list)
    charges: list[ChargeRecord] = field(default_factory=list)
    court_cases: list[LegalStageRecord] = field(default_factory=list)
    execution_cases: list[LegalStageRecord] = field(default_factory=list)
