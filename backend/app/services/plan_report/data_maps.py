"""Index fetched collection records by loan and debtor for O(1) lookups."""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, TypeVar

from app.services.plan_report.records import (
    ActivityRecord,
    ChargeRecord,
    CollectionData,
    DebtorStatusRecord,
    LegalStageRecord,
    LoanRecord,
)

T = TypeVar("T")


@dataclass(frozen=True)
class DataMaps:
    loan_map: dict[int, LoanRecord] = field(default_factory=dict)
    sms_map: dict[int, list[ActivityRecord]] = field(default_factory=dict)
    mark_map: dict[int, list[ActivityRecord]] = field(default_factory=dict)
    comment_map: dict[int, list[ActivityRecord]] = field(default_factory=dict)
    committee_request_map: dict[int, list[ActivityRecord]] = field(default_factory=dict)
    charge_map: dict[int, list[ChargeRecord]] = field(default_factory=dict)
    court_case_map: dict[int, list[LegalStageRecord]] = field(default_factory=dict)
    execution_case_map: dict[int, list[LegalStageRecord]] = field(default_factory=dict)


def group_by_loan(records: Iterable[T]) -> dict[int, list[T]]:
    """Group records by ``loan_id``, keeping fetch order. Rows without a loan are skipped."""
    grouped: dict[int, list[T]] = defaultdict(list)
    for record in records:
        loan_id = getattr(record, "loan_id", None)
        if loan_id is None:
            continue
        grouped[loan_id].append(record)
    return dict(grouped)


def build_data_maps(data: CollectionData) -> DataMaps:
    return DataMaps(
        loan_map={loan.id: loan for loan in data.loans},
        sms_map=group_by_loan(data.sms),
        mark_map=group_by_loan(data.marks),
        comment_map=group_by_loan(data.comments),
        committee_request_map=group_by_loan(data.committee_requests),
        charge_map=group_by_loan(data.charges),
        court_case_map=group_by_loan(data.court_cases),
        execution_case_map=group_by_loan(data.execution_cases),
    )


def build_debtor_status_map(
    records: Iterable[DebtorStatusRecord],
) -> dict[int, list[DebtorStatusRecord]]:
    grouped: dict[int, list[DebtorStatusRecord]] = defaultdict(list)
    for record in records:
        grouped[record.debtor_id].append(record)
    return dict(grouped)
