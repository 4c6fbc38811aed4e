"""Tests for indexing collection data by loan and debtor."""

from datetime import datetime, timezone
from decimal import Decimal

from app.services.plan_report.data_maps import (
    build_data_maps,
    build_debtor_status_map,
    group_by_loan,
)
from app.services.plan_report.records import (
    ActivityRecord,
    ChargeRecord,
    CollectionData,
    DebtorStatusRecord,
    LegalStageRecord,
    LoanRecord,
)

TS = datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc)


class TestGroupByLoan:
    def test_groups_and_keeps_order(self):
        records = [
            ActivityRecord(id=1, loan_id=10, user_id=1, created_at=TS),
            ActivityRecord(id=2, loan_id=11, user_id=1, created_at=TS),
            ActivityRecord(id=3, loan_id=10, user_id=2, created_at=TS),
        ]
        grouped = group_by_loan(records)
        assert [r.id for r in grouped[10]] == [1, 3]
        assert [r.id for r in grouped[11]] == [2]

    def test_records_without_loan_skipped(self):
        grouped = group_by_loan([ActivityRecord(id=1, loan_id=None, user_id=1, created_at=TS)])
        assert grouped == {}


class TestBuildDataMaps:
    def test_every_map_filled(self):
        data = CollectionData(
            loans=[LoanRecord(id=10, principal=Decimal("500"), status_id=1, act_days=3, debtor_id=4)],
            sms=[ActivityRecord(id=1, loan_id=10, user_id=7, created_at=TS)],
            marks=[ActivityRecord(id=2, loan_id=10, user_id=7, created_at=TS)],
            comments=[ActivityRecord(id=3, loan_id=10, user_id=7, created_at=TS)],
            committee_requests=[ActivityRecord(id=4, loan_id=10, user_id=7, created_at=TS)],
            charges=[ChargeRecord(id=5, loan_id=10, amount=Decimal("20"), charge_type_id=1, created_at=TS)],
            court_cases=[LegalStageRecord(id=6, loan_id=10, created_at=TS)],
            execution_cases=[LegalStageRecord(id=7, loan_id=10, created_at=TS)],
        )
        maps = build_data_maps(data)
        assert maps.loan_map[10].principal == Decimal("500")
        assert len(maps.sms_map[10]) == 1
        assert len(maps.mark_map[10]) == 1
        assert len(maps.comment_map[10]) == 1
        assert len(maps.committee_request_map[10]) == 1
        assert maps.charge_map[10][0].amount == Decimal("20")
        assert maps.court_case_map[10][0].id == 6
        assert maps.execution_case_map[10][0].id == 7

    def test_empty_data(self):
        maps = build_data_maps(CollectionData())
        assert maps.loan_map == {}
        assert maps.sms_map == {}


class TestBuildDebtorStatusMap:
    def test_grouped_by_debtor(self):
        records = [
            DebtorStatusRecord(id=1, debtor_id=4, new_status_id=2, created_at=TS),
            DebtorStatusRecord(id=2, debtor_id=5, new_status_id=2, created_at=TS),
            DebtorStatusRecord(id=3, debtor_id=4, new_status_id=3, created_at=TS),
        ]
        status_map = build_debtor_status_map(records)
        assert [r.id for r in status_map[4]] == [1, 3]
        assert [r.id for r in status_map[5]] == [2]
