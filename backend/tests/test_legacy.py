"""Tests for mapping legacy monthly reports onto report rows."""

from decimal import Decimal
from types import SimpleNamespace

from app.services.plan_report.legacy import format_duration, map_legacy_report, map_legacy_reports


def _legacy_row(**overrides):
    values = dict(
        collector_id=3, collector_name="Nino Beridze", year=2025, month=11,
        opening_principal=Decimal("15000"), monthly_plan=Decimal("4000"),
        adjusted_plan=Decimal("4200"), collected_amount=Decimal("3100.50"),
        collection_rate_percent=Decimal("73.82"), paid_loan_count=12,
        payment_success_rate=Decimal("40"), new_loan_count=4, communicated_count=10,
        unreachable_count=3, agreement_count=5, agreement_cancelled_count=1,
        refuse_to_pay_count=2, promise_to_pay_count=6, total_loan_count=30,
        call_count=210, total_call_duration_sec=3725, sms_count=40, mark_count=25,
        comment_count=18, committee_request_count=2, inactive_over_40_days_count=7,
        debtor_status_count=9, total_activities=94, total_legal_charges=Decimal("300"),
        total_other_charges=None, court_case_count=2, court_principal_sum=Decimal("2500"),
        execution_case_count=1, execution_principal_sum=Decimal("800"),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestFormatDuration:
    def test_hours_minutes_seconds(self):
        assert format_duration(3725) == "01:02:05"

    def test_zero_and_missing(self):
        assert format_duration(0) == "00:00:00"
        assert format_duration(None) == "00:00:00"

    def test_hours_not_wrapped(self):
        assert format_duration(90000) == "25:00:00"


class TestMapLegacyReport:
    def test_fields_carried_through(self):
        row = map_legacy_report(_legacy_row())
        assert row.source == "legacy"
        assert row.collector == "Nino Beridze"
        assert row.call_count == 210
        assert row.total_call_duration == "01:02:05"
        assert row.collected_amount == Decimal("3100.50")
        assert row.adjusted_plan == Decimal("4200")

    def test_missing_money_becomes_zero(self):
        row = map_legacy_report(_legacy_row())
        assert row.total_other_charges == Decimal("0")

    def test_missing_name(self):
        assert map_legacy_report(_legacy_row(collector_name=None)).collector == ""

    def test_many(self):
        rows = map_legacy_reports([_legacy_row(month=1), _legacy_row(month=2)])
        assert [r.month for r in rows] == [1, 2]
