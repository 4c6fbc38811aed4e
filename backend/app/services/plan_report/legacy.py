"""Map precomputed legacy monthly reports onto the computed row shape."""

from decimal import Decimal
from typing import Any, Iterable

from app.services.plan_report.metrics import CollectorReportRow

ZERO = Decimal("0")


def format_duration(seconds: int | None) -> str:
    """Seconds as ``HH:MM:SS``; hours are not wrapped at 24."""
    total = max(int(seconds or 0), 0)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def _money(value: Any) -> Decimal:
    return ZERO if value is None else Decimal(value)


def map_legacy_report(row: Any) -> CollectorReportRow:
    """Convert one ``CollectorMonthlyReport`` row."""
    return CollectorReportRow(
        collector_id=row.collector_id,
        collector=row.collector_name or "",
        year=row.year,
        month=row.month,
        opening_principal=_money(row.opening_principal),
        monthly_plan=_money(row.monthly_plan),
        adjusted_plan=_money(row.adjusted_plan),
        collected_amount=_money(row.collected_amount),
        collection_rate_percent=_money(row.collection_rate_percent),
        paid_loan_count=row.paid_loan_count,
        payment_success_rate=_money(row.payment_success_rate),
        new_loan_count=row.new_loan_count,
        communicated_count=row.communicated_count,
        unreachable_count=row.unreachable_count,
        agreement_count=row.agreement_count,
        agreement_cancelled_count=row.agreement_cancelled_count,
        refuse_to_pay_count=row.refuse_to_pay_count,
        promise_to_pay_count=row.promise_to_pay_count,
        total_loan_count=row.total_loan_count,
        call_count=row.call_count,
        total_call_duration=format_duration(row.total_call_duration_sec),
        sms_count=row.sms_count,
        mark_count=row.mark_count,
        comment_count=row.comment_count,
        committee_request_count=row.committee_request_count,
        inactive_over_40_days_count=row.inactive_over_40_days_count,
        debtor_status_count=row.debtor_status_count,
        total_activities=row.total_activities,
        total_legal_charges=_money(row.total_legal_charges),
        total_other_charges=_money(row.total_other_charges),
        court_case_count=row.court_case_count,
        court_principal_sum=_money(row.court_principal_sum),
        execution_case_count=row.execution_case_count,
        execution_principal_sum=_money(row.execution_principal_sum),
        source="legacy",
    )


def map_legacy_reports(rows: Iterable[Any]) -> list[CollectorReportRow]:
    return [map_legacy_report(row) for row in rows]
