"""Collector monthly KPI calculation.

One ``CollectorReportRow`` per collector-month target.  The calculator is a
pure fold over the indexed maps: same inputs, same row.

Counting window
---------------
``start`` is the target's ``created_at``.  ``end`` is the last day of the
target month when the filters pin a single year and month; otherwise the
earlier of the month end and the filter date (or now).  Day boundaries are
inclusive: a filter date or month end covers the whole day in the report
timezone.

Activity rows (SMS, marks, comments, committee requests) must also belong to
the target's own year/month and be authored by the target's collector.
"""

import calendar
from collections import Counter
from dataclasses import dataclass, asdict
from datetime import date, datetime, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable
from zoneinfo import ZoneInfo

from app.config import settings
from app.models.collection import ChargeClass, classify_charge_type
from app.models.loan import LoanStatusId, status_name
from app.services.plan_report.data_maps import DataMaps
from app.services.plan_report.dedup import TransactionData
from app.services.plan_report.filters import PlanReportFilters
from app.services.plan_report.records import ActivityRecord, DebtorStatusRecord, PlanTarget

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")
INACTIVE_DAYS_THRESHOLD = 40
EMPTY_DURATION = "00:00:00"

REPORT_TIMEZONE = ZoneInfo(settings.report_timezone)


@dataclass(frozen=True)
class CollectorReportRow:
    collector_id: int
    collector: str
    year: int
    month: int
    opening_principal: Decimal
    monthly_plan: Decimal
    adjusted_plan: Decimal
    collected_amount: Decimal
    collection_rate_percent: Decimal
    paid_loan_count: int
    payment_success_rate: Decimal
    new_loan_count: int
    communicated_count: int
    unreachable_count: int
    agreement_count: int
    agreement_cancelled_count: int
    refuse_to_pay_count: int
    promise_to_pay_count: int
    total_loan_count: int
    call_count: int
    total_call_duration: str
    sms_count: int
    mark_count: int
    comment_count: int
    committee_request_count: int
    inactive_over_40_days_count: int
    debtor_status_count: int
    total_activities: int
    total_legal_charges: Decimal
    total_other_charges: Decimal
    court_case_count: int
    court_principal_sum: Decimal
    execution_case_count: int
    execution_principal_sum: Decimal
    # "legacy" for precomputed rows, "current" for computed ones
    source: str = "current"

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ReportWindow:
    start: datetime
    end: datetime
    year: int
    month: int
    tz: ZoneInfo

    def contains(self, ts: datetime) -> bool:
        return self.start <= localize(ts, self.tz) <= self.end

    def in_period(self, ts: datetime) -> bool:
        local = localize(ts, self.tz)
        return local.year == self.year and local.month == self.month


def localize(ts: datetime, tz: ZoneInfo) -> datetime:
    """Naive timestamps are taken as already in *tz*."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=tz)
    return ts.astimezone(tz)


def end_of_day(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def last_day_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def percent(numerator: Decimal, denominator: Decimal) -> Decimal:
    """``numerator / denominator * 100`` to the cent; a zero denominator gives 0."""
    if denominator == 0:
        return ZERO.quantize(CENT)
    return (numerator / denominator * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_report_window(
    target: PlanTarget,
    filters: PlanReportFilters,
    now: datetime | None = None,
    tz: ZoneInfo = REPORT_TIMEZONE,
) -> ReportWindow:
    month_end = end_of_day(last_day_of_month(target.year, target.month), tz)

    if filters.pins_single_period:
        end = month_end
    elif filters.as_of is not None:
        end = min(end_of_day(filters.as_of, tz), month_end)
    else:
        current = localize(now, tz) if now is not None else datetime.now(tz)
        end = min(current, month_end)

    return ReportWindow(
        start=localize(target.created_at, tz),
        end=end,
        year=target.year,
        month=target.month,
        tz=tz,
    )


def _count_activities(
    loan_ids: Iterable[int],
    activity_map: dict[int, list[ActivityRecord]],
    collector_id: int,
    window: ReportWindow,
) -> int:
    count = 0
    for loan_id in loan_ids:
        for record in activity_map.get(loan_id, []):
            if (
                record.user_id == collector_id
                and window.contains(record.created_at)
                and window.in_period(record.created_at)
            ):
                count += 1
    return count


def count_debtor_status_changes(
    debtor_ids: Iterable[int],
    debtor_status_map: dict[int, list[DebtorStatusRecord]],
    window: ReportWindow,
) -> int:
    """One point per debtor with in-window history, plus one per actual status change."""
    total = 0
    for debtor_id in debtor_ids:
        history = sorted(
            (h for h in debtor_status_map.get(debtor_id, []) if window.contains(h.created_at)),
            key=lambda h: localize(h.created_at, window.tz),
        )
        if not history:
            continue
        total += 1
        for previous, current in zip(history, history[1:]):
            if current.new_status_id != previous.new_status_id:
                total += 1
    return total


def compute_collector_metrics(
    target: PlanTarget,
    maps: DataMaps,
    transactions: TransactionData,
    debtor_status_map: dict[int, list[DebtorStatusRecord]],
    filters: PlanReportFilters,
    now: datetime | None = None,
    tz: ZoneInfo = REPORT_TIMEZONE,
) -> CollectorReportRow:
    window = compute_report_window(target, filters, now=now, tz=tz)
    loan_ids = target.loan_ids
    related_loans = [maps.loan_map[i] for i in loan_ids if i in maps.loan_map]

    opening_principal = sum((loan.principal for loan in related_loans), ZERO)
    inactive_count = sum(1 for loan in related_loans if loan.act_days > INACTIVE_DAYS_THRESHOLD)
    status_counts = Counter(status_name(loan.status_id) for loan in related_loans)

    # Payments
    period_key = (target.collector_id, target.year, target.month)
    collected_amount = sum(
        (tx.amount for tx in transactions.tx_map.get(period_key, []) if window.contains(tx.created_at)),
        ZERO,
    )
    paid_loan_count = transactions.paid_counts.get(period_key, 0)
    target_amount = target.target_amount

    # Activities
    sms_count = _count_activities(loan_ids, maps.sms_map, target.collector_id, window)
    mark_count = _count_activities(loan_ids, maps.mark_map, target.collector_id, window)
    comment_count = _count_activities(loan_ids, maps.comment_map, target.collector_id, window)
    committee_count = _count_activities(
        loan_ids, maps.committee_request_map, target.collector_id, window
    )

    # Charges; unclassified types count toward neither sum
    legal_charges = ZERO
    other_charges = ZERO
    for loan_id in loan_ids:
        for charge in maps.charge_map.get(loan_id, []):
            if not window.contains(charge.created_at):
                continue
            charge_class = classify_charge_type(charge.charge_type_id)
            if charge_class == ChargeClass.LEGAL:
                legal_charges += charge.amount
            elif charge_class == ChargeClass.OTHER:
                other_charges += charge.amount

    # Court and execution stages; principal counted once per loan
    court_case_count = 0
    execution_case_count = 0
    court_loan_ids: set[int] = set()
    execution_loan_ids: set[int] = set()
    for loan_id in loan_ids:
        court = [c for c in maps.court_case_map.get(loan_id, []) if window.contains(c.created_at)]
        court_case_count += len(court)
        if court:
            court_loan_ids.add(loan_id)
        execution = [
            e for e in maps.execution_case_map.get(loan_id, []) if window.contains(e.created_at)
        ]
        execution_case_count += len(execution)
        if execution:
            execution_loan_ids.add(loan_id)

    def principal_of(ids: set[int]) -> Decimal:
        return sum(
            (maps.loan_map[i].principal for i in sorted(ids) if i in maps.loan_map), ZERO
        )

    debtor_ids = list(dict.fromkeys(
        loan.debtor_id for loan in related_loans if loan.debtor_id is not None
    ))
    debtor_status_count = count_debtor_status_changes(debtor_ids, debtor_status_map, window)

    total_activities = sms_count + mark_count + comment_count + committee_count + debtor_status_count

    return CollectorReportRow(
        collector_id=target.collector_id,
        collector=target.collector_name,
        year=target.year,
        month=target.month,
        opening_principal=opening_principal,
        monthly_plan=target_amount,
        adjusted_plan=target_amount,
        collected_amount=collected_amount,
        collection_rate_percent=percent(collected_amount, target_amount),
        paid_loan_count=paid_loan_count,
        payment_success_rate=percent(Decimal(paid_loan_count), Decimal(len(related_loans))),
        new_loan_count=status_counts[LoanStatusId.NEW.name],
        communicated_count=status_counts[LoanStatusId.COMMUNICATION.name],
        unreachable_count=status_counts[LoanStatusId.UNREACHABLE.name],
        agreement_count=status_counts[LoanStatusId.AGREEMENT.name],
        agreement_cancelled_count=status_counts[LoanStatusId.AGREEMENT_CANCELED.name],
        refuse_to_pay_count=status_counts[LoanStatusId.REFUSE_TO_PAY.name],
        promise_to_pay_count=status_counts[LoanStatusId.PROMISED_TO_PAY.name],
        total_loan_count=len(related_loans),
        call_count=0,
        total_call_duration=EMPTY_DURATION,
        sms_count=sms_count,
        mark_count=mark_count,
        comment_count=comment_count,
        committee_request_count=committee_count,
        inactive_over_40_days_count=inactive_count,
        debtor_status_count=debtor_status_count,
        total_activities=total_activities,
        total_legal_charges=legal_charges,
        total_other_charges=other_charges,
        court_case_count=court_case_count,
        court_principal_sum=principal_of(court_loan_ids),
        execution_case_count=execution_case_count,
        execution_principal_sum=principal_of(execution_loan_ids),
    )
