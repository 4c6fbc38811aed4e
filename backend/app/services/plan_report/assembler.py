"""Collector plan report: one KPI row per collector-month.

Years before the cutover are served from the precomputed legacy table; later
years are computed from activity data.  A request spanning both returns the
legacy rows first, then the computed rows, and pages over the concatenation.

For the computed part the whole page is processed in one batch:

    targets -> fetch collection data once -> build maps once
            -> dedup transactions once -> one metric row per target
"""

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import UpstreamError
from app.models.report import CollectorMonthlyReport, CollectorMonthlyTarget
from app.models.user import User
from app.services.pagination import PageRequest, PaginatedResult, paginate, split_page
from app.services.plan_report.data_maps import build_data_maps, build_debtor_status_map
from app.services.plan_report.dedup import build_transaction_data
from app.services.plan_report.fetcher import (
    fetch_collection_data,
    fetch_collector_transactions,
    fetch_debtor_status_history,
)
from app.services.plan_report.filters import PlanReportFilters
from app.services.plan_report.legacy import map_legacy_reports
from app.services.plan_report.metrics import (
    REPORT_TIMEZONE,
    CollectorReportRow,
    compute_collector_metrics,
)
from app.services.plan_report.records import PlanTarget
from app.services.plan_report.source_router import determine_plan_data_source
from app.services.scoping import LegacyPlanReportScope, PlanTargetScope

logger = logging.getLogger(__name__)


def _target_criteria(filters: PlanReportFilters, years: list[int], user: User | None) -> list:
    criteria = []
    if years:
        criteria.append(CollectorMonthlyTarget.year.in_(years))
    if filters.months:
        criteria.append(CollectorMonthlyTarget.month.in_(filters.months))
    if filters.collector_ids:
        criteria.append(CollectorMonthlyTarget.collector_id.in_(filters.collector_ids))
    if user is not None:
        criteria.append(PlanTargetScope.scope_for_user(user))
    return criteria


def _legacy_criteria(filters: PlanReportFilters, years: list[int], user: User | None) -> list:
    criteria = []
    if years:
        criteria.append(CollectorMonthlyReport.year.in_(years))
    if filters.months:
        criteria.append(CollectorMonthlyReport.month.in_(filters.months))
    if filters.collector_ids:
        criteria.append(CollectorMonthlyReport.collector_id.in_(filters.collector_ids))
    if user is not None:
        criteria.append(LegacyPlanReportScope.scope_for_user(user))
    return criteria


async def _count(db: AsyncSession, model, criteria: list) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*criteria))
    return result.scalar() or 0


async def _fetch_legacy_rows(
    db: AsyncSession, criteria: list, offset: int, limit: int | None
) -> list[CollectorReportRow]:
    query = (
        select(CollectorMonthlyReport)
        .where(*criteria)
        .order_by(
            CollectorMonthlyReport.collector_id,
            CollectorMonthlyReport.year,
            CollectorMonthlyReport.month,
            CollectorMonthlyReport.id,
        )
        .offset(offset)
    )
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return map_legacy_reports(result.scalars().all())


async def _fetch_targets(
    db: AsyncSession, criteria: list, offset: int, limit: int | None
) -> list[PlanTarget]:
    query = (
        select(CollectorMonthlyTarget, User.first_name, User.last_name)
        .join(User, User.id == CollectorMonthlyTarget.collector_id)
        .where(*criteria)
        .order_by(
            CollectorMonthlyTarget.collector_id,
            CollectorMonthlyTarget.year,
            CollectorMonthlyTarget.month,
            CollectorMonthlyTarget.id,
        )
        .offset(offset)
    )
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return [
        PlanTarget.from_row(target, f"{first_name} {last_name}")
        for target, first_name, last_name in result.all()
    ]


async def compute_target_rows(
    db: AsyncSession,
    targets: list[PlanTarget],
    filters: PlanReportFilters,
    now: datetime | None = None,
    tz: ZoneInfo = REPORT_TIMEZONE,
) -> list[CollectorReportRow]:
    """Compute KPI rows for a page of targets with a constant number of queries."""
    if not targets:
        return []

    loan_ids = sorted({loan_id for t in targets for loan_id in t.loan_ids})
    collector_ids = sorted({t.collector_id for t in targets})
    years = sorted({t.year for t in targets})
    months = sorted({t.month for t in targets})

    data = await fetch_collection_data(db, loan_ids, collector_ids)
    maps = build_data_maps(data)

    transactions = build_transaction_data(
        await fetch_collector_transactions(db, collector_ids, years, months)
    )

    debtor_ids = sorted({loan.debtor_id for loan in data.loans if loan.debtor_id is not None})
    debtor_status_map = build_debtor_status_map(await fetch_debtor_status_history(db, debtor_ids))

    return [
        compute_collector_metrics(target, maps, transactions, debtor_status_map, filters, now=now, tz=tz)
        for target in targets
    ]


async def get_plan_report(
    db: AsyncSession,
    filters: PlanReportFilters,
    page: PageRequest,
    user: User | None = None,
    now: datetime | None = None,
) -> PaginatedResult[CollectorReportRow]:
    """Paginated plan report for the filters, restricted to what *user* may see."""
    now = now or datetime.now(REPORT_TIMEZONE)
    route = determine_plan_data_source(filters.years, now.year)

    try:
        legacy_criteria = _legacy_criteria(filters, route.old_years, user)
        target_criteria = _target_criteria(filters, route.new_years, user)

        legacy_total = (
            await _count(db, CollectorMonthlyReport, legacy_criteria) if route.use_legacy else 0
        )
        current_total = (
            await _count(db, CollectorMonthlyTarget, target_criteria) if route.use_current else 0
        )
        total = legacy_total + current_total
        (legacy_offset, legacy_take), (current_offset, current_take) = split_page(
            [legacy_total, current_total], page
        )

        rows: list[CollectorReportRow] = []
        if legacy_take != 0:
            rows.extend(await _fetch_legacy_rows(db, legacy_criteria, legacy_offset, legacy_take))
        if current_take != 0:
            targets = await _fetch_targets(db, target_criteria, current_offset, current_take)
            rows.extend(await compute_target_rows(db, targets, filters, now=now))
    except SQLAlchemyError as e:
        logger.error("Plan report query failed: %s", e)
        raise UpstreamError("Failed to load plan report data") from e

    logger.info(
        "Plan report: %d rows (legacy total %d, current total %d) for years=%s months=%s",
        len(rows), legacy_total, current_total, list(filters.years), list(filters.months),
    )
    return paginate(rows, total, page)
