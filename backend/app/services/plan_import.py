"""Import collector monthly plans.

Each valid row becomes a ``CollectorMonthlyTarget`` holding the collector's
currently assigned open loans.  An existing target for the same collector and
period is left as it is.  The legacy monthly report row for the period is
created or refreshed with the plan and loan-portfolio figures, unless it is
FROZEN.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Any, Iterable

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import UpstreamError
from app.models.audit import AuditAction, AuditLog
from app.models.loan import AssignmentRole, Loan, LoanAssignment, LoanStatusId, status_name
from app.models.report import CollectorMonthlyReport, CollectorMonthlyTarget, ReportStatus
from app.models.user import User
from app.schemas import PlanImportRow

logger = logging.getLogger(__name__)

# Report column for each counted loan status
STATUS_COUNT_COLUMNS = {
    LoanStatusId.NEW.name: "new_loan_count",
    LoanStatusId.COMMUNICATION.name: "communicated_count",
    LoanStatusId.UNREACHABLE.name: "unreachable_count",
    LoanStatusId.AGREEMENT.name: "agreement_count",
    LoanStatusId.AGREEMENT_CANCELED.name: "agreement_cancelled_count",
    LoanStatusId.REFUSE_TO_PAY.name: "refuse_to_pay_count",
    LoanStatusId.PROMISED_TO_PAY.name: "promise_to_pay_count",
}


@dataclass
class PlanImportResult:
    total_rows: int = 0
    imported: int = 0
    invalid: int = 0
    duplicates: int = 0
    reports_refreshed: int = 0
    frozen_skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CollectorPortfolio:
    loan_ids: list[int]
    opening_principal: Decimal
    status_counts: dict[str, int]


def validate_rows(rows: Iterable[dict[str, Any]], result: PlanImportResult) -> list[PlanImportRow]:
    """Parse raw rows; invalid and repeated ones are recorded in *result* and dropped."""
    valid: list[PlanImportRow] = []
    seen: set[tuple[int, int, int]] = set()
    for index, raw in enumerate(rows, start=1):
        result.total_rows += 1
        try:
            row = PlanImportRow.model_validate(raw)
        except PydanticValidationError as e:
            result.invalid += 1
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            result.errors.append(f"Row {index}: {location}: {first['msg']}")
            continue
        key = (row.collector_id, row.year, row.month)
        if key in seen:
            result.invalid += 1
            result.errors.append(f"Row {index}: repeats collector {row.collector_id} for {row.year}-{row.month:02d}")
            continue
        seen.add(key)
        valid.append(row)
    return valid


async def load_portfolios(
    db: AsyncSession, collector_ids: list[int]
) -> dict[int, CollectorPortfolio]:
    """Active, open loans assigned to each collector with principal and status tallies."""
    result = await db.execute(
        select(LoanAssignment.user_id, Loan.id, Loan.principal, Loan.status_id)
        .join(Loan, Loan.id == LoanAssignment.loan_id)
        .where(
            LoanAssignment.user_id.in_(collector_ids),
            LoanAssignment.role == AssignmentRole.COLLECTOR,
            LoanAssignment.is_active.is_(True),
            Loan.deleted_at.is_(None),
            Loan.closed_at.is_(None),
        )
        .order_by(LoanAssignment.user_id, Loan.id)
    )
    loans: dict[int, list[int]] = defaultdict(list)
    principal: dict[int, Decimal] = defaultdict(Decimal)
    statuses: dict[int, Counter] = defaultdict(Counter)
    for user_id, loan_id, loan_principal, status_id in result.all():
        loans[user_id].append(loan_id)
        principal[user_id] += Decimal(loan_principal)
        statuses[user_id][status_name(status_id)] += 1

    return {
        collector_id: CollectorPortfolio(
            loan_ids=loans.get(collector_id, []),
            opening_principal=principal.get(collector_id, Decimal("0")),
            status_counts=dict(statuses.get(collector_id, {})),
        )
        for collector_id in collector_ids
    }


def apply_report_figures(
    report: CollectorMonthlyReport,
    row: PlanImportRow,
    portfolio: CollectorPortfolio,
    collector_name: str | None,
    user_id: int | None,
) -> None:
    report.collector_name = collector_name
    report.monthly_plan = row.target_amount
    report.adjusted_plan = row.target_amount
    report.opening_principal = portfolio.opening_principal
    report.total_loan_count = len(portfolio.loan_ids)
    for status, column in STATUS_COUNT_COLUMNS.items():
        setattr(report, column, portfolio.status_counts.get(status, 0))
    report.generated_by = user_id


async def import_plan(
    db: AsyncSession, rows: list[dict[str, Any]], user_id: int | None = None
) -> PlanImportResult:
    result = PlanImportResult()
    valid_rows = validate_rows(rows, result)
    if not valid_rows:
        return result

    collector_ids = sorted({r.collector_id for r in valid_rows})
    try:
        users = {
            u.id: u
            for u in (await db.execute(select(User).where(User.id.in_(collector_ids)))).scalars().all()
        }
        portfolios = await load_portfolios(db, collector_ids)

        years = sorted({r.year for r in valid_rows})
        existing_targets = {
            (t.collector_id, t.year, t.month)
            for t in (await db.execute(
                select(CollectorMonthlyTarget).where(
                    CollectorMonthlyTarget.collector_id.in_(collector_ids),
                    CollectorMonthlyTarget.year.in_(years),
                )
            )).scalars().all()
        }
        existing_reports = {
            (r.collector_id, r.year, r.month): r
            for r in (await db.execute(
                select(CollectorMonthlyReport).where(
                    CollectorMonthlyReport.collector_id.in_(collector_ids),
                    CollectorMonthlyReport.year.in_(years),
                )
            )).scalars().all()
        }

        for row in valid_rows:
            user = users.get(row.collector_id)
            if user is None:
                result.invalid += 1
                result.errors.append(f"Collector {row.collector_id} does not exist")
                continue

            key = (row.collector_id, row.year, row.month)
            portfolio = portfolios[row.collector_id]
            if key in existing_targets:
                result.duplicates += 1
            else:
                db.add(CollectorMonthlyTarget(
                    collector_id=row.collector_id,
                    target_amount=row.target_amount,
                    year=row.year,
                    month=row.month,
                    loan_ids=list(portfolio.loan_ids),
                    created_by=user_id,
                ))
                result.imported += 1

            report = existing_reports.get(key)
            if report is not None and report.status == ReportStatus.FROZEN:
                result.frozen_skipped += 1
                continue
            if report is None:
                report = CollectorMonthlyReport(
                    collector_id=row.collector_id,
                    year=row.year,
                    month=row.month,
                    status=ReportStatus.ACTIVE,
                    collected_amount=Decimal("0"),
                )
                db.add(report)
            apply_report_figures(report, row, portfolio, user.full_name, user_id)
            result.reports_refreshed += 1

        db.add(AuditLog(
            action=AuditAction.PLAN_IMPORTED,
            entity_type="collector_monthly_target",
            user_id=user_id,
            new_values={
                "imported": result.imported,
                "duplicates": result.duplicates,
                "reports_refreshed": result.reports_refreshed,
                "frozen_skipped": result.frozen_skipped,
            },
        ))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Plan import failed: %s", e)
        raise UpstreamError("Failed to persist plan import") from e

    logger.info(
        "Plan import: %d rows, %d imported, %d invalid, %d duplicates, %d reports refreshed, %d frozen",
        result.total_rows, result.imported, result.invalid, result.duplicates,
        result.reports_refreshed, result.frozen_skipped,
    )
    return result
