"""Bulk reads for one page of plan targets.

Each function issues a fixed number of queries regardless of how many targets
are on the page.  Queries run one after another on the caller's session.
"""

import logging
from decimal import Decimal
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.collection import (
    Charge, CommitteeRequest, COURT_STAGE_ID, EXECUTION_STAGE_ID,
    LoanComment, LoanLegalStage, LoanMark, SmsHistory, SmsStatus,
)
from app.models.loan import DebtorStatusHistory, Loan
from app.models.payment import Transaction, TransactionUserAssignment
from app.services.plan_report.records import (
    ActivityRecord,
    ChargeRecord,
    CollectionData,
    CollectorTransaction,
    DebtorStatusRecord,
    LegalStageRecord,
    LoanRecord,
)

logger = logging.getLogger(__name__)


async def _fetch_activities(
    db: AsyncSession, model, actor_column, loan_ids: Sequence[int], collector_ids: Sequence[int],
    *extra_criteria,
) -> list[ActivityRecord]:
    result = await db.execute(
        select(model.id, model.loan_id, actor_column, model.created_at).where(
            model.loan_id.in_(loan_ids),
            actor_column.in_(collector_ids),
            model.deleted_at.is_(None),
            *extra_criteria,
        )
    )
    return [
        ActivityRecord(id=row[0], loan_id=row[1], user_id=row[2], created_at=row[3])
        for row in result.all()
    ]


async def _fetch_legal_stages(
    db: AsyncSession, loan_ids: Sequence[int], stage_id: int
) -> list[LegalStageRecord]:
    result = await db.execute(
        select(LoanLegalStage.id, LoanLegalStage.loan_id, LoanLegalStage.created_at).where(
            LoanLegalStage.loan_id.in_(loan_ids),
            LoanLegalStage.legal_stage_id == stage_id,
            LoanLegalStage.deleted_at.is_(None),
        )
    )
    return [
        LegalStageRecord(id=row.id, loan_id=row.loan_id, created_at=row.created_at)
        for row in result.all()
    ]


async def fetch_collection_data(
    db: AsyncSession, loan_ids: Sequence[int], collector_ids: Sequence[int]
) -> CollectionData:
    """Loans (open only), activities by the given collectors, charges and legal stages."""
    if not loan_ids:
        return CollectionData()

    loan_result = await db.execute(
        select(Loan.id, Loan.principal, Loan.status_id, Loan.act_days, Loan.debtor_id).where(
            Loan.id.in_(loan_ids),
            Loan.deleted_at.is_(None),
            Loan.closed_at.is_(None),
        )
    )
    loans = [
        LoanRecord(
            id=row.id,
            principal=Decimal(row.principal),
            status_id=row.status_id,
            act_days=row.act_days or 0,
            debtor_id=row.debtor_id,
        )
        for row in loan_result.all()
    ]

    sms = await _fetch_activities(
        db, SmsHistory, SmsHistory.user_id, loan_ids, collector_ids,
        SmsHistory.status == SmsStatus.SUCCESS,
    )
    marks = await _fetch_activities(db, LoanMark, LoanMark.user_id, loan_ids, collector_ids)
    comments = await _fetch_activities(db, LoanComment, LoanComment.user_id, loan_ids, collector_ids)
    committee_requests = await _fetch_activities(
        db, CommitteeRequest, CommitteeRequest.requester_id, loan_ids, collector_ids
    )

    charge_result = await db.execute(
        select(
            Charge.id, Charge.loan_id, Charge.amount, Charge.charge_type_id, Charge.created_at
        ).where(
            Charge.loan_id.in_(loan_ids),
            Charge.deleted_at.is_(None),
        )
    )
    charges = [
        ChargeRecord(
            id=row.id,
            loan_id=row.loan_id,
            amount=Decimal(row.amount),
            charge_type_id=row.charge_type_id,
            created_at=row.created_at,
        )
        for row in charge_result.all()
    ]

    court_cases = await _fetch_legal_stages(db, loan_ids, COURT_STAGE_ID)
    execution_cases = await _fetch_legal_stages(db, loan_ids, EXECUTION_STAGE_ID)

    logger.debug(
        "Fetched collection data: %d loans, %d sms, %d marks, %d comments, %d committee, "
        "%d charges, %d court, %d execution",
        len(loans), len(sms), len(marks), len(comments), len(committee_requests),
        len(charges), len(court_cases), len(execution_cases),
    )
    return CollectionData(
        loans=loans,
        sms=sms,
        marks=marks,
        comments=comments,
        committee_requests=committee_requests,
        charges=charges,
        court_cases=court_cases,
        execution_cases=execution_cases,
    )


async def fetch_collector_transactions(
    db: AsyncSession,
    collector_ids: Sequence[int],
    years: Sequence[int],
    months: Sequence[int],
) -> list[CollectorTransaction]:
    """Active attributions for the collectors in the given periods (not window-filtered)."""
    if not collector_ids or not years or not months:
        return []
    result = await db.execute(
        select(
            TransactionUserAssignment.user_id,
            TransactionUserAssignment.year,
            TransactionUserAssignment.month,
            TransactionUserAssignment.amount,
            TransactionUserAssignment.created_at,
            Transaction.loan_id,
        )
        .join(Transaction, Transaction.id == TransactionUserAssignment.transaction_id)
        .where(
            TransactionUserAssignment.user_id.in_(collector_ids),
            TransactionUserAssignment.year.in_(years),
            TransactionUserAssignment.month.in_(months),
            TransactionUserAssignment.deleted_at.is_(None),
        )
    )
    return [
        CollectorTransaction(
            user_id=row.user_id,
            year=row.year,
            month=row.month,
            loan_id=row.loan_id,
            amount=Decimal(row.amount or 0),
            created_at=row.created_at,
        )
        for row in result.all()
    ]


async def fetch_debtor_status_history(
    db: AsyncSession, debtor_ids: Sequence[int]
) -> list[DebtorStatusRecord]:
    if not debtor_ids:
        return []
    result = await db.execute(
        select(
            DebtorStatusHistory.id,
            DebtorStatusHistory.debtor_id,
            DebtorStatusHistory.new_status_id,
            DebtorStatusHistory.created_at,
        ).where(
            DebtorStatusHistory.debtor_id.in_(debtor_ids),
            DebtorStatusHistory.deleted_at.is_(None),
        )
    )
    return [
        DebtorStatusRecord(
            id=row.id,
            debtor_id=row.debtor_id,
            new_status_id=row.new_status_id,
            created_at=row.created_at,
        )
        for row in result.all()
    ]
