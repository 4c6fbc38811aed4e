"""Balance-changing operations on a loan: payments, charges, reversals, settlements.

Every operation follows the same unit of work on the caller's session:

1. lock the loan and its active ``loan_remaining`` row (``SELECT ... FOR UPDATE``)
2. compute the new balances with the pure allocation engine
3. supersede the active snapshot and insert the new one
4. write the transaction / charge / reversal row and one balance-history row
5. apply status side effects, collector attribution and the audit entry
6. commit once

Any failure rolls the whole unit back.  Database errors surface as
``UpstreamError``; the driver message is only logged.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import (
    DuplicateError, NotFoundError, ServicingError, UpstreamError, ValidationError,
)
from app.models.audit import AuditAction, AuditLog
from app.models.balance import BalanceSource, LoanBalanceHistory, LoanRemaining
from app.models.collection import Charge
from app.models.loan import (
    AssignmentRole, CLOSED_STATUS_IDS, Loan, LoanAssignment, LoanStatusHistory, LoanStatusId,
)
from app.models.payment import (
    OnlinePaymentLog, Transaction, TransactionReversal, TransactionUserAssignment,
)
from app.models.report import CollectorMonthlyReport, ReportStatus
from app.models.user import User
from app.services.allocation import (
    AllocationResult,
    BalanceSnapshot,
    allocate_payment,
    apply_charge,
    reverse_payment,
    settle_to_agreement_min,
    to_money,
)
from app.services.scoping import LoanScope, TransactionScope

logger = logging.getLogger(__name__)

MANUAL_CLOSURE_NOTE = "Automatically closed (paid): loan balance reached 0 after a manual payment"
ONLINE_CLOSURE_NOTE = "Automatically closed (paid): loan balance reached 0 after an online payment"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Locked reads ─────────────────────────────────────────────────────────

async def lock_loan(db: AsyncSession, loan_id: int, user: User | None = None) -> Loan:
    query = select(Loan).where(Loan.id == loan_id, Loan.deleted_at.is_(None))
    if user is not None:
        query = query.where(LoanScope.scope_for_user(user))
    result = await db.execute(query.with_for_update())
    loan = result.scalar_one_or_none()
    if loan is None:
        raise NotFoundError(f"Loan {loan_id} not found")
    return loan


async def lock_active_remaining(db: AsyncSession, loan_id: int) -> LoanRemaining:
    result = await db.execute(
        select(LoanRemaining)
        .where(LoanRemaining.loan_id == loan_id, LoanRemaining.deleted_at.is_(None))
        .with_for_update()
    )
    remaining = result.scalar_one_or_none()
    if remaining is None:
        raise NotFoundError(f"Active balance for loan {loan_id} not found")
    return remaining


def _ensure_open(loan: Loan) -> None:
    if loan.closed_at is not None or loan.status_id in CLOSED_STATUS_IDS:
        raise ValidationError(f"Loan {loan.id} is closed")


# ── Write helpers ────────────────────────────────────────────────────────

async def replace_snapshot(
    db: AsyncSession, current: LoanRemaining, snapshot: BalanceSnapshot, now: datetime
) -> LoanRemaining:
    """Supersede *current* and insert *snapshot* as the loan's active balance."""
    current.deleted_at = now
    # The superseded row must be flushed before the partial unique index sees the new one
    await db.flush()
    new_row = LoanRemaining(loan_id=current.loan_id, **snapshot.as_row_values())
    db.add(new_row)
    return new_row


def _history_row(
    loan_id: int, source: BalanceSource, source_id: int | None, snapshot: BalanceSnapshot
) -> LoanBalanceHistory:
    values = snapshot.buckets()
    return LoanBalanceHistory(
        loan_id=loan_id,
        source_type=source,
        source_id=source_id,
        current_debt=snapshot.current_debt,
        **values,
    )


async def _active_collector_id(db: AsyncSession, loan_id: int) -> int | None:
    result = await db.execute(
        select(LoanAssignment.user_id)
        .where(
            LoanAssignment.loan_id == loan_id,
            LoanAssignment.role == AssignmentRole.COLLECTOR,
            LoanAssignment.is_active.is_(True),
        )
        .order_by(LoanAssignment.assigned_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _adjust_legacy_collected(
    db: AsyncSession, collector_id: int, year: int, month: int, delta: Decimal
) -> None:
    """Move the legacy report's collected amount; frozen rows are never touched."""
    await db.execute(
        update(CollectorMonthlyReport)
        .where(
            CollectorMonthlyReport.collector_id == collector_id,
            CollectorMonthlyReport.year == year,
            CollectorMonthlyReport.month == month,
            CollectorMonthlyReport.status != ReportStatus.FROZEN,
        )
        .values(collected_amount=CollectorMonthlyReport.collected_amount + delta)
    )


async def _add_receipt(db: AsyncSession, receipt: OnlinePaymentLog, txn: Transaction) -> None:
    receipt.transaction_id = txn.id
    db.add(receipt)
    try:
        # uq_online_payment_applied_txn: one applied row per provider txn id
        await db.flush()
    except IntegrityError as e:
        raise DuplicateError(
            f"Transaction {receipt.txn_id} already processed by {receipt.provider}"
        ) from e


async def attribute_to_collector(
    db: AsyncSession, txn: Transaction
) -> TransactionUserAssignment | None:
    """Credit the payment to the loan's active collector for the payment month."""
    collector_id = await _active_collector_id(db, txn.loan_id)
    if collector_id is None:
        logger.info("Transaction %s on loan %s has no active collector", txn.id, txn.loan_id)
        return None
    assignment = TransactionUserAssignment(
        transaction_id=txn.id,
        user_id=collector_id,
        year=txn.payment_date.year,
        month=txn.payment_date.month,
        amount=txn.amount,
    )
    db.add(assignment)
    await _adjust_legacy_collected(
        db, collector_id, assignment.year, assignment.month, txn.amount
    )
    return assignment


async def _commit(db: AsyncSession, what: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Failed to persist %s: %s", what, e)
        raise UpstreamError(f"Failed to persist {what}") from e


async def _run_unit(db: AsyncSession, what: str, work) -> Any:
    """Run *work()* then commit; roll back and translate errors on failure."""
    try:
        outcome = await work()
    except ServicingError:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Failed to persist %s: %s", what, e)
        raise UpstreamError(f"Failed to persist {what}") from e
    await _commit(db, what)
    return outcome


# ── Payments ─────────────────────────────────────────────────────────────

async def record_payment(
    db: AsyncSession,
    loan_id: int,
    amount: Any,
    channel_account_id: int | None,
    *,
    user_id: int | None = None,
    comment: str | None = None,
    payment_date: date | None = None,
    rate: Any = 1,
    online: bool = False,
    user: User | None = None,
    receipt: OnlinePaymentLog | None = None,
) -> dict:
    """Apply a payment to a loan and return ``{"transaction_id": ...}``.

    *amount* is in the payment currency; it is divided by *rate* to get the
    loan-currency amount that is allocated.  A provider *receipt* is written in
    the same unit of work; if its transaction id was already applied the whole
    payment is rolled back with ``DuplicateError``.
    """
    rate_value = Decimal(str(rate))
    if rate_value <= 0:
        raise ValidationError("Exchange rate must be greater than 0")
    value = to_money(amount)
    if value <= 0:
        raise ValidationError("Amount must be greater than 0")
    if rate_value != 1:
        value = to_money(value / rate_value)
    payment_date = payment_date or date.today()

    async def work():
        loan = await lock_loan(db, loan_id, user)
        _ensure_open(loan)
        remaining = await lock_active_remaining(db, loan_id)
        result: AllocationResult = allocate_payment(
            BalanceSnapshot.from_row(remaining), value, loan_id=loan_id
        )
        now = _now()

        current = remaining
        if result.parked_snapshot is not None:
            current = await replace_snapshot(db, current, result.parked_snapshot, now)
            await db.flush()
        await replace_snapshot(db, current, result.new_snapshot, now)

        txn = Transaction(
            public_id=str(uuid.uuid4()),
            loan_id=loan.id,
            amount=value,
            currency=loan.currency,
            rate=rate_value,
            payment_date=payment_date,
            transaction_channel_account_id=channel_account_id,
            user_id=user_id,
            comment=comment,
            **result.transaction_breakdown(),
        )
        db.add(txn)
        await db.flush()

        db.add(_history_row(loan.id, BalanceSource.PAYMENT, txn.id, result.new_snapshot))

        if result.closes_loan:
            old_status = loan.status_id
            loan.status_id = LoanStatusId.CLOSED_PAID
            loan.closed_at = now
            db.add(LoanStatusHistory(
                loan_id=loan.id,
                old_status_id=old_status,
                new_status_id=LoanStatusId.CLOSED_PAID,
                changed_by=user_id,
                notes=ONLINE_CLOSURE_NOTE if online else MANUAL_CLOSURE_NOTE,
                source_transaction_id=txn.id,
            ))

        await attribute_to_collector(db, txn)

        if receipt is not None:
            await _add_receipt(db, receipt, txn)

        db.add(AuditLog(
            action=AuditAction.PAYMENT_RECORDED,
            entity_type="transaction",
            entity_id=txn.id,
            loan_id=loan.id,
            user_id=user_id,
            new_values={
                "transaction_id": txn.id,
                "amount": str(value),
                "current_debt": str(result.new_current_debt),
                "parked_overpayment": result.parked_snapshot is not None,
                "online": online,
            },
        ))
        return txn, result

    txn, result = await _run_unit(db, f"payment for loan {loan_id}", work)
    logger.info(
        "Payment %s recorded on loan %s: amount=%s applied=%s current_debt=%s closed=%s",
        txn.id, loan_id, value, {k: str(v) for k, v in result.applied.items() if v},
        result.new_current_debt, result.closes_loan,
    )
    return {"transaction_id": txn.id}


# ── Charges ──────────────────────────────────────────────────────────────

async def add_charge(
    db: AsyncSession,
    loan_id: int,
    charge_type_id: int,
    amount: Any,
    *,
    user_id: int | None = None,
    charge_date: date | None = None,
    channel_account_id: int | None = None,
    collector_id: int | None = None,
    lawyer_id: int | None = None,
    comment: str | None = None,
    user: User | None = None,
) -> dict:
    """Add a court/execution or other fee to a loan's balance."""

    async def work():
        loan = await lock_loan(db, loan_id, user)
        _ensure_open(loan)
        remaining = await lock_active_remaining(db, loan_id)
        result = apply_charge(
            BalanceSnapshot.from_row(remaining), amount, charge_type_id, loan_id=loan_id
        )
        now = _now()

        charge = Charge(
            loan_id=loan.id,
            charge_type_id=charge_type_id,
            amount=result.amount,
            currency=loan.currency,
            charge_date=charge_date or date.today(),
            transaction_channel_account_id=channel_account_id,
            user_id=user_id,
            collector_id=collector_id,
            lawyer_id=lawyer_id,
            comment=comment,
        )
        db.add(charge)
        await db.flush()

        await replace_snapshot(db, remaining, result.new_snapshot, now)
        db.add(_history_row(loan.id, BalanceSource.CHARGE, charge.id, result.new_snapshot))
        db.add(AuditLog(
            action=AuditAction.CHARGE_ADDED,
            entity_type="charge",
            entity_id=charge.id,
            loan_id=loan.id,
            user_id=user_id,
            new_values={
                "charge_id": charge.id,
                "charge_type_id": charge_type_id,
                "amount": str(result.amount),
                "current_debt": str(result.new_current_debt),
            },
        ))
        return charge, result

    charge, result = await _run_unit(db, f"charge for loan {loan_id}", work)
    logger.info(
        "Charge %s (type %s) added to loan %s: amount=%s current_debt=%s",
        charge.id, charge_type_id, loan_id, result.amount, result.new_current_debt,
    )
    return {"charge_id": charge.id, "current_debt": result.new_current_debt}


# ── Reversals ────────────────────────────────────────────────────────────

async def _reopen_if_closed_by(
    db: AsyncSession, loan: Loan, txn: Transaction, user_id: int | None, now: datetime
) -> bool:
    if loan.status_id != LoanStatusId.CLOSED_PAID:
        return False
    result = await db.execute(
        select(LoanStatusHistory)
        .where(
            LoanStatusHistory.loan_id == loan.id,
            LoanStatusHistory.source_transaction_id == txn.id,
            LoanStatusHistory.new_status_id == LoanStatusId.CLOSED_PAID,
            LoanStatusHistory.deleted_at.is_(None),
        )
        .order_by(LoanStatusHistory.created_at.desc())
        .limit(1)
    )
    closing = result.scalar_one_or_none()
    if closing is None:
        return False

    previous_status = closing.old_status_id or LoanStatusId.NEW
    loan.status_id = previous_status
    loan.closed_at = None
    closing.deleted_at = now
    db.add(LoanStatusHistory(
        loan_id=loan.id,
        old_status_id=LoanStatusId.CLOSED_PAID,
        new_status_id=previous_status,
        changed_by=user_id,
        notes=f"Loan reopened after reversal of transaction {txn.id}",
        source_transaction_id=txn.id,
    ))
    return True


async def reverse_transaction(
    db: AsyncSession,
    transaction_id: int,
    *,
    user_id: int | None = None,
    reason: str | None = None,
    user: User | None = None,
) -> dict:
    """Undo the latest payment of a loan.

    The transaction row stays as written; the reversal is its own row plus a
    REVERSAL balance-history entry.
    """

    async def work():
        query = select(Transaction).where(Transaction.id == transaction_id)
        if user is not None:
            query = query.where(TransactionScope.scope_for_user(user))
        txn = (await db.execute(query)).scalar_one_or_none()
        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        already = await db.execute(
            select(TransactionReversal.id).where(TransactionReversal.transaction_id == txn.id)
        )
        if already.scalar_one_or_none() is not None:
            raise ValidationError(f"Transaction {txn.id} is already reversed")

        loan = await lock_loan(db, txn.loan_id)

        later = await db.execute(
            select(func.count())
            .select_from(Transaction)
            .outerjoin(TransactionReversal, TransactionReversal.transaction_id == Transaction.id)
            .where(
                Transaction.loan_id == loan.id,
                Transaction.id > txn.id,
                TransactionReversal.id.is_(None),
            )
        )
        if (later.scalar() or 0) > 0:
            raise ValidationError(
                "Only the latest payment of a loan can be reversed; reverse newer payments first"
            )

        remaining = await lock_active_remaining(db, loan.id)
        new_snapshot = reverse_payment(
            BalanceSnapshot.from_row(remaining),
            txn.amount,
            {
                "principal": txn.principal,
                "interest": txn.interest,
                "penalty": txn.penalty,
                "fees": txn.fees,
                "legal": txn.legal,
            },
            loan_id=loan.id,
        )
        now = _now()

        await replace_snapshot(db, remaining, new_snapshot, now)
        db.add(_history_row(loan.id, BalanceSource.REVERSAL, txn.id, new_snapshot))
        db.add(TransactionReversal(transaction_id=txn.id, user_id=user_id, reason=reason))

        assignments = (await db.execute(
            select(TransactionUserAssignment).where(
                TransactionUserAssignment.transaction_id == txn.id,
                TransactionUserAssignment.deleted_at.is_(None),
            )
        )).scalars().all()
        for assignment in assignments:
            assignment.deleted_at = now
            await _adjust_legacy_collected(
                db, assignment.user_id, assignment.year, assignment.month, -assignment.amount
            )

        reopened = await _reopen_if_closed_by(db, loan, txn, user_id, now)

        db.add(AuditLog(
            action=AuditAction.TRANSACTION_REVERSED,
            entity_type="transaction",
            entity_id=txn.id,
            loan_id=txn.loan_id,
            user_id=user_id,
            old_values={"amount": str(txn.amount)},
            new_values={"current_debt": str(new_snapshot.current_debt), "reopened": reopened},
            details=reason,
        ))
        return loan, new_snapshot, reopened

    loan, new_snapshot, reopened = await _run_unit(
        db, f"reversal of transaction {transaction_id}", work
    )
    logger.info(
        "Transaction %s reversed on loan %s: current_debt=%s reopened=%s",
        transaction_id, loan.id, new_snapshot.current_debt, reopened,
    )
    return {
        "transaction_id": transaction_id,
        "loan_id": loan.id,
        "current_debt": new_snapshot.current_debt,
        "reopened": reopened,
    }


# ── Settlements ──────────────────────────────────────────────────────────

async def settle_loan_to_agreement(
    db: AsyncSession,
    loan_id: int,
    agreement_min: Any,
    *,
    user_id: int | None = None,
    committee_request_id: int | None = None,
) -> dict:
    """Rebase a loan's balance on a committee-approved settlement amount."""

    async def work():
        loan = await lock_loan(db, loan_id)
        _ensure_open(loan)
        remaining = await lock_active_remaining(db, loan_id)
        old_snapshot = BalanceSnapshot.from_row(remaining)
        new_snapshot = settle_to_agreement_min(old_snapshot, agreement_min, loan_id=loan_id)
        now = _now()

        await replace_snapshot(db, remaining, new_snapshot, now)
        db.add(_history_row(loan.id, BalanceSource.SETTLEMENT, committee_request_id, new_snapshot))
        db.add(AuditLog(
            action=AuditAction.AGREEMENT_SETTLED,
            entity_type="loan",
            entity_id=loan.id,
            loan_id=loan.id,
            user_id=user_id,
            old_values={"current_debt": str(old_snapshot.current_debt)},
            new_values={
                "current_debt": str(new_snapshot.current_debt),
                "committee_request_id": committee_request_id,
            },
        ))
        return new_snapshot

    new_snapshot = await _run_unit(db, f"settlement for loan {loan_id}", work)
    logger.info("Loan %s settled to %s", loan_id, new_snapshot.current_debt)
    return {"loan_id": loan_id, "current_debt": new_snapshot.current_debt}
