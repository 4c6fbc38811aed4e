"""Tests for payment, charge, reversal and settlement units of work."""

import pytest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import IntegrityError, OperationalError

from app.errors import DuplicateError, NotFoundError, UpstreamError, ValidationError
from app.models.audit import AuditAction, AuditLog
from app.models.balance import BalanceSource, LoanBalanceHistory, LoanRemaining
from app.models.collection import Charge
from app.models.loan import LoanStatusHistory, LoanStatusId
from app.models.payment import (
    OnlinePaymentLog, Transaction, TransactionReversal, TransactionUserAssignment,
)
from app.services.payments import (
    MANUAL_CLOSURE_NOTE,
    ONLINE_CLOSURE_NOTE,
    add_charge,
    record_payment,
    reverse_transaction,
    settle_loan_to_agreement,
)

D = Decimal


def _result(scalar=None, scalars=None, count=None):
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalar.return_value = count
    result.scalars.return_value.all.return_value = scalars or []
    return result


def _mock_db(*results):
    """Session whose execute() answers *results* in order; flush() assigns ids."""
    db = AsyncMock()
    db.added = []
    db.add = MagicMock(side_effect=db.added.append)
    db.execute.side_effect = list(results)

    async def flush():
        for i, obj in enumerate(db.added, start=500):
            if getattr(obj, "id", None) is None:
                obj.id = i

    db.flush.side_effect = flush
    return db


def _added(db, model):
    return [obj for obj in db.added if isinstance(obj, model)]


def _loan(**overrides):
    values = dict(id=1, status_id=LoanStatusId.COMMUNICATION, closed_at=None, currency="GEL")
    values.update(overrides)
    return SimpleNamespace(**values)


def _remaining(**overrides):
    values = dict(
        id=10, loan_id=1, principal=D("80"), interest=D("10"), penalty=D("10"),
        other_fee=D("0"), legal_charges=D("0"), current_debt=D("100"),
        agreement_min=None, deleted_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _receipt():
    return OnlinePaymentLog(
        provider="TBCPAY", txn_id="T-9", command="PAY", case_id="C-100",
        amount=D("30"), result_code=0, result_message="OK",
    )


# ── record_payment ────────────────────────────────

class TestRecordPayment:
    @pytest.mark.asyncio
    async def test_partial_payment(self):
        remaining = _remaining()
        db = _mock_db(
            _result(scalar=_loan()),
            _result(scalar=remaining),
            _result(scalar=None),  # no active collector
        )
        outcome = await record_payment(db, 1, "30", 3, user_id=9, payment_date=date(2026, 3, 5))

        txn = _added(db, Transaction)[0]
        assert outcome == {"transaction_id": txn.id}
        assert txn.amount == D("30.00")
        assert txn.penalty == D("10.00")
        assert txn.interest == D("10.00")
        assert txn.principal == D("10.00")
        assert remaining.deleted_at is not None

        snapshot = _added(db, LoanRemaining)[0]
        assert snapshot.current_debt == D("70.00")
        history = _added(db, LoanBalanceHistory)[0]
        assert history.source_type == BalanceSource.PAYMENT
        assert history.source_id == txn.id
        assert _added(db, LoanStatusHistory) == []
        audit = _added(db, AuditLog)[0]
        assert audit.action == AuditAction.PAYMENT_RECORDED
        assert audit.entity_id == txn.id
        assert audit.loan_id == 1
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exact_payoff_closes_loan(self):
        loan = _loan()
        db = _mock_db(_result(scalar=loan), _result(scalar=_remaining()), _result(scalar=None))
        await record_payment(db, 1, "100", None, user_id=9)

        assert loan.status_id == LoanStatusId.CLOSED_PAID
        assert loan.closed_at is not None
        status_row = _added(db, LoanStatusHistory)[0]
        assert status_row.old_status_id == LoanStatusId.COMMUNICATION
        assert status_row.new_status_id == LoanStatusId.CLOSED_PAID
        assert status_row.notes == MANUAL_CLOSURE_NOTE
        assert status_row.source_transaction_id == _added(db, Transaction)[0].id

    @pytest.mark.asyncio
    async def test_online_closure_note(self):
        db = _mock_db(_result(scalar=_loan()), _result(scalar=_remaining()), _result(scalar=None))
        await record_payment(db, 1, "100", None, online=True)
        assert _added(db, LoanStatusHistory)[0].notes == ONLINE_CLOSURE_NOTE

    @pytest.mark.asyncio
    async def test_overpayment_writes_parked_snapshot_first(self):
        db = _mock_db(_result(scalar=_loan()), _result(scalar=_remaining()), _result(scalar=None))
        await record_payment(db, 1, "150", None)

        parked, final = _added(db, LoanRemaining)
        assert parked.current_debt == D("150.00")
        assert parked.penalty == D("60.00")
        assert parked.deleted_at is not None
        assert final.current_debt == D("0.00")

    @pytest.mark.asyncio
    async def test_rate_converts_amount(self):
        db = _mock_db(_result(scalar=_loan()), _result(scalar=_remaining()), _result(scalar=None))
        await record_payment(db, 1, "54", None, rate="2.7")
        txn = _added(db, Transaction)[0]
        assert txn.amount == D("20.00")
        assert txn.rate == D("2.7")

    @pytest.mark.asyncio
    async def test_attributed_to_active_collector(self):
        db = _mock_db(
            _result(scalar=_loan()),
            _result(scalar=_remaining()),
            _result(scalar=42),
            _result(),  # legacy collected amount update
        )
        await record_payment(db, 1, "30", None, payment_date=date(2026, 3, 5))
        assignment = _added(db, TransactionUserAssignment)[0]
        assert assignment.user_id == 42
        assert (assignment.year, assignment.month) == (2026, 3)
        assert assignment.amount == D("30.00")
        assert db.execute.await_count == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-10"])
    async def test_non_positive_amount_rejected(self, amount):
        db = _mock_db()
        with pytest.raises(ValidationError):
            await record_payment(db, 1, amount, None)
        db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_loan(self):
        db = _mock_db(_result(scalar=None))
        with pytest.raises(NotFoundError):
            await record_payment(db, 1, "10", None)
        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_snapshot(self):
        db = _mock_db(_result(scalar=_loan()), _result(scalar=None))
        with pytest.raises(NotFoundError):
            await record_payment(db, 1, "10", None)

    @pytest.mark.asyncio
    async def test_closed_loan_rejected(self):
        db = _mock_db(_result(scalar=_loan(status_id=LoanStatusId.CLOSED_PAID)))
        with pytest.raises(ValidationError):
            await record_payment(db, 1, "10", None)

    @pytest.mark.asyncio
    async def test_database_failure_rolled_back(self):
        db = _mock_db(_result(scalar=_loan()), _result(scalar=_remaining()), _result(scalar=None))
        db.commit.side_effect = OperationalError("COMMIT", {}, Exception("connection lost"))
        with pytest.raises(UpstreamError) as exc_info:
            await record_payment(db, 1, "10", None)
        assert "connection lost" not in exc_info.value.message
        db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_provider_receipt_committed_with_payment(self):
        db = _mock_db(_result(scalar=_loan()), _result(scalar=_remaining()), _result(scalar=None))
        await record_payment(db, 1, "30", None, online=True, receipt=_receipt())

        txn = _added(db, Transaction)[0]
        receipt = _added(db, OnlinePaymentLog)[0]
        assert receipt.transaction_id == txn.id
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_already_applied_provider_txn_rolls_back(self):
        db = _mock_db(_result(scalar=_loan()), _result(scalar=_remaining()), _result(scalar=None))
        assign_ids = db.flush.side_effect

        async def flush():
            if _added(db, OnlinePaymentLog):
                raise IntegrityError(
                    "INSERT INTO online_payment_log", {}, Exception("uq_online_payment_applied_txn")
                )
            await assign_ids()

        db.flush.side_effect = flush
        with pytest.raises(DuplicateError):
            await record_payment(db, 1, "30", None, online=True, receipt=_receipt())
        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()


# ── add_charge ────────────────────────────────────

class TestAddCharge:
    @pytest.mark.asyncio
    async def test_court_fee_raises_legal_charges(self):
        db = _mock_db(_result(scalar=_loan()), _result(scalar=_remaining()))
        outcome = await add_charge(db, 1, 1, "25", user_id=9)

        charge = _added(db, Charge)[0]
        assert outcome == {"charge_id": charge.id, "current_debt": D("125.00")}
        snapshot = _added(db, LoanRemaining)[0]
        assert snapshot.legal_charges == D("25.00")
        history = _added(db, LoanBalanceHistory)[0]
        assert history.source_type == BalanceSource.CHARGE
        assert history.source_id == charge.id

    @pytest.mark.asyncio
    async def test_unknown_charge_type(self):
        db = _mock_db(_result(scalar=_loan()), _result(scalar=_remaining()))
        with pytest.raises(ValidationError):
            await add_charge(db, 1, 77, "25")
        db.commit.assert_not_awaited()


# ── reverse_transaction ───────────────────────────

def _txn(**overrides):
    values = dict(
        id=55, loan_id=1, amount=D("30"), principal=D("10"), interest=D("10"),
        penalty=D("10"), fees=D("0"), legal=D("0"),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestReverseTransaction:
    @pytest.mark.asyncio
    async def test_reversal_restores_balance_and_attribution(self):
        remaining = _remaining(principal=D("70"), interest=D("0"), penalty=D("0"), current_debt=D("70"))
        assignment = SimpleNamespace(user_id=42, year=2026, month=3, amount=D("30"), deleted_at=None)
        db = _mock_db(
            _result(scalar=_txn()),
            _result(scalar=None),        # not yet reversed
            _result(scalar=_loan()),
            _result(count=0),            # no later payments
            _result(scalar=remaining),
            _result(scalars=[assignment]),
            _result(),                   # legacy collected amount update
        )
        outcome = await reverse_transaction(db, 55, user_id=9, reason="bounced")

        assert outcome == {
            "transaction_id": 55, "loan_id": 1, "current_debt": D("100.00"), "reopened": False,
        }
        snapshot = _added(db, LoanRemaining)[0]
        assert snapshot.penalty == D("10.00")
        assert snapshot.interest == D("10.00")
        assert snapshot.principal == D("80.00")
        assert _added(db, TransactionReversal)[0].reason == "bounced"
        assert _added(db, LoanBalanceHistory)[0].source_type == BalanceSource.REVERSAL
        assert assignment.deleted_at is not None

    @pytest.mark.asyncio
    async def test_reopens_loan_closed_by_the_payment(self):
        loan = _loan(status_id=LoanStatusId.CLOSED_PAID, closed_at="closed")
        closing = SimpleNamespace(old_status_id=LoanStatusId.AGREEMENT, deleted_at=None)
        remaining = _remaining(
            principal=D("0"), interest=D("0"), penalty=D("0"), current_debt=D("0")
        )
        db = _mock_db(
            _result(scalar=_txn()),
            _result(scalar=None),
            _result(scalar=loan),
            _result(count=0),
            _result(scalar=remaining),
            _result(scalars=[]),
            _result(scalar=closing),
        )
        outcome = await reverse_transaction(db, 55)

        assert outcome["reopened"] is True
        assert loan.status_id == LoanStatusId.AGREEMENT
        assert loan.closed_at is None
        assert closing.deleted_at is not None
        reopen_row = _added(db, LoanStatusHistory)[0]
        assert reopen_row.old_status_id == LoanStatusId.CLOSED_PAID
        assert reopen_row.new_status_id == LoanStatusId.AGREEMENT

    @pytest.mark.asyncio
    async def test_only_latest_payment_can_be_reversed(self):
        db = _mock_db(
            _result(scalar=_txn()),
            _result(scalar=None),
            _result(scalar=_loan()),
            _result(count=1),
        )
        with pytest.raises(ValidationError):
            await reverse_transaction(db, 55)
        db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_already_reversed(self):
        db = _mock_db(_result(scalar=_txn()), _result(scalar=3))
        with pytest.raises(ValidationError):
            await reverse_transaction(db, 55)

    @pytest.mark.asyncio
    async def test_missing_transaction(self):
        db = _mock_db(_result(scalar=None))
        with pytest.raises(NotFoundError):
            await reverse_transaction(db, 55)


# ── settle_loan_to_agreement ──────────────────────

class TestSettlement:
    @pytest.mark.asyncio
    async def test_settlement_rebases_balance(self):
        db = _mock_db(_result(scalar=_loan()), _result(scalar=_remaining()))
        outcome = await settle_loan_to_agreement(db, 1, "60", user_id=9, committee_request_id=4)

        assert outcome == {"loan_id": 1, "current_debt": D("60.00")}
        snapshot = _added(db, LoanRemaining)[0]
        assert snapshot.agreement_min == D("60.00")
        history = _added(db, LoanBalanceHistory)[0]
        assert history.source_type == BalanceSource.SETTLEMENT
        assert history.source_id == 4
