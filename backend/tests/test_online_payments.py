"""Tests for bill-payment provider CHECK / PAY handling."""

import asyncio

import pytest
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from sqlalchemy.exc import OperationalError

from app.errors import DuplicateError, NotFoundError, UpstreamError, ValidationError
from app.models.loan import LoanStatusId
from app.models.payment import OnlinePaymentLog
from app.services.online_payments import (
    InvalidAmountError,
    PaymentProhibitedError,
    ResultCode,
    check_duplicate_transaction,
    find_payable_loan,
    handle_check,
    handle_pay,
    parse_payment_amount,
    result_code_for,
)


def _loan(**overrides):
    values = dict(id=1, case_id="C-100", currency="GEL", status_id=LoanStatusId.AGREEMENT, closed_at=None)
    values.update(overrides)
    return SimpleNamespace(**values)


def _debtor(**overrides):
    values = dict(first_name="Tamar", last_name="Lomidze", id_number="01024055667")
    values.update(overrides)
    return SimpleNamespace(**values)


def _remaining(agreement_min=None):
    return SimpleNamespace(
        principal=Decimal("400"), interest=Decimal("50"), penalty=Decimal("50"),
        other_fee=Decimal("0"), legal_charges=Decimal("0"), current_debt=Decimal("500"),
        agreement_min=agreement_min,
    )


def _first(row):
    result = MagicMock()
    result.first.return_value = row
    return result


def _scalar(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _mock_db(*results):
    db = AsyncMock()
    db.add = MagicMock()
    db.execute.side_effect = list(results)
    return db


def _logged(db) -> OnlinePaymentLog:
    logs = [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], OnlinePaymentLog)]
    assert len(logs) == 1
    return logs[0]


# ── parse_payment_amount ──────────────────────────

class TestParsePaymentAmount:
    @pytest.mark.parametrize("text,expected", [
        ("100", Decimal("100")),
        ("12.5", Decimal("12.5")),
        (" 0.01 ", Decimal("0.01")),
    ])
    def test_valid(self, text, expected):
        assert parse_payment_amount(text) == expected

    @pytest.mark.parametrize("text", [None, "", "abc", "-5", "1.234", "1e3", "0", "0.00"])
    def test_invalid(self, text):
        with pytest.raises(InvalidAmountError):
            parse_payment_amount(text)


class TestResultCodes:
    def test_mapping(self):
        assert result_code_for(InvalidAmountError("x")) == ResultCode.INVALID_AMOUNT
        assert result_code_for(PaymentProhibitedError("x")) == ResultCode.PAYMENT_PROHIBITED
        assert result_code_for(DuplicateError("x")) == ResultCode.DUPLICATE
        assert result_code_for(NotFoundError("x")) == ResultCode.ACCOUNT_NOT_FOUND
        assert result_code_for(ValidationError("x")) == ResultCode.INVALID_FORMAT
        assert result_code_for(UpstreamError("x")) == ResultCode.SERVER_TIMEOUT


# ── find_payable_loan ─────────────────────────────

class TestFindPayableLoan:
    @pytest.mark.asyncio
    async def test_found(self):
        db = _mock_db(_first((_loan(), _debtor())), _scalar(_remaining()))
        loan = await find_payable_loan(db, "C-100")
        assert loan.loan_id == 1
        assert loan.debtor_name == "Tamar Lomidze"
        assert loan.payable_debt == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_agreement_min_quoted(self):
        db = _mock_db(_first((_loan(), _debtor())), _scalar(_remaining(Decimal("300"))))
        loan = await find_payable_loan(db, "C-100")
        assert loan.payable_debt == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_personal_id_compared_case_insensitively(self):
        db = _mock_db(
            _first((_loan(), _debtor(id_number="ab123"))), _scalar(_remaining())
        )
        loan = await find_payable_loan(db, "C-100", personal_id="AB123")
        assert loan.case_id == "C-100"

    @pytest.mark.asyncio
    async def test_personal_id_mismatch(self):
        db = _mock_db(_first((_loan(), _debtor())))
        with pytest.raises(NotFoundError):
            await find_payable_loan(db, "C-100", personal_id="999")

    @pytest.mark.asyncio
    async def test_unknown_case(self):
        db = _mock_db(_first(None))
        with pytest.raises(NotFoundError):
            await find_payable_loan(db, "C-404")

    @pytest.mark.asyncio
    async def test_closed_loan_prohibited(self):
        db = _mock_db(_first((_loan(status_id=LoanStatusId.CLOSED_PAID), _debtor())))
        with pytest.raises(PaymentProhibitedError):
            await find_payable_loan(db, "C-100")

    @pytest.mark.asyncio
    async def test_blank_case_id(self):
        with pytest.raises(ValidationError):
            await find_payable_loan(_mock_db(), "  ")


class TestCheckDuplicate:
    @pytest.mark.asyncio
    async def test_applied_txn_rejected(self):
        db = _mock_db(_scalar(12))
        with pytest.raises(DuplicateError):
            await check_duplicate_transaction(db, "TBCPAY", "T-1")

    @pytest.mark.asyncio
    async def test_new_txn_passes(self):
        db = _mock_db(_scalar(None))
        await check_duplicate_transaction(db, "TBCPAY", "T-1")


# ── handle_check / handle_pay ─────────────────────

class TestHandleCheck:
    @pytest.mark.asyncio
    async def test_success_logged(self):
        db = _mock_db(_first((_loan(), _debtor())), _scalar(_remaining()))
        response = await handle_check(db, "TBCPAY", "C-100", ip_address="10.0.0.1")

        body = response.as_dict()
        assert body["status"]["code"] == 0
        assert body["account"]["debt"] == "500.00"
        log = _logged(db)
        assert log.command == "CHECK"
        assert log.result_code == 0
        assert log.ip_address == "10.0.0.1"
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_not_found_answered_with_code(self):
        db = _mock_db(_first(None))
        response = await handle_check(db, "TBCPAY", "C-404")
        assert response.code == ResultCode.ACCOUNT_NOT_FOUND
        assert "account" not in response.as_dict()
        assert _logged(db).result_code == ResultCode.ACCOUNT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_database_error_answered_as_timeout(self):
        db = _mock_db(OperationalError("SELECT", {}, Exception("down")))
        with patch("app.services.online_payments.log_error_standalone", new_callable=AsyncMock) as log_error:
            response = await handle_check(db, "TBCPAY", "C-100")
        assert response.code == ResultCode.SERVER_TIMEOUT
        log_error.assert_awaited_once()


class TestHandlePay:
    @pytest.mark.asyncio
    async def test_payment_applied(self):
        db = _mock_db(_scalar(None), _first((_loan(), _debtor())), _scalar(_remaining()))
        with patch(
            "app.services.online_payments.record_payment",
            new_callable=AsyncMock,
            return_value={"transaction_id": 77},
        ) as record:
            response = await handle_pay(db, "TBCPAY", "C-100", "120.50", "T-1")

        assert response.as_dict() == {"status": {"code": 0, "message": "OK"}, "transaction_id": 77}
        args, kwargs = record.call_args
        assert args[1] == 1
        assert args[2] == Decimal("120.50")
        assert kwargs["online"] is True
        receipt = kwargs["receipt"]
        assert receipt.command == "PAY"
        assert receipt.txn_id == "T-1"
        assert receipt.amount == Decimal("120.50")
        assert receipt.result_code == ResultCode.SUCCESS
        # Written by the payment unit of work, not by a second commit
        db.add.assert_not_called()
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_rejected_before_allocation(self):
        db = _mock_db(_scalar(5))
        with patch("app.services.online_payments.record_payment", new_callable=AsyncMock) as record:
            response = await handle_pay(db, "TBCPAY", "C-100", "10", "T-1")
        assert response.code == ResultCode.DUPLICATE
        record.assert_not_awaited()
        assert _logged(db).result_code == ResultCode.DUPLICATE

    @pytest.mark.asyncio
    async def test_concurrent_same_txn_applied_once(self):
        db_first = _mock_db(_scalar(None), _first((_loan(), _debtor())), _scalar(_remaining()))
        db_second = _mock_db(_scalar(None), _first((_loan(), _debtor())), _scalar(_remaining()))
        with patch(
            "app.services.online_payments.record_payment",
            new_callable=AsyncMock,
            side_effect=[{"transaction_id": 77}, DuplicateError("Transaction T-9 already processed")],
        ) as record:
            responses = await asyncio.gather(
                handle_pay(db_first, "TBCPAY", "C-100", "10", "T-9"),
                handle_pay(db_second, "TBCPAY", "C-100", "10", "T-9"),
            )

        assert record.await_count == 2
        assert sorted(r.code for r in responses) == [ResultCode.SUCCESS, ResultCode.DUPLICATE]
        rejected = db_second if responses[1].code == ResultCode.DUPLICATE else db_first
        rejected.rollback.assert_awaited()
        assert _logged(rejected).result_code == ResultCode.DUPLICATE

    @pytest.mark.asyncio
    async def test_invalid_amount(self):
        db = _mock_db()
        response = await handle_pay(db, "TBCPAY", "C-100", "12,50", "T-1")
        assert response.code == ResultCode.INVALID_AMOUNT
        db.execute.assert_not_awaited()
        assert _logged(db).amount is None

    @pytest.mark.asyncio
    async def test_closed_loan_prohibited(self):
        db = _mock_db(_scalar(None), _first((_loan(closed_at="yesterday"), _debtor())))
        response = await handle_pay(db, "TBCPAY", "C-100", "10", "T-2")
        assert response.code == ResultCode.PAYMENT_PROHIBITED

    @pytest.mark.asyncio
    async def test_log_failure_does_not_change_answer(self):
        db = _mock_db(_first((_loan(), _debtor())), _scalar(_remaining()))
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("down"))
        response = await handle_check(db, "TBCPAY", "C-100")
        assert response.code == ResultCode.SUCCESS
        db.rollback.assert_awaited_once()
