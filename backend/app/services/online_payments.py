"""Payments received through bill-payment providers (payment terminals, bank apps).

The provider asks two things: CHECK (does this case exist, how much is owed)
and PAY (apply this amount under the provider's transaction id).  Every call is
answered with a provider result code and recorded in ``online_payment_log``.
A provider transaction id that was already applied is rejected before any
allocation happens.
"""

import enum
import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import (
    DuplicateError, NotFoundError, ServicingError, UpstreamError, ValidationError,
)
from app.models.balance import LoanRemaining
from app.models.loan import CLOSED_STATUS_IDS, Debtor, Loan
from app.models.payment import OnlinePaymentLog
from app.services.allocation import BalanceSnapshot
from app.services.error_logger import log_error_standalone
from app.services.payments import record_payment

logger = logging.getLogger(__name__)

_AMOUNT_RE = re.compile(r"^\d+(\.\d{1,2})?$")


class ResultCode(enum.IntEnum):
    SUCCESS = 0
    SERVER_TIMEOUT = 1
    INVALID_FORMAT = 4
    ACCOUNT_NOT_FOUND = 5
    PAYMENT_PROHIBITED = 7
    DUPLICATE = 215
    INVALID_AMOUNT = 275
    FATAL_ERROR = 300


RESULT_MESSAGES = {
    ResultCode.SUCCESS: "OK",
    ResultCode.SERVER_TIMEOUT: "Temporary database error. Try again later",
    ResultCode.INVALID_FORMAT: "Invalid request format",
    ResultCode.ACCOUNT_NOT_FOUND: "Loan not found or personal ID mismatch",
    ResultCode.PAYMENT_PROHIBITED: "Payment prohibited - loan is closed",
    ResultCode.DUPLICATE: "Transaction already processed",
    ResultCode.INVALID_AMOUNT: "Invalid amount",
    ResultCode.FATAL_ERROR: "System error. Try again later",
}


class InvalidAmountError(ValidationError):
    pass


class PaymentProhibitedError(ValidationError):
    pass


def result_code_for(exc: Exception) -> ResultCode:
    if isinstance(exc, InvalidAmountError):
        return ResultCode.INVALID_AMOUNT
    if isinstance(exc, PaymentProhibitedError):
        return ResultCode.PAYMENT_PROHIBITED
    if isinstance(exc, DuplicateError):
        return ResultCode.DUPLICATE
    if isinstance(exc, NotFoundError):
        return ResultCode.ACCOUNT_NOT_FOUND
    if isinstance(exc, ValidationError):
        return ResultCode.INVALID_FORMAT
    if isinstance(exc, UpstreamError):
        return ResultCode.SERVER_TIMEOUT
    return ResultCode.FATAL_ERROR


@dataclass(frozen=True)
class PayableLoan:
    loan_id: int
    case_id: str
    debtor_name: str
    currency: str
    payable_debt: Decimal


@dataclass(frozen=True)
class ProviderResponse:
    code: ResultCode
    message: str
    loan: PayableLoan | None = None
    transaction_id: int | None = None
    # Log row already written with the payment
    logged: bool = False

    def as_dict(self) -> dict:
        body: dict = {"status": {"code": int(self.code), "message": self.message}}
        if self.loan is not None:
            body["account"] = {
                "case_id": self.loan.case_id,
                "debtor": self.loan.debtor_name,
                "currency": self.loan.currency,
                "debt": str(self.loan.payable_debt),
            }
        if self.transaction_id is not None:
            body["transaction_id"] = self.transaction_id
        return body


def parse_payment_amount(text: str | None) -> Decimal:
    """A positive decimal string with at most two fraction digits."""
    if text is None or not _AMOUNT_RE.match(text.strip()):
        raise InvalidAmountError(f"Invalid amount: {text!r}")
    amount = Decimal(text.strip())
    if amount <= 0:
        raise InvalidAmountError("Amount must be greater than 0")
    return amount


async def find_payable_loan(
    db: AsyncSession, case_id: str, personal_id: str | None = None
) -> PayableLoan:
    if not case_id or not case_id.strip():
        raise ValidationError("case_id is required")

    result = await db.execute(
        select(Loan, Debtor)
        .join(Debtor, Debtor.id == Loan.debtor_id)
        .where(Loan.case_id == case_id.strip(), Loan.deleted_at.is_(None))
    )
    row = result.first()
    if row is None:
        raise NotFoundError(f"Loan with case id {case_id} not found")
    loan, debtor = row

    if personal_id and personal_id.strip().lower() != (debtor.id_number or "").strip().lower():
        raise NotFoundError(f"Personal id does not match case {case_id}")
    if loan.closed_at is not None or loan.status_id in CLOSED_STATUS_IDS:
        raise PaymentProhibitedError(f"Loan {case_id} is closed")

    remaining = (await db.execute(
        select(LoanRemaining).where(
            LoanRemaining.loan_id == loan.id, LoanRemaining.deleted_at.is_(None)
        )
    )).scalar_one_or_none()
    if remaining is None:
        raise NotFoundError(f"Active balance for case {case_id} not found")

    return PayableLoan(
        loan_id=loan.id,
        case_id=loan.case_id,
        debtor_name=f"{debtor.first_name} {debtor.last_name}",
        currency=loan.currency,
        payable_debt=BalanceSnapshot.from_row(remaining).payable_debt,
    )


async def check_duplicate_transaction(db: AsyncSession, provider: str, txn_id: str) -> None:
    result = await db.execute(
        select(OnlinePaymentLog.id).where(
            OnlinePaymentLog.provider == provider,
            OnlinePaymentLog.txn_id == txn_id,
            OnlinePaymentLog.command == "PAY",
            OnlinePaymentLog.result_code == ResultCode.SUCCESS,
        ).limit(1)
    )
    if result.scalar_one_or_none() is not None:
        raise DuplicateError(f"Transaction {txn_id} already processed")


async def process_online_payment(
    db: AsyncSession,
    provider: str,
    case_id: str,
    amount_text: str,
    txn_id: str,
    *,
    personal_id: str | None = None,
    pay_date: date | None = None,
    ip_address: str | None = None,
) -> tuple[PayableLoan, int]:
    """Validate and apply one provider payment; returns the loan and transaction id.

    The SUCCESS log row is committed together with the payment, so a txn_id
    that slipped past the duplicate check (a concurrent retry) fails the whole
    unit with ``DuplicateError`` instead of being applied twice.
    """
    if not txn_id or not txn_id.strip():
        raise ValidationError("txn_id is required")
    amount = parse_payment_amount(amount_text)
    await check_duplicate_transaction(db, provider, txn_id)
    loan = await find_payable_loan(db, case_id, personal_id)

    receipt = OnlinePaymentLog(
        provider=provider,
        txn_id=txn_id,
        command="PAY",
        case_id=loan.case_id,
        amount=amount,
        result_code=int(ResultCode.SUCCESS),
        result_message=RESULT_MESSAGES[ResultCode.SUCCESS],
        ip_address=ip_address,
    )
    outcome = await record_payment(
        db,
        loan.loan_id,
        amount,
        settings.online_payment_channel_account_id,
        comment=f"{provider} payment {txn_id}",
        payment_date=pay_date,
        online=True,
        receipt=receipt,
    )
    return loan, outcome["transaction_id"]


async def _log_call(
    db: AsyncSession,
    *,
    provider: str,
    command: str,
    case_id: str,
    txn_id: str | None,
    amount_text: str | None,
    response: ProviderResponse,
    ip_address: str | None,
) -> None:
    try:
        amount = parse_payment_amount(amount_text) if amount_text else None
    except InvalidAmountError:
        amount = None
    db.add(OnlinePaymentLog(
        provider=provider,
        txn_id=txn_id,
        command=command,
        case_id=case_id or "",
        amount=amount,
        result_code=int(response.code),
        result_message=response.message,
        ip_address=ip_address,
        transaction_id=response.transaction_id,
    ))
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning("Failed to write online payment log for %s %s: %s", provider, txn_id, e)


async def _answer(
    db: AsyncSession,
    command: str,
    call: Callable[[], Awaitable[ProviderResponse]],
    *,
    provider: str,
    case_id: str,
    txn_id: str | None,
    amount_text: str | None,
    ip_address: str | None,
) -> ProviderResponse:
    try:
        response = await call()
    except ServicingError as e:
        await db.rollback()
        code = result_code_for(e)
        logger.info("%s %s for case %s rejected with %s: %s", provider, command, case_id, code.name, e.message)
        response = ProviderResponse(code=code, message=RESULT_MESSAGES[code])
    except SQLAlchemyError as e:
        await db.rollback()
        await log_error_standalone(e, module="services.online_payments", function_name=command.lower())
        response = ProviderResponse(
            code=ResultCode.SERVER_TIMEOUT, message=RESULT_MESSAGES[ResultCode.SERVER_TIMEOUT]
        )

    if response.logged:
        return response
    await _log_call(
        db,
        provider=provider,
        command=command,
        case_id=case_id,
        txn_id=txn_id,
        amount_text=amount_text,
        response=response,
        ip_address=ip_address,
    )
    return response


async def handle_check(
    db: AsyncSession,
    provider: str,
    case_id: str,
    *,
    personal_id: str | None = None,
    ip_address: str | None = None,
) -> ProviderResponse:
    async def call() -> ProviderResponse:
        loan = await find_payable_loan(db, case_id, personal_id)
        return ProviderResponse(
            code=ResultCode.SUCCESS, message=RESULT_MESSAGES[ResultCode.SUCCESS], loan=loan
        )

    return await _answer(
        db, "CHECK", call,
        provider=provider, case_id=case_id, txn_id=None, amount_text=None, ip_address=ip_address,
    )


async def handle_pay(
    db: AsyncSession,
    provider: str,
    case_id: str,
    amount_text: str,
    txn_id: str,
    *,
    personal_id: str | None = None,
    pay_date: date | None = None,
    ip_address: str | None = None,
) -> ProviderResponse:
    async def call() -> ProviderResponse:
        _, transaction_id = await process_online_payment(
            db, provider, case_id, amount_text, txn_id,
            personal_id=personal_id, pay_date=pay_date, ip_address=ip_address,
        )
        logger.info("%s payment %s applied to case %s as transaction %s", provider, txn_id, case_id, transaction_id)
        return ProviderResponse(
            code=ResultCode.SUCCESS,
            message=RESULT_MESSAGES[ResultCode.SUCCESS],
            transaction_id=transaction_id,
            logged=True,
        )

    return await _answer(
        db, "PAY", call,
        provider=provider, case_id=case_id, txn_id=txn_id, amount_text=amount_text,
        ip_address=ip_address,
    )
