"""Payment endpoints: record payments, add charges, reverse transactions."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_utils import require_roles
from app.database import get_db
from app.errors import ServicingError
from app.models.user import User, UserRole
from app.schemas import (
    ChargeAdded,
    ChargeCreate,
    PaymentCreate,
    PaymentRecorded,
    ReversalRequest,
    ReversalResponse,
)
from app.services import payments as payment_service
from app.services.error_logger import log_error

logger = logging.getLogger(__name__)
router = APIRouter()

PAYMENT_ROLES = (UserRole.ADMIN, UserRole.MANAGER, UserRole.COLLECTOR)
CHARGE_ROLES = (UserRole.ADMIN, UserRole.MANAGER, UserRole.LAWYER)
REVERSAL_ROLES = (UserRole.ADMIN, UserRole.MANAGER)


@router.post("/loans/{loan_id}", response_model=PaymentRecorded, status_code=201)
async def record_payment(
    loan_id: int,
    data: PaymentCreate,
    current_user: User = Depends(require_roles(*PAYMENT_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Staff records a manual payment for a loan."""
    try:
        return await payment_service.record_payment(
            db,
            loan_id,
            data.amount,
            data.channel_account_id,
            user_id=current_user.id,
            comment=data.comment,
            payment_date=data.payment_date,
            rate=data.rate,
            user=current_user,
        )
    except (HTTPException, ServicingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.payments", function_name="record_payment")
        raise


@router.post("/loans/{loan_id}/charges", response_model=ChargeAdded, status_code=201)
async def add_charge(
    loan_id: int,
    data: ChargeCreate,
    current_user: User = Depends(require_roles(*CHARGE_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Add a court, execution or other fee to the loan balance."""
    try:
        return await payment_service.add_charge(
            db,
            loan_id,
            data.charge_type_id,
            data.amount,
            user_id=current_user.id,
            charge_date=data.charge_date,
            channel_account_id=data.channel_account_id,
            collector_id=data.collector_id,
            lawyer_id=data.lawyer_id,
            comment=data.comment,
            user=current_user,
        )
    except (HTTPException, ServicingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.payments", function_name="add_charge")
        raise


@router.post("/transactions/{transaction_id}/reverse", response_model=ReversalResponse)
async def reverse_transaction(
    transaction_id: int,
    data: ReversalRequest,
    current_user: User = Depends(require_roles(*REVERSAL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await payment_service.reverse_transaction(
            db,
            transaction_id,
            user_id=current_user.id,
            reason=data.reason,
            user=current_user,
        )
    except (HTTPException, ServicingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.payments", function_name="reverse_transaction")
        raise
