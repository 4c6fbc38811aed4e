"""Bill-payment provider endpoints (CHECK / PAY).

Always answers 200 with a provider result code; failures are reported in the
body so the provider knows whether to retry.
"""

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.schemas import OnlineCheckRequest, OnlinePayRequest
from app.services.online_payments import handle_check, handle_pay

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/check")
@limiter.limit(settings.online_payment_rate_limit)
async def check(
    data: OnlineCheckRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    response = await handle_check(
        db,
        data.provider,
        data.case_id,
        personal_id=data.personal_id,
        ip_address=_client_ip(request),
    )
    return response.as_dict()


@router.post("/pay")
@limiter.limit(settings.online_payment_rate_limit)
async def pay(
    data: OnlinePayRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    response = await handle_pay(
        db,
        data.provider,
        data.case_id,
        data.amount,
        data.txn_id,
        personal_id=data.personal_id,
        pay_date=data.pay_date,
        ip_address=_client_ip(request),
    )
    return response.as_dict()
