"""Collector plan report and plan upload endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_utils import require_roles
from app.database import get_db
from app.errors import ServicingError
from app.models.user import User, UserRole
from app.schemas import PlanImportRequest, PlanImportResponse, PlanReportResponse
from app.services.error_logger import log_error
from app.services.pagination import PageRequest
from app.services.plan_import import import_plan
from app.services.plan_report.assembler import get_plan_report
from app.services.plan_report.filters import parse_plan_report_filters

logger = logging.getLogger(__name__)
router = APIRouter()

REPORT_ROLES = (UserRole.ADMIN, UserRole.MANAGER, UserRole.COLLECTOR)
PLAN_ADMIN_ROLES = (UserRole.ADMIN, UserRole.MANAGER)


@router.get("/plan", response_model=PlanReportResponse)
async def plan_report(
    year: Optional[str] = Query(None, description="Comma-separated years"),
    month: Optional[str] = Query(None, description="Comma-separated months"),
    date: Optional[str] = Query(None, description="Count activity up to this day (YYYY-MM-DD)"),
    collector_id: Optional[str] = Query(None, description="Comma-separated collector ids"),
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    skip: bool = Query(False, description="Return all rows on one page"),
    current_user: User = Depends(require_roles(*REPORT_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Per-collector monthly KPI rows, legacy years first."""
    try:
        filters = parse_plan_report_filters(year, month, date, collector_id)
        page_request = PageRequest.from_query(page, limit, skip)
        return await get_plan_report(db, filters, page_request, user=current_user)
    except (HTTPException, ServicingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.reports", function_name="plan_report")
        raise


@router.post("/plan/import", response_model=PlanImportResponse)
async def plan_import(
    data: PlanImportRequest,
    current_user: User = Depends(require_roles(*PLAN_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await import_plan(db, data.rows, user_id=current_user.id)
        return result.as_dict()
    except (HTTPException, ServicingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.reports", function_name="plan_import")
        raise
