"""Pydantic schemas for request/response validation."""

from datetime import date
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, Field


# ── Payments ──────────────────────────────────────────

class PaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    channel_account_id: Optional[int] = None
    payment_date: Optional[date] = None
    rate: Decimal = Field(default=Decimal("1"), gt=0)
    comment: Optional[str] = Field(None, max_length=1000)


class PaymentRecorded(BaseModel):
    transaction_id: int


class ChargeCreate(BaseModel):
    charge_type_id: int
    amount: Decimal = Field(gt=0, decimal_places=2)
    charge_date: Optional[date] = None
    channel_account_id: Optional[int] = None
    collector_id: Optional[int] = None
    lawyer_id: Optional[int] = None
    comment: Optional[str] = Field(None, max_length=1000)


class ChargeAdded(BaseModel):
    charge_id: int
    current_debt: Decimal


class ReversalRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ReversalResponse(BaseModel):
    transaction_id: int
    loan_id: int
    current_debt: Decimal
    reopened: bool


# ── Online payments ───────────────────────────────────

class OnlineCheckRequest(BaseModel):
    provider: str = Field(default="TBCPAY", min_length=1, max_length=20)
    case_id: str = Field(min_length=1, max_length=50)
    personal_id: Optional[str] = Field(None, max_length=30)


class OnlinePayRequest(OnlineCheckRequest):
    # Kept as text so malformed amounts get the provider's INVALID_AMOUNT code
    amount: str = Field(min_length=1, max_length=20)
    txn_id: str = Field(min_length=1, max_length=100)
    pay_date: Optional[date] = None


# ── Plan report ───────────────────────────────────────

class PaginationMetaResponse(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    model_config = {"from_attributes": True}


class CollectorReportRowResponse(BaseModel):
    collector_id: int
    collector: str
    year: int
    month: int
    opening_principal: Decimal
    monthly_plan: Decimal
    adjusted_plan: Decimal
    collected_amount: Decimal
    collection_rate_percent: Decimal
    paid_loan_count: int
    payment_success_rate: Decimal
    new_loan_count: int
    communicated_count: int
    unreachable_count: int
    agreement_count: int
    agreement_cancelled_count: int
    refuse_to_pay_count: int
    promise_to_pay_count: int
    total_loan_count: int
    call_count: int
    total_call_duration: str
    sms_count: int
    mark_count: int
    comment_count: int
    committee_request_count: int
    inactive_over_40_days_count: int
    debtor_status_count: int
    total_activities: int
    total_legal_charges: Decimal
    total_other_charges: Decimal
    court_case_count: int
    court_principal_sum: Decimal
    execution_case_count: int
    execution_principal_sum: Decimal
    source: str

    model_config = {"from_attributes": True}


class PlanReportResponse(BaseModel):
    meta: PaginationMetaResponse
    data: list[CollectorReportRowResponse]

    model_config = {"from_attributes": True}


class PlanImportRow(BaseModel):
    collector_id: int = Field(gt=0)
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)
    target_amount: Decimal = Field(ge=0, decimal_places=2)


class PlanImportRequest(BaseModel):
    # Raw rows; invalid ones are reported back instead of failing the upload
    rows: list[dict[str, Any]] = Field(min_length=1)


class PlanImportResponse(BaseModel):
    total_rows: int
    imported: int
    invalid: int
    duplicates: int
    reports_refreshed: int
    frozen_skipped: int
    errors: list[str]
