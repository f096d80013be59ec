"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update / *Request  → request bodies (write)
  - *Out                          → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from leave_engine.common.constants import (
    AccrualOutcome,
    AccrualType,
    ApprovalAction,
    GenderEligibility,
    HalfDayType,
    LeaveStatus,
    LedgerTransactionType,
)


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCreate(BaseModel):
    """Payload for creating a leave type."""

    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    max_days: Optional[int] = Field(None, ge=0)
    carry_forward: bool = False
    carry_forward_limit: Optional[int] = Field(None, ge=0)
    requires_approval: bool = True
    is_paid: bool = True
    half_day_allowed: bool = False
    attachment_required: bool = False
    max_days_per_request: Optional[int] = Field(None, ge=1)
    gender_eligibility: GenderEligibility = GenderEligibility.all
    location_eligibility: list[str] = Field(default_factory=list)
    grade_eligibility: list[str] = Field(default_factory=list)

    @field_validator("code")
    @classmethod
    def normalise_code(cls, v: str) -> str:
        return v.strip().upper()


class LeaveTypeUpdate(BaseModel):
    """Partial update — only supplied fields change."""

    code: Optional[str] = Field(None, min_length=1, max_length=20)
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    max_days: Optional[int] = Field(None, ge=0)
    carry_forward: Optional[bool] = None
    carry_forward_limit: Optional[int] = Field(None, ge=0)
    requires_approval: Optional[bool] = None
    is_paid: Optional[bool] = None
    half_day_allowed: Optional[bool] = None
    attachment_required: Optional[bool] = None
    max_days_per_request: Optional[int] = Field(None, ge=1)
    gender_eligibility: Optional[GenderEligibility] = None
    location_eligibility: Optional[list[str]] = None
    grade_eligibility: Optional[list[str]] = None
    is_active: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def normalise_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v is not None else v


class LeaveTypeOut(BaseModel):
    """Full leave type representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    code: str
    name: str
    description: Optional[str] = None
    max_days: Optional[int] = None
    carry_forward: bool
    carry_forward_limit: Optional[int] = None
    requires_approval: bool
    is_paid: bool
    half_day_allowed: bool
    attachment_required: bool
    max_days_per_request: Optional[int] = None
    gender_eligibility: GenderEligibility
    location_eligibility: list[str] = Field(default_factory=list)
    grade_eligibility: list[str] = Field(default_factory=list)
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Leave Policy
# ═════════════════════════════════════════════════════════════════════


class LeavePolicyCreate(BaseModel):
    """Payload for creating a leave policy."""

    leave_type_id: uuid.UUID
    name: str = Field(..., min_length=1, max_length=150)
    accrual_type: AccrualType = AccrualType.annual
    accrual_days: Decimal = Field(..., ge=0, max_digits=7, decimal_places=2)
    accrual_period: int = Field(12, ge=1, le=12)
    prorated_for_joiners: bool = True
    carry_forward_enabled: bool = False
    carry_forward_limit: Optional[Decimal] = Field(None, ge=0)
    carry_forward_expiry_days: Optional[int] = Field(None, ge=0)
    encashment_enabled: bool = False
    encashment_limit: Optional[Decimal] = Field(None, ge=0)
    lapsing_enabled: bool = False
    lapsing_date: Optional[date] = None
    location_filter: list[str] = Field(default_factory=list)
    grade_filter: list[str] = Field(default_factory=list)
    effective_from: date
    effective_to: Optional[date] = None
    is_default: bool = False

    @model_validator(mode="after")
    def validate_window(self) -> "LeavePolicyCreate":
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ValueError("effective_to must be on or after effective_from.")
        return self


class LeavePolicyUpdate(BaseModel):
    """Partial update — only supplied fields change."""

    name: Optional[str] = Field(None, min_length=1, max_length=150)
    accrual_type: Optional[AccrualType] = None
    accrual_days: Optional[Decimal] = Field(None, ge=0, max_digits=7, decimal_places=2)
    accrual_period: Optional[int] = Field(None, ge=1, le=12)
    prorated_for_joiners: Optional[bool] = None
    carry_forward_enabled: Optional[bool] = None
    carry_forward_limit: Optional[Decimal] = Field(None, ge=0)
    carry_forward_expiry_days: Optional[int] = Field(None, ge=0)
    encashment_enabled: Optional[bool] = None
    encashment_limit: Optional[Decimal] = Field(None, ge=0)
    lapsing_enabled: Optional[bool] = None
    lapsing_date: Optional[date] = None
    location_filter: Optional[list[str]] = None
    grade_filter: Optional[list[str]] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    is_default: Optional[bool] = None


class LeavePolicyOut(BaseModel):
    """Full leave policy representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    leave_type_id: uuid.UUID
    name: str
    accrual_type: AccrualType
    accrual_days: Decimal
    accrual_period: int
    prorated_for_joiners: bool
    carry_forward_enabled: bool
    carry_forward_limit: Optional[Decimal] = None
    carry_forward_expiry_days: Optional[int] = None
    encashment_enabled: bool
    encashment_limit: Optional[Decimal] = None
    lapsing_enabled: bool
    lapsing_date: Optional[date] = None
    location_filter: list[str] = Field(default_factory=list)
    grade_filter: list[str] = Field(default_factory=list)
    effective_from: date
    effective_to: Optional[date] = None
    is_default: bool
    created_at: datetime
    updated_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Balance & Ledger
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Cached balance for one (employee, type, year) with derived availability.

    ``id`` is ``None`` when no ledger event has created the row yet.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[uuid.UUID] = None
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    year: int
    total_days: Decimal = Decimal("0")
    used_days: Decimal = Decimal("0")
    pending_days: Decimal = Decimal("0")
    carry_forward: Decimal = Decimal("0")
    available_days: Decimal = Decimal("0")


class LedgerTotals(BaseModel):
    """Balance columns recomputed from ledger entries alone."""

    total_days: Decimal = Decimal("0")
    used_days: Decimal = Decimal("0")
    pending_days: Decimal = Decimal("0")
    carry_forward: Decimal = Decimal("0")
    entry_count: int = 0


class BalanceSummaryItem(LeaveBalanceOut):
    leave_type_code: Optional[str] = None
    leave_type_name: Optional[str] = None
    ledger_total: Decimal = Decimal("0")
    ledger_verified: bool = True


class BalanceSummary(BaseModel):
    employee_id: uuid.UUID
    year: int
    balances: list[BalanceSummaryItem]


class LedgerEntryOut(BaseModel):
    """A single immutable ledger row."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_policy_id: Optional[uuid.UUID] = None
    leave_application_id: Optional[uuid.UUID] = None
    transaction_type: LedgerTransactionType
    days: Decimal
    balance_before: Decimal
    balance_after: Decimal
    year: int
    effective_date: date
    description: Optional[str] = None
    created_by: str
    created_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Leave Application
# ═════════════════════════════════════════════════════════════════════


class LeaveApplicationCreate(BaseModel):
    """Payload for applying for leave.

    Date-range ordering and half-day rules depend on the leave type, so
    they are checked by the service rather than here.
    """

    leave_type_id: uuid.UUID
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    is_half_day: bool = False
    half_day_type: Optional[HalfDayType] = None
    reason: Optional[str] = Field(None, max_length=1000)
    attachments: list[str] = Field(default_factory=list)


class LeaveApplicationUpdate(BaseModel):
    """Edit a pending application — only supplied fields change."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_half_day: Optional[bool] = None
    half_day_type: Optional[HalfDayType] = None
    reason: Optional[str] = Field(None, max_length=1000)
    attachments: Optional[list[str]] = None


class ApprovalDecision(BaseModel):
    """Payload for ``process_application``: approve or reject in one call."""

    status: LeaveStatus
    comments: Optional[str] = Field(None, max_length=1000)
    rejection_reason: Optional[str] = Field(None, max_length=1000)

    @field_validator("status")
    @classmethod
    def decision_status(cls, v: LeaveStatus) -> LeaveStatus:
        if v not in (LeaveStatus.approved, LeaveStatus.rejected):
            raise ValueError("status must be 'approved' or 'rejected'.")
        return v


class LeaveCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ApprovalHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    leave_application_id: uuid.UUID
    approver_id: Optional[uuid.UUID] = None
    action: ApprovalAction
    status: LeaveStatus
    comments: Optional[str] = None
    created_at: datetime


class LeaveApplicationOut(BaseModel):
    """Full leave application response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date
    days: Decimal
    is_half_day: bool
    half_day_type: Optional[HalfDayType] = None
    reason: Optional[str] = None
    attachments: list[str] = Field(default_factory=list)
    status: LeaveStatus
    current_approver_id: Optional[uuid.UUID] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    comments: Optional[str] = None
    applied_at: datetime
    updated_at: datetime


class LeaveApplicationDetail(LeaveApplicationOut):
    approval_history: list[ApprovalHistoryOut] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Accrual & Year-end
# ═════════════════════════════════════════════════════════════════════


class AccrualCalculation(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    year: int
    days: Decimal
    policy_id: Optional[uuid.UUID] = None


class AccrualRecordRequest(BaseModel):
    """Payload for posting a manual accrual."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    year: int = Field(..., ge=2000, le=2100)
    days: Decimal = Field(..., gt=0, max_digits=7, decimal_places=2)
    policy_id: Optional[uuid.UUID] = None
    description: Optional[str] = Field(None, max_length=500)


class AccrualResult(BaseModel):
    """Outcome of one (employee, leave type) unit of a batch accrual run."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    days: Decimal = Decimal("0")
    status: AccrualOutcome
    error: Optional[str] = None


class AccrualRunRequest(BaseModel):
    year: int = Field(..., ge=2000, le=2100)


class AccrualRunSummary(BaseModel):
    year: int
    accrued: int
    skipped: int
    failed: int
    results: list[AccrualResult]


class YearEndRequest(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    year: int = Field(..., ge=2000, le=2100)


class EncashmentRequest(YearEndRequest):
    days: Decimal = Field(..., gt=0, max_digits=7, decimal_places=2)
