"""Leave routers — catalogs, applications, balances, accrual and year-end jobs.

Every endpoint resolves the caller through ``get_current_actor``. Catalog
mutations and ledger jobs require an HR or tenant admin.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import LeaveStatus, UserRole
from leave_engine.common.exceptions import ForbiddenException, NotFoundException
from leave_engine.common.pagination import PaginatedResponse, PaginationParams
from leave_engine.common.rate_limit import limiter
from leave_engine.database import get_db
from leave_engine.dependencies import get_current_actor, require_role
from leave_engine.leave.accrual import AccrualService
from leave_engine.leave.catalog import LeaveCatalogService
from leave_engine.leave.ledger import BalanceLedger
from leave_engine.leave.permissions import Actor
from leave_engine.leave.schemas import (
    AccrualCalculation,
    AccrualRecordRequest,
    AccrualRunRequest,
    AccrualRunSummary,
    ApprovalDecision,
    BalanceSummary,
    EncashmentRequest,
    LeaveApplicationCreate,
    LeaveApplicationDetail,
    LeaveApplicationOut,
    LeaveApplicationUpdate,
    LeaveBalanceOut,
    LeaveCancelRequest,
    LeavePolicyCreate,
    LeavePolicyOut,
    LeavePolicyUpdate,
    LeaveTypeCreate,
    LeaveTypeOut,
    LeaveTypeUpdate,
    LedgerEntryOut,
    YearEndRequest,
)
from leave_engine.leave.service import LeaveService
from leave_engine.leave.year_end import YearEndService

require_admin = require_role(UserRole.hr_admin, UserRole.tenant_admin)


def _target_employee(actor: Actor, employee_id: Optional[uuid.UUID]) -> uuid.UUID:
    """Employees see their own data; admins may look at anyone in the tenant."""
    if employee_id is None or employee_id == actor.employee_id:
        return actor.employee_id
    if not actor.is_elevated:
        raise ForbiddenException("You can only view your own leave data.")
    return employee_id


# ═════════════════════════════════════════════════════════════════════
# Leave Types
# ═════════════════════════════════════════════════════════════════════

types_router = APIRouter()


@types_router.get("", response_model=list[LeaveTypeOut])
async def list_leave_types(
    active_only: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveCatalogService.list_types(db, actor.tenant_id, active_only=active_only)


@types_router.post("", response_model=LeaveTypeOut, status_code=201)
async def create_leave_type(
    body: LeaveTypeCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveCatalogService.create_type(db, actor, body)


@types_router.get("/{leave_type_id}", response_model=LeaveTypeOut)
async def get_leave_type(
    leave_type_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveCatalogService.get_type(db, actor.tenant_id, leave_type_id)


@types_router.patch("/{leave_type_id}", response_model=LeaveTypeOut)
async def update_leave_type(
    leave_type_id: uuid.UUID,
    body: LeaveTypeUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveCatalogService.update_type(db, actor, leave_type_id, body)


@types_router.delete("/{leave_type_id}", status_code=204)
async def delete_leave_type(
    leave_type_id: uuid.UUID,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await LeaveCatalogService.delete_type(db, actor, leave_type_id)
    return Response(status_code=204)


# ═════════════════════════════════════════════════════════════════════
# Leave Policies
# ═════════════════════════════════════════════════════════════════════

policies_router = APIRouter()


@policies_router.get("", response_model=list[LeavePolicyOut])
async def list_leave_policies(
    leave_type_id: Optional[uuid.UUID] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveCatalogService.list_policies(
        db, actor.tenant_id, leave_type_id=leave_type_id
    )


@policies_router.post("", response_model=LeavePolicyOut, status_code=201)
async def create_leave_policy(
    body: LeavePolicyCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveCatalogService.create_policy(db, actor, body)


@policies_router.get("/active", response_model=LeavePolicyOut)
async def get_active_leave_policy(
    leave_type_id: uuid.UUID = Query(...),
    as_of: Optional[date] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Policy in force for a leave type on *as_of* (today by default)."""
    policy = await LeaveCatalogService.get_active_policy(
        db, actor.tenant_id, leave_type_id, as_of
    )
    if policy is None:
        raise NotFoundException("LeavePolicy", f"active for {leave_type_id}")
    return LeavePolicyOut.model_validate(policy)


@policies_router.get("/{policy_id}", response_model=LeavePolicyOut)
async def get_leave_policy(
    policy_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveCatalogService.get_policy(db, actor.tenant_id, policy_id)


@policies_router.patch("/{policy_id}", response_model=LeavePolicyOut)
async def update_leave_policy(
    policy_id: uuid.UUID,
    body: LeavePolicyUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveCatalogService.update_policy(db, actor, policy_id, body)


@policies_router.delete("/{policy_id}", status_code=204)
async def delete_leave_policy(
    policy_id: uuid.UUID,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await LeaveCatalogService.delete_policy(db, actor, policy_id)
    return Response(status_code=204)


# ═════════════════════════════════════════════════════════════════════
# Leave Applications
# ═════════════════════════════════════════════════════════════════════

applications_router = APIRouter()


@applications_router.post("", response_model=LeaveApplicationOut, status_code=201)
async def apply_leave(
    body: LeaveApplicationCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Apply for leave. Holds the days as pending until a decision."""
    return await LeaveService.apply_leave(db, actor, body)


@applications_router.get("", response_model=PaginatedResponse[LeaveApplicationOut])
async def list_leave_applications(
    employee_id: Optional[uuid.UUID] = Query(None),
    status: Optional[LeaveStatus] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """The caller's applications; admins may list any employee or the whole tenant."""
    if actor.is_elevated:
        target = employee_id
    else:
        target = _target_employee(actor, employee_id)
    items, meta = await LeaveService.list_applications(
        db,
        actor.tenant_id,
        employee_id=target,
        status=status,
        from_date=from_date,
        to_date=to_date,
        page=pagination.page,
        page_size=pagination.page_size,
        sort=pagination.sort,
    )
    return PaginatedResponse(data=items, meta=meta)


@applications_router.get("/team", response_model=PaginatedResponse[LeaveApplicationOut])
async def list_team_applications(
    status: Optional[LeaveStatus] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Applications of the caller's direct reports."""
    items, meta = await LeaveService.list_team_applications(
        db,
        actor.tenant_id,
        actor.employee_id,
        status=status,
        from_date=from_date,
        to_date=to_date,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return PaginatedResponse(data=items, meta=meta)


@applications_router.get(
    "/pending-approvals", response_model=PaginatedResponse[LeaveApplicationOut]
)
async def list_pending_approvals(
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    items, meta = await LeaveService.list_pending_approvals(
        db, actor, page=pagination.page, page_size=pagination.page_size
    )
    return PaginatedResponse(data=items, meta=meta)


@applications_router.get("/{application_id}", response_model=LeaveApplicationDetail)
async def get_leave_application(
    application_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Application with its approval history (owner, approver or admin)."""
    detail = await LeaveService.get_application(db, actor.tenant_id, application_id)
    if not (
        actor.is_elevated
        or detail.employee_id == actor.employee_id
        or detail.current_approver_id == actor.employee_id
    ):
        raise ForbiddenException("You cannot view this leave application.")
    return detail


@applications_router.patch("/{application_id}", response_model=LeaveApplicationOut)
async def edit_leave_application(
    application_id: uuid.UUID,
    body: LeaveApplicationUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.edit_application(db, actor, application_id, body)


@applications_router.post("/{application_id}/cancel", response_model=LeaveApplicationOut)
async def cancel_leave_application(
    application_id: uuid.UUID,
    body: LeaveCancelRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.cancel_application(db, actor, application_id, body.reason)


@applications_router.post("/{application_id}/process", response_model=LeaveApplicationOut)
async def process_leave_application(
    application_id: uuid.UUID,
    body: ApprovalDecision,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject. Allowed for the assigned approver and HR/tenant admins."""
    return await LeaveService.process_application(db, actor, application_id, body)


# ═════════════════════════════════════════════════════════════════════
# Balances & Ledger
# ═════════════════════════════════════════════════════════════════════

balances_router = APIRouter()


@balances_router.get("", response_model=list[LeaveBalanceOut])
async def list_balances(
    employee_id: Optional[uuid.UUID] = Query(None),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    target = _target_employee(actor, employee_id)
    return await BalanceLedger.get_all_balances(
        db, actor.tenant_id, target, year or date.today().year
    )


@balances_router.get("/summary", response_model=BalanceSummary)
async def balance_summary(
    employee_id: Optional[uuid.UUID] = Query(None),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Balances with a ledger-replay verification flag per leave type."""
    target = _target_employee(actor, employee_id)
    return await BalanceLedger.get_balance_summary(
        db, actor.tenant_id, target, year or date.today().year
    )


@balances_router.get("/ledger", response_model=PaginatedResponse[LedgerEntryOut])
async def list_ledger(
    employee_id: Optional[uuid.UUID] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    target = _target_employee(actor, employee_id)
    rows, meta = await BalanceLedger.list_ledger(
        db,
        actor.tenant_id,
        target,
        leave_type_id=leave_type_id,
        year=year,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return PaginatedResponse(data=[LedgerEntryOut.model_validate(r) for r in rows], meta=meta)


@balances_router.get("/{leave_type_id}", response_model=LeaveBalanceOut)
async def get_balance(
    leave_type_id: uuid.UUID,
    employee_id: Optional[uuid.UUID] = Query(None),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    target = _target_employee(actor, employee_id)
    return await BalanceLedger.get_balance(
        db, actor.tenant_id, target, leave_type_id, year or date.today().year
    )


# ═════════════════════════════════════════════════════════════════════
# Accrual & Year-end jobs (admin)
# ═════════════════════════════════════════════════════════════════════

accruals_router = APIRouter()


@accruals_router.get("/calculate", response_model=AccrualCalculation)
async def calculate_accrual(
    employee_id: uuid.UUID = Query(...),
    leave_type_id: uuid.UUID = Query(...),
    year: int = Query(..., ge=2000, le=2100),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await AccrualService.calculate_accrual(
        db, actor.tenant_id, employee_id, leave_type_id, year
    )


@accruals_router.post("/record", response_model=LedgerEntryOut, status_code=201)
async def record_accrual(
    body: AccrualRecordRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await AccrualService.record_accrual(
        db,
        actor.tenant_id,
        body.employee_id,
        body.leave_type_id,
        body.year,
        body.days,
        body.policy_id,
        body.description,
        actor=actor,
    )


@accruals_router.post("/run", response_model=AccrualRunSummary)
@limiter.limit("5/minute")
async def run_annual_accruals(
    request: Request,
    body: AccrualRunRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Accrue the year for every active employee. Reruns skip units already done."""
    return await AccrualService.process_annual_accruals(db, actor.tenant_id, body.year)


@accruals_router.post("/carry-forward", response_model=Optional[LedgerEntryOut])
async def carry_forward(
    body: YearEndRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Carry unused days of ``year`` into the next year. ``null`` when nothing was posted."""
    return await YearEndService.process_carry_forward(
        db, actor.tenant_id, body.employee_id, body.leave_type_id, body.year, actor=actor
    )


@accruals_router.post("/encash", response_model=LedgerEntryOut, status_code=201)
async def encash(
    body: EncashmentRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await YearEndService.encash_leave(
        db,
        actor.tenant_id,
        body.employee_id,
        body.leave_type_id,
        body.year,
        body.days,
        actor=actor,
    )


@accruals_router.post("/lapse", response_model=Optional[LedgerEntryOut])
async def lapse(
    body: YearEndRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await YearEndService.lapse_carry_forward(
        db, actor.tenant_id, body.employee_id, body.leave_type_id, body.year, actor=actor
    )
