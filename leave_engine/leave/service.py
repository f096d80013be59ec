"""Leave application workflow — apply, edit, cancel, approve, reject, and queries.

State machine:
  - pending → approved | rejected | cancelled; the three outcomes are final
  - every transition posts exactly one ledger entry through ``BalanceLedger``
  - approve, reject and cancel also append an approval-history row
  - types that do not require approval are approved by the system actor
    inside the same ``apply_leave`` call
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import emit_audit_event
from leave_engine.common.constants import (
    DEFAULT_PAGE_SIZE,
    ApprovalAction,
    GenderEligibility,
    HalfDayType,
    LeaveStatus,
    LedgerTransactionType,
)
from leave_engine.common.exceptions import (
    BadRequestException,
    ForbiddenException,
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
)
from leave_engine.common.pagination import PaginationMeta, paginate
from leave_engine.config import settings
from leave_engine.core_hr.models import Employee
from leave_engine.core_hr.service import DirectoryService
from leave_engine.leave.ledger import BalanceLedger
from leave_engine.leave.models import LeaveApplication, LeaveApprovalHistory, LeaveType
from leave_engine.leave.permissions import Actor, can_approve, is_owner
from leave_engine.leave.schemas import (
    ApprovalDecision,
    ApprovalHistoryOut,
    LeaveApplicationCreate,
    LeaveApplicationDetail,
    LeaveApplicationOut,
    LeaveApplicationUpdate,
)

logger = logging.getLogger(__name__)

HALF_DAY = Decimal("0.5")


def compute_days(start_date: date, end_date: date, is_half_day: bool) -> Decimal:
    """Half a day for half-day requests, else the inclusive calendar-day count."""
    if is_half_day:
        return HALF_DAY
    return Decimal((end_date - start_date).days + 1)


def _snapshot(application: LeaveApplication) -> dict:
    return LeaveApplicationOut.model_validate(application).model_dump(mode="json")


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Application lifecycle and approval routing."""

    # ── Loaders / validation helpers ────────────────────────────────

    @staticmethod
    async def _load_application(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        application_id: uuid.UUID,
        *,
        lock: bool = False,
    ) -> LeaveApplication:
        query = select(LeaveApplication).where(
            LeaveApplication.id == application_id,
            LeaveApplication.tenant_id == tenant_id,
        )
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        application = result.scalars().first()
        if application is None:
            raise NotFoundException("LeaveApplication", str(application_id))
        return application

    @staticmethod
    async def _load_leave_type(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        *,
        active_only: bool = False,
    ) -> LeaveType:
        query = select(LeaveType).where(
            LeaveType.id == leave_type_id,
            LeaveType.tenant_id == tenant_id,
        )
        if active_only:
            query = query.where(LeaveType.is_active.is_(True))
        result = await db.execute(query)
        leave_type = result.scalars().first()
        if leave_type is None:
            raise NotFoundException("LeaveType", str(leave_type_id))
        return leave_type

    @staticmethod
    def _check_eligibility(leave_type: LeaveType, employee: Employee) -> None:
        errors: dict[str, list[str]] = {}
        if leave_type.gender_eligibility != GenderEligibility.all:
            gender = employee.gender.value if employee.gender is not None else None
            if gender != leave_type.gender_eligibility.value:
                errors.setdefault("leave_type_id", []).append(
                    f"{leave_type.name} is only available to "
                    f"{leave_type.gender_eligibility.value} employees."
                )
        if leave_type.location_eligibility and employee.location not in leave_type.location_eligibility:
            errors.setdefault("leave_type_id", []).append(
                f"{leave_type.name} is not available at this employee's location."
            )
        if leave_type.grade_eligibility and employee.designation_id not in leave_type.grade_eligibility:
            errors.setdefault("leave_type_id", []).append(
                f"{leave_type.name} is not available for this employee's grade."
            )
        if errors:
            raise ValidationException(errors)

    @staticmethod
    def _validate_request(
        leave_type: LeaveType,
        start_date: date,
        end_date: date,
        is_half_day: bool,
        attachments: Sequence[str],
    ) -> Decimal:
        """Apply the type's request-time rules and return the day count."""
        if end_date < start_date:
            raise BadRequestException(
                "End date must be on or after start date.",
                errors={"end_date": ["must be on or after start_date"]},
            )
        if is_half_day and not leave_type.half_day_allowed:
            raise BadRequestException(
                "Half-day leave is not allowed for this leave type.",
                errors={"is_half_day": ["not allowed for this leave type"]},
            )

        days = compute_days(start_date, end_date, is_half_day)

        if leave_type.max_days_per_request and days > leave_type.max_days_per_request:
            raise BadRequestException(
                f"Maximum {leave_type.max_days_per_request} days allowed per request.",
                errors={"days": [f"exceeds {leave_type.max_days_per_request}"]},
            )
        if leave_type.attachment_required and not attachments:
            raise BadRequestException(
                "Attachment is required for this leave type.",
                errors={"attachments": ["required for this leave type"]},
            )
        return days

    @staticmethod
    async def _resolve_approver(
        db: AsyncSession, employee: Employee
    ) -> Optional[uuid.UUID]:
        if employee.reporting_manager_id is not None:
            return employee.reporting_manager_id
        return await DirectoryService.find_fallback_approver(db, employee.tenant_id)

    @staticmethod
    async def _add_history(
        db: AsyncSession,
        application: LeaveApplication,
        actor: Actor,
        action: ApprovalAction,
        comments: Optional[str],
    ) -> None:
        db.add(
            LeaveApprovalHistory(
                leave_application_id=application.id,
                approver_id=None if actor.is_system else actor.employee_id,
                action=action,
                status=application.status,
                comments=comments,
            )
        )
        await db.flush()

    # ─────────────────────────────────────────────────────────────────
    # Apply
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def apply_leave(
        db: AsyncSession,
        actor: Actor,
        data: LeaveApplicationCreate,
        *,
        employee_id: Optional[uuid.UUID] = None,
    ) -> LeaveApplicationOut:
        """Create an application and hold its days as pending.

        *employee_id* defaults to the actor; applying on someone else's
        behalf needs an elevated role.
        """
        employee_id = employee_id or actor.employee_id
        if employee_id is None:
            raise BadRequestException("An employee is required to apply for leave.")
        if employee_id != actor.employee_id and not (actor.is_system or actor.is_elevated):
            raise ForbiddenException("You can only apply for leave for yourself.")

        tenant_id = actor.tenant_id
        if data.end_date < data.start_date:
            raise BadRequestException(
                "End date must be on or after start date.",
                errors={"end_date": ["must be on or after start_date"]},
            )

        leave_type = await LeaveService._load_leave_type(
            db, tenant_id, data.leave_type_id, active_only=True
        )
        employee = await DirectoryService.get_employee(
            db, tenant_id, employee_id, active_only=True
        )
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))

        LeaveService._check_eligibility(leave_type, employee)
        days = LeaveService._validate_request(
            leave_type, data.start_date, data.end_date, data.is_half_day, data.attachments
        )

        year = data.start_date.year
        await BalanceLedger.ensure_year_open(db, tenant_id, employee_id, leave_type.id, year)
        available = await BalanceLedger.available_days(
            db, tenant_id, employee_id, leave_type.id, year
        )
        if available < days:
            raise InsufficientBalanceException(available=available, requested=days)

        current_approver_id = None
        if leave_type.requires_approval:
            current_approver_id = await LeaveService._resolve_approver(db, employee)

        application = LeaveApplication(
            tenant_id=tenant_id,
            employee_id=employee_id,
            leave_type_id=leave_type.id,
            start_date=data.start_date,
            end_date=data.end_date,
            days=days,
            is_half_day=data.is_half_day,
            half_day_type=(data.half_day_type or HalfDayType.first_half) if data.is_half_day else None,
            reason=data.reason,
            attachments=list(data.attachments),
            status=LeaveStatus.pending,
            current_approver_id=current_approver_id,
        )
        db.add(application)
        await db.flush()

        await BalanceLedger.post_transaction(
            db,
            tenant_id=tenant_id,
            employee_id=employee_id,
            leave_type_id=leave_type.id,
            year=year,
            transaction_type=LedgerTransactionType.application,
            days=days,
            created_by=actor.audit_id,
            effective_date=data.start_date,
            leave_application_id=application.id,
            description=f"Leave application: {leave_type.name}",
        )

        await emit_audit_event(
            db,
            tenant_id=tenant_id,
            action="create",
            entity_type="leave_application",
            entity_id=application.id,
            actor_id=actor.audit_id,
            new_values=_snapshot(application),
        )

        if not leave_type.requires_approval:
            await LeaveService._decide(
                db,
                Actor.system(tenant_id),
                application,
                LeaveStatus.approved,
                comments=settings.AUTO_APPROVE_COMMENT,
            )

        return LeaveApplicationOut.model_validate(application)

    # ─────────────────────────────────────────────────────────────────
    # Edit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def edit_application(
        db: AsyncSession,
        actor: Actor,
        application_id: uuid.UUID,
        data: LeaveApplicationUpdate,
    ) -> LeaveApplicationOut:
        """Edit a pending application; only the day delta touches the balance."""
        application = await LeaveService._load_application(
            db, actor.tenant_id, application_id, lock=True
        )
        if not is_owner(actor, application):
            raise ForbiddenException("You can only edit your own leave applications.")
        if application.status != LeaveStatus.pending:
            raise BadRequestException("Only pending applications can be modified.")

        old_values = _snapshot(application)
        leave_type = await LeaveService._load_leave_type(
            db, actor.tenant_id, application.leave_type_id
        )

        start_date = data.start_date or application.start_date
        end_date = data.end_date or application.end_date
        is_half_day = application.is_half_day if data.is_half_day is None else data.is_half_day
        attachments = application.attachments if data.attachments is None else data.attachments

        if start_date.year != application.year:
            raise BadRequestException(
                "An application cannot be moved to a different leave year.",
                errors={"start_date": [f"must stay in {application.year}"]},
            )
        days = LeaveService._validate_request(
            leave_type, start_date, end_date, is_half_day, attachments or []
        )
        delta = days - application.days

        if delta > 0:
            await BalanceLedger.ensure_year_open(
                db, actor.tenant_id, application.employee_id, leave_type.id, application.year
            )
            available = await BalanceLedger.available_days(
                db, actor.tenant_id, application.employee_id, leave_type.id, application.year
            )
            if available < delta:
                raise InsufficientBalanceException(available=available, requested=delta)

        if delta != 0:
            await BalanceLedger.post_transaction(
                db,
                tenant_id=actor.tenant_id,
                employee_id=application.employee_id,
                leave_type_id=leave_type.id,
                year=application.year,
                transaction_type=LedgerTransactionType.application,
                days=delta,
                created_by=actor.audit_id,
                effective_date=start_date,
                leave_application_id=application.id,
                description="Leave application updated",
            )

        application.start_date = start_date
        application.end_date = end_date
        application.days = days
        application.is_half_day = is_half_day
        if is_half_day:
            application.half_day_type = (
                data.half_day_type or application.half_day_type or HalfDayType.first_half
            )
        else:
            application.half_day_type = None
        if data.reason is not None:
            application.reason = data.reason
        if data.attachments is not None:
            application.attachments = list(data.attachments)
        await db.flush()

        await emit_audit_event(
            db,
            tenant_id=actor.tenant_id,
            action="update",
            entity_type="leave_application",
            entity_id=application.id,
            actor_id=actor.audit_id,
            old_values=old_values,
            new_values=_snapshot(application),
        )
        return LeaveApplicationOut.model_validate(application)

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel_application(
        db: AsyncSession,
        actor: Actor,
        application_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> LeaveApplicationOut:
        """Withdraw a pending application and release its pending days."""
        application = await LeaveService._load_application(
            db, actor.tenant_id, application_id, lock=True
        )
        if not is_owner(actor, application):
            raise ForbiddenException("You can only cancel your own leave applications.")
        if application.status == LeaveStatus.approved:
            raise BadRequestException(
                "Approved applications cannot be cancelled. Please contact HR."
            )
        if application.status != LeaveStatus.pending:
            raise BadRequestException(
                f"Application is already {application.status.value}."
            )

        old_values = _snapshot(application)
        await BalanceLedger.post_transaction(
            db,
            tenant_id=actor.tenant_id,
            employee_id=application.employee_id,
            leave_type_id=application.leave_type_id,
            year=application.year,
            transaction_type=LedgerTransactionType.cancellation,
            days=-application.days,
            created_by=actor.audit_id,
            leave_application_id=application.id,
            description=f"Leave application cancelled: {reason or 'No reason provided'}",
        )

        application.status = LeaveStatus.cancelled
        application.cancelled_by = actor.audit_id
        application.cancelled_at = datetime.now(timezone.utc)
        application.cancellation_reason = reason
        application.current_approver_id = None
        await db.flush()

        await LeaveService._add_history(db, application, actor, ApprovalAction.cancel, reason)
        await emit_audit_event(
            db,
            tenant_id=actor.tenant_id,
            action="cancel",
            entity_type="leave_application",
            entity_id=application.id,
            actor_id=actor.audit_id,
            old_values=old_values,
            new_values={"status": LeaveStatus.cancelled.value, "reason": reason},
        )
        return LeaveApplicationOut.model_validate(application)

    # ─────────────────────────────────────────────────────────────────
    # Approve / Reject
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _decide(
        db: AsyncSession,
        actor: Actor,
        application: LeaveApplication,
        status: LeaveStatus,
        *,
        comments: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> None:
        if application.status == LeaveStatus.pending and not can_approve(actor, application):
            raise ForbiddenException(
                "You are not authorized to approve this leave application."
            )
        if application.status != LeaveStatus.pending:
            raise BadRequestException("Application already processed.")

        now = datetime.now(timezone.utc)
        leave_type_name = await db.scalar(
            select(LeaveType.name).where(LeaveType.id == application.leave_type_id)
        )

        if status == LeaveStatus.approved:
            await BalanceLedger.post_transaction(
                db,
                tenant_id=application.tenant_id,
                employee_id=application.employee_id,
                leave_type_id=application.leave_type_id,
                year=application.year,
                transaction_type=LedgerTransactionType.approval,
                days=application.days,
                created_by=actor.audit_id,
                effective_date=application.start_date,
                leave_application_id=application.id,
                description=f"Leave approved: {leave_type_name}",
            )
            application.approved_by = actor.audit_id
            application.approved_at = now
            action = ApprovalAction.approve
        else:
            await BalanceLedger.post_transaction(
                db,
                tenant_id=application.tenant_id,
                employee_id=application.employee_id,
                leave_type_id=application.leave_type_id,
                year=application.year,
                transaction_type=LedgerTransactionType.rejection,
                days=-application.days,
                created_by=actor.audit_id,
                leave_application_id=application.id,
                description=f"Leave rejected: {rejection_reason or 'No reason provided'}",
            )
            application.rejected_by = actor.audit_id
            application.rejected_at = now
            application.rejection_reason = rejection_reason
            action = ApprovalAction.reject

        application.status = status
        application.comments = comments
        application.current_approver_id = None
        await db.flush()

        await LeaveService._add_history(
            db, application, actor, action, comments or rejection_reason
        )
        await emit_audit_event(
            db,
            tenant_id=application.tenant_id,
            action=action.value,
            entity_type="leave_application",
            entity_id=application.id,
            actor_id=actor.audit_id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": status.value, "comments": comments},
        )
        logger.info(
            "Leave application %s %s by %s", application.id, status.value, actor.audit_id
        )

    @staticmethod
    async def process_application(
        db: AsyncSession,
        actor: Actor,
        application_id: uuid.UUID,
        decision: ApprovalDecision,
    ) -> LeaveApplicationOut:
        """Approve or reject a pending application."""
        application = await LeaveService._load_application(
            db, actor.tenant_id, application_id, lock=True
        )
        await LeaveService._decide(
            db,
            actor,
            application,
            decision.status,
            comments=decision.comments,
            rejection_reason=decision.rejection_reason,
        )
        return LeaveApplicationOut.model_validate(application)

    @staticmethod
    async def approve(
        db: AsyncSession,
        actor: Actor,
        application_id: uuid.UUID,
        comments: Optional[str] = None,
    ) -> LeaveApplicationOut:
        return await LeaveService.process_application(
            db,
            actor,
            application_id,
            ApprovalDecision(status=LeaveStatus.approved, comments=comments),
        )

    @staticmethod
    async def reject(
        db: AsyncSession,
        actor: Actor,
        application_id: uuid.UUID,
        rejection_reason: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> LeaveApplicationOut:
        return await LeaveService.process_application(
            db,
            actor,
            application_id,
            ApprovalDecision(
                status=LeaveStatus.rejected,
                comments=comments,
                rejection_reason=rejection_reason,
            ),
        )

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_application(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        application_id: uuid.UUID,
    ) -> LeaveApplicationDetail:
        application = await LeaveService._load_application(db, tenant_id, application_id)
        history = await db.execute(
            select(LeaveApprovalHistory)
            .where(LeaveApprovalHistory.leave_application_id == application.id)
            .order_by(LeaveApprovalHistory.created_at.asc())
        )
        detail = LeaveApplicationDetail.model_validate(
            {
                **LeaveApplicationOut.model_validate(application).model_dump(),
                "approval_history": [
                    ApprovalHistoryOut.model_validate(h) for h in history.scalars().all()
                ],
            }
        )
        return detail

    @staticmethod
    def _filtered(
        query,
        *,
        status: Optional[LeaveStatus],
        from_date: Optional[date],
        to_date: Optional[date],
    ):
        # Date filters select applications overlapping [from_date, to_date]
        if status is not None:
            query = query.where(LeaveApplication.status == status)
        if from_date is not None:
            query = query.where(LeaveApplication.end_date >= from_date)
        if to_date is not None:
            query = query.where(LeaveApplication.start_date <= to_date)
        return query.order_by(LeaveApplication.applied_at.desc())

    @staticmethod
    async def list_applications(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        *,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort: Optional[str] = None,
    ) -> tuple[list[LeaveApplicationOut], PaginationMeta]:
        query = select(LeaveApplication).where(LeaveApplication.tenant_id == tenant_id)
        if employee_id is not None:
            query = query.where(LeaveApplication.employee_id == employee_id)
        query = LeaveService._filtered(
            query, status=status, from_date=from_date, to_date=to_date
        )
        rows, meta = await paginate(
            db, query, page=page, page_size=page_size, sort=sort, model=LeaveApplication
        )
        return [LeaveApplicationOut.model_validate(r) for r in rows], meta

    @staticmethod
    async def list_team_applications(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        manager_id: uuid.UUID,
        *,
        status: Optional[LeaveStatus] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[LeaveApplicationOut], PaginationMeta]:
        """Applications of the manager's active direct reports."""
        report_ids = await DirectoryService.list_direct_report_ids(db, tenant_id, manager_id)
        query = select(LeaveApplication).where(
            LeaveApplication.tenant_id == tenant_id,
            LeaveApplication.employee_id.in_(report_ids),
        )
        query = LeaveService._filtered(
            query, status=status, from_date=from_date, to_date=to_date
        )
        rows, meta = await paginate(db, query, page=page, page_size=page_size)
        return [LeaveApplicationOut.model_validate(r) for r in rows], meta

    @staticmethod
    async def list_pending_approvals(
        db: AsyncSession,
        actor: Actor,
        *,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[LeaveApplicationOut], PaginationMeta]:
        """Pending applications routed to the actor."""
        query = (
            select(LeaveApplication)
            .where(
                LeaveApplication.tenant_id == actor.tenant_id,
                LeaveApplication.current_approver_id == actor.employee_id,
                LeaveApplication.status == LeaveStatus.pending,
            )
            .order_by(LeaveApplication.applied_at.asc())
        )
        rows, meta = await paginate(db, query, page=page, page_size=page_size)
        return [LeaveApplicationOut.model_validate(r) for r in rows], meta
