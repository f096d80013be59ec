"""Leave ORM models: LeaveType, LeavePolicy, LeaveBalance, LeaveLedgerEntry,
LeaveApplication, LeaveApprovalHistory."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_engine.common.constants import (
    AccrualType,
    ApprovalAction,
    GenderEligibility,
    HalfDayType,
    LeaveStatus,
    LedgerTransactionType,
)
from leave_engine.database import Base

DAYS = sa.Numeric(7, 2)
ZERO = Decimal("0")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveType(Base):
    __tablename__ = "leave_types"
    __table_args__ = (
        # Codes are stored upper-cased, so this is case-insensitive per tenant
        sa.UniqueConstraint("tenant_id", "code", name="uq_leave_type_tenant_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    code: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    max_days: Mapped[Optional[int]] = mapped_column(sa.Integer)
    carry_forward: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    carry_forward_limit: Mapped[Optional[int]] = mapped_column(sa.Integer)
    requires_approval: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    is_paid: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    half_day_allowed: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    attachment_required: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    max_days_per_request: Mapped[Optional[int]] = mapped_column(sa.Integer)
    gender_eligibility: Mapped[GenderEligibility] = mapped_column(
        sa.Enum(GenderEligibility, name="gender_eligibility"),
        default=GenderEligibility.all,
        server_default="all",
    )
    location_eligibility: Mapped[list] = mapped_column(JSONB, default=list)
    grade_eligibility: Mapped[list] = mapped_column(JSONB, default=list)
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=sa.func.now(),
    )


class LeavePolicy(Base):
    __tablename__ = "leave_policies"
    __table_args__ = (
        # At most one default policy per (tenant, leave type)
        sa.Index(
            "uq_leave_policy_default",
            "tenant_id",
            "leave_type_id",
            unique=True,
            postgresql_where=sa.text("is_default"),
            sqlite_where=sa.text("is_default = 1"),
        ),
        sa.Index("ix_leave_policy_effective", "tenant_id", "leave_type_id", "effective_from"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    accrual_type: Mapped[AccrualType] = mapped_column(
        sa.Enum(AccrualType, name="accrual_type"),
        default=AccrualType.annual,
        nullable=False,
    )
    accrual_days: Mapped[Decimal] = mapped_column(DAYS, nullable=False)
    accrual_period: Mapped[int] = mapped_column(
        sa.Integer, default=12, server_default=sa.text("12")
    )
    prorated_for_joiners: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE")
    )
    carry_forward_enabled: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    carry_forward_limit: Mapped[Optional[Decimal]] = mapped_column(DAYS)
    carry_forward_expiry_days: Mapped[Optional[int]] = mapped_column(sa.Integer)
    encashment_enabled: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    encashment_limit: Mapped[Optional[Decimal]] = mapped_column(DAYS)
    lapsing_enabled: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    lapsing_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    location_filter: Mapped[list] = mapped_column(JSONB, default=list)
    grade_filter: Mapped[list] = mapped_column(JSONB, default=list)
    effective_from: Mapped[date] = mapped_column(sa.Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(sa.Date)
    is_default: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=sa.func.now(),
    )


class LeaveBalance(Base):
    """Materialised per-year balance; every change comes from a ledger entry."""

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "tenant_id", "employee_id", "leave_type_id", "year", name="uq_leave_balance"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    total_days: Mapped[Decimal] = mapped_column(
        DAYS, default=ZERO, server_default=sa.text("0"), nullable=False
    )
    used_days: Mapped[Decimal] = mapped_column(
        DAYS, default=ZERO, server_default=sa.text("0"), nullable=False
    )
    pending_days: Mapped[Decimal] = mapped_column(
        DAYS, default=ZERO, server_default=sa.text("0"), nullable=False
    )
    carry_forward: Mapped[Decimal] = mapped_column(
        DAYS, default=ZERO, server_default=sa.text("0"), nullable=False
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=sa.func.now(),
    )

    # Stale writes fail with StaleDataError instead of overwriting
    __mapper_args__ = {"version_id_col": version}

    @property
    def available_days(self) -> Decimal:
        available = self.total_days + self.carry_forward - self.used_days - self.pending_days
        return max(ZERO, available)


class LeaveLedgerEntry(Base):
    """Append-only record of one balance-affecting event."""

    __tablename__ = "leave_ledger"
    __table_args__ = (
        sa.Index(
            "ix_leave_ledger_key", "tenant_id", "employee_id", "leave_type_id", "year"
        ),
        sa.Index("ix_leave_ledger_application", "leave_application_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    leave_policy_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_policies.id", ondelete="SET NULL")
    )
    leave_application_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_applications.id")
    )
    transaction_type: Mapped[LedgerTransactionType] = mapped_column(
        sa.Enum(LedgerTransactionType, name="ledger_transaction_type"), nullable=False
    )
    days: Mapped[Decimal] = mapped_column(DAYS, nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(DAYS, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(DAYS, nullable=False)
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    effective_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_by: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )


class LeaveApplication(Base):
    __tablename__ = "leave_applications"
    __table_args__ = (
        sa.Index("ix_leave_app_tenant_employee", "tenant_id", "employee_id"),
        sa.Index("ix_leave_app_tenant_approver", "tenant_id", "current_approver_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    days: Mapped[Decimal] = mapped_column(DAYS, nullable=False)
    is_half_day: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.text("FALSE")
    )
    half_day_type: Mapped[Optional[HalfDayType]] = mapped_column(
        sa.Enum(HalfDayType, name="half_day_type")
    )
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    attachments: Mapped[list] = mapped_column(JSONB, default=list)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
        default=LeaveStatus.pending,
        server_default="pending",
    )
    current_approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    approved_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejected_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    applied_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=sa.func.now(),
    )

    # Relationships
    approval_history: Mapped[list[LeaveApprovalHistory]] = relationship(
        back_populates="application",
        order_by="LeaveApprovalHistory.created_at",
    )

    @property
    def year(self) -> int:
        """Balance year the application draws from."""
        return self.start_date.year


class LeaveApprovalHistory(Base):
    """Append-only decision trail for an application."""

    __tablename__ = "leave_approval_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_application_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_applications.id"), nullable=False
    )
    # NULL when the decision was taken by the system actor
    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    action: Mapped[ApprovalAction] = mapped_column(
        sa.Enum(ApprovalAction, name="approval_action"), nullable=False
    )
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"), nullable=False
    )
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    # Relationships
    application: Mapped[LeaveApplication] = relationship(back_populates="approval_history")


# ── Append-only enforcement ─────────────────────────────────────────

def _reject_mutation(mapper, connection, target) -> None:
    raise RuntimeError(
        f"{type(target).__name__} rows are append-only and cannot be modified."
    )


for _model in (LeaveLedgerEntry, LeaveApprovalHistory):
    event.listen(_model, "before_update", _reject_mutation)
    event.listen(_model, "before_delete", _reject_mutation)
