"""Enums and constants for the leave engine — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Employee directory ──────────────────────────────────────────────

class GenderType(str, enum.Enum):
    male = "male"
    female = "female"
    other = "other"


class GenderEligibility(str, enum.Enum):
    all = "all"
    male = "male"
    female = "female"
    other = "other"


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    tenant_admin = "tenant_admin"


# Roles allowed to decide on any application in their tenant
ELEVATED_ROLES: frozenset[UserRole] = frozenset({UserRole.hr_admin, UserRole.tenant_admin})


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


TERMINAL_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
)


class HalfDayType(str, enum.Enum):
    first_half = "first_half"
    second_half = "second_half"


class AccrualType(str, enum.Enum):
    annual = "annual"
    monthly = "monthly"
    prorated = "prorated"
    none = "none"


class LedgerTransactionType(str, enum.Enum):
    accrual = "accrual"
    carry_forward = "carry_forward"
    application = "application"
    approval = "approval"
    rejection = "rejection"
    cancellation = "cancellation"
    encashment = "encashment"
    lapse = "lapse"


class ApprovalAction(str, enum.Enum):
    approve = "approve"
    reject = "reject"
    cancel = "cancel"


class AccrualOutcome(str, enum.Enum):
    accrued = "accrued"
    skipped = "skipped"
    failed = "failed"


# ── Misc constants ──────────────────────────────────────────────────

DATE_FORMAT = "%d-%b-%Y"
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
DEFAULT_ACCRUAL_PERIOD_MONTHS = 12
