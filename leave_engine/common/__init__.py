"""Common module — shared utilities for the leave engine."""

from leave_engine.common.audit import AuditTrail, emit_audit_event
from leave_engine.common.constants import (
    DATE_FORMAT,
    DEFAULT_PAGE_SIZE,
    ELEVATED_ROLES,
    MAX_PAGE_SIZE,
    TERMINAL_STATUSES,
    AccrualOutcome,
    AccrualType,
    ApprovalAction,
    GenderEligibility,
    GenderType,
    HalfDayType,
    LeaveStatus,
    LedgerTransactionType,
    UserRole,
)
from leave_engine.common.exceptions import (
    AppException,
    BadRequestException,
    ConcurrentModificationException,
    ConflictError,
    DuplicateException,
    ForbiddenException,
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from leave_engine.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "emit_audit_event",
    # Constants / Enums
    "AccrualOutcome",
    "AccrualType",
    "ApprovalAction",
    "GenderEligibility",
    "GenderType",
    "HalfDayType",
    "LeaveStatus",
    "LedgerTransactionType",
    "UserRole",
    "ELEVATED_ROLES",
    "TERMINAL_STATUSES",
    "DATE_FORMAT",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "BadRequestException",
    "ConcurrentModificationException",
    "ConflictError",
    "DuplicateException",
    "ForbiddenException",
    "InsufficientBalanceException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
