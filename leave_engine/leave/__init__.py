"""Leave module — catalogs, accrual, balance ledger and application workflow."""

from leave_engine.leave.accrual import AccrualService
from leave_engine.leave.catalog import LeaveCatalogService
from leave_engine.leave.ledger import BalanceLedger, balance_effect
from leave_engine.leave.permissions import Actor, can_approve
from leave_engine.leave.service import LeaveService
from leave_engine.leave.year_end import YearEndService

__all__ = [
    "AccrualService",
    "Actor",
    "BalanceLedger",
    "LeaveCatalogService",
    "LeaveService",
    "YearEndService",
    "balance_effect",
    "can_approve",
]
