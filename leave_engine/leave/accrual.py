"""Accrual calculator — how many days an employee earns, and the annual batch."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import emit_audit_event
from leave_engine.common.constants import (
    AccrualOutcome,
    AccrualType,
    LedgerTransactionType,
)
from leave_engine.config import settings
from leave_engine.core_hr.models import Employee
from leave_engine.core_hr.service import DirectoryService
from leave_engine.leave.catalog import LeaveCatalogService
from leave_engine.leave.ledger import BalanceLedger
from leave_engine.leave.models import LeaveLedgerEntry, LeavePolicy, LeaveType
from leave_engine.leave.permissions import Actor
from leave_engine.leave.schemas import (
    AccrualCalculation,
    AccrualResult,
    AccrualRunSummary,
    LedgerEntryOut,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


def _passes_filters(policy: LeavePolicy, employee: Employee) -> bool:
    # A filter only applies when the employee carries the attribute
    if policy.location_filter and employee.location:
        if employee.location not in policy.location_filter:
            return False
    if policy.grade_filter and employee.designation_id:
        if employee.designation_id not in policy.grade_filter:
            return False
    return True


def accrual_days_for(policy: LeavePolicy, employee: Employee, year: int) -> Decimal:
    """Days earned in *year* under *policy*, rounded half-up to 2 places."""
    base = Decimal(policy.accrual_days)

    if policy.accrual_type == AccrualType.annual:
        days = base
    elif policy.accrual_type == AccrualType.monthly:
        days = base / Decimal(policy.accrual_period) * 12
    elif policy.accrual_type == AccrualType.prorated:
        joined = employee.date_of_joining
        year_start, year_end = date(year, 1, 1), date(year, 12, 31)
        if policy.prorated_for_joiners and joined is not None and joined > year_start:
            if joined > year_end:
                days = ZERO
            else:
                days = base * Decimal((year_end - joined).days) / Decimal(settings.DAYS_IN_YEAR)
        else:
            days = base
    else:
        days = ZERO

    return days.quantize(CENT, rounding=ROUND_HALF_UP)


class AccrualService:

    @staticmethod
    async def calculate_accrual(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        *,
        as_of: Optional[date] = None,
    ) -> AccrualCalculation:
        """Accrual under the default policy in force on *as_of* (today).

        Zero when there is no such policy, the employee is not in the
        tenant, or the employee falls outside the policy's filters.
        """
        result = AccrualCalculation(
            employee_id=employee_id, leave_type_id=leave_type_id, year=year, days=ZERO
        )

        policy = await LeaveCatalogService.get_active_policy(
            db, tenant_id, leave_type_id, as_of, default_only=True
        )
        if policy is None:
            return result
        result.policy_id = policy.id

        employee = await DirectoryService.get_employee(db, tenant_id, employee_id)
        if employee is None or not _passes_filters(policy, employee):
            return result

        result.days = accrual_days_for(policy, employee, year)
        return result

    @staticmethod
    async def record_accrual(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        days: Decimal,
        policy_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerEntryOut:
        """Credit *days* to the employee's total for *year* via an ACCRUAL entry."""
        actor = actor or Actor.system(tenant_id)
        entry = await BalanceLedger.post_transaction(
            db,
            tenant_id=tenant_id,
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year,
            transaction_type=LedgerTransactionType.accrual,
            days=Decimal(days),
            created_by=actor.audit_id,
            leave_policy_id=policy_id,
            description=description or f"Accrual for {year}",
        )
        await emit_audit_event(
            db,
            tenant_id=tenant_id,
            action="accrue",
            entity_type="leave_ledger",
            entity_id=entry.id,
            actor_id=actor.audit_id,
            new_values={
                "employee_id": employee_id,
                "leave_type_id": leave_type_id,
                "year": year,
                "days": entry.days,
            },
        )
        return LedgerEntryOut.model_validate(entry)

    @staticmethod
    async def _already_accrued(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        policy_id: uuid.UUID,
    ) -> bool:
        return bool(
            await db.scalar(
                select(
                    exists().where(
                        LeaveLedgerEntry.tenant_id == tenant_id,
                        LeaveLedgerEntry.employee_id == employee_id,
                        LeaveLedgerEntry.leave_type_id == leave_type_id,
                        LeaveLedgerEntry.year == year,
                        LeaveLedgerEntry.leave_policy_id == policy_id,
                        LeaveLedgerEntry.transaction_type == LedgerTransactionType.accrual,
                    )
                )
            )
        )

    @staticmethod
    async def process_annual_accruals(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        year: int,
    ) -> AccrualRunSummary:
        """Accrue *year* for every active employee × active type with a
        default ANNUAL policy.

        Each (employee, type) unit runs in its own savepoint: a failure rolls
        back that unit only, is logged, and the run continues.  Units already
        accrued under the same policy for *year* are skipped, so a rerun does
        not double-credit.
        """
        actor = Actor.system(tenant_id)
        employees = await DirectoryService.list_active_employees(db, tenant_id)
        type_rows = await db.execute(
            select(LeaveType)
            .where(LeaveType.tenant_id == tenant_id, LeaveType.is_active.is_(True))
            .order_by(LeaveType.code)
        )

        results: list[AccrualResult] = []
        for leave_type in type_rows.scalars().all():
            policy = await LeaveCatalogService.get_active_policy(
                db, tenant_id, leave_type.id, default_only=True
            )
            if policy is None or policy.accrual_type != AccrualType.annual:
                continue

            for employee in employees:
                unit = AccrualResult(
                    employee_id=employee.id,
                    leave_type_id=leave_type.id,
                    status=AccrualOutcome.skipped,
                )
                try:
                    async with db.begin_nested():
                        if await AccrualService._already_accrued(
                            db, tenant_id, employee.id, leave_type.id, year, policy.id
                        ):
                            unit.error = "already accrued"
                        else:
                            calc = await AccrualService.calculate_accrual(
                                db, tenant_id, employee.id, leave_type.id, year
                            )
                            unit.days = calc.days
                            if calc.days > 0:
                                await AccrualService.record_accrual(
                                    db,
                                    tenant_id,
                                    employee.id,
                                    leave_type.id,
                                    year,
                                    calc.days,
                                    policy.id,
                                    f"Annual accrual for {year}",
                                    actor=actor,
                                )
                                unit.status = AccrualOutcome.accrued
                except Exception as exc:
                    logger.exception(
                        "Accrual failed for employee %s type %s year %s",
                        employee.id, leave_type.code, year,
                    )
                    unit.status = AccrualOutcome.failed
                    unit.days = ZERO
                    unit.error = str(exc)
                results.append(unit)

        summary = AccrualRunSummary(
            year=year,
            accrued=sum(1 for r in results if r.status == AccrualOutcome.accrued),
            skipped=sum(1 for r in results if r.status == AccrualOutcome.skipped),
            failed=sum(1 for r in results if r.status == AccrualOutcome.failed),
            results=results,
        )
        logger.info(
            "Annual accrual %s for tenant %s: %d accrued, %d skipped, %d failed",
            year, tenant_id, summary.accrued, summary.skipped, summary.failed,
        )
        return summary
