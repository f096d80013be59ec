"""Year-end processing: carry-forward, encashment and lapse.

Each operation posts at most one ledger entry, so the balance cache stays a
replay of the ledger.  Policy lookups use the default policy in force on the
last day of the year being closed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import emit_audit_event
from leave_engine.common.constants import LedgerTransactionType
from leave_engine.common.exceptions import (
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
)
from leave_engine.leave.catalog import LeaveCatalogService
from leave_engine.leave.ledger import BalanceLedger
from leave_engine.leave.models import LeaveLedgerEntry, LeavePolicy, LeaveType
from leave_engine.leave.permissions import Actor
from leave_engine.leave.schemas import LedgerEntryOut

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


async def _year_end_policy(
    db: AsyncSession, tenant_id: uuid.UUID, leave_type_id: uuid.UUID, year: int
) -> Optional[LeavePolicy]:
    return await LeaveCatalogService.get_active_policy(
        db, tenant_id, leave_type_id, date(year, 12, 31), default_only=True
    )


async def _load_type(
    db: AsyncSession, tenant_id: uuid.UUID, leave_type_id: uuid.UUID
) -> LeaveType:
    result = await db.execute(
        select(LeaveType).where(LeaveType.id == leave_type_id, LeaveType.tenant_id == tenant_id)
    )
    leave_type = result.scalars().first()
    if leave_type is None:
        raise NotFoundException("LeaveType", str(leave_type_id))
    return leave_type


class YearEndService:

    @staticmethod
    async def process_carry_forward(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        from_year: int,
        *,
        actor: Optional[Actor] = None,
    ) -> Optional[LedgerEntryOut]:
        """Carry unused days of *from_year* into the next year.

        Returns ``None`` when carry-forward is disabled, nothing is available,
        or the next year already has a carry-forward entry.
        """
        actor = actor or Actor.system(tenant_id)
        leave_type = await _load_type(db, tenant_id, leave_type_id)
        policy = await _year_end_policy(db, tenant_id, leave_type_id, from_year)

        if policy is not None:
            enabled, limit = policy.carry_forward_enabled, policy.carry_forward_limit
        else:
            enabled, limit = leave_type.carry_forward, leave_type.carry_forward_limit
        if not enabled:
            return None

        to_year = from_year + 1
        already = await db.scalar(
            select(
                exists().where(
                    LeaveLedgerEntry.tenant_id == tenant_id,
                    LeaveLedgerEntry.employee_id == employee_id,
                    LeaveLedgerEntry.leave_type_id == leave_type_id,
                    LeaveLedgerEntry.year == to_year,
                    LeaveLedgerEntry.transaction_type == LedgerTransactionType.carry_forward,
                )
            )
        )
        if already:
            logger.info(
                "Carry-forward into %s already posted for employee %s type %s",
                to_year, employee_id, leave_type.code,
            )
            return None

        available = await BalanceLedger.available_days(
            db, tenant_id, employee_id, leave_type_id, from_year
        )
        days = available if limit is None else min(available, Decimal(limit))
        if days <= 0:
            return None

        entry = await BalanceLedger.post_transaction(
            db,
            tenant_id=tenant_id,
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=to_year,
            transaction_type=LedgerTransactionType.carry_forward,
            days=days,
            created_by=actor.audit_id,
            effective_date=date(to_year, 1, 1),
            leave_policy_id=policy.id if policy is not None else None,
            description=f"Carry forward from {from_year}",
        )
        await emit_audit_event(
            db,
            tenant_id=tenant_id,
            action="carry_forward",
            entity_type="leave_ledger",
            entity_id=entry.id,
            actor_id=actor.audit_id,
            new_values={"employee_id": employee_id, "year": to_year, "days": days},
        )
        return LedgerEntryOut.model_validate(entry)

    @staticmethod
    async def encash_leave(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        days: Decimal,
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerEntryOut:
        """Convert available days to pay; the policy's limit covers the whole year."""
        actor = actor or Actor.system(tenant_id)
        days = Decimal(days)
        await _load_type(db, tenant_id, leave_type_id)
        policy = await _year_end_policy(db, tenant_id, leave_type_id, year)
        if policy is None or not policy.encashment_enabled:
            raise ValidationException(
                {"leave_type_id": ["Encashment is not enabled for this leave type."]}
            )
        if days <= 0:
            raise ValidationException({"days": ["Days to encash must be positive."]})

        if policy.encashment_limit is not None:
            encashed = await db.scalar(
                select(func.coalesce(func.sum(LeaveLedgerEntry.days), 0)).where(
                    LeaveLedgerEntry.tenant_id == tenant_id,
                    LeaveLedgerEntry.employee_id == employee_id,
                    LeaveLedgerEntry.leave_type_id == leave_type_id,
                    LeaveLedgerEntry.year == year,
                    LeaveLedgerEntry.transaction_type == LedgerTransactionType.encashment,
                )
            )
            already = -Decimal(str(encashed))
            if already + days > policy.encashment_limit:
                raise ValidationException(
                    {
                        "days": [
                            f"Encashment limit is {policy.encashment_limit} days "
                            f"({already} already encashed for {year})."
                        ]
                    }
                )

        await BalanceLedger.ensure_year_open(db, tenant_id, employee_id, leave_type_id, year)
        available = await BalanceLedger.available_days(
            db, tenant_id, employee_id, leave_type_id, year
        )
        if available < days:
            raise InsufficientBalanceException(available=available, requested=days)

        entry = await BalanceLedger.post_transaction(
            db,
            tenant_id=tenant_id,
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year,
            transaction_type=LedgerTransactionType.encashment,
            days=-days,
            created_by=actor.audit_id,
            leave_policy_id=policy.id,
            description=f"Leave encashment for {year}",
        )
        await emit_audit_event(
            db,
            tenant_id=tenant_id,
            action="encash",
            entity_type="leave_ledger",
            entity_id=entry.id,
            actor_id=actor.audit_id,
            new_values={"employee_id": employee_id, "year": year, "days": days},
        )
        return LedgerEntryOut.model_validate(entry)

    @staticmethod
    async def lapse_carry_forward(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        *,
        actor: Optional[Actor] = None,
    ) -> Optional[LedgerEntryOut]:
        """Lapse carried-forward days of *year* that are still unused."""
        actor = actor or Actor.system(tenant_id)
        await _load_type(db, tenant_id, leave_type_id)

        balance = await BalanceLedger.lock_balance(
            db, tenant_id, employee_id, leave_type_id, year
        )
        if balance is None or balance.carry_forward <= 0:
            return None
        days = min(balance.carry_forward, balance.available_days)
        if days <= 0:
            return None

        policy = await _year_end_policy(db, tenant_id, leave_type_id, year)
        entry = await BalanceLedger.post_transaction(
            db,
            tenant_id=tenant_id,
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year,
            transaction_type=LedgerTransactionType.lapse,
            days=-days,
            created_by=actor.audit_id,
            leave_policy_id=policy.id if policy is not None else None,
            description=f"Carry-forward lapsed for {year}",
        )
        await emit_audit_event(
            db,
            tenant_id=tenant_id,
            action="lapse",
            entity_type="leave_ledger",
            entity_id=entry.id,
            actor_id=actor.audit_id,
            new_values={"employee_id": employee_id, "year": year, "days": days},
        )
        return LedgerEntryOut.model_validate(entry)
