"""Balance ledger and balance cache.

Every change to a ``LeaveBalance`` row goes through ``post_transaction``:
one call appends one ``LeaveLedgerEntry`` and applies that entry's effect to
the cached row, inside the caller's transaction.  ``balance_effect`` is the
only place that maps a ledger entry onto balance columns, and ``replay_ledger``
uses it too, so the cache can always be rebuilt from the ledger.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import NamedTuple, Optional, Sequence

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from leave_engine.common.constants import DEFAULT_PAGE_SIZE, LedgerTransactionType
from leave_engine.common.exceptions import BadRequestException, ConcurrentModificationException
from leave_engine.common.pagination import PaginationMeta, paginate
from leave_engine.config import settings
from leave_engine.leave.models import LeaveBalance, LeaveLedgerEntry, LeaveType
from leave_engine.leave.schemas import (
    BalanceSummary,
    BalanceSummaryItem,
    LeaveBalanceOut,
    LedgerTotals,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
TOLERANCE = Decimal("0.01")


class BalanceDelta(NamedTuple):
    total_days: Decimal = ZERO
    used_days: Decimal = ZERO
    pending_days: Decimal = ZERO
    carry_forward: Decimal = ZERO


def balance_effect(transaction_type: LedgerTransactionType, days: Decimal) -> BalanceDelta:
    """Map a ledger entry (type, signed days) onto balance-column deltas.

    Days are stored positive for accrual, carry_forward, application and
    approval, and negative for rejection, cancellation, encashment and
    lapse.  Application deltas from edits may be negative.
    """
    d = Decimal(days)
    t = LedgerTransactionType
    if transaction_type in (t.accrual, t.encashment):
        return BalanceDelta(total_days=d)
    if transaction_type in (t.carry_forward, t.lapse):
        return BalanceDelta(carry_forward=d)
    if transaction_type in (t.application, t.rejection, t.cancellation):
        return BalanceDelta(pending_days=d)
    if transaction_type == t.approval:
        return BalanceDelta(used_days=d, pending_days=-d)
    raise ValueError(f"Unknown ledger transaction type: {transaction_type!r}")


def _balance_out(
    row: Optional[LeaveBalance],
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    year: int,
) -> LeaveBalanceOut:
    if row is None:
        return LeaveBalanceOut(employee_id=employee_id, leave_type_id=leave_type_id, year=year)
    return LeaveBalanceOut(
        id=row.id,
        employee_id=row.employee_id,
        leave_type_id=row.leave_type_id,
        year=row.year,
        total_days=row.total_days,
        used_days=row.used_days,
        pending_days=row.pending_days,
        carry_forward=row.carry_forward,
        available_days=row.available_days,
    )


class BalanceLedger:
    """Balance cache reads/writes and the append-only ledger."""

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def lock_balance(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> Optional[LeaveBalance]:
        """Fetch the balance row with ``SELECT … FOR UPDATE``.

        ``populate_existing`` refreshes an already-loaded instance so the
        caller always checks availability against committed values.  Does
        not create the row.
        """
        result = await db.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.tenant_id == tenant_id,
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type_id == leave_type_id,
                LeaveBalance.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def available_days(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> Decimal:
        """Locked availability check used before any debit."""
        row = await BalanceLedger.lock_balance(db, tenant_id, employee_id, leave_type_id, year)
        return row.available_days if row is not None else ZERO

    @staticmethod
    async def ensure_year_open(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> None:
        """Refuse new debits against a year whose balance was carried forward."""
        closed = await db.scalar(
            select(
                exists().where(
                    LeaveLedgerEntry.tenant_id == tenant_id,
                    LeaveLedgerEntry.employee_id == employee_id,
                    LeaveLedgerEntry.leave_type_id == leave_type_id,
                    LeaveLedgerEntry.year == year + 1,
                    LeaveLedgerEntry.transaction_type == LedgerTransactionType.carry_forward,
                )
            )
        )
        if closed:
            raise BadRequestException(
                f"Leave year {year} is closed; its balance was carried forward to {year + 1}.",
                errors={"year": [f"{year} is closed"]},
            )

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> LeaveBalanceOut:
        """Cached balance, or a zeroed default when no row exists yet."""
        result = await db.execute(
            select(LeaveBalance).where(
                LeaveBalance.tenant_id == tenant_id,
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type_id == leave_type_id,
                LeaveBalance.year == year,
            )
        )
        return _balance_out(result.scalars().first(), employee_id, leave_type_id, year)

    @staticmethod
    async def get_all_balances(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalanceOut]:
        result = await db.execute(
            select(LeaveBalance)
            .join(LeaveType, LeaveType.id == LeaveBalance.leave_type_id)
            .where(
                LeaveBalance.tenant_id == tenant_id,
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.year == year,
            )
            .order_by(LeaveType.code)
        )
        return [
            _balance_out(row, employee_id, row.leave_type_id, year)
            for row in result.scalars().all()
        ]

    # ── Cache writes ────────────────────────────────────────────────

    @staticmethod
    async def _get_or_create_balance(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> LeaveBalance:
        row = await BalanceLedger.lock_balance(db, tenant_id, employee_id, leave_type_id, year)
        if row is not None:
            return row

        row = LeaveBalance(
            tenant_id=tenant_id,
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year,
            total_days=ZERO,
            used_days=ZERO,
            pending_days=ZERO,
            carry_forward=ZERO,
        )
        try:
            async with db.begin_nested():
                db.add(row)
                await db.flush()
        except IntegrityError as exc:
            # Another transaction created the same (employee, type, year) row
            raise ConcurrentModificationException() from exc
        return row

    @staticmethod
    async def update_balance(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        *,
        total_days: Decimal = ZERO,
        used_days: Decimal = ZERO,
        pending_days: Decimal = ZERO,
        carry_forward: Decimal = ZERO,
    ) -> LeaveBalance:
        """Apply deltas to the cached row, creating it if missing."""
        row = await BalanceLedger._get_or_create_balance(
            db, tenant_id, employee_id, leave_type_id, year
        )
        row.total_days = row.total_days + Decimal(total_days)
        row.used_days = row.used_days + Decimal(used_days)
        row.pending_days = row.pending_days + Decimal(pending_days)
        row.carry_forward = row.carry_forward + Decimal(carry_forward)
        try:
            await db.flush()
        except StaleDataError as exc:
            raise ConcurrentModificationException() from exc
        return row

    # ── Ledger ──────────────────────────────────────────────────────

    @staticmethod
    async def post_transaction(
        db: AsyncSession,
        *,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        transaction_type: LedgerTransactionType,
        days: Decimal,
        created_by: str,
        effective_date: Optional[date] = None,
        leave_policy_id: Optional[uuid.UUID] = None,
        leave_application_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
    ) -> LeaveLedgerEntry:
        """Append one ledger entry and apply its effect to the balance cache.

        ``balance_before`` / ``balance_after`` are available-day snapshots
        around the entry.  With ``APPROVAL_LEDGER_SNAPSHOT="legacy"`` an
        approval records ``before - days`` instead of the unchanged
        availability.
        """
        days = Decimal(days)
        row = await BalanceLedger._get_or_create_balance(
            db, tenant_id, employee_id, leave_type_id, year
        )
        balance_before = row.available_days

        delta = balance_effect(transaction_type, days)
        row = await BalanceLedger.update_balance(
            db,
            tenant_id,
            employee_id,
            leave_type_id,
            year,
            total_days=delta.total_days,
            used_days=delta.used_days,
            pending_days=delta.pending_days,
            carry_forward=delta.carry_forward,
        )
        balance_after = row.available_days
        if (
            transaction_type == LedgerTransactionType.approval
            and settings.APPROVAL_LEDGER_SNAPSHOT == "legacy"
        ):
            balance_after = balance_before - days

        entry = LeaveLedgerEntry(
            tenant_id=tenant_id,
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            leave_policy_id=leave_policy_id,
            leave_application_id=leave_application_id,
            transaction_type=transaction_type,
            days=days,
            balance_before=balance_before,
            balance_after=balance_after,
            year=year,
            effective_date=effective_date or date.today(),
            description=description,
            created_by=created_by,
        )
        db.add(entry)
        await db.flush()

        logger.debug(
            "Ledger %s %s days for employee %s type %s year %s (%s -> %s)",
            transaction_type.value, days, employee_id, leave_type_id, year,
            balance_before, balance_after,
        )
        return entry

    @staticmethod
    async def replay_ledger(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> LedgerTotals:
        """Recompute the balance columns from ledger entries alone."""
        result = await db.execute(
            select(LeaveLedgerEntry.transaction_type, LeaveLedgerEntry.days).where(
                LeaveLedgerEntry.tenant_id == tenant_id,
                LeaveLedgerEntry.employee_id == employee_id,
                LeaveLedgerEntry.leave_type_id == leave_type_id,
                LeaveLedgerEntry.year == year,
            )
        )
        totals = [ZERO, ZERO, ZERO, ZERO]
        count = 0
        for transaction_type, days in result.all():
            delta = balance_effect(transaction_type, days)
            totals = [a + b for a, b in zip(totals, delta)]
            count += 1
        return LedgerTotals(
            total_days=totals[0],
            used_days=totals[1],
            pending_days=totals[2],
            carry_forward=totals[3],
            entry_count=count,
        )

    @staticmethod
    async def get_balance_summary(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        year: int,
    ) -> BalanceSummary:
        """All balances for the year, each checked against a ledger replay."""
        result = await db.execute(
            select(LeaveBalance, LeaveType.code, LeaveType.name)
            .join(LeaveType, LeaveType.id == LeaveBalance.leave_type_id)
            .where(
                LeaveBalance.tenant_id == tenant_id,
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.year == year,
            )
            .order_by(LeaveType.code)
        )

        items: list[BalanceSummaryItem] = []
        for row, code, name in result.all():
            replay = await BalanceLedger.replay_ledger(
                db, tenant_id, employee_id, row.leave_type_id, year
            )
            verified = all(
                abs(cached - replayed) < TOLERANCE
                for cached, replayed in (
                    (row.total_days, replay.total_days),
                    (row.used_days, replay.used_days),
                    (row.pending_days, replay.pending_days),
                    (row.carry_forward, replay.carry_forward),
                )
            )
            if not verified:
                logger.warning(
                    "Balance cache for employee %s type %s year %s disagrees with ledger",
                    employee_id, row.leave_type_id, year,
                )
            base = _balance_out(row, employee_id, row.leave_type_id, year)
            items.append(
                BalanceSummaryItem(
                    **base.model_dump(),
                    leave_type_code=code,
                    leave_type_name=name,
                    ledger_total=replay.total_days,
                    ledger_verified=verified,
                )
            )
        return BalanceSummary(employee_id=employee_id, year=year, balances=items)

    @staticmethod
    async def list_ledger(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        *,
        leave_type_id: Optional[uuid.UUID] = None,
        year: Optional[int] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[Sequence[LeaveLedgerEntry], PaginationMeta]:
        """Ledger history for an employee, oldest first."""
        query = select(LeaveLedgerEntry).where(
            LeaveLedgerEntry.tenant_id == tenant_id,
            LeaveLedgerEntry.employee_id == employee_id,
        )
        if leave_type_id is not None:
            query = query.where(LeaveLedgerEntry.leave_type_id == leave_type_id)
        if year is not None:
            query = query.where(LeaveLedgerEntry.year == year)
        query = query.order_by(LeaveLedgerEntry.created_at.asc(), LeaveLedgerEntry.id)
        return await paginate(db, query, page=page, page_size=page_size)
