"""Year-end processing: carry-forward, encashment and lapse."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import LedgerTransactionType
from leave_engine.common.exceptions import (
    BadRequestException,
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
)
from leave_engine.leave.ledger import BalanceLedger
from leave_engine.leave.models import LeaveLedgerEntry
from leave_engine.leave.schemas import LeaveApplicationCreate, LeaveApplicationUpdate
from leave_engine.leave.service import LeaveService
from leave_engine.leave.year_end import YearEndService
from tests.factories import grant_days, load_balance, seed_leave_type, seed_policy


async def _entries(db: AsyncSession, employee, transaction_type) -> list[LeaveLedgerEntry]:
    result = await db.execute(
        select(LeaveLedgerEntry).where(
            LeaveLedgerEntry.employee_id == employee.id,
            LeaveLedgerEntry.transaction_type == transaction_type,
        )
    )
    return list(result.scalars().all())


# ═════════════════════════════════════════════════════════════════════
# Carry-forward
# ═════════════════════════════════════════════════════════════════════


class TestCarryForward:

    async def test_carries_up_to_policy_limit(
        self, db: AsyncSession, tenant_id, employee, casual_leave
    ):
        policy = await seed_policy(
            db, casual_leave, carry_forward_enabled=True, carry_forward_limit=Decimal("5")
        )
        await grant_days(db, employee, casual_leave, 12)

        entry = await YearEndService.process_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2024
        )

        assert entry.transaction_type == LedgerTransactionType.carry_forward
        assert entry.year == 2025
        assert entry.days == Decimal("5")
        assert entry.effective_date == date(2025, 1, 1)
        assert entry.leave_policy_id == policy.id

        next_year = await load_balance(db, employee, casual_leave, year=2025)
        assert next_year.carry_forward == Decimal("5")
        assert next_year.available_days == Decimal("5")
        # The closed year is left as it was
        closed = await load_balance(db, employee, casual_leave)
        assert closed.available_days == Decimal("12")

    async def test_second_run_is_a_no_op(
        self, db: AsyncSession, tenant_id, employee, casual_leave
    ):
        await seed_policy(db, casual_leave, carry_forward_enabled=True)
        await grant_days(db, employee, casual_leave, 8)

        first = await YearEndService.process_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2024
        )
        second = await YearEndService.process_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2024
        )

        assert first.days == Decimal("8")
        assert second is None
        assert len(await _entries(db, employee, LedgerTransactionType.carry_forward)) == 1

    async def test_disabled_policy_carries_nothing(
        self, db: AsyncSession, tenant_id, employee, casual_leave
    ):
        await seed_policy(db, casual_leave, carry_forward_enabled=False)
        await grant_days(db, employee, casual_leave, 12)
        assert await YearEndService.process_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2024
        ) is None

    async def test_falls_back_to_leave_type_settings(
        self, db: AsyncSession, tenant_id, employee
    ):
        earned = await seed_leave_type(
            db, tenant_id, code="EL", name="Earned", carry_forward=True, carry_forward_limit=3
        )
        await grant_days(db, employee, earned, 10)

        entry = await YearEndService.process_carry_forward(
            db, tenant_id, employee.id, earned.id, 2024
        )
        assert entry.days == Decimal("3")
        assert entry.leave_policy_id is None

    async def test_carries_only_what_is_available(
        self, db: AsyncSession, tenant_id, employee, casual_leave, employee_actor
    ):
        await seed_policy(db, casual_leave, carry_forward_enabled=True)
        await grant_days(db, employee, casual_leave, 4)
        await LeaveService.apply_leave(
            db, employee_actor,
            LeaveApplicationCreate(
                leave_type_id=casual_leave.id,
                start_date=date(2024, 12, 30),
                end_date=date(2024, 12, 31),
            ),
        )

        entry = await YearEndService.process_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2024
        )
        assert entry.days == Decimal("2")

    async def test_closed_year_refuses_new_applications(
        self, db: AsyncSession, tenant_id, employee, casual_leave, employee_actor
    ):
        await seed_policy(
            db, casual_leave, carry_forward_enabled=True, carry_forward_limit=Decimal("5")
        )
        await grant_days(db, employee, casual_leave, 12)
        await YearEndService.process_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2024
        )

        with pytest.raises(BadRequestException) as exc_info:
            await LeaveService.apply_leave(
                db, employee_actor,
                LeaveApplicationCreate(
                    leave_type_id=casual_leave.id,
                    start_date=date(2024, 12, 23),
                    end_date=date(2024, 12, 27),
                ),
            )
        assert "year" in exc_info.value.errors
        assert await _entries(db, employee, LedgerTransactionType.application) == []

        # The carried days are spendable once, in the new year
        created = await LeaveService.apply_leave(
            db, employee_actor,
            LeaveApplicationCreate(
                leave_type_id=casual_leave.id,
                start_date=date(2025, 1, 6),
                end_date=date(2025, 1, 10),
            ),
        )
        assert created.days == Decimal("5")
        next_year = await load_balance(db, employee, casual_leave, year=2025)
        assert next_year.pending_days == Decimal("5")

    async def test_closed_year_refuses_extending_an_application(
        self, db: AsyncSession, tenant_id, employee, casual_leave, employee_actor
    ):
        await seed_policy(db, casual_leave, carry_forward_enabled=True)
        await grant_days(db, employee, casual_leave, 12)
        created = await LeaveService.apply_leave(
            db, employee_actor,
            LeaveApplicationCreate(
                leave_type_id=casual_leave.id,
                start_date=date(2024, 12, 30),
                end_date=date(2024, 12, 31),
            ),
        )
        await YearEndService.process_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2024
        )

        with pytest.raises(BadRequestException):
            await LeaveService.edit_application(
                db, employee_actor, created.id,
                LeaveApplicationUpdate(start_date=date(2024, 12, 26)),
            )

        shortened = await LeaveService.edit_application(
            db, employee_actor, created.id,
            LeaveApplicationUpdate(start_date=date(2024, 12, 31)),
        )
        assert shortened.days == Decimal("1")

    async def test_closed_year_refuses_encashment(
        self, db: AsyncSession, tenant_id, employee, casual_leave
    ):
        await seed_policy(
            db, casual_leave, carry_forward_enabled=True, encashment_enabled=True
        )
        await grant_days(db, employee, casual_leave, 12)
        await YearEndService.process_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2024
        )

        with pytest.raises(BadRequestException):
            await YearEndService.encash_leave(
                db, tenant_id, employee.id, casual_leave.id, 2024, Decimal("2")
            )
        assert await _entries(db, employee, LedgerTransactionType.encashment) == []

    async def test_nothing_available(self, db: AsyncSession, tenant_id, employee, casual_leave):
        await seed_policy(db, casual_leave, carry_forward_enabled=True)
        assert await YearEndService.process_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2024
        ) is None

    async def test_unknown_type(self, db: AsyncSession, tenant_id, employee):
        import uuid

        with pytest.raises(NotFoundException):
            await YearEndService.process_carry_forward(
                db, tenant_id, employee.id, uuid.uuid4(), 2024
            )


# ═════════════════════════════════════════════════════════════════════
# Encashment
# ═════════════════════════════════════════════════════════════════════


class TestEncashment:

    @pytest.fixture
    async def encashable(self, db, employee, casual_leave):
        await seed_policy(
            db, casual_leave, encashment_enabled=True, encashment_limit=Decimal("5")
        )
        await grant_days(db, employee, casual_leave, 12)

    async def test_encash_reduces_total(
        self, db: AsyncSession, tenant_id, employee, casual_leave, encashable
    ):
        entry = await YearEndService.encash_leave(
            db, tenant_id, employee.id, casual_leave.id, 2024, Decimal("3")
        )
        assert entry.transaction_type == LedgerTransactionType.encashment
        assert entry.days == Decimal("-3")
        assert entry.balance_before == Decimal("12")
        assert entry.balance_after == Decimal("9")

        bal = await load_balance(db, employee, casual_leave)
        assert bal.total_days == Decimal("9")

    async def test_limit_is_cumulative_for_the_year(
        self, db: AsyncSession, tenant_id, employee, casual_leave, encashable
    ):
        await YearEndService.encash_leave(
            db, tenant_id, employee.id, casual_leave.id, 2024, Decimal("3")
        )
        with pytest.raises(ValidationException) as exc_info:
            await YearEndService.encash_leave(
                db, tenant_id, employee.id, casual_leave.id, 2024, Decimal("3")
            )
        assert "days" in exc_info.value.errors

        entry = await YearEndService.encash_leave(
            db, tenant_id, employee.id, casual_leave.id, 2024, Decimal("2")
        )
        assert entry.days == Decimal("-2")

    async def test_not_enabled(self, db: AsyncSession, tenant_id, employee, casual_leave):
        await seed_policy(db, casual_leave)
        await grant_days(db, employee, casual_leave, 12)
        with pytest.raises(ValidationException):
            await YearEndService.encash_leave(
                db, tenant_id, employee.id, casual_leave.id, 2024, Decimal("1")
            )

    async def test_cannot_exceed_available(
        self, db: AsyncSession, tenant_id, employee, casual_leave
    ):
        await seed_policy(db, casual_leave, encashment_enabled=True)
        await grant_days(db, employee, casual_leave, 2)
        with pytest.raises(InsufficientBalanceException):
            await YearEndService.encash_leave(
                db, tenant_id, employee.id, casual_leave.id, 2024, Decimal("3")
            )
        assert await _entries(db, employee, LedgerTransactionType.encashment) == []

    async def test_days_must_be_positive(
        self, db: AsyncSession, tenant_id, employee, casual_leave, encashable
    ):
        with pytest.raises(ValidationException):
            await YearEndService.encash_leave(
                db, tenant_id, employee.id, casual_leave.id, 2024, Decimal("0")
            )


# ═════════════════════════════════════════════════════════════════════
# Lapse
# ═════════════════════════════════════════════════════════════════════


class TestLapse:

    @pytest.fixture
    async def carried(self, db, tenant_id, employee, casual_leave):
        """5 days carried from 2024 into 2025."""
        await seed_policy(
            db, casual_leave, carry_forward_enabled=True, carry_forward_limit=Decimal("5")
        )
        await grant_days(db, employee, casual_leave, 12)
        await YearEndService.process_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2024
        )

    async def test_lapses_unused_carry_forward(
        self, db: AsyncSession, tenant_id, employee, casual_leave, carried
    ):
        entry = await YearEndService.lapse_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2025
        )
        assert entry.transaction_type == LedgerTransactionType.lapse
        assert entry.days == Decimal("-5")

        bal = await load_balance(db, employee, casual_leave, year=2025)
        assert bal.carry_forward == Decimal("0")
        assert bal.available_days == Decimal("0")

    async def test_lapse_limited_to_available(
        self, db: AsyncSession, tenant_id, employee, casual_leave, employee_actor, carried
    ):
        await LeaveService.apply_leave(
            db, employee_actor,
            LeaveApplicationCreate(
                leave_type_id=casual_leave.id,
                start_date=date(2025, 2, 3),
                end_date=date(2025, 2, 4),
            ),
        )
        entry = await YearEndService.lapse_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2025
        )
        assert entry.days == Decimal("-3")

        summary = await BalanceLedger.get_balance_summary(db, tenant_id, employee.id, 2025)
        assert summary.balances[0].ledger_verified is True

    async def test_nothing_to_lapse(self, db: AsyncSession, tenant_id, employee, casual_leave):
        await grant_days(db, employee, casual_leave, 12)
        assert await YearEndService.lapse_carry_forward(
            db, tenant_id, employee.id, casual_leave.id, 2024
        ) is None
