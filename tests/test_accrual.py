"""Accrual calculator, manual accrual and the annual batch."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import AuditTrail
from leave_engine.common.constants import AccrualOutcome, AccrualType, LedgerTransactionType
from leave_engine.config import settings
from leave_engine.core_hr.models import Employee
from leave_engine.leave.accrual import AccrualService, accrual_days_for
from leave_engine.leave.models import LeaveLedgerEntry, LeavePolicy
from tests.factories import load_balance, seed_employee, seed_leave_type, seed_policy


def _policy(accrual_type, days="12", period=12, prorated=True) -> LeavePolicy:
    return LeavePolicy(
        accrual_type=accrual_type,
        accrual_days=Decimal(days),
        accrual_period=period,
        prorated_for_joiners=prorated,
    )


def _joiner(joined) -> Employee:
    return Employee(date_of_joining=joined)


# ═════════════════════════════════════════════════════════════════════
# Pure calculation
# ═════════════════════════════════════════════════════════════════════


class TestAccrualDaysFor:

    def test_annual_is_full_amount(self):
        assert accrual_days_for(_policy(AccrualType.annual), _joiner(date(2024, 7, 1)), 2024) == Decimal("12")

    def test_monthly_scales_to_a_year(self):
        policy = _policy(AccrualType.monthly, days="1", period=1)
        assert accrual_days_for(policy, _joiner(None), 2024) == Decimal("12.00")

        quarterly = _policy(AccrualType.monthly, days="4.5", period=3)
        assert accrual_days_for(quarterly, _joiner(None), 2024) == Decimal("18.00")

    def test_prorated_for_mid_year_joiner(self):
        # 183 days from 1 Jul to 31 Dec: 12 * 183 / 365 = 6.0164
        days = accrual_days_for(_policy(AccrualType.prorated), _joiner(date(2024, 7, 1)), 2024)
        assert days == Decimal("6.02")

    def test_prorated_rounds_half_up(self):
        # 91 days: 10 * 91 / 365 = 2.4931
        days = accrual_days_for(
            _policy(AccrualType.prorated, days="10"), _joiner(date(2024, 10, 1)), 2024
        )
        assert days == Decimal("2.49")

    def test_prorated_full_for_earlier_joiner(self):
        days = accrual_days_for(_policy(AccrualType.prorated), _joiner(date(2019, 3, 1)), 2024)
        assert days == Decimal("12")

    def test_prorated_zero_for_future_joiner(self):
        days = accrual_days_for(_policy(AccrualType.prorated), _joiner(date(2025, 2, 1)), 2024)
        assert days == Decimal("0")

    def test_prorating_disabled(self):
        policy = _policy(AccrualType.prorated, prorated=False)
        assert accrual_days_for(policy, _joiner(date(2024, 7, 1)), 2024) == Decimal("12")

    def test_none_accrues_nothing(self):
        assert accrual_days_for(_policy(AccrualType.none), _joiner(None), 2024) == Decimal("0")

    def test_days_in_year_setting(self, monkeypatch):
        monkeypatch.setattr(settings, "DAYS_IN_YEAR", 366)
        # 12 * 183 / 366 = 6.00
        days = accrual_days_for(_policy(AccrualType.prorated), _joiner(date(2024, 7, 1)), 2024)
        assert days == Decimal("6.00")


# ═════════════════════════════════════════════════════════════════════
# calculate_accrual / record_accrual
# ═════════════════════════════════════════════════════════════════════


class TestCalculateAccrual:

    async def test_uses_default_policy(self, db: AsyncSession, tenant_id, employee, casual_leave):
        policy = await seed_policy(db, casual_leave, accrual_days=Decimal("15"))
        calc = await AccrualService.calculate_accrual(
            db, tenant_id, employee.id, casual_leave.id, 2024
        )
        assert calc.days == Decimal("15")
        assert calc.policy_id == policy.id

    async def test_zero_without_default_policy(
        self, db: AsyncSession, tenant_id, employee, casual_leave
    ):
        await seed_policy(db, casual_leave, is_default=False)
        calc = await AccrualService.calculate_accrual(
            db, tenant_id, employee.id, casual_leave.id, 2024
        )
        assert calc.days == Decimal("0")
        assert calc.policy_id is None

    async def test_zero_outside_location_filter(
        self, db: AsyncSession, tenant_id, employee, casual_leave
    ):
        await seed_policy(db, casual_leave, location_filter=["Delhi"])
        calc = await AccrualService.calculate_accrual(
            db, tenant_id, employee.id, casual_leave.id, 2024
        )
        assert calc.days == Decimal("0")
        assert calc.policy_id is not None

    async def test_filter_ignored_when_employee_lacks_attribute(
        self, db: AsyncSession, tenant_id, casual_leave
    ):
        await seed_policy(db, casual_leave, grade_filter=["G7"])
        ungraded = await seed_employee(db, tenant_id, designation_id=None)
        calc = await AccrualService.calculate_accrual(
            db, tenant_id, ungraded.id, casual_leave.id, 2024
        )
        assert calc.days == Decimal("12")

    async def test_zero_for_unknown_employee(self, db: AsyncSession, tenant_id, casual_leave):
        await seed_policy(db, casual_leave)
        calc = await AccrualService.calculate_accrual(
            db, tenant_id, uuid.uuid4(), casual_leave.id, 2024
        )
        assert calc.days == Decimal("0")


class TestRecordAccrual:

    async def test_posts_accrual_entry(
        self, db: AsyncSession, tenant_id, employee, casual_leave, admin_actor
    ):
        entry = await AccrualService.record_accrual(
            db, tenant_id, employee.id, casual_leave.id, 2024, Decimal("12"),
            description="Opening balance", actor=admin_actor,
        )
        assert entry.transaction_type == LedgerTransactionType.accrual
        assert entry.balance_before == Decimal("0")
        assert entry.balance_after == Decimal("12")
        assert entry.created_by == str(admin_actor.employee_id)
        assert entry.description == "Opening balance"

        bal = await load_balance(db, employee, casual_leave)
        assert bal.total_days == Decimal("12")

        audit = (await db.execute(select(AuditTrail))).scalars().one()
        assert audit.action == "accrue"
        assert audit.entity_id == entry.id

    async def test_defaults_to_system_actor(
        self, db: AsyncSession, tenant_id, employee, casual_leave
    ):
        entry = await AccrualService.record_accrual(
            db, tenant_id, employee.id, casual_leave.id, 2024, Decimal("1.5")
        )
        assert entry.created_by == settings.SYSTEM_ACTOR_ID
        assert entry.description == "Accrual for 2024"


# ═════════════════════════════════════════════════════════════════════
# Annual batch
# ═════════════════════════════════════════════════════════════════════


class TestProcessAnnualAccruals:

    @pytest.fixture
    async def annual_policy(self, db, tenant_id, manager, employee, casual_leave):
        """CL with a default annual policy; SL monthly (excluded); one leaver."""
        policy = await seed_policy(db, casual_leave)
        sick = await seed_leave_type(db, tenant_id, code="SL", name="Sick")
        await seed_policy(db, sick, accrual_type=AccrualType.monthly, accrual_days=Decimal("1"))
        await seed_employee(db, tenant_id, first_name="Leaver", is_active=False)
        return policy

    async def test_accrues_each_active_employee(
        self, db: AsyncSession, tenant_id, manager, employee, casual_leave, annual_policy
    ):
        summary = await AccrualService.process_annual_accruals(db, tenant_id, 2024)

        assert summary.year == 2024
        assert summary.accrued == 2
        assert summary.failed == 0
        assert {r.employee_id for r in summary.results} == {manager.id, employee.id}
        assert all(r.leave_type_id == casual_leave.id for r in summary.results)

        for person in (manager, employee):
            bal = await load_balance(db, person, casual_leave)
            assert bal.total_days == Decimal("12")

        entries = (await db.execute(select(LeaveLedgerEntry))).scalars().all()
        assert {e.leave_policy_id for e in entries} == {annual_policy.id}
        assert {e.created_by for e in entries} == {settings.SYSTEM_ACTOR_ID}

    async def test_rerun_skips_accrued_units(
        self, db: AsyncSession, tenant_id, employee, casual_leave, annual_policy
    ):
        await AccrualService.process_annual_accruals(db, tenant_id, 2024)
        summary = await AccrualService.process_annual_accruals(db, tenant_id, 2024)

        assert summary.accrued == 0
        assert summary.skipped == 2
        assert {r.error for r in summary.results} == {"already accrued"}
        bal = await load_balance(db, employee, casual_leave)
        assert bal.total_days == Decimal("12")

    async def test_failure_rolls_back_only_that_unit(
        self, db: AsyncSession, tenant_id, manager, employee, casual_leave, annual_policy,
        monkeypatch, caplog,
    ):
        original = AccrualService.record_accrual

        async def flaky(db, tenant_id, employee_id, *args, **kwargs):
            entry = await original(db, tenant_id, employee_id, *args, **kwargs)
            if employee_id == employee.id:
                raise RuntimeError("downstream failure")
            return entry

        monkeypatch.setattr(AccrualService, "record_accrual", staticmethod(flaky))

        with caplog.at_level(logging.ERROR, logger="leave_engine.leave.accrual"):
            summary = await AccrualService.process_annual_accruals(db, tenant_id, 2024)

        by_employee = {r.employee_id: r for r in summary.results}
        assert by_employee[manager.id].status == AccrualOutcome.accrued
        assert by_employee[employee.id].status == AccrualOutcome.failed
        assert by_employee[employee.id].error == "downstream failure"
        assert summary.failed == 1
        assert "Accrual failed" in caplog.text

        assert (await load_balance(db, manager, casual_leave)).total_days == Decimal("12")
        rows = await db.execute(
            select(LeaveLedgerEntry).where(LeaveLedgerEntry.employee_id == employee.id)
        )
        assert rows.scalars().all() == []

    async def test_zero_day_units_are_skipped(
        self, db: AsyncSession, tenant_id, casual_leave, annual_policy
    ):
        # Outside the location filter, so the calculation yields 0 days
        outsider = await seed_employee(db, tenant_id, first_name="Far", location="Delhi")
        annual_policy.location_filter = ["Mumbai"]
        await db.flush()

        summary = await AccrualService.process_annual_accruals(db, tenant_id, 2024)
        [result] = [r for r in summary.results if r.employee_id == outsider.id]
        assert result.status == AccrualOutcome.skipped
        assert result.days == Decimal("0")
