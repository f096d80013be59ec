"""Balance rows under competing sessions.

Each session here has its own connection to a SQLite file.  SQLite
serialises writers, so the sessions take turns: a stale session is one
that read the row, committed, and kept the loaded instance.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm.exc import StaleDataError

from leave_engine.common.constants import UserRole
from leave_engine.common.exceptions import (
    ConcurrentModificationException,
    InsufficientBalanceException,
)
from leave_engine.leave.ledger import BalanceLedger
from leave_engine.leave.schemas import LeaveApplicationCreate
from leave_engine.leave.service import LeaveService
from tests.factories import (
    actor_for,
    grant_days,
    load_balance,
    seed_employee,
    seed_leave_type,
    seed_role,
)


@pytest.fixture
async def seeded(file_session_factory, tenant_id):
    """Employee with 12 CL days for 2024, committed to the file database."""
    async with file_session_factory() as session:
        admin = await seed_employee(session, tenant_id, first_name="Hema")
        await seed_role(session, admin, UserRole.hr_admin)
        emp = await seed_employee(session, tenant_id, first_name="Esha")
        leave_type = await seed_leave_type(session, tenant_id)
        await grant_days(session, emp, leave_type, 12)
        await session.commit()
    return emp, leave_type


async def _stale_balance(session, emp, leave_type):
    """Balance instance read in a transaction that has since ended."""
    row = await load_balance(session, emp, leave_type)
    await session.commit()
    return row


class TestVersionCounter:

    async def test_stale_write_is_rejected(self, file_session_factory, seeded):
        emp, leave_type = seeded

        async with file_session_factory() as first:
            stale = await _stale_balance(first, emp, leave_type)
            read_version = stale.version

            async with file_session_factory() as second:
                await grant_days(second, emp, leave_type, 1)
                await second.commit()

            stale.total_days = stale.total_days + Decimal("5")
            with pytest.raises(StaleDataError):
                await first.flush()
            await first.rollback()

        async with file_session_factory() as check:
            fresh = await load_balance(check, emp, leave_type)
            assert fresh.total_days == Decimal("13")
            assert fresh.version == read_version + 1

    async def test_update_balance_surfaces_conflict(
        self, file_session_factory, seeded, monkeypatch
    ):
        emp, leave_type = seeded

        async with file_session_factory() as first:
            stale = await _stale_balance(first, emp, leave_type)

            async with file_session_factory() as second:
                await grant_days(second, emp, leave_type, 1)
                await second.commit()

            async def no_refresh(*args, **kwargs):
                return stale

            monkeypatch.setattr(BalanceLedger, "lock_balance", staticmethod(no_refresh))
            with pytest.raises(ConcurrentModificationException) as exc_info:
                await BalanceLedger.update_balance(
                    first, emp.tenant_id, emp.id, leave_type.id, 2024,
                    pending_days=Decimal("2"),
                )
            assert exc_info.value.status_code == 409
            await first.rollback()


class TestLockedAvailability:

    async def test_second_request_sees_committed_debit(self, file_session_factory, seeded):
        emp, leave_type = seeded
        actor = actor_for(emp)

        def request(start, end):
            return LeaveApplicationCreate(
                leave_type_id=leave_type.id, start_date=start, end_date=end
            )

        async with file_session_factory() as late:
            # Loaded while all 12 days were still free
            before = await _stale_balance(late, emp, leave_type)
            assert before.available_days == Decimal("12")

            async with file_session_factory() as early:
                await LeaveService.apply_leave(
                    early, actor, request(date(2024, 3, 1), date(2024, 3, 12))
                )
                await early.commit()

            with pytest.raises(InsufficientBalanceException):
                await LeaveService.apply_leave(
                    late, actor, request(date(2024, 4, 1), date(2024, 4, 1))
                )
            await late.rollback()

        async with file_session_factory() as check:
            fresh = await load_balance(check, emp, leave_type)
            assert fresh.pending_days == Decimal("12")
            assert fresh.available_days == Decimal("0")
