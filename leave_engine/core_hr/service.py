"""Employee directory lookups consumed by the leave engine."""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import UserRole
from leave_engine.core_hr.models import Employee, RoleAssignment


class DirectoryService:
    """Tenant-scoped reads against the employee directory."""

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        *,
        active_only: bool = False,
    ) -> Optional[Employee]:
        query = select(Employee).where(
            Employee.id == employee_id,
            Employee.tenant_id == tenant_id,
        )
        if active_only:
            query = query.where(Employee.is_active.is_(True))
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def list_active_employees(
        db: AsyncSession,
        tenant_id: uuid.UUID,
    ) -> Sequence[Employee]:
        result = await db.execute(
            select(Employee)
            .where(Employee.tenant_id == tenant_id, Employee.is_active.is_(True))
            .order_by(Employee.employee_code)
        )
        return result.scalars().all()

    @staticmethod
    async def list_direct_report_ids(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        manager_id: uuid.UUID,
    ) -> list[uuid.UUID]:
        result = await db.execute(
            select(Employee.id).where(
                Employee.tenant_id == tenant_id,
                Employee.reporting_manager_id == manager_id,
                Employee.is_active.is_(True),
            )
        )
        return [row[0] for row in result.all()]

    @staticmethod
    async def get_active_roles(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> frozenset[UserRole]:
        """Active roles held by an employee in the tenant."""
        result = await db.execute(
            select(RoleAssignment.role).where(
                RoleAssignment.tenant_id == tenant_id,
                RoleAssignment.employee_id == employee_id,
                RoleAssignment.is_active.is_(True),
            )
        )
        return frozenset(row[0] for row in result.all())

    @staticmethod
    async def find_fallback_approver(
        db: AsyncSession,
        tenant_id: uuid.UUID,
    ) -> Optional[uuid.UUID]:
        """Employee id of the tenant's first active HR admin, if any."""
        result = await db.execute(
            select(RoleAssignment.employee_id)
            .join(Employee, Employee.id == RoleAssignment.employee_id)
            .where(
                RoleAssignment.tenant_id == tenant_id,
                RoleAssignment.role == UserRole.hr_admin,
                RoleAssignment.is_active.is_(True),
                Employee.is_active.is_(True),
            )
            .order_by(RoleAssignment.assigned_at.asc())
            .limit(1)
        )
        return result.scalar()
