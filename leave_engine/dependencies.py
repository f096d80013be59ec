"""Shared FastAPI dependencies — actor resolution and role enforcement.

Authentication happens upstream at the gateway, which forwards the tenant and
employee of the authenticated caller in ``X-Tenant-ID`` / ``X-Employee-ID``.
"""

from __future__ import annotations

import uuid
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import UserRole
from leave_engine.common.exceptions import ForbiddenException
from leave_engine.core_hr.service import DirectoryService
from leave_engine.database import get_db
from leave_engine.leave.permissions import Actor

TENANT_HEADER = "X-Tenant-ID"
EMPLOYEE_HEADER = "X-Employee-ID"


def _header_uuid(request: Request, name: str) -> uuid.UUID:
    raw = request.headers.get(name)
    if not raw:
        raise HTTPException(status_code=401, detail=f"Missing {name} header.")
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Invalid {name} header.")


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_actor(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """Resolve the calling employee and their active roles into an Actor."""
    tenant_id = _header_uuid(request, TENANT_HEADER)
    employee_id = _header_uuid(request, EMPLOYEE_HEADER)

    employee = await DirectoryService.get_employee(
        db, tenant_id, employee_id, active_only=True
    )
    if employee is None:
        raise HTTPException(status_code=401, detail="Employee is inactive or not found.")

    roles = await DirectoryService.get_active_roles(db, tenant_id, employee_id)
    actor = Actor(tenant_id=tenant_id, employee_id=employee_id, roles=roles)
    request.state.actor = actor
    return actor


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership."""

    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.roles.intersection(allowed_roles):
            raise ForbiddenException(
                detail=f"Requires one of: {[r.value for r in allowed_roles]}.",
            )
        return actor

    return _check
