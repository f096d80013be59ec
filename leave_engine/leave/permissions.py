"""Actor model and approval capability check."""

from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict

from leave_engine.common.constants import ELEVATED_ROLES, UserRole
from leave_engine.config import settings
from leave_engine.leave.models import LeaveApplication


class Actor(BaseModel):
    """Authenticated, tenant-scoped caller of an engine operation."""

    model_config = ConfigDict(frozen=True)

    tenant_id: uuid.UUID
    employee_id: Optional[uuid.UUID] = None
    roles: frozenset[UserRole] = frozenset()
    is_system: bool = False

    @classmethod
    def system(cls, tenant_id: uuid.UUID) -> "Actor":
        return cls(tenant_id=tenant_id, is_system=True)

    @property
    def audit_id(self) -> str:
        """Identifier written to ``created_by`` / ``*_by`` / audit columns."""
        if self.is_system or self.employee_id is None:
            return settings.SYSTEM_ACTOR_ID
        return str(self.employee_id)

    @property
    def is_elevated(self) -> bool:
        return bool(self.roles & ELEVATED_ROLES)


def can_approve(actor: Actor, application: LeaveApplication) -> bool:
    """Whether *actor* may approve or reject *application*."""
    if actor.tenant_id != application.tenant_id:
        return False
    if actor.is_system or actor.is_elevated:
        return True
    return (
        actor.employee_id is not None
        and actor.employee_id == application.current_approver_id
    )


def is_owner(actor: Actor, application: LeaveApplication) -> bool:
    return (
        actor.tenant_id == application.tenant_id
        and actor.employee_id is not None
        and actor.employee_id == application.employee_id
    )
