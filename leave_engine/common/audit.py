"""Audit trail model and the fail-safe helper that records entity changes.

Audit writes never decide the outcome of the operation that produced them:
``emit_audit_event`` isolates the insert in a savepoint and logs (rather than
raises) any failure.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import (
    Column,
    DateTime,
    Index,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from leave_engine.database import Base

logger = logging.getLogger(__name__)


# ── Immutable audit-trail table ─────────────────────────────────────

class AuditTrail(Base):
    """Immutable log of every significant data change."""

    __tablename__ = "audit_trail"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False,
    )
    old_values = Column(JSONB, nullable=True)
    new_values = Column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("NOW()"),
    )

    __table_args__ = (
        Index("ix_audit_trail_tenant_entity", "tenant_id", "entity_type", "entity_id"),
        Index("ix_audit_trail_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditTrail {self.action} {self.entity_type}"
            f"/{self.entity_id} by {self.actor_id}>"
        )


# ── Helper to create an entry ───────────────────────────────────────

def _build_entry(
    *,
    tenant_id: uuid.UUID,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    actor_id: Optional[str],
    old_values: Optional[dict[str, Any]],
    new_values: Optional[dict[str, Any]],
) -> AuditTrail:
    return AuditTrail(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=to_jsonable_python(old_values) if old_values is not None else None,
        new_values=to_jsonable_python(new_values) if new_values is not None else None,
    )


async def emit_audit_event(
    session: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    actor_id: Optional[str] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
) -> Optional[AuditTrail]:
    """
    Record an audit-trail entry without ever failing the caller.

    Args:
        session: Async SQLAlchemy session of the primary operation.
        tenant_id: Tenant the entity belongs to.
        action: create | update | delete | apply | approve | reject | cancel | accrue.
        entity_type: e.g. "leave_type", "leave_application".
        entity_id: UUID of the affected entity.
        actor_id: Employee id (as string) or the system actor id.
        old_values: Previous state (for updates/deletes).
        new_values: New state (for creates/updates).

    Returns the persisted entry, or ``None`` when the write failed.
    """
    try:
        async with session.begin_nested():
            entry = _build_entry(
                tenant_id=tenant_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                actor_id=actor_id,
                old_values=old_values,
                new_values=new_values,
            )
            session.add(entry)
            await session.flush()
        return entry
    except Exception:
        logger.exception(
            "Audit write failed for %s %s/%s (tenant %s)",
            action, entity_type, entity_id, tenant_id,
        )
        return None
