"""Leave type and leave policy catalogs — CRUD and active-policy resolution."""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import emit_audit_event
from leave_engine.common.exceptions import ConflictError, NotFoundException
from leave_engine.leave.models import (
    LeaveApplication,
    LeaveBalance,
    LeaveLedgerEntry,
    LeavePolicy,
    LeaveType,
)
from leave_engine.leave.permissions import Actor
from leave_engine.leave.schemas import (
    LeavePolicyCreate,
    LeavePolicyOut,
    LeavePolicyUpdate,
    LeaveTypeCreate,
    LeaveTypeOut,
    LeaveTypeUpdate,
)


class LeaveCatalogService:
    """Tenant-scoped leave type and leave policy catalogs."""

    # ─────────────────────────────────────────────────────────────────
    # Leave Types
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load_type(
        db: AsyncSession, tenant_id: uuid.UUID, leave_type_id: uuid.UUID
    ) -> LeaveType:
        result = await db.execute(
            select(LeaveType).where(
                LeaveType.id == leave_type_id,
                LeaveType.tenant_id == tenant_id,
            )
        )
        leave_type = result.scalars().first()
        if leave_type is None:
            raise NotFoundException("LeaveType", str(leave_type_id))
        return leave_type

    @staticmethod
    async def _ensure_code_free(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        code: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        query = select(LeaveType.id).where(
            LeaveType.tenant_id == tenant_id,
            func.upper(LeaveType.code) == code.upper(),
        )
        if exclude_id is not None:
            query = query.where(LeaveType.id != exclude_id)
        if (await db.execute(query)).first() is not None:
            raise ConflictError("code", code)

    @staticmethod
    async def create_type(
        db: AsyncSession,
        actor: Actor,
        data: LeaveTypeCreate,
    ) -> LeaveTypeOut:
        code = data.code.strip().upper()
        await LeaveCatalogService._ensure_code_free(db, actor.tenant_id, code)

        leave_type = LeaveType(tenant_id=actor.tenant_id, **data.model_dump())
        leave_type.code = code
        db.add(leave_type)
        await db.flush()

        out = LeaveTypeOut.model_validate(leave_type)
        await emit_audit_event(
            db,
            tenant_id=actor.tenant_id,
            action="create",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor.audit_id,
            new_values=out.model_dump(mode="json"),
        )
        return out

    @staticmethod
    async def list_types(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        *,
        active_only: bool = False,
    ) -> list[LeaveTypeOut]:
        query = select(LeaveType).where(LeaveType.tenant_id == tenant_id)
        if active_only:
            query = query.where(LeaveType.is_active.is_(True))
        result = await db.execute(query.order_by(LeaveType.code))
        return [LeaveTypeOut.model_validate(lt) for lt in result.scalars().all()]

    @staticmethod
    async def get_type(
        db: AsyncSession, tenant_id: uuid.UUID, leave_type_id: uuid.UUID
    ) -> LeaveTypeOut:
        leave_type = await LeaveCatalogService._load_type(db, tenant_id, leave_type_id)
        return LeaveTypeOut.model_validate(leave_type)

    @staticmethod
    async def update_type(
        db: AsyncSession,
        actor: Actor,
        leave_type_id: uuid.UUID,
        data: LeaveTypeUpdate,
    ) -> LeaveTypeOut:
        leave_type = await LeaveCatalogService._load_type(db, actor.tenant_id, leave_type_id)
        old_values = LeaveTypeOut.model_validate(leave_type).model_dump(mode="json")

        changes = data.model_dump(exclude_unset=True)
        if changes.get("code") is not None:
            changes["code"] = changes["code"].strip().upper()
            if changes["code"] != leave_type.code:
                await LeaveCatalogService._ensure_code_free(
                    db, actor.tenant_id, changes["code"], exclude_id=leave_type.id
                )
        for field, value in changes.items():
            setattr(leave_type, field, value)
        await db.flush()

        out = LeaveTypeOut.model_validate(leave_type)
        await emit_audit_event(
            db,
            tenant_id=actor.tenant_id,
            action="update",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor.audit_id,
            old_values=old_values,
            new_values=out.model_dump(mode="json"),
        )
        return out

    @staticmethod
    async def delete_type(
        db: AsyncSession,
        actor: Actor,
        leave_type_id: uuid.UUID,
    ) -> None:
        """Delete a leave type and its policies.

        Refused while applications, ledger entries or balances reference it.
        """
        leave_type = await LeaveCatalogService._load_type(db, actor.tenant_id, leave_type_id)

        in_use = await db.scalar(
            select(exists().where(LeaveApplication.leave_type_id == leave_type.id))
        )
        if in_use:
            raise ConflictError(
                "leave_type_id",
                leave_type.id,
                detail="Leave type is used by existing leave applications.",
            )
        has_history = await db.scalar(
            select(
                exists().where(LeaveLedgerEntry.leave_type_id == leave_type.id)
                | exists().where(LeaveBalance.leave_type_id == leave_type.id)
            )
        )
        if has_history:
            raise ConflictError(
                "leave_type_id",
                leave_type.id,
                detail="Leave type has balance history; deactivate it instead.",
            )

        old_values = LeaveTypeOut.model_validate(leave_type).model_dump(mode="json")
        policies = await db.execute(
            select(LeavePolicy).where(LeavePolicy.leave_type_id == leave_type.id)
        )
        for policy in policies.scalars().all():
            await db.delete(policy)
        # Policies reference the type; remove them first
        await db.flush()
        await db.delete(leave_type)
        await db.flush()

        await emit_audit_event(
            db,
            tenant_id=actor.tenant_id,
            action="delete",
            entity_type="leave_type",
            entity_id=leave_type_id,
            actor_id=actor.audit_id,
            old_values=old_values,
        )

    # ─────────────────────────────────────────────────────────────────
    # Leave Policies
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load_policy(
        db: AsyncSession, tenant_id: uuid.UUID, policy_id: uuid.UUID
    ) -> LeavePolicy:
        result = await db.execute(
            select(LeavePolicy).where(
                LeavePolicy.id == policy_id,
                LeavePolicy.tenant_id == tenant_id,
            )
        )
        policy = result.scalars().first()
        if policy is None:
            raise NotFoundException("LeavePolicy", str(policy_id))
        return policy

    @staticmethod
    async def _clear_default(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        keep_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Unset ``is_default`` on the other policies of a (tenant, type)."""
        stmt = update(LeavePolicy).where(
            LeavePolicy.tenant_id == tenant_id,
            LeavePolicy.leave_type_id == leave_type_id,
            LeavePolicy.is_default.is_(True),
        )
        if keep_id is not None:
            stmt = stmt.where(LeavePolicy.id != keep_id)
        await db.execute(
            stmt.values(is_default=False).execution_options(synchronize_session="fetch")
        )

    @staticmethod
    async def create_policy(
        db: AsyncSession,
        actor: Actor,
        data: LeavePolicyCreate,
    ) -> LeavePolicyOut:
        await LeaveCatalogService._load_type(db, actor.tenant_id, data.leave_type_id)

        if data.is_default:
            await LeaveCatalogService._clear_default(db, actor.tenant_id, data.leave_type_id)

        policy = LeavePolicy(tenant_id=actor.tenant_id, **data.model_dump())
        db.add(policy)
        await db.flush()

        out = LeavePolicyOut.model_validate(policy)
        await emit_audit_event(
            db,
            tenant_id=actor.tenant_id,
            action="create",
            entity_type="leave_policy",
            entity_id=policy.id,
            actor_id=actor.audit_id,
            new_values=out.model_dump(mode="json"),
        )
        return out

    @staticmethod
    async def list_policies(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        *,
        leave_type_id: Optional[uuid.UUID] = None,
    ) -> list[LeavePolicyOut]:
        query = select(LeavePolicy).where(LeavePolicy.tenant_id == tenant_id)
        if leave_type_id is not None:
            query = query.where(LeavePolicy.leave_type_id == leave_type_id)
        result = await db.execute(
            query.order_by(LeavePolicy.leave_type_id, LeavePolicy.effective_from.desc())
        )
        return [LeavePolicyOut.model_validate(p) for p in result.scalars().all()]

    @staticmethod
    async def get_policy(
        db: AsyncSession, tenant_id: uuid.UUID, policy_id: uuid.UUID
    ) -> LeavePolicyOut:
        policy = await LeaveCatalogService._load_policy(db, tenant_id, policy_id)
        return LeavePolicyOut.model_validate(policy)

    @staticmethod
    async def update_policy(
        db: AsyncSession,
        actor: Actor,
        policy_id: uuid.UUID,
        data: LeavePolicyUpdate,
    ) -> LeavePolicyOut:
        policy = await LeaveCatalogService._load_policy(db, actor.tenant_id, policy_id)
        old_values = LeavePolicyOut.model_validate(policy).model_dump(mode="json")

        changes = data.model_dump(exclude_unset=True)
        if changes.get("is_default"):
            await LeaveCatalogService._clear_default(
                db, actor.tenant_id, policy.leave_type_id, keep_id=policy.id
            )
        for field, value in changes.items():
            setattr(policy, field, value)
        await db.flush()

        out = LeavePolicyOut.model_validate(policy)
        await emit_audit_event(
            db,
            tenant_id=actor.tenant_id,
            action="update",
            entity_type="leave_policy",
            entity_id=policy.id,
            actor_id=actor.audit_id,
            old_values=old_values,
            new_values=out.model_dump(mode="json"),
        )
        return out

    @staticmethod
    async def delete_policy(
        db: AsyncSession,
        actor: Actor,
        policy_id: uuid.UUID,
    ) -> None:
        policy = await LeaveCatalogService._load_policy(db, actor.tenant_id, policy_id)
        old_values = LeavePolicyOut.model_validate(policy).model_dump(mode="json")
        await db.delete(policy)
        await db.flush()

        await emit_audit_event(
            db,
            tenant_id=actor.tenant_id,
            action="delete",
            entity_type="leave_policy",
            entity_id=policy_id,
            actor_id=actor.audit_id,
            old_values=old_values,
        )

    @staticmethod
    async def get_active_policy(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        as_of: Optional[date] = None,
        *,
        default_only: bool = False,
    ) -> Optional[LeavePolicy]:
        """Policy in force on *as_of* (today by default).

        Among policies whose window covers the date, the default one wins,
        then the most recent ``effective_from``.
        """
        as_of = as_of or date.today()
        query = select(LeavePolicy).where(
            LeavePolicy.tenant_id == tenant_id,
            LeavePolicy.leave_type_id == leave_type_id,
            LeavePolicy.effective_from <= as_of,
            (LeavePolicy.effective_to.is_(None)) | (LeavePolicy.effective_to >= as_of),
        )
        if default_only:
            query = query.where(LeavePolicy.is_default.is_(True))
        result = await db.execute(
            query.order_by(
                LeavePolicy.is_default.desc(),
                LeavePolicy.effective_from.desc(),
            ).limit(1)
        )
        return result.scalars().first()
