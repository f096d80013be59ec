"""Shared test fixtures — async DB, client, actors and seeded directory.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Loosen the global limit before pydantic-settings reads the environment
os.environ.setdefault("RATE_LIMIT_DEFAULT", "1000/minute")

import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from leave_engine.common.constants import UserRole
from leave_engine.database import Base, get_db
from leave_engine.main import create_app

# Import ALL model modules so the metadata holds every table
import leave_engine.common.audit  # noqa: F401
import leave_engine.core_hr.models  # noqa: F401
import leave_engine.leave.models  # noqa: F401

from leave_engine.leave.permissions import Actor
from tests.factories import seed_employee, seed_leave_type, seed_role

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


def install_sqlite_shims(async_engine: AsyncEngine) -> None:
    """PG-compatible functions plus working SAVEPOINTs on aiosqlite."""

    @event.listens_for(async_engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        dbapi_conn.create_function(
            "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
        )
        dbapi_conn.create_function(
            "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
        )
        # Let SQLAlchemy emit BEGIN itself so begin_nested() works
        dbapi_conn.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
install_sqlite_shims(engine)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from leave_engine.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── File-backed database (separate connections per session) ─────────

@pytest.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Session factory over a SQLite file, one connection per session."""
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'leave.db'}",
        poolclass=NullPool,
    )
    install_sqlite_shims(file_engine)
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
    await file_engine.dispose()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Seeded tenant ───────────────────────────────────────────────────

@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
async def hr_admin(db, tenant_id):
    """Active HR admin; also the fallback approver of the tenant."""
    admin = await seed_employee(db, tenant_id, first_name="Hema", last_name="Admin")
    await seed_role(db, admin, UserRole.hr_admin)
    return admin


@pytest.fixture
async def manager(db, tenant_id):
    mgr = await seed_employee(db, tenant_id, first_name="Mohan", last_name="Manager")
    await seed_role(db, mgr, UserRole.manager)
    return mgr


@pytest.fixture
async def employee(db, tenant_id, manager):
    """Employee reporting to ``manager``."""
    return await seed_employee(
        db, tenant_id, first_name="Esha", last_name="Employee",
        reporting_manager_id=manager.id,
    )


@pytest.fixture
async def casual_leave(db, tenant_id):
    """CL: 12 days, approval required, half days allowed."""
    return await seed_leave_type(db, tenant_id)


@pytest.fixture
def employee_actor(tenant_id, employee) -> Actor:
    return Actor(tenant_id=tenant_id, employee_id=employee.id, roles=frozenset({UserRole.employee}))


@pytest.fixture
def manager_actor(tenant_id, manager) -> Actor:
    return Actor(tenant_id=tenant_id, employee_id=manager.id, roles=frozenset({UserRole.manager}))


@pytest.fixture
def admin_actor(tenant_id, hr_admin) -> Actor:
    return Actor(tenant_id=tenant_id, employee_id=hr_admin.id, roles=frozenset({UserRole.hr_admin}))

