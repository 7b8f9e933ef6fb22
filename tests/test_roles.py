"""Tests for role resolution, admin checks, and role schema drift."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.pulsecrm.core.errors import Forbidden, NotFound
from src.pulsecrm.core.roles import Role, RoleResolver, is_undefined_column_error
from src.pulsecrm.core.tenant import Caller


@pytest_asyncio.fixture
async def drifted_factory():
    """A database whose users table predates the role column."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.execute(
            text(
                "CREATE TABLE users (id VARCHAR(64) PRIMARY KEY, "
                "tenant_id VARCHAR(64) NOT NULL, email VARCHAR(255) NOT NULL)"
            )
        )
        await conn.execute(
            text("INSERT INTO users (id, tenant_id, email) VALUES ('u1', 't1', 'a@b.example.com')")
        )
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


# ── Role lookup ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_roles_resolved_per_user(services, workspace):
    roles = services.roles
    assert await roles.get_user_role(workspace.owner) == Role.OWNER
    assert await roles.get_user_role(workspace.admin) == Role.ADMIN
    assert await roles.get_user_role(workspace.member) == Role.MEMBER


@pytest.mark.asyncio
async def test_role_lookup_is_tenant_scoped(services, workspace):
    # Right user id, wrong tenant
    stranger = Caller(user_id="u-owner", tenant_id="t2")
    with pytest.raises(NotFound, match="User not found"):
        await services.roles.get_user_role(stranger)


@pytest.mark.asyncio
async def test_ensure_admin(services, workspace):
    assert await services.roles.ensure_admin(workspace.owner) == Role.OWNER
    assert await services.roles.ensure_admin(workspace.admin) == Role.ADMIN
    with pytest.raises(Forbidden, match="Admin access required"):
        await services.roles.ensure_admin(workspace.member)


# ── Schema drift ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_missing_role_column_uses_drift_fallback(drifted_factory):
    caller = Caller(user_id="u1", tenant_id="t1")

    assert await RoleResolver(drifted_factory).get_user_role(caller) == Role.OWNER
    narrowed = RoleResolver(drifted_factory, drift_fallback=Role.MEMBER)
    assert await narrowed.get_user_role(caller) == Role.MEMBER


@pytest.mark.asyncio
async def test_other_database_errors_propagate():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    try:
        resolver = RoleResolver(async_sessionmaker(engine, expire_on_commit=False))
        # No users table at all: not a drifted column
        with pytest.raises(DBAPIError):
            await resolver.get_user_role(Caller(user_id="u1", tenant_id="t1"))
    finally:
        await engine.dispose()


class _Orig(Exception):
    def __init__(self, message: str, sqlstate: str | None = None) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


@pytest.mark.parametrize(
    "orig,expected",
    [
        (_Orig("boom", sqlstate="42703"), True),
        (_Orig('column "role" does not exist'), True),
        (_Orig("no such column: users.role"), True),
        (_Orig('relation "users" does not exist', sqlstate="42P01"), False),
        (_Orig("connection reset"), False),
    ],
)
def test_is_undefined_column_error(orig, expected):
    exc = DBAPIError("SELECT users.role FROM users", {}, orig)
    assert is_undefined_column_error(exc) is expected
