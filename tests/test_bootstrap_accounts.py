"""Tests for workspace bootstrap, registration, and login."""

from __future__ import annotations

import pytest
from fastapi import HTTPException
from jose import jwt
from sqlalchemy import func, select

from src.pulsecrm.config import get_settings
from src.pulsecrm.core.errors import BadRequest, Forbidden
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.models import Pipeline
from src.pulsecrm.schemas.auth import LoginRequest, RegisterRequest


async def _pipeline_names(session_factory, tenant_id: str) -> dict[str, bool]:
    async with session_factory() as session:
        rows = (
            await session.execute(
                select(Pipeline.name, Pipeline.is_default).where(Pipeline.tenant_id == tenant_id)
            )
        ).all()
    return {row.name: row.is_default for row in rows}


# ── Bootstrap ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_bootstrap_creates_workspace_and_owner(services, session_factory):
    caller = Caller(user_id="u-new", tenant_id="t-new", email="nia@new.example.com", name="Nia")

    result = await services.bootstrap.ensure(caller, tenant_name="Newco")

    assert result["tenant_id"] == "t-new"
    assert result["role"] == "OWNER"
    pipelines = await _pipeline_names(session_factory, "t-new")
    assert pipelines == {"New Sales": True, "Post Sales": False, "B2C": False}

    pipeline = await services.pipelines.find_one(result["default_pipeline_id"], caller)
    names = [s.name for s in pipeline.stages]
    assert names.index("Contract") == names.index("Won") - 1
    assert names[-2:] == ["Transfer Scheduled", "Paid"]


@pytest.mark.asyncio
async def test_bootstrap_is_idempotent_and_later_users_are_members(services, session_factory):
    first = Caller(user_id="u-a", tenant_id="t-new", email="a@new.example.com")
    second = Caller(user_id="u-b", tenant_id="t-new", email="b@new.example.com")

    await services.bootstrap.ensure(first)
    again = await services.bootstrap.ensure(first)
    joined = await services.bootstrap.ensure(second)

    assert again["role"] == "OWNER"
    assert joined["role"] == "MEMBER"
    assert again["default_pipeline_id"] == joined["default_pipeline_id"]
    async with session_factory() as session:
        count = await session.scalar(
            select(func.count()).select_from(Pipeline).where(Pipeline.tenant_id == "t-new")
        )
    assert count == 3


@pytest.mark.asyncio
async def test_bootstrap_renames_legacy_sales_pipeline(services, workspace, session_factory):
    caller = Caller(user_id="u-owner", tenant_id="t1", email="owner@acme.example.com")

    result = await services.bootstrap.ensure(caller)

    assert result["default_pipeline_id"] == "p1"
    pipelines = await _pipeline_names(session_factory, "t1")
    assert pipelines["New Sales"] is True
    assert "Sales" not in pipelines
    stages = [s.name for s in (await services.pipelines.find_one("p1", caller)).stages]
    assert stages == ["Lead", "Proposal", "Contract", "Won", "Lost", "Transfer Scheduled", "Paid"]


@pytest.mark.asyncio
async def test_bootstrap_requires_email(services):
    with pytest.raises(BadRequest, match="no email"):
        await services.bootstrap.ensure(Caller(user_id="u-x", tenant_id="t-x"))


@pytest.mark.asyncio
async def test_bootstrap_rejects_user_from_another_workspace(services, workspace):
    caller = Caller(user_id="u-owner", tenant_id="t-elsewhere", email="owner@acme.example.com")
    with pytest.raises(Forbidden, match="another workspace"):
        await services.bootstrap.ensure(caller)


# ── Register / login ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_register_then_login(services, session_factory):
    token = await services.accounts.register(
        RegisterRequest(
            email="Founder@Startup.example.com",
            password="correct-horse",
            name="Fay",
            tenant_name="Startup",
            crm_mode="B2C",
        )
    )

    claims = jwt.decode(
        token.access_token,
        get_settings().JWT_SECRET_KEY,
        algorithms=[get_settings().JWT_ALGORITHM],
    )
    assert claims["sub"] == token.user_id
    assert claims["tenant_id"] == token.tenant_id
    assert claims["email"] == "founder@startup.example.com"

    pipelines = await _pipeline_names(session_factory, token.tenant_id)
    assert pipelines["B2C"] is True

    login = await services.accounts.login(
        LoginRequest(email="FOUNDER@startup.example.com", password="correct-horse")
    )
    assert login.user_id == token.user_id

    me = await services.accounts.me(
        Caller(user_id=token.user_id, tenant_id=token.tenant_id, email="founder@startup.example.com")
    )
    assert me.role == "OWNER"


@pytest.mark.asyncio
async def test_duplicate_email_rejected(services):
    data = RegisterRequest(email="dup@x.example.com", password="password1", tenant_name="One")
    await services.accounts.register(data)
    with pytest.raises(BadRequest, match="Email already registered"):
        await services.accounts.register(
            RegisterRequest(email="DUP@x.example.com", password="password2", tenant_name="Two")
        )


@pytest.mark.asyncio
async def test_login_with_wrong_password(services, workspace):
    await services.accounts.register(
        RegisterRequest(email="user@x.example.com", password="password1", tenant_name="One")
    )
    for email, password in (("user@x.example.com", "wrong-password"), ("nobody@x.example.com", "password1")):
        with pytest.raises(HTTPException) as exc_info:
            await services.accounts.login(LoginRequest(email=email, password=password))
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid credentials"

    # Seeded users have no password and cannot log in
    with pytest.raises(HTTPException):
        await services.accounts.login(LoginRequest(email="owner@acme.example.com", password="anything"))
