"""Shared fixtures for service and API tests.

Provides:
- In-memory SQLite database with the full mapped schema
- A static schema catalog whose capabilities each test can swap
- A wired service container with mocked FX transport and tmp upload dir
- A seeded workspace: tenant t1 (OWNER, ADMIN, MEMBER) with one pipeline,
  and tenant t2 with its own owner and pipeline
"""

from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import src.pulsecrm.deals.models  # noqa: F401
import src.pulsecrm.models.crm  # noqa: F401
from src.pulsecrm.config import Settings
from src.pulsecrm.core.capabilities import SchemaCaps
from src.pulsecrm.core.database import Base
from src.pulsecrm.core.storage import UploadStorage
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.models import Pipeline, Stage
from src.pulsecrm.forecast.fx import FxService
from src.pulsecrm.models.tenant import Tenant, User
from src.pulsecrm.services.container import build_services

FX_PAYLOAD = {
    "amount": 1.0,
    "base": "USD",
    "date": "2026-10-16",
    "rates": {"EUR": 0.5, "MXN": 20.0, "CAD": 1.25},
}


class StaticCatalog:
    """SchemaCatalog test double returning fixed capabilities."""

    def __init__(self, caps: SchemaCaps | None = None) -> None:
        self.caps = caps or SchemaCaps.full()
        self.loads = 0

    async def load(self) -> SchemaCaps:
        self.loads += 1
        return self.caps


def fx_transport(payload: dict | None = None, status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload if payload is not None else FX_PAYLOAD)

    return httpx.MockTransport(handler)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        UPLOAD_DIR=str(tmp_path / "uploads"),
        HF_API_KEY="",
        JWT_SECRET_KEY="test-secret",
        RUN_SCHEMA_UPGRADER=False,
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def catalog() -> StaticCatalog:
    return StaticCatalog()


@pytest.fixture
def fx() -> FxService:
    return FxService("https://fx.test/latest?from=USD", max_attempts=1, transport=fx_transport())


@pytest.fixture
def services(session_factory, settings, catalog, fx, tmp_path):
    return build_services(
        session_factory,
        settings,
        catalog,
        fx=fx,
        storage=UploadStorage(tmp_path / "uploads"),
    )


@pytest_asyncio.fixture
async def workspace(session_factory):
    """Two tenants with users and a four-stage pipeline each."""
    async with session_factory() as session:
        async with session.begin():
            session.add_all([Tenant(id="t1", name="Acme"), Tenant(id="t2", name="Globex")])
            await session.flush()
            session.add_all([
                User(id="u-owner", tenant_id="t1", email="owner@acme.example.com", name="Olive", role="OWNER"),
                User(id="u-admin", tenant_id="t1", email="admin@acme.example.com", name="Adam", role="ADMIN"),
                User(id="u-member", tenant_id="t1", email="member@acme.example.com", name="Mia", role="MEMBER"),
                User(id="u-other", tenant_id="t2", email="owner@globex.example.com", name="Gus", role="OWNER"),
            ])
            for tenant_id, pipeline_id in (("t1", "p1"), ("t2", "p2")):
                session.add(Pipeline(id=pipeline_id, tenant_id=tenant_id, name="Sales", is_default=True))
                await session.flush()
                for position, (name, probability, status) in enumerate((
                    ("Lead", 0.1, "OPEN"),
                    ("Proposal", 0.5, "OPEN"),
                    ("Won", 1.0, "WON"),
                    ("Lost", 0.0, "LOST"),
                )):
                    session.add(
                        Stage(
                            id=f"{pipeline_id}-{name.lower()}",
                            tenant_id=tenant_id,
                            pipeline_id=pipeline_id,
                            name=name,
                            position=position,
                            probability=probability,
                            status=status,
                        )
                    )

    return SimpleNamespace(
        owner=Caller(user_id="u-owner", tenant_id="t1", email="owner@acme.example.com", name="Olive"),
        admin=Caller(user_id="u-admin", tenant_id="t1", email="admin@acme.example.com", name="Adam"),
        member=Caller(user_id="u-member", tenant_id="t1", email="member@acme.example.com", name="Mia"),
        other=Caller(user_id="u-other", tenant_id="t2", email="owner@globex.example.com", name="Gus"),
        pipeline_id="p1",
        other_pipeline_id="p2",
        stages={
            "lead": "p1-lead",
            "proposal": "p1-proposal",
            "won": "p1-won",
            "lost": "p1-lost",
        },
    )
