"""End-to-end tests through the FastAPI app.

The lifespan is not run: the test services container and engine are set on
``app.state`` directly, and tokens are verified with a test secret.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from jose import jwt

from src.pulsecrm.core.capabilities import SchemaCaps
from src.pulsecrm.core.security import TokenVerifier
from src.pulsecrm.main import create_app

SECRET = "api-test-secret"


def _auth(user_id: str, tenant_id: str, email: str | None = None) -> dict[str, str]:
    token = jwt.encode(
        {
            "sub": user_id,
            "tenant_id": tenant_id,
            "email": email,
            "type": "access",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        },
        SECRET,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


OWNER = _auth("u-owner", "t1", "owner@acme.example.com")
MEMBER = _auth("u-member", "t1", "member@acme.example.com")
OTHER = _auth("u-other", "t2", "owner@globex.example.com")


@pytest_asyncio.fixture
async def api(services, engine, workspace):
    app = create_app()
    app.state.services = services
    app.state.engine = engine
    app.state.token_verifier = TokenVerifier(secret_key=SECRET)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


# ── Public endpoints ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(api):
    response = await api.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_readiness_reports_schema_caps(api):
    response = await api.get("/health/ready")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ready"
    assert body["checks"]["schema"]["has_owner_id"] is True


@pytest.mark.asyncio
async def test_fx_rates_are_public(api):
    response = await api.get("/api/v1/fx/usd")
    assert response.status_code == 200
    body = response.json()
    assert body["base"] == "USD"
    assert body["rates"]["EUR"] == 0.5
    assert body["rates"]["USD"] == 1.0


# ── Authentication ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_requests_without_valid_token_are_rejected(api):
    missing = await api.get("/api/v1/deals")
    assert missing.status_code == 401
    assert missing.json()["detail"] == "Not authenticated"

    forged = await api.get("/api/v1/deals", headers={"Authorization": "Bearer abc.def.ghi"})
    assert forged.status_code == 401


@pytest.mark.asyncio
async def test_me(api):
    response = await api.get("/api/v1/auth/me", headers=MEMBER)
    assert response.status_code == 200
    assert response.json() == {
        "user_id": "u-member",
        "tenant_id": "t1",
        "email": "member@acme.example.com",
        "name": None,
        "role": "MEMBER",
    }


# ── Deals ────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_deal_flow(api, workspace):
    created = await api.post(
        "/api/v1/deals",
        json={"title": "Website", "value": 1000, "currency": "EUR", "pipeline_id": "p1"},
        headers=OWNER,
    )
    assert created.status_code == 201
    deal = created.json()
    assert deal["stage"]["name"] == "Lead"

    moved = await api.post(
        f"/api/v1/deals/{deal['id']}/move-stage",
        json={"stage_id": workspace.stages["won"]},
        headers=OWNER,
    )
    assert moved.status_code == 200
    assert moved.json()["stage"]["status"] == "WON"

    forecast = await api.get("/api/v1/forecast", params={"pipeline_id": "p1"}, headers=OWNER)
    assert forecast.status_code == 200
    assert forecast.json()["weighted_total"] == 2000.0

    listed = await api.get("/api/v1/deals", params={"pipeline_id": "p1"}, headers=OWNER)
    assert [d["id"] for d in listed.json()] == [deal["id"]]

    # Invisible to a member who does not own it, and to another tenant
    assert (await api.get(f"/api/v1/deals/{deal['id']}", headers=MEMBER)).status_code == 404
    assert (await api.get(f"/api/v1/deals/{deal['id']}", headers=OTHER)).status_code == 404

    deleted = await api.delete(f"/api/v1/deals/{deal['id']}", headers=OWNER)
    assert deleted.status_code == 204
    assert (await api.get(f"/api/v1/deals/{deal['id']}", headers=OWNER)).status_code == 404


@pytest.mark.asyncio
async def test_pending_schema_is_reported_as_bad_request(api, services, catalog):
    catalog.caps = SchemaCaps(has_owner_id=True)
    services.probe.invalidate()

    response = await api.post(
        "/api/v1/deals",
        json={"title": "Deal", "pipeline_id": "p1", "product_ids": ["prod-1"]},
        headers=OWNER,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Database schema upgrade pending (products). Please retry shortly."


@pytest.mark.asyncio
async def test_proposal_upload_and_download(api):
    deal = (
        await api.post("/api/v1/deals", json={"title": "Deal", "pipeline_id": "p1"}, headers=OWNER)
    ).json()

    uploaded = await api.post(
        f"/api/v1/deals/{deal['id']}/proposal",
        files={"file": ("offer.pdf", b"%PDF-1.4 proposal", "application/pdf")},
        headers=OWNER,
    )
    assert uploaded.status_code == 200
    assert uploaded.json()["has_proposal"] is True

    downloaded = await api.get(f"/api/v1/deals/{deal['id']}/proposal", headers=OWNER)
    assert downloaded.status_code == 200
    assert downloaded.headers["content-type"] == "application/pdf"
    assert downloaded.content == b"%PDF-1.4 proposal"

    empty = await api.post(
        f"/api/v1/deals/{deal['id']}/proposal",
        files={"file": ("offer.pdf", b"", "application/pdf")},
        headers=OWNER,
    )
    assert empty.status_code == 400


# ── Admin & export ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_admin_endpoints_require_admin(api):
    assert (await api.get("/api/v1/admin/users", headers=MEMBER)).status_code == 403

    response = await api.patch("/api/v1/admin/users/u-owner/role", json={"role": "MEMBER"}, headers=OWNER)
    assert response.status_code == 403
    assert response.json()["detail"] == "Cannot remove the last OWNER"


@pytest.mark.asyncio
async def test_csv_export(api):
    await api.post("/api/v1/clients", json={"name": "Initech"}, headers=OWNER)

    response = await api.get("/api/v1/export/clients", headers=OWNER)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="clients.csv"' in response.headers["content-disposition"]
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("id,name,email")
    assert ",Initech," in lines[1]


@pytest.mark.asyncio
async def test_assistant_falls_back_without_provider(api):
    response = await api.post("/api/v1/assistant/sentiment", json={"text": "  thanks, perfect  "}, headers=OWNER)
    assert response.status_code == 200
    assert response.json()["sentiment"] == "POSITIVE"

    blank = await api.post("/api/v1/assistant/summary", json={"text": "   "}, headers=OWNER)
    assert blank.status_code == 422


# ── Observability ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_request_id_is_echoed_or_generated(api):
    echoed = await api.get("/health", headers={"X-Request-ID": "req-123"})
    assert echoed.headers["X-Request-ID"] == "req-123"

    generated = await api.get("/health")
    assert len(generated.headers["X-Request-ID"]) == 32


@pytest.mark.asyncio
async def test_metrics_endpoint_exposes_domain_counters(api, workspace):
    deal = (
        await api.post("/api/v1/deals", json={"title": "Deal", "pipeline_id": "p1"}, headers=OWNER)
    ).json()
    await api.post(
        f"/api/v1/deals/{deal['id']}/move-stage",
        json={"stage_id": workspace.stages["lost"]},
        headers=OWNER,
    )

    response = await api.get("/metrics")

    assert response.status_code == 200
    assert 'deal_stage_moves_total{to_status="LOST"}' in response.text
    assert "http_requests_total" in response.text
