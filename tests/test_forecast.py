"""Tests for the weighted pipeline forecast and the dashboard summary."""

from __future__ import annotations

import httpx
import pytest

from src.pulsecrm.core.errors import NotFound
from src.pulsecrm.deals.schemas import DealCreate, PipelineCreate
from src.pulsecrm.forecast.fx import FxService
from src.pulsecrm.forecast.service import stage_weight


async def _deal(services, caller, title, value, currency, stage_id):
    return await services.deals.create(
        DealCreate(title=title, value=value, currency=currency, pipeline_id="p1", stage_id=stage_id),
        caller,
    )


def _broken_fx() -> FxService:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    return FxService("https://fx.test/latest", max_attempts=1, transport=httpx.MockTransport(handler))


def _garbled_fx() -> FxService:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["EUR", None])

    return FxService("https://fx.test/latest", max_attempts=1, transport=httpx.MockTransport(handler))


# ── Weights ──────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "status,probability,expected",
    [
        ("WON", 0.2, 1.0),
        ("LOST", 0.9, 0.0),
        ("OPEN", 0.35, 0.35),
        ("OPEN", None, 0.0),
    ],
)
def test_stage_weight(status, probability, expected):
    assert stage_weight(status, probability) == expected


# ── Forecast ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_forecast_weights_and_converts(services, workspace):
    stages = workspace.stages
    await _deal(services, workspace.owner, "USD lead", 1000, "USD", stages["lead"])
    await _deal(services, workspace.owner, "EUR proposal", 500, "EUR", stages["proposal"])
    await _deal(services, workspace.owner, "MXN won", 2000, "MXN", stages["won"])
    await _deal(services, workspace.owner, "Lost", 700, "USD", stages["lost"])

    forecast = await services.forecast.get_forecast(workspace.owner)

    assert forecast["pipeline"]["id"] == "p1"
    assert forecast["currency"] == "USD"
    assert forecast["converted"] is True
    assert forecast["fx_date"] == "2026-10-16"
    # 1000 + 500/0.5 + 2000/20 + 700
    assert forecast["total"] == 2800.0
    # 1000*0.1 + 1000*0.5 + 100*1 + 700*0
    assert forecast["weighted_total"] == 700.0
    assert forecast["excluded_count"] == 0

    by_name = {row["stage_name"]: row for row in forecast["by_stage"]}
    assert [row["stage_name"] for row in forecast["by_stage"]] == ["Lead", "Proposal", "Won", "Lost"]
    assert by_name["Won"]["probability"] == 1.0
    assert by_name["Lost"]["weighted_total"] == 0.0
    assert by_name["Proposal"] == {
        "stage_id": stages["proposal"],
        "stage_name": "Proposal",
        "status": "OPEN",
        "probability": 0.5,
        "total": 1000.0,
        "weighted_total": 500.0,
        "count": 1,
    }


@pytest.mark.asyncio
async def test_unconvertible_currency_is_excluded(services, workspace):
    await _deal(services, workspace.owner, "Yen", 10_000, "JPY", workspace.stages["lead"])
    await _deal(services, workspace.owner, "Dollars", 100, "USD", workspace.stages["lead"])

    forecast = await services.forecast.get_forecast(workspace.owner)

    assert forecast["total"] == 100.0
    assert forecast["excluded_count"] == 1


@pytest.mark.asyncio
async def test_forecast_uses_face_values_when_fx_is_down(services, workspace):
    await _deal(services, workspace.owner, "Euros", 500, "EUR", workspace.stages["won"])
    services.forecast._fx = _broken_fx()

    forecast = await services.forecast.get_forecast(workspace.owner)

    assert forecast["converted"] is False
    assert forecast["fx_date"] is None
    assert forecast["total"] == 500.0
    assert forecast["weighted_total"] == 500.0


@pytest.mark.asyncio
async def test_forecast_uses_face_values_when_fx_payload_is_garbled(services, workspace):
    await _deal(services, workspace.owner, "Euros", 500, "EUR", workspace.stages["won"])
    services.forecast._fx = _garbled_fx()

    forecast = await services.forecast.get_forecast(workspace.owner)

    assert forecast["converted"] is False
    assert forecast["total"] == 500.0


@pytest.mark.asyncio
async def test_member_forecast_counts_only_own_deals(services, workspace):
    await _deal(services, workspace.owner, "Owner's", 1000, "USD", workspace.stages["won"])
    await _deal(services, workspace.member, "Member's", 10, "USD", workspace.stages["won"])

    member = await services.forecast.get_forecast(workspace.member)
    owner = await services.forecast.get_forecast(workspace.owner)

    assert member["total"] == 10.0
    assert owner["total"] == 1010.0


@pytest.mark.asyncio
async def test_forecast_pipeline_resolution(services, workspace):
    with pytest.raises(NotFound, match="Pipeline not found"):
        await services.forecast.get_forecast(workspace.owner, pipeline_id="p2")

    empty = await services.pipelines.create(PipelineCreate(name="Empty", is_default=True), workspace.owner)
    forecast = await services.forecast.get_forecast(workspace.owner)
    assert forecast["pipeline"]["id"] == empty.id
    assert forecast["by_stage"] == []
    assert forecast["total"] == 0.0


@pytest.mark.asyncio
async def test_forecast_without_pipelines_is_empty(services, workspace):
    await services.pipelines.remove("p1", workspace.owner)
    forecast = await services.forecast.get_forecast(workspace.owner)
    assert forecast["pipeline"] is None
    assert forecast["by_stage"] == []


# ── Dashboard ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_dashboard_open_value(services, workspace):
    await _deal(services, workspace.owner, "Open EUR", 500, "EUR", workspace.stages["proposal"])
    await _deal(services, workspace.owner, "Open JPY", 300, "JPY", workspace.stages["lead"])
    await _deal(services, workspace.owner, "Won", 9999, "USD", workspace.stages["won"])

    summary = await services.dashboard.get_summary(workspace.owner)

    assert summary["deals"]["count"] == 3
    # EUR converted, JPY kept at face value, WON excluded
    assert summary["deals"]["open_value"] == 1300.0
    assert summary["deals"]["converted"] is True
    assert summary["clients"] == 0
    assert summary["invoices"] == {"count": 0, "total": 0.0}
