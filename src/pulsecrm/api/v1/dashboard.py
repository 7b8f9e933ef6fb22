"""Dashboard and forecast endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1", tags=["dashboard"])


@router.get("/dashboard")
async def get_dashboard(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, Any]:
    return await services.dashboard.get_summary(caller)


@router.get("/forecast")
async def get_forecast(
    pipeline_id: str | None = Query(default=None),
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, Any]:
    """Per-stage totals and probability-weighted totals in USD.

    Uses the default pipeline (or the oldest one) when no pipeline_id is given.
    """
    return await services.forecast.get_forecast(caller, pipeline_id=pipeline_id)
