"""Public FX rate endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from src.pulsecrm.api.deps import get_services
from src.pulsecrm.forecast.fx import FxUnavailable
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/fx", tags=["fx"])


@router.get("/usd")
async def get_usd_rates(services: ServiceContainer = Depends(get_services)) -> dict[str, Any]:
    """Current USD rate snapshot (units of currency per 1 USD)."""
    try:
        snapshot = await services.fx.get_usd_rates()
    except FxUnavailable:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="FX rates unavailable",
        )
    return {
        "provider": snapshot.provider,
        "base": snapshot.base,
        "date": snapshot.date,
        "fetched_at": snapshot.fetched_at.isoformat(),
        "rates": snapshot.rates,
    }
