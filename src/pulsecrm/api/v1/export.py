"""CSV export endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/export", tags=["export"])


def _csv_response(body: str, filename: str) -> Response:
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/clients")
async def export_clients(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> Response:
    return _csv_response(await services.exports.clients_csv(caller), "clients.csv")


@router.get("/invoices")
async def export_invoices(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> Response:
    return _csv_response(await services.exports.invoices_csv(caller), "invoices.csv")
