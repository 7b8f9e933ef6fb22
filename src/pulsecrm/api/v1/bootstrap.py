"""Workspace bootstrap endpoint, called right after sign-in."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.schemas.auth import BootstrapRequest, BootstrapResponse
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/bootstrap", tags=["bootstrap"])


@router.post("", response_model=BootstrapResponse)
async def bootstrap(
    body: BootstrapRequest | None = None,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> BootstrapResponse:
    """Upsert the caller's tenant and user, then seed default pipelines."""
    body = body or BootstrapRequest()
    result = await services.bootstrap.ensure(caller, name=body.name, tenant_name=body.tenant_name)
    return BootstrapResponse(**result)
