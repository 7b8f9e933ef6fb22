"""Tenant branding and CRM settings endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.schemas.tenant import (
    BrandingRead,
    BrandingUpdate,
    CrmSettingsRead,
    CrmSettingsUpdate,
)
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/tenant", tags=["tenant"])


@router.get("/branding", response_model=BrandingRead)
async def get_branding(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> BrandingRead:
    return await services.tenant_settings.get_branding(caller)


@router.patch("/branding", response_model=BrandingRead)
async def update_branding(
    body: BrandingUpdate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> BrandingRead:
    return await services.tenant_settings.update_branding(body, caller)


@router.get("/settings", response_model=CrmSettingsRead)
async def get_crm_settings(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> CrmSettingsRead:
    return await services.tenant_settings.get_crm_settings(caller)


@router.patch("/settings", response_model=CrmSettingsRead)
async def update_crm_settings(
    body: CrmSettingsUpdate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> CrmSettingsRead:
    return await services.tenant_settings.update_crm_settings(body, caller)
