"""Tenant branding and CRM settings.

Both groups live in optional ``tenants`` columns. Reads return ``None`` for
fields whose columns are missing; writes refuse with SchemaUpgradePending.
"""

from __future__ import annotations

import json

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.capabilities import SchemaCapabilityProbe
from src.pulsecrm.core.errors import NotFound, SchemaUpgradePending
from src.pulsecrm.core.roles import RoleResolver
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.models.tenant import Tenant
from src.pulsecrm.schemas.tenant import (
    BrandingRead,
    BrandingUpdate,
    CrmSettingsRead,
    CrmSettingsUpdate,
)

logger = structlog.get_logger(__name__)

BRANDING_COLUMNS = (Tenant.logo_data_url, Tenant.accent_color, Tenant.accent_color_2)
CRM_SETTINGS_COLUMNS = (
    Tenant.crm_mode,
    Tenant.crm_display_currency,
    Tenant.industry,
    Tenant.contract_setup,
)


class TenantSettingsService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        probe: SchemaCapabilityProbe,
        roles: RoleResolver,
    ) -> None:
        self._session_factory = session_factory
        self._probe = probe
        self._roles = roles

    # ── Branding ────────────────────────────────────────────────────────────

    async def get_branding(self, caller: Caller) -> BrandingRead:
        caps = await self._probe.get_schema_caps()
        columns = [Tenant.id, Tenant.name]
        if caps.has_tenant_branding:
            columns.extend(BRANDING_COLUMNS)
        async with self._session_factory() as session:
            row = (
                await session.execute(select(*columns).where(Tenant.id == caller.tenant_id))
            ).mappings().first()
        if row is None:
            raise NotFound("Tenant not found")
        return BrandingRead(tenant_id=row["id"], **{k: v for k, v in row.items() if k != "id"})

    async def update_branding(self, data: BrandingUpdate, caller: Caller) -> BrandingRead:
        await self._roles.ensure_admin(caller)
        values = data.model_dump(exclude_unset=True)
        if "name" in values and values["name"] is None:
            values.pop("name")
        if set(values) - {"name"}:
            caps = await self._probe.get_schema_caps()
            if not caps.has_tenant_branding:
                raise SchemaUpgradePending("tenant branding")
        if values:
            await self._update(caller, values)
            logger.info("tenant.branding_updated", tenant_id=caller.tenant_id, fields=sorted(values))
        return await self.get_branding(caller)

    # ── CRM settings ────────────────────────────────────────────────────────

    async def get_crm_settings(self, caller: Caller) -> CrmSettingsRead:
        caps = await self._probe.get_schema_caps()
        if not caps.has_tenant_crm_settings:
            return CrmSettingsRead()
        async with self._session_factory() as session:
            row = (
                await session.execute(select(*CRM_SETTINGS_COLUMNS).where(Tenant.id == caller.tenant_id))
            ).mappings().first()
        if row is None:
            raise NotFound("Tenant not found")
        contract_setup = json.loads(row["contract_setup"]) if row["contract_setup"] else None
        return CrmSettingsRead(
            crm_mode=row["crm_mode"],
            crm_display_currency=row["crm_display_currency"],
            industry=row["industry"],
            contract_setup=contract_setup,
        )

    async def update_crm_settings(self, data: CrmSettingsUpdate, caller: Caller) -> CrmSettingsRead:
        await self._roles.ensure_admin(caller)
        caps = await self._probe.get_schema_caps()
        if not caps.has_tenant_crm_settings:
            raise SchemaUpgradePending("tenant CRM settings")

        values = data.model_dump(exclude_unset=True)
        # NOT NULL columns; an explicit null leaves the stored value alone
        for key in ("crm_mode", "crm_display_currency"):
            if key in values and values[key] is None:
                values.pop(key)
        if values.get("crm_mode") is not None:
            values["crm_mode"] = data.crm_mode.value
        if "contract_setup" in values and values["contract_setup"] is not None:
            values["contract_setup"] = json.dumps(values["contract_setup"])
        if values:
            await self._update(caller, values)
            logger.info("tenant.crm_settings_updated", tenant_id=caller.tenant_id, fields=sorted(values))
        return await self.get_crm_settings(caller)

    async def _update(self, caller: Caller, values: dict) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Tenant).where(Tenant.id == caller.tenant_id).values(**values)
                )
                if result.rowcount == 0:
                    raise NotFound("Tenant not found")
