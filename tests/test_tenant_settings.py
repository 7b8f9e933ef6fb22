"""Tests for tenant branding and CRM settings, including lagging schemas."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.pulsecrm.core.capabilities import SchemaCaps
from src.pulsecrm.core.errors import Forbidden, SchemaUpgradePending
from src.pulsecrm.models.tenant import Tenant
from src.pulsecrm.schemas.admin import CrmMode
from src.pulsecrm.schemas.tenant import BrandingUpdate, CrmSettingsUpdate

LOGO = "data:image/png;base64,iVBORw0KGgo="


def _lag(services, catalog, **caps) -> None:
    catalog.caps = SchemaCaps(**caps)
    services.probe.invalidate()


# ── Branding ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_branding_roundtrip(services, workspace):
    initial = await services.tenant_settings.get_branding(workspace.member)
    assert initial.name == "Acme"
    assert initial.accent_color is None

    updated = await services.tenant_settings.update_branding(
        BrandingUpdate(name="Acme Inc", logo_data_url=LOGO, accent_color="#112233"),
        workspace.admin,
    )
    assert updated.name == "Acme Inc"
    assert updated.logo_data_url == LOGO
    assert updated.accent_color == "#112233"

    # Other tenants are unaffected
    assert (await services.tenant_settings.get_branding(workspace.other)).name == "Globex"


@pytest.mark.asyncio
async def test_branding_requires_admin(services, workspace):
    with pytest.raises(Forbidden):
        await services.tenant_settings.update_branding(BrandingUpdate(name="Mine"), workspace.member)


def test_branding_validation():
    with pytest.raises(ValidationError):
        BrandingUpdate(logo_data_url="https://cdn.example.com/logo.png")
    with pytest.raises(ValidationError):
        BrandingUpdate(accent_color="red")
    assert BrandingUpdate(accent_color="#abc").accent_color == "#abc"


@pytest.mark.asyncio
async def test_branding_with_lagging_schema(services, workspace, catalog):
    _lag(services, catalog)

    renamed = await services.tenant_settings.update_branding(BrandingUpdate(name="Renamed"), workspace.owner)
    assert renamed.name == "Renamed"
    assert renamed.logo_data_url is None

    with pytest.raises(SchemaUpgradePending, match="tenant branding"):
        await services.tenant_settings.update_branding(BrandingUpdate(accent_color="#000000"), workspace.owner)


# ── CRM settings ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_crm_settings_roundtrip(services, workspace):
    initial = await services.tenant_settings.get_crm_settings(workspace.owner)
    assert (initial.crm_mode, initial.crm_display_currency) == ("B2B", "USD")

    saved = await services.tenant_settings.update_crm_settings(
        CrmSettingsUpdate(
            crm_mode=CrmMode.B2C,
            crm_display_currency="eur",
            industry="Retail",
            contract_setup={"template": "standard", "signers": 2},
        ),
        workspace.owner,
    )

    assert saved.crm_mode == "B2C"
    assert saved.crm_display_currency == "EUR"
    assert saved.contract_setup == {"template": "standard", "signers": 2}


@pytest.mark.asyncio
async def test_crm_settings_null_mode_and_currency_keep_stored_values(services, workspace):
    await services.tenant_settings.update_crm_settings(
        CrmSettingsUpdate(crm_mode=CrmMode.B2C, crm_display_currency="MXN"), workspace.owner
    )

    saved = await services.tenant_settings.update_crm_settings(
        CrmSettingsUpdate(crm_mode=None, crm_display_currency=None, industry="Retail"),
        workspace.owner,
    )

    assert saved.crm_mode == "B2C"
    assert saved.crm_display_currency == "MXN"
    assert saved.industry == "Retail"


def test_crm_mode_and_currency_columns_are_not_nullable():
    columns = Tenant.__table__.c
    assert columns.crm_mode.nullable is False
    assert columns.crm_display_currency.nullable is False
    assert columns.industry.nullable is True


def test_crm_settings_reject_unsupported_currency():
    with pytest.raises(ValidationError):
        CrmSettingsUpdate(crm_display_currency="GBP")


@pytest.mark.asyncio
async def test_crm_settings_with_lagging_schema(services, workspace, catalog):
    _lag(services, catalog, has_tenant_branding=True)

    empty = await services.tenant_settings.get_crm_settings(workspace.owner)
    assert empty.model_dump() == {
        "crm_mode": None,
        "crm_display_currency": None,
        "industry": None,
        "contract_setup": None,
    }
    with pytest.raises(SchemaUpgradePending, match="tenant CRM settings"):
        await services.tenant_settings.update_crm_settings(CrmSettingsUpdate(industry="Retail"), workspace.owner)
