"""Pydantic schemas for tenant branding and CRM settings."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.pulsecrm.schemas.admin import CrmMode
from src.pulsecrm.schemas.crm import SUPPORTED_CURRENCIES

HEX_COLOR_PATTERN = r"^#([0-9a-fA-F]{6}|[0-9a-fA-F]{3})$"
MAX_LOGO_LENGTH = 1_200_000


class BrandingRead(BaseModel):
    tenant_id: str
    name: str
    logo_data_url: str | None = None
    accent_color: str | None = None
    accent_color_2: str | None = None


class BrandingUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    logo_data_url: str | None = Field(default=None, max_length=MAX_LOGO_LENGTH)
    accent_color: str | None = Field(default=None, pattern=HEX_COLOR_PATTERN)
    accent_color_2: str | None = Field(default=None, pattern=HEX_COLOR_PATTERN)

    @field_validator("logo_data_url")
    @classmethod
    def _data_url(cls, v: str | None) -> str | None:
        if v and not v.startswith("data:image/"):
            raise ValueError("logo must be an image data URL")
        return v


class CrmSettingsRead(BaseModel):
    crm_mode: str | None = None
    crm_display_currency: str | None = None
    industry: str | None = None
    contract_setup: dict[str, Any] | None = None


class CrmSettingsUpdate(BaseModel):
    crm_mode: CrmMode | None = None
    crm_display_currency: str | None = None
    industry: str | None = Field(default=None, max_length=120)
    contract_setup: dict[str, Any] | None = None

    @field_validator("crm_display_currency")
    @classmethod
    def _supported_currency(cls, v: str | None) -> str | None:
        if v is None:
            return None
        code = v.strip().upper()
        if code not in SUPPORTED_CURRENCIES:
            raise ValueError(f"currency must be one of {', '.join(SUPPORTED_CURRENCIES)}")
        return code
