"""Pydantic schemas for workspace administration and subscriptions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from src.pulsecrm.core.roles import Role

MAX_SEATS = 30


class SubscriptionPlan(str, Enum):
    TRIAL = "TRIAL"
    PULSE_BASIC = "PULSE_BASIC"
    PULSE_STANDARD = "PULSE_STANDARD"
    PULSE_ADVANCED = "PULSE_ADVANCED"
    PULSE_ADVANCED_PLUS = "PULSE_ADVANCED_PLUS"
    PULSE_TEAM = "PULSE_TEAM"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


class CrmMode(str, Enum):
    B2B = "B2B"
    B2C = "B2C"


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str | None = None
    role: str
    created_at: datetime | None = None


class UserRoleUpdate(BaseModel):
    role: Role


class SubscriptionCreate(BaseModel):
    customer_name: str = Field(max_length=200)
    plan: SubscriptionPlan = SubscriptionPlan.TRIAL
    seats: int = Field(default=1, ge=1, le=MAX_SEATS)
    trial_ends_at: datetime | None = None
    contact_first_name: str | None = Field(default=None, max_length=120)
    contact_last_name: str | None = Field(default=None, max_length=120)
    contact_email: EmailStr | None = None
    contact_phone: str | None = Field(default=None, max_length=64)
    crm_mode: CrmMode | None = None
    industry: str | None = Field(default=None, max_length=120)


class SubscriptionUpdate(BaseModel):
    status: SubscriptionStatus | None = None
    plan: SubscriptionPlan | None = None
    seats: int | None = Field(default=None, ge=1, le=MAX_SEATS)
    trial_ends_at: datetime | None = None
    contact_first_name: str | None = Field(default=None, max_length=120)
    contact_last_name: str | None = Field(default=None, max_length=120)
    contact_email: EmailStr | None = None
    contact_phone: str | None = Field(default=None, max_length=64)


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_tenant_id: str
    customer_name: str
    status: str
    plan: str
    seats: int
    trial_ends_at: datetime | None = None
    contact_first_name: str | None = None
    contact_last_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    crm_mode: str | None = None
    industry: str | None = None
    created_at: datetime | None = None
