"""Pydantic schemas for clients, tasks, invoices, and products."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

SUPPORTED_CURRENCIES = ("USD", "EUR", "MXN", "CAD")


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


# ── Clients ──────────────────────────────────────────────────────────────────


class ClientCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=64)
    company: str | None = Field(default=None, max_length=200)
    first_name: str | None = Field(default=None, max_length=120)
    function: str | None = Field(default=None, max_length=120)
    company_sector: str | None = Field(default=None, max_length=120)
    notes: str | None = None


class ClientUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=64)
    company: str | None = Field(default=None, max_length=200)
    first_name: str | None = Field(default=None, max_length=120)
    function: str | None = Field(default=None, max_length=120)
    company_sector: str | None = Field(default=None, max_length=120)
    notes: str | None = None


class ClientRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    first_name: str | None = None
    function: str | None = None
    company_sector: str | None = None
    notes: str | None = None
    created_at: datetime | None = None


# ── Tasks ────────────────────────────────────────────────────────────────────


class TaskCreate(BaseModel):
    client_id: str
    title: str = Field(min_length=1, max_length=300)
    status: TaskStatus = TaskStatus.PENDING
    due_date: datetime | None = None
    time_spent_hours: float | None = Field(default=None, ge=0)
    amount: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class TaskUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=300)
    status: TaskStatus | None = None
    due_date: datetime | None = None
    time_spent_hours: float | None = Field(default=None, ge=0)
    amount: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    title: str
    status: TaskStatus
    due_date: datetime | None = None
    time_spent_hours: float | None = None
    amount: float | None = None
    currency: str | None = None
    created_at: datetime | None = None


# ── Invoices ─────────────────────────────────────────────────────────────────


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str | None = None
    original_filename: str
    status: str
    amount: float | None = None
    currency: str | None = None
    issued_date: datetime | None = None
    due_date: datetime | None = None
    created_at: datetime | None = None


# ── Products ─────────────────────────────────────────────────────────────────


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    price: float = Field(ge=0)
    currency: str = "USD"
    is_active: bool = True

    @field_validator("currency")
    @classmethod
    def _supported_currency(cls, v: str) -> str:
        code = v.strip().upper()
        if code not in SUPPORTED_CURRENCIES:
            raise ValueError(f"currency must be one of {', '.join(SUPPORTED_CURRENCIES)}")
        return code


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    price: float | None = Field(default=None, ge=0)
    currency: str | None = None
    is_active: bool | None = None

    @field_validator("currency")
    @classmethod
    def _supported_currency(cls, v: str | None) -> str | None:
        if v is None:
            return None
        code = v.strip().upper()
        if code not in SUPPORTED_CURRENCIES:
            raise ValueError(f"currency must be one of {', '.join(SUPPORTED_CURRENCIES)}")
        return code


class ProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    price: float
    currency: str
    is_active: bool
    created_at: datetime | None = None
