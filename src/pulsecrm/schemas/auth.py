"""Pydantic schemas for authentication and workspace bootstrap endpoints."""

from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    """Request schema for creating a workspace and its first user."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=8, max_length=128, description="User password")
    name: str | None = Field(default=None, max_length=200)
    tenant_name: str = Field(..., min_length=1, max_length=200, description="Workspace name")
    crm_mode: str | None = Field(default=None, pattern=r"^(B2B|B2C)$")


class LoginRequest(BaseModel):
    """Request schema for user login."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    tenant_id: str
    user_id: str


class MeResponse(BaseModel):
    """Current caller as seen by the API."""

    user_id: str
    tenant_id: str
    email: str | None = None
    name: str | None = None
    role: str


class BootstrapRequest(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    tenant_name: str | None = Field(default=None, max_length=200)


class BootstrapResponse(BaseModel):
    tenant_id: str
    user_id: str
    role: str
    default_pipeline_id: str | None = None
