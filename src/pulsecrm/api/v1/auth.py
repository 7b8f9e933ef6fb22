"""Authentication API endpoints.

Provides registration, login, and current caller info. Register and login
are public; ``/me`` requires a valid bearer token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.schemas.auth import LoginRequest, MeResponse, RegisterRequest, TokenResponse
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    services: ServiceContainer = Depends(get_services),
) -> TokenResponse:
    """Create a workspace, its OWNER, and the default pipelines."""
    return await services.accounts.register(body)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    services: ServiceContainer = Depends(get_services),
) -> TokenResponse:
    return await services.accounts.login(body)


@router.get("/me", response_model=MeResponse)
async def get_me(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> MeResponse:
    """Return the caller identity with their current role."""
    return await services.accounts.me(caller)
