"""Admin endpoints: workspace members and customer subscriptions.

All endpoints require the caller to be OWNER or ADMIN of their tenant.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.schemas.admin import (
    SubscriptionCreate,
    SubscriptionRead,
    SubscriptionUpdate,
    UserRead,
    UserRoleUpdate,
)
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.get("/users", response_model=list[UserRead])
async def list_users(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[UserRead]:
    return await services.admin.list_users(caller)


@router.patch("/users/{user_id}/role", response_model=UserRead)
async def update_user_role(
    user_id: str,
    body: UserRoleUpdate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> UserRead:
    """Change a member's role. The last OWNER cannot be demoted."""
    return await services.admin.update_user_role(user_id, body.role, caller)


# ── Subscriptions ────────────────────────────────────────────────────────────


@router.get("/subscriptions", response_model=list[SubscriptionRead])
async def list_subscriptions(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[SubscriptionRead]:
    return await services.admin.list_subscriptions(caller)


@router.post("/subscriptions", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    body: SubscriptionCreate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> SubscriptionRead:
    """Provision a customer workspace with its subscription."""
    return await services.admin.create_subscription(body, caller)


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionRead)
async def update_subscription(
    subscription_id: str,
    body: SubscriptionUpdate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> SubscriptionRead:
    return await services.admin.update_subscription(subscription_id, body, caller)
