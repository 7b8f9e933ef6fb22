"""REST API endpoints for the product catalog."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.schemas.crm import ProductCreate, ProductRead, ProductUpdate
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/products", tags=["products"])


@router.get("", response_model=list[ProductRead])
async def list_products(
    include_inactive: bool = Query(default=True),
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[ProductRead]:
    return await services.products.find_all(caller, include_inactive=include_inactive)


@router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
async def create_product(
    body: ProductCreate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> ProductRead:
    """Create a product (OWNER/ADMIN only)."""
    return await services.products.create(body, caller)


@router.patch("/{product_id}", response_model=ProductRead)
async def update_product(
    product_id: str,
    body: ProductUpdate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> ProductRead:
    return await services.products.update(product_id, body, caller)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> None:
    await services.products.remove(product_id, caller)
