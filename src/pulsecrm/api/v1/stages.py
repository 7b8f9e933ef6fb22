"""REST API endpoints for stages."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.schemas import StageCreate, StageRead, StageReorderRequest, StageUpdate
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/stages", tags=["stages"])


@router.post("", response_model=StageRead, status_code=status.HTTP_201_CREATED)
async def create_stage(
    body: StageCreate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> StageRead:
    return await services.stages.create(body, caller)


@router.post("/reorder", response_model=list[StageRead])
async def reorder_stages(
    body: StageReorderRequest,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[StageRead]:
    """Apply a batch of position changes in one transaction."""
    return await services.stages.reorder(body.items, caller)


@router.get("/{stage_id}", response_model=StageRead)
async def get_stage(
    stage_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> StageRead:
    return await services.stages.find_one(stage_id, caller)


@router.patch("/{stage_id}", response_model=StageRead)
async def update_stage(
    stage_id: str,
    body: StageUpdate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> StageRead:
    return await services.stages.update(stage_id, body, caller)


@router.delete("/{stage_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_stage(
    stage_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> None:
    await services.stages.remove(stage_id, caller)
