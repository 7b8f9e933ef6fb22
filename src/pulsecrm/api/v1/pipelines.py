"""REST API endpoints for pipelines and their stages."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.schemas import (
    PipelineCreate,
    PipelineRead,
    PipelineUpdate,
    StageRead,
)
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/pipelines", tags=["pipelines"])


@router.post("", response_model=PipelineRead, status_code=status.HTTP_201_CREATED)
async def create_pipeline(
    body: PipelineCreate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> PipelineRead:
    return await services.pipelines.create(body, caller)


@router.get("", response_model=list[PipelineRead])
async def list_pipelines(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[PipelineRead]:
    """List pipelines, default first."""
    return await services.pipelines.find_all(caller)


@router.get("/{pipeline_id}", response_model=PipelineRead)
async def get_pipeline(
    pipeline_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> PipelineRead:
    return await services.pipelines.find_one(pipeline_id, caller)


@router.get("/{pipeline_id}/stages", response_model=list[StageRead])
async def list_pipeline_stages(
    pipeline_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[StageRead]:
    return await services.stages.find_all(pipeline_id, caller)


@router.patch("/{pipeline_id}", response_model=PipelineRead)
async def update_pipeline(
    pipeline_id: str,
    body: PipelineUpdate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> PipelineRead:
    return await services.pipelines.update(pipeline_id, body, caller)


@router.delete("/{pipeline_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_pipeline(
    pipeline_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> None:
    """Delete a pipeline together with its stages and deals."""
    await services.pipelines.remove(pipeline_id, caller)
