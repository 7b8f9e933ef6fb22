"""REST API endpoints for tasks."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.schemas.crm import TaskCreate, TaskRead, TaskUpdate
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task(
    body: TaskCreate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> TaskRead:
    return await services.tasks.create(body, caller)


@router.get("", response_model=list[TaskRead])
async def list_tasks(
    client_id: str | None = Query(default=None),
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[TaskRead]:
    return await services.tasks.find_all(caller, client_id=client_id)


@router.get("/{task_id}", response_model=TaskRead)
async def get_task(
    task_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> TaskRead:
    return await services.tasks.find_one(task_id, caller)


@router.patch("/{task_id}", response_model=TaskRead)
async def update_task(
    task_id: str,
    body: TaskUpdate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> TaskRead:
    return await services.tasks.update(task_id, body, caller)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> None:
    await services.tasks.remove(task_id, caller)
