"""REST API endpoints for clients and their tasks."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.pulsecrm.api.deps import get_caller, get_services
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.schemas.crm import ClientCreate, ClientRead, ClientUpdate, TaskRead
from src.pulsecrm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/clients", tags=["clients"])


@router.post("", response_model=ClientRead, status_code=status.HTTP_201_CREATED)
async def create_client(
    body: ClientCreate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> ClientRead:
    return await services.clients.create(body, caller)


@router.get("", response_model=list[ClientRead])
async def list_clients(
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[ClientRead]:
    return await services.clients.find_all(caller)


@router.get("/{client_id}", response_model=ClientRead)
async def get_client(
    client_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> ClientRead:
    return await services.clients.find_one(client_id, caller)


@router.get("/{client_id}/tasks", response_model=list[TaskRead])
async def list_client_tasks(
    client_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> list[TaskRead]:
    await services.clients.find_one(client_id, caller)
    return await services.tasks.find_all(caller, client_id=client_id)


@router.patch("/{client_id}", response_model=ClientRead)
async def update_client(
    client_id: str,
    body: ClientUpdate,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> ClientRead:
    return await services.clients.update(client_id, body, caller)


@router.delete("/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_client(
    client_id: str,
    caller: Caller = Depends(get_caller),
    services: ServiceContainer = Depends(get_services),
) -> None:
    """Delete a client along with its tasks and invoices."""
    await services.clients.remove(client_id, caller)
