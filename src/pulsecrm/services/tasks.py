"""Tasks logged against clients."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.errors import NotFound
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.models.crm import Client, Task
from src.pulsecrm.schemas.crm import TaskCreate, TaskRead, TaskUpdate

_NON_NULLABLE_FIELDS = ("title", "status")


class TaskService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, data: TaskCreate, caller: Caller) -> TaskRead:
        async with self._session_factory() as session:
            async with session.begin():
                await self._ensure_client(session, data.client_id, caller)
                values = data.model_dump()
                values["status"] = data.status.value
                if data.currency:
                    values["currency"] = data.currency.upper()
                task = Task(tenant_id=caller.tenant_id, **values)
                session.add(task)
            return TaskRead.model_validate(task)

    async def find_all(self, caller: Caller, client_id: str | None = None) -> list[TaskRead]:
        stmt = select(Task).where(Task.tenant_id == caller.tenant_id)
        if client_id:
            stmt = stmt.where(Task.client_id == client_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt.order_by(Task.created_at.desc()))
            return [TaskRead.model_validate(t) for t in result.scalars().all()]

    async def find_one(self, task_id: str, caller: Caller) -> TaskRead:
        async with self._session_factory() as session:
            return TaskRead.model_validate(await self._get(session, task_id, caller))

    async def update(self, task_id: str, data: TaskUpdate, caller: Caller) -> TaskRead:
        async with self._session_factory() as session:
            async with session.begin():
                task = await self._get(session, task_id, caller)
                for key, value in data.model_dump(exclude_unset=True).items():
                    if key in _NON_NULLABLE_FIELDS and value is None:
                        continue
                    if key == "status":
                        value = value.value
                    elif key == "currency" and value:
                        value = value.upper()
                    setattr(task, key, value)
            return TaskRead.model_validate(task)

    async def remove(self, task_id: str, caller: Caller) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.delete(await self._get(session, task_id, caller))

    async def _get(self, session: AsyncSession, task_id: str, caller: Caller) -> Task:
        task = await session.scalar(
            select(Task).where(Task.id == task_id, Task.tenant_id == caller.tenant_id)
        )
        if task is None:
            raise NotFound("Task not found")
        return task

    async def _ensure_client(self, session: AsyncSession, client_id: str, caller: Caller) -> None:
        found = await session.scalar(
            select(Client.id).where(Client.id == client_id, Client.tenant_id == caller.tenant_id)
        )
        if found is None:
            raise NotFound("Client not found")
