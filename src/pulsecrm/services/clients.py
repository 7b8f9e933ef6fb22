"""Client records and their dependent tasks and invoices."""

from __future__ import annotations

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.capabilities import SchemaCapabilityProbe
from src.pulsecrm.core.errors import NotFound
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.models import Deal
from src.pulsecrm.models.crm import Client, Invoice, Task
from src.pulsecrm.schemas.crm import ClientCreate, ClientRead, ClientUpdate

logger = structlog.get_logger(__name__)


class ClientService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        probe: SchemaCapabilityProbe,
    ) -> None:
        self._session_factory = session_factory
        self._probe = probe

    async def create(self, data: ClientCreate, caller: Caller) -> ClientRead:
        async with self._session_factory() as session:
            async with session.begin():
                client = Client(tenant_id=caller.tenant_id, **data.model_dump())
                session.add(client)
            return ClientRead.model_validate(client)

    async def find_all(self, caller: Caller) -> list[ClientRead]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Client)
                .where(Client.tenant_id == caller.tenant_id)
                .order_by(Client.created_at.desc())
            )
            return [ClientRead.model_validate(c) for c in result.scalars().all()]

    async def find_one(self, client_id: str, caller: Caller) -> ClientRead:
        async with self._session_factory() as session:
            return ClientRead.model_validate(await self._get(session, client_id, caller))

    async def update(self, client_id: str, data: ClientUpdate, caller: Caller) -> ClientRead:
        async with self._session_factory() as session:
            async with session.begin():
                client = await self._get(session, client_id, caller)
                for key, value in data.model_dump(exclude_unset=True).items():
                    if key == "name" and value is None:
                        continue
                    setattr(client, key, value)
            return ClientRead.model_validate(client)

    async def remove(self, client_id: str, caller: Caller) -> None:
        """Delete a client with its tasks and invoices; deals keep their row."""
        caps = await self._probe.get_schema_caps()
        async with self._session_factory() as session:
            async with session.begin():
                client = await self._get(session, client_id, caller)
                await session.execute(
                    delete(Task).where(Task.client_id == client_id, Task.tenant_id == caller.tenant_id)
                )
                await session.execute(
                    delete(Invoice).where(Invoice.client_id == client_id, Invoice.tenant_id == caller.tenant_id)
                )
                if caps.has_client_id:
                    await session.execute(
                        update(Deal)
                        .where(Deal.client_id == client_id, Deal.tenant_id == caller.tenant_id)
                        .values(client_id=None)
                    )
                await session.delete(client)
        logger.info("clients.removed", tenant_id=caller.tenant_id, client_id=client_id)

    async def _get(self, session: AsyncSession, client_id: str, caller: Caller) -> Client:
        client = await session.scalar(
            select(Client).where(Client.id == client_id, Client.tenant_id == caller.tenant_id)
        )
        if client is None:
            raise NotFound("Client not found")
        return client
