"""Stage CRUD and ordering within a pipeline."""

from __future__ import annotations

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.errors import BadRequest, NotFound
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.models import Deal, Pipeline, Stage
from src.pulsecrm.deals.schemas import (
    StageCreate,
    StageOrderItem,
    StageRead,
    StageStatus,
    StageUpdate,
)

logger = structlog.get_logger(__name__)

NEW_SALES_PIPELINE = "New Sales"
CONTRACT_STAGE = ("Contract", 0.95)


class StageService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, data: StageCreate, caller: Caller) -> StageRead:
        """Create a stage; without an explicit position it goes last."""
        async with self._session_factory() as session:
            async with session.begin():
                await self._ensure_pipeline(session, data.pipeline_id, caller)
                position = data.position
                if position is None:
                    position = await self._next_position(session, data.pipeline_id, caller)
                stage = Stage(
                    tenant_id=caller.tenant_id,
                    pipeline_id=data.pipeline_id,
                    name=data.name.strip(),
                    position=position,
                    probability=data.probability,
                    status=data.status.value,
                )
                session.add(stage)
            return StageRead.model_validate(stage)

    async def find_all(self, pipeline_id: str, caller: Caller) -> list[StageRead]:
        async with self._session_factory() as session:
            name = await self._ensure_pipeline(session, pipeline_id, caller)
            if name == NEW_SALES_PIPELINE:
                await ensure_contract_stage(session, caller.tenant_id, pipeline_id)
            result = await session.execute(
                select(Stage)
                .where(Stage.pipeline_id == pipeline_id, Stage.tenant_id == caller.tenant_id)
                .order_by(Stage.position.asc())
            )
            return [StageRead.model_validate(s) for s in result.scalars().all()]

    async def find_one(self, stage_id: str, caller: Caller) -> StageRead:
        async with self._session_factory() as session:
            return StageRead.model_validate(await self._get(session, stage_id, caller))

    async def update(self, stage_id: str, data: StageUpdate, caller: Caller) -> StageRead:
        async with self._session_factory() as session:
            async with session.begin():
                stage = await self._get(session, stage_id, caller)
                changes = data.model_dump(exclude_unset=True, exclude_none=True)
                for key, value in changes.items():
                    setattr(stage, key, value.value if isinstance(value, StageStatus) else value)
            return StageRead.model_validate(stage)

    async def reorder(self, items: list[StageOrderItem], caller: Caller) -> list[StageRead]:
        """Apply new positions atomically.

        Raises:
            NotFound: Any id is unknown or belongs to another tenant.
        """
        ids = {item.id for item in items}
        async with self._session_factory() as session:
            async with session.begin():
                found = (
                    await session.execute(
                        select(Stage.id).where(Stage.id.in_(ids), Stage.tenant_id == caller.tenant_id)
                    )
                ).scalars().all()
                if len(set(found)) != len(ids):
                    raise NotFound("One or more stages not found")
                for item in items:
                    await session.execute(
                        update(Stage)
                        .where(Stage.id == item.id, Stage.tenant_id == caller.tenant_id)
                        .values(position=item.position)
                    )
            result = await session.execute(
                select(Stage)
                .where(Stage.id.in_(ids), Stage.tenant_id == caller.tenant_id)
                .order_by(Stage.position.asc())
            )
            return [StageRead.model_validate(s) for s in result.scalars().all()]

    async def remove(self, stage_id: str, caller: Caller) -> None:
        """Delete an empty stage.

        Raises:
            BadRequest: Deals still sit in the stage.
        """
        async with self._session_factory() as session:
            async with session.begin():
                stage = await self._get(session, stage_id, caller)
                deal_count = await session.scalar(
                    select(func.count())
                    .select_from(Deal)
                    .where(Deal.stage_id == stage_id, Deal.tenant_id == caller.tenant_id)
                )
                if deal_count:
                    raise BadRequest("Stage has deals. Move deals before deleting.")
                await session.delete(stage)
        logger.info("stages.removed", tenant_id=caller.tenant_id, stage_id=stage_id)

    # ── Internals ───────────────────────────────────────────────────────────

    async def _get(self, session: AsyncSession, stage_id: str, caller: Caller) -> Stage:
        stage = await session.scalar(
            select(Stage).where(Stage.id == stage_id, Stage.tenant_id == caller.tenant_id)
        )
        if stage is None:
            raise NotFound("Stage not found")
        return stage

    async def _ensure_pipeline(self, session: AsyncSession, pipeline_id: str, caller: Caller) -> str:
        name = await session.scalar(
            select(Pipeline.name).where(
                Pipeline.id == pipeline_id,
                Pipeline.tenant_id == caller.tenant_id,
            )
        )
        if name is None:
            raise NotFound("Pipeline not found")
        return name

    async def _next_position(self, session: AsyncSession, pipeline_id: str, caller: Caller) -> int:
        current = await session.scalar(
            select(func.max(Stage.position)).where(
                Stage.pipeline_id == pipeline_id,
                Stage.tenant_id == caller.tenant_id,
            )
        )
        return 0 if current is None else current + 1


async def ensure_contract_stage(
    session: AsyncSession,
    tenant_id: str,
    pipeline_id: str,
    commit: bool = True,
) -> None:
    """Insert the Contract stage right before Won if a seeded pipeline lacks it."""
    stages = (
        await session.execute(
            select(Stage)
            .where(Stage.pipeline_id == pipeline_id, Stage.tenant_id == tenant_id)
            .order_by(Stage.position.asc())
        )
    ).scalars().all()
    contract_name, probability = CONTRACT_STAGE
    if any(s.name.lower() == contract_name.lower() for s in stages):
        return
    won = next((s for s in stages if s.name.lower() == "won"), None)
    if won is None:
        return

    insert_at = won.position
    for stage in stages:
        if stage.position >= insert_at:
            stage.position += 1
    session.add(
        Stage(
            tenant_id=tenant_id,
            pipeline_id=pipeline_id,
            name=contract_name,
            position=insert_at,
            probability=probability,
            status=StageStatus.OPEN.value,
        )
    )
    if commit:
        await session.commit()
    else:
        await session.flush()
    logger.info("stages.contract_stage_restored", tenant_id=tenant_id, pipeline_id=pipeline_id)
