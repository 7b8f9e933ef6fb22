"""Pipeline CRUD. At most one pipeline per tenant is the default."""

from __future__ import annotations

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.capabilities import SchemaCapabilityProbe
from src.pulsecrm.core.errors import NotFound
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.models import Deal, DealItem, DealStageHistory, Pipeline, Stage
from src.pulsecrm.deals.schemas import PipelineCreate, PipelineRead, PipelineUpdate, StageRead

logger = structlog.get_logger(__name__)


class PipelineService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        probe: SchemaCapabilityProbe,
    ) -> None:
        self._session_factory = session_factory
        self._probe = probe

    async def create(self, data: PipelineCreate, caller: Caller) -> PipelineRead:
        async with self._session_factory() as session:
            async with session.begin():
                if data.is_default:
                    await self._clear_default(session, caller)
                pipeline = Pipeline(
                    tenant_id=caller.tenant_id,
                    name=data.name.strip(),
                    is_default=data.is_default,
                )
                session.add(pipeline)
            logger.info("pipelines.created", tenant_id=caller.tenant_id, pipeline_id=pipeline.id)
            return PipelineRead.model_validate(pipeline)

    async def find_all(self, caller: Caller) -> list[PipelineRead]:
        """Default pipeline first, then oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Pipeline)
                .where(Pipeline.tenant_id == caller.tenant_id)
                .order_by(Pipeline.is_default.desc(), Pipeline.created_at.asc())
            )
            return [PipelineRead.model_validate(p) for p in result.scalars().all()]

    async def find_one(self, pipeline_id: str, caller: Caller) -> PipelineRead:
        """Pipeline with its stages in position order."""
        async with self._session_factory() as session:
            pipeline = await self._get(session, pipeline_id, caller)
            stages = await session.execute(
                select(Stage)
                .where(Stage.pipeline_id == pipeline.id, Stage.tenant_id == caller.tenant_id)
                .order_by(Stage.position.asc())
            )
            read = PipelineRead.model_validate(pipeline)
            read.stages = [StageRead.model_validate(s) for s in stages.scalars().all()]
            return read

    async def update(self, pipeline_id: str, data: PipelineUpdate, caller: Caller) -> PipelineRead:
        async with self._session_factory() as session:
            async with session.begin():
                pipeline = await self._get(session, pipeline_id, caller)
                if data.is_default:
                    await self._clear_default(session, caller)
                if data.name is not None:
                    pipeline.name = data.name.strip()
                if data.is_default is not None:
                    pipeline.is_default = data.is_default
            return PipelineRead.model_validate(pipeline)

    async def remove(self, pipeline_id: str, caller: Caller) -> None:
        """Delete a pipeline together with its deals, their history, and its stages."""
        caps = await self._probe.get_schema_caps()
        async with self._session_factory() as session:
            async with session.begin():
                await self._get(session, pipeline_id, caller)
                deal_ids = select(Deal.id).where(
                    Deal.pipeline_id == pipeline_id,
                    Deal.tenant_id == caller.tenant_id,
                )
                await session.execute(
                    delete(DealStageHistory).where(
                        DealStageHistory.tenant_id == caller.tenant_id,
                        DealStageHistory.deal_id.in_(deal_ids),
                    )
                )
                if caps.has_product_tables:
                    await session.execute(
                        delete(DealItem).where(
                            DealItem.tenant_id == caller.tenant_id,
                            DealItem.deal_id.in_(deal_ids),
                        )
                    )
                await session.execute(
                    delete(Deal).where(
                        Deal.pipeline_id == pipeline_id,
                        Deal.tenant_id == caller.tenant_id,
                    )
                )
                await session.execute(
                    delete(Stage).where(
                        Stage.pipeline_id == pipeline_id,
                        Stage.tenant_id == caller.tenant_id,
                    )
                )
                await session.execute(
                    delete(Pipeline).where(
                        Pipeline.id == pipeline_id,
                        Pipeline.tenant_id == caller.tenant_id,
                    )
                )
        logger.info("pipelines.removed", tenant_id=caller.tenant_id, pipeline_id=pipeline_id)

    async def _get(self, session: AsyncSession, pipeline_id: str, caller: Caller) -> Pipeline:
        pipeline = await session.scalar(
            select(Pipeline).where(
                Pipeline.id == pipeline_id,
                Pipeline.tenant_id == caller.tenant_id,
            )
        )
        if pipeline is None:
            raise NotFound("Pipeline not found")
        return pipeline

    @staticmethod
    async def _clear_default(session: AsyncSession, caller: Caller) -> None:
        await session.execute(
            update(Pipeline)
            .where(Pipeline.tenant_id == caller.tenant_id, Pipeline.is_default.is_(True))
            .values(is_default=False)
        )
