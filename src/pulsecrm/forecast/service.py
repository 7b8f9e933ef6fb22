"""Probability-weighted pipeline forecast in USD.

For the resolved pipeline, every caller-visible deal is converted to USD and
weighted by its stage:
- WON stages weigh 1.0 and LOST stages 0.0, regardless of stored probability
- OPEN stages use the stored probability

If the FX snapshot cannot be fetched, deal values are used as-is so the
report degrades instead of failing. With a snapshot in hand, a deal whose
currency cannot be converted is left out and counted in ``excluded_count``.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.capabilities import SchemaCapabilityProbe
from src.pulsecrm.core.errors import NotFound
from src.pulsecrm.core.roles import RoleResolver
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.models import Deal, Pipeline, Stage
from src.pulsecrm.deals.query import tenant_scope, visibility_clause
from src.pulsecrm.forecast.fx import FxRatesSnapshot, FxService, FxUnavailable

logger = structlog.get_logger(__name__)

REPORTING_CURRENCY = "USD"


def stage_weight(status: str | None, probability: float | None) -> float:
    if status == "WON":
        return 1.0
    if status == "LOST":
        return 0.0
    return float(probability or 0.0)


def _money(value: float) -> float:
    return round(value, 2)


class ForecastService:
    """Aggregates weighted totals per stage for one pipeline."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        probe: SchemaCapabilityProbe,
        roles: RoleResolver,
        fx: FxService,
    ) -> None:
        self._session_factory = session_factory
        self._probe = probe
        self._roles = roles
        self._fx = fx

    async def get_forecast(self, caller: Caller, pipeline_id: str | None = None) -> dict[str, Any]:
        """Forecast for ``pipeline_id``, else the default, else the oldest pipeline.

        Raises:
            NotFound: An explicit pipeline_id that is not the caller's tenant's.
        """
        caps = await self._probe.get_schema_caps()
        role = await self._roles.get_user_role(caller)

        async with self._session_factory() as session:
            pipeline = await self._resolve_pipeline(session, pipeline_id, caller)
            if pipeline is None:
                return self._empty()

            stages = (
                await session.execute(
                    select(Stage.id, Stage.name, Stage.status, Stage.probability)
                    .where(Stage.pipeline_id == pipeline.id, Stage.tenant_id == caller.tenant_id)
                    .order_by(Stage.position.asc())
                )
            ).all()

            deals = (
                await session.execute(
                    select(Deal.stage_id, Deal.value, Deal.currency).where(
                        Deal.pipeline_id == pipeline.id,
                        tenant_scope(caller),
                        visibility_clause(caps, role, caller),
                    )
                )
            ).all()

        snapshot = await self._snapshot()

        by_stage: dict[str, dict[str, Any]] = {}
        for stage in stages:
            by_stage[stage.id] = {
                "stage_id": stage.id,
                "stage_name": stage.name,
                "status": stage.status,
                "probability": stage_weight(stage.status, stage.probability),
                "total": 0.0,
                "weighted_total": 0.0,
                "count": 0,
            }

        total = 0.0
        weighted_total = 0.0
        excluded = 0
        for deal in deals:
            bucket = by_stage.get(deal.stage_id)
            if bucket is None:
                continue
            amount = float(deal.value or 0)
            if snapshot is not None:
                converted = self._fx.to_usd(amount, deal.currency, snapshot)
                if converted is None:
                    excluded += 1
                    continue
                amount = converted
            weighted = amount * bucket["probability"]
            bucket["total"] += amount
            bucket["weighted_total"] += weighted
            bucket["count"] += 1
            total += amount
            weighted_total += weighted

        if excluded:
            logger.info(
                "forecast.unconvertible_deals_excluded",
                tenant_id=caller.tenant_id,
                pipeline_id=pipeline.id,
                excluded=excluded,
            )

        rows = list(by_stage.values())
        for row in rows:
            row["total"] = _money(row["total"])
            row["weighted_total"] = _money(row["weighted_total"])

        return {
            "pipeline": {"id": pipeline.id, "name": pipeline.name, "is_default": pipeline.is_default},
            "currency": REPORTING_CURRENCY,
            "converted": snapshot is not None,
            "fx_date": snapshot.date if snapshot else None,
            "total": _money(total),
            "weighted_total": _money(weighted_total),
            "excluded_count": excluded,
            "by_stage": rows,
        }

    async def _snapshot(self) -> FxRatesSnapshot | None:
        try:
            return await self._fx.get_usd_rates()
        except FxUnavailable:
            logger.warning("forecast.fx_unavailable_using_raw_values")
            return None

    async def _resolve_pipeline(
        self,
        session: AsyncSession,
        pipeline_id: str | None,
        caller: Caller,
    ) -> Any:
        columns = (Pipeline.id, Pipeline.name, Pipeline.is_default)
        if pipeline_id:
            row = (
                await session.execute(
                    select(*columns).where(
                        Pipeline.id == pipeline_id,
                        Pipeline.tenant_id == caller.tenant_id,
                    )
                )
            ).first()
            if row is None:
                raise NotFound("Pipeline not found")
            return row

        return (
            await session.execute(
                select(*columns)
                .where(Pipeline.tenant_id == caller.tenant_id)
                .order_by(Pipeline.is_default.desc(), Pipeline.created_at.asc())
                .limit(1)
            )
        ).first()

    @staticmethod
    def _empty() -> dict[str, Any]:
        return {
            "pipeline": None,
            "currency": REPORTING_CURRENCY,
            "converted": False,
            "fx_date": None,
            "total": 0.0,
            "weighted_total": 0.0,
            "excluded_count": 0,
            "by_stage": [],
        }
