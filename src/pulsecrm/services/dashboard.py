"""Dashboard snapshot for the caller's workspace."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.capabilities import SchemaCapabilityProbe
from src.pulsecrm.core.database import utcnow
from src.pulsecrm.core.roles import RoleResolver
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.models import Deal, Stage
from src.pulsecrm.deals.query import tenant_scope, visibility_clause
from src.pulsecrm.deals.schemas import StageStatus
from src.pulsecrm.forecast.fx import FxService, FxUnavailable
from src.pulsecrm.models.crm import Client, Invoice, Task

logger = structlog.get_logger(__name__)

RECENT_INVOICE_DAYS = 30
RECENT_INVOICE_LIMIT = 5


class DashboardService:
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

    async def get_summary(self, caller: Caller) -> dict[str, Any]:
        """Counts and totals for the workspace home screen.

        Open pipeline value is reported in USD. Amounts that cannot be
        converted (FX down, unknown currency) count at face value.
        """
        caps = await self._probe.get_schema_caps()
        role = await self._roles.get_user_role(caller)
        tenant_id = caller.tenant_id
        since = utcnow() - timedelta(days=RECENT_INVOICE_DAYS)

        async with self._session_factory() as session:
            client_count = await session.scalar(
                select(func.count()).select_from(Client).where(Client.tenant_id == tenant_id)
            )
            task_rows = (
                await session.execute(
                    select(Task.status, func.count())
                    .where(Task.tenant_id == tenant_id)
                    .group_by(Task.status)
                )
            ).all()
            invoice_count, invoice_sum = (
                await session.execute(
                    select(func.count(), func.coalesce(func.sum(Invoice.amount), 0)).where(
                        Invoice.tenant_id == tenant_id
                    )
                )
            ).one()
            recent = (
                await session.execute(
                    select(
                        Invoice.id,
                        Invoice.original_filename,
                        Invoice.amount,
                        Invoice.currency,
                        Invoice.created_at,
                    )
                    .where(Invoice.tenant_id == tenant_id, Invoice.created_at >= since)
                    .order_by(Invoice.created_at.desc())
                    .limit(RECENT_INVOICE_LIMIT)
                )
            ).mappings().all()
            deal_rows = (
                await session.execute(
                    select(Deal.value, Deal.currency, Stage.status)
                    .outerjoin(Stage, Stage.id == Deal.stage_id)
                    .where(tenant_scope(caller), visibility_clause(caps, role, caller))
                )
            ).all()

        open_value = 0.0
        snapshot = None
        try:
            snapshot = await self._fx.get_usd_rates()
        except FxUnavailable:
            logger.warning("dashboard.fx_unavailable_using_face_values", tenant_id=tenant_id)

        for row in deal_rows:
            if row.status not in (None, StageStatus.OPEN.value):
                continue
            amount = float(row.value or 0)
            converted = self._fx.to_usd(amount, row.currency, snapshot) if snapshot else None
            open_value += amount if converted is None else converted

        return {
            "clients": client_count or 0,
            "tasks": {status: count for status, count in task_rows},
            "invoices": {"count": invoice_count or 0, "total": round(float(invoice_sum or 0), 2)},
            "recent_invoices": [dict(row) for row in recent],
            "deals": {
                "count": len(deal_rows),
                "open_value": round(open_value, 2),
                "currency": "USD",
                "converted": snapshot is not None,
            },
        }
