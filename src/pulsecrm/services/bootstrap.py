"""Workspace bootstrap: tenant/user upsert from token claims and default pipelines.

Called by the frontend right after sign-in. Idempotent: re-running it only
fills in what is missing.

Role assignment:
- The first user of a tenant becomes OWNER; later users join as MEMBER
- A tenant left without any OWNER (legacy data) promotes the caller
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.capabilities import SchemaCapabilityProbe
from src.pulsecrm.core.errors import BadRequest, Forbidden
from src.pulsecrm.core.roles import Role
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.models import Pipeline, Stage
from src.pulsecrm.models.tenant import Tenant, User
from src.pulsecrm.services.stages import ensure_contract_stage

logger = structlog.get_logger(__name__)

# (name, probability, status)
NEW_SALES_STAGES = (
    ("Lead", 0.1, "OPEN"),
    ("Qualified", 0.3, "OPEN"),
    ("Proposal", 0.5, "OPEN"),
    ("Negotiation", 0.7, "OPEN"),
    ("Verbal yes", 0.9, "OPEN"),
    ("Contract", 0.95, "OPEN"),
    ("Won", 1.0, "WON"),
    ("INVOICE Customer", 1.0, "WON"),
    ("TRANSFER PAYMENT", 1.0, "WON"),
    ("Lost", 0.0, "LOST"),
    ("Transfer Scheduled", 1.0, "WON"),
    ("Paid", 1.0, "WON"),
)
POST_SALES_STAGES = (
    ("INVOICE Customer", 1.0, "OPEN"),
    ("TRANSFER PAYMENT", 1.0, "OPEN"),
)
B2C_STAGES = (
    ("Lead", 0.1, "OPEN"),
    ("Qualified", 0.3, "OPEN"),
    ("Offer", 0.5, "OPEN"),
    ("Checkout", 0.7, "OPEN"),
    ("Won", 1.0, "WON"),
    ("Lost", 0.0, "LOST"),
)
DEFAULT_PIPELINES = {
    "New Sales": NEW_SALES_STAGES,
    "Post Sales": POST_SALES_STAGES,
    "B2C": B2C_STAGES,
}
LEGACY_SALES_NAME = "Sales"
TRAILING_WON_STAGES = ("Transfer Scheduled", "Paid")


async def seed_default_pipelines(session: AsyncSession, tenant_id: str, crm_mode: str | None) -> str:
    """Create missing default pipelines and mark the mode-appropriate one default.

    Returns the id of the default pipeline. Runs inside the caller's transaction.
    """
    rows = (
        await session.execute(
            select(Pipeline).where(Pipeline.tenant_id == tenant_id).order_by(Pipeline.created_at.asc())
        )
    ).scalars().all()
    by_name = {p.name: p for p in rows}

    legacy = by_name.get(LEGACY_SALES_NAME)
    if legacy is not None and "New Sales" not in by_name:
        legacy.name = "New Sales"
        by_name["New Sales"] = by_name.pop(LEGACY_SALES_NAME)

    for name, stages in DEFAULT_PIPELINES.items():
        if name in by_name:
            continue
        pipeline = Pipeline(tenant_id=tenant_id, name=name, is_default=False)
        session.add(pipeline)
        await session.flush()
        session.add_all(
            Stage(
                tenant_id=tenant_id,
                pipeline_id=pipeline.id,
                name=stage_name,
                position=position,
                probability=probability,
                status=status,
            )
            for position, (stage_name, probability, status) in enumerate(stages, start=1)
        )
        by_name[name] = pipeline
        logger.info("bootstrap.pipeline_seeded", tenant_id=tenant_id, pipeline=name)
    await session.flush()

    new_sales = by_name["New Sales"]
    await ensure_contract_stage(session, tenant_id, new_sales.id, commit=False)
    await _ensure_trailing_won_stages(session, tenant_id, new_sales.id)

    desired = by_name["B2C"] if crm_mode == "B2C" else new_sales
    await session.execute(
        update(Pipeline)
        .where(Pipeline.tenant_id == tenant_id, Pipeline.id != desired.id)
        .values(is_default=False)
    )
    desired.is_default = True
    await session.flush()
    return desired.id


async def _ensure_trailing_won_stages(session: AsyncSession, tenant_id: str, pipeline_id: str) -> None:
    """Keep "Transfer Scheduled" then "Paid" after "Lost" in New Sales."""
    stages = (
        await session.execute(
            select(Stage)
            .where(Stage.tenant_id == tenant_id, Stage.pipeline_id == pipeline_id)
            .order_by(Stage.position.asc())
        )
    ).scalars().all()
    if not stages:
        return
    by_name = {s.name: s for s in stages}
    next_position = max(s.position for s in stages) + 1
    min_position = by_name["Lost"].position + 1 if "Lost" in by_name else next_position

    for name in TRAILING_WON_STAGES:
        existing = by_name.get(name)
        if existing is None:
            position = max(next_position, min_position)
            session.add(
                Stage(
                    tenant_id=tenant_id,
                    pipeline_id=pipeline_id,
                    name=name,
                    position=position,
                    probability=1.0,
                    status="WON",
                )
            )
        else:
            if existing.position < min_position:
                existing.position = max(next_position, min_position)
            existing.status = "WON"
            existing.probability = 1.0
            position = existing.position
        next_position = position + 1
        min_position = position + 1


class BootstrapService:
    """Upserts the caller's workspace and seeds its pipelines."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        probe: SchemaCapabilityProbe,
    ) -> None:
        self._session_factory = session_factory
        self._probe = probe

    async def ensure(
        self,
        caller: Caller,
        name: str | None = None,
        tenant_name: str | None = None,
    ) -> dict[str, Any]:
        email = caller.email
        if not email:
            raise BadRequest("Token has no email claim")
        display_name = name or caller.name or email
        workspace_name = tenant_name or caller.tenant_name

        caps = await self._probe.get_schema_caps()
        async with self._session_factory() as session:
            async with session.begin():
                tenant = await session.scalar(select(Tenant.id).where(Tenant.id == caller.tenant_id))
                if tenant is None:
                    session.add(Tenant(id=caller.tenant_id, name=workspace_name or "Workspace"))
                    await session.flush()
                elif workspace_name:
                    await session.execute(
                        update(Tenant).where(Tenant.id == caller.tenant_id).values(name=workspace_name)
                    )

                existing = (
                    await session.execute(
                        select(User.id, User.tenant_id).where(User.id == caller.user_id)
                    )
                ).first()
                if existing is None:
                    members = await session.scalar(
                        select(func.count()).select_from(User).where(User.tenant_id == caller.tenant_id)
                    )
                    role = Role.OWNER if not members else Role.MEMBER
                    session.add(
                        User(
                            id=caller.user_id,
                            tenant_id=caller.tenant_id,
                            email=email,
                            name=display_name,
                            role=role.value,
                        )
                    )
                    await session.flush()
                elif existing.tenant_id != caller.tenant_id:
                    raise Forbidden("User belongs to another workspace")
                else:
                    await session.execute(
                        update(User).where(User.id == caller.user_id).values(email=email, name=display_name)
                    )

                owners = await session.scalar(
                    select(func.count())
                    .select_from(User)
                    .where(User.tenant_id == caller.tenant_id, User.role == Role.OWNER.value)
                )
                if not owners:
                    await session.execute(
                        update(User).where(User.id == caller.user_id).values(role=Role.OWNER.value)
                    )
                    logger.info("bootstrap.owner_promoted", tenant_id=caller.tenant_id, user_id=caller.user_id)

                crm_mode = None
                if caps.has_tenant_crm_settings:
                    crm_mode = await session.scalar(
                        select(Tenant.crm_mode).where(Tenant.id == caller.tenant_id)
                    )
                default_pipeline_id = await seed_default_pipelines(session, caller.tenant_id, crm_mode)

                role_value = await session.scalar(select(User.role).where(User.id == caller.user_id))

        logger.info("bootstrap.ensured", tenant_id=caller.tenant_id, user_id=caller.user_id)
        return {
            "tenant_id": caller.tenant_id,
            "user_id": caller.user_id,
            "role": role_value,
            "default_pipeline_id": default_pipeline_id,
        }
