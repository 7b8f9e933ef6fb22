"""Deal lifecycle service with schema-drift tolerant data access.

Every operation:
1. Reads the capability snapshot and the caller's role
2. Scopes every statement by the caller's tenant (plus member visibility)
3. Builds SELECT lists and write payloads from the capability snapshot

Multi-statement writes (deal + line items, history row + stage update) run
inside one ``session.begin()`` block so they commit or roll back together.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.capabilities import SchemaCapabilityProbe, SchemaCaps
from src.pulsecrm.core.database import new_id
from src.pulsecrm.core.errors import BadRequest, NotFound, SchemaUpgradePending
from src.pulsecrm.core.monitoring import deal_stage_moves_total
from src.pulsecrm.core.roles import Role, RoleResolver
from src.pulsecrm.core.storage import UploadStorage
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.models import Deal, DealItem, DealStageHistory, Pipeline, Stage
from src.pulsecrm.deals.query import (
    deal_columns,
    tenant_scope,
    visibility_clause,
    writable_payload,
)
from src.pulsecrm.deals.schemas import (
    DealCreate,
    DealItemRead,
    DealRead,
    DealUpdate,
    StageSummary,
)
from src.pulsecrm.models.crm import Client, Product

logger = structlog.get_logger(__name__)

PDF_CONTENT_TYPES = ("application/pdf", "application/x-pdf")
_NON_NULLABLE_FIELDS = ("title", "value", "currency")


def unique_ids(ids: list[str]) -> list[str]:
    """Trim, drop blanks, and de-duplicate while keeping first-seen order."""
    seen: dict[str, None] = {}
    for raw in ids:
        value = (raw or "").strip()
        if value:
            seen.setdefault(value, None)
    return list(seen)


def is_pdf(filename: str | None, content_type: str | None) -> bool:
    if content_type and content_type.lower() in PDF_CONTENT_TYPES:
        return True
    return bool(filename) and filename.lower().endswith(".pdf")


class DealService:
    """Tenant-scoped CRUD for deals.

    Args:
        session_factory: async_sessionmaker producing AsyncSession instances.
        probe: Schema capability probe.
        roles: Role resolver for member visibility.
        storage: Upload storage for proposal PDFs.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        probe: SchemaCapabilityProbe,
        roles: RoleResolver,
        storage: UploadStorage,
    ) -> None:
        self._session_factory = session_factory
        self._probe = probe
        self._roles = roles
        self._storage = storage

    # ── Create ──────────────────────────────────────────────────────────────

    async def create(self, data: DealCreate, caller: Caller) -> DealRead:
        """Create a deal, its line items, and record the owner.

        Raises:
            NotFound: Pipeline, stage, or client is absent or outside the tenant.
            SchemaUpgradePending: client_id or product_ids given while the
                backing column/tables do not exist yet.
            BadRequest: Pipeline has no stages, or a product is missing/inactive.
        """
        caps = await self._probe.get_schema_caps()
        if data.client_id and not caps.has_client_id:
            raise SchemaUpgradePending("deals.client_id")
        product_ids = unique_ids(data.product_ids)
        if product_ids and not caps.has_product_tables:
            raise SchemaUpgradePending("products")

        deal_id = new_id()
        async with self._session_factory() as session:
            async with session.begin():
                await self._ensure_pipeline(session, data.pipeline_id, caller)
                stage_id = await self._resolve_stage(
                    session, data.pipeline_id, data.stage_id, caller
                )
                if data.client_id:
                    await self._ensure_client(session, data.client_id, caller)
                prices = (
                    await self._active_product_prices(session, product_ids, caller)
                    if product_ids
                    else {}
                )

                values = writable_payload(
                    {
                        "id": deal_id,
                        "tenant_id": caller.tenant_id,
                        "pipeline_id": data.pipeline_id,
                        "stage_id": stage_id,
                        "title": data.title.strip(),
                        "value": data.value,
                        "currency": data.currency or "USD",
                        "expected_close_date": data.expected_close_date,
                        "client_id": data.client_id,
                        "owner_id": caller.user_id,
                    },
                    caps,
                )
                await session.execute(insert(Deal).values(**values))

                if prices:
                    await session.execute(
                        insert(DealItem),
                        [
                            {
                                "id": new_id(),
                                "tenant_id": caller.tenant_id,
                                "deal_id": deal_id,
                                "product_id": product_id,
                                "quantity": 1,
                                "unit_price": prices[product_id],
                            }
                            for product_id in product_ids
                        ],
                    )

            logger.info(
                "deals.created",
                tenant_id=caller.tenant_id,
                deal_id=deal_id,
                stage_id=stage_id,
                items=len(prices),
            )
            return await self._load_one(session, caps, deal_id, caller)

    # ── Read ────────────────────────────────────────────────────────────────

    async def find_all(self, caller: Caller, pipeline_id: str | None = None) -> list[DealRead]:
        """List caller-visible deals, newest first, optionally for one pipeline."""
        caps = await self._probe.get_schema_caps()
        role = await self._roles.get_user_role(caller)
        clauses = [tenant_scope(caller), visibility_clause(caps, role, caller)]
        if pipeline_id:
            clauses.append(Deal.pipeline_id == pipeline_id)

        async with self._session_factory() as session:
            return await self._load(session, caps, clauses, caller.tenant_id)

    async def find_one(self, deal_id: str, caller: Caller) -> DealRead:
        """Fetch one caller-visible deal.

        Raises:
            NotFound: Unknown id, another tenant's deal, or (for MEMBERs)
                a deal owned by someone else.
        """
        caps = await self._probe.get_schema_caps()
        role = await self._roles.get_user_role(caller)
        async with self._session_factory() as session:
            deals = await self._load(
                session,
                caps,
                [
                    Deal.id == deal_id,
                    tenant_scope(caller),
                    visibility_clause(caps, role, caller),
                ],
                caller.tenant_id,
            )
        if not deals:
            raise NotFound("Deal not found")
        return deals[0]

    # ── Update ──────────────────────────────────────────────────────────────

    async def update(self, deal_id: str, patch: DealUpdate, caller: Caller) -> DealRead:
        """Apply a partial update. ``client_id: null`` clears the client."""
        caps = await self._probe.get_schema_caps()
        role = await self._roles.get_user_role(caller)

        changes: dict[str, Any] = patch.model_dump(exclude_unset=True)
        for field in _NON_NULLABLE_FIELDS:
            if field in changes and changes[field] is None:
                changes.pop(field)
        if "client_id" in changes:
            if changes["client_id"] and not caps.has_client_id:
                raise SchemaUpgradePending("deals.client_id")
            if not caps.has_client_id:
                changes.pop("client_id")
        if "title" in changes:
            changes["title"] = changes["title"].strip()

        async with self._session_factory() as session:
            async with session.begin():
                await self._visible_deal(session, caps, role, deal_id, caller)
                if changes.get("client_id"):
                    await self._ensure_client(session, changes["client_id"], caller)
                if changes:
                    await session.execute(
                        update(Deal)
                        .where(Deal.id == deal_id, tenant_scope(caller))
                        .values(**changes)
                    )
            logger.info(
                "deals.updated",
                tenant_id=caller.tenant_id,
                deal_id=deal_id,
                fields=sorted(changes),
            )
            return await self._load_one(session, caps, deal_id, caller)

    async def move_stage(self, deal_id: str, stage_id: str, caller: Caller) -> DealRead:
        """Move a deal to another stage of its pipeline.

        A move to the current stage writes nothing. Otherwise one history row
        is appended and the deal updated in the same transaction.

        Raises:
            NotFound: Deal not visible to the caller.
            BadRequest: Target stage is not part of the deal's pipeline.
        """
        caps = await self._probe.get_schema_caps()
        role = await self._roles.get_user_role(caller)

        async with self._session_factory() as session:
            async with session.begin():
                deal = await self._visible_deal(session, caps, role, deal_id, caller)
                target_status = await session.scalar(
                    select(Stage.status).where(
                        Stage.id == stage_id,
                        Stage.tenant_id == caller.tenant_id,
                        Stage.pipeline_id == deal["pipeline_id"],
                    )
                )
                if target_status is None:
                    raise BadRequest("Stage not found for pipeline")

                from_stage_id = deal["stage_id"]
                if from_stage_id != stage_id:
                    await session.execute(
                        insert(DealStageHistory).values(
                            id=new_id(),
                            tenant_id=caller.tenant_id,
                            deal_id=deal_id,
                            from_stage_id=from_stage_id,
                            to_stage_id=stage_id,
                        )
                    )
                    await session.execute(
                        update(Deal)
                        .where(Deal.id == deal_id, tenant_scope(caller))
                        .values(stage_id=stage_id)
                    )
                    logger.info(
                        "deals.stage_moved",
                        tenant_id=caller.tenant_id,
                        deal_id=deal_id,
                        from_stage_id=from_stage_id,
                        to_stage_id=stage_id,
                    )
                    deal_stage_moves_total.labels(to_status=target_status).inc()
            return await self._load_one(session, caps, deal_id, caller)

    # ── Delete ──────────────────────────────────────────────────────────────

    async def remove(self, deal_id: str, caller: Caller) -> None:
        """Delete a deal with its stage history and line items."""
        caps = await self._probe.get_schema_caps()
        role = await self._roles.get_user_role(caller)

        async with self._session_factory() as session:
            async with session.begin():
                deal = await self._visible_deal(session, caps, role, deal_id, caller)
                await session.execute(
                    delete(DealStageHistory).where(
                        DealStageHistory.deal_id == deal_id,
                        DealStageHistory.tenant_id == caller.tenant_id,
                    )
                )
                if caps.has_product_tables:
                    await session.execute(
                        delete(DealItem).where(
                            DealItem.deal_id == deal_id,
                            DealItem.tenant_id == caller.tenant_id,
                        )
                    )
                await session.execute(delete(Deal).where(Deal.id == deal_id, tenant_scope(caller)))

        self._storage.discard(deal.get("proposal_file_path"))
        logger.info("deals.removed", tenant_id=caller.tenant_id, deal_id=deal_id)

    # ── Proposals ───────────────────────────────────────────────────────────

    async def upload_proposal(
        self,
        deal_id: str,
        filename: str,
        content_type: str | None,
        data: bytes,
        caller: Caller,
    ) -> DealRead:
        """Store a proposal PDF and point the deal at it.

        The superseded file, if any, is deleted best-effort afterwards.
        """
        caps = await self._probe.get_schema_caps()
        if not caps.has_proposal_file_path:
            raise SchemaUpgradePending("deals.proposal_file_path")
        if not is_pdf(filename, content_type):
            raise BadRequest("Only PDF files are allowed")
        role = await self._roles.get_user_role(caller)

        path: Path | None = None
        async with self._session_factory() as session:
            # The new file is removed unless the transaction commits
            try:
                async with session.begin():
                    deal = await self._visible_deal(session, caps, role, deal_id, caller)
                    previous = deal.get("proposal_file_path")
                    path = self._storage.save(caller.tenant_id, filename, data, subdir="proposals")
                    await session.execute(
                        update(Deal)
                        .where(Deal.id == deal_id, tenant_scope(caller))
                        .values(proposal_file_path=str(path))
                    )
            except Exception:
                self._storage.discard(path)
                raise

            if previous and previous != str(path):
                self._storage.discard(previous)
            logger.info("deals.proposal_uploaded", tenant_id=caller.tenant_id, deal_id=deal_id)
            return await self._load_one(session, caps, deal_id, caller)

    async def get_proposal_file_path(self, deal_id: str, caller: Caller) -> Path:
        """Path of the deal's proposal on disk.

        Raises:
            SchemaUpgradePending: proposal column missing.
            NotFound: Deal not visible, no proposal uploaded, or file gone.
        """
        caps = await self._probe.get_schema_caps()
        if not caps.has_proposal_file_path:
            raise SchemaUpgradePending("deals.proposal_file_path")
        role = await self._roles.get_user_role(caller)

        async with self._session_factory() as session:
            deal = await self._visible_deal(session, caps, role, deal_id, caller)
        path = deal.get("proposal_file_path")
        if not path or not self._storage.exists(path):
            raise NotFound("Proposal not found")
        return Path(path)

    # ── Internals ───────────────────────────────────────────────────────────

    async def _ensure_pipeline(self, session: AsyncSession, pipeline_id: str, caller: Caller) -> None:
        found = await session.scalar(
            select(Pipeline.id).where(
                Pipeline.id == pipeline_id,
                Pipeline.tenant_id == caller.tenant_id,
            )
        )
        if found is None:
            raise NotFound("Pipeline not found")

    async def _resolve_stage(
        self,
        session: AsyncSession,
        pipeline_id: str,
        stage_id: str | None,
        caller: Caller,
    ) -> str:
        if stage_id:
            row = (
                await session.execute(
                    select(Stage.id, Stage.pipeline_id).where(
                        Stage.id == stage_id,
                        Stage.tenant_id == caller.tenant_id,
                    )
                )
            ).first()
            if row is None:
                raise NotFound("Stage not found")
            if row.pipeline_id != pipeline_id:
                raise BadRequest("Stage not found for pipeline")
            return row.id

        first = await session.scalar(
            select(Stage.id)
            .where(Stage.pipeline_id == pipeline_id, Stage.tenant_id == caller.tenant_id)
            .order_by(Stage.position.asc())
            .limit(1)
        )
        if first is None:
            raise BadRequest("Pipeline has no stages")
        return first

    async def _ensure_client(self, session: AsyncSession, client_id: str, caller: Caller) -> None:
        found = await session.scalar(
            select(Client.id).where(Client.id == client_id, Client.tenant_id == caller.tenant_id)
        )
        if found is None:
            raise NotFound("Client not found")

    async def _active_product_prices(
        self,
        session: AsyncSession,
        product_ids: list[str],
        caller: Caller,
    ) -> dict[str, float]:
        result = await session.execute(
            select(Product.id, Product.price).where(
                Product.tenant_id == caller.tenant_id,
                Product.id.in_(product_ids),
                Product.is_active.is_(True),
            )
        )
        prices = {row.id: float(row.price) for row in result}
        if len(prices) != len(product_ids):
            raise BadRequest("Some products were not found (or are inactive).")
        return prices

    async def _visible_deal(
        self,
        session: AsyncSession,
        caps: SchemaCaps,
        role: Role,
        deal_id: str,
        caller: Caller,
    ) -> RowMapping:
        row = (
            await session.execute(
                select(*deal_columns(caps)).where(
                    Deal.id == deal_id,
                    tenant_scope(caller),
                    visibility_clause(caps, role, caller),
                )
            )
        ).mappings().first()
        if row is None:
            raise NotFound("Deal not found")
        return row

    async def _load_one(
        self,
        session: AsyncSession,
        caps: SchemaCaps,
        deal_id: str,
        caller: Caller,
    ) -> DealRead:
        deals = await self._load(
            session, caps, [Deal.id == deal_id, tenant_scope(caller)], caller.tenant_id
        )
        if not deals:
            raise NotFound("Deal not found")
        return deals[0]

    async def _load(
        self,
        session: AsyncSession,
        caps: SchemaCaps,
        clauses: list[Any],
        tenant_id: str,
    ) -> list[DealRead]:
        stmt = (
            select(
                *deal_columns(caps),
                Stage.name.label("stage_name"),
                Stage.status.label("stage_status"),
                Stage.probability.label("stage_probability"),
                Stage.position.label("stage_position"),
            )
            .outerjoin(Stage, Stage.id == Deal.stage_id)
            .where(*clauses)
            .order_by(Deal.created_at.desc())
        )
        rows = (await session.execute(stmt)).mappings().all()
        deals = [_row_to_deal(row) for row in rows]

        if caps.has_product_tables and deals:
            items = await self._load_items(session, [d.id for d in deals], tenant_id)
            for deal in deals:
                deal.items = items.get(deal.id, [])
        return deals

    async def _load_items(
        self,
        session: AsyncSession,
        deal_ids: list[str],
        tenant_id: str,
    ) -> dict[str, list[DealItemRead]]:
        result = await session.execute(
            select(
                DealItem.id,
                DealItem.deal_id,
                DealItem.product_id,
                DealItem.quantity,
                DealItem.unit_price,
                Product.name.label("product_name"),
            )
            .outerjoin(Product, Product.id == DealItem.product_id)
            .where(DealItem.deal_id.in_(deal_ids), DealItem.tenant_id == tenant_id)
            .order_by(DealItem.created_at.asc())
        )
        grouped: dict[str, list[DealItemRead]] = {}
        for row in result:
            grouped.setdefault(row.deal_id, []).append(
                DealItemRead(
                    id=row.id,
                    product_id=row.product_id,
                    product_name=row.product_name,
                    quantity=row.quantity,
                    unit_price=float(row.unit_price),
                )
            )
        return grouped


def _row_to_deal(row: RowMapping) -> DealRead:
    stage = None
    if row["stage_name"] is not None:
        stage = StageSummary(
            id=row["stage_id"],
            name=row["stage_name"],
            status=row["stage_status"],
            probability=row["stage_probability"],
            position=row["stage_position"],
        )
    return DealRead(
        id=row["id"],
        pipeline_id=row["pipeline_id"],
        stage_id=row["stage_id"],
        title=row["title"],
        value=float(row["value"] or 0),
        currency=row["currency"],
        expected_close_date=row["expected_close_date"],
        client_id=row.get("client_id"),
        owner_id=row.get("owner_id"),
        has_proposal=bool(row.get("proposal_file_path")),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        stage=stage,
        items=[],
    )
