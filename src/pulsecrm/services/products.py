"""Product catalog, available once the products tables exist."""

from __future__ import annotations

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.capabilities import SchemaCapabilityProbe
from src.pulsecrm.core.errors import BadRequest, NotFound, SchemaUpgradePending
from src.pulsecrm.core.roles import RoleResolver
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.deals.models import DealItem
from src.pulsecrm.models.crm import Product
from src.pulsecrm.schemas.crm import ProductCreate, ProductRead, ProductUpdate

logger = structlog.get_logger(__name__)


class ProductService:
    """Reads are open to every tenant member; writes need OWNER or ADMIN."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        probe: SchemaCapabilityProbe,
        roles: RoleResolver,
    ) -> None:
        self._session_factory = session_factory
        self._probe = probe
        self._roles = roles

    async def _require_tables(self) -> None:
        caps = await self._probe.get_schema_caps()
        if not caps.has_product_tables:
            raise SchemaUpgradePending("products")

    async def find_all(self, caller: Caller, include_inactive: bool = True) -> list[ProductRead]:
        await self._require_tables()
        stmt = select(Product).where(Product.tenant_id == caller.tenant_id)
        if not include_inactive:
            stmt = stmt.where(Product.is_active.is_(True))
        async with self._session_factory() as session:
            result = await session.execute(
                stmt.order_by(Product.is_active.desc(), Product.created_at.desc())
            )
            return [ProductRead.model_validate(p) for p in result.scalars().all()]

    async def create(self, data: ProductCreate, caller: Caller) -> ProductRead:
        await self._require_tables()
        await self._roles.ensure_admin(caller)
        async with self._session_factory() as session:
            async with session.begin():
                values = data.model_dump()
                values["name"] = data.name.strip()
                product = Product(tenant_id=caller.tenant_id, **values)
                session.add(product)
            return ProductRead.model_validate(product)

    async def update(self, product_id: str, data: ProductUpdate, caller: Caller) -> ProductRead:
        await self._require_tables()
        await self._roles.ensure_admin(caller)
        async with self._session_factory() as session:
            async with session.begin():
                product = await self._get(session, product_id, caller)
                for key, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
                    setattr(product, key, value.strip() if key == "name" else value)
            return ProductRead.model_validate(product)

    async def remove(self, product_id: str, caller: Caller) -> None:
        """Delete a product that no deal references.

        Raises:
            BadRequest: The product is attached to at least one deal.
        """
        await self._require_tables()
        await self._roles.ensure_admin(caller)
        async with self._session_factory() as session:
            async with session.begin():
                product = await self._get(session, product_id, caller)
                used = await session.scalar(
                    select(func.count())
                    .select_from(DealItem)
                    .where(DealItem.product_id == product_id, DealItem.tenant_id == caller.tenant_id)
                )
                if used:
                    raise BadRequest("Product is used in deals. Deactivate it instead.")
                await session.delete(product)
        logger.info("products.removed", tenant_id=caller.tenant_id, product_id=product_id)

    async def _get(self, session: AsyncSession, product_id: str, caller: Caller) -> Product:
        product = await session.scalar(
            select(Product).where(Product.id == product_id, Product.tenant_id == caller.tenant_id)
        )
        if product is None:
            raise NotFound("Product not found")
        return product
