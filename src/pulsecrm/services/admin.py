"""Workspace administration: members, roles, and customer subscriptions.

Every operation requires the caller to be OWNER or ADMIN of their tenant.
"""

from __future__ import annotations

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.database import new_id
from src.pulsecrm.core.errors import BadRequest, Forbidden, NotFound
from src.pulsecrm.core.roles import Role, RoleResolver
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.models.tenant import Subscription, Tenant, User
from src.pulsecrm.schemas.admin import (
    SubscriptionCreate,
    SubscriptionRead,
    SubscriptionUpdate,
    UserRead,
)

logger = structlog.get_logger(__name__)


class AdminService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        roles: RoleResolver,
    ) -> None:
        self._session_factory = session_factory
        self._roles = roles

    # ── Members ─────────────────────────────────────────────────────────────

    async def list_users(self, caller: Caller) -> list[UserRead]:
        await self._roles.ensure_admin(caller)
        async with self._session_factory() as session:
            result = await session.execute(
                select(User.id, User.email, User.name, User.role, User.created_at)
                .where(User.tenant_id == caller.tenant_id)
                .order_by(User.created_at.asc())
            )
            return [UserRead.model_validate(row) for row in result.all()]

    async def update_user_role(self, user_id: str, role: Role, caller: Caller) -> UserRead:
        """Change a member's role.

        Raises:
            NotFound: The user is not a member of the caller's tenant.
            Forbidden: The change would leave the tenant without an OWNER.
        """
        await self._roles.ensure_admin(caller)
        async with self._session_factory() as session:
            async with session.begin():
                user = await session.scalar(
                    select(User).where(User.id == user_id, User.tenant_id == caller.tenant_id)
                )
                if user is None:
                    raise NotFound("User not found")

                if user.role == Role.OWNER.value and role != Role.OWNER:
                    owners = await session.scalar(
                        select(func.count())
                        .select_from(User)
                        .where(User.tenant_id == caller.tenant_id, User.role == Role.OWNER.value)
                    )
                    if owners <= 1:
                        raise Forbidden("Cannot remove the last OWNER")

                user.role = role.value
            read = UserRead.model_validate(user)

        logger.info(
            "admin.role_updated",
            tenant_id=caller.tenant_id,
            user_id=user_id,
            role=role.value,
            changed_by=caller.user_id,
        )
        return read

    # ── Subscriptions ───────────────────────────────────────────────────────

    async def list_subscriptions(self, caller: Caller) -> list[SubscriptionRead]:
        await self._roles.ensure_admin(caller)
        async with self._session_factory() as session:
            result = await session.execute(
                select(Subscription)
                .where(Subscription.tenant_id == caller.tenant_id)
                .order_by(Subscription.created_at.desc())
            )
            return [SubscriptionRead.model_validate(s) for s in result.scalars().all()]

    async def create_subscription(self, data: SubscriptionCreate, caller: Caller) -> SubscriptionRead:
        """Provision a customer workspace and its subscription together."""
        await self._roles.ensure_admin(caller)
        customer_name = data.customer_name.strip()
        if not customer_name:
            raise BadRequest("Customer name is required")

        values = data.model_dump(exclude={"customer_name"})
        values["plan"] = data.plan.value
        values["crm_mode"] = data.crm_mode.value if data.crm_mode else None

        customer_tenant_id = new_id()
        async with self._session_factory() as session:
            async with session.begin():
                session.add(Tenant(id=customer_tenant_id, name=customer_name))
                await session.flush()
                subscription = Subscription(
                    tenant_id=caller.tenant_id,
                    customer_tenant_id=customer_tenant_id,
                    customer_name=customer_name,
                    **values,
                )
                session.add(subscription)
            read = SubscriptionRead.model_validate(subscription)

        logger.info(
            "admin.subscription_created",
            tenant_id=caller.tenant_id,
            customer_tenant_id=customer_tenant_id,
            plan=read.plan,
            seats=read.seats,
        )
        return read

    async def update_subscription(
        self,
        subscription_id: str,
        data: SubscriptionUpdate,
        caller: Caller,
    ) -> SubscriptionRead:
        await self._roles.ensure_admin(caller)
        async with self._session_factory() as session:
            async with session.begin():
                subscription = await session.scalar(
                    select(Subscription).where(
                        Subscription.id == subscription_id,
                        Subscription.tenant_id == caller.tenant_id,
                    )
                )
                if subscription is None:
                    raise NotFound("Subscription not found")
                for key, value in data.model_dump(exclude_unset=True).items():
                    if key in ("status", "plan", "seats") and value is None:
                        continue
                    setattr(subscription, key, getattr(value, "value", value))
            return SubscriptionRead.model_validate(subscription)
