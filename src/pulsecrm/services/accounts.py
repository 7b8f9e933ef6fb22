"""Password-based registration and login.

Registration creates a tenant, its OWNER, and the default pipelines in one
transaction. Tokens carry ``sub``, ``tenant_id``, ``email`` and ``name``.
"""

from __future__ import annotations

import structlog
from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.capabilities import SchemaCapabilityProbe
from src.pulsecrm.core.database import new_id
from src.pulsecrm.core.errors import BadRequest
from src.pulsecrm.core.roles import Role, RoleResolver
from src.pulsecrm.core.security import create_access_token, hash_password, verify_password
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.models.tenant import Tenant, User
from src.pulsecrm.schemas.auth import LoginRequest, MeResponse, RegisterRequest, TokenResponse
from src.pulsecrm.services.bootstrap import seed_default_pipelines

logger = structlog.get_logger(__name__)


def issue_token(user_id: str, tenant_id: str, email: str, name: str | None) -> TokenResponse:
    token = create_access_token({
        "sub": user_id,
        "tenant_id": tenant_id,
        "email": email,
        "name": name,
    })
    return TokenResponse(access_token=token, tenant_id=tenant_id, user_id=user_id)


class AccountService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        probe: SchemaCapabilityProbe,
        roles: RoleResolver,
    ) -> None:
        self._session_factory = session_factory
        self._probe = probe
        self._roles = roles

    async def register(self, data: RegisterRequest) -> TokenResponse:
        """Create a workspace with its first user.

        Raises:
            BadRequest: The email is already registered.
        """
        email = data.email.lower()
        caps = await self._probe.get_schema_caps()
        tenant_id = new_id()
        user_id = new_id()

        async with self._session_factory() as session:
            async with session.begin():
                taken = await session.scalar(select(User.id).where(User.email == email))
                if taken is not None:
                    raise BadRequest("Email already registered")

                tenant = Tenant(id=tenant_id, name=data.tenant_name.strip())
                if data.crm_mode and caps.has_tenant_crm_settings:
                    tenant.crm_mode = data.crm_mode
                session.add(tenant)
                await session.flush()
                session.add(
                    User(
                        id=user_id,
                        tenant_id=tenant_id,
                        email=email,
                        name=data.name,
                        password_hash=hash_password(data.password),
                        role=Role.OWNER.value,
                    )
                )
                await session.flush()
                await seed_default_pipelines(session, tenant_id, data.crm_mode)

        logger.info("accounts.registered", tenant_id=tenant_id, user_id=user_id)
        return issue_token(user_id, tenant_id, email, data.name)

    async def login(self, data: LoginRequest) -> TokenResponse:
        email = data.email.lower()
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(User.id, User.tenant_id, User.email, User.name, User.password_hash).where(
                        User.email == email
                    )
                )
            ).first()

        if row is None or not row.password_hash or not verify_password(data.password, row.password_hash):
            logger.info("accounts.login_failed", email=email)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials",
            )
        return issue_token(row.id, row.tenant_id, row.email, row.name)

    async def me(self, caller: Caller) -> MeResponse:
        role = await self._roles.get_user_role(caller)
        return MeResponse(
            user_id=caller.user_id,
            tenant_id=caller.tenant_id,
            email=caller.email,
            name=caller.name,
            role=role.value,
        )
