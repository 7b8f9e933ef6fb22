"""Per-request role resolution within a tenant.

``users.role`` is itself optional schema on a lagging database. When the
role lookup fails because that column is missing, the resolver returns the
configured drift fallback (ROLE_DRIFT_FALLBACK) instead of locking every
user out mid-migration. Only the undefined-column error qualifies; every
other database error propagates.
"""

from __future__ import annotations

from enum import Enum

import structlog
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.pulsecrm.core.errors import Forbidden, NotFound
from src.pulsecrm.core.tenant import Caller
from src.pulsecrm.models.tenant import User

logger = structlog.get_logger(__name__)

UNDEFINED_COLUMN_SQLSTATE = "42703"


class Role(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


ADMIN_ROLES = frozenset({Role.OWNER, Role.ADMIN})


def is_undefined_column_error(exc: DBAPIError) -> bool:
    """True if the driver reports a missing column.

    asyncpg exposes the SQLSTATE as ``sqlstate``; psycopg as ``pgcode``.
    SQLite only reports it in the message.
    """
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == UNDEFINED_COLUMN_SQLSTATE:
        return True
    message = str(orig).lower()
    return "no such column" in message or (
        "column" in message and "does not exist" in message
    )


class RoleResolver:
    """Maps a caller to OWNER/ADMIN/MEMBER within their tenant."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        drift_fallback: Role = Role.OWNER,
    ) -> None:
        self._session_factory = session_factory
        self._drift_fallback = drift_fallback

    async def get_user_role(self, caller: Caller) -> Role:
        """Return the caller's role.

        Raises:
            NotFound: If no user row exists for (caller.user_id, caller.tenant_id).
        """
        stmt = select(User.role).where(
            User.id == caller.user_id,
            User.tenant_id == caller.tenant_id,
        )
        async with self._session_factory() as session:
            try:
                result = await session.execute(stmt)
            except DBAPIError as exc:
                if not is_undefined_column_error(exc):
                    raise
                logger.warning(
                    "roles.schema_drift_fallback",
                    tenant_id=caller.tenant_id,
                    user_id=caller.user_id,
                    fallback=self._drift_fallback.value,
                )
                return self._drift_fallback

            row = result.first()

        if row is None:
            raise NotFound("User not found")
        try:
            return Role(row.role)
        except ValueError:
            logger.warning("roles.unknown_role", user_id=caller.user_id, role=row.role)
            return Role.MEMBER

    async def ensure_admin(self, caller: Caller) -> Role:
        """Return the caller's role, or raise Forbidden unless OWNER/ADMIN."""
        role = await self.get_user_role(caller)
        if role not in ADMIN_ROLES:
            raise Forbidden("Admin access required")
        return role
