"""Caller context propagation via Python contextvars.

This module is the foundation of multi-tenant isolation. The Caller is set
by TenantAuthMiddleware at the start of each authenticated request and is
accessible anywhere in the call stack via get_current_caller(). Every
service query is scoped by ``caller.tenant_id``.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# ── Caller Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Caller:
    """Immutable identity of the authenticated caller for the current request."""

    user_id: str
    tenant_id: str
    email: str | None = None
    name: str | None = None
    tenant_name: str | None = None


_caller_context: contextvars.ContextVar[Caller] = contextvars.ContextVar("caller_context")


def get_current_caller() -> Caller:
    """Get the caller for the current request.

    Raises RuntimeError if no caller has been set (i.e., the call is not
    within an authenticated request).
    """
    try:
        return _caller_context.get()
    except LookupError:
        raise RuntimeError("No caller context set -- request is not authenticated")


def set_caller_context(caller: Caller) -> contextvars.Token[Caller]:
    """Set the caller for the current request. Returns a token for reset."""
    return _caller_context.set(caller)


def reset_caller_context(token: contextvars.Token[Caller]) -> None:
    _caller_context.reset(token)


def caller_from_claims(payload: dict[str, Any]) -> Caller | None:
    """Build a Caller from decoded JWT claims.

    Tokens minted by this service carry ``tenant_id`` directly. Externally
    issued tokens may use ``tenantId`` or nothing at all, in which case the
    subject doubles as a personal workspace id. Display names come from
    ``user_metadata`` when present.
    """
    user_id = payload.get("sub")
    if not user_id:
        return None

    metadata = payload.get("user_metadata") or {}
    tenant_id = payload.get("tenant_id") or payload.get("tenantId") or user_id
    return Caller(
        user_id=str(user_id),
        tenant_id=str(tenant_id),
        email=payload.get("email"),
        name=payload.get("name") or metadata.get("name") or metadata.get("full_name"),
        tenant_name=payload.get("tenant_name") or metadata.get("tenant_name"),
    )


# ── Paths that skip authentication ──────────────────────────────────────────

SKIP_AUTH_PATHS = (
    "/health",
    "/metrics",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/api/v1/auth/register",
    "/api/v1/auth/login",
    "/api/v1/fx",
)
