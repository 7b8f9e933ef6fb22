"""FastAPI dependency injection for the caller identity and services.

These dependencies are used in endpoint function signatures to inject the
authenticated Caller (set by TenantAuthMiddleware) and the service container.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.pulsecrm.core.tenant import Caller, get_current_caller
from src.pulsecrm.services.container import ServiceContainer


async def get_caller() -> Caller:
    """Get the authenticated caller for the current request.

    Raises:
        HTTPException(401): If the middleware did not authenticate the request.
    """
    try:
        return get_current_caller()
    except RuntimeError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services not initialized",
        )
    return services
