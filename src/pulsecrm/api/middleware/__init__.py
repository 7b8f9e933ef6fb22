"""API middleware package."""

from src.pulsecrm.api.middleware.logging import LoggingMiddleware
from src.pulsecrm.api.middleware.tenant import TenantAuthMiddleware

__all__ = ["LoggingMiddleware", "TenantAuthMiddleware"]
