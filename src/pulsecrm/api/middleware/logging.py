"""Structured request logging.

``configure_structlog`` sets up JSON output in production and console output
elsewhere. ``LoggingMiddleware`` binds a request id (taken from the incoming
``X-Request-ID`` header or freshly generated) into structlog's contextvars, so
every service log line emitted while handling the request carries it, and
writes one ``request_completed`` line per request.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.pulsecrm.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
QUIET_PATHS = ("/health", "/metrics")


def configure_structlog() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(message)s")

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _caller_hint(request: Request) -> dict[str, str]:
    """Best-effort ``tenant_id``/``user_id`` from unverified token claims.

    Only used for log context; TenantAuthMiddleware does the real check.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return {}
    try:
        claims = jwt.get_unverified_claims(auth_header[7:])
    except JWTError:
        return {}
    user_id = claims.get("sub")
    if not user_id:
        return {}
    return {
        "user_id": str(user_id),
        "tenant_id": str(claims.get("tenant_id") or claims.get("tenantId") or user_id),
    }


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, **_caller_hint(request))

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            structlog.contextvars.clear_contextvars()
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        status_code = response.status_code
        if status_code >= 500:
            log = logger.error
        elif status_code >= 400:
            log = logger.warning
        elif request.url.path.startswith(QUIET_PATHS):
            log = logger.debug
        else:
            log = logger.info

        log(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        structlog.contextvars.clear_contextvars()
        return response
