"""FastAPI application factory.

Creates the app with auth middleware, logging middleware, metrics middleware,
CORS, Sentry, lifespan events for service wiring and the schema upgrade, and
the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.pulsecrm.config import get_settings
from src.pulsecrm.core.capabilities import PostgresSchemaCatalog
from src.pulsecrm.core.database import close_db, get_engine, get_session_factory
from src.pulsecrm.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.pulsecrm.core.schema_upgrader import SchemaUpgrader
from src.pulsecrm.api.middleware.tenant import TenantAuthMiddleware
from src.pulsecrm.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.pulsecrm.api.v1.router import router as v1_router
from src.pulsecrm.services.container import build_services


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire services, upgrade schema, init Sentry."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    engine = get_engine()
    app.state.engine = engine
    services = build_services(get_session_factory(), settings, PostgresSchemaCatalog(engine))
    app.state.services = services

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # Failure-tolerant: the API serves degraded features until the next run
    if settings.RUN_SCHEMA_UPGRADER:
        try:
            report = await SchemaUpgrader(engine, probe=services.probe).run()
            log.info("startup.schema_upgrade_done", ok=report.ok, failed=report.failed)
        except Exception:
            log.warning("startup.schema_upgrade_failed", exc_info=True)

    yield

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="PulseCRM API",
        version="0.1.0",
        description="Multi-tenant CRM: pipelines, deals, forecasting, and workspace admin",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Auth middleware (inner -- resolves the caller from the bearer token)
    app.add_middleware(TenantAuthMiddleware)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
