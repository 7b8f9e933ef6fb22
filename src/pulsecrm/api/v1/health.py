"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. Readiness
also reports which optional schema features are available.
"""

from __future__ import annotations

import dataclasses

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from src.pulsecrm.config import get_settings
from src.pulsecrm.core.database import get_engine, ping_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies DB connectivity and reports schema capabilities.

    Returns 200 if the database answers, 503 otherwise.
    """
    checks: dict = {"database": "ok"}
    engine = getattr(request.app.state, "engine", None) or get_engine()
    try:
        await ping_db(engine)
    except (SQLAlchemyError, OSError) as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    services = getattr(request.app.state, "services", None)
    if checks["database"] == "ok" and services is not None:
        try:
            caps = await services.probe.get_schema_caps()
            checks["schema"] = dataclasses.asdict(caps)
        except SQLAlchemyError as e:
            checks["schema"] = "error"
            checks["schema_error"] = str(e)

    healthy = checks["database"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if healthy else "degraded", "checks": checks},
    )
