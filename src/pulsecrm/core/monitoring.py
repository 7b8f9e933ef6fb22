"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- fx_fetch_total / assistant_requests_total: outbound call counters
- deal_stage_moves_total: pipeline movement by target stage status
- schema_caps_loads_total / schema_upgrade_steps_total: schema drift visibility
- init_sentry(): Initialize Sentry with tenant-aware before_send callback
- get_metrics_response(): Handler body for /metrics
"""

from __future__ import annotations

import time

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code", "tenant_id"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "tenant_id"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Outbound Calls ───────────────────────────────────────────────────────────

fx_fetch_total = Counter(
    "fx_fetch_total",
    "FX rate snapshot fetches",
    ["status"],
)

assistant_requests_total = Counter(
    "assistant_requests_total",
    "AI text tool requests by outcome",
    ["tool", "outcome"],
)

# ── Domain ───────────────────────────────────────────────────────────────────

deal_stage_moves_total = Counter(
    "deal_stage_moves_total",
    "Deal stage transitions by target stage status",
    ["to_status"],
)

schema_caps_loads_total = Counter(
    "schema_caps_loads_total",
    "Catalog reads performed by the schema capability probe",
)

schema_upgrade_steps_total = Counter(
    "schema_upgrade_steps_total",
    "Schema upgrader steps by outcome",
    ["step", "outcome"],
)


def _route_template(request: Request) -> str:
    """Route path pattern (``/api/v1/deals/{deal_id}``) to bound label cardinality."""
    route = request.scope.get("route")
    # Unrouted paths (404s, scanners) share one label
    return getattr(route, "path", None) or "unmatched"


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        tenant_id = getattr(request.state, "tenant_id", None) or "unknown"
        endpoint = _route_template(request)

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
            tenant_id=tenant_id,
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
            tenant_id=tenant_id,
        ).observe(duration)

        return response


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with tenant-aware event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Add tenant and user context to Sentry events."""
        from src.pulsecrm.core.tenant import get_current_caller

        try:
            caller = get_current_caller()
        except RuntimeError:
            return event
        event.setdefault("tags", {})
        event["tags"]["tenant_id"] = caller.tenant_id
        event["tags"]["user_id"] = caller.user_id
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
