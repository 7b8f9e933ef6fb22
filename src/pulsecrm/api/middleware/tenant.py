"""Bearer-token authentication middleware.

Verifies the Authorization header, builds the Caller from the token claims,
and sets it in contextvars for the request scope. The caller's tenant id is
also exposed on ``request.state`` for metrics labelling.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.pulsecrm.core.security import TokenVerifier, get_token_verifier
from src.pulsecrm.core.tenant import (
    SKIP_AUTH_PATHS,
    caller_from_claims,
    reset_caller_context,
    set_caller_context,
)

logger = logging.getLogger(__name__)


class TenantAuthMiddleware(BaseHTTPMiddleware):
    """Middleware that authenticates the caller from a bearer JWT.

    Paths in SKIP_AUTH_PATHS and CORS preflight requests pass through
    unauthenticated. Any other request without a valid token gets a 401.
    """

    def __init__(self, app, verifier: TokenVerifier | None = None):
        super().__init__(app)
        self._verifier = verifier

    def _get_verifier(self, request: Request) -> TokenVerifier:
        return self._verifier or getattr(request.app.state, "token_verifier", None) or get_token_verifier()

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if request.method == "OPTIONS" or any(path.startswith(skip) for skip in SKIP_AUTH_PATHS):
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return _unauthorized("Not authenticated")

        try:
            payload = await self._get_verifier(request).verify(auth_header[7:])
        except HTTPException as exc:
            return _unauthorized(exc.detail)

        caller = caller_from_claims(payload)
        if caller is None:
            return _unauthorized("Token has no subject")

        request.state.tenant_id = caller.tenant_id
        token = set_caller_context(caller)
        try:
            return await call_next(request)
        finally:
            reset_caller_context(token)


def _unauthorized(detail: str) -> JSONResponse:
    logger.debug("Rejected request: %s", detail)
    return JSONResponse(
        status_code=401,
        content={"detail": detail},
        headers={"WWW-Authenticate": "Bearer"},
    )
