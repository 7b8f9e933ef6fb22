"""JWT authentication and password hashing.

Provides the core security primitives used by auth endpoints and the
authentication middleware.

Two token families are accepted and told apart by the token header:
- HS256/384/512 tokens signed with JWT_SECRET_KEY (minted by /auth endpoints)
- RS/ES tokens from an external identity provider, verified against the
  provider's JWKS document (JWKS_URL), matched by ``kid``

Uses bcrypt directly (not passlib) for Python 3.13 compatibility.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Awaitable, Callable

import bcrypt
import httpx
from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.pulsecrm.config import get_settings

logger = logging.getLogger(__name__)

HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")
ASYMMETRIC_ALGORITHMS = ("RS256", "RS384", "RS512", "ES256", "ES384", "ES512")

# ── Password Hashing ──────────────────────────────────────────────────────────


def hash_password(password: str) -> str:
    """Hash a plaintext password using bcrypt."""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a plaintext password against its bcrypt hash."""
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


# ── JWT Token Creation ────────────────────────────────────────────────────────


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token with tenant-scoped claims.

    The data dict should contain at minimum:
    - sub: user_id (str)
    - tenant_id: tenant id (str)
    """
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "iat": now,
        "type": "access",
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ── JWKS ──────────────────────────────────────────────────────────────────────

JwksFetcher = Callable[[str], Awaitable[dict[str, Any]]]


async def _fetch_jwks(url: str) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.json()


class JwksCache:
    """Process-local cache of a JWKS document, keyed by ``kid``.

    A key miss forces one refetch so that provider key rotation is picked up
    before the cache window expires.
    """

    def __init__(
        self,
        url: str,
        ttl_seconds: float,
        fetcher: JwksFetcher = _fetch_jwks,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = url
        self._ttl = ttl_seconds
        self._fetcher = fetcher
        self._clock = clock
        self._keys: dict[str, dict[str, Any]] = {}
        self._fetched_at: float | None = None
        self._lock = asyncio.Lock()

    async def get_key(self, kid: str | None) -> dict[str, Any] | None:
        refreshed = False
        if self._stale():
            await self._refresh()
            refreshed = True
        key = self._lookup(kid)
        if key is None and not refreshed:
            await self._refresh()
            key = self._lookup(kid)
        return key

    def _lookup(self, kid: str | None) -> dict[str, Any] | None:
        if kid is None:
            # Single-key documents are common for small providers
            return next(iter(self._keys.values())) if len(self._keys) == 1 else None
        return self._keys.get(kid)

    def _stale(self) -> bool:
        if self._fetched_at is None:
            return True
        return self._clock() - self._fetched_at >= self._ttl

    async def _refresh(self) -> None:
        async with self._lock:
            document = await self._fetcher(self._url)
            self._keys = {
                key.get("kid", str(index)): key
                for index, key in enumerate(document.get("keys", []))
            }
            self._fetched_at = self._clock()
            logger.info("JWKS refreshed from %s (%d keys)", self._url, len(self._keys))


# ── JWT Token Verification ────────────────────────────────────────────────────


class TokenVerifier:
    """Decode and validate bearer tokens, auto-detecting the signing scheme."""

    def __init__(
        self,
        secret_key: str,
        audience: str | None = None,
        jwks: JwksCache | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._audience = audience or None
        self._jwks = jwks

    async def verify(self, token: str) -> dict[str, Any]:
        """Return the decoded claims.

        Raises:
            HTTPException(401): If the token is malformed, expired, signed with
                an unknown key, or uses an algorithm that is not configured.
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            raise credentials_exception

        algorithm = header.get("alg")
        if algorithm in HMAC_ALGORITHMS:
            key: Any = self._secret_key
        elif algorithm in ASYMMETRIC_ALGORITHMS and self._jwks is not None:
            try:
                key = await self._jwks.get_key(header.get("kid"))
            except httpx.HTTPError as exc:
                logger.warning("JWKS fetch failed: %s", exc)
                raise credentials_exception
            if key is None:
                raise credentials_exception
        else:
            raise credentials_exception

        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[algorithm],
                audience=self._audience,
                options={"verify_aud": self._audience is not None},
            )
        except JWTError:
            raise credentials_exception

        if payload.get("type", "access") != "access" or not payload.get("sub"):
            raise credentials_exception
        return payload


@lru_cache
def get_token_verifier() -> TokenVerifier:
    """Singleton verifier built from settings."""
    settings = get_settings()
    jwks = (
        JwksCache(settings.JWKS_URL, ttl_seconds=settings.JWKS_CACHE_SECONDS)
        if settings.JWKS_URL
        else None
    )
    return TokenVerifier(
        secret_key=settings.JWT_SECRET_KEY,
        audience=settings.JWT_AUDIENCE,
        jwks=jwks,
    )
