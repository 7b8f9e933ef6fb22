"""Tests for password hashing, token verification, and claim mapping."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import HTTPException
from jose import jwk, jwt

from src.pulsecrm.core.security import JwksCache, TokenVerifier, hash_password, verify_password
from src.pulsecrm.core.tenant import caller_from_claims

SECRET = "unit-test-secret"


def _hs_token(claims: dict, secret: str = SECRET, expires_in: int = 300) -> str:
    payload = {"exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in), **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


def _rsa_key(kid: str) -> tuple[str, dict]:
    private = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = private.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    public_jwk = jwk.construct(public_pem, "RS256").to_dict()
    public_jwk["kid"] = kid
    return private_pem, public_jwk


class FakeJwksFetcher:
    def __init__(self, *documents: dict) -> None:
        self.documents = list(documents)
        self.calls = 0

    async def __call__(self, url: str) -> dict:
        self.calls += 1
        return self.documents[min(self.calls, len(self.documents)) - 1]


# ── Passwords ────────────────────────────────────────────────────────────────


def test_password_hash_roundtrip():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)


# ── HMAC tokens ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_valid_hs_token():
    verifier = TokenVerifier(secret_key=SECRET)
    claims = await verifier.verify(_hs_token({"sub": "u1", "tenant_id": "t1"}))
    assert claims["sub"] == "u1"
    assert claims["tenant_id"] == "t1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "token",
    [
        "not-a-jwt",
        _hs_token({"sub": "u1"}, secret="other-secret"),
        _hs_token({"sub": "u1"}, expires_in=-10),
        _hs_token({"sub": "u1", "type": "refresh"}),
        _hs_token({"tenant_id": "t1"}),
    ],
    ids=["malformed", "wrong-secret", "expired", "refresh-type", "no-subject"],
)
async def test_invalid_hs_tokens_rejected(token):
    verifier = TokenVerifier(secret_key=SECRET)
    with pytest.raises(HTTPException) as exc_info:
        await verifier.verify(token)
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_audience_enforced_when_configured():
    verifier = TokenVerifier(secret_key=SECRET, audience="authenticated")
    assert (await verifier.verify(_hs_token({"sub": "u1", "aud": "authenticated"})))["sub"] == "u1"
    with pytest.raises(HTTPException):
        await verifier.verify(_hs_token({"sub": "u1", "aud": "someone-else"}))


@pytest.mark.asyncio
async def test_asymmetric_token_without_jwks_rejected():
    private_pem, _ = _rsa_key("k1")
    token = jwt.encode({"sub": "u1"}, private_pem, algorithm="RS256", headers={"kid": "k1"})
    with pytest.raises(HTTPException):
        await TokenVerifier(secret_key=SECRET).verify(token)


# ── JWKS tokens ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_rs256_token_verified_against_jwks():
    private_pem, public_jwk = _rsa_key("k1")
    fetcher = FakeJwksFetcher({"keys": [public_jwk]})
    verifier = TokenVerifier(
        secret_key=SECRET,
        jwks=JwksCache("https://idp.example.com/jwks", ttl_seconds=3600, fetcher=fetcher),
    )
    token = jwt.encode(
        {"sub": "ext-user", "email": "ext@example.com", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        private_pem,
        algorithm="RS256",
        headers={"kid": "k1"},
    )

    assert (await verifier.verify(token))["sub"] == "ext-user"
    assert (await verifier.verify(token))["sub"] == "ext-user"
    assert fetcher.calls == 1


@pytest.mark.asyncio
async def test_unknown_kid_triggers_one_refetch():
    _, old_jwk = _rsa_key("old")
    new_private, new_jwk = _rsa_key("new")
    fetcher = FakeJwksFetcher({"keys": [old_jwk]}, {"keys": [old_jwk, new_jwk]})
    cache = JwksCache("https://idp.example.com/jwks", ttl_seconds=3600, fetcher=fetcher)
    verifier = TokenVerifier(secret_key=SECRET, jwks=cache)

    assert await cache.get_key("old") is not None
    token = jwt.encode({"sub": "u1"}, new_private, algorithm="RS256", headers={"kid": "new"})

    assert (await verifier.verify(token))["sub"] == "u1"
    assert fetcher.calls == 2

    assert await cache.get_key("missing") is None
    assert fetcher.calls == 3


@pytest.mark.asyncio
async def test_jwks_fetch_failure_is_unauthorized():
    private_pem, _ = _rsa_key("k1")

    async def failing_fetcher(url: str) -> dict:
        raise httpx.ConnectError("idp down")

    verifier = TokenVerifier(
        secret_key=SECRET,
        jwks=JwksCache("https://idp.example.com/jwks", ttl_seconds=3600, fetcher=failing_fetcher),
    )
    token = jwt.encode({"sub": "u1"}, private_pem, algorithm="RS256", headers={"kid": "k1"})
    with pytest.raises(HTTPException) as exc_info:
        await verifier.verify(token)
    assert exc_info.value.status_code == 401


# ── Claim mapping ────────────────────────────────────────────────────────────


def test_caller_from_service_claims():
    caller = caller_from_claims({"sub": "u1", "tenant_id": "t1", "email": "a@example.com", "name": "Ann"})
    assert (caller.user_id, caller.tenant_id, caller.name) == ("u1", "t1", "Ann")


def test_caller_from_external_claims():
    caller = caller_from_claims(
        {"sub": "u1", "tenantId": "t9", "user_metadata": {"full_name": "Ann Lee", "tenant_name": "Lee Co"}}
    )
    assert caller.tenant_id == "t9"
    assert caller.name == "Ann Lee"
    assert caller.tenant_name == "Lee Co"


def test_subject_doubles_as_tenant_when_absent():
    assert caller_from_claims({"sub": "solo"}).tenant_id == "solo"
    assert caller_from_claims({"email": "x@example.com"}) is None
