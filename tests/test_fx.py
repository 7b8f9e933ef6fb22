"""Tests for the USD rate snapshot cache and currency conversion."""

from __future__ import annotations

import asyncio
import math

import httpx
import pytest

from src.pulsecrm.forecast.fx import FxRatesSnapshot, FxService, FxUnavailable, to_usd

SNAPSHOT = FxRatesSnapshot(
    provider="frankfurter",
    base="USD",
    date="2026-10-16",
    rates={"USD": 1.0, "EUR": 0.5, "MXN": 20.0, "BAD": 0.0, "NAN": math.nan},
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class CountingHandler:
    def __init__(self, payload: dict | None = None, status_code: int = 200, delay: float = 0.0) -> None:
        self.payload = payload or {"base": "USD", "date": "2026-10-16", "rates": {"EUR": 0.5}}
        self.status_code = status_code
        self.delay = delay
        self.calls = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return httpx.Response(self.status_code, json=self.payload)


def _service(handler, clock=None, ttl=60.0) -> FxService:
    return FxService(
        "https://fx.test/latest?from=USD",
        ttl_seconds=ttl,
        max_attempts=1,
        transport=httpx.MockTransport(handler),
        clock=clock or FakeClock(),
    )


# ── Conversion ───────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "amount,currency,expected",
    [
        (100.0, "USD", 100.0),
        (100.0, None, 100.0),
        (100.0, " eur ", 200.0),
        (100.0, "MXN", 5.0),
        (100.0, "JPY", None),
        (100.0, "BAD", None),
        (100.0, "NAN", None),
    ],
)
def test_to_usd(amount, currency, expected):
    assert to_usd(amount, currency, SNAPSHOT) == expected


# ── Snapshot cache ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_snapshot_parsed_and_usd_pinned():
    handler = CountingHandler({"base": "USD", "date": "2026-10-16", "rates": {"eur": 0.5, "USD": 3}})
    snapshot = await _service(handler).get_usd_rates()

    assert snapshot.provider == "frankfurter"
    assert snapshot.date == "2026-10-16"
    assert snapshot.rates == {"EUR": 0.5, "USD": 1.0}


@pytest.mark.asyncio
async def test_snapshot_cached_until_ttl_expires():
    handler = CountingHandler()
    clock = FakeClock()
    fx = _service(handler, clock=clock, ttl=60)

    first = await fx.get_usd_rates()
    clock.now = 59
    assert await fx.get_usd_rates() is first
    assert handler.calls == 1

    clock.now = 61
    await fx.get_usd_rates()
    assert handler.calls == 2


@pytest.mark.asyncio
async def test_concurrent_refreshes_share_one_fetch():
    handler = CountingHandler(delay=0.01)
    fx = _service(handler)

    snapshots = await asyncio.gather(*(fx.get_usd_rates() for _ in range(5)))

    assert handler.calls == 1
    assert all(s is snapshots[0] for s in snapshots)


@pytest.mark.asyncio
async def test_provider_error_raises_unavailable_and_is_not_cached():
    handler = CountingHandler(status_code=503)
    fx = _service(handler)

    with pytest.raises(FxUnavailable):
        await fx.get_usd_rates()

    handler.status_code = 200
    snapshot = await fx.get_usd_rates()
    assert snapshot.rates["EUR"] == 0.5
    assert handler.calls == 2


@pytest.mark.asyncio
async def test_expired_snapshot_is_not_served_on_failure():
    handler = CountingHandler()
    clock = FakeClock()
    fx = _service(handler, clock=clock, ttl=60)
    await fx.get_usd_rates()

    handler.status_code = 500
    clock.now = 120
    with pytest.raises(FxUnavailable):
        await fx.get_usd_rates()


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_refresh():
    handler = CountingHandler(delay=0.01)
    fx = _service(handler)

    first = asyncio.ensure_future(fx.get_usd_rates())
    second = asyncio.ensure_future(fx.get_usd_rates())
    await asyncio.sleep(0)
    first.cancel()

    snapshot = await second
    assert snapshot.rates["EUR"] == 0.5
    with pytest.raises(asyncio.CancelledError):
        await first

    assert await fx.get_usd_rates() is snapshot
    assert handler.calls == 1


@pytest.mark.asyncio
async def test_refresh_survives_cancellation_of_only_waiter():
    handler = CountingHandler(delay=0.01)
    fx = _service(handler)

    waiter = asyncio.ensure_future(fx.get_usd_rates())
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    snapshot = await fx.get_usd_rates()
    assert snapshot.rates["EUR"] == 0.5
    assert handler.calls == 1


# ── Malformed payloads ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_unusable_rates_are_dropped():
    handler = CountingHandler(
        {"base": "USD", "date": "2026-10-16", "rates": {"EUR": None, "MXN": "n/a", "CAD": 1.25, "JPY": -3, "X": True}}
    )
    snapshot = await _service(handler).get_usd_rates()

    assert snapshot.rates == {"CAD": 1.25, "USD": 1.0}
    assert to_usd(100.0, "EUR", snapshot) is None


@pytest.mark.parametrize("payload", [["not", "an", "object"], {"rates": ["EUR", 0.5]}, "rates"])
@pytest.mark.asyncio
async def test_non_object_payload_raises_unavailable(payload):
    fx = _service(lambda request: httpx.Response(200, json=payload))

    with pytest.raises(FxUnavailable):
        await fx.get_usd_rates()
