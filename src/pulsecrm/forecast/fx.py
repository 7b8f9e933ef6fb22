"""USD exchange-rate snapshot with a process-local TTL cache.

Rates come from the Frankfurter API (``/latest?from=USD``) and are expressed
as units of currency per 1 USD, so converting to USD is ``amount / rate``.

The snapshot is cached for FX_RATES_TTL_SECONDS (12h by default). When the
cache is cold or expired, concurrent callers await one shared refresh task
instead of each hitting the provider.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.pulsecrm.core.monitoring import fx_fetch_total

logger = structlog.get_logger(__name__)

USER_AGENT = "pulsecrm-api/1.0 (+fx)"
RETRYABLE = (httpx.HTTPStatusError, httpx.ConnectError, httpx.TimeoutException)


class FxUnavailable(Exception):
    """The provider could not produce a usable snapshot."""


@dataclass(frozen=True)
class FxRatesSnapshot:
    provider: str
    base: str
    date: str | None
    rates: dict[str, float] = field(default_factory=dict)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def to_usd(amount: float, currency: str | None, snapshot: FxRatesSnapshot) -> float | None:
    """Convert ``amount`` in ``currency`` to USD.

    Returns None ("cannot convert") when the rate is missing, non-finite,
    or not positive. Callers decide whether to exclude the amount or keep
    its face value.
    """
    code = (currency or "USD").strip().upper()
    if code == "USD":
        return amount
    rate = snapshot.rates.get(code)
    if rate is None:
        return None
    try:
        rate = float(rate)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(rate) or rate <= 0:
        return None
    return amount / rate


class FxService:
    """Fetches and caches the USD rate snapshot.

    Args:
        url: Provider endpoint returning ``{"base", "date", "rates"}``.
        ttl_seconds: Cache lifetime of a successful snapshot.
        timeout: Per-request HTTP timeout in seconds.
        max_attempts: Fetch attempts before giving up (tenacity).
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    PROVIDER = "frankfurter"

    def __init__(
        self,
        url: str,
        ttl_seconds: float = 12 * 60 * 60,
        timeout: float = 10.0,
        max_attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = url
        self._ttl = ttl_seconds
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._transport = transport
        self._clock = clock
        self._cache: FxRatesSnapshot | None = None
        self._cached_at: float | None = None
        self._in_flight: asyncio.Task[FxRatesSnapshot] | None = None

    def to_usd(self, amount: float, currency: str | None, snapshot: FxRatesSnapshot) -> float | None:
        return to_usd(amount, currency, snapshot)

    async def get_usd_rates(self) -> FxRatesSnapshot:
        """Return the cached snapshot, refreshing it when stale.

        Raises:
            FxUnavailable: The refresh failed (no stale snapshot is served).
        """
        if self._cache is not None and self._cached_at is not None:
            if self._clock() - self._cached_at < self._ttl:
                return self._cache

        task = self._in_flight
        if task is None:
            task = asyncio.ensure_future(self._refresh())
            task.add_done_callback(self._clear_in_flight)
            self._in_flight = task
        # A cancelled waiter must not cancel the refresh other callers share
        return await asyncio.shield(task)

    def _clear_in_flight(self, task: asyncio.Task[FxRatesSnapshot]) -> None:
        if self._in_flight is task:
            self._in_flight = None
        if not task.cancelled():
            # Mark the failure retrieved when every waiter has gone away
            task.exception()

    async def _refresh(self) -> FxRatesSnapshot:
        try:
            snapshot = await self._fetch()
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as exc:
            fx_fetch_total.labels(status="error").inc()
            logger.warning("fx.refresh_failed", url=self._url, error=str(exc))
            raise FxUnavailable(str(exc)) from exc

        fx_fetch_total.labels(status="success").inc()
        self._cache = snapshot
        self._cached_at = self._clock()
        logger.info("fx.rates_refreshed", date=snapshot.date, currencies=len(snapshot.rates))
        return snapshot

    async def _fetch(self) -> FxRatesSnapshot:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(RETRYABLE),
            reraise=True,
        ):
            with attempt:
                async with httpx.AsyncClient(
                    timeout=self._timeout,
                    transport=self._transport,
                    headers={"user-agent": USER_AGENT, "accept": "application/json"},
                ) as client:
                    response = await client.get(self._url)
                    response.raise_for_status()
                    payload = response.json()

        return parse_snapshot(payload, self.PROVIDER)


def parse_snapshot(payload: object, provider: str) -> FxRatesSnapshot:
    """Build a snapshot from a provider payload.

    Rates that are not positive finite numbers are dropped, so ``to_usd``
    reports those currencies as unconvertible. USD is always pinned to 1.0.

    Raises:
        ValueError: The payload or its ``rates`` member is not an object.
    """
    if not isinstance(payload, dict):
        raise ValueError("FX payload is not a JSON object")
    raw_rates = payload.get("rates") or {}
    if not isinstance(raw_rates, dict):
        raise ValueError("FX rates are not a JSON object")

    rates: dict[str, float] = {}
    for code, raw in raw_rates.items():
        if isinstance(raw, bool):
            continue
        try:
            rate = float(raw)
        except (TypeError, ValueError):
            continue
        if math.isfinite(rate) and rate > 0:
            rates[str(code).upper()] = rate
    rates["USD"] = 1.0

    date = payload.get("date")
    return FxRatesSnapshot(
        provider=provider,
        base=str(payload.get("base") or "USD"),
        date=str(date) if date is not None else None,
        rates=rates,
    )
