"""
Data Ingestion - Collector Toolkit.

============================================================
PURPOSE
============================================================
Per-source helpers that every collector composes:

- with_retry: rate limit + exponential retry + circuit breaker
- with_cache: cache-aside with a TTL (with_cache_status also
  reports hit or miss)
- make_data_point / make_delayed_data_point: build annotated points
- make_result: build the standard CollectorResult envelope

One toolkit is bound to one source name; the dependency
container hands it to the collector at construction time.

============================================================
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from core.clock import ClockProtocol, SystemClock
from data_ingestion.types import (
    CollectorResult,
    DegradationLabel,
    MarketDataPoint,
    to_float,
)
from market_calendar.models import DataQuality
from resilience.circuit_breaker import NO_FALLBACK, CircuitBreaker
from resilience.rate_limiter import RateLimiter
from resilience.retry import RetryExecutor
from storage.cache import CacheStore


logger = logging.getLogger(__name__)


class CollectorToolkit:
    """Resilience and data-shaping helpers bound to one source."""

    def __init__(
        self,
        source: str,
        breaker: CircuitBreaker,
        rate_limiter: RateLimiter,
        cache: CacheStore,
        clock: Optional[ClockProtocol] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        base_delay: float = 1.0,
    ):
        self._source = source
        self._breaker = breaker
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._clock = clock or SystemClock()
        self._sleep = sleep or asyncio.sleep
        self._base_delay = base_delay

    @property
    def source(self) -> str:
        return self._source

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def clock(self) -> ClockProtocol:
        return self._clock

    # ============================================================
    # RESILIENCE
    # ============================================================

    async def with_retry(
        self,
        fn: Callable[[], Awaitable[Any]],
        max_retries: int = 3,
        fallback: Any = NO_FALLBACK,
    ) -> Any:
        """Run fn with rate limiting and retries, inside the source's breaker."""
        async def rate_limited() -> Any:
            await self._rate_limiter.acquire(self._source)
            return await fn()

        executor = RetryExecutor(
            self._breaker,
            max_retries=max_retries,
            base_delay=self._base_delay,
            sleep=self._sleep,
        )
        return await executor.execute(rate_limited, fallback=fallback)

    async def with_cache(
        self,
        key: str,
        ttl: float,
        fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return a cached value younger than ttl seconds, else fetch and store it."""
        data, _ = await self.with_cache_status(key, ttl, fn)
        return data

    async def with_cache_status(
        self,
        key: str,
        ttl: float,
        fn: Callable[[], Awaitable[Any]],
    ) -> Tuple[Any, bool]:
        """Same as with_cache; also reports whether the value was a cache hit."""
        cache_key = self._cache_key(key)
        cached = self._cache.get(cache_key, ttl)
        if cached is not None:
            return cached, True

        data = await fn()
        if data:
            self._cache.set(cache_key, data)
        return data, False

    def get_stale(self, key: str) -> Optional[Tuple[Any, float]]:
        """Last cached value for key regardless of age: (data, cached_at)."""
        return self._cache.get_stale(self._cache_key(key))

    def _cache_key(self, key: str) -> str:
        return f"{self._source}-{key}"

    # ============================================================
    # DATA SHAPING
    # ============================================================

    def make_data_point(
        self,
        value: Any,
        change: Any = None,
        change_pct: Any = None,
        source: Optional[str] = None,
        verified: bool = False,
        degraded: DegradationLabel = DegradationLabel.NONE,
        fetched_at: Optional[str] = None,
    ) -> MarketDataPoint:
        """Build a point; a missing or non-numeric value becomes NA."""
        number = to_float(value)
        if number is None:
            degraded = DegradationLabel.NA
            verified = False

        return MarketDataPoint(
            value=number,
            change=to_float(change),
            change_pct=to_float(change_pct),
            source=source or self._source,
            fetched_at=fetched_at or self._clock.format_iso(),
            verified=verified and degraded == DegradationLabel.NONE,
            degraded=degraded,
        )

    def make_delayed_data_point(
        self,
        value: Any,
        change: Any = None,
        change_pct: Any = None,
        source: Optional[str] = None,
        fetched_at: Optional[str] = None,
    ) -> MarketDataPoint:
        return self.make_data_point(
            value,
            change=change,
            change_pct=change_pct,
            source=source,
            degraded=DegradationLabel.DELAYED,
            fetched_at=fetched_at,
        )

    def make_result(
        self,
        points: Optional[Dict[str, MarketDataPoint]] = None,
        payload: Optional[Dict[str, Any]] = None,
        from_cache: bool = False,
        quality: DataQuality = DataQuality.OK,
        reason: Optional[str] = None,
    ) -> CollectorResult:
        return CollectorResult(
            source=self._source,
            collected_at=self._clock.format_iso(),
            points=dict(points or {}),
            payload=dict(payload or {}),
            from_cache=from_cache,
            quality=quality,
            reason=reason,
        )

    def status(self) -> Dict[str, Any]:
        rate_status = None
        if self._source in self._rate_limiter:
            rate_status = self._rate_limiter.status().get(self._source)
        return {
            "source": self._source,
            "circuitBreaker": self._breaker.status(),
            "rateLimit": rate_status,
        }
