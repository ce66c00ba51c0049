"""
Resilience Module - Rate Limiter.

============================================================
RESPONSIBILITY
============================================================
Keeps each external source under its request quota.

- One token bucket per source (requests per minute)
- acquire() waits until a token is available
- Unknown sources get a conservative default bucket

============================================================
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional


logger = logging.getLogger(__name__)


DEFAULT_REQ_PER_MIN = 10
MIN_WAIT_SECONDS = 0.1


@dataclass
class RateLimitConfig:
    """Quota for one source."""

    req_per_min: int = DEFAULT_REQ_PER_MIN
    max_tokens: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateLimitConfig":
        max_tokens = data.get("max_tokens")
        return cls(
            req_per_min=int(data.get("req_per_min", DEFAULT_REQ_PER_MIN)),
            max_tokens=int(max_tokens) if max_tokens is not None else None,
        )


class TokenBucket:
    """
    Token bucket refilled one token per 60/req_per_min seconds.

    Starts full so a burst of max_tokens calls goes through immediately.
    """

    def __init__(
        self,
        name: str,
        config: Optional[RateLimitConfig] = None,
        time_fn: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        config = config or RateLimitConfig()
        if config.req_per_min < 1:
            raise ValueError(f"req_per_min must be >= 1 for {name}")

        self.name = name
        self.req_per_min = config.req_per_min
        self.max_tokens = config.max_tokens or config.req_per_min
        self.refill_interval = 60.0 / config.req_per_min

        self._time = time_fn or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._tokens = float(self.max_tokens)
        self._last_refill = self._time()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._time()
        elapsed = now - self._last_refill
        tokens_to_add = int(elapsed // self.refill_interval)

        if tokens_to_add > 0:
            self._tokens = min(self.max_tokens, self._tokens + tokens_to_add)
            self._last_refill = now - (elapsed % self.refill_interval)

    async def acquire(self) -> float:
        """Take one token, waiting if needed. Returns seconds waited."""
        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return waited

                wait = self.refill_interval - (self._time() - self._last_refill)
                wait = max(wait, MIN_WAIT_SECONDS)
                logger.debug(f"[RateLimiter:{self.name}] waiting {wait:.2f}s for token")
                await self._sleep(wait)
                waited += wait

    @property
    def tokens(self) -> int:
        self._refill()
        return int(self._tokens)

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tokens": self.tokens,
            "maxTokens": self.max_tokens,
            "reqPerMin": self.req_per_min,
        }


class RateLimiter:
    """Per-source token buckets."""

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        time_fn: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._time = time_fn
        self._sleep = sleep
        self._buckets: Dict[str, TokenBucket] = {}
        for name, config in (limits or {}).items():
            self.register(name, config)

    def register(self, name: str, config: Optional[RateLimitConfig] = None) -> TokenBucket:
        if name not in self._buckets:
            self._buckets[name] = TokenBucket(
                name, config, time_fn=self._time, sleep=self._sleep
            )
        return self._buckets[name]

    async def acquire(self, name: str) -> float:
        """Wait for a token of the named source (auto-registers unknown sources)."""
        bucket = self._buckets.get(name)
        if bucket is None:
            bucket = self.register(name, RateLimitConfig(req_per_min=DEFAULT_REQ_PER_MIN))
        return await bucket.acquire()

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {name: bucket.status() for name, bucket in self._buckets.items()}

    def __contains__(self, name: str) -> bool:
        return name in self._buckets
