"""
Resilience Module - Retry Executor.

Exponential-backoff retry loop that runs INSIDE a circuit breaker:
the whole loop counts as one breaker call, so a source that needs
three attempts to fail registers a single breaker failure.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from resilience.circuit_breaker import NO_FALLBACK, CircuitBreaker


logger = logging.getLogger(__name__)


SleepFn = Callable[[float], Awaitable[None]]


class RetryExecutor:
    """
    Retry with exponential backoff under breaker protection.

    Attempt i (0-indexed) that fails is followed by a sleep of
    base_delay * 2**i before the next attempt. No sleep follows the
    final attempt.
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: Optional[SleepFn] = None,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._breaker = breaker
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._sleep = sleep or asyncio.sleep

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given 0-indexed failed attempt."""
        return self._base_delay * (2 ** attempt)

    async def execute(
        self,
        fn: Callable[[], Awaitable[Any]],
        fallback: Any = NO_FALLBACK,
    ) -> Any:
        """Run fn with retries; breaker rejection or final failure yields fallback or raises."""
        return await self._breaker.execute(
            lambda: self._attempt_loop(fn),
            fallback=fallback,
        )

    async def _attempt_loop(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                return await fn()
            except Exception as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    delay = self.backoff_delay(attempt)
                    logger.warning(
                        f"[{self._breaker.name}] attempt {attempt + 1}/{self._max_retries} "
                        f"failed: {e}. Retrying in {delay:.1f}s"
                    )
                    await self._sleep(delay)
                else:
                    logger.error(
                        f"[{self._breaker.name}] all {self._max_retries} attempts failed: {e}"
                    )

        raise last_error
