"""
Tests for the retry executor.
"""

import pytest
from unittest.mock import AsyncMock

from resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from resilience.retry import RetryExecutor


@pytest.fixture
def breaker(mock_clock):
    return CircuitBreaker(
        "yahoo",
        config=CircuitBreakerConfig(failure_threshold=2),
        clock=mock_clock,
    )


class TestRetryExecutor:

    @pytest.mark.asyncio
    async def test_first_attempt_success_does_not_sleep(self, breaker, no_sleep):
        executor = RetryExecutor(breaker, max_retries=3, base_delay=1.0, sleep=no_sleep)
        fn = AsyncMock(return_value=42)

        assert await executor.execute(fn) == 42
        assert no_sleep.calls == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, breaker, no_sleep):
        executor = RetryExecutor(breaker, max_retries=3, base_delay=1.0, sleep=no_sleep)
        fn = AsyncMock(side_effect=[RuntimeError("503"), RuntimeError("503"), "quotes"])

        assert await executor.execute(fn) == "quotes"
        assert fn.await_count == 3
        assert no_sleep.calls == [1.0, 2.0]
        assert breaker.snapshot().consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self, breaker, no_sleep):
        executor = RetryExecutor(breaker, max_retries=3, base_delay=0.5, sleep=no_sleep)
        fn = AsyncMock(side_effect=[ValueError("a"), ValueError("b"), ValueError("c")])

        with pytest.raises(ValueError, match="c"):
            await executor.execute(fn)

        assert no_sleep.calls == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_whole_loop_counts_as_one_breaker_failure(self, breaker, no_sleep):
        executor = RetryExecutor(breaker, max_retries=3, sleep=no_sleep)
        fn = AsyncMock(side_effect=RuntimeError("down"))

        await executor.execute(fn, fallback=None)

        assert fn.await_count == 3
        assert breaker.snapshot().consecutive_failures == 1
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_open_breaker_skips_attempts(self, breaker, no_sleep):
        executor = RetryExecutor(breaker, max_retries=2, sleep=no_sleep)
        failing = AsyncMock(side_effect=RuntimeError("down"))
        await executor.execute(failing, fallback=None)
        await executor.execute(failing, fallback=None)
        assert breaker.state == CircuitState.OPEN

        fn = AsyncMock(return_value="never")
        result = await executor.execute(fn, fallback="cached")

        assert result == "cached"
        fn.assert_not_awaited()

    def test_backoff_delay_doubles(self, breaker):
        executor = RetryExecutor(breaker, base_delay=2.0)

        assert [executor.backoff_delay(i) for i in range(3)] == [2.0, 4.0, 8.0]

    def test_max_retries_must_be_positive(self, breaker):
        with pytest.raises(ValueError):
            RetryExecutor(breaker, max_retries=0)
