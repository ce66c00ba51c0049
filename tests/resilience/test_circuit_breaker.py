"""
Tests for the circuit breaker and its registry.
"""

import pytest
from unittest.mock import AsyncMock

from core.exceptions import CircuitOpenError, ConfigurationError
from resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerState,
    CircuitState,
)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def breaker(mock_clock):
    config = CircuitBreakerConfig(failure_threshold=3, success_threshold=2, timeout_seconds=60.0)
    return CircuitBreaker("fmp", config=config, clock=mock_clock)


def failing(message: str = "boom"):
    return AsyncMock(side_effect=RuntimeError(message))


# ============================================================
# STATE MACHINE
# ============================================================

class TestCircuitBreakerStates:
    """CLOSED -> OPEN -> HALF_OPEN -> CLOSED."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self, breaker):
        fn = AsyncMock(return_value={"SP500": 5200})

        result = await breaker.execute(fn)

        assert result == {"SP500": 5200}
        assert breaker.state == CircuitState.CLOSED
        fn.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_short_circuits(self, breaker):
        fn = failing()

        for _ in range(3):
            result = await breaker.execute(fn, fallback="fallback")
            assert result == "fallback"

        assert breaker.state == CircuitState.OPEN
        assert fn.await_count == 3

        result = await breaker.execute(fn, fallback="fallback")

        assert result == "fallback"
        assert fn.await_count == 3
        assert breaker.stats.total_rejections == 1

    @pytest.mark.asyncio
    async def test_rejection_without_fallback_raises(self, breaker):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.execute(failing())

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(AsyncMock(return_value=1))

        assert exc_info.value.source == "fmp"
        assert exc_info.value.retry_in == pytest.approx(60.0)

    @pytest.mark.asyncio
    async def test_half_open_after_timeout_then_closes(self, breaker, mock_clock):
        for _ in range(3):
            await breaker.execute(failing(), fallback=None)
        assert breaker.state == CircuitState.OPEN

        mock_clock.advance(61)
        fn = AsyncMock(return_value="ok")

        assert await breaker.execute(fn) == "ok"
        assert breaker.state == CircuitState.HALF_OPEN

        assert await breaker.execute(fn) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, mock_clock):
        for _ in range(3):
            await breaker.execute(failing(), fallback=None)
        mock_clock.advance(61)

        result = await breaker.execute(failing("still down"), fallback="cached")

        assert result == "cached"
        assert breaker.state == CircuitState.OPEN
        assert breaker.stats.last_error == "still down"

    @pytest.mark.asyncio
    async def test_still_open_before_timeout(self, breaker, mock_clock):
        for _ in range(3):
            await breaker.execute(failing(), fallback=None)

        mock_clock.advance(30)
        fn = AsyncMock(return_value="ok")

        assert await breaker.execute(fn, fallback="fb") == "fb"
        fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        await breaker.execute(failing(), fallback=None)
        await breaker.execute(failing(), fallback=None)
        await breaker.execute(AsyncMock(return_value=1))
        await breaker.execute(failing(), fallback=None)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.snapshot().consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_callable_fallback_is_invoked(self, breaker):
        fallback = AsyncMock(return_value={"stale": True})

        result = await breaker.execute(failing(), fallback=fallback)

        assert result == {"stale": True}
        fallback.assert_awaited_once()


# ============================================================
# INSPECTION / PERSISTENCE
# ============================================================

class TestCircuitBreakerSnapshot:

    @pytest.mark.asyncio
    async def test_snapshot_round_trip(self, breaker, mock_clock):
        for _ in range(3):
            await breaker.execute(failing(), fallback=None)

        snapshot = breaker.snapshot()
        assert snapshot.state == CircuitState.OPEN
        assert snapshot.opened_at == pytest.approx(mock_clock.timestamp())

        restored = CircuitBreaker("fmp", config=breaker.config, clock=mock_clock)
        restored.restore(CircuitBreakerState.from_dict(snapshot.to_dict()))

        assert restored.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_status_and_history(self, breaker):
        for _ in range(3):
            await breaker.execute(failing(), fallback=None)

        status = breaker.status()

        assert status["state"] == "OPEN"
        assert status["consecutiveFailures"] == 3
        assert status["retryInSeconds"] == pytest.approx(60.0)
        assert status["stats"]["stateChanges"][-1]["to"] == "OPEN"

    @pytest.mark.asyncio
    async def test_reset_closes(self, breaker):
        for _ in range(3):
            await breaker.execute(failing(), fallback=None)

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert await breaker.execute(AsyncMock(return_value=2)) == 2


class TestCircuitBreakerConfig:

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ConfigurationError):
            CircuitBreaker("x", config=CircuitBreakerConfig(failure_threshold=0))

    def test_from_dict_defaults(self):
        config = CircuitBreakerConfig.from_dict({"failure_threshold": 3})

        assert config.failure_threshold == 3
        assert config.success_threshold == 2
        assert config.timeout_seconds == 60.0


# ============================================================
# REGISTRY
# ============================================================

class TestCircuitBreakerRegistry:

    def test_register_is_idempotent(self, mock_clock):
        registry = CircuitBreakerRegistry(clock=mock_clock)

        first = registry.register("twse")
        second = registry.register("twse")

        assert first is second
        assert len(registry) == 1
        assert registry.get("yahoo") is None

    @pytest.mark.asyncio
    async def test_breakers_are_isolated(self, mock_clock):
        registry = CircuitBreakerRegistry(
            CircuitBreakerConfig(failure_threshold=1),
            clock=mock_clock,
        )
        registry.register("fmp")
        registry.register("yahoo")

        await registry.execute("fmp", failing(), fallback=None)

        status = registry.status()
        assert status["fmp"]["state"] == "OPEN"
        assert status["yahoo"]["state"] == "CLOSED"

    @pytest.mark.asyncio
    async def test_reset_all(self, mock_clock):
        registry = CircuitBreakerRegistry(
            CircuitBreakerConfig(failure_threshold=1),
            clock=mock_clock,
        )
        registry.register("fmp")
        await registry.execute("fmp", failing(), fallback=None)

        registry.reset_all()

        assert registry.get("fmp").state == CircuitState.CLOSED
