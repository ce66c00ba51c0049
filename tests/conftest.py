"""
Shared fixtures for the pipeline test suite.
"""

import copy
from datetime import datetime, timezone
from typing import List

import pytest

from core.clock import MockClock
from data_ingestion.collectors.toolkit import CollectorToolkit
from orchestrator.config import PipelineConfig
from orchestrator.dependencies import Dependencies
from resilience.circuit_breaker import CircuitBreakerRegistry
from resilience.rate_limiter import RateLimitConfig, RateLimiter
from storage.cache import MemoryCache
from storage.phase_store import InMemoryPhaseStore


# 2026-01-15 is a Thursday; 09:00 in Taipei.
RUN_DATE = "2026-01-15"
RUN_TIME = datetime(2026, 1, 15, 1, 0, 0, tzinfo=timezone.utc)


US_COLLECTORS = [
    {
        "type": "static",
        "name": "fmp",
        "market": "XNYS",
        "readings": {"SP500": 5200.0, "NASDAQ": 16000.0, "VIX": 16.2},
    },
    {
        "type": "static",
        "name": "yahoo",
        "market": "XNYS",
        "readings": {"SP500": 5201.0, "NASDAQ": 16010.0},
    },
]

TW_COLLECTORS = [
    {
        "type": "static",
        "name": "twse",
        "market": "TWSE",
        "readings": {"TAIEX": 22458.0, "USDTWD": 32.1},
        "payload": {"margin": {"balance": 3.1e11}},
    },
    {
        "type": "static",
        "name": "finmind",
        "market": "TWSE",
        "readings": {"TAIEX": 22450.0},
    },
]


class RecordingSleep:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self, clock: MockClock = None):
        self.calls: List[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


@pytest.fixture
def mock_clock():
    return MockClock(RUN_TIME)


@pytest.fixture
def no_sleep():
    return RecordingSleep()


@pytest.fixture
def memory_store():
    return InMemoryPhaseStore()


@pytest.fixture
def memory_cache(mock_clock):
    return MemoryCache(clock=mock_clock)


@pytest.fixture
def toolkit_factory(mock_clock, memory_cache, no_sleep):
    """Build CollectorToolkits sharing one registry, limiter and cache."""
    registry = CircuitBreakerRegistry(clock=mock_clock)
    limiter = RateLimiter(sleep=no_sleep)

    def make(source: str, req_per_min: int = 600) -> CollectorToolkit:
        limiter.register(source, RateLimitConfig(req_per_min=req_per_min))
        return CollectorToolkit(
            source,
            breaker=registry.register(source),
            rate_limiter=limiter,
            cache=memory_cache,
            clock=mock_clock,
            sleep=no_sleep,
        )

    make.registry = registry
    make.limiter = limiter
    return make


@pytest.fixture
def pipeline_config():
    """In-memory pipeline with static US and Taiwan collectors."""
    return PipelineConfig(
        store_backend="memory",
        collectors={
            "phase1": copy.deepcopy(US_COLLECTORS),
            "phase2": copy.deepcopy(TW_COLLECTORS),
        },
    )


@pytest.fixture
def deps_factory(pipeline_config, mock_clock, no_sleep, memory_store, memory_cache):
    """Dependencies wired with the test clock, sleep, store and cache."""

    def make(config: PipelineConfig = None, **kwargs) -> Dependencies:
        kwargs.setdefault("clock", mock_clock)
        kwargs.setdefault("sleep", no_sleep)
        kwargs.setdefault("store", memory_store)
        kwargs.setdefault("cache", memory_cache)
        return Dependencies.build(config or pipeline_config, **kwargs)

    return make
