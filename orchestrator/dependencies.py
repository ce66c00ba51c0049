"""
Orchestrator - Dependency Container.

============================================================
RESPONSIBILITY
============================================================
Builds every shared collaborator of a pipeline process exactly
once and hands the same instances to the orchestrator, the phase
functions and the collectors.

Nothing in the pipeline reaches for a module-level singleton;
tests build a Dependencies with fakes (MockClock, InMemoryPhaseStore,
MemoryCache, StaticCollector) instead.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.clock import ClockProtocol, SystemClock
from core.exceptions import ConfigurationError
from data_ingestion.collectors.base import Collector
from data_ingestion.collectors.factory import create_collectors
from data_ingestion.collectors.toolkit import CollectorToolkit
from market_calendar.calendar_guard import CalendarGuard
from market_calendar.fallback_policy import FallbackPolicy
from orchestrator.config import PipelineConfig
from resilience.circuit_breaker import CircuitBreakerRegistry
from resilience.rate_limiter import RateLimiter
from storage.cache import CacheStore, FileCache
from storage.phase_store import FilesystemPhaseStore, InMemoryPhaseStore, PhaseStore
from validation.schema import PhaseSchema, build_phase_schemas
from validation.thresholds import build_field_specs
from validation.validator import Validator


logger = logging.getLogger(__name__)


SleepFn = Callable[[float], Awaitable[None]]
Publisher = Callable[[Dict[str, Any]], Any]
CostProvider = Callable[[], Optional[Dict[str, Any]]]


def create_store(config: PipelineConfig) -> PhaseStore:
    """PhaseStore for the configured backend."""
    if config.store_backend == "filesystem":
        return FilesystemPhaseStore(config.state_dir)
    if config.store_backend == "memory":
        return InMemoryPhaseStore()
    if config.store_backend == "sql":
        from storage.sql_phase_store import SqlPhaseStore
        return SqlPhaseStore(database_url=config.database_url)
    raise ConfigurationError(
        f"Unknown storage backend: {config.store_backend}",
        config_key="storage.backend",
    )


@dataclass
class Dependencies:
    """Shared collaborators of one pipeline process."""

    config: PipelineConfig
    clock: ClockProtocol
    sleep: SleepFn
    breakers: CircuitBreakerRegistry
    rate_limiter: RateLimiter
    cache: CacheStore
    calendar: CalendarGuard
    fallback_policy: FallbackPolicy
    store: PhaseStore
    validator: Validator
    phase_schemas: Dict[str, PhaseSchema]
    collectors: Dict[str, List[Collector]] = field(default_factory=dict)
    publisher: Optional[Publisher] = None
    cost_provider: Optional[CostProvider] = None
    _toolkits: Dict[str, CollectorToolkit] = field(default_factory=dict, repr=False)

    @classmethod
    def build(
        cls,
        config: PipelineConfig,
        clock: Optional[ClockProtocol] = None,
        sleep: Optional[SleepFn] = None,
        store: Optional[PhaseStore] = None,
        cache: Optional[CacheStore] = None,
        collectors: Optional[Dict[str, List[Collector]]] = None,
        publisher: Optional[Publisher] = None,
        cost_provider: Optional[CostProvider] = None,
    ) -> "Dependencies":
        """
        Wire every collaborator from config.

        Explicit arguments replace the configured instance; when
        collectors is None the groups are built from config.collectors.
        """
        config.ensure_valid()

        clock = clock or SystemClock()
        sleep = sleep or asyncio.sleep
        calendar = CalendarGuard(config.calendar_dir)

        deps = cls(
            config=config,
            clock=clock,
            sleep=sleep,
            breakers=CircuitBreakerRegistry(config.circuit_breaker, clock=clock),
            rate_limiter=RateLimiter(config.rate_limits, sleep=sleep),
            cache=cache if cache is not None else FileCache(config.cache_dir, clock=clock),
            calendar=calendar,
            fallback_policy=FallbackPolicy(
                calendar,
                retry_delays=config.fallback_retry_delays,
                sleep=sleep,
            ),
            store=store if store is not None else create_store(config),
            validator=Validator(build_field_specs(config.field_overrides)),
            phase_schemas=build_phase_schemas(config.phase_schemas),
            publisher=publisher,
            cost_provider=cost_provider,
        )

        if collectors is None:
            collectors = create_collectors(config.collectors, deps.toolkit_for)
        deps.collectors = dict(collectors)

        logger.info(
            f"Dependencies ready: store={type(deps.store).__name__}, "
            + ", ".join(f"{phase}={len(group)} collectors" for phase, group in deps.collectors.items())
        )
        return deps

    def toolkit_for(self, name: str) -> CollectorToolkit:
        """The toolkit of source name; one breaker and bucket per source."""
        toolkit = self._toolkits.get(name)
        if toolkit is None:
            breaker = self.breakers.register(name, self.config.circuit_breaker)
            self.rate_limiter.register(name, self.config.rate_limits.get(name))
            toolkit = CollectorToolkit(
                name,
                breaker=breaker,
                rate_limiter=self.rate_limiter,
                cache=self.cache,
                clock=self.clock,
                sleep=self.sleep,
                base_delay=self.config.collector_base_delay,
            )
            self._toolkits[name] = toolkit
        return toolkit

    def run_date(self) -> str:
        """Today in the configured timezone, YYYY-MM-DD."""
        return self.clock.today(self.config.timezone).isoformat()

    def collectors_for(self, phase: str) -> List[Collector]:
        return list(self.collectors.get(phase, []))

    def read_cost(self) -> Optional[Dict[str, Any]]:
        """Cost summary from the injected provider; never raises."""
        if self.cost_provider is None:
            return None
        try:
            return self.cost_provider()
        except Exception as e:
            logger.warning(f"Cost provider failed: {e}")
            return None

    async def close(self) -> None:
        """Close every collector (HTTP sessions)."""
        for group in self.collectors.values():
            for collector in group:
                try:
                    await collector.close()
                except Exception as e:
                    logger.warning(f"Failed to close collector {collector.name}: {e}")


__all__ = [
    "Dependencies",
    "create_store",
]
