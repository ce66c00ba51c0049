"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Main orchestrator class for the digest pipeline.

- Single entrypoint for a pipeline run (daily, weekend, one phase)
- Enforces phase order
- Applies the abort policy (required phases, critical fields)
- Records lineage and run metrics for sequence runs

============================================================
ABORT POLICY
============================================================
- A non-required phase that exhausts its retries is recorded
  as {failed: True, error} and the sequence continues
- A required phase that exhausts its retries stops the sequence
- A phase whose expected critical fields are all missing stops
  the sequence, whether or not it is required. Fields of a market
  with no session (holiday, weekend) are not expected
- run() never raises for a phase error; the outcome is in
  the returned RunResult

============================================================
"""

import json
import logging
import sys
import uuid
from typing import Any, Dict, Iterable, Mapping, Optional, Set, Union

from core.exceptions import (
    ConfigurationError,
    PhaseFailedError,
    RequiredPhaseFailure,
    SchemaValidationFailure,
)
from data_ingestion.collectors.base import Collector
from data_ingestion.types import PhaseResult
from lineage.tracker import LineageTracker
from market_calendar.models import DataQuality
from monitoring.metrics import RunMetrics
from validation.schema import check_phase_schema

from .config import PipelineConfig
from .dependencies import Dependencies
from .models import PhaseOutcome, RunMode, RunResult
from .phases import PHASE_HANDLERS, PhaseHandler, RunContext
from .pipeline import PhaseRunner


COLLECTION_PHASES = ("phase1", "phase2")


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    run_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        run_id: Run identifier added to every line

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "run_id": run_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {run_id or '-'} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


# ============================================================
# ORCHESTRATOR
# ============================================================

def _canonical_fields(market_data: Mapping[str, Any]):
    """Fields of a reconciled snapshot that carry a value."""
    return {
        name for name, point in (market_data or {}).items()
        if isinstance(point, Mapping)
        and point.get("value") is not None
        and point.get("degraded") != "NA"
    }


def fields_present(phase: str, document: Optional[Mapping[str, Any]]):
    """Fields a phase produced, for the phase schema check."""
    if not document:
        return set()
    if "perSourceResults" in document:
        return set(PhaseResult.from_dict(document).present_fields())
    return _canonical_fields(document.get("marketData") or {})


def closed_market_fields(
    document: Optional[Mapping[str, Any]],
    collectors: Iterable[Collector],
) -> Set[str]:
    """
    Fields that only sources of a closed market were expected to
    deliver in a collection phase.
    """
    results = (document or {}).get("perSourceResults") or {}
    closed: Set[str] = set()
    expected: Set[str] = set()
    for collector in collectors:
        raw = results.get(collector.name)
        no_session = isinstance(raw, Mapping) and (
            raw.get("skipped") or raw.get("quality") == DataQuality.NO_MARKET_DATA.value
        )
        (closed if no_session else expected).update(collector.expected_fields)
    return closed - expected


class Orchestrator:
    """
    Runs pipeline phases in order under the abort policy.

    One instance per process; every collaborator comes from
    the Dependencies it is built with.
    """

    def __init__(
        self,
        deps: Dependencies,
        runner: Optional[PhaseRunner] = None,
        handlers: Optional[Dict[str, PhaseHandler]] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            deps: Shared collaborators
            runner: Phase runner (timeout + retry); built from config if None
            handlers: Phase functions by name; defaults to PHASE_HANDLERS
        """
        self._deps = deps
        self._config = deps.config
        self._runner = runner or PhaseRunner(
            clock=deps.clock,
            sleep=deps.sleep,
            base_delay=deps.config.phase_retry_base_delay,
            max_delay=deps.config.phase_retry_max_delay,
        )
        self._handlers = dict(handlers or PHASE_HANDLERS)
        self._logger = logging.getLogger(__name__)
        self._last_result: Optional[RunResult] = None

    @property
    def deps(self) -> Dependencies:
        return self._deps

    @property
    def last_result(self) -> Optional[RunResult]:
        return self._last_result

    # ============================================================
    # RUN
    # ============================================================

    @staticmethod
    def resolve_mode(mode: Union[str, RunMode]) -> RunMode:
        try:
            return RunMode(mode)
        except ValueError:
            valid = ", ".join(m.value for m in RunMode)
            raise ConfigurationError(f"Unknown mode: {mode} (expected one of {valid})", config_key="mode")

    async def run(
        self,
        mode: Union[str, RunMode] = RunMode.DAILY,
        date: Optional[str] = None,
    ) -> RunResult:
        """
        Run the phases of mode for date (default: today in the
        configured timezone).

        Raises:
            ConfigurationError: unknown mode
        """
        run_mode = self.resolve_mode(mode)
        run = RunContext(
            run_id=uuid.uuid4().hex[:12],
            date=date or self._deps.run_date(),
            weekend_mode=run_mode.weekend_mode,
        )
        result = RunResult(
            run_id=run.run_id,
            mode=run_mode,
            date=run.date,
            started_at=self._deps.clock.now(),
        )
        tracker = (
            LineageTracker(run.date, store=self._deps.store, clock=self._deps.clock)
            if run_mode.is_sequence
            else None
        )

        self._logger.info(
            f"=== Pipeline {run_mode.value} starting: date={run.date} run={run.run_id} ==="
        )

        try:
            for phase in run_mode.phases:
                if not await self._run_phase(phase, run, result, tracker):
                    break
        finally:
            result.completed_at = self._deps.clock.now()
            result.cost = self._deps.read_cost()
            if run_mode.is_sequence:
                self._write_run_documents(result, tracker)
            self._last_result = result

        if result.aborted:
            self._logger.error(
                f"=== Pipeline {run_mode.value} ABORTED: {result.abort_reason} ==="
            )
        else:
            self._logger.info(
                f"=== Pipeline {run_mode.value} complete in {result.duration_seconds:.1f}s "
                f"(failed phases: {', '.join(result.failed_phases) or 'none'}) ==="
            )
        return result

    async def _run_phase(
        self,
        phase: str,
        run: RunContext,
        result: RunResult,
        tracker: Optional[LineageTracker],
    ) -> bool:
        """Run one phase; False when the sequence must stop."""
        config = self._config.phase(phase)
        handler = self._handlers.get(phase)
        if handler is None:
            raise ConfigurationError(f"No handler registered for {phase}", config_key="phases")

        started_at = self._deps.clock.now()
        try:
            outcome = await self._runner.run_with_retry(
                config,
                lambda: handler(self._deps, run),
            )
        except PhaseFailedError as e:
            completed_at = self._deps.clock.now()
            cause = e.cause
            outcome = PhaseOutcome(
                phase=phase,
                success=False,
                attempts=e.attempts,
                started_at=started_at,
                completed_at=completed_at,
                duration_seconds=(completed_at - started_at).total_seconds(),
                error=(str(cause) or type(cause).__name__) if cause is not None else e.message,
                error_type=type(cause).__name__ if cause is not None else type(e).__name__,
            )
            result.outcomes[phase] = outcome

            if config.required:
                failure = RequiredPhaseFailure(
                    f"Required phase {phase} failed: {outcome.error}",
                    phase=phase,
                    cause=e,
                )
                self._logger.critical(failure.message)
                result.abort(failure.message)
                return False

            self._logger.warning(f"{phase} failed (non-required), continuing: {outcome.error}")
            return True

        result.outcomes[phase] = outcome
        self._record_lineage(tracker, phase, outcome.result)

        check = check_phase_schema(
            phase,
            fields_present(phase, outcome.result),
            self._deps.phase_schemas,
            closed_fields=self._closed_fields(phase, outcome.result, result),
        )
        outcome.schema_check = check
        if check.abort_pipeline:
            failure = SchemaValidationFailure(phase, list(check.missing_critical))
            self._logger.critical(f"Aborting pipeline: {failure.message}")
            result.abort(failure.message)
            return False

        return True

    def _closed_fields(
        self,
        phase: str,
        document: Optional[Mapping[str, Any]],
        result: RunResult,
    ) -> Set[str]:
        """Closed-market fields of a collection phase; later phases inherit those of the run."""
        if phase in COLLECTION_PHASES:
            return closed_market_fields(document, self._deps.collectors_for(phase))
        inherited: Set[str] = set()
        for outcome in result.outcomes.values():
            if outcome.schema_check is not None:
                inherited.update(outcome.schema_check.closed_market)
        return inherited

    # ============================================================
    # LINEAGE / METRICS
    # ============================================================

    def _record_lineage(
        self,
        tracker: Optional[LineageTracker],
        phase: str,
        document: Optional[Mapping[str, Any]],
    ) -> None:
        if tracker is None or not document:
            return
        if phase in COLLECTION_PHASES:
            schema = self._deps.phase_schemas.get(phase)
            expected = schema.critical + schema.supplementary if schema else ()
            tracker.record_phase_result(phase, document, expected_fields=expected)
        elif phase == "phase3":
            tracker.record_market_data(phase, document.get("marketData") or {})

    def build_metrics(self, result: RunResult) -> RunMetrics:
        metrics = RunMetrics(
            run_id=result.run_id,
            mode=result.mode.value,
            date=result.date,
            started_at=result.started_at.isoformat(),
            finished_at=result.completed_at.isoformat() if result.completed_at else None,
            duration_seconds=result.duration_seconds,
            circuit_breakers=self._deps.breakers.status(),
            rate_limits=self._deps.rate_limiter.status(),
            cost=result.cost,
            aborted=result.aborted,
            abort_reason=result.abort_reason,
        )
        for phase, outcome in result.outcomes.items():
            metrics.record_phase(
                phase,
                outcome.status,
                outcome.duration_seconds,
                outcome.attempts,
                outcome.error,
            )
            if outcome.success and outcome.result:
                metrics.record_degraded_fields(outcome.result.get("validationReport"))
        return metrics

    def _write_run_documents(self, result: RunResult, tracker: Optional[LineageTracker]) -> None:
        """Lineage and metrics; a failure here is logged, never raised."""
        if tracker is not None:
            try:
                tracker.save()
            except Exception as e:
                self._logger.error(f"Failed to save lineage for {result.date}: {e}", exc_info=True)

        try:
            self.build_metrics(result).save(self._deps.store)
        except Exception as e:
            self._logger.error(f"Failed to save metrics for {result.date}: {e}", exc_info=True)

    # ============================================================
    # STATUS
    # ============================================================

    def get_status(self) -> Dict[str, Any]:
        """Current resilience state and the last run summary."""
        last = self._last_result
        return {
            "circuitBreakers": self._deps.breakers.status(),
            "rateLimits": self._deps.rate_limiter.status(),
            "cache": self._deps.cache.stats(),
            "lastRun": {
                "runId": last.run_id,
                "mode": last.mode.value,
                "date": last.date,
                "aborted": last.aborted,
                "abortReason": last.abort_reason,
                "failedPhases": last.failed_phases,
            } if last else None,
        }


# ============================================================
# FACTORY
# ============================================================

def create_orchestrator(config: Optional[PipelineConfig] = None, **kwargs: Any) -> Orchestrator:
    """
    Create an orchestrator with its dependencies.

    Args:
        config: Pipeline configuration (default: PipelineConfig.load())
        **kwargs: Passed to Dependencies.build (clock, store, publisher, ...)
    """
    config = config or PipelineConfig.load()
    return Orchestrator(Dependencies.build(config, **kwargs))


__all__ = [
    "setup_logging",
    "fields_present",
    "closed_market_fields",
    "Orchestrator",
    "create_orchestrator",
]
