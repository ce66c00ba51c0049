"""
Orchestrator - Phase Functions.

============================================================
RESPONSIBILITY
============================================================
The four pipeline phases. Each takes the Dependencies and the
run context, writes its checkpoint through the PhaseStore and
returns the checkpoint document.

    phase1  collect US close          -> phase1-result
    phase2  collect Taiwan session    -> phase2-result
    phase3  validate + reconcile      -> phase3-result
    phase4  assemble the brief        -> phase4-result

Collection phases never raise for a failing source: errors are
recorded per source and the phase completes with what it has.
Phases 3 and 4 raise PhaseInputError / StaleDataError when their
upstream checkpoint is missing or too old.

============================================================
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from core.clock import from_iso8601
from core.exceptions import PhaseInputError, StaleDataError
from data_ingestion.collectors.base import Collector
from data_ingestion.types import CollectContext, CollectorResult, MarketDataPoint, PhaseResult
from market_calendar.models import DataQuality, FallbackAction, MarketContext
from orchestrator.dependencies import Dependencies


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Per-run values shared by the phases of one run."""

    run_id: str
    date: str
    weekend_mode: bool = False


PhaseHandler = Callable[[Dependencies, RunContext], Awaitable[Dict[str, Any]]]


BRIEF_OK = "ok"
BRIEF_DEGRADED = "degraded"
BRIEF_CRITICAL = "critical-degraded"


# ============================================================
# COLLECTION (PHASE 1 / PHASE 2)
# ============================================================

async def _collect_one(
    collector: Collector,
    context: CollectContext,
    deps: Dependencies,
) -> CollectorResult:
    if not context.is_market_open(collector.market):
        market = context.market_context[collector.market]
        logger.info(
            f"[{context.phase}] {collector.name}: {collector.market} closed "
            f"({market.reason or market.status.value}), skipping"
        )
        return CollectorResult.skipped_result(
            collector.name,
            market.reason or market.status.value,
            collected_at=deps.clock.format_iso(),
        )

    result = await collector.collect(context)
    if result.is_empty and collector.market:
        logger.warning(f"[{context.phase}] {collector.name} returned no data, consulting fallback policy")

        async def refetch() -> Optional[CollectorResult]:
            retried = await collector.collect(context)
            return None if retried.is_empty else retried

        decision = await deps.fallback_policy.handle_no_data(
            collector.market,
            context.session_date(collector.market),
            retry_fn=refetch,
        )
        if decision.action == FallbackAction.OK and isinstance(decision.data, CollectorResult):
            result = decision.data
        result = result.with_decision(decision)

    return _mark_partial(collector, result)


def _mark_partial(collector: Collector, result: CollectorResult) -> CollectorResult:
    """PARTIAL when a source answered without some of its critical fields."""
    if result.quality != DataQuality.OK or result.is_empty:
        return result
    present = result.present_fields()
    missing = [f for f in collector.critical_fields if f not in present]
    if not missing:
        return result
    logger.warning(f"{collector.name} is missing critical fields: {', '.join(missing)}")
    return result.with_quality(DataQuality.PARTIAL, f"missing critical fields: {', '.join(missing)}")


def resolve_sessions(
    phase: str,
    deps: Dependencies,
    day: str,
) -> Tuple[Dict[str, MarketContext], Dict[str, str]]:
    """
    Market context of a collection phase.

    Markets listed under previous_session_markets for the phase are
    evaluated on their last trading day before day instead of day.
    """
    market_context = deps.calendar.get_market_context(day, deps.config.markets)
    session_dates: Dict[str, str] = {}
    for market in deps.config.previous_session_markets.get(phase, ()):
        session = deps.calendar.get_prev_trading_day(market, day)
        if session is None:
            logger.warning(f"[{phase}] no {market} session found before {day}")
            continue
        session_dates[market] = session
        market_context[market] = deps.calendar.is_trading_day(market, session)
    return market_context, session_dates


async def run_collect_phase(
    phase: str,
    deps: Dependencies,
    run: RunContext,
    previous: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Fan out to the phase's collectors and checkpoint what came back."""
    started = deps.clock.now()
    market_context, session_dates = resolve_sessions(phase, deps, run.date)
    context = CollectContext(
        date=run.date,
        phase=phase,
        market_context=market_context,
        previous_phase=previous,
        weekend_mode=run.weekend_mode,
        session_dates=session_dates,
    )
    if session_dates:
        sessions = ", ".join(f"{m}={d}" for m, d in session_dates.items())
        logger.info(f"[{phase}] previous sessions: {sessions}")

    collectors = deps.collectors_for(phase)
    if not collectors:
        logger.warning(f"[{phase}] no collectors configured")

    settled = await asyncio.gather(
        *(_collect_one(c, context, deps) for c in collectors),
        return_exceptions=True,
    )

    per_source: Dict[str, Optional[CollectorResult]] = {}
    errors: Dict[str, str] = {}
    for collector, outcome in zip(collectors, settled):
        if isinstance(outcome, BaseException):
            message = str(outcome) or type(outcome).__name__
            logger.error(f"[{phase}] {collector.name} failed: {message}")
            per_source[collector.name] = None
            errors[collector.name] = message
        else:
            per_source[collector.name] = outcome

    completed = deps.clock.now()
    result = PhaseResult(
        phase=phase,
        date=run.date,
        collected_at=deps.clock.format_iso(completed),
        duration_seconds=(completed - started).total_seconds(),
        per_source_results=per_source,
        errors=errors,
        market_context={m: ctx.to_dict() for m, ctx in market_context.items()},
        session_dates=session_dates,
    )

    document = result.to_dict()
    deps.store.save_checkpoint(phase, document)

    ok = sum(1 for r in per_source.values() if r is not None and not r.is_empty)
    logger.info(
        f"[{phase}] collected {ok}/{len(collectors)} sources, "
        f"fields={len(result.present_fields())}, errors={len(errors)}"
    )
    return document


async def run_phase1(deps: Dependencies, run: RunContext) -> Dict[str, Any]:
    return await run_collect_phase("phase1", deps, run)


async def run_phase2(deps: Dependencies, run: RunContext) -> Dict[str, Any]:
    """Taiwan session; the phase-1 checkpoint is optional context."""
    previous = deps.store.load_checkpoint("phase1")
    if previous is None:
        logger.warning("[phase2] phase1 checkpoint not found, continuing without it")
    return await run_collect_phase("phase2", deps, run, previous=previous)


# ============================================================
# RECONCILIATION (PHASE 3)
# ============================================================

def _age_hours(deps: Dependencies, collected_at: Optional[str]) -> Optional[float]:
    if not collected_at:
        return None
    try:
        collected = from_iso8601(collected_at)
    except (TypeError, ValueError):
        return None
    return (deps.clock.now() - collected).total_seconds() / 3600.0


def _source_bundle(documents: List[Mapping[str, Any]]) -> Dict[str, Any]:
    """Per-source results of the given checkpoints; later documents win."""
    bundle: Dict[str, Any] = {}
    for document in documents:
        for name, raw in (document.get("perSourceResults") or {}).items():
            if raw is not None:
                bundle[name] = raw
    return bundle


async def run_phase3(deps: Dependencies, run: RunContext) -> Dict[str, Any]:
    started = deps.clock.now()

    phase2 = deps.store.load_checkpoint("phase2")
    if phase2 is None:
        raise PhaseInputError("phase3", "phase2")

    max_age = deps.config.stale_threshold(run.weekend_mode)
    age = _age_hours(deps, phase2.get("collectedAt"))
    if age is None or age > max_age:
        raise StaleDataError("phase3", age if age is not None else float("inf"), max_age)

    date = phase2.get("date") or run.date
    inputs = [phase2]
    phase1 = deps.store.load_checkpoint("phase1")
    if phase1 is None:
        logger.info("[phase3] phase1 checkpoint not found, reconciling phase2 only")
    elif phase1.get("date") != date:
        logger.warning(
            f"[phase3] ignoring phase1 checkpoint for {phase1.get('date')} (run date {date})"
        )
        phase1 = None
    else:
        inputs.insert(0, phase1)

    outcome = deps.validator.validate(_source_bundle(inputs), date=date)

    source_errors: Dict[str, str] = {}
    for document in inputs:
        source_errors.update(document.get("errors") or {})

    completed = deps.clock.now()
    document = {
        "phase": "phase3",
        "date": date,
        "processedAt": deps.clock.format_iso(completed),
        "duration": (completed - started).total_seconds(),
        "marketData": outcome.market_data,
        "validationReport": outcome.validation_report.to_dict(),
        "hasErrors": outcome.has_errors,
        "sourceErrors": source_errors,
        "marketContext": phase2.get("marketContext") or {},
        "inputs": {"phase1": phase1 is not None, "phase2": True},
    }
    deps.store.save_checkpoint("phase3", document)

    logger.info(
        f"[phase3] reconciled {len(outcome.points)} fields for {date} "
        f"(degraded={len(outcome.validation_report.degraded_fields)}, hasErrors={outcome.has_errors})"
    )
    return document


# ============================================================
# ASSEMBLY (PHASE 4)
# ============================================================

def brief_status(
    market_data: Mapping[str, Any],
    fields: Iterable[str],
    degraded_fields: Iterable[str],
) -> str:
    """critical-degraded when no tracked field has a value."""
    values = []
    for name in fields:
        raw = market_data.get(name)
        if isinstance(raw, Mapping):
            try:
                values.append(not MarketDataPoint.from_dict(raw).is_na)
            except (TypeError, ValueError):
                values.append(False)
        else:
            values.append(False)

    if not any(values):
        return BRIEF_CRITICAL
    if degraded_fields:
        return BRIEF_DEGRADED
    return BRIEF_OK


async def _publish(deps: Dependencies, brief: Dict[str, Any]) -> Optional[str]:
    """Hand the brief to the publisher; the error message on failure."""
    try:
        published = deps.publisher(brief)
        if inspect.isawaitable(published):
            await published
    except Exception as e:
        logger.error(f"[phase4] publisher failed: {e}")
        return str(e) or type(e).__name__
    return None


async def run_phase4(deps: Dependencies, run: RunContext) -> Dict[str, Any]:
    phase3 = deps.store.load_checkpoint("phase3")
    if phase3 is None:
        raise PhaseInputError("phase4", "phase3")

    market_data = phase3.get("marketData") or {}
    report = phase3.get("validationReport") or {}
    status = brief_status(
        market_data,
        deps.validator.field_names,
        report.get("degradedFields") or [],
    )
    if status == BRIEF_CRITICAL:
        logger.critical(f"[phase4] every market field is NA for {phase3.get('date')}")

    assembled_at = deps.clock.format_iso()
    brief = {
        "date": phase3.get("date") or run.date,
        "status": status,
        "weekendMode": run.weekend_mode,
        "marketData": market_data,
        "validationReport": report,
        "marketContext": phase3.get("marketContext") or {},
        "assembledAt": assembled_at,
    }

    document: Dict[str, Any] = {
        "phase": "phase4",
        "date": brief["date"],
        "assembledAt": assembled_at,
        "status": status,
        "marketData": market_data,
        "validationReport": report,
        "published": False,
    }

    if deps.publisher is not None:
        error = await _publish(deps, brief)
        document["published"] = error is None
        if error is not None:
            document["publishError"] = error

    deps.store.save_checkpoint("phase4", document)
    logger.info(f"[phase4] brief {status} for {document['date']} (published={document['published']})")
    return document


PHASE_HANDLERS: Dict[str, PhaseHandler] = {
    "phase1": run_phase1,
    "phase2": run_phase2,
    "phase3": run_phase3,
    "phase4": run_phase4,
}


__all__ = [
    "RunContext",
    "PhaseHandler",
    "PHASE_HANDLERS",
    "BRIEF_OK",
    "BRIEF_DEGRADED",
    "BRIEF_CRITICAL",
    "brief_status",
    "resolve_sessions",
    "run_collect_phase",
    "run_phase1",
    "run_phase2",
    "run_phase3",
    "run_phase4",
]
