"""
Monitoring - Run Metrics.

============================================================
RESPONSIBILITY
============================================================
Builds the per-run metrics document written at the end of
every daily / weekend run (metrics-YYYY-MM-DD):

- phase status, duration and attempt count
- degraded fields reported by reconciliation
- circuit breaker and rate limiter state per source
- cost summary from the injected provider
- abort flag and reason

============================================================
DESIGN PRINCIPLES
============================================================
- Observational only: building metrics never changes state
- A metrics failure never fails the run

============================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from storage.phase_store import PhaseStore, metrics_key


logger = logging.getLogger(__name__)


@dataclass
class PhaseMetrics:
    status: str
    duration_seconds: float
    attempts: int
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "durationSeconds": round(self.duration_seconds, 3),
            "attempts": self.attempts,
            "error": self.error,
        }


@dataclass
class RunMetrics:
    """Metrics of one pipeline run."""

    run_id: str
    mode: str
    date: str
    started_at: str
    finished_at: Optional[str] = None
    duration_seconds: float = 0.0
    phases: Dict[str, PhaseMetrics] = field(default_factory=dict)
    degraded_fields: List[str] = field(default_factory=list)
    circuit_breakers: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    rate_limits: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    cost: Optional[Dict[str, Any]] = None
    aborted: bool = False
    abort_reason: Optional[str] = None

    def record_phase(
        self,
        phase: str,
        status: str,
        duration_seconds: float,
        attempts: int,
        error: Optional[str] = None,
    ) -> None:
        self.phases[phase] = PhaseMetrics(status, duration_seconds, attempts, error)

    def record_degraded_fields(self, validation_report: Optional[Mapping[str, Any]]) -> None:
        """Take degraded fields from a phase-3/phase-4 validation report."""
        if not validation_report:
            return
        for name in validation_report.get("degradedFields") or []:
            if name not in self.degraded_fields:
                self.degraded_fields.append(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "mode": self.mode,
            "date": self.date,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "durationSeconds": round(self.duration_seconds, 3),
            "phases": {name: p.to_dict() for name, p in self.phases.items()},
            "degradedFieldCount": len(self.degraded_fields),
            "degradedFields": list(self.degraded_fields),
            "circuitBreakers": self.circuit_breakers,
            "rateLimits": self.rate_limits,
            "cost": self.cost,
            "aborted": self.aborted,
            "abortReason": self.abort_reason,
        }

    def save(self, store: PhaseStore) -> Dict[str, Any]:
        document = self.to_dict()
        store.save(metrics_key(self.date), document)
        logger.info(
            f"Metrics saved: {metrics_key(self.date)} "
            f"(phases={len(self.phases)}, degraded={len(self.degraded_fields)}, aborted={self.aborted})"
        )
        return document


__all__ = [
    "PhaseMetrics",
    "RunMetrics",
]
