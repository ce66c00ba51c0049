"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the pipeline orchestrator.

- Run modes (daily, weekend, single phase)
- The phase table (timeout, retries, required)
- Per-phase outcomes and the run result

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from validation.schema import SchemaCheckResult


# ============================================================
# PHASES
# ============================================================

PHASE_ORDER: Tuple[str, ...] = ("phase1", "phase2", "phase3", "phase4")


@dataclass(frozen=True)
class PhaseConfig:
    """Execution policy of one phase."""

    name: str
    timeout_seconds: float
    retries: int
    required: bool
    description: str = ""

    def with_overrides(self, overrides: Mapping[str, Any]) -> "PhaseConfig":
        return PhaseConfig(
            name=self.name,
            timeout_seconds=float(overrides.get("timeout_seconds", self.timeout_seconds)),
            retries=int(overrides.get("retries", self.retries)),
            required=bool(overrides.get("required", self.required)),
            description=overrides.get("description", self.description),
        )


DEFAULT_PHASE_CONFIGS: Dict[str, PhaseConfig] = {
    "phase1": PhaseConfig("phase1", 120.0, 3, False, "Collect US market close"),
    "phase2": PhaseConfig("phase2", 180.0, 3, False, "Collect Taiwan market data"),
    "phase3": PhaseConfig("phase3", 120.0, 2, True, "Validate and reconcile"),
    "phase4": PhaseConfig("phase4", 60.0, 2, True, "Assemble brief"),
}


# ============================================================
# RUN MODES
# ============================================================

class RunMode(str, Enum):
    """
    Pipeline run modes.

    DAILY and WEEKEND are sequence runs; they write the lineage
    and metrics documents when they finish.
    """

    DAILY = "daily"
    WEEKEND = "weekend"
    PHASE1 = "phase1"
    PHASE2 = "phase2"
    PHASE3 = "phase3"
    PHASE4 = "phase4"

    @property
    def phases(self) -> Tuple[str, ...]:
        if self == RunMode.DAILY:
            return PHASE_ORDER
        if self == RunMode.WEEKEND:
            return ("phase3", "phase4")
        return (self.value,)

    @property
    def is_sequence(self) -> bool:
        return self in (RunMode.DAILY, RunMode.WEEKEND)

    @property
    def weekend_mode(self) -> bool:
        return self == RunMode.WEEKEND


# ============================================================
# PHASE OUTCOME
# ============================================================

@dataclass
class PhaseOutcome:
    """Result of running one phase (all attempts)."""

    phase: str
    success: bool
    attempts: int
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    schema_check: Optional[SchemaCheckResult] = None

    @property
    def status(self) -> str:
        return "ok" if self.success else "failed"

    def result_entry(self) -> Dict[str, Any]:
        """What the run result exposes under this phase's key."""
        if self.success:
            return self.result or {}
        return {"failed": True, "error": self.error}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "status": self.status,
            "attempts": self.attempts,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat(),
            "durationSeconds": round(self.duration_seconds, 3),
            "error": self.error,
            "errorType": self.error_type,
            "schemaCheck": self.schema_check.to_dict() if self.schema_check else None,
        }


# ============================================================
# RUN RESULT
# ============================================================

@dataclass
class RunResult:
    """Result of one Orchestrator.run() call."""

    run_id: str
    mode: RunMode
    date: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    outcomes: Dict[str, PhaseOutcome] = field(default_factory=dict)
    aborted: bool = False
    abort_reason: Optional[str] = None
    cost: Optional[Dict[str, Any]] = None

    @property
    def phases(self) -> Dict[str, Dict[str, Any]]:
        """{phase: checkpoint document | {failed, error}} in run order."""
        return {phase: outcome.result_entry() for phase, outcome in self.outcomes.items()}

    @property
    def duration_seconds(self) -> float:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    @property
    def failed_phases(self) -> List[str]:
        return [phase for phase, outcome in self.outcomes.items() if not outcome.success]

    @property
    def success(self) -> bool:
        return not self.aborted and not self.failed_phases

    def abort(self, reason: str) -> None:
        self.aborted = True
        self.abort_reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "mode": self.mode.value,
            "date": self.date,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "durationSeconds": round(self.duration_seconds, 3),
            "phases": self.phases,
            "outcomes": {phase: outcome.to_dict() for phase, outcome in self.outcomes.items()},
            "aborted": self.aborted,
            "abortReason": self.abort_reason,
            "cost": self.cost,
        }


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "PHASE_ORDER",
    "PhaseConfig",
    "DEFAULT_PHASE_CONFIGS",
    "RunMode",
    "PhaseOutcome",
    "RunResult",
]
