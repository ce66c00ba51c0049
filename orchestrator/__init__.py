"""
Orchestrator Package - Pipeline Coordination Layer.

============================================================
PACKAGE OVERVIEW
============================================================
Runs the market digest pipeline: phase sequencing, timeouts,
retry and abort policy, lineage and run metrics.

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                     Orchestrator                    |
    |-----------------------------------------------------|
    |  RunMode        |  daily, weekend, single phase     |
    |  PhaseRunner    |  timeout + linear retry           |
    |  phases         |  collect, reconcile, assemble     |
    |  Dependencies   |  shared collaborators             |
    |  CLI            |  Command-line interface           |
    +-----------------------------------------------------+

============================================================
PHASES
============================================================
1. phase1 - Collect US market close       (120s, 3 tries)
2. phase2 - Collect Taiwan market data    (180s, 3 tries)
3. phase3 - Validate and reconcile        (120s, 2 tries, required)
4. phase4 - Assemble brief                (60s, 2 tries, required)

============================================================
QUICK START
============================================================
Command line usage::

    python app.py --mode daily
    python -m orchestrator.cli --mode weekend
    python app.py --mode daily --show-phases

Programmatic usage::

    from orchestrator import Dependencies, Orchestrator, PipelineConfig

    deps = Dependencies.build(PipelineConfig.load())
    result = await Orchestrator(deps).run("daily")

============================================================
"""

from .config import PipelineConfig
from .core import Orchestrator, create_orchestrator, setup_logging
from .dependencies import Dependencies
from .models import (
    DEFAULT_PHASE_CONFIGS,
    PHASE_ORDER,
    PhaseConfig,
    PhaseOutcome,
    RunMode,
    RunResult,
)
from .phases import PHASE_HANDLERS, RunContext
from .pipeline import PhaseRunner


__all__ = [
    # Configuration
    "PipelineConfig",
    "PhaseConfig",
    "DEFAULT_PHASE_CONFIGS",
    "PHASE_ORDER",

    # Models
    "RunMode",
    "PhaseOutcome",
    "RunResult",
    "RunContext",

    # Execution
    "Dependencies",
    "Orchestrator",
    "PhaseRunner",
    "PHASE_HANDLERS",
    "create_orchestrator",
    "setup_logging",
]
