"""
Monitoring Package.

============================================================
PURPOSE
============================================================
Strictly observational view of a pipeline run.

PRINCIPLES:
1. READ-ONLY - Building metrics never changes pipeline state
2. RESILIENT - A metrics failure never fails the run

============================================================
"""

from .metrics import PhaseMetrics, RunMetrics


__all__ = [
    "PhaseMetrics",
    "RunMetrics",
]
