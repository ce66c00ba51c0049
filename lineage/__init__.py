"""
Lineage Package.

Field-level lineage across pipeline phases and anomaly detection.
"""

from lineage.tracker import (
    TRACKED_FIELDS,
    Anomaly,
    AnomalyType,
    LineageEntry,
    LineageTracker,
)


__all__ = [
    "TRACKED_FIELDS",
    "Anomaly",
    "AnomalyType",
    "LineageEntry",
    "LineageTracker",
]
