"""
Data Lineage Tracking.

============================================================
PURPOSE
============================================================
Follows every tracked market field through the phases of one
run and flags the transitions that indicate data loss:

- value_dropped: a field had a value and lost it
- degradation_added: a clean field with a value picked up a
  degradation label

Entries are append-only; one document per run date is written
through the PhaseStore as lineage-YYYY-MM-DD.

============================================================
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from core.clock import ClockProtocol, SystemClock
from data_ingestion.types import CollectorResult, MarketDataPoint, PhaseResult
from storage.phase_store import PhaseStore, lineage_key


logger = logging.getLogger(__name__)


TRACKED_FIELDS: Tuple[str, ...] = (
    "TAIEX", "SP500", "NASDAQ", "DJI", "USDTWD", "VIX",
    "DXY", "US10Y", "FED_RATE", "HY_SPREAD",
    "GOLD", "OIL_WTI", "COPPER", "BTC", "PUT_CALL_RATIO",
)


# ============================================================
# MODELS
# ============================================================

class AnomalyType(str, Enum):
    VALUE_DROPPED = "value_dropped"
    DEGRADATION_ADDED = "degradation_added"


@dataclass(frozen=True)
class LineageEntry:
    """State of one field at one phase."""
    field: str
    phase: str
    value: Optional[float]
    source: str
    degraded: str
    from_cache: bool
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "value": self.value,
            "source": self.source,
            "degraded": self.degraded,
            "fromCache": self.from_cache,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class Anomaly:
    field: str
    type: AnomalyType
    from_state: Dict[str, Any]
    to_state: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "type": self.type.value,
            "from": dict(self.from_state),
            "to": dict(self.to_state),
        }


# ============================================================
# LINEAGE TRACKER
# ============================================================

class LineageTracker:
    """Per-run lineage of the tracked market fields."""

    def __init__(
        self,
        date: str,
        store: Optional[PhaseStore] = None,
        clock: Optional[ClockProtocol] = None,
        tracked_fields: Tuple[str, ...] = TRACKED_FIELDS,
    ):
        self.date = date
        self._store = store
        self._clock = clock or SystemClock()
        self._tracked_fields = tuple(tracked_fields)
        self._entries: Dict[str, List[LineageEntry]] = {}
        self._lock = threading.Lock()

    @property
    def tracked_fields(self) -> Tuple[str, ...]:
        return self._tracked_fields

    def record(
        self,
        phase: str,
        field: str,
        value: Optional[float] = None,
        source: str = "unknown",
        degraded: str = "",
        from_cache: bool = False,
    ) -> LineageEntry:
        """Append the state of field at phase."""
        entry = LineageEntry(
            field=field,
            phase=phase,
            value=value,
            source=source or "unknown",
            degraded=degraded or "",
            from_cache=from_cache,
            timestamp=self._clock.format_iso(),
        )
        with self._lock:
            self._entries.setdefault(field, []).append(entry)
        return entry

    def record_market_data(
        self,
        phase: str,
        market_data: Mapping[str, Union[MarketDataPoint, Mapping[str, Any], None]],
        from_cache: bool = False,
    ) -> None:
        """
        Record every tracked field of a canonical snapshot.

        Absent fields are recorded as {value: None, source: "missing"}
        so that a disappearing field shows up as value_dropped.
        """
        if not isinstance(market_data, Mapping):
            return

        for field in self._tracked_fields:
            point = market_data.get(field)
            if isinstance(point, MarketDataPoint):
                self.record(
                    phase, field,
                    value=point.value,
                    source=point.source,
                    degraded=point.degraded.value,
                    from_cache=from_cache,
                )
            elif isinstance(point, Mapping):
                self.record(
                    phase, field,
                    value=point.get("value"),
                    source=point.get("source") or "unknown",
                    degraded=point.get("degraded") or "",
                    from_cache=bool(point.get("fromCache", from_cache)),
                )
            else:
                self.record(phase, field, value=None, source="missing")

    def record_phase_result(
        self,
        phase: str,
        phase_result: Union[PhaseResult, Mapping[str, Any]],
        expected_fields: Iterable[str] = (),
    ) -> None:
        """
        Record a raw collection phase: per field, the first source
        (in collection order) that produced a value.

        Tracked fields in expected_fields that no source produced are
        recorded as {value: None, source: "missing"}.
        """
        if isinstance(phase_result, Mapping):
            phase_result = PhaseResult.from_dict(phase_result)

        best: Dict[str, Tuple[MarketDataPoint, CollectorResult]] = {}
        for result in phase_result.per_source_results.values():
            if result is None:
                continue
            for field, point in result.points.items():
                if field in best or point.is_na:
                    continue
                best[field] = (point, result)

        expected = set(expected_fields)
        for field in self._tracked_fields:
            if field not in best:
                if field in expected:
                    self.record(phase, field, value=None, source="missing")
                continue
            point, result = best[field]
            self.record(
                phase, field,
                value=point.value,
                source=point.source,
                degraded=point.degraded.value,
                from_cache=result.from_cache,
            )

    def entries(self) -> Dict[str, List[LineageEntry]]:
        with self._lock:
            return {field: list(history) for field, history in self._entries.items()}

    def detect_anomalies(self) -> List[Anomaly]:
        """Compare consecutive entries of each field."""
        anomalies: List[Anomaly] = []

        for field, history in self.entries().items():
            for prev, curr in zip(history, history[1:]):
                if prev.value is not None and curr.value is None:
                    anomalies.append(Anomaly(
                        field=field,
                        type=AnomalyType.VALUE_DROPPED,
                        from_state={"phase": prev.phase, "value": prev.value, "source": prev.source},
                        to_state={"phase": curr.phase, "value": None, "source": curr.source},
                    ))

                if prev.value is not None and not prev.degraded and curr.degraded:
                    anomalies.append(Anomaly(
                        field=field,
                        type=AnomalyType.DEGRADATION_ADDED,
                        from_state={"phase": prev.phase, "degraded": ""},
                        to_state={"phase": curr.phase, "degraded": curr.degraded},
                    ))

        return anomalies

    def build_report(self) -> Dict[str, Any]:
        anomalies = self.detect_anomalies()
        entries = self.entries()
        return {
            "date": self.date,
            "generatedAt": self._clock.format_iso(),
            "fieldCount": len(entries),
            "anomalyCount": len(anomalies),
            "entries": {
                field: [entry.to_dict() for entry in history]
                for field, history in entries.items()
            },
            "anomalies": [anomaly.to_dict() for anomaly in anomalies],
        }

    def save(self) -> Dict[str, Any]:
        """Write the lineage document and return it."""
        report = self.build_report()

        if self._store is not None:
            self._store.save(lineage_key(self.date), report)
            logger.info(
                f"Lineage saved: {lineage_key(self.date)} "
                f"(fields={report['fieldCount']}, anomalies={report['anomalyCount']})"
            )
        else:
            logger.debug("No store configured, lineage report not persisted")

        if report["anomalies"]:
            logger.warning(
                f"{report['anomalyCount']} lineage anomalies detected: "
                + ", ".join(f"{a['field']}:{a['type']}" for a in report["anomalies"])
            )

        return report
