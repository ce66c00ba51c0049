"""
Data Ingestion - Type Definitions.

============================================================
PURPOSE
============================================================
Shared types for the collection layer.

- MarketDataPoint: one trust-annotated reading of one field
- CollectorResult: the envelope every collector returns
- PhaseResult: the checkpoint written by a collection phase
- CollectContext: what a collector is told about the run

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable data structures (derive with dataclasses.replace)
- Degradation is a label on the value, never an exception
- JSON round-trip through to_dict / from_dict using the
  camelCase keys of the checkpoint files

============================================================
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from market_calendar.models import DataQuality, FallbackDecision, MarketContext


# =============================================================
# ENUMS
# =============================================================

class DegradationLabel(str, Enum):
    """Trust label of a data point. NONE means fully trusted."""
    NONE = ""
    DELAYED = "DELAYED"
    UNVERIFIED = "UNVERIFIED"
    NA = "NA"


def to_float(value: Any) -> Optional[float]:
    """Parse numbers and numeric strings; None/NaN/garbage -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.replace(",", "").strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


# =============================================================
# DATA POINT
# =============================================================

@dataclass(frozen=True)
class MarketDataPoint:
    """
    A single reading of one market field from one source.

    Invariants:
    - value is None  <=>  degraded is NA
    - verified implies degraded is NONE
    """
    value: Optional[float]
    change: Optional[float] = None
    change_pct: Optional[float] = None
    source: str = "unknown"
    fetched_at: Optional[str] = None
    verified: bool = False
    degraded: DegradationLabel = DegradationLabel.NONE

    def __post_init__(self):
        degraded = DegradationLabel(self.degraded)
        value = self.value
        if value is not None and not isinstance(value, (int, float)):
            raise TypeError(f"value must be numeric or None, got {type(value).__name__}")
        if value is not None and math.isnan(value):
            value = None

        if value is None:
            degraded = DegradationLabel.NA
            object.__setattr__(self, "verified", False)
        elif degraded == DegradationLabel.NA:
            raise ValueError(f"NA data point must not carry a value ({value})")

        if self.verified and degraded != DegradationLabel.NONE:
            raise ValueError(f"verified data point cannot be degraded ({degraded.value})")

        object.__setattr__(self, "value", value)
        object.__setattr__(self, "degraded", degraded)

    @classmethod
    def na(cls, source: str = "none") -> "MarketDataPoint":
        """Placeholder for a field no source could supply."""
        return cls(value=None, source=source, degraded=DegradationLabel.NA)

    @property
    def is_na(self) -> bool:
        return self.degraded == DegradationLabel.NA

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "change": self.change,
            "changePct": self.change_pct,
            "source": self.source,
            "fetchedAt": self.fetched_at,
            "verified": self.verified,
            "degraded": self.degraded.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarketDataPoint":
        """Build from checkpoint JSON. Raises ValueError on malformed input."""
        if not isinstance(data, Mapping):
            raise ValueError(f"expected object, got {type(data).__name__}")
        if "value" not in data:
            raise ValueError("missing 'value'")

        raw_value = data.get("value")
        value = to_float(raw_value)
        if raw_value is not None and value is None and not _is_nan(raw_value):
            raise ValueError(f"non-numeric value {raw_value!r}")

        degraded = data.get("degraded") or ""
        try:
            label = DegradationLabel(degraded)
        except ValueError:
            raise ValueError(f"unknown degradation label {degraded!r}")

        return cls(
            value=value,
            change=to_float(data.get("change")),
            change_pct=to_float(data.get("changePct", data.get("change_pct"))),
            source=str(data.get("source") or "unknown"),
            fetched_at=data.get("fetchedAt", data.get("fetched_at")),
            verified=bool(data.get("verified", False)) and value is not None and label == DegradationLabel.NONE,
            degraded=label,
        )

    def with_source(self, source: str) -> "MarketDataPoint":
        return replace(self, source=source)


def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


# =============================================================
# COLLECTION CONTEXT
# =============================================================

@dataclass(frozen=True)
class CollectContext:
    """Run information handed to every collector."""
    date: str
    phase: str
    market_context: Dict[str, MarketContext] = field(default_factory=dict)
    previous_phase: Optional[Dict[str, Any]] = None
    weekend_mode: bool = False
    session_dates: Dict[str, str] = field(default_factory=dict)

    def is_market_open(self, market: Optional[str]) -> bool:
        """True when market is unknown/unbound or trading on the run date."""
        if not market or market not in self.market_context:
            return True
        return self.market_context[market].is_trading_day

    def session_date(self, market: Optional[str]) -> str:
        """Session a market-bound source reports; the run date unless resolved otherwise."""
        return self.session_dates.get(market, self.date) if market else self.date


# =============================================================
# COLLECTOR RESULT
# =============================================================

@dataclass(frozen=True)
class CollectorResult:
    """
    Standardized envelope returned by Collector.collect().

    points holds the per-field readings; payload holds non-point
    data (tables, breakdowns) passed through to the brief.
    """
    source: str
    collected_at: Optional[str] = None
    points: Dict[str, MarketDataPoint] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)
    from_cache: bool = False
    quality: DataQuality = DataQuality.OK
    reason: Optional[str] = None
    prev_date: Optional[str] = None
    skipped: bool = False
    malformed: Dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        has_value = any(not p.is_na for p in self.points.values())
        return not has_value and not self.payload

    def present_fields(self) -> FrozenSet[str]:
        return frozenset(k for k, p in self.points.items() if not p.is_na)

    def with_decision(self, decision: FallbackDecision) -> "CollectorResult":
        """Stamp a fallback decision onto this envelope."""
        return replace(
            self,
            quality=decision.quality,
            reason=decision.reason,
            prev_date=decision.prev_date,
        )

    def with_quality(self, quality: DataQuality, reason: Optional[str] = None) -> "CollectorResult":
        return replace(self, quality=quality, reason=reason)

    @classmethod
    def skipped_result(cls, source: str, reason: Optional[str], collected_at: Optional[str] = None) -> "CollectorResult":
        return cls(
            source=source,
            collected_at=collected_at,
            quality=DataQuality.NO_MARKET_DATA,
            reason=reason,
            skipped=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "collectedAt": self.collected_at,
            "points": {k: p.to_dict() for k, p in self.points.items()},
            "payload": self.payload,
            "fromCache": self.from_cache,
            "quality": self.quality.value,
            "reason": self.reason,
            "prevDate": self.prev_date,
            "skipped": self.skipped,
            "malformed": self.malformed,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CollectorResult":
        """Lenient parse: malformed points are recorded, not raised."""
        points: Dict[str, MarketDataPoint] = {}
        malformed: Dict[str, str] = dict(data.get("malformed") or {})

        raw_points = data.get("points") or {}
        if not isinstance(raw_points, Mapping):
            malformed["*"] = f"points must be an object, got {type(raw_points).__name__}"
            raw_points = {}

        for name, raw in raw_points.items():
            try:
                points[name] = MarketDataPoint.from_dict(raw)
            except (TypeError, ValueError) as e:
                malformed[name] = str(e)

        try:
            quality = DataQuality(data.get("quality") or DataQuality.OK.value)
        except ValueError:
            quality = DataQuality.OK

        return cls(
            source=str(data.get("source") or "unknown"),
            collected_at=data.get("collectedAt"),
            points=points,
            payload=dict(data.get("payload") or {}),
            from_cache=bool(data.get("fromCache", False)),
            quality=quality,
            reason=data.get("reason"),
            prev_date=data.get("prevDate"),
            skipped=bool(data.get("skipped", False)),
            malformed=malformed,
        )


# =============================================================
# PHASE RESULT
# =============================================================

@dataclass(frozen=True)
class PhaseResult:
    """Checkpoint of a collection phase (phase1 / phase2)."""
    phase: str
    date: str
    collected_at: str
    duration_seconds: float = 0.0
    per_source_results: Dict[str, Optional[CollectorResult]] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    market_context: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    session_dates: Dict[str, str] = field(default_factory=dict)

    def present_fields(self) -> FrozenSet[str]:
        """Fields for which at least one source produced a value."""
        present = set()
        for result in self.per_source_results.values():
            if result is not None:
                present |= result.present_fields()
        return frozenset(present)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "date": self.date,
            "collectedAt": self.collected_at,
            "duration": self.duration_seconds,
            "perSourceResults": {
                name: result.to_dict() if result is not None else None
                for name, result in self.per_source_results.items()
            },
            "errors": self.errors,
            "marketContext": self.market_context,
            "sessionDates": self.session_dates,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PhaseResult":
        return cls(
            phase=data.get("phase", ""),
            date=data.get("date", ""),
            collected_at=data.get("collectedAt", ""),
            duration_seconds=float(data.get("duration") or 0.0),
            per_source_results={
                name: CollectorResult.from_dict(raw) if raw is not None else None
                for name, raw in (data.get("perSourceResults") or {}).items()
            },
            errors=dict(data.get("errors") or {}),
            market_context=dict(data.get("marketContext") or {}),
            session_dates=dict(data.get("sessionDates") or {}),
        )


# =============================================================
# CONFIGURATION TYPES
# =============================================================

@dataclass(frozen=True)
class CollectorConfig:
    """Base configuration for all collectors."""
    source_name: str
    enabled: bool = True
    market: Optional[str] = None
    max_retries: int = 3
    timeout_seconds: float = 30.0
    cache_ttl_seconds: float = 300.0
    critical_fields: Tuple[str, ...] = ()


@dataclass(frozen=True)
class HttpQuoteConfig(CollectorConfig):
    """
    Configuration for HttpQuoteCollector.

    field_map maps canonical field names (SP500) to keys of the JSON
    document served at url; payload_keys are copied verbatim.
    """
    url: str = ""
    params: Tuple[Tuple[str, str], ...] = ()
    headers: Tuple[Tuple[str, str], ...] = ()
    field_map: Tuple[Tuple[str, str], ...] = ()
    payload_keys: Tuple[str, ...] = ()
    data_key: Optional[str] = None
