"""
Validation - Field Specifications.

============================================================
PURPOSE
============================================================
Static reconciliation tables:

- which sources may supply each field, in priority order
- the cross-source tolerance (relative, as a fraction)
- the reasonability thresholds (range and max daily move)

Fields without a tolerance are single-source "pick best"
fields: the first usable candidate wins without cross-check.

============================================================
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class Threshold:
    """Plausible range and maximum absolute daily change (percent)."""
    min: float
    max: float
    max_daily_change_pct: float


@dataclass(frozen=True)
class FieldSpec:
    name: str
    sources: Tuple[str, ...]
    tolerance: Optional[float] = None
    threshold: Optional[Threshold] = None


# US10Y max daily change is in percentage points, not percent.
THRESHOLDS: Dict[str, Threshold] = {
    "TAIEX": Threshold(10000, 50000, 10),
    "SP500": Threshold(2000, 15000, 7),
    "NASDAQ": Threshold(5000, 30000, 7),
    "USDTWD": Threshold(28.0, 35.0, 2),
    "VIX": Threshold(8, 90, 50),
    "DXY": Threshold(80, 130, 3),
    "US10Y": Threshold(0.5, 8.0, 0.3),
}

CROSS_CHECK_TOLERANCE: Dict[str, float] = {
    "TAIEX": 0.005,
    "SP500": 0.003,
    "NASDAQ": 0.003,
    "USDTWD": 0.005,
}

_FIELD_SOURCES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("TAIEX", ("twse", "finmind")),
    ("SP500", ("fmp", "yahoo")),
    ("NASDAQ", ("fmp", "yahoo")),
    ("DJI", ("fmp", "yahoo")),
    ("USDTWD", ("twse", "yahoo")),
    ("VIX", ("fmp", "yahoo")),
    ("DXY", ("fmp",)),
    ("US10Y", ("fmp",)),
    ("GOLD", ("yahoo",)),
    ("OIL_WTI", ("yahoo",)),
    ("COPPER", ("yahoo",)),
    ("BTC", ("yahoo",)),
)

DEFAULT_FIELD_SPECS: Tuple[FieldSpec, ...] = tuple(
    FieldSpec(
        name=name,
        sources=sources,
        tolerance=CROSS_CHECK_TOLERANCE.get(name),
        threshold=THRESHOLDS.get(name),
    )
    for name, sources in _FIELD_SOURCES
)

# Non-point payload keys copied into the snapshot from one source.
DEFAULT_PASSTHROUGH: Tuple[Tuple[str, str], ...] = (
    ("institutional", "twse"),
    ("margin", "twse"),
    ("taiexVolume", "twse"),
)


def build_field_specs(overrides: Optional[Mapping[str, Mapping[str, Any]]] = None) -> Tuple[FieldSpec, ...]:
    """
    Apply per-field overrides from configuration.

    overrides = {"SP500": {"tolerance": 0.004, "sources": ["yahoo", "fmp"]},
                 "SOX": {"sources": ["yahoo"], "min": 1000, "max": 10000,
                         "max_daily_change_pct": 10}}
    """
    specs = {spec.name: spec for spec in DEFAULT_FIELD_SPECS}

    for name, override in (overrides or {}).items():
        base = specs.get(name, FieldSpec(name=name, sources=()))
        threshold = base.threshold
        if {"min", "max", "max_daily_change_pct"} & set(override):
            current = threshold or Threshold(float("-inf"), float("inf"), float("inf"))
            threshold = Threshold(
                min=float(override.get("min", current.min)),
                max=float(override.get("max", current.max)),
                max_daily_change_pct=float(
                    override.get("max_daily_change_pct", current.max_daily_change_pct)
                ),
            )
        tolerance = override.get("tolerance", base.tolerance)
        specs[name] = FieldSpec(
            name=name,
            sources=tuple(override.get("sources", base.sources)),
            tolerance=float(tolerance) if tolerance is not None else None,
            threshold=threshold,
        )

    return tuple(specs.values())
