"""
Validation - Validator.

============================================================
RESPONSIBILITY
============================================================
Reconciles the per-source readings of phases 1 and 2 into one
canonical MarketDataPoint per field.

    Layer 1  schema          malformed candidates are reported and dropped
    Layer 2  reasonability   out-of-range values warn; an excessive
                             daily move marks the field UNVERIFIED
    Layer 3  cross-check     the top two candidates must agree within
                             the field tolerance, else UNVERIFIED

============================================================
FAILURE POLICY
============================================================
- A problem with one field degrades that field; it never raises
- A field nobody supplied becomes an NA placeholder
- validate() is a pure function of its arguments: inputs are not
  mutated and no wall-clock value enters the result

============================================================
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from data_ingestion.types import CollectorResult, DegradationLabel, MarketDataPoint
from validation.thresholds import DEFAULT_FIELD_SPECS, DEFAULT_PASSTHROUGH, FieldSpec


logger = logging.getLogger(__name__)


SourceBundle = Mapping[str, Union[CollectorResult, Mapping[str, Any], None]]


# =============================================================
# RESULT TYPES
# =============================================================

@dataclass(frozen=True)
class ValidationReport:
    schema_errors: Tuple[str, ...] = ()
    reasonability_warnings: Tuple[str, ...] = ()
    cross_check_warnings: Tuple[str, ...] = ()
    degraded_fields: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "schemaErrors": list(self.schema_errors),
            "reasonabilityWarnings": list(self.reasonability_warnings),
            "crossCheckWarnings": list(self.cross_check_warnings),
            "degradedFields": list(self.degraded_fields),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ValidationReport":
        return cls(
            schema_errors=tuple(data.get("schemaErrors", ())),
            reasonability_warnings=tuple(data.get("reasonabilityWarnings", ())),
            cross_check_warnings=tuple(data.get("crossCheckWarnings", ())),
            degraded_fields=tuple(data.get("degradedFields", ())),
        )


@dataclass(frozen=True)
class ValidationOutcome:
    date: Optional[str]
    points: Dict[str, MarketDataPoint]
    extras: Dict[str, Any]
    validation_report: ValidationReport
    has_errors: bool

    @property
    def market_data(self) -> Dict[str, Any]:
        """Snapshot in checkpoint form: {date, FIELD: point, extra: payload}."""
        data: Dict[str, Any] = {"date": self.date}
        data.update({name: point.to_dict() for name, point in self.points.items()})
        data.update(self.extras)
        return data


@dataclass
class _ReportBuilder:
    schema_errors: List[str] = field(default_factory=list)
    reasonability_warnings: List[str] = field(default_factory=list)
    cross_check_warnings: List[str] = field(default_factory=list)
    degraded_fields: List[str] = field(default_factory=list)

    def degrade(self, label: str) -> None:
        if label not in self.degraded_fields:
            self.degraded_fields.append(label)

    def build(self) -> ValidationReport:
        return ValidationReport(
            schema_errors=tuple(self.schema_errors),
            reasonability_warnings=tuple(self.reasonability_warnings),
            cross_check_warnings=tuple(self.cross_check_warnings),
            degraded_fields=tuple(self.degraded_fields),
        )


# =============================================================
# HELPERS
# =============================================================

def relative_diff(a: float, b: float) -> Optional[float]:
    """|a-b| / max(|a|,|b|); None when either side is zero."""
    if a == 0 or b == 0:
        return None
    return abs(a - b) / max(abs(a), abs(b))


def cross_check(a: Any, b: Any, tolerance: float) -> bool:
    """True when two numeric readings agree within tolerance."""
    if isinstance(a, bool) or isinstance(b, bool):
        return False
    if not isinstance(a, (int, float)) or not isinstance(b, (int, float)):
        return False
    diff = relative_diff(a, b)
    return diff is not None and diff <= tolerance


# =============================================================
# VALIDATOR
# =============================================================

class Validator:
    """Three-layer reconciliation of per-source readings."""

    def __init__(
        self,
        field_specs: Sequence[FieldSpec] = DEFAULT_FIELD_SPECS,
        passthrough: Sequence[Tuple[str, str]] = DEFAULT_PASSTHROUGH,
    ):
        self._field_specs = tuple(field_specs)
        self._passthrough = tuple(passthrough)

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self._field_specs)

    def validate(self, collected_data: SourceBundle, date: Optional[str] = None) -> ValidationOutcome:
        """
        Reconcile collected_data ({source: CollectorResult}) for date.

        Returns:
            ValidationOutcome with one point per configured field
        """
        report = _ReportBuilder()
        sources = self._normalize_sources(collected_data, report)

        points: Dict[str, MarketDataPoint] = {}
        for spec in self._field_specs:
            points[spec.name] = self._merge_field(spec, sources, report)

        extras: Dict[str, Any] = {}
        for key, source in self._passthrough:
            result = sources.get(source)
            if result is not None and result.payload.get(key) is not None:
                extras[key] = result.payload[key]

        if not date:
            report.schema_errors.append("snapshot is missing date")

        validation_report = report.build()
        has_errors = bool(validation_report.schema_errors)

        logger.info(
            f"Validation complete: degraded={len(validation_report.degraded_fields)} "
            f"schemaErrors={len(validation_report.schema_errors)} "
            f"crossCheckWarnings={len(validation_report.cross_check_warnings)} "
            f"reasonabilityWarnings={len(validation_report.reasonability_warnings)}"
        )
        if validation_report.degraded_fields:
            logger.warning(
                f"{len(validation_report.degraded_fields)} fields degraded: "
                f"{', '.join(validation_report.degraded_fields)}"
            )

        return ValidationOutcome(
            date=date,
            points=points,
            extras=extras,
            validation_report=validation_report,
            has_errors=has_errors,
        )

    # ============================================================
    # LAYER 1: SCHEMA
    # ============================================================

    def _normalize_sources(
        self,
        collected_data: SourceBundle,
        report: _ReportBuilder,
    ) -> Dict[str, CollectorResult]:
        sources: Dict[str, CollectorResult] = {}

        for name, entry in (collected_data or {}).items():
            if entry is None:
                continue
            if isinstance(entry, CollectorResult):
                result = entry
            elif isinstance(entry, Mapping):
                result = CollectorResult.from_dict(entry)
            else:
                report.schema_errors.append(
                    f"{name}: unexpected result type {type(entry).__name__}"
                )
                continue

            for field_name, problem in sorted(result.malformed.items()):
                report.schema_errors.append(f"{name}.{field_name}: {problem}")
            sources[name] = result

        return sources

    # ============================================================
    # LAYERS 2-3: MERGE
    # ============================================================

    def _merge_field(
        self,
        spec: FieldSpec,
        sources: Mapping[str, CollectorResult],
        report: _ReportBuilder,
    ) -> MarketDataPoint:
        candidates = []
        for source in spec.sources:
            result = sources.get(source)
            if result is None:
                continue
            point = result.points.get(spec.name)
            if point is None or point.is_na:
                continue
            candidates.append(point)

        if not candidates:
            report.degrade(spec.name)
            return MarketDataPoint.na("none")

        primary = candidates[0]
        unverified = False

        if spec.threshold is not None:
            unverified = self._check_reasonability(spec, primary, report)

        verified = False
        if len(candidates) >= 2 and spec.tolerance is not None:
            secondary = candidates[1]
            if cross_check(primary.value, secondary.value, spec.tolerance):
                verified = True
            else:
                diff = relative_diff(primary.value, secondary.value)
                diff_text = f"{diff * 100:.2f}%" if diff is not None else "n/a"
                report.cross_check_warnings.append(
                    f"{spec.name} cross-check failed: "
                    f"{primary.source}={primary.value} vs {secondary.source}={secondary.value} "
                    f"(diff {diff_text} > {spec.tolerance * 100:.1f}%)"
                )
                unverified = True

        if unverified:
            report.degrade(f"{spec.name}(UNVERIFIED)")
            return replace(primary, degraded=DegradationLabel.UNVERIFIED, verified=False)

        return replace(
            primary,
            verified=verified and primary.degraded == DegradationLabel.NONE,
        )

    def _check_reasonability(
        self,
        spec: FieldSpec,
        point: MarketDataPoint,
        report: _ReportBuilder,
    ) -> bool:
        """Record warnings; True when the daily move marks the field UNVERIFIED."""
        threshold = spec.threshold
        value = point.value

        if value < threshold.min or value > threshold.max:
            report.reasonability_warnings.append(
                f"{spec.name} value {value} outside plausible range "
                f"[{threshold.min}, {threshold.max}]"
            )

        if point.change_pct is not None and abs(point.change_pct) > threshold.max_daily_change_pct:
            report.reasonability_warnings.append(
                f"{spec.name} daily change {point.change_pct:.2f}% exceeds "
                f"{threshold.max_daily_change_pct}%, marked UNVERIFIED"
            )
            return True

        return False
