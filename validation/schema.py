"""
Validation - Phase Schema Check.

Classifies the fields a phase produced into present, missing
critical and missing supplementary. Fields of a market with no
session are reported as closed_market and are not expected. The
pipeline aborts only when a phase expects critical fields and every
one of them is missing.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhaseSchema:
    critical: Tuple[str, ...] = ()
    supplementary: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SchemaCheckResult:
    phase: str
    present: Tuple[str, ...]
    missing_critical: Tuple[str, ...]
    missing_supplementary: Tuple[str, ...]
    abort_pipeline: bool
    closed_market: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "present": list(self.present),
            "missingCritical": list(self.missing_critical),
            "missingSupplementary": list(self.missing_supplementary),
            "abortPipeline": self.abort_pipeline,
            "closedMarket": list(self.closed_market),
        }


DEFAULT_PHASE_SCHEMAS: Dict[str, PhaseSchema] = {
    "phase1": PhaseSchema(
        critical=("SP500", "NASDAQ"),
        supplementary=("DJI", "VIX", "DXY", "US10Y", "GOLD", "OIL_WTI", "COPPER", "BTC"),
    ),
    "phase2": PhaseSchema(
        critical=("TAIEX",),
        supplementary=("USDTWD",),
    ),
    "phase3": PhaseSchema(
        critical=("TAIEX", "SP500"),
        supplementary=("NASDAQ", "DJI", "USDTWD", "VIX", "DXY", "US10Y"),
    ),
    "phase4": PhaseSchema(),
}


def build_phase_schemas(overrides: Optional[Mapping[str, Mapping[str, Any]]] = None) -> Dict[str, PhaseSchema]:
    schemas = dict(DEFAULT_PHASE_SCHEMAS)
    for phase, override in (overrides or {}).items():
        base = schemas.get(phase, PhaseSchema())
        schemas[phase] = PhaseSchema(
            critical=tuple(override.get("critical", base.critical)),
            supplementary=tuple(override.get("supplementary", base.supplementary)),
        )
    return schemas


def check_phase_schema(
    phase: str,
    fields_present: Iterable[str],
    schemas: Optional[Mapping[str, PhaseSchema]] = None,
    closed_fields: Iterable[str] = (),
) -> SchemaCheckResult:
    """
    Classify the fields of one phase against its schema.

    closed_fields are fields whose market had no session; when
    absent they are reported under closed_market instead of missing
    and do not count towards the abort.
    """
    schema = (schemas or DEFAULT_PHASE_SCHEMAS).get(phase, PhaseSchema())
    present = set(fields_present)
    closed = set(closed_fields) - present

    expected_critical = tuple(f for f in schema.critical if f not in closed)
    missing_critical = tuple(f for f in expected_critical if f not in present)
    missing_supplementary = tuple(
        f for f in schema.supplementary if f not in present and f not in closed
    )
    closed_market = tuple(f for f in schema.critical + schema.supplementary if f in closed)
    abort = bool(expected_critical) and len(missing_critical) == len(expected_critical)

    if abort:
        logger.error(f"[{phase}] all critical fields missing: {', '.join(missing_critical)}")
    elif missing_critical:
        logger.warning(f"[{phase}] missing critical fields: {', '.join(missing_critical)}")
    if missing_supplementary:
        logger.info(f"[{phase}] missing supplementary fields: {', '.join(missing_supplementary)}")
    if closed_market:
        logger.info(f"[{phase}] no session, not expected: {', '.join(closed_market)}")

    return SchemaCheckResult(
        phase=phase,
        present=tuple(sorted(present)),
        missing_critical=missing_critical,
        missing_supplementary=missing_supplementary,
        abort_pipeline=abort,
        closed_market=closed_market,
    )
