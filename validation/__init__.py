"""
Validation Package.

- validator: schema -> reasonability -> cross-source reconciliation
- schema: per-phase critical / supplementary field check
- thresholds: source priorities, tolerances and plausibility tables
"""

from validation.schema import (
    DEFAULT_PHASE_SCHEMAS,
    PhaseSchema,
    SchemaCheckResult,
    build_phase_schemas,
    check_phase_schema,
)
from validation.thresholds import (
    DEFAULT_FIELD_SPECS,
    DEFAULT_PASSTHROUGH,
    FieldSpec,
    Threshold,
    build_field_specs,
)
from validation.validator import (
    ValidationOutcome,
    ValidationReport,
    Validator,
    cross_check,
)
