"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception hierarchy of the digest pipeline.

- Typed errors for collectors, breakers, phases and storage
- Every exception carries severity and context for logging
- Degradation (DELAYED / UNVERIFIED / NA) is NOT an exception;
  only hard failures are raised

============================================================
EXCEPTION HIERARCHY
============================================================
PipelineException (base)
├── ConfigurationError
├── CollectorError
│   └── CircuitOpenError
├── PhaseError
│   ├── PhaseTimeoutError
│   ├── PhaseFailedError
│   ├── PhaseInputError
│   ├── StaleDataError
│   └── RequiredPhaseFailure
├── SchemaValidationFailure
└── StorageError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# BASE EXCEPTION
# ============================================================

class PipelineException(Exception):
    """
    Base exception for all pipeline errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - recoverable: whether a retry may succeed
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_recoverable: bool = True

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(PipelineException):
    """Error in configuration (unknown mode, invalid phase table, ...)."""

    default_severity = Severity.HIGH
    default_recoverable = False

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, context=context, **kwargs)


# ============================================================
# COLLECTOR ERRORS
# ============================================================

class CollectorError(PipelineException):
    """A collector failed to fetch or parse its source."""

    def __init__(self, message: str, source: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if source:
            context["source"] = source
        super().__init__(message, context=context, **kwargs)
        self.source = source


class CircuitOpenError(CollectorError):
    """Call rejected because the source's circuit breaker is open."""

    default_severity = Severity.LOW

    def __init__(self, source: str, retry_in: Optional[float] = None):
        context = {}
        if retry_in is not None:
            context["retry_in_seconds"] = round(retry_in, 3)
        super().__init__(
            f"Circuit breaker OPEN for {source}",
            source=source,
            context=context,
        )
        self.retry_in = retry_in


# ============================================================
# PHASE ERRORS
# ============================================================

class PhaseError(PipelineException):
    """Base class for phase execution errors."""

    def __init__(self, message: str, phase: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if phase:
            context["phase"] = phase
        super().__init__(message, context=context, **kwargs)
        self.phase = phase


class PhaseTimeoutError(PhaseError):
    """A phase attempt exceeded its configured timeout."""

    def __init__(self, phase: str, timeout_seconds: float):
        super().__init__(
            f"{phase} timeout after {timeout_seconds}s",
            phase=phase,
            context={"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class PhaseFailedError(PhaseError):
    """A phase exhausted all of its attempts."""

    default_severity = Severity.HIGH

    def __init__(self, phase: str, attempts: int, cause: BaseException):
        super().__init__(
            f"{phase} failed after {attempts} attempt(s): {cause}",
            phase=phase,
            context={"attempts": attempts},
            cause=cause,
        )
        self.attempts = attempts


class PhaseInputError(PhaseError):
    """A phase could not load the checkpoint it depends on."""

    def __init__(self, phase: str, missing: str):
        super().__init__(
            f"{phase} requires {missing} checkpoint",
            phase=phase,
            context={"missing": missing},
        )
        self.missing = missing


class StaleDataError(PhaseError):
    """Upstream checkpoint is older than the allowed age."""

    def __init__(self, phase: str, age_hours: float, max_age_hours: float):
        super().__init__(
            f"Data too old: {age_hours:.1f}h (max {max_age_hours}h)",
            phase=phase,
            context={"age_hours": round(age_hours, 2), "max_age_hours": max_age_hours},
        )


class RequiredPhaseFailure(PhaseError):
    """A required phase failed; the run is aborted."""

    default_severity = Severity.CRITICAL
    default_recoverable = False


# ============================================================
# VALIDATION / STORAGE ERRORS
# ============================================================

class SchemaValidationFailure(PipelineException):
    """Every critical field of a phase is missing."""

    default_severity = Severity.CRITICAL
    default_recoverable = False

    def __init__(self, phase: str, missing_fields: List[str]):
        super().__init__(
            f"{phase} missing all critical fields: {', '.join(missing_fields)}",
            context={"phase": phase, "missing_fields": list(missing_fields)},
        )
        self.phase = phase
        self.missing_fields = list(missing_fields)


class StorageError(PipelineException):
    """Failed to read or write a checkpoint/document."""

    default_severity = Severity.HIGH

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if key:
            context["key"] = key
        super().__init__(message, context=context, **kwargs)


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "Severity",
    "PipelineException",
    "ConfigurationError",
    "CollectorError",
    "CircuitOpenError",
    "PhaseError",
    "PhaseTimeoutError",
    "PhaseFailedError",
    "PhaseInputError",
    "StaleDataError",
    "RequiredPhaseFailure",
    "SchemaValidationFailure",
    "StorageError",
]
