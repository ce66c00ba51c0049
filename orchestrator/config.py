"""
Orchestrator - Pipeline Configuration.

============================================================
RESPONSIBILITY
============================================================
Single configuration object for a pipeline process.

Sources, in increasing precedence:
1. Dataclass defaults
2. YAML file (config/pipeline.yaml)
3. Environment variables prefixed DIGEST_
4. CLI arguments (orchestrator/cli.py)

============================================================
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from core.exceptions import ConfigurationError
from orchestrator.models import DEFAULT_PHASE_CONFIGS, PHASE_ORDER, PhaseConfig
from resilience.circuit_breaker import CircuitBreakerConfig
from resilience.rate_limiter import RateLimitConfig


logger = logging.getLogger(__name__)


ENV_PREFIX = "DIGEST_"
DEFAULT_CONFIG_PATH = Path("config") / "pipeline.yaml"

DEFAULT_PREVIOUS_SESSION_MARKETS: Dict[str, Tuple[str, ...]] = {"phase1": ("XNYS",)}

STORE_BACKENDS = ("filesystem", "memory", "sql")
LOG_FORMATS = ("json", "text")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class PipelineConfig:
    """Configuration for the digest pipeline."""

    # Paths
    state_dir: str = "data/pipeline-state"
    """Directory of phase checkpoints, metrics and lineage documents."""

    cache_dir: str = "data/cache"
    """Directory of the collector response cache."""

    calendar_dir: Optional[str] = None
    """Holiday tables; defaults to the bundled market_calendar/data."""

    # Run
    timezone: str = "Asia/Taipei"
    """Timezone that defines the run date."""

    markets: Tuple[str, ...] = ("TWSE", "XNYS")

    previous_session_markets: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_PREVIOUS_SESSION_MARKETS)
    )
    """Per collection phase, markets whose sources report the session
    before the run date (the US close seen from Taipei)."""

    stale_threshold_hours: float = 3.0
    weekend_stale_threshold_hours: float = 48.0

    phases: Dict[str, PhaseConfig] = field(default_factory=lambda: dict(DEFAULT_PHASE_CONFIGS))

    phase_retry_base_delay: float = 10.0
    phase_retry_max_delay: float = 30.0

    # Collectors
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    rate_limits: Dict[str, RateLimitConfig] = field(default_factory=dict)
    collectors: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    collector_base_delay: float = 1.0
    fallback_retry_delays: Tuple[float, ...] = (1.0, 3.0, 10.0)

    # Validation
    field_overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    phase_schemas: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    # Storage
    store_backend: str = "filesystem"
    database_url: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    def stale_threshold(self, weekend_mode: bool) -> float:
        return self.weekend_stale_threshold_hours if weekend_mode else self.stale_threshold_hours

    def phase(self, name: str) -> PhaseConfig:
        try:
            return self.phases[name]
        except KeyError:
            raise ConfigurationError(f"Unknown phase: {name}", config_key="phases")

    # ============================================================
    # LOADERS
    # ============================================================

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        """Build from a parsed YAML document."""
        config = cls()
        data = data or {}

        paths = data.get("paths", {})
        config.state_dir = paths.get("state_dir", config.state_dir)
        config.cache_dir = paths.get("cache_dir", config.cache_dir)
        config.calendar_dir = paths.get("calendar_dir", config.calendar_dir)

        config.timezone = data.get("timezone", config.timezone)
        config.markets = tuple(data.get("markets", config.markets))
        if "previous_session" in data:
            config.previous_session_markets = {
                phase: tuple(markets or ())
                for phase, markets in (data.get("previous_session") or {}).items()
            }

        if "stale_threshold_hours" in data:
            config.stale_threshold_hours = float(data["stale_threshold_hours"])
        if "weekend_stale_threshold_hours" in data:
            config.weekend_stale_threshold_hours = float(data["weekend_stale_threshold_hours"])

        phases = dict(data.get("phases") or {})
        retry = phases.pop("retry", None) or {}
        config.phase_retry_base_delay = float(retry.get("base_delay", config.phase_retry_base_delay))
        config.phase_retry_max_delay = float(retry.get("max_delay", config.phase_retry_max_delay))
        for name, overrides in phases.items():
            base = config.phases.get(name)
            if base is None:
                raise ConfigurationError(f"Unknown phase in config: {name}", config_key="phases")
            config.phases[name] = base.with_overrides(overrides or {})

        if "circuit_breaker" in data:
            config.circuit_breaker = CircuitBreakerConfig.from_dict(data["circuit_breaker"])

        config.rate_limits = {
            name: RateLimitConfig.from_dict(limit)
            for name, limit in (data.get("rate_limits") or {}).items()
        }

        config.collectors = {
            phase: list(entries or [])
            for phase, entries in (data.get("collectors") or {}).items()
        }
        config.collector_base_delay = float(data.get("collector_base_delay", config.collector_base_delay))
        if "fallback_retry_delays" in data:
            config.fallback_retry_delays = tuple(float(d) for d in data["fallback_retry_delays"])

        config.field_overrides = dict(data.get("fields") or {})
        config.phase_schemas = dict(data.get("phase_schemas") or {})

        storage = data.get("storage", {})
        config.store_backend = storage.get("backend", config.store_backend)
        config.database_url = storage.get("database_url", config.database_url)

        logging_cfg = data.get("logging", {})
        config.log_level = logging_cfg.get("level", config.log_level)
        config.log_format = logging_cfg.get("format", config.log_format)

        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "PipelineConfig":
        """Load configuration from a YAML file."""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {path}", config_key="config")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}", config_key="config")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping: {path}", config_key="config")

        logger.info(f"Loaded pipeline config from {path}")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, base: Optional["PipelineConfig"] = None) -> "PipelineConfig":
        """Overlay DIGEST_* environment variables on base (or defaults)."""
        config = base or cls()
        try:
            return replace(
                config,
                state_dir=_env("STATE_DIR", config.state_dir),
                cache_dir=_env("CACHE_DIR", config.cache_dir),
                calendar_dir=_env("CALENDAR_DIR", config.calendar_dir),
                timezone=_env("TIMEZONE", config.timezone),
                stale_threshold_hours=float(_env("STALE_THRESHOLD_HOURS", str(config.stale_threshold_hours))),
                weekend_stale_threshold_hours=float(
                    _env("WEEKEND_STALE_THRESHOLD_HOURS", str(config.weekend_stale_threshold_hours))
                ),
                store_backend=_env("STORE_BACKEND", config.store_backend),
                database_url=_env("DATABASE_URL", config.database_url),
                log_level=_env("LOG_LEVEL", config.log_level),
                log_format=_env("LOG_FORMAT", config.log_format),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid {ENV_PREFIX}* environment value: {e}")

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "PipelineConfig":
        """YAML file (when present) overlaid with the environment."""
        if path is not None:
            base = cls.from_yaml(path)
        elif DEFAULT_CONFIG_PATH.exists():
            base = cls.from_yaml(DEFAULT_CONFIG_PATH)
        else:
            base = cls()
        return cls.from_env(base)

    # ============================================================
    # VALIDATION
    # ============================================================

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        for name in PHASE_ORDER:
            phase = self.phases.get(name)
            if phase is None:
                errors.append(f"phase table is missing {name}")
                continue
            if phase.timeout_seconds <= 0:
                errors.append(f"{name}.timeout_seconds must be positive")
            if phase.retries < 1:
                errors.append(f"{name}.retries must be at least 1")

        if self.stale_threshold_hours <= 0 or self.weekend_stale_threshold_hours <= 0:
            errors.append("stale thresholds must be positive")

        if self.phase_retry_base_delay < 0 or self.phase_retry_max_delay < 0:
            errors.append("phase retry delays must not be negative")

        try:
            self.circuit_breaker.validate()
        except ConfigurationError as e:
            errors.append(f"circuit_breaker: {e.message}")

        for name, limit in self.rate_limits.items():
            if limit.req_per_min < 1:
                errors.append(f"rate_limits.{name}.req_per_min must be at least 1")

        for phase in self.previous_session_markets:
            if phase not in ("phase1", "phase2"):
                errors.append(f"previous_session is only supported for phase1/phase2, got {phase}")

        for phase in self.collectors:
            if phase not in ("phase1", "phase2"):
                errors.append(f"collectors are only supported for phase1/phase2, got {phase}")

        if self.store_backend not in STORE_BACKENDS:
            errors.append(f"storage backend must be one of {', '.join(STORE_BACKENDS)}")
        if self.store_backend == "sql" and not self.database_url:
            errors.append("database_url is required for the sql storage backend")

        if self.log_format not in LOG_FORMATS:
            errors.append(f"log_format must be one of {', '.join(LOG_FORMATS)}")
        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")

        return errors

    def ensure_valid(self) -> "PipelineConfig":
        errors = self.validate()
        if errors:
            raise ConfigurationError("Invalid pipeline configuration: " + "; ".join(errors))
        return self


__all__ = [
    "ENV_PREFIX",
    "DEFAULT_CONFIG_PATH",
    "PipelineConfig",
]
