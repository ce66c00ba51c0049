"""
Resilience Module - Circuit Breaker.

============================================================
RESPONSIBILITY
============================================================
Stops the pipeline from hammering a source that keeps failing.

- CLOSED: calls pass through, consecutive failures are counted
- OPEN: calls are rejected (fallback or CircuitOpenError)
- HALF_OPEN: a single trial call at a time probes recovery

============================================================
STATE MACHINE
============================================================
CLOSED    -> OPEN       failure_threshold consecutive failures
OPEN      -> HALF_OPEN  timeout_seconds elapsed since opening
HALF_OPEN -> CLOSED     success_threshold consecutive successes
HALF_OPEN -> OPEN       any failure

============================================================
"""

import inspect
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set, Tuple

from core.clock import ClockProtocol, SystemClock
from core.exceptions import CircuitOpenError, ConfigurationError


logger = logging.getLogger(__name__)


# ============================================================
# TYPES
# ============================================================

class CircuitState(str, Enum):
    """Breaker states."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


ALLOWED_TRANSITIONS: Dict[CircuitState, Set[CircuitState]] = {
    CircuitState.CLOSED: {CircuitState.OPEN},
    CircuitState.OPEN: {CircuitState.HALF_OPEN},
    CircuitState.HALF_OPEN: {CircuitState.CLOSED, CircuitState.OPEN},
}


class _NoFallback:
    """Sentinel: no fallback declared (None is a legitimate fallback value)."""

    def __repr__(self) -> str:
        return "NO_FALLBACK"


NO_FALLBACK = _NoFallback()

STATE_HISTORY_LIMIT = 50


@dataclass
class CircuitBreakerConfig:
    """Per-source breaker thresholds."""

    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 60.0

    def validate(self) -> None:
        if self.failure_threshold < 1:
            raise ConfigurationError(
                "failure_threshold must be >= 1", config_key="failure_threshold"
            )
        if self.success_threshold < 1:
            raise ConfigurationError(
                "success_threshold must be >= 1", config_key="success_threshold"
            )
        if self.timeout_seconds < 0:
            raise ConfigurationError(
                "timeout_seconds must be >= 0", config_key="timeout_seconds"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=int(data.get("failure_threshold", 5)),
            success_threshold=int(data.get("success_threshold", 2)),
            timeout_seconds=float(data.get("timeout_seconds", 60.0)),
        )


@dataclass(frozen=True)
class CircuitBreakerState:
    """Serializable snapshot of one breaker."""

    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    opened_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "consecutiveFailures": self.consecutive_failures,
            "consecutiveSuccesses": self.consecutive_successes,
            "openedAt": self.opened_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CircuitBreakerState":
        return cls(
            state=CircuitState(data.get("state", CircuitState.CLOSED.value)),
            consecutive_failures=int(data.get("consecutiveFailures", 0)),
            consecutive_successes=int(data.get("consecutiveSuccesses", 0)),
            opened_at=data.get("openedAt"),
        )


@dataclass
class CircuitBreakerStats:
    """Lifetime counters for one breaker."""

    total_requests: int = 0
    total_successes: int = 0
    total_failures: int = 0
    total_rejections: int = 0
    last_failure_at: Optional[float] = None
    last_error: Optional[str] = None
    state_changes: Deque[Dict[str, Any]] = field(
        default_factory=lambda: deque(maxlen=STATE_HISTORY_LIMIT)
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "totalSuccesses": self.total_successes,
            "totalFailures": self.total_failures,
            "totalRejections": self.total_rejections,
            "lastFailureAt": self.last_failure_at,
            "lastError": self.last_error,
            "stateChanges": list(self.state_changes),
        }


async def resolve_fallback(fallback: Any) -> Any:
    """Return a fallback value, calling (and awaiting) it if it is callable."""
    if callable(fallback):
        fallback = fallback()
    if inspect.isawaitable(fallback):
        fallback = await fallback
    return fallback


# ============================================================
# CIRCUIT BREAKER
# ============================================================

class CircuitBreaker:
    """
    Three-state circuit breaker guarding one source.

    State mutations happen under a threading.Lock; the protected call
    itself runs outside the lock.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._name = name
        self._config = config or CircuitBreakerConfig()
        self._config.validate()
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._stats = CircuitBreakerStats()

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def stats(self) -> CircuitBreakerStats:
        return self._stats

    # --------------------------------------------------------
    # EXECUTION
    # --------------------------------------------------------

    async def execute(
        self,
        fn: Callable[[], Awaitable[Any]],
        fallback: Any = NO_FALLBACK,
    ) -> Any:
        """
        Run fn under breaker protection.

        Args:
            fn: Zero-argument callable returning an awaitable (or a value)
            fallback: Value or callable used when the call is rejected
                or fails. Without one, rejection raises CircuitOpenError
                and failures re-raise.
        """
        admitted, is_trial, retry_in = self._admit()

        if not admitted:
            if fallback is NO_FALLBACK:
                raise CircuitOpenError(self._name, retry_in=retry_in)
            logger.debug(f"[CircuitBreaker:{self._name}] rejected, using fallback")
            return await resolve_fallback(fallback)

        try:
            result = fn()
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self._on_failure(e)
            if fallback is NO_FALLBACK:
                raise
            logger.warning(
                f"[CircuitBreaker:{self._name}] call failed ({e}), using fallback"
            )
            return await resolve_fallback(fallback)
        else:
            self._on_success()
            return result
        finally:
            if is_trial:
                with self._lock:
                    self._trial_in_flight = False

    def _admit(self) -> Tuple[bool, bool, Optional[float]]:
        """Decide whether a call may proceed: (admitted, is_trial, retry_in)."""
        with self._lock:
            self._stats.total_requests += 1

            if self._state == CircuitState.OPEN:
                elapsed = self._clock.timestamp() - (self._opened_at or 0.0)
                if elapsed < self._config.timeout_seconds:
                    self._stats.total_rejections += 1
                    return False, False, self._config.timeout_seconds - elapsed
                self._transition(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self._stats.total_rejections += 1
                    return False, False, None
                self._trial_in_flight = True
                return True, True, None

            return True, False, None

    def _on_success(self) -> None:
        with self._lock:
            self._stats.total_successes += 1
            self._consecutive_failures = 0
            self._consecutive_successes += 1

            if (
                self._state == CircuitState.HALF_OPEN
                and self._consecutive_successes >= self._config.success_threshold
            ):
                self._transition(CircuitState.CLOSED)

    def _on_failure(self, error: Exception) -> None:
        with self._lock:
            self._stats.total_failures += 1
            self._stats.last_failure_at = self._clock.timestamp()
            self._stats.last_error = str(error)
            self._consecutive_successes = 0
            self._consecutive_failures += 1

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self._config.failure_threshold
            ):
                self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        """Move to new_state. Caller holds the lock."""
        old_state = self._state
        if new_state not in ALLOWED_TRANSITIONS[old_state]:
            raise RuntimeError(f"Illegal breaker transition {old_state} -> {new_state}")

        self._state = new_state
        now = self._clock.timestamp()

        if new_state == CircuitState.OPEN:
            self._opened_at = now
        elif new_state == CircuitState.HALF_OPEN:
            self._consecutive_successes = 0
        elif new_state == CircuitState.CLOSED:
            self._opened_at = None
            self._consecutive_failures = 0
            self._consecutive_successes = 0

        self._stats.state_changes.append({
            "from": old_state.value,
            "to": new_state.value,
            "at": now,
        })

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"[CircuitBreaker:{self._name}] {old_state.value} -> {new_state.value} "
            f"(failures={self._consecutive_failures})"
        )

    # --------------------------------------------------------
    # INSPECTION / PERSISTENCE
    # --------------------------------------------------------

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                state=self._state,
                consecutive_failures=self._consecutive_failures,
                consecutive_successes=self._consecutive_successes,
                opened_at=self._opened_at,
            )

    def restore(self, snapshot: CircuitBreakerState) -> None:
        """Load state persisted by a previous run."""
        with self._lock:
            self._state = snapshot.state
            self._consecutive_failures = snapshot.consecutive_failures
            self._consecutive_successes = snapshot.consecutive_successes
            self._opened_at = snapshot.opened_at
            self._trial_in_flight = False

    def reset(self) -> None:
        """Force CLOSED and clear counters."""
        with self._lock:
            old_state = self._state
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._consecutive_successes = 0
            self._opened_at = None
            self._trial_in_flight = False
            if old_state != CircuitState.CLOSED:
                self._stats.state_changes.append({
                    "from": old_state.value,
                    "to": CircuitState.CLOSED.value,
                    "at": self._clock.timestamp(),
                })
        logger.info(f"[CircuitBreaker:{self._name}] reset")

    def status(self) -> Dict[str, Any]:
        snapshot = self.snapshot()
        retry_in = None
        if snapshot.state == CircuitState.OPEN and snapshot.opened_at is not None:
            remaining = self._config.timeout_seconds - (
                self._clock.timestamp() - snapshot.opened_at
            )
            retry_in = max(0.0, remaining)
        return {
            "name": self._name,
            **snapshot.to_dict(),
            "retryInSeconds": retry_in,
            "stats": self._stats.to_dict(),
        }


# ============================================================
# REGISTRY
# ============================================================

class CircuitBreakerRegistry:
    """
    Holds one breaker per source.

    Built once per process by the dependency container and passed
    to whoever needs it.
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock or SystemClock()
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
    ) -> CircuitBreaker:
        """Return the breaker for name, creating it on first use."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    config=config or self._default_config,
                    clock=self._clock,
                )
                self._breakers[name] = breaker
            return breaker

    def get(self, name: str) -> Optional[CircuitBreaker]:
        with self._lock:
            return self._breakers.get(name)

    async def execute(
        self,
        name: str,
        fn: Callable[[], Awaitable[Any]],
        fallback: Any = NO_FALLBACK,
    ) -> Any:
        return await self.register(name).execute(fn, fallback=fallback)

    def snapshot(self) -> Dict[str, CircuitBreakerState]:
        with self._lock:
            breakers = dict(self._breakers)
        return {name: breaker.snapshot() for name, breaker in breakers.items()}

    def restore(self, snapshots: Dict[str, CircuitBreakerState]) -> None:
        for name, snapshot in snapshots.items():
            self.register(name).restore(snapshot)

    def status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            breakers = dict(self._breakers)
        return {name: breaker.status() for name, breaker in breakers.items()}

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()

    def __len__(self) -> int:
        return len(self._breakers)
