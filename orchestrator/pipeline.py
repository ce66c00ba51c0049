"""
Orchestrator - Phase Runner.

============================================================
RESPONSIBILITY
============================================================
Runs one phase with a timeout and linear retry.

- Race each attempt against the phase timeout (the losing
  attempt is cancelled)
- Retry up to PhaseConfig.retries attempts, waiting
  min(attempt * base_delay, max_delay) between attempts
- Track execution timing and attempt count
- Raise PhaseFailedError with the last error when all
  attempts fail

This is the phase-level retry layer. Per-call retries inside
collectors (exponential backoff) are a separate layer.

============================================================
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from core.clock import ClockProtocol, SystemClock
from core.exceptions import PhaseFailedError, PhaseTimeoutError
from orchestrator.models import PhaseConfig, PhaseOutcome


PhaseCall = Callable[[], Awaitable[Dict[str, Any]]]


class PhaseRunner:
    """
    Executes a single phase with timing, timeout and retry.
    """

    def __init__(
        self,
        clock: Optional[ClockProtocol] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        base_delay: float = 10.0,
        max_delay: float = 30.0,
    ):
        """
        Initialize phase runner.

        Args:
            clock: Time source for timing
            sleep: Awaitable sleep used between attempts
            base_delay: Seconds added per failed attempt
            max_delay: Upper bound of the wait between attempts
        """
        self._clock = clock or SystemClock()
        self._sleep = sleep or asyncio.sleep
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._logger = logging.getLogger(__name__)

    def retry_delay(self, attempt: int) -> float:
        """Wait after the given (1-based) failed attempt."""
        return min(attempt * self.base_delay, self.max_delay)

    async def _attempt(self, phase: PhaseConfig, call: PhaseCall) -> Dict[str, Any]:
        try:
            result = await asyncio.wait_for(call(), timeout=phase.timeout_seconds)
        except asyncio.TimeoutError:
            raise PhaseTimeoutError(phase.name, phase.timeout_seconds)
        return result or {}

    async def run_with_retry(self, phase: PhaseConfig, call: PhaseCall) -> PhaseOutcome:
        """
        Run call under phase's timeout and retry policy.

        Returns:
            PhaseOutcome of the successful attempt

        Raises:
            PhaseFailedError: every attempt failed or timed out
        """
        started_at = self._clock.now()
        attempts = max(1, phase.retries)
        last_error: Optional[Exception] = None

        self._logger.info(f"=== PHASE START: {phase.name} ({phase.description}) ===")

        for attempt in range(1, attempts + 1):
            try:
                result = await self._attempt(phase, call)
            except Exception as e:
                last_error = e
                self._logger.error(
                    f"{phase.name} attempt {attempt}/{attempts} failed: "
                    f"{type(e).__name__}: {e}"
                )
                if attempt < attempts:
                    delay = self.retry_delay(attempt)
                    self._logger.info(f"{phase.name} retrying in {delay:.0f}s")
                    await self._sleep(delay)
                continue

            completed_at = self._clock.now()
            duration = (completed_at - started_at).total_seconds()
            self._logger.info(
                f"=== PHASE COMPLETE: {phase.name} ({duration:.2f}s, attempt {attempt}) ==="
            )
            return PhaseOutcome(
                phase=phase.name,
                success=True,
                attempts=attempt,
                started_at=started_at,
                completed_at=completed_at,
                duration_seconds=duration,
                result=result,
            )

        self._logger.error(f"=== PHASE FAILED: {phase.name} after {attempts} attempt(s) ===")
        raise PhaseFailedError(phase.name, attempts, last_error)


__all__ = [
    "PhaseCall",
    "PhaseRunner",
]
