"""
Resilience Module Package.

Per-source protection primitives shared by every collector:

- circuit_breaker: CLOSED / OPEN / HALF_OPEN breaker and its registry
- retry: exponential-backoff retry running inside a breaker
- rate_limiter: token bucket per source
"""

from .circuit_breaker import (
    NO_FALLBACK,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerState,
    CircuitState,
)
from .rate_limiter import RateLimitConfig, RateLimiter, TokenBucket
from .retry import RetryExecutor


__all__ = [
    "NO_FALLBACK",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitState",
    "RateLimitConfig",
    "RateLimiter",
    "TokenBucket",
    "RetryExecutor",
]
