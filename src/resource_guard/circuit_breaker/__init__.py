"""In-process async circuit breaker.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - State is process-local and owned by one ``CircuitBreaker`` instance per
    guarded dependency. Nothing is persisted.
  - ``OPEN -> HALF_OPEN`` is decided lazily when the next call arrives; there
    is no background timer.
  - At most one half-open probe is in flight per breaker. A failed probe
    reopens the circuit at once and discards earlier probe successes.
  - Excluded exceptions propagate without touching counters or state.
"""

from resource_guard.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from resource_guard.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from resource_guard.circuit_breaker.listeners import BreakerListener
from resource_guard.circuit_breaker.state import BreakerMetrics, CircuitState

__all__ = [
    "BreakerListener",
    "BreakerMetrics",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
]
