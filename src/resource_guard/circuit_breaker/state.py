"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerMetrics:
    """Point-in-time view of breaker internals for monitoring and logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_count: Consecutive failures since the last reset.
        success_count: Consecutive successful probes while ``HALF_OPEN``.
        next_attempt_at: Earliest moment a call is admitted while ``OPEN``.
    """

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    next_attempt_at: datetime

    def as_dict(self) -> dict[str, object]:
        """Return a JSON-friendly mapping of the snapshot."""
        return {
            "name": self.name,
            "state": str(self.state),
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "next_attempt_at": self.next_attempt_at.isoformat(),
        }
