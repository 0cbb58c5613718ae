"""Observability hooks for circuit breakers."""

from typing import Protocol

from resource_guard.circuit_breaker.state import CircuitState


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Hooks run after the breaker has committed its state change. A hook
        that raises is logged and skipped; it never changes the outcome of
        the guarded call. ``on_state_change(OPEN -> HALF_OPEN)`` fires when
        the first call after the open timeout is admitted.
    """

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        """Handle circuit state transitions."""

    async def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while the circuit is open."""

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        """Handle failed protected call completion."""
