"""Core circuit breaker implementation."""

import inspect
import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import ParamSpec, TypeVar, cast

from resource_guard.circuit_breaker.exceptions import CircuitOpenError
from resource_guard.circuit_breaker.listeners import BreakerListener
from resource_guard.circuit_breaker.state import BreakerMetrics, CircuitState
from resource_guard.logging import (
    AnyLogger,
    get_logger,
    log_error,
    log_exception,
    log_info,
    log_warning,
)

T = TypeVar("T")
P = ParamSpec("P")

_Transition = tuple[CircuitState, CircuitState]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures while ``CLOSED`` before opening.
        success_threshold: Consecutive probe successes while ``HALF_OPEN``
            before closing.
        open_timeout: Seconds to stay ``OPEN`` before admitting a probe.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that propagate without counting.
    """

    failure_threshold: int = 5
    success_threshold: int = 2
    open_timeout: float = 60.0
    expected_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.open_timeout < 0:
            raise ValueError("open_timeout must be >= 0")


@dataclass(frozen=True, slots=True)
class _Admission:
    allowed: bool
    probe: bool = False
    retry_after: float = 0.0
    transition: _Transition | None = None
    generation: int = 0


class CircuitBreaker:
    """Stateful guard around one unreliable dependency.

    All state lives on the instance. Each read-decide-mutate step runs under a
    thread lock with no ``await`` inside it, so the guarded action is never
    executed while the lock is held.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        logger: AnyLogger | None = None,
    ) -> None:
        """Build a circuit breaker in the ``CLOSED`` state.

        Args:
            name: Breaker name used in errors, logs and metrics.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events.
            logger: Structured logger. Defaults to this module's logger.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._logger = get_logger(__name__) if logger is None else logger
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._next_attempt_at = _utcnow()
        self._probe_in_flight = False
        self._generation = 0

    def get_state(self) -> CircuitState:
        """Return the current state without side effects."""
        with self._lock:
            return self._state

    def get_metrics(self) -> BreakerMetrics:
        """Return a snapshot of state and counters without side effects."""
        with self._lock:
            return BreakerMetrics(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                next_attempt_at=self._next_attempt_at,
            )

    def reset(self) -> None:
        """Force the breaker back to ``CLOSED`` with both counters zeroed.

        Listeners are not notified; use this for administrative recovery. Calls
        still running from before the reset no longer affect the breaker.
        """
        with self._lock:
            previous = self._state
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._probe_in_flight = False
            self._generation += 1
        log_info(
            self._logger,
            "circuit_breaker.reset",
            breaker=self.name,
            previous_state=str(previous),
        )

    async def execute(self, action: Callable[[], Awaitable[T] | T]) -> T:
        """Run a zero-argument action under breaker protection.

        Args:
            action: Sync or async callable performing the dependency call.

        Returns:
            The action's result.

        Raises:
            CircuitOpenError: When the call is rejected without running
                ``action``.
            Exception: The action's own exception, unchanged.
        """
        return await self.call(action)

    async def call(
        self,
        func: Callable[P, Awaitable[T] | T],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke ``func(*args, **kwargs)`` under breaker protection.

        Same semantics as :meth:`execute`; arguments are forwarded to
        ``func``. Awaitable results are awaited.
        """
        with self._lock:
            admission = self._admit(_utcnow())

        if admission.transition is not None:
            log_info(self._logger, "circuit_breaker.half_open", breaker=self.name)
            await self._emit_state_change(*admission.transition)

        if not admission.allowed:
            log_warning(
                self._logger,
                "circuit_breaker.rejected",
                breaker=self.name,
                retry_after=admission.retry_after,
            )
            await self._emit("on_call_rejected", self.name)
            raise CircuitOpenError(self.name, retry_after=admission.retry_after)

        start = time.monotonic()
        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except self.config.excluded_exceptions:
            raise
        except self.config.expected_exceptions as exc:
            elapsed = max(time.monotonic() - start, 0.0)
            with self._lock:
                transition = self._record_failure(_utcnow(), admission)
                failure_count = self._failure_count
            await self._emit("on_call_failed", self.name, exc, elapsed)
            if transition is not None:
                log_error(
                    self._logger,
                    "circuit_breaker.opened",
                    breaker=self.name,
                    failure_count=failure_count,
                    open_timeout=self.config.open_timeout,
                )
                await self._emit_state_change(*transition)
            raise
        else:
            elapsed = max(time.monotonic() - start, 0.0)
            with self._lock:
                transition = self._record_success(admission)
            if transition is not None:
                log_info(self._logger, "circuit_breaker.closed", breaker=self.name)
                await self._emit_state_change(*transition)
            await self._emit("on_call_succeeded", self.name, elapsed)
            return cast(T, result)
        finally:
            if admission.probe:
                with self._lock:
                    if admission.generation == self._generation:
                        self._probe_in_flight = False

    def _admit(self, now: datetime) -> _Admission:
        transition: _Transition | None = None
        if self._state == CircuitState.OPEN:
            if now < self._next_attempt_at:
                retry_after = (self._next_attempt_at - now).total_seconds()
                return _Admission(allowed=False, retry_after=retry_after)
            self._state = CircuitState.HALF_OPEN
            self._success_count = 0
            transition = (CircuitState.OPEN, CircuitState.HALF_OPEN)

        if self._state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                return _Admission(
                    allowed=False,
                    transition=transition,
                    generation=self._generation,
                )
            self._probe_in_flight = True
            return _Admission(
                allowed=True,
                probe=True,
                transition=transition,
                generation=self._generation,
            )

        return _Admission(allowed=True, generation=self._generation)

    def _open(self, now: datetime) -> None:
        self._state = CircuitState.OPEN
        self._next_attempt_at = now + timedelta(seconds=self.config.open_timeout)
        self._success_count = 0
        self._probe_in_flight = False
        self._generation += 1

    def _record_failure(
        self, now: datetime, admission: _Admission
    ) -> _Transition | None:
        # Calls admitted before the last open or reset no longer count.
        if admission.generation != self._generation:
            return None

        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN:
            self._open(now)
            return (CircuitState.HALF_OPEN, CircuitState.OPEN)

        if self._failure_count >= self.config.failure_threshold:
            self._open(now)
            return (CircuitState.CLOSED, CircuitState.OPEN)
        return None

    def _record_success(self, admission: _Admission) -> _Transition | None:
        if admission.generation != self._generation:
            return None

        if self._state == CircuitState.HALF_OPEN:
            if not admission.probe:
                return None
            self._failure_count = 0
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                self._state = CircuitState.CLOSED
                self._success_count = 0
                return (CircuitState.HALF_OPEN, CircuitState.CLOSED)
            return None

        if self._state == CircuitState.CLOSED:
            self._failure_count = 0
        return None

    async def _emit_state_change(self, old: CircuitState, new: CircuitState) -> None:
        await self._emit("on_state_change", self.name, old, new)

    async def _emit(self, hook: str, *args: object) -> None:
        for listener in self._listeners:
            try:
                await getattr(listener, hook)(*args)
            except Exception:
                log_exception(
                    self._logger,
                    "circuit_breaker.listener_failed",
                    breaker=self.name,
                    hook=hook,
                    listener=listener.__class__.__name__,
                )
