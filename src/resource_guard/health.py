from __future__ import annotations

import inspect
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import cast

from resource_guard.circuit_breaker import CircuitBreaker, CircuitState
from resource_guard.errors import DependencyUnavailableError
from resource_guard.logging import AnyLogger, get_logger, log_error

REASON_HEALTHY = "healthy"
REASON_DEPENDENCY_UNAVAILABLE = "dependency_unavailable"
REASON_CHECK_FAILED = "check_failed"
REASON_CIRCUIT_OPEN = "circuit_open"

HealthCheck = Callable[[], Awaitable["CheckResult"]]
BoolCheck = Callable[[], bool] | Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class CheckResult:
    """Result of one dependency health check."""

    name: str
    ok: bool
    reason: str | None = None
    detail: str = ""
    data: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Freeze check metadata mapping to keep snapshots read-only."""
        frozen_data = MappingProxyType(dict(self.data))
        object.__setattr__(self, "data", frozen_data)


@dataclass(frozen=True)
class HealthSnapshot:
    """Immutable snapshot of overall health and per-check outcomes."""

    status: str
    healthy: bool
    reason: str
    detail: str
    checked_at: float
    check_results: tuple[CheckResult, ...]

    def get(self, name: str) -> CheckResult | None:
        """Return one check result by name."""
        for result in self.check_results:
            if result.name == name:
                return result
        return None


async def _resolve_bool_check(check: BoolCheck) -> bool:
    result = check()
    if inspect.isawaitable(result):
        awaited = await cast(Awaitable[object], result)
        return bool(awaited)
    return bool(result)


def make_callable_check(
    *,
    name: str,
    check: BoolCheck,
    detail_when_true: str = "",
    detail_when_false: str = "",
    reason_when_false: str = REASON_DEPENDENCY_UNAVAILABLE,
) -> HealthCheck:
    """Build a health check from a sync/async boolean callable.

    Exceptions raised by ``check`` become a failed result.
    """

    async def _check() -> CheckResult:
        try:
            ok = await _resolve_bool_check(check)
        except Exception as exc:
            return CheckResult(
                name=name,
                ok=False,
                reason=REASON_CHECK_FAILED,
                detail=f"{exc.__class__.__name__}: {exc}",
            )
        if ok:
            return CheckResult(name=name, ok=True, detail=detail_when_true)
        return CheckResult(
            name=name,
            ok=False,
            reason=reason_when_false,
            detail=detail_when_false,
        )

    _check.__name__ = name
    return _check


def make_breaker_check(
    breaker: CircuitBreaker,
    *,
    name: str | None = None,
) -> HealthCheck:
    """Build a check that fails while ``breaker`` is ``OPEN``.

    ``HALF_OPEN`` counts as healthy so probe traffic keeps flowing.
    """
    check_name = f"breaker:{breaker.name}" if name is None else name

    async def _check() -> CheckResult:
        metrics = breaker.get_metrics()
        data = metrics.as_dict()
        if metrics.state == CircuitState.OPEN:
            return CheckResult(
                name=check_name,
                ok=False,
                reason=REASON_CIRCUIT_OPEN,
                detail=f"next_attempt_at={data['next_attempt_at']}",
                data=data,
            )
        return CheckResult(name=check_name, ok=True, data=data)

    _check.__name__ = check_name
    return _check


async def evaluate_health_once(
    *,
    checks: Sequence[HealthCheck],
    now_fn: Callable[[], float] = time.time,
) -> HealthSnapshot:
    """Evaluate all checks once and return a new snapshot.

    A check that raises is reported as failed; evaluation never raises.
    """
    results: list[CheckResult] = []
    for check in checks:
        try:
            results.append(await check())
        except Exception as exc:
            check_name = getattr(check, "__name__", "unnamed_check")
            results.append(
                CheckResult(
                    name=check_name,
                    ok=False,
                    reason=REASON_CHECK_FAILED,
                    detail=f"{exc.__class__.__name__}: {exc}",
                )
            )

    healthy = all(result.ok for result in results)
    reason = REASON_HEALTHY
    detail = ""
    if not healthy:
        first_failure = next(result for result in results if not result.ok)
        reason = first_failure.reason or REASON_DEPENDENCY_UNAVAILABLE
        detail = first_failure.detail

    return HealthSnapshot(
        status="ok" if healthy else "error",
        healthy=healthy,
        reason=reason,
        detail=detail,
        checked_at=now_fn(),
        check_results=tuple(results),
    )


class HealthService:
    """Full, readiness and liveness views over a fixed set of checks."""

    def __init__(
        self,
        *,
        checks: Sequence[HealthCheck],
        logger: AnyLogger | None = None,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the service.

        Raises:
            ValueError: If no checks are provided.
        """
        resolved_checks = tuple(checks)
        if not resolved_checks:
            raise ValueError("At least one health check is required.")
        self._checks = resolved_checks
        self._logger = get_logger(__name__) if logger is None else logger
        self._now_fn = now_fn

    async def check(self) -> HealthSnapshot:
        """Run every check and return the aggregate snapshot."""
        return await evaluate_health_once(checks=self._checks, now_fn=self._now_fn)

    async def check_readiness(self) -> dict[str, str]:
        """Return ``{"status": "ready"}`` or raise when a check fails.

        Raises:
            DependencyUnavailableError: Naming the first failing check.
        """
        snapshot = await self.check()
        if not snapshot.healthy:
            failed = next(result for result in snapshot.check_results if not result.ok)
            log_error(
                self._logger,
                "health.readiness_failed",
                dependency=failed.name,
                reason=failed.reason,
                detail=failed.detail,
            )
            raise DependencyUnavailableError(failed.name, failed.detail)
        return {"status": "ready"}

    def check_liveness(self) -> dict[str, str]:
        """Return a static liveness payload with a UTC timestamp."""
        timestamp = datetime.fromtimestamp(self._now_fn(), tz=UTC).isoformat()
        return {"status": "alive", "timestamp": timestamp}
