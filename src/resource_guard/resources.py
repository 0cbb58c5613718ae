"""Data-access guards that route dependency calls through a circuit breaker.

``GuardedDatabase`` propagates failures to its caller. ``GuardedCache`` is
fail-soft: a cache outage degrades to cache misses, logged, and never fails
the request that asked for the cached value.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

from tenacity import RetryCallState

from resource_guard.circuit_breaker import (
    BreakerMetrics,
    CircuitBreaker,
    CircuitOpenError,
)
from resource_guard.errors import TransientError
from resource_guard.logging import (
    AnyLogger,
    get_logger,
    log_error,
    log_info,
    log_warning,
)
from resource_guard.retry import (
    RetryBackoffPolicy,
    build_retrying,
    retry_if_upstream_failure,
)

T = TypeVar("T")

DEFAULT_RECONNECT_POLICY = RetryBackoffPolicy(
    attempts=5,
    min_seconds=5.0,
    max_seconds=30.0,
)


class DatabaseClient(Protocol):
    """Connection surface required from a database driver."""

    async def connect(self) -> None:
        """Open the connection or pool."""

    async def disconnect(self) -> None:
        """Close the connection or pool."""

    async def ping(self) -> bool:
        """Run a trivial round trip such as ``SELECT 1``."""


class CacheClient(Protocol):
    """Subset of the ``redis.asyncio.Redis`` command surface."""

    async def get(self, name: str) -> str | None:
        """Return the value stored at ``name``."""

    async def set(self, name: str, value: str) -> object:
        """Store ``value`` at ``name``."""

    async def setex(self, name: str, time: int, value: str) -> object:
        """Store ``value`` at ``name`` with a TTL in seconds."""

    async def delete(self, *names: str) -> int:
        """Delete keys, returning how many were removed."""

    async def exists(self, *names: str) -> int:
        """Return how many of ``names`` exist."""

    async def expire(self, name: str, time: int) -> object:
        """Set a TTL in seconds on ``name``."""

    async def ping(self) -> bool:
        """Round-trip to the server."""


def is_connection_error(exc: BaseException) -> bool:
    """Return whether ``exc`` means the dependency connection was lost.

    ``ConnectionLostError`` is the explicit signal; other transient errors,
    ``ConnectionError`` and messages mentioning a connection also count.
    """
    if isinstance(exc, (ConnectionError, TransientError)):
        return True
    return "connection" in str(exc).lower()


class GuardedDatabase:
    """Database handle whose connects and queries share one circuit breaker."""

    def __init__(
        self,
        client: DatabaseClient,
        *,
        breaker: CircuitBreaker,
        reconnect_policy: RetryBackoffPolicy = DEFAULT_RECONNECT_POLICY,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: AnyLogger | None = None,
    ) -> None:
        """Wrap a database client.

        Args:
            client: Driver-level client.
            breaker: Breaker owned by this handle.
            reconnect_policy: Attempt budget and backoff for connecting.
            sleep: Optional sleep used between connect attempts.
            logger: Structured logger. Defaults to this module's logger.
        """
        self._client = client
        self._breaker = breaker
        self._reconnect_policy = reconnect_policy
        self._sleep = sleep
        self._logger = get_logger(__name__) if logger is None else logger
        self._connected = False

    @property
    def connected(self) -> bool:
        """Whether the last connect attempt succeeded."""
        return self._connected

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def breaker_metrics(self) -> BreakerMetrics:
        """Return the breaker snapshot for monitoring endpoints."""
        return self._breaker.get_metrics()

    def _log_retry(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome is not None else None
        log_warning(
            self._logger,
            "database.connect_retry",
            breaker=self._breaker.name,
            attempt=state.attempt_number,
            max_attempts=self._reconnect_policy.attempts,
            error_type=exc.__class__.__name__ if exc is not None else None,
            error=str(exc) if exc is not None else None,
        )

    async def connect_with_retry(self) -> bool:
        """Connect through the breaker, retrying with backoff.

        Returns:
            ``True`` once connected. ``False`` when the attempt budget is
            spent or the breaker rejects the connect; the service then runs
            in degraded mode.
        """
        retrying = build_retrying(
            retry=retry_if_upstream_failure(),
            policy=self._reconnect_policy,
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._breaker.execute(self._client.connect)
        except CircuitOpenError as exc:
            self._connected = False
            log_error(
                self._logger,
                "database.connect_rejected",
                breaker=exc.breaker_name,
                retry_after=exc.retry_after,
            )
            return False
        except Exception as exc:
            self._connected = False
            log_error(
                self._logger,
                "database.connect_failed",
                breaker=self._breaker.name,
                max_attempts=self._reconnect_policy.attempts,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            return False

        self._connected = True
        log_info(self._logger, "database.connected", breaker=self._breaker.name)
        return True

    async def execute_query(self, query: Callable[[], Awaitable[T] | T]) -> T:
        """Run ``query`` through the breaker.

        A connection-loss failure triggers a reconnect before the original
        error is re-raised.
        """
        try:
            return await self._breaker.execute(query)
        except CircuitOpenError:
            raise
        except Exception as exc:
            log_error(
                self._logger,
                "database.query_failed",
                breaker=self._breaker.name,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            if is_connection_error(exc):
                self._connected = False
                log_warning(
                    self._logger, "database.reconnecting", breaker=self._breaker.name
                )
                await self.connect_with_retry()
            raise

    async def ping(self) -> bool:
        """Probe the database directly, bypassing the breaker."""
        return bool(await self._client.ping())

    async def disconnect(self) -> None:
        await self._client.disconnect()
        self._connected = False
        log_info(self._logger, "database.disconnected", breaker=self._breaker.name)


class GuardedCache:
    """Fail-soft cache wrapper whose commands share one circuit breaker."""

    def __init__(
        self,
        client: CacheClient,
        *,
        breaker: CircuitBreaker,
        logger: AnyLogger | None = None,
    ) -> None:
        self._client = client
        self._breaker = breaker
        self._logger = get_logger(__name__) if logger is None else logger

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def breaker_metrics(self) -> BreakerMetrics:
        """Return the breaker snapshot for monitoring endpoints."""
        return self._breaker.get_metrics()

    async def _run(
        self,
        operation: str,
        key: str,
        action: Callable[[], Awaitable[T]],
        default: T,
    ) -> T:
        try:
            return await self._breaker.execute(action)
        except CircuitOpenError as exc:
            log_warning(
                self._logger,
                "cache.skipped",
                breaker=exc.breaker_name,
                operation=operation,
                key=key,
                retry_after=exc.retry_after,
            )
        except Exception as exc:
            log_error(
                self._logger,
                "cache.operation_failed",
                breaker=self._breaker.name,
                operation=operation,
                key=key,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
        return default

    async def get(self, key: str) -> str | None:
        """Return the cached value, or ``None`` on miss or outage."""
        return await self._run("get", key, lambda: self._client.get(key), None)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Store a value, with a TTL in seconds when ``ttl`` is truthy."""

        async def _set() -> None:
            if ttl:
                await self._client.setex(key, ttl, value)
            else:
                await self._client.set(key, value)

        await self._run("set", key, _set, None)

    async def delete(self, key: str) -> None:
        async def _delete() -> None:
            await self._client.delete(key)

        await self._run("delete", key, _delete, None)

    async def exists(self, key: str) -> bool:
        """Return whether ``key`` exists; ``False`` during an outage."""

        async def _exists() -> bool:
            return await self._client.exists(key) == 1

        return await self._run("exists", key, _exists, False)

    async def expire(self, key: str, seconds: int) -> None:
        async def _expire() -> None:
            await self._client.expire(key, seconds)

        await self._run("expire", key, _expire, None)

    async def ping(self) -> bool:
        """Probe the cache directly, bypassing the breaker."""
        try:
            return bool(await self._client.ping())
        except Exception as exc:
            log_error(
                self._logger,
                "cache.ping_failed",
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            return False
