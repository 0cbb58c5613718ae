from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from resource_guard.circuit_breaker import CircuitState


class FakeLogger:
    """Capture structured logger events for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    def _record(self, level: str, event: str, **kwargs: object) -> None:
        self.calls.append((level, event, kwargs))

    def info(self, event: str, **kwargs: object) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: object) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: object) -> None:
        self._record("error", event, **kwargs)

    def exception(self, event: str, **kwargs: object) -> None:
        self._record("exception", event, **kwargs)

    def events(self, level: str | None = None) -> list[str]:
        return [
            event for lvl, event, _ in self.calls if level is None or lvl == level
        ]


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = datetime(2020, 1, 1, tzinfo=UTC) if start is None else start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)


@dataclass(slots=True)
class RecordingListener:
    """Breaker listener that records every event it receives."""

    events: list[tuple[str, object]] = field(default_factory=list)

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        self.events.append(("state", (name, old, new)))

    async def on_call_rejected(self, name: str) -> None:
        self.events.append(("rejected", name))

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        self.events.append(("succeeded", name))

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        self.events.append(("failed", (name, exc.__class__.__name__)))

    def state_changes(self) -> list[tuple[CircuitState, CircuitState]]:
        changes: list[tuple[CircuitState, CircuitState]] = []
        for kind, payload in self.events:
            if kind == "state":
                _, old, new = payload  # type: ignore[misc]
                changes.append((old, new))
        return changes


class FakeDatabaseClient:
    """Database client whose connect/ping outcomes are scripted per call."""

    def __init__(
        self,
        *,
        connect_results: list[Exception | None] | None = None,
        ping_result: bool | Exception = True,
    ) -> None:
        self._connect_results = list(connect_results or [])
        self.ping_result = ping_result
        self.connect_calls = 0
        self.disconnect_calls = 0

    async def connect(self) -> None:
        self.connect_calls += 1
        if self._connect_results:
            result = self._connect_results.pop(0)
            if result is not None:
                raise result

    async def disconnect(self) -> None:
        self.disconnect_calls += 1

    async def ping(self) -> bool:
        if isinstance(self.ping_result, Exception):
            raise self.ping_result
        return self.ping_result


class FakeCacheClient:
    """In-memory stand-in for ``redis.asyncio.Redis`` with an outage switch."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.error: Exception | None = None
        self.calls: list[str] = []

    def _enter(self, command: str) -> None:
        self.calls.append(command)
        if self.error is not None:
            raise self.error

    async def get(self, name: str) -> str | None:
        self._enter("get")
        return self.store.get(name)

    async def set(self, name: str, value: str) -> bool:
        self._enter("set")
        self.store[name] = value
        return True

    async def setex(self, name: str, time: int, value: str) -> bool:
        self._enter("setex")
        self.store[name] = value
        self.ttls[name] = time
        return True

    async def delete(self, *names: str) -> int:
        self._enter("delete")
        removed = 0
        for name in names:
            if self.store.pop(name, None) is not None:
                removed += 1
        return removed

    async def exists(self, *names: str) -> int:
        self._enter("exists")
        return sum(1 for name in names if name in self.store)

    async def expire(self, name: str, time: int) -> bool:
        self._enter("expire")
        if name not in self.store:
            return False
        self.ttls[name] = time
        return True

    async def ping(self) -> bool:
        self._enter("ping")
        return True
