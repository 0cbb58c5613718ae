"""Shared error types for resource_guard."""


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""


class ConnectionLostError(TransientError):
    """The client lost its connection to the dependency.

    Database clients raise this from a query so that
    ``GuardedDatabase.execute_query`` reconnects before re-raising.
    """


class DependencyUnavailableError(RuntimeError):
    """A required dependency failed its health check.

    Attributes:
        dependency: Name of the first failing check.
        detail: Human-readable failure detail from that check.
    """

    def __init__(self, dependency: str, detail: str = "") -> None:
        self.dependency = dependency
        self.detail = detail
        message = f"dependency_unavailable: {dependency}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
