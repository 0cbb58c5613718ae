from __future__ import annotations

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from resource_guard.circuit_breaker import CircuitBreakerConfig
from resource_guard.logging import get_log_level_value
from resource_guard.retry import RetryBackoffPolicy

ENV_PREFIX = "RESOURCE_GUARD_"

DATABASE_BREAKER_DEFAULTS = CircuitBreakerConfig(
    failure_threshold=3,
    success_threshold=2,
    open_timeout=30.0,
)


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerSettings(BaseSettings):
    """Environment-driven thresholds for one circuit breaker."""

    model_config = prefixed_settings_config(f"{ENV_PREFIX}BREAKER_")

    failure_threshold: int = 5
    success_threshold: int = 2
    open_timeout_seconds: float = 60.0

    @model_validator(mode="after")
    def _validate_breaker_settings(self) -> BreakerSettings:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.open_timeout_seconds < 0:
            raise ValueError("open_timeout_seconds must be >= 0")
        return self

    def to_config(self) -> CircuitBreakerConfig:
        """Build the runtime breaker configuration."""
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            success_threshold=self.success_threshold,
            open_timeout=self.open_timeout_seconds,
        )


class ReconnectSettings(BaseSettings):
    """Connection retry budget used when a guarded client starts up."""

    model_config = prefixed_settings_config(f"{ENV_PREFIX}RECONNECT_")

    max_attempts: int = 5
    delay_seconds: float = 5.0
    max_delay_seconds: float = 30.0

    @model_validator(mode="after")
    def _validate_reconnect_settings(self) -> ReconnectSettings:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        if self.max_delay_seconds < self.delay_seconds:
            raise ValueError("max_delay_seconds must be >= delay_seconds")
        return self

    def to_policy(self) -> RetryBackoffPolicy:
        """Build the runtime retry policy."""
        return RetryBackoffPolicy(
            attempts=self.max_attempts,
            min_seconds=self.delay_seconds,
            max_seconds=self.max_delay_seconds,
        )


class LoggingSettings(BaseSettings):
    """Process log level."""

    model_config = prefixed_settings_config(ENV_PREFIX)

    log_level: str = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip().upper()
        get_log_level_value(normalized)
        return normalized
