from __future__ import annotations

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from resilient_remote.backoff import BackoffPolicy, executor_backoff, fetch_backoff
from resilient_remote.circuit_breaker import CircuitBreakerConfig
from resilient_remote.logging import get_log_level_value

ENV_PREFIX = "REMOTE_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class RemoteSettings(BaseSettings):
    """Settings for the backend client and its resilience layer."""

    model_config = prefixed_settings_config(ENV_PREFIX)

    backend_url: str
    api_key: str | None = None
    health_table: str = "activities"
    request_timeout_seconds: float = 10.0
    max_retries: int = 3
    fetch_max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_jitter_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    fetch_backoff_base_seconds: float = 1.0
    breaker_failure_threshold: int = 5
    breaker_recovery_timeout_seconds: float = 60.0
    log_level: str = "INFO"

    @field_validator("backend_url", "health_table", mode="before")
    @classmethod
    def _validate_required_string(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if not normalized:
            raise ValueError("value must be non-empty")
        return normalized

    @field_validator("backend_url")
    @classmethod
    def _validate_backend_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("backend_url must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("api_key", mode="before")
    @classmethod
    def _blank_api_key_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        get_log_level_value(value)
        return value.strip().upper()

    @model_validator(mode="after")
    def _validate_bounds(self) -> RemoteSettings:
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.fetch_max_retries < 0:
            raise ValueError("fetch_max_retries must be >= 0")
        if self.backoff_base_seconds < 0 or self.fetch_backoff_base_seconds < 0:
            raise ValueError("backoff base seconds must be >= 0")
        if self.backoff_jitter_seconds < 0:
            raise ValueError("backoff_jitter_seconds must be >= 0")
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        if self.breaker_failure_threshold < 1:
            raise ValueError("breaker_failure_threshold must be >= 1")
        if self.breaker_recovery_timeout_seconds < 0:
            raise ValueError("breaker_recovery_timeout_seconds must be >= 0")
        return self

    def executor_backoff_policy(self) -> BackoffPolicy:
        """Build the capped backoff policy for ``RetryExecutor``."""
        return executor_backoff(
            base_seconds=self.backoff_base_seconds,
            jitter_seconds=self.backoff_jitter_seconds,
            max_seconds=self.backoff_max_seconds,
        )

    def fetch_backoff_policy(self) -> BackoffPolicy:
        """Build the uncapped backoff policy for the retrying fetch."""
        return fetch_backoff(base_seconds=self.fetch_backoff_base_seconds)

    def breaker_config(self) -> CircuitBreakerConfig:
        """Build circuit breaker configuration."""
        return CircuitBreakerConfig(
            failure_threshold=self.breaker_failure_threshold,
            recovery_timeout=self.breaker_recovery_timeout_seconds,
        )
