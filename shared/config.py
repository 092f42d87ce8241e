"""
Shared configuration management for the rate limiter service.
"""

from typing import Any, Dict

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")


class RateLimitConfig(BaseConfig):
    """Quota and timing settings for the token bucket pair."""

    rate_limit_per_second: float = Field(default=60)
    rate_limit_per_minute: float = Field(default=1000)
    buffer_percentage: float = Field(default=10)

    second_window_seconds: float = Field(default=1.0)
    minute_window_seconds: float = Field(default=60.0)
    poll_interval_seconds: float = Field(default=0.1)
    starvation_threshold_seconds: float = Field(default=5.0)

    # Minute refills re-anchor the per-second schedule instead of only its value
    realign_second_on_minute_refill: bool = Field(default=False)
    fail_fast: bool = Field(default=False)

    @field_validator(
        "rate_limit_per_second",
        "rate_limit_per_minute",
        "second_window_seconds",
        "minute_window_seconds",
        "poll_interval_seconds",
        "starvation_threshold_seconds",
    )
    @classmethod
    def _must_be_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("buffer_percentage")
    @classmethod
    def _buffer_in_range(cls, value: float) -> float:
        if not 0 <= value < 100:
            raise ValueError("must be within [0, 100)")
        return value

    @property
    def second_capacity(self) -> float:
        """Effective per-second capacity after the safety buffer."""
        return self.rate_limit_per_second * (1 - self.buffer_percentage / 100)

    @property
    def minute_capacity(self) -> float:
        """Effective per-minute capacity after the safety buffer."""
        return self.rate_limit_per_minute * (1 - self.buffer_percentage / 100)


class ServiceConfig(RateLimitConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def _as_configuration_error(exc: ValidationError) -> ConfigurationError:
    fields: Dict[str, Any] = {
        ".".join(str(part) for part in error["loc"]): error["msg"]
        for error in exc.errors()
    }
    return ConfigurationError("Invalid rate limit configuration", details={"fields": fields})


def load_rate_limit_config(**overrides: Any) -> RateLimitConfig:
    """Load limiter settings from the environment, failing fast on bad values."""
    try:
        return RateLimitConfig(**overrides)
    except ValidationError as exc:
        raise _as_configuration_error(exc) from exc


def get_config(service_name: str, port: int, **overrides: Any) -> ServiceConfig:
    """Get configuration for a specific service."""
    try:
        return ServiceConfig(service_name=service_name, port=port, **overrides)
    except ValidationError as exc:
        raise _as_configuration_error(exc) from exc
