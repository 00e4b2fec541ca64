"""
Configuration Management for finguard

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All thresholds live here.
Breaker timings, alert thresholds and guardrail tolerances are policy,
and policy should be visible in one place and validated at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BreakerSettings(BaseSettings):
    """Default circuit breaker configuration for services without a profile."""

    model_config = SettingsConfigDict(
        env_prefix="BREAKER_",
        extra="ignore"
    )

    failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Failures inside the rolling window that trip the breaker"
    )
    failure_window_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Length of the rolling failure window"
    )
    reset_timeout_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Cooldown before an OPEN breaker allows a trial call"
    )
    call_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single backend call"
    )

    # Retry policy (used by call_with_retry only)
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Maximum retry attempts after the first call"
    )
    retry_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Initial retry delay"
    )
    retry_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Exponential backoff multiplier"
    )
    max_retry_delay_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Upper bound on a single retry delay"
    )

    response_time_window: int = Field(
        default=100,
        ge=1,
        description="Completed calls included in the average response time"
    )


# Production profiles for the assistant's backends.
# Anything not listed here falls back to BreakerSettings.
SERVICE_BREAKER_PROFILES: dict[str, dict] = {
    "orchestrator": {
        "failure_threshold": 3,
        "call_timeout_seconds": 15.0,
        "reset_timeout_seconds": 30.0,
        "max_retries": 2,
        "retry_delay_seconds": 1.0,
        "max_retry_delay_seconds": 5.0,
    },
    "streaming": {
        "failure_threshold": 2,
        "call_timeout_seconds": 20.0,
        "reset_timeout_seconds": 45.0,
        "max_retries": 1,
        "retry_delay_seconds": 2.0,
        "max_retry_delay_seconds": 8.0,
    },
    "tools": {
        "failure_threshold": 5,
        "call_timeout_seconds": 8.0,
        "reset_timeout_seconds": 20.0,
        "max_retries": 3,
        "retry_delay_seconds": 0.5,
        "max_retry_delay_seconds": 4.0,
    },
}


class MonitoringSettings(BaseSettings):
    """Monitoring, alerting and health check configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MONITORING_",
        extra="ignore"
    )

    # Alert thresholds
    high_failure_rate: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Failure rate above which a medium alert is raised"
    )
    critical_failure_rate: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Failure rate above which the alert becomes critical"
    )
    slow_response_ms: float = Field(
        default=5000.0,
        gt=0,
        description="Average response time (ms) above which a slow_response alert is raised"
    )

    # Ring buffer sizes (per service)
    metrics_history_size: int = Field(default=1000, ge=1)
    health_history_size: int = Field(default=100, ge=1)
    alert_history_size: int = Field(default=1000, ge=1)

    reliability_window: int = Field(
        default=100,
        ge=1,
        description="Metric points averaged into the reliability score"
    )
    monitored_services: str = Field(
        default="orchestrator,streaming,tools",
        description="Comma-separated list of services in the overall health score"
    )
    health_check_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for a single health probe"
    )
    data_max_age_hours: float = Field(
        default=24.0,
        gt=0,
        description="Default retention for clear_old_data"
    )

    @field_validator('critical_failure_rate')
    @classmethod
    def validate_critical_above_high(cls, v: float, info) -> float:
        """The critical threshold must not sit below the medium one."""
        high = info.data.get("high_failure_rate")
        if high is not None and v < high:
            raise ValueError("critical_failure_rate must be >= high_failure_rate")
        return v

    @property
    def monitored_services_list(self) -> list[str]:
        """Get monitored services as a list."""
        return [s.strip() for s in self.monitored_services.split(",") if s.strip()]


class GuardrailSettings(BaseSettings):
    """Critic / guardrail configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GUARDRAIL_",
        extra="ignore"
    )

    amount_tolerance: float = Field(
        default=0.01,
        ge=0.0,
        description="Absolute tolerance when matching a stated amount to a FactPack value"
    )
    percent_tolerance: float = Field(
        default=0.5,
        ge=0.0,
        description="Tolerance in percentage points when matching a stated percentage"
    )
    high_risk_match_count: int = Field(
        default=3,
        ge=1,
        description="Forbidden-phrasing matches needed for a high risk level"
    )


class GateSettings(BaseSettings):
    """Response gate configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GATE_",
        extra="ignore"
    )

    default_service: str = Field(
        default="orchestrator",
        description="Backend used when a turn does not name one"
    )
    fallback_message: str = Field(
        default=(
            "I'm having trouble reaching the assistant right now. "
            "Please try again in a moment."
        ),
        description="Fixed message returned when the backend is unavailable"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level for the structured logger"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Unsupported log level: {v}. Allowed: {allowed}")
        return v.upper()


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def breaker(self) -> BreakerSettings:
        return BreakerSettings()

    @property
    def monitoring(self) -> MonitoringSettings:
        return MonitoringSettings()

    @property
    def guardrails(self) -> GuardrailSettings:
        return GuardrailSettings()

    @property
    def gate(self) -> GateSettings:
        return GateSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


def breaker_settings_for(
    service_name: str,
    base: Optional[BreakerSettings] = None,
) -> BreakerSettings:
    """
    Resolve breaker settings for a named service.

    Known services get their production profile layered over the base
    settings; unknown services get the base settings unchanged.
    """
    base = base or get_settings().breaker
    profile = SERVICE_BREAKER_PROFILES.get(service_name.lower())
    if not profile:
        return base
    return base.model_copy(update=profile)


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("breaker", "monitoring", "guardrails", "gate", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
