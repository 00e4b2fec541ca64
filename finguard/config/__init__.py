"""Configuration package."""

from finguard.config.settings import (
    SERVICE_BREAKER_PROFILES,
    AppSettings,
    BreakerSettings,
    GateSettings,
    GuardrailSettings,
    MonitoringSettings,
    Settings,
    breaker_settings_for,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "SERVICE_BREAKER_PROFILES",
    "AppSettings",
    "BreakerSettings",
    "GateSettings",
    "GuardrailSettings",
    "MonitoringSettings",
    "Settings",
    "breaker_settings_for",
    "get_settings",
    "validate_all_settings",
]
