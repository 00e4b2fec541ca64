"""
Resilience Models

Snapshots produced by circuit breakers and the monitoring service.

DESIGN DECISION: Everything here is frozen. A stats object handed to a
caller is a copy of the breaker's state at one instant; an alert is only
ever replaced (by its resolved copy), never edited in place.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"        # Normal operation
    OPEN = "OPEN"            # Calls fail fast
    HALF_OPEN = "HALF_OPEN"  # One trial call allowed


class AlertType(str, Enum):
    CIRCUIT_OPEN = "circuit_open"
    HIGH_FAILURE_RATE = "high_failure_rate"
    SLOW_RESPONSE = "slow_response"
    SERVICE_DOWN = "service_down"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class HealthStatus(str, Enum):
    """Three-tier overall health."""
    HEALTHY = "healthy"      # score >= 90
    DEGRADED = "degraded"    # score >= 70
    UNHEALTHY = "unhealthy"


class CircuitBreakerStats(BaseModel):
    """Point-in-time copy of one breaker's counters."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    state: CircuitState
    failure_count: int = Field(
        default=0,
        ge=0,
        description="Failures inside the current rolling window"
    )
    total_calls: int = Field(default=0, ge=0)
    total_successes: int = Field(default=0, ge=0)
    total_failures: int = Field(default=0, ge=0)
    total_rejected: int = Field(
        default=0,
        ge=0,
        description="Calls rejected without reaching the backend"
    )
    total_trips: int = Field(
        default=0,
        ge=0,
        description="Times the breaker has moved to OPEN"
    )
    average_response_time: float = Field(
        default=0.0,
        ge=0.0,
        description="Average response time in ms over recent completed calls"
    )
    last_failure_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None


class RetryResult(BaseModel):
    """Outcome of CircuitBreaker.call_with_retry."""

    result: Any = None
    success: bool
    attempts: int = Field(ge=0)
    total_time_ms: float = Field(ge=0.0)
    errors: list[str] = Field(default_factory=list)


class ServiceMetrics(BaseModel):
    """One point in a service's metrics history."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    timestamp: datetime
    state: CircuitState
    total_calls: int = Field(ge=0)
    success_rate: float = Field(ge=0.0, le=1.0)
    failure_rate: float = Field(ge=0.0, le=1.0)
    average_response_time: float = Field(ge=0.0)
    circuit_breaker_trips: int = Field(default=0, ge=0)
    last_failure: Optional[datetime] = None
    last_success: Optional[datetime] = None


class ServiceAlert(BaseModel):
    """
    An alert raised on a threshold breach.

    Append-only: resolve_alert swaps in a resolved copy.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    service_name: str
    type: AlertType
    severity: AlertSeverity
    message: str
    timestamp: datetime
    resolved: bool = False
    resolved_at: Optional[datetime] = None


class HealthCheckResult(BaseModel):
    """Outcome of one health probe."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    healthy: bool
    response_time: float = Field(ge=0.0, description="Probe duration in ms")
    error: Optional[str] = None
    timestamp: datetime


class HealthProbeResult(BaseModel):
    """What a HealthProbe reports back (before it is timestamped and stored)."""

    healthy: bool
    response_time: Optional[float] = Field(
        default=None,
        ge=0.0,
        description="Probe-measured time in ms; measured by the caller if omitted"
    )
    error: Optional[str] = None


class ServiceHealth(BaseModel):
    """Latest known health of a single service."""

    healthy: bool
    last_check: datetime
    response_time: float = 0.0
    error: Optional[str] = None


class OverallHealth(BaseModel):
    score: int = Field(ge=0, le=100)
    status: HealthStatus
    services: dict[str, int] = Field(default_factory=dict)


class MonitoringSnapshot(BaseModel):
    """Everything the monitoring service holds, for external export."""

    metrics: list[ServiceMetrics] = Field(default_factory=list)
    alerts: list[ServiceAlert] = Field(default_factory=list)
    health_checks: list[HealthCheckResult] = Field(default_factory=list)
    overall_health: OverallHealth
