"""
Resilience package.

Circuit breakers for the generation backends and the monitoring service
built on their stats.
"""

from finguard.resilience.circuit_breaker import (
    CallTimeoutError,
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitOpenError,
    ResilienceError,
)
from finguard.resilience.monitoring import (
    RESPONSE_TIME_PENALTIES,
    BreakerStateProbe,
    HealthCheckError,
    MonitoringService,
    MonitoringStore,
    utc_now,
)

__all__ = [
    # Breakers
    "CallTimeoutError",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "ResilienceError",
    # Monitoring
    "RESPONSE_TIME_PENALTIES",
    "BreakerStateProbe",
    "HealthCheckError",
    "MonitoringService",
    "MonitoringStore",
    "utc_now",
]
