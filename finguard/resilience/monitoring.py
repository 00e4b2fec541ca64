"""
Monitoring & Alerting Service

Tracks per-service metrics, health checks and alerts derived from
circuit breaker stats, and turns them into reliability scores.

DESIGN DECISION: All history lives in an explicitly constructed
MonitoringStore, partitioned by service. Each partition owns its lock and
bounded ring buffers, so one busy service never blocks another and each
test can build an isolated store.

Alert policy:
- circuit OPEN                       -> circuit_open / high
- failure rate > high threshold      -> high_failure_rate / medium
- failure rate > critical threshold  -> high_failure_rate / critical
- average response time > slow ms    -> slow_response / medium
- fail-fast rejection at the gate    -> service_down / critical

Every breach raises a new alert; repeated breaches are NOT coalesced.
"""

import asyncio
import math
import threading
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4

import structlog

from finguard.config import MonitoringSettings, get_settings
from finguard.models.resilience import (
    AlertSeverity,
    AlertType,
    CircuitBreakerStats,
    CircuitState,
    HealthCheckResult,
    HealthProbeResult,
    HealthStatus,
    MonitoringSnapshot,
    OverallHealth,
    ServiceAlert,
    ServiceHealth,
    ServiceMetrics,
)
from finguard.resilience.circuit_breaker import CircuitBreakerRegistry, ResilienceError
from finguard.services.interface import HealthProbe


logger = structlog.get_logger(__name__)


# Evaluated in order; the first threshold exceeded applies its factor.
RESPONSE_TIME_PENALTIES: tuple[tuple[float, float], ...] = (
    (5000.0, 0.6),
    (2000.0, 0.8),
)

HEALTHY_SCORE = 90
DEGRADED_SCORE = 70

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HealthCheckError(ResilienceError):
    """A health probe could not produce a result."""
    pass


# =============================================================================
# STORE
# =============================================================================

class ServicePartition:
    """Bounded history for one service."""

    def __init__(self, settings: MonitoringSettings):
        self.lock = threading.Lock()
        self.metrics: deque[ServiceMetrics] = deque(maxlen=settings.metrics_history_size)
        self.health_checks: deque[HealthCheckResult] = deque(maxlen=settings.health_history_size)
        self.alerts: deque[ServiceAlert] = deque(maxlen=settings.alert_history_size)


class MonitoringStore:
    """
    Per-service ring buffers for metrics, health checks and alerts.

    The registry lock only guards partition creation.
    """

    def __init__(self, settings: Optional[MonitoringSettings] = None):
        self._settings = settings or get_settings().monitoring
        self._partitions: dict[str, ServicePartition] = {}
        self._lock = threading.Lock()

    def partition(self, service_name: str) -> ServicePartition:
        with self._lock:
            partition = self._partitions.get(service_name)
            if partition is None:
                partition = ServicePartition(self._settings)
                self._partitions[service_name] = partition
            return partition

    def get(self, service_name: str) -> Optional[ServicePartition]:
        with self._lock:
            return self._partitions.get(service_name)

    def items(self) -> list[tuple[str, ServicePartition]]:
        with self._lock:
            return list(self._partitions.items())


# =============================================================================
# SERVICE
# =============================================================================

class MonitoringService:
    """
    Metrics, alerting and health scoring over a MonitoringStore.

    No public method raises for bad data or a failing probe; problems are
    reported as unhealthy results and alerts.
    """

    def __init__(
        self,
        store: Optional[MonitoringStore] = None,
        settings: Optional[MonitoringSettings] = None,
        health_probe: Optional[HealthProbe] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._settings = settings or get_settings().monitoring
        self._store = store or MonitoringStore(self._settings)
        self._probe = health_probe
        self._clock = clock

    @property
    def store(self) -> MonitoringStore:
        return self._store

    # =========================================================================
    # METRICS
    # =========================================================================

    def record_metrics(self, service_name: str, stats: CircuitBreakerStats) -> ServiceMetrics:
        """
        Append a metrics point built from breaker stats, then check alerts.

        Returns:
            The recorded point
        """
        total = stats.total_calls
        success_rate = stats.total_successes / total if total > 0 else 0.0
        failure_rate = stats.total_failures / total if total > 0 else 0.0

        point = ServiceMetrics(
            service_name=service_name,
            timestamp=self._clock(),
            state=stats.state,
            total_calls=total,
            success_rate=min(1.0, success_rate),
            failure_rate=min(1.0, failure_rate),
            average_response_time=stats.average_response_time,
            circuit_breaker_trips=stats.total_trips,
            last_failure=stats.last_failure_time,
            last_success=stats.last_success_time,
        )

        partition = self._store.partition(service_name)
        with partition.lock:
            partition.metrics.append(point)

        self._check_for_alerts(point)
        return point

    def get_service_metrics(
        self,
        service_name: str,
        start: datetime = _EPOCH,
        end: Optional[datetime] = None,
    ) -> list[ServiceMetrics]:
        """Points with start <= timestamp <= end, oldest first."""
        end = end or self._clock()
        partition = self._store.get(service_name)
        if partition is None:
            return []
        with partition.lock:
            return [m for m in partition.metrics if start <= m.timestamp <= end]

    # =========================================================================
    # ALERTS
    # =========================================================================

    def _check_for_alerts(self, point: ServiceMetrics) -> list[ServiceAlert]:
        name = point.service_name
        settings = self._settings
        raised = []

        if point.state == CircuitState.OPEN:
            raised.append(self._raise_alert(
                name,
                AlertType.CIRCUIT_OPEN,
                AlertSeverity.HIGH,
                f"Circuit breaker for {name} is OPEN",
            ))

        if point.failure_rate > settings.high_failure_rate:
            severity = (
                AlertSeverity.CRITICAL
                if point.failure_rate > settings.critical_failure_rate
                else AlertSeverity.MEDIUM
            )
            raised.append(self._raise_alert(
                name,
                AlertType.HIGH_FAILURE_RATE,
                severity,
                f"High failure rate detected for {name}: {point.failure_rate * 100:.1f}%",
            ))

        if point.average_response_time > settings.slow_response_ms:
            raised.append(self._raise_alert(
                name,
                AlertType.SLOW_RESPONSE,
                AlertSeverity.MEDIUM,
                f"Slow response time detected for {name}: {point.average_response_time:.0f}ms",
            ))

        return raised

    def record_service_down(self, service_name: str, reason: str) -> ServiceAlert:
        """Raise a critical service_down alert (fail-fast rejection)."""
        return self._raise_alert(
            service_name,
            AlertType.SERVICE_DOWN,
            AlertSeverity.CRITICAL,
            f"Service {service_name} is unavailable: {reason}",
        )

    def _raise_alert(
        self,
        service_name: str,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
    ) -> ServiceAlert:
        alert = ServiceAlert(
            id=f"{alert_type.value}_{service_name}_{uuid4().hex[:12]}",
            service_name=service_name,
            type=alert_type,
            severity=severity,
            message=message,
            timestamp=self._clock(),
        )
        partition = self._store.partition(service_name)
        with partition.lock:
            partition.alerts.append(alert)

        log = logger.error if severity in (AlertSeverity.HIGH, AlertSeverity.CRITICAL) else logger.warning
        log(
            "alert_raised",
            alert_id=alert.id,
            service=service_name,
            alert_type=alert_type.value,
            severity=severity.value,
            message=message,
        )
        return alert

    def get_active_alerts(self) -> list[ServiceAlert]:
        """Unresolved alerts across all services, oldest first."""
        active = []
        for _, partition in self._store.items():
            with partition.lock:
                active.extend(a for a in partition.alerts if not a.resolved)
        return sorted(active, key=lambda a: a.timestamp)

    def get_service_alerts(self, service_name: str) -> list[ServiceAlert]:
        """Every retained alert for one service, resolved or not."""
        partition = self._store.get(service_name)
        if partition is None:
            return []
        with partition.lock:
            return list(partition.alerts)

    def resolve_alert(self, alert_id: str) -> bool:
        """
        Mark an alert resolved.

        Returns:
            True if an unresolved alert with this id was found
        """
        for _, partition in self._store.items():
            with partition.lock:
                for index, alert in enumerate(partition.alerts):
                    if alert.id != alert_id:
                        continue
                    if alert.resolved:
                        return False
                    partition.alerts[index] = alert.model_copy(update={
                        "resolved": True,
                        "resolved_at": self._clock(),
                    })
                    logger.info("alert_resolved", alert_id=alert_id, service=alert.service_name)
                    return True
        return False

    # =========================================================================
    # HEALTH CHECKS
    # =========================================================================

    async def perform_health_check(self, service_name: str) -> HealthCheckResult:
        """
        Probe a service and retain the result.

        A probe exception or timeout becomes an unhealthy result.
        """
        started = time.monotonic()
        timeout = self._settings.health_check_timeout_seconds

        try:
            if self._probe is None:
                raise HealthCheckError("No health probe configured")
            probe_result: HealthProbeResult = await asyncio.wait_for(
                self._probe.check(service_name),
                timeout=timeout,
            )
            elapsed_ms = (time.monotonic() - started) * 1000
            result = HealthCheckResult(
                service_name=service_name,
                healthy=probe_result.healthy,
                response_time=(
                    probe_result.response_time
                    if probe_result.response_time is not None
                    else elapsed_ms
                ),
                error=None if probe_result.healthy else (probe_result.error or "Unhealthy"),
                timestamp=self._clock(),
            )
        except asyncio.TimeoutError:
            result = self._unhealthy(service_name, started, f"Health check timed out after {timeout}s")
        except Exception as e:
            result = self._unhealthy(service_name, started, str(e) or type(e).__name__)

        partition = self._store.partition(service_name)
        with partition.lock:
            partition.health_checks.append(result)

        if not result.healthy:
            logger.warning(
                "health_check_failed",
                service=service_name,
                error=result.error,
                response_time=result.response_time,
            )
        return result

    def _unhealthy(self, service_name: str, started: float, error: str) -> HealthCheckResult:
        return HealthCheckResult(
            service_name=service_name,
            healthy=False,
            response_time=(time.monotonic() - started) * 1000,
            error=error,
            timestamp=self._clock(),
        )

    async def check_all_services(self) -> dict[str, HealthCheckResult]:
        """Health-check every monitored service concurrently."""
        services = self._settings.monitored_services_list
        results = await asyncio.gather(*(self.perform_health_check(s) for s in services))
        return dict(zip(services, results))

    def get_service_health(self) -> dict[str, ServiceHealth]:
        """Latest health check for each monitored service."""
        health = {}
        for service in self._settings.monitored_services_list:
            partition = self._store.get(service)
            latest = None
            if partition is not None:
                with partition.lock:
                    if partition.health_checks:
                        latest = max(partition.health_checks, key=lambda h: h.timestamp)

            if latest:
                health[service] = ServiceHealth(
                    healthy=latest.healthy,
                    last_check=latest.timestamp,
                    response_time=latest.response_time,
                    error=latest.error,
                )
            else:
                health[service] = ServiceHealth(
                    healthy=False,
                    last_check=_EPOCH,
                    response_time=0.0,
                    error="No health checks performed",
                )
        return health

    # =========================================================================
    # SCORING
    # =========================================================================

    def get_service_reliability_score(self, service_name: str) -> int:
        """
        0-100 score from recent success rate and response time.

        Mean success rate over the last N points x 100, then at most one
        response-time penalty from RESPONSE_TIME_PENALTIES.
        """
        partition = self._store.get(service_name)
        if partition is None:
            return 0
        with partition.lock:
            recent = list(partition.metrics)[-self._settings.reliability_window:]
        if not recent:
            return 0

        avg_success = sum(m.success_rate for m in recent) / len(recent)
        avg_response = sum(m.average_response_time for m in recent) / len(recent)

        score = avg_success * 100
        for threshold, factor in RESPONSE_TIME_PENALTIES:
            if avg_response > threshold:
                score *= factor
                break

        return _round_half_up(max(0.0, min(100.0, score)))

    def get_overall_health(self) -> OverallHealth:
        services = self._settings.monitored_services_list
        scores = {s: self.get_service_reliability_score(s) for s in services}
        average = sum(scores.values()) / len(scores) if scores else 0.0

        if average >= HEALTHY_SCORE:
            status = HealthStatus.HEALTHY
        elif average >= DEGRADED_SCORE:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.UNHEALTHY

        return OverallHealth(
            score=_round_half_up(average),
            status=status,
            services=scores,
        )

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def clear_old_data(self, max_age: Optional[timedelta] = None) -> int:
        """
        Drop metrics, health checks and alerts older than max_age.

        Returns:
            Number of records removed
        """
        if max_age is None:
            max_age = timedelta(hours=self._settings.data_max_age_hours)
        cutoff = self._clock() - max_age
        removed = 0

        for _, partition in self._store.items():
            with partition.lock:
                for buffer in (partition.metrics, partition.health_checks, partition.alerts):
                    kept = [item for item in buffer if item.timestamp > cutoff]
                    removed += len(buffer) - len(kept)
                    buffer.clear()
                    buffer.extend(kept)

        if removed:
            logger.info("monitoring_data_pruned", removed=removed, cutoff=cutoff.isoformat())
        return removed

    def export_metrics(self) -> MonitoringSnapshot:
        """Everything currently retained, for external dashboards."""
        metrics, alerts, checks = [], [], []
        for _, partition in self._store.items():
            with partition.lock:
                metrics.extend(partition.metrics)
                alerts.extend(partition.alerts)
                checks.extend(partition.health_checks)

        return MonitoringSnapshot(
            metrics=metrics,
            alerts=alerts,
            health_checks=checks,
            overall_health=self.get_overall_health(),
        )


# =============================================================================
# DEFAULT PROBE
# =============================================================================

class BreakerStateProbe(HealthProbe):
    """
    Health from breaker state alone.

    Reads stats only; never dispatches through the breaker, so probing
    cannot consume a half-open trial or block user traffic.
    """

    def __init__(self, registry: CircuitBreakerRegistry):
        self._registry = registry

    async def check(self, service_name: str) -> HealthProbeResult:
        stats = self._registry.get_stats(service_name)
        if stats is None:
            return HealthProbeResult(healthy=False, error="Service is unknown")
        healthy = stats.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)
        return HealthProbeResult(
            healthy=healthy,
            error=None if healthy else f"Service is {stats.state.value}",
        )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
