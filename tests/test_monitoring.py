"""
Tests for the monitoring service: metrics, alerts, health checks and scoring.
"""

import asyncio
from datetime import timedelta

import pytest

from finguard.models import (
    AlertSeverity,
    AlertType,
    CircuitBreakerStats,
    CircuitState,
    HealthProbeResult,
    HealthStatus,
)
from finguard.resilience import (
    BreakerStateProbe,
    CircuitBreakerRegistry,
    MonitoringService,
    MonitoringStore,
)
from conftest import FakeHealthProbe


def make_stats(
    service_name: str = "orchestrator",
    total: int = 10,
    failures: int = 0,
    response_time: float = 100.0,
    state: CircuitState = CircuitState.CLOSED,
    trips: int = 0,
) -> CircuitBreakerStats:
    return CircuitBreakerStats(
        service_name=service_name,
        state=state,
        total_calls=total,
        total_successes=total - failures,
        total_failures=failures,
        total_trips=trips,
        average_response_time=response_time,
    )


@pytest.fixture
def monitoring(monitoring_settings, wall_clock) -> MonitoringService:
    return MonitoringService(
        store=MonitoringStore(monitoring_settings),
        settings=monitoring_settings,
        health_probe=FakeHealthProbe(),
        clock=wall_clock,
    )


class TestMetrics:
    """Tests for recording metrics points."""

    def test_record_metrics_derives_rates(self, monitoring):
        point = monitoring.record_metrics("orchestrator", make_stats(total=8, failures=2, trips=1))

        assert point.success_rate == 0.75
        assert point.failure_rate == 0.25
        assert point.circuit_breaker_trips == 1

    def test_zero_calls_have_zero_rates(self, monitoring):
        point = monitoring.record_metrics("orchestrator", make_stats(total=0))
        assert point.success_rate == 0.0
        assert point.failure_rate == 0.0

    def test_new_point_is_in_default_range(self, monitoring):
        monitoring.record_metrics("orchestrator", make_stats())
        assert len(monitoring.get_service_metrics("orchestrator")) == 1

    def test_range_filter(self, monitoring, wall_clock):
        start = wall_clock()
        monitoring.record_metrics("orchestrator", make_stats())
        wall_clock.advance(timedelta(hours=2))
        monitoring.record_metrics("orchestrator", make_stats())

        early = monitoring.get_service_metrics("orchestrator", start, start + timedelta(hours=1))
        assert len(early) == 1
        assert monitoring.get_service_metrics("unknown") == []


class TestAlerts:
    """Tests for threshold alerts."""

    def test_failure_rate_at_threshold_raises_nothing(self, monitoring):
        monitoring.record_metrics("orchestrator", make_stats(failures=3))
        assert monitoring.get_active_alerts() == []

    @pytest.mark.parametrize("failures,severity", [
        (4, AlertSeverity.MEDIUM),
        (5, AlertSeverity.MEDIUM),
        (6, AlertSeverity.CRITICAL),
    ])
    def test_failure_rate_alert_severity(self, monitoring, failures, severity):
        monitoring.record_metrics("orchestrator", make_stats(failures=failures))

        alerts = monitoring.get_active_alerts()
        assert len(alerts) == 1
        assert alerts[0].type == AlertType.HIGH_FAILURE_RATE
        assert alerts[0].severity == severity

    def test_slow_response_alert(self, monitoring):
        monitoring.record_metrics("orchestrator", make_stats(response_time=6000.0))

        alerts = monitoring.get_active_alerts()
        assert [a.type for a in alerts] == [AlertType.SLOW_RESPONSE]
        assert alerts[0].severity == AlertSeverity.MEDIUM

    def test_open_circuit_alert(self, monitoring):
        monitoring.record_metrics("orchestrator", make_stats(state=CircuitState.OPEN))

        alerts = monitoring.get_active_alerts()
        assert alerts[0].type == AlertType.CIRCUIT_OPEN
        assert alerts[0].severity == AlertSeverity.HIGH
        assert alerts[0].id.startswith("circuit_open_orchestrator_")

    def test_repeated_breaches_are_not_coalesced(self, monitoring):
        monitoring.record_metrics("orchestrator", make_stats(failures=8))
        monitoring.record_metrics("orchestrator", make_stats(failures=8))

        alerts = monitoring.get_service_alerts("orchestrator")
        assert len(alerts) == 2
        assert alerts[0].id != alerts[1].id

    def test_service_down(self, monitoring):
        alert = monitoring.record_service_down("streaming", "circuit open")

        assert alert.type == AlertType.SERVICE_DOWN
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.message == "Service streaming is unavailable: circuit open"

    def test_resolve_alert(self, monitoring, wall_clock):
        alert = monitoring.record_service_down("streaming", "circuit open")

        assert monitoring.resolve_alert(alert.id)
        assert not monitoring.resolve_alert(alert.id)
        assert not monitoring.resolve_alert("no-such-alert")

        assert monitoring.get_active_alerts() == []
        resolved = monitoring.get_service_alerts("streaming")[0]
        assert resolved.resolved
        assert resolved.resolved_at == wall_clock()


class TestHealthChecks:
    """Tests for health probing."""

    @pytest.mark.asyncio
    async def test_healthy_probe(self, monitoring):
        result = await monitoring.perform_health_check("orchestrator")

        assert result.healthy
        assert result.response_time == 12.0
        assert result.error is None

    @pytest.mark.asyncio
    async def test_unhealthy_probe_without_error(self, monitoring_settings, wall_clock):
        monitoring = MonitoringService(
            settings=monitoring_settings,
            health_probe=FakeHealthProbe(HealthProbeResult(healthy=False)),
            clock=wall_clock,
        )
        result = await monitoring.perform_health_check("orchestrator")

        assert not result.healthy
        assert result.error == "Unhealthy"

    @pytest.mark.asyncio
    async def test_probe_exception_becomes_unhealthy(self, monitoring_settings, wall_clock):
        monitoring = MonitoringService(
            settings=monitoring_settings,
            health_probe=FakeHealthProbe(error=ConnectionError("refused")),
            clock=wall_clock,
        )
        result = await monitoring.perform_health_check("orchestrator")

        assert not result.healthy
        assert result.error == "refused"

    @pytest.mark.asyncio
    async def test_probe_timeout(self, monitoring_settings, wall_clock):
        class HangingProbe(FakeHealthProbe):
            async def check(self, service_name):
                await asyncio.Event().wait()

        settings = monitoring_settings.model_copy(update={"health_check_timeout_seconds": 0.01})
        monitoring = MonitoringService(settings=settings, health_probe=HangingProbe(), clock=wall_clock)
        result = await monitoring.perform_health_check("orchestrator")

        assert not result.healthy
        assert result.error == "Health check timed out after 0.01s"

    @pytest.mark.asyncio
    async def test_no_probe_configured(self, monitoring_settings, wall_clock):
        monitoring = MonitoringService(settings=monitoring_settings, clock=wall_clock)
        result = await monitoring.perform_health_check("orchestrator")

        assert not result.healthy
        assert result.error == "No health probe configured"

    @pytest.mark.asyncio
    async def test_check_all_services(self, monitoring):
        results = await monitoring.check_all_services()

        assert set(results) == {"orchestrator", "streaming", "tools"}
        assert all(r.healthy for r in results.values())
        assert all(h.healthy for h in monitoring.get_service_health().values())

    def test_service_health_before_any_check(self, monitoring):
        health = monitoring.get_service_health()["tools"]

        assert not health.healthy
        assert health.error == "No health checks performed"

    @pytest.mark.asyncio
    async def test_breaker_state_probe(self, breaker_settings, clock):
        registry = CircuitBreakerRegistry(breaker_settings, clock=clock)
        probe = BreakerStateProbe(registry)

        unknown = await probe.check("orchestrator")
        assert not unknown.healthy
        assert unknown.error == "Service is unknown"

        registry.get("orchestrator")
        assert (await probe.check("orchestrator")).healthy

        async def fail():
            raise RuntimeError("down")

        for _ in range(3):
            with pytest.raises(RuntimeError):
                await registry.get("orchestrator").call(fail)

        tripped = await probe.check("orchestrator")
        assert not tripped.healthy
        assert tripped.error == "Service is OPEN"


class TestScoring:
    """Tests for reliability scores and overall health."""

    def test_unknown_service_scores_zero(self, monitoring):
        assert monitoring.get_service_reliability_score("orchestrator") == 0

    @pytest.mark.parametrize("response_time,expected", [
        (1000.0, 100),
        (2000.0, 100),
        (3000.0, 80),
        (5000.0, 80),
        (6000.0, 60),
    ])
    def test_response_time_penalty(self, monitoring, response_time, expected):
        monitoring.record_metrics("orchestrator", make_stats(response_time=response_time))
        assert monitoring.get_service_reliability_score("orchestrator") == expected

    def test_score_averages_recent_points(self, monitoring):
        monitoring.record_metrics("orchestrator", make_stats(failures=0))
        monitoring.record_metrics("orchestrator", make_stats(failures=1))
        assert monitoring.get_service_reliability_score("orchestrator") == 95

    def test_overall_healthy(self, monitoring):
        for service in ("orchestrator", "streaming", "tools"):
            monitoring.record_metrics(service, make_stats(service))

        overall = monitoring.get_overall_health()
        assert overall.score == 100
        assert overall.status == HealthStatus.HEALTHY

    def test_overall_degraded(self, monitoring):
        monitoring.record_metrics("orchestrator", make_stats("orchestrator"))
        monitoring.record_metrics("streaming", make_stats("streaming", response_time=3000.0))
        monitoring.record_metrics("tools", make_stats("tools", failures=7))

        overall = monitoring.get_overall_health()
        assert overall.services == {"orchestrator": 100, "streaming": 80, "tools": 30}
        assert overall.score == 70
        assert overall.status == HealthStatus.DEGRADED

    def test_overall_unhealthy_with_unseen_service(self, monitoring):
        monitoring.record_metrics("orchestrator", make_stats("orchestrator"))
        monitoring.record_metrics("streaming", make_stats("streaming"))

        overall = monitoring.get_overall_health()
        assert overall.score == 67
        assert overall.status == HealthStatus.UNHEALTHY


class TestMaintenance:
    """Tests for retention and export."""

    def test_clear_old_data(self, monitoring, wall_clock):
        monitoring.record_metrics("orchestrator", make_stats())
        monitoring.record_service_down("orchestrator", "down")
        wall_clock.advance(timedelta(hours=25))
        monitoring.record_metrics("orchestrator", make_stats())

        assert monitoring.clear_old_data() == 2
        assert len(monitoring.get_service_metrics("orchestrator")) == 1
        assert monitoring.get_service_alerts("orchestrator") == []

    def test_clear_old_data_with_explicit_age(self, monitoring, wall_clock):
        monitoring.record_metrics("orchestrator", make_stats())
        wall_clock.advance(timedelta(minutes=30))

        assert monitoring.clear_old_data(timedelta(hours=1)) == 0
        assert monitoring.clear_old_data(timedelta(minutes=10)) == 1

    @pytest.mark.asyncio
    async def test_export_metrics(self, monitoring):
        monitoring.record_metrics("orchestrator", make_stats(failures=8))
        await monitoring.perform_health_check("orchestrator")

        snapshot = monitoring.export_metrics()
        assert len(snapshot.metrics) == 1
        assert len(snapshot.alerts) == 1
        assert len(snapshot.health_checks) == 1
        assert snapshot.overall_health.services["orchestrator"] == 20
