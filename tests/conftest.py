"""
Shared fixtures for finguard tests.

No network and no real backends: every collaborator is an in-process fake.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from finguard.config import BreakerSettings, GateSettings, GuardrailSettings, MonitoringSettings
from finguard.facts import FactPackBuilder
from finguard.models import (
    ChatTurn,
    FactPack,
    FactWindow,
    HealthProbeResult,
    ValidationResult,
)
from finguard.services.interface import (
    BackendInvoker,
    EscalationHandler,
    FactPackError,
    FactPackProvider,
    HealthProbe,
)


# =============================================================================
# CLOCKS
# =============================================================================

class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 8, 20, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now += delta


# =============================================================================
# COLLABORATORS
# =============================================================================

class FakeInvoker(BackendInvoker):
    """Returns queued responses; an Exception in the queue is raised."""

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[tuple[str, dict]] = []

    async def invoke(self, service_name: str, request: dict[str, Any]) -> str:
        self.calls.append((service_name, request))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        return response


class FakeFactPackProvider(FactPackProvider):
    def __init__(self, fact_pack: Optional[FactPack] = None, error: Optional[Exception] = None):
        self.fact_pack = fact_pack
        self.error = error
        self.requests: list[tuple[str, Optional[FactWindow]]] = []

    async def build_fact_pack(self, user_id: str, window: Optional[FactWindow] = None) -> FactPack:
        self.requests.append((user_id, window))
        if self.error:
            raise self.error
        if self.fact_pack is None:
            raise FactPackError("no data")
        return self.fact_pack


class FakeEscalationHandler(EscalationHandler):
    def __init__(self, content: Optional[str] = "Let me connect you with a specialist.", error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.escalated: list[tuple[ChatTurn, str, ValidationResult]] = []

    async def escalate(self, turn: ChatTurn, candidate: str, validation: ValidationResult) -> Optional[str]:
        self.escalated.append((turn, candidate, validation))
        if self.error:
            raise self.error
        return self.content


class FakeHealthProbe(HealthProbe):
    def __init__(self, result: Optional[HealthProbeResult] = None, error: Optional[Exception] = None):
        self.result = result or HealthProbeResult(healthy=True, response_time=12.0)
        self.error = error

    async def check(self, service_name: str) -> HealthProbeResult:
        if self.error:
            raise self.error
        return self.result


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture
def breaker_settings() -> BreakerSettings:
    return BreakerSettings(
        failure_threshold=3,
        failure_window_seconds=60.0,
        reset_timeout_seconds=30.0,
        call_timeout_seconds=1.0,
        max_retries=2,
        retry_delay_seconds=0.0,
        retry_multiplier=2.0,
        max_retry_delay_seconds=0.0,
        response_time_window=100,
    )


@pytest.fixture
def monitoring_settings() -> MonitoringSettings:
    return MonitoringSettings(
        high_failure_rate=0.3,
        critical_failure_rate=0.5,
        slow_response_ms=5000.0,
        reliability_window=100,
        monitored_services="orchestrator,streaming,tools",
        health_check_timeout_seconds=0.5,
    )


@pytest.fixture
def guardrail_settings() -> GuardrailSettings:
    return GuardrailSettings(amount_tolerance=0.01, high_risk_match_count=3)


@pytest.fixture
def gate_settings() -> GateSettings:
    return GateSettings(
        default_service="orchestrator",
        fallback_message="The assistant is unavailable right now.",
    )


@pytest.fixture
def fact_pack() -> FactPack:
    """
    August snapshot:
    Groceries 300/500 (200 left), Entertainment 150/200 (50 left),
    Vacation goal 800/2000, spending 450, income 5000.
    """
    return (
        FactPackBuilder(clock=lambda: datetime(2025, 8, 25, tzinfo=timezone.utc))
        .set_time_window(
            datetime(2025, 8, 1, tzinfo=timezone.utc),
            datetime(2025, 8, 31, 23, 59, tzinfo=timezone.utc),
            "UTC",
        )
        .set_balances([
            {"account_id": "acc-1", "name": "Checking", "current": "3200.50", "type": "checking"},
        ])
        .set_budgets([
            {"id": "b1", "name": "Groceries", "period": "2025-08", "spent": 300, "limit": 500},
            {"id": "b2", "name": "Entertainment", "period": "2025-08", "spent": 150, "limit": 200},
        ])
        .set_goals([
            {
                "id": "g1",
                "name": "Vacation",
                "targetAmount": 2000,
                "currentAmount": 800,
                "deadline": "2025-12-31T00:00:00Z",
            },
        ])
        .set_recurring([
            {
                "id": "r1",
                "name": "Streaming",
                "amount": "15.99",
                "frequency": "monthly",
                "next_due": "2025-09-03T00:00:00Z",
                "category": "Entertainment",
            },
        ])
        .set_recent_transactions([
            {
                "id": "t1",
                "amount": "-42.10",
                "category": "Groceries",
                "date": "2025-08-18T10:00:00Z",
                "type": "expense",
                "description": "Market",
            },
        ])
        .set_spending_patterns({"total_spent": 450, "average_daily": 18, "trend": "stable"})
        .set_user_profile({"monthly_income": 5000, "risk_profile": "moderate"})
        .build()
    )


@pytest.fixture
def chat_turn() -> ChatTurn:
    return ChatTurn(
        user_id="user-1",
        query="How much is left in my grocery budget?",
        request={"message": "How much is left in my grocery budget?"},
    )
