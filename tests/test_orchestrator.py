"""
Tests for the response gate.

Integration tests over the real breaker, monitoring, validator and audit
logger, with the backend, FactPack provider and escalation path faked.
"""

import pytest

from finguard.audit import AuditLogger
from finguard.config import Settings
from finguard.models import AlertType, AuditEventType, ChatTurn, GateDecision
from finguard.orchestrator import ResponseGate, create_app_components
from finguard.resilience import CircuitBreakerRegistry, MonitoringService, MonitoringStore
from finguard.services.interface import FactPackError
from finguard.services.storage import InMemoryAuditStorage
from finguard.validation import GuardrailValidator
from conftest import FakeEscalationHandler, FakeFactPackProvider, FakeInvoker


GROUNDED = "Your grocery budget has $200 remaining out of $500."
HALLUCINATED = "Your total budget is $1000."


@pytest.fixture
def storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def make_gate(
    storage,
    breaker_settings,
    monitoring_settings,
    guardrail_settings,
    gate_settings,
    clock,
    wall_clock,
):
    """Build a gate around the given invoker and optional collaborators."""
    def _make(invoker, fact_pack_provider=None, escalation_handler=None) -> ResponseGate:
        return ResponseGate(
            registry=CircuitBreakerRegistry(breaker_settings, clock=clock),
            monitoring=MonitoringService(
                store=MonitoringStore(monitoring_settings),
                settings=monitoring_settings,
                clock=wall_clock,
            ),
            validator=GuardrailValidator(guardrail_settings),
            invoker=invoker,
            fact_pack_provider=fact_pack_provider,
            escalation_handler=escalation_handler,
            audit_logger=AuditLogger(storage),
            settings=gate_settings,
        )
    return _make


async def event_types(storage: InMemoryAuditStorage, turn: ChatTurn) -> list[AuditEventType]:
    events = await storage.get_events_by_correlation_id(turn.correlation_id)
    return [e.event_type for e in events]


class TestDelivery:
    """Answers that pass every guard."""

    @pytest.mark.asyncio
    async def test_grounded_answer_is_delivered(self, make_gate, chat_turn, fact_pack, storage):
        invoker = FakeInvoker(GROUNDED)
        gate = make_gate(invoker)

        outcome = await gate.handle_turn(chat_turn, fact_pack)

        assert outcome.decision == GateDecision.DELIVERED
        assert outcome.delivered
        assert outcome.message == GROUNDED
        assert outcome.fact_pack_hash == fact_pack.metadata.hash
        assert outcome.validation.is_valid
        assert invoker.calls == [("orchestrator", chat_turn.request)]

        assert await event_types(storage, chat_turn) == [
            AuditEventType.FACT_PACK_BUILT,
            AuditEventType.BACKEND_CALL_SUCCEEDED,
            AuditEventType.RESPONSE_VALIDATED,
            AuditEventType.RESPONSE_DELIVERED,
        ]

    @pytest.mark.asyncio
    async def test_metrics_are_recorded(self, make_gate, chat_turn, fact_pack):
        gate = make_gate(FakeInvoker(GROUNDED))

        await gate.handle_turn(chat_turn, fact_pack)

        metrics = gate.monitoring.get_service_metrics("orchestrator")
        assert len(metrics) == 1
        assert metrics[0].success_rate == 1.0

    @pytest.mark.asyncio
    async def test_turn_picks_its_service(self, make_gate, fact_pack):
        invoker = FakeInvoker(GROUNDED)
        gate = make_gate(invoker)
        turn = ChatTurn(user_id="user-1", query="Grocery budget?", service_name="tools")

        await gate.handle_turn(turn, fact_pack)

        assert invoker.calls[0][0] == "tools"
        assert "tools" in gate.registry

    @pytest.mark.asyncio
    async def test_fact_pack_from_provider(self, make_gate, chat_turn, fact_pack):
        provider = FakeFactPackProvider(fact_pack)
        gate = make_gate(FakeInvoker(GROUNDED), fact_pack_provider=provider)

        outcome = await gate.handle_turn(chat_turn)

        assert outcome.decision == GateDecision.DELIVERED
        assert provider.requests == [("user-1", None)]


class TestEscalation:
    """Answers that fail a guard or need a human."""

    @pytest.mark.asyncio
    async def test_invalid_answer_is_escalated(self, make_gate, chat_turn, fact_pack, storage):
        handler = FakeEscalationHandler()
        gate = make_gate(FakeInvoker(HALLUCINATED), escalation_handler=handler)

        outcome = await gate.handle_turn(chat_turn, fact_pack)

        assert outcome.decision == GateDecision.ESCALATED
        assert outcome.message == "Let me connect you with a specialist."
        assert outcome.escalation_reason == "Hallucination guard tripped"
        assert not outcome.validation.is_valid

        escalated_turn, candidate, validation = handler.escalated[0]
        assert escalated_turn is chat_turn
        assert candidate == HALLUCINATED
        assert validation.hallucination_detected
        assert AuditEventType.RESPONSE_ESCALATED in await event_types(storage, chat_turn)

    @pytest.mark.asyncio
    async def test_valid_strategic_answer_is_escalated(self, make_gate, fact_pack):
        handler = FakeEscalationHandler()
        gate = make_gate(FakeInvoker(GROUNDED), escalation_handler=handler)
        turn = ChatTurn(user_id="user-1", query="What's the best strategy for my savings?")

        outcome = await gate.handle_turn(turn, fact_pack)

        assert outcome.decision == GateDecision.ESCALATED
        assert outcome.validation.is_valid
        assert outcome.escalation_reason == "User asks strategic planning"

    @pytest.mark.asyncio
    async def test_no_handler_suppresses(self, make_gate, chat_turn, fact_pack, storage):
        gate = make_gate(FakeInvoker(HALLUCINATED))

        outcome = await gate.handle_turn(chat_turn, fact_pack)

        assert outcome.decision == GateDecision.SUPPRESSED
        assert outcome.message is None
        assert outcome.escalation_reason == "Hallucination guard tripped"
        assert outcome.validation is not None
        assert await event_types(storage, chat_turn) == [
            AuditEventType.FACT_PACK_BUILT,
            AuditEventType.BACKEND_CALL_SUCCEEDED,
            AuditEventType.RESPONSE_VALIDATED,
            AuditEventType.RESPONSE_SUPPRESSED,
        ]

    @pytest.mark.asyncio
    async def test_handler_without_content_suppresses(self, make_gate, chat_turn, fact_pack):
        gate = make_gate(FakeInvoker(HALLUCINATED), escalation_handler=FakeEscalationHandler(content=None))

        outcome = await gate.handle_turn(chat_turn, fact_pack)

        assert outcome.decision == GateDecision.SUPPRESSED
        assert outcome.message is None

    @pytest.mark.asyncio
    async def test_handler_error_suppresses(self, make_gate, chat_turn, fact_pack, storage):
        handler = FakeEscalationHandler(error=RuntimeError("queue full"))
        gate = make_gate(FakeInvoker(HALLUCINATED), escalation_handler=handler)

        outcome = await gate.handle_turn(chat_turn, fact_pack)

        assert outcome.decision == GateDecision.SUPPRESSED
        types = await event_types(storage, chat_turn)
        assert AuditEventType.SYSTEM_ERROR in types
        assert types[-1] == AuditEventType.RESPONSE_SUPPRESSED


class TestBackendFailures:
    """Fallback when the backend cannot answer."""

    @pytest.mark.asyncio
    async def test_backend_error_returns_fallback(self, make_gate, chat_turn, fact_pack, storage):
        gate = make_gate(FakeInvoker(RuntimeError("boom")))

        outcome = await gate.handle_turn(chat_turn, fact_pack)

        assert outcome.decision == GateDecision.FALLBACK
        assert outcome.message == "The assistant is unavailable right now."
        assert outcome.error == "boom"
        assert outcome.validation is None
        assert gate.monitoring.get_service_metrics("orchestrator")[0].failure_rate == 1.0
        assert await event_types(storage, chat_turn) == [
            AuditEventType.FACT_PACK_BUILT,
            AuditEventType.BACKEND_CALL_FAILED,
            AuditEventType.FALLBACK_RETURNED,
        ]

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, make_gate, fact_pack, storage):
        invoker = FakeInvoker(RuntimeError("boom"))
        gate = make_gate(invoker)
        for _ in range(3):
            await gate.handle_turn(ChatTurn(user_id="user-1", query="Budget?"), fact_pack)

        turn = ChatTurn(user_id="user-1", query="Budget?")
        outcome = await gate.handle_turn(turn, fact_pack)

        assert outcome.decision == GateDecision.FALLBACK
        assert "is OPEN" in outcome.error
        assert len(invoker.calls) == 3
        assert any(a.type == AlertType.SERVICE_DOWN for a in gate.monitoring.get_active_alerts())
        assert AuditEventType.CIRCUIT_REJECTED in await event_types(storage, turn)


class TestFactPackFailures:
    """No FactPack means nothing can be validated, so nothing is shown."""

    @pytest.mark.asyncio
    async def test_provider_failure_suppresses(self, make_gate, chat_turn, storage):
        invoker = FakeInvoker(GROUNDED)
        provider = FakeFactPackProvider(error=FactPackError("ledger offline"))
        gate = make_gate(invoker, fact_pack_provider=provider)

        outcome = await gate.handle_turn(chat_turn)

        assert outcome.decision == GateDecision.SUPPRESSED
        assert outcome.message is None
        assert outcome.error == "ledger offline"
        assert invoker.calls == []
        assert await event_types(storage, chat_turn) == [
            AuditEventType.FACT_PACK_FAILED,
            AuditEventType.RESPONSE_SUPPRESSED,
        ]

    @pytest.mark.asyncio
    async def test_no_provider_suppresses(self, make_gate, chat_turn):
        outcome = await make_gate(FakeInvoker(GROUNDED)).handle_turn(chat_turn)

        assert outcome.decision == GateDecision.SUPPRESSED
        assert outcome.error == "No FactPack supplied and no provider configured"


class TestAppComponents:
    """Tests for the component factory."""

    @pytest.mark.asyncio
    async def test_components_are_wired_together(self, chat_turn, fact_pack):
        storage = InMemoryAuditStorage()
        components = create_app_components(
            FakeInvoker(GROUNDED),
            audit_storage=storage,
            settings=Settings(),
        )

        assert components.gate.registry is components.registry
        assert components.gate.monitoring is components.monitoring

        outcome = await components.gate.handle_turn(chat_turn, fact_pack)

        assert outcome.decision == GateDecision.DELIVERED
        assert len(await storage.get_events_by_correlation_id(chat_turn.correlation_id)) == 4
        assert components.registry.get("orchestrator").settings.failure_threshold == 3

    @pytest.mark.asyncio
    async def test_default_probe_reads_breaker_state(self, chat_turn, fact_pack):
        components = create_app_components(FakeInvoker(GROUNDED), settings=Settings())

        before = await components.monitoring.perform_health_check("orchestrator")
        assert not before.healthy

        await components.gate.handle_turn(chat_turn, fact_pack)
        after = await components.monitoring.perform_health_check("orchestrator")
        assert after.healthy
