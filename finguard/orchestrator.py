"""
Response Gate for finguard

This module ties together all the components and defines the
end-to-end flow for one chat turn:

    FactPack -> backend (through its breaker) -> record metrics
             -> validate -> deliver / escalate / suppress / fall back

DESIGN DECISION: The gate enforces the boundaries:
- No answer reaches the user without validation against a FactPack
- No backend call bypasses its circuit breaker
- The gate never writes answer content itself (only the backend or the
  escalation path does; the fallback is a fixed configured message)
- Every step is audited

This is the "glue" that ensures the system behaves correctly
even when individual components misbehave.
"""

from typing import NamedTuple, Optional

import structlog

from finguard.audit import AuditLogger, configure_log_level
from finguard.config import GateSettings, Settings, get_settings
from finguard.models.fact_pack import FactPack
from finguard.models.turn import ChatTurn, GateDecision, GateOutcome
from finguard.models.validation import ValidationResult
from finguard.resilience import (
    BreakerStateProbe,
    CircuitBreakerRegistry,
    CircuitOpenError,
    MonitoringService,
    MonitoringStore,
)
from finguard.services.interface import (
    BackendInvoker,
    EscalationHandler,
    FactPackError,
    FactPackProvider,
    HealthProbe,
)
from finguard.services.storage import AuditStorageInterface, InMemoryAuditStorage
from finguard.validation import GuardrailValidator


logger = structlog.get_logger(__name__)


class ResponseGate:
    """
    Gates every generated answer for one chat turn.

    Flow:
    1. FactPack → use the one supplied or build one (failure → suppressed)
    2. Call → backend through its breaker (rejection/error → fallback)
    3. Record → breaker stats into monitoring
    4. Validate → guardrails against the FactPack
    5. Decide → delivered, or escalated via the handler, or suppressed

    handle_turn NEVER raises.
    """

    def __init__(
        self,
        registry: CircuitBreakerRegistry,
        monitoring: MonitoringService,
        validator: GuardrailValidator,
        invoker: BackendInvoker,
        fact_pack_provider: Optional[FactPackProvider] = None,
        escalation_handler: Optional[EscalationHandler] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[GateSettings] = None,
    ):
        self._registry = registry
        self._monitoring = monitoring
        self._validator = validator
        self._invoker = invoker
        self._fact_pack_provider = fact_pack_provider
        self._escalation_handler = escalation_handler
        self._audit_logger = audit_logger or AuditLogger()  # Local-only logging
        self._settings = settings or get_settings().gate

    @property
    def registry(self) -> CircuitBreakerRegistry:
        return self._registry

    @property
    def monitoring(self) -> MonitoringService:
        return self._monitoring

    async def handle_turn(
        self,
        turn: ChatTurn,
        fact_pack: Optional[FactPack] = None,
    ) -> GateOutcome:
        """
        Run one chat turn through the gate.

        Args:
            turn: The user's question and backend request
            fact_pack: Ground truth for this turn; built via the provider if omitted

        Returns:
            GateOutcome describing what (if anything) the user sees
        """
        try:
            return await self._handle_turn(turn, fact_pack)
        except Exception as e:
            logger.exception("gate_unexpected_error", turn_id=str(turn.turn_id))
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"turn_id": str(turn.turn_id)},
                correlation_id=turn.correlation_id,
            )
            return GateOutcome(
                turn_id=turn.turn_id,
                decision=GateDecision.SUPPRESSED,
                error=str(e),
            )

    async def _handle_turn(
        self,
        turn: ChatTurn,
        fact_pack: Optional[FactPack],
    ) -> GateOutcome:
        correlation_id = turn.correlation_id

        # Step 1: FactPack
        if fact_pack is None:
            try:
                fact_pack = await self._build_fact_pack(turn)
            except Exception as e:
                await self._audit_logger.log_fact_pack_failed(
                    turn_id=turn.turn_id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
                return await self._suppress(turn, f"FactPack unavailable: {str(e)[:200]}", error=str(e))

        fact_pack_hash = fact_pack.metadata.hash
        await self._audit_logger.log_fact_pack_built(
            turn_id=turn.turn_id,
            fact_pack_hash=fact_pack_hash,
            source=fact_pack.metadata.source.value,
            correlation_id=correlation_id,
        )

        # Step 2: Backend call through the breaker
        service = turn.service_name or self._settings.default_service
        breaker = self._registry.get(service)

        try:
            candidate = await breaker.call(
                lambda: self._invoker.invoke(service, turn.request)
            )
        except CircuitOpenError as e:
            self._monitoring.record_service_down(service, str(e))
            await self._audit_logger.log_circuit_rejected(
                turn_id=turn.turn_id,
                service=service,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return await self._fallback(turn, service, fact_pack_hash, str(e))
        except Exception as e:
            self._monitoring.record_metrics(service, breaker.get_stats())
            await self._audit_logger.log_backend_call(
                turn_id=turn.turn_id,
                service=service,
                correlation_id=correlation_id,
                error_message=str(e) or type(e).__name__,
            )
            return await self._fallback(turn, service, fact_pack_hash, str(e) or type(e).__name__)

        # Step 3: Record
        self._monitoring.record_metrics(service, breaker.get_stats())
        await self._audit_logger.log_backend_call(
            turn_id=turn.turn_id,
            service=service,
            correlation_id=correlation_id,
        )

        # Step 4: Validate
        validation = self._validator.validate_response(candidate, turn.query, fact_pack)
        await self._audit_logger.log_response_validated(
            turn_id=turn.turn_id,
            is_valid=validation.is_valid,
            escalation_reason=validation.escalation_reason,
            issues=[issue.model_dump() for issue in validation.issues],
            correlation_id=correlation_id,
        )

        # Step 5: Decide
        if validation.is_valid and not validation.escalation_triggered:
            await self._audit_logger.log_response_delivered(
                turn_id=turn.turn_id,
                correlation_id=correlation_id,
            )
            return GateOutcome(
                turn_id=turn.turn_id,
                decision=GateDecision.DELIVERED,
                message=candidate,
                validation=validation,
                fact_pack_hash=fact_pack_hash,
            )

        return await self._escalate(turn, candidate, validation, fact_pack_hash)

    async def _build_fact_pack(self, turn: ChatTurn) -> FactPack:
        if self._fact_pack_provider is None:
            raise FactPackError("No FactPack supplied and no provider configured")
        return await self._fact_pack_provider.build_fact_pack(turn.user_id, turn.window)

    async def _escalate(
        self,
        turn: ChatTurn,
        candidate: str,
        validation: ValidationResult,
        fact_pack_hash: str,
    ) -> GateOutcome:
        reason = validation.escalation_reason or "Validation failed"

        content = None
        if self._escalation_handler is not None:
            try:
                content = await self._escalation_handler.escalate(turn, candidate, validation)
            except Exception as e:
                logger.error(
                    "escalation_handler_failed",
                    turn_id=str(turn.turn_id),
                    error=str(e),
                )
                await self._audit_logger.log_error(
                    error_type="escalation_handler_failed",
                    error_message=str(e),
                    details={"turn_id": str(turn.turn_id)},
                    correlation_id=turn.correlation_id,
                )

        if not content:
            return await self._suppress(
                turn,
                reason,
                validation=validation,
                fact_pack_hash=fact_pack_hash,
            )

        await self._audit_logger.log_response_escalated(
            turn_id=turn.turn_id,
            reason=reason,
            correlation_id=turn.correlation_id,
        )
        return GateOutcome(
            turn_id=turn.turn_id,
            decision=GateDecision.ESCALATED,
            message=content,
            validation=validation,
            escalation_reason=reason,
            fact_pack_hash=fact_pack_hash,
        )

    async def _suppress(
        self,
        turn: ChatTurn,
        reason: str,
        validation: Optional[ValidationResult] = None,
        fact_pack_hash: Optional[str] = None,
        error: Optional[str] = None,
    ) -> GateOutcome:
        await self._audit_logger.log_response_suppressed(
            turn_id=turn.turn_id,
            reason=reason,
            correlation_id=turn.correlation_id,
        )
        return GateOutcome(
            turn_id=turn.turn_id,
            decision=GateDecision.SUPPRESSED,
            message=None,
            validation=validation,
            escalation_reason=validation.escalation_reason if validation else None,
            fact_pack_hash=fact_pack_hash,
            error=error,
        )

    async def _fallback(
        self,
        turn: ChatTurn,
        service: str,
        fact_pack_hash: str,
        error: str,
    ) -> GateOutcome:
        await self._audit_logger.log_fallback_returned(
            turn_id=turn.turn_id,
            service=service,
            correlation_id=turn.correlation_id,
        )
        return GateOutcome(
            turn_id=turn.turn_id,
            decision=GateDecision.FALLBACK,
            message=self._settings.fallback_message,
            fact_pack_hash=fact_pack_hash,
            error=error,
        )


class AppComponents(NamedTuple):
    gate: ResponseGate
    registry: CircuitBreakerRegistry
    monitoring: MonitoringService
    validator: GuardrailValidator
    audit_logger: AuditLogger


def create_app_components(
    invoker: BackendInvoker,
    fact_pack_provider: Optional[FactPackProvider] = None,
    escalation_handler: Optional[EscalationHandler] = None,
    health_probe: Optional[HealthProbe] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    settings: Optional[Settings] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        invoker: Calls the generation backends
        fact_pack_provider: Builds per-turn FactPacks
        escalation_handler: Secondary path for answers that cannot be delivered
        health_probe: Defaults to reading breaker state
        audit_storage: Defaults to a bounded in-memory store
        settings: Defaults to get_settings()

    Returns:
        AppComponents(gate, registry, monitoring, validator, audit_logger)
    """
    settings = settings or get_settings()
    configure_log_level(settings.app.log_level)

    monitoring_settings = settings.monitoring
    registry = CircuitBreakerRegistry(settings.breaker)
    monitoring = MonitoringService(
        store=MonitoringStore(monitoring_settings),
        settings=monitoring_settings,
        health_probe=health_probe or BreakerStateProbe(registry),
    )
    validator = GuardrailValidator(settings.guardrails)
    audit_logger = AuditLogger(
        audit_storage if audit_storage is not None else InMemoryAuditStorage()
    )

    gate = ResponseGate(
        registry=registry,
        monitoring=monitoring,
        validator=validator,
        invoker=invoker,
        fact_pack_provider=fact_pack_provider,
        escalation_handler=escalation_handler,
        audit_logger=audit_logger,
        settings=settings.gate,
    )

    return AppComponents(gate, registry, monitoring, validator, audit_logger)
