"""
Audit Logger

DESIGN DECISION: Every decision the gate makes is logged.
This provides:
1. Complete traceability of what the user saw and why
2. Debugging capability when an answer is escalated or suppressed
3. Evidence for tuning guardrails

The audit logger:
- Is async to not block the chat turn
- Gracefully handles failures (doesn't break a turn if logging fails)
- Supports correlation IDs to trace all events of one chat turn
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finguard.models.audit import AuditEvent, AuditEventBuilder
from finguard.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_log_level(level: str) -> None:
    """Set the stdlib level that structlog's filter_by_level reads."""
    logging.basicConfig(format="%(message)s")
    logging.getLogger().setLevel(level.upper())


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage is not None:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_fact_pack_built(
        self,
        turn_id: UUID,
        fact_pack_hash: str,
        source: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.fact_pack_built(
            turn_id=turn_id,
            fact_pack_hash=fact_pack_hash,
            source=source,
            correlation_id=correlation_id,
        ))

    async def log_fact_pack_failed(
        self,
        turn_id: UUID,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.fact_pack_failed(
            turn_id=turn_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_backend_call(
        self,
        turn_id: UUID,
        service: str,
        correlation_id: UUID,
        error_message: Optional[str] = None,
    ) -> None:
        """Log a completed backend call (success when error_message is None)."""
        if error_message is None:
            event = AuditEventBuilder.backend_call_succeeded(
                turn_id=turn_id,
                service=service,
                correlation_id=correlation_id,
            )
        else:
            event = AuditEventBuilder.backend_call_failed(
                turn_id=turn_id,
                service=service,
                error_message=error_message,
                correlation_id=correlation_id,
            )
        await self.log(event)

    async def log_circuit_rejected(
        self,
        turn_id: UUID,
        service: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.circuit_rejected(
            turn_id=turn_id,
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_response_validated(
        self,
        turn_id: UUID,
        is_valid: bool,
        escalation_reason: Optional[str],
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.response_validated(
            turn_id=turn_id,
            is_valid=is_valid,
            escalation_reason=escalation_reason,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_response_delivered(
        self,
        turn_id: UUID,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.response_delivered(
            turn_id=turn_id,
            correlation_id=correlation_id,
        ))

    async def log_response_escalated(
        self,
        turn_id: UUID,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.response_escalated(
            turn_id=turn_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_response_suppressed(
        self,
        turn_id: UUID,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.response_suppressed(
            turn_id=turn_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_fallback_returned(
        self,
        turn_id: UUID,
        service: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.fallback_returned(
            turn_id=turn_id,
            service=service,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a chat turn and pass it through
    every subsequent step.
    """
    return uuid4()
