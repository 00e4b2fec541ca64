"""
Audit Models for finguard

Every decision the reliability layer makes about a chat turn is logged:
which backend was called, whether the breaker let it through, what the
critic found, and what the user finally saw.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the response gate has its own event type.
    """
    # Fact pack
    FACT_PACK_BUILT = "fact_pack_built"
    FACT_PACK_FAILED = "fact_pack_failed"

    # Backend calls
    BACKEND_CALL_SUCCEEDED = "backend_call_succeeded"
    BACKEND_CALL_FAILED = "backend_call_failed"
    CIRCUIT_REJECTED = "circuit_rejected"

    # Critic
    RESPONSE_VALIDATED = "response_validated"

    # Outcome
    RESPONSE_DELIVERED = "response_delivered"
    RESPONSE_ESCALATED = "response_escalated"
    RESPONSE_SUPPRESSED = "response_suppressed"
    FALLBACK_RETURNED = "fallback_returned"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'turn', 'service', 'fact_pack')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (all events of one chat turn)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.circuit_rejected(turn_id, "orchestrator", msg, correlation_id)
        event = AuditEventBuilder.response_delivered(turn_id, correlation_id)
    """

    @staticmethod
    def fact_pack_built(
        turn_id: UUID,
        fact_pack_hash: str,
        source: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FACT_PACK_BUILT,
            entity_type="turn",
            entity_id=turn_id,
            correlation_id=correlation_id,
            description=f"FactPack ready ({source})",
            details={
                "hash": fact_pack_hash,
                "source": source,
            },
        )

    @staticmethod
    def fact_pack_failed(
        turn_id: UUID,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FACT_PACK_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="turn",
            entity_id=turn_id,
            correlation_id=correlation_id,
            description="FactPack could not be built",
            error_message=error_message,
        )

    @staticmethod
    def backend_call_succeeded(
        turn_id: UUID,
        service: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKEND_CALL_SUCCEEDED,
            entity_type="turn",
            entity_id=turn_id,
            correlation_id=correlation_id,
            description=f"Backend call succeeded: {service}",
            details={"service": service},
        )

    @staticmethod
    def backend_call_failed(
        turn_id: UUID,
        service: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKEND_CALL_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="turn",
            entity_id=turn_id,
            correlation_id=correlation_id,
            description=f"Backend call failed: {service}",
            error_message=error_message,
            details={"service": service},
        )

    @staticmethod
    def circuit_rejected(
        turn_id: UUID,
        service: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CIRCUIT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="turn",
            entity_id=turn_id,
            correlation_id=correlation_id,
            description=f"Circuit open, call rejected: {service}",
            error_code="circuit_open",
            error_message=error_message,
            details={"service": service},
        )

    @staticmethod
    def response_validated(
        turn_id: UUID,
        is_valid: bool,
        escalation_reason: Optional[str],
        issues: list[dict],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESPONSE_VALIDATED,
            severity=AuditSeverity.INFO if is_valid else AuditSeverity.WARNING,
            entity_type="turn",
            entity_id=turn_id,
            correlation_id=correlation_id,
            description=(
                "Response passed validation"
                if is_valid
                else f"Response failed validation with {len(issues)} issues"
            ),
            details={
                "is_valid": is_valid,
                "escalation_reason": escalation_reason,
                "issues": issues,
            },
        )

    @staticmethod
    def response_delivered(
        turn_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESPONSE_DELIVERED,
            entity_type="turn",
            entity_id=turn_id,
            correlation_id=correlation_id,
            description="Response delivered to user",
        )

    @staticmethod
    def response_escalated(
        turn_id: UUID,
        reason: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESPONSE_ESCALATED,
            severity=AuditSeverity.WARNING,
            entity_type="turn",
            entity_id=turn_id,
            correlation_id=correlation_id,
            description=f"Response escalated: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def response_suppressed(
        turn_id: UUID,
        reason: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESPONSE_SUPPRESSED,
            severity=AuditSeverity.WARNING,
            entity_type="turn",
            entity_id=turn_id,
            correlation_id=correlation_id,
            description=f"Response suppressed: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def fallback_returned(
        turn_id: UUID,
        service: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FALLBACK_RETURNED,
            severity=AuditSeverity.WARNING,
            entity_type="turn",
            entity_id=turn_id,
            correlation_id=correlation_id,
            description=f"Fallback message returned ({service} unavailable)",
            details={"service": service},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
