"""
Chat Turn Models

Input and output of the response gate for a single chat turn.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finguard.models.validation import ValidationResult


class GateDecision(str, Enum):
    """
    What happened to a turn's answer.

    CRITICAL: Only DELIVERED means the generated text reached the user
    unchanged.
    """
    DELIVERED = "delivered"    # Validated, not escalated
    ESCALATED = "escalated"    # Secondary path supplied the content
    SUPPRESSED = "suppressed"  # Nothing safe to show
    FALLBACK = "fallback"      # Backend unavailable, fixed message returned


class FactWindow(BaseModel):
    """Time window requested from the FactPack provider."""

    start: datetime
    end: datetime
    tz: str = "UTC"


class ChatTurn(BaseModel):
    """One user question travelling through the gate."""

    turn_id: UUID = Field(default_factory=uuid4)
    correlation_id: UUID = Field(
        default_factory=uuid4,
        description="Ties together every audit event of this turn"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    user_id: str = Field(..., min_length=1)
    query: str = Field(..., description="The user's question")
    service_name: Optional[str] = Field(
        default=None,
        description="Backend to invoke; the gate's default service when omitted"
    )
    request: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque payload passed to the backend"
    )
    window: Optional[FactWindow] = None


class GateOutcome(BaseModel):
    """Result of ResponseGate.handle_turn."""

    turn_id: UUID
    decision: GateDecision
    message: Optional[str] = Field(
        default=None,
        description="Text to show the user; None when suppressed"
    )
    validation: Optional[ValidationResult] = None
    escalation_reason: Optional[str] = None
    fact_pack_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.decision == GateDecision.DELIVERED
