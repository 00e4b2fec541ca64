"""
Validation Models

Results produced by the critic for one candidate answer.

A ValidationResult carries two independent verdicts:
- is_valid: may this text be shown as-is?
- escalation_triggered: should it go to the secondary path?

They are NOT the same question. A numerically correct answer to an
investment-strategy query is valid AND escalated.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class GuardName(str, Enum):
    """Rule guards, in the order guard_failed reports them."""
    NEGATIVE_AMOUNTS = "numeric_negative_amounts"
    SUM_MISMATCH = "numeric_sum_mismatch"
    DATE_OUT_OF_WINDOW = "numeric_date_out_of_window"
    BUDGET_LIMIT_EXCEEDED = "numeric_budget_limit_exceeded"
    FORBIDDEN_PHRASING = "claim_forbidden_phrasing"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EscalationReason(str, Enum):
    """Fixed escalation reasons (rule failures add the guard name)."""
    HALLUCINATION = "Hallucination guard tripped"
    RULE_FAILURE = "Rule validation failed"
    AMBIGUITY = "Critic flags unresolved ambiguity"
    HIGH_STAKES = "High-stakes task detected"
    STRATEGIC = "User asks strategic planning"


class GuardrailIssue(BaseModel):
    """A single problem found in a candidate answer."""

    guard: str = Field(
        ...,
        description="Guard that found the issue (a GuardName value, 'hallucination' or 'ambiguity')"
    )
    message: str = Field(
        ...,
        description="Human-readable description for the reviewer"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
    )
    evidence: Optional[str] = Field(
        default=None,
        description="The text fragment that triggered the issue"
    )


class NumericGuardrails(BaseModel):
    amounts_non_negative: bool = True
    sums_match_fact_pack: bool = True
    dates_inside_window: bool = True
    budget_limits_respected: bool = True

    @property
    def all_passed(self) -> bool:
        return (
            self.amounts_non_negative
            and self.sums_match_fact_pack
            and self.dates_inside_window
            and self.budget_limits_respected
        )


class ClaimTypeValidation(BaseModel):
    has_forbidden_phrasing: bool = False
    forbidden_claims: list[str] = Field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW


class RuleValidationResult(BaseModel):
    passed: bool
    guard_failed: Optional[GuardName] = None
    issues: list[GuardName] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)


class ValidationResult(BaseModel):
    """
    Critic verdict for one candidate answer.

    Created fresh per call and never persisted by the core.
    """

    validated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    is_valid: bool = Field(
        ...,
        description="Rule guards passed and no hallucination or ambiguity"
    )
    rule_validation: RuleValidationResult
    numeric_guardrails: NumericGuardrails
    claim_types: ClaimTypeValidation

    hallucination_detected: bool = False
    untraceable_amounts: list[str] = Field(
        default_factory=list,
        description="Stated amounts that match no FactPack value or derivation"
    )
    ambiguity_detected: bool = False
    ambiguity_markers: list[str] = Field(default_factory=list)

    confidence: float = Field(ge=0.0, le=1.0)
    token_count: int = Field(ge=0)

    escalation_triggered: bool
    escalation_reason: Optional[str] = None

    issues: list[GuardrailIssue] = Field(
        default_factory=list,
        description="Every problem found, for the reviewer"
    )

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")
