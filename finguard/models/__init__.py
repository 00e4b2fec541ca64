"""
Data Models Package

This package contains all Pydantic models used in finguard.
All data flowing through the reliability layer must conform to these schemas.
"""

from finguard.models.fact_pack import (
    AccountType,
    Balance,
    Budget,
    BudgetStatus,
    CategorySpend,
    FactPack,
    FactPackMetadata,
    FactPackSource,
    Goal,
    GoalStatus,
    PeriodComparison,
    Preferences,
    RecurringExpense,
    RecurringFrequency,
    RiskProfile,
    SpendingCategory,
    SpendingPatterns,
    SpendingTrend,
    TimeWindow,
    Transaction,
    TransactionType,
    UserProfile,
    compute_content_hash,
)
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
    RetryResult,
    ServiceAlert,
    ServiceHealth,
    ServiceMetrics,
)
from finguard.models.validation import (
    ClaimTypeValidation,
    EscalationReason,
    GuardName,
    GuardrailIssue,
    NumericGuardrails,
    RiskLevel,
    RuleValidationResult,
    ValidationResult,
)
from finguard.models.turn import (
    ChatTurn,
    FactWindow,
    GateDecision,
    GateOutcome,
)
from finguard.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # FactPack models
    "AccountType",
    "Balance",
    "Budget",
    "BudgetStatus",
    "CategorySpend",
    "FactPack",
    "FactPackMetadata",
    "FactPackSource",
    "Goal",
    "GoalStatus",
    "PeriodComparison",
    "Preferences",
    "RecurringExpense",
    "RecurringFrequency",
    "RiskProfile",
    "SpendingCategory",
    "SpendingPatterns",
    "SpendingTrend",
    "TimeWindow",
    "Transaction",
    "TransactionType",
    "UserProfile",
    "compute_content_hash",
    # Resilience models
    "AlertSeverity",
    "AlertType",
    "CircuitBreakerStats",
    "CircuitState",
    "HealthCheckResult",
    "HealthProbeResult",
    "HealthStatus",
    "MonitoringSnapshot",
    "OverallHealth",
    "RetryResult",
    "ServiceAlert",
    "ServiceHealth",
    "ServiceMetrics",
    # Validation models
    "ClaimTypeValidation",
    "EscalationReason",
    "GuardName",
    "GuardrailIssue",
    "NumericGuardrails",
    "RiskLevel",
    "RuleValidationResult",
    "ValidationResult",
    # Turn models
    "ChatTurn",
    "FactWindow",
    "GateDecision",
    "GateOutcome",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
