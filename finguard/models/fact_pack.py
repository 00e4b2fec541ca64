"""
FactPack Models

A FactPack is the ground truth for exactly one chat turn: the user's
balances, budgets, goals, recurring expenses, recent transactions and
derived spending patterns, frozen at the moment the turn starts.

DESIGN DECISION: Every model here is frozen and every collection is a
tuple. The critic compares generated text against this snapshot, so the
snapshot must not be able to change underneath it.

Field names are snake_case in Python and camelCase on the wire
(topCategories, targetAmount, ...), matching the chat pipeline's JSON.
"""

import hashlib
import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    INVESTMENT = "investment"


class BudgetStatus(str, Enum):
    """Budget status derived from utilization."""
    UNDER = "under"
    AT_LIMIT = "at_limit"  # 95% or more
    OVER = "over"          # 100% or more


class GoalStatus(str, Enum):
    BEHIND = "behind"
    ON_TRACK = "on_track"
    AHEAD = "ahead"


class RecurringFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class TransactionType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


class SpendingTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class RiskProfile(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class FactPackSource(str, Enum):
    """Where the snapshot's raw numbers came from."""
    LOCAL = "local"
    API = "api"
    CACHE = "cache"


# =============================================================================
# BASE
# =============================================================================

class FactModel(BaseModel):
    """Frozen base for every FactPack component."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# =============================================================================
# COMPONENTS
# =============================================================================

class TimeWindow(FactModel):
    """
    Explicit time window the snapshot covers.

    `period` is the human-readable label (e.g. "Aug 1–25, PDT").
    """
    start: datetime
    end: datetime
    tz: str = Field(default="UTC", description="IANA timezone")
    period: str = Field(default="", description="Human readable period label")


class Balance(FactModel):
    account_id: str
    name: str
    current: Decimal
    total: Decimal = Decimal("0")
    spent: Decimal = Decimal("0")
    type: AccountType = AccountType.CHECKING


class CategorySpend(FactModel):
    """Per-category breakdown inside a budget."""
    name: str
    spent: Decimal
    limit: Decimal
    utilization: float = Field(default=0.0, ge=0.0)


class Budget(FactModel):
    id: str
    name: str
    period: str = Field(description="Budget period, e.g. '2025-08'")
    spent: Decimal = Field(ge=0)
    limit: Decimal = Field(ge=0)
    remaining: Decimal
    utilization: float = Field(ge=0.0, le=100.0, description="Percentage (0-100)")
    status: BudgetStatus
    top_categories: tuple[CategorySpend, ...] = ()


class Goal(FactModel):
    id: str
    name: str
    target_amount: Decimal = Field(ge=0)
    current_amount: Decimal = Field(ge=0)
    progress: float = Field(ge=0.0, le=100.0, description="Percentage (0-100)")
    remaining: Decimal
    deadline: datetime
    status: GoalStatus


class RecurringExpense(FactModel):
    id: str
    name: str
    amount: Decimal = Field(ge=0)
    frequency: RecurringFrequency
    next_due: datetime
    category: str
    is_active: bool = True


class Transaction(FactModel):
    id: str
    amount: Decimal
    category: str
    date: datetime
    type: TransactionType
    description: str = ""


class SpendingCategory(FactModel):
    name: str
    total: Decimal
    count: int = Field(ge=0)
    percentage: float = Field(ge=0.0)


class PeriodComparison(FactModel):
    previous_period: str
    change: float = Field(description="Percentage change against the previous period")
    is_improvement: bool


class SpendingPatterns(FactModel):
    total_spent: Decimal
    average_daily: Decimal
    top_categories: tuple[SpendingCategory, ...] = ()
    trend: SpendingTrend = SpendingTrend.STABLE
    comparison: Optional[PeriodComparison] = None


class Preferences(FactModel):
    notifications: bool = True
    insights: bool = True
    auto_categorization: bool = False


class UserProfile(FactModel):
    monthly_income: Decimal = Field(ge=0)
    financial_goal: str = ""
    risk_profile: RiskProfile = RiskProfile.MODERATE
    preferences: Preferences = Field(default_factory=Preferences)


class FactPackMetadata(FactModel):
    """Caching and integrity metadata."""
    generated_at: datetime
    data_version: str = "1.0.0"
    hash: str = Field(description="SHA-256 of every non-metadata field")
    source: FactPackSource = FactPackSource.LOCAL
    freshness: int = Field(default=0, ge=0, description="Seconds since last data update")


# =============================================================================
# SNAPSHOT
# =============================================================================

class FactPack(FactModel):
    """
    Immutable ground-truth snapshot for one chat turn.

    CRITICAL: Build it with FactPackBuilder, then never touch it again.
    The metadata hash lets any consumer confirm that the snapshot it is
    checking against is the one that was built.
    """

    time_window: TimeWindow = Field(alias="time_window")
    balances: tuple[Balance, ...] = ()
    budgets: tuple[Budget, ...] = ()
    goals: tuple[Goal, ...] = ()
    recurring: tuple[RecurringExpense, ...] = ()
    recent_transactions: tuple[Transaction, ...] = ()
    spending_patterns: Optional[SpendingPatterns] = None
    user_profile: Optional[UserProfile] = None
    metadata: FactPackMetadata

    def content_hash(self) -> str:
        """Recompute the hash of every non-metadata field."""
        return compute_content_hash(self.model_dump(mode="json", exclude={"metadata"}))

    def verify_hash(self) -> bool:
        """True if the stored hash still matches the content."""
        return self.content_hash() == self.metadata.hash

    def find_budget(self, name: str) -> Optional[Budget]:
        """Case-insensitive lookup of a budget by name."""
        wanted = name.strip().lower()
        for budget in self.budgets:
            if budget.name.lower() == wanted:
                return budget
        return None


def compute_content_hash(content: dict) -> str:
    """SHA-256 of the canonical (sorted, compact) JSON form of `content`."""
    canonical = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
