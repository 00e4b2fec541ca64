"""
FactPack Calculator

Deterministic calculations behind every derived FactPack field.

CRITICAL: Generated text must never be the source of a derived number.
Utilization, status, progress and remaining amounts are computed here,
once, when the snapshot is built.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from finguard.models.fact_pack import (
    BudgetStatus,
    FactPack,
    GoalStatus,
    compute_content_hash,
)

Number = Union[Decimal, float, int]

# Goals are measured against a 30-day horizon
_GOAL_HORIZON_DAYS = 30
_GOAL_STATUS_BAND = 10.0

_UTILIZATION_TOLERANCE = 1.0
_AMOUNT_TOLERANCE = Decimal("0.01")


def _round_half_up(value: Decimal, places: str = "1") -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


class FactPackCalculator:
    """Stateless calculator; every method is a static function."""

    @staticmethod
    def calculate_utilization(spent: Number, limit: Number) -> float:
        """Percentage of the limit used, rounded, capped at 100."""
        limit = Decimal(str(limit))
        if limit <= 0:
            return 0.0
        ratio = Decimal(str(spent)) / limit * 100
        return float(min(Decimal(100), _round_half_up(ratio)))

    @staticmethod
    def determine_budget_status(spent: Number, limit: Number) -> BudgetStatus:
        utilization = FactPackCalculator.calculate_utilization(spent, limit)
        if utilization >= 100:
            return BudgetStatus.OVER
        if utilization >= 95:
            return BudgetStatus.AT_LIMIT
        return BudgetStatus.UNDER

    @staticmethod
    def calculate_goal_progress(current: Number, target: Number) -> float:
        """Percentage of the target saved, rounded, capped at 100."""
        target = Decimal(str(target))
        if target <= 0:
            return 0.0
        ratio = Decimal(str(current)) / target * 100
        return float(min(Decimal(100), _round_half_up(ratio)))

    @staticmethod
    def determine_goal_status(
        current: Number,
        target: Number,
        deadline: datetime,
        now: Optional[datetime] = None,
    ) -> GoalStatus:
        """
        Compare progress with where it should be given the deadline.

        Past the deadline a goal is either done (ahead) or behind.
        Otherwise progress within 10 points of the expected value is on track.
        """
        now = now or datetime.now(timezone.utc)
        if deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)
        progress = FactPackCalculator.calculate_goal_progress(current, target)

        seconds_left = (deadline - now).total_seconds()
        days_left = -(-seconds_left // 86400)  # ceil
        if days_left <= 0:
            return GoalStatus.AHEAD if progress >= 100 else GoalStatus.BEHIND

        expected = max(0.0, 100 - (days_left / _GOAL_HORIZON_DAYS) * 100)
        if progress >= expected + _GOAL_STATUS_BAND:
            return GoalStatus.AHEAD
        if progress < expected - _GOAL_STATUS_BAND:
            return GoalStatus.BEHIND
        return GoalStatus.ON_TRACK

    @staticmethod
    def calculate_daily_average(total_spent: Number, days: int) -> Decimal:
        if days <= 0:
            return Decimal("0")
        return _round_half_up(Decimal(str(total_spent)) / days, "0.01")

    @staticmethod
    def generate_hash(content: dict) -> str:
        """SHA-256 over the canonical JSON of the non-metadata content."""
        return compute_content_hash(content)

    @staticmethod
    def validate_fact_pack(fact_pack: FactPack) -> tuple[bool, list[str]]:
        """
        Check that derived fields agree with the raw numbers.

        Returns:
            (is_valid, errors)
        """
        errors: list[str] = []

        window = fact_pack.time_window
        if window is None or window.start is None or window.end is None:
            errors.append("Missing time window")
        elif window.end < window.start:
            errors.append("Time window ends before it starts")

        for index, budget in enumerate(fact_pack.budgets):
            expected = FactPackCalculator.calculate_utilization(budget.spent, budget.limit)
            if abs(budget.utilization - expected) > _UTILIZATION_TOLERANCE:
                errors.append(
                    f"Budget {index}: utilization mismatch ({budget.utilization} vs {expected})"
                )
            if abs(budget.remaining - (budget.limit - budget.spent)) > _AMOUNT_TOLERANCE:
                errors.append(f"Budget {index}: remaining amount mismatch")

        for index, goal in enumerate(fact_pack.goals):
            expected = FactPackCalculator.calculate_goal_progress(
                goal.current_amount, goal.target_amount
            )
            if abs(goal.progress - expected) > _UTILIZATION_TOLERANCE:
                errors.append(
                    f"Goal {index}: progress mismatch ({goal.progress} vs {expected})"
                )
            if abs(goal.remaining - (goal.target_amount - goal.current_amount)) > _AMOUNT_TOLERANCE:
                errors.append(f"Goal {index}: remaining amount mismatch")

        if not fact_pack.verify_hash():
            errors.append("Metadata hash does not match content")

        return len(errors) == 0, errors
