"""
FactPack Builder

Assembles the immutable ground-truth snapshot for one chat turn.

DESIGN DECISION: The builder owns every derived field.
Callers pass raw numbers (spent, limit, target, current); remaining
amounts, utilization, progress and status are always recomputed by
FactPackCalculator so an upstream mistake cannot leak into the snapshot.

Inputs may be models or plain mappings using either snake_case or the
camelCase wire names.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel

from finguard.facts.calculator import FactPackCalculator
from finguard.models.fact_pack import (
    Balance,
    Budget,
    FactPack,
    FactPackMetadata,
    FactPackSource,
    Goal,
    RecurringExpense,
    SpendingPatterns,
    TimeWindow,
    Transaction,
    UserProfile,
)
from finguard.services.interface import FactPackError


logger = structlog.get_logger(__name__)

DATA_VERSION = "1.0.0"

RawItem = Union[BaseModel, Mapping[str, Any]]


def _as_dict(item: RawItem) -> dict[str, Any]:
    if isinstance(item, BaseModel):
        return item.model_dump()
    return dict(item)


def _decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise FactPackError(f"Not a number: {value!r}") from e


def _pick(raw: Mapping[str, Any], name: str, default: Any = None) -> Any:
    """Read a field by its snake_case name or its camelCase alias."""
    if name in raw:
        return raw[name]
    return raw.get(to_camel(name), default)


def format_period(start: datetime, end: datetime, tz: str) -> str:
    """Human readable label such as 'Aug 1–25, PDT'."""
    try:
        zone = ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        return f"{start:%b} {start.day}–{end.day}, {tz}"
    local_start = start.astimezone(zone)
    local_end = end.astimezone(zone)
    return f"{local_start:%b} {local_start.day}–{local_end.day}, {local_start.tzname()}"


class FactPackBuilder:
    """
    Fluent builder for FactPack.

    Usage:
        fact_pack = (
            FactPackBuilder()
            .set_time_window(start, end, "America/Los_Angeles")
            .set_budgets([{"id": "b1", "name": "Groceries", "period": "2025-08",
                           "spent": 300, "limit": 500}])
            .build()
        )

    One builder produces one snapshot; build a new builder per turn.
    """

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self._clock = clock
        self._time_window: Optional[TimeWindow] = None
        self._balances: tuple[Balance, ...] = ()
        self._budgets: tuple[Budget, ...] = ()
        self._goals: tuple[Goal, ...] = ()
        self._recurring: tuple[RecurringExpense, ...] = ()
        self._transactions: tuple[Transaction, ...] = ()
        self._spending_patterns: Optional[SpendingPatterns] = None
        self._user_profile: Optional[UserProfile] = None

    # =========================================================================
    # SETTERS
    # =========================================================================

    def set_time_window(self, start: datetime, end: datetime, tz: str = "UTC") -> "FactPackBuilder":
        self._time_window = TimeWindow(
            start=start,
            end=end,
            tz=tz,
            period=format_period(start, end, tz),
        )
        return self

    def set_balances(self, balances: Iterable[RawItem]) -> "FactPackBuilder":
        self._balances = tuple(Balance.model_validate(_as_dict(b)) for b in balances)
        return self

    def set_budgets(self, budgets: Iterable[RawItem]) -> "FactPackBuilder":
        """Set budgets; remaining, utilization and status are recomputed."""
        built = []
        for item in budgets:
            raw = _as_dict(item)
            spent = _pick(raw, "spent")
            limit = _pick(raw, "limit")
            built.append(Budget.model_validate({
                "id": _pick(raw, "id"),
                "name": _pick(raw, "name"),
                "period": _pick(raw, "period", ""),
                "spent": spent,
                "limit": limit,
                "remaining": _decimal(limit) - _decimal(spent),
                "utilization": FactPackCalculator.calculate_utilization(spent, limit),
                "status": FactPackCalculator.determine_budget_status(spent, limit),
                "top_categories": _pick(raw, "top_categories", ()),
            }))
        self._budgets = tuple(built)
        return self

    def set_goals(self, goals: Iterable[RawItem]) -> "FactPackBuilder":
        """Set goals; progress, remaining and status are recomputed."""
        now = self._clock()
        built = []
        for item in goals:
            raw = _as_dict(item)
            target = _pick(raw, "target_amount")
            current = _pick(raw, "current_amount")
            goal = Goal.model_validate({
                "id": _pick(raw, "id"),
                "name": _pick(raw, "name"),
                "target_amount": target,
                "current_amount": current,
                "remaining": _decimal(target) - _decimal(current),
                "progress": FactPackCalculator.calculate_goal_progress(current, target),
                "deadline": _pick(raw, "deadline"),
                "status": "on_track",
            })
            status = FactPackCalculator.determine_goal_status(
                goal.current_amount, goal.target_amount, goal.deadline, now=now
            )
            built.append(goal.model_copy(update={"status": status}))
        self._goals = tuple(built)
        return self

    def set_recurring(self, recurring: Iterable[RawItem]) -> "FactPackBuilder":
        self._recurring = tuple(RecurringExpense.model_validate(_as_dict(r)) for r in recurring)
        return self

    def set_recent_transactions(self, transactions: Iterable[RawItem]) -> "FactPackBuilder":
        self._transactions = tuple(Transaction.model_validate(_as_dict(t)) for t in transactions)
        return self

    def set_spending_patterns(self, patterns: Optional[RawItem]) -> "FactPackBuilder":
        self._spending_patterns = (
            SpendingPatterns.model_validate(_as_dict(patterns)) if patterns is not None else None
        )
        return self

    def set_user_profile(self, profile: Optional[RawItem]) -> "FactPackBuilder":
        self._user_profile = (
            UserProfile.model_validate(_as_dict(profile)) if profile is not None else None
        )
        return self

    # =========================================================================
    # BUILD
    # =========================================================================

    def build(
        self,
        source: FactPackSource = FactPackSource.LOCAL,
        freshness: int = 0,
    ) -> FactPack:
        """
        Stamp metadata and return the frozen snapshot.

        Integrity problems are logged as warnings; the snapshot is still
        returned because the derived fields were computed here.

        Raises:
            FactPackError: If no time window was set or the data is invalid
        """
        if self._time_window is None:
            raise FactPackError("FactPack requires a time window")

        try:
            draft = FactPack(
                time_window=self._time_window,
                balances=self._balances,
                budgets=self._budgets,
                goals=self._goals,
                recurring=self._recurring,
                recent_transactions=self._transactions,
                spending_patterns=self._spending_patterns,
                user_profile=self._user_profile,
                metadata=FactPackMetadata(
                    generated_at=self._clock(),
                    data_version=DATA_VERSION,
                    hash="",
                    source=source,
                    freshness=freshness,
                ),
            )
        except ValidationError as e:
            raise FactPackError(f"Invalid FactPack data: {e}") from e

        metadata = draft.metadata.model_copy(update={
            "hash": FactPackCalculator.generate_hash(
                draft.model_dump(mode="json", exclude={"metadata"})
            ),
        })
        fact_pack = draft.model_copy(update={"metadata": metadata})

        is_valid, errors = FactPackCalculator.validate_fact_pack(fact_pack)
        if not is_valid:
            logger.warning(
                "fact_pack_integrity_warning",
                errors=errors,
                fact_pack_hash=metadata.hash,
            )

        logger.debug(
            "fact_pack_built",
            fact_pack_hash=metadata.hash,
            source=source.value,
            budgets=len(fact_pack.budgets),
            goals=len(fact_pack.goals),
        )
        return fact_pack
