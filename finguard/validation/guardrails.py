"""
Guardrail Vocabulary and Extraction

Pattern tables and text/number extraction shared by the validator.

DESIGN DECISION: Every phrase list lives here as data, separate from the
decision logic. Tuning a guardrail means editing a table, not a method.

Patterns that span words are bounded to one sentence ([^.!?]*) so a word
in one sentence cannot pair with a word in the next.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import NamedTuple, Optional

from finguard.models.fact_pack import FactPack, TransactionType


# =============================================================================
# VOCABULARY
# =============================================================================

FORBIDDEN_PATTERNS: tuple[re.Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"guarantee[^.!?]*return",
    r"sure[\s-]?fire[^.!?]*(?:profit|return)",
    r"guaranteed[^.!?]*(?:profit|income)",
    r"risk[\s-]?free",
    r"can[’']?t[^.!?]*lose",
    r"\bsure thing\b",
    r"100%[^.!?]*success",
    r"\bnever[^.!?]*fail",
    r"\balways[^.!?]*win",
    r"invest[^.!?]*\ball[^.!?]*money",
    r"put[^.!?]*everything[^.!?]*\bin\b",
    r"mortgage[^.!?]*house[^.!?]*invest",
    r"borrow[^.!?]*invest",
    r"credit[^.!?]*card[^.!?]*invest",
))

SPECULATIVE_PHRASES: tuple[re.Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"\bmarket data shows\b",
    r"\beconomic indicators suggest\b",
    r"\bindustry trends\b",
    r"\byour spending will be\b",
    r"\byou will spend\b",
    r"\bnext month you[’']ll\b",
    r"\blast year you spent\b",
    r"\bhistorically you\b",
    r"\byour credit score is \d+",
))

HEDGE_PATTERN = re.compile(
    r"\b(maybe|perhaps|possibly|depends|not sure|hard to say)\b",
    re.IGNORECASE,
)
CONDITIONAL_PATTERN = re.compile(r"\b(if|unless|might|could|whether)\b", re.IGNORECASE)
CONDITIONAL_THRESHOLD = 2

HIGH_STAKES_PATTERNS: tuple[re.Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"rebuild.*\d+.*month.*savings",
    r"rebuild.*\d+.*month.*plan",
    r"emergency.*fund.*plan",
    r"retirement.*plan.*strategy",
    r"debt.*payoff.*plan",
    r"major.*purchase.*plan",
    r"life.*insurance.*plan",
    r"estate.*planning",
))

HIGH_STAKES_KEYWORDS: tuple[str, ...] = (
    "rebuild",
    "6-month",
    "savings plan",
    "emergency fund",
    "retirement plan",
    "debt payoff",
    "major purchase",
    "life insurance",
    "estate planning",
)
HIGH_STAKES_KEYWORD_THRESHOLD = 2

STRATEGIC_PATTERN = re.compile(
    r"\b(strateg\w*|plan\w*|optimi[sz]\w*|invest\w*)\b",
    re.IGNORECASE,
)

# Subject keyword in a sentence -> which FactPack sums a "total" may refer to
SUM_SUBJECTS: tuple[str, ...] = ("budget", "goal", "spen")


# =============================================================================
# MONEY AND PERCENTAGE EXTRACTION
# =============================================================================

_NUMBER = r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?"
_MINUS = "-−"

# -$50, $-50, $1,250.00 ; a minus only counts when it touches the "$" and
# does not follow a word character or "$" ("$100-$200" is a range and
# "$500 - $300" is subtraction)
_DOLLAR_AMOUNT = re.compile(
    rf"(?P<lead>(?<![\w$])[{_MINUS}])?\$\s?(?P<inner>[{_MINUS}])?(?P<num>{_NUMBER})"
)
# 50 dollars, -50 USD
_WORD_AMOUNT = re.compile(
    rf"(?<![\w.$])(?P<lead>[{_MINUS}])?(?P<num>{_NUMBER})\s*(?:dollars?|usd)\b",
    re.IGNORECASE,
)
_NEGATIVE_WORD = re.compile(rf"\bnegative\s+\$?\s?(?:{_NUMBER})(?![\d.,%]|\s%)", re.IGNORECASE)

# 60%, 12.5 %, -5%
_PERCENT = re.compile(rf"(?<![\w.])(?P<lead>[{_MINUS}])?(?P<num>{_NUMBER})\s?%")
_NEGATIVE_PERCENT_WORD = re.compile(rf"\bnegative\s+(?:{_NUMBER})\s?%", re.IGNORECASE)

_TOTAL_CLAIM = re.compile(rf"\btotal\b[^.!?$]*?\$\s?(?P<num>{_NUMBER})", re.IGNORECASE)
_SPEND_CEILING = re.compile(rf"\bspend\b[^.!?$]*?\$\s?(?P<num>{_NUMBER})", re.IGNORECASE)

_DATE = re.compile(
    r"\b(?:(?P<m>\d{1,2})/(?P<d>\d{1,2})/(?P<y>\d{4})|(?P<iy>\d{4})-(?P<im>\d{2})-(?P<id>\d{2}))\b"
)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_WORD = re.compile(r"[a-z0-9]+")


class MoneyMention(NamedTuple):
    """A monetary amount or percentage found in text."""
    text: str
    amount: Decimal
    negative: bool


def _parse_number(raw: str) -> Optional[Decimal]:
    try:
        return Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None


def extract_money(text: str) -> list[MoneyMention]:
    """Every dollar amount in `text`, with its sign."""
    mentions = []
    for pattern in (_DOLLAR_AMOUNT, _WORD_AMOUNT):
        for match in pattern.finditer(text):
            amount = _parse_number(match.group("num"))
            if amount is None:
                continue
            negative = bool(match.group("lead")) or bool(match.groupdict().get("inner"))
            mentions.append(MoneyMention(match.group(0).strip(), amount, negative))
    for match in _NEGATIVE_WORD.finditer(text):
        amount = _parse_number(re.sub(r"[^\d.,]", "", match.group(0)))
        if amount is not None:
            mentions.append(MoneyMention(match.group(0), amount, True))
    return mentions


def extract_percentages(text: str) -> list[MoneyMention]:
    """Every percentage in `text`; `amount` holds the number of points."""
    mentions = []
    for match in _PERCENT.finditer(text):
        amount = _parse_number(match.group("num"))
        if amount is not None:
            mentions.append(MoneyMention(match.group(0), amount, bool(match.group("lead"))))
    for match in _NEGATIVE_PERCENT_WORD.finditer(text):
        amount = _parse_number(re.sub(r"[^\d.,]", "", match.group(0)))
        if amount is not None:
            mentions.append(MoneyMention(match.group(0), amount, True))
    return mentions


def split_sentences(text: str) -> list[str]:
    return [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def total_claims(sentence: str) -> list[Decimal]:
    """Amounts stated as a total ("total ... $X") in one sentence."""
    return [
        amount for amount in (_parse_number(m.group("num")) for m in _TOTAL_CLAIM.finditer(sentence))
        if amount is not None
    ]


def spending_ceilings(sentence: str) -> list[Decimal]:
    """Amounts stated as something to spend ("spend ... $X") in one sentence."""
    return [
        amount for amount in (_parse_number(m.group("num")) for m in _SPEND_CEILING.finditer(sentence))
        if amount is not None
    ]


def extract_dates(text: str) -> list[tuple[str, date]]:
    """mm/dd/yyyy and yyyy-mm-dd dates; impossible dates are skipped."""
    found = []
    for match in _DATE.finditer(text):
        try:
            if match.group("y"):
                value = date(int(match.group("y")), int(match.group("m")), int(match.group("d")))
            else:
                value = date(int(match.group("iy")), int(match.group("im")), int(match.group("id")))
        except ValueError:
            continue
        found.append((match.group(0), value))
    return found


def singular(word: str) -> str:
    """Naive singular form used to match budget names ("groceries" -> "grocery")."""
    if len(word) > 3 and word.endswith("ies"):
        return word[:-3] + "y"
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def word_set(text: str) -> set[str]:
    return {singular(w) for w in _WORD.findall(text.lower())}


# =============================================================================
# TRACEABLE AMOUNTS
# =============================================================================

def collect_traceable_amounts(fact_pack: FactPack) -> set[Decimal]:
    """
    Every amount a grounded answer may state.

    FactPack values themselves, group sums (budgets, goals, recurring,
    transactions by type, balances) and income minus spending.
    """
    values: set[Decimal] = set()

    def add(*amounts: Decimal) -> None:
        for amount in amounts:
            values.add(abs(Decimal(amount)))

    for balance in fact_pack.balances:
        add(balance.current, balance.total, balance.spent)
    if fact_pack.balances:
        add(
            sum(b.current for b in fact_pack.balances),
            sum(b.total for b in fact_pack.balances),
            sum(b.spent for b in fact_pack.balances),
        )

    for budget in fact_pack.budgets:
        add(budget.spent, budget.limit, budget.remaining)
        for category in budget.top_categories:
            add(category.spent, category.limit)
    if fact_pack.budgets:
        add(
            sum(b.spent for b in fact_pack.budgets),
            sum(b.limit for b in fact_pack.budgets),
            sum(b.remaining for b in fact_pack.budgets),
        )

    for goal in fact_pack.goals:
        add(goal.target_amount, goal.current_amount, goal.remaining)
    if fact_pack.goals:
        add(
            sum(g.target_amount for g in fact_pack.goals),
            sum(g.current_amount for g in fact_pack.goals),
            sum(g.remaining for g in fact_pack.goals),
        )

    for expense in fact_pack.recurring:
        add(expense.amount)
    if fact_pack.recurring:
        add(
            sum(r.amount for r in fact_pack.recurring),
            sum(r.amount for r in fact_pack.recurring if r.is_active),
        )

    for transaction in fact_pack.recent_transactions:
        add(transaction.amount)
    for tx_type in TransactionType:
        matching = [abs(t.amount) for t in fact_pack.recent_transactions if t.type == tx_type]
        if matching:
            add(sum(matching))

    patterns = fact_pack.spending_patterns
    if patterns:
        add(patterns.total_spent, patterns.average_daily)
        for category in patterns.top_categories:
            add(category.total)

    profile = fact_pack.user_profile
    if profile:
        add(profile.monthly_income)
        if patterns:
            add(profile.monthly_income - patterns.total_spent)

    return values


def is_traceable(amount: Decimal, traceable: set[Decimal], tolerance: Decimal) -> bool:
    amount = abs(amount)
    return any(abs(amount - value) <= tolerance for value in traceable)


def collect_traceable_percentages(fact_pack: FactPack) -> set[Decimal]:
    """
    Every percentage a grounded answer may state.

    Budget utilization and goal progress with their complements, category
    shares, period-over-period change, and the 0/100 endpoints.
    """
    values: set[Decimal] = {Decimal(0), Decimal(100)}

    def add(*percentages: float) -> None:
        for percentage in percentages:
            values.add(abs(Decimal(str(percentage))))

    for budget in fact_pack.budgets:
        add(budget.utilization, 100 - budget.utilization)
        for category in budget.top_categories:
            add(category.utilization)
    for goal in fact_pack.goals:
        add(goal.progress, 100 - goal.progress)

    patterns = fact_pack.spending_patterns
    if patterns:
        for category in patterns.top_categories:
            add(category.percentage)
        if patterns.comparison:
            add(patterns.comparison.change)

    return values
