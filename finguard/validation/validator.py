"""
Guardrail Validator (the Critic)

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - RULE VALIDATION:
- Numeric guardrails (negative amounts, sum mismatches, dates outside
  the window, spending above budget limits)
- Forbidden high-risk phrasing
- This catches answers that are wrong against hard rules

STAGE 2 - CRITIC VALIDATION:
- Hallucination (amounts or percentages not traceable to the FactPack,
  speculative or external-data claims)
- Unresolved ambiguity (hedging, stacked conditionals)
- This catches answers that are unsupported or unhelpful

Escalation is decided afterwards from both stages plus the user's query.

IMPORTANT: Validation NEVER rewrites the answer.
It reports findings; the gate decides what the user sees.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional

import structlog

from finguard.config import GuardrailSettings, get_settings
from finguard.models.fact_pack import FactPack
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
from finguard.validation import guardrails


logger = structlog.get_logger(__name__)

RULE_PASSED_CONFIDENCE = 0.95
RULE_FAILED_CONFIDENCE = 0.3
CRITIC_VALID_CONFIDENCE = 0.9
CRITIC_INVALID_CONFIDENCE = 0.3
RULE_WEIGHT = 0.7
CRITIC_WEIGHT = 0.3

CHARS_PER_TOKEN = 4


@dataclass
class _Findings:
    """Everything the guards found for one answer."""
    rule: RuleValidationResult
    hallucination: bool
    ambiguity: bool
    high_stakes: bool
    strategic: bool
    issues: list[GuardrailIssue] = field(default_factory=list)


# First matching entry decides the escalation reason.
# Hallucination sits above rule failure so an untraceable figure is
# reported as such even when it also breaks a numeric rule.
ESCALATION_RULES: tuple[tuple[Callable[[_Findings], bool], Callable[[_Findings], str]], ...] = (
    (
        lambda f: f.hallucination,
        lambda f: EscalationReason.HALLUCINATION.value,
    ),
    (
        lambda f: not f.rule.passed,
        lambda f: f"{EscalationReason.RULE_FAILURE.value}: {f.rule.guard_failed.value}",
    ),
    (
        lambda f: f.ambiguity,
        lambda f: EscalationReason.AMBIGUITY.value,
    ),
    (
        lambda f: f.high_stakes,
        lambda f: EscalationReason.HIGH_STAKES.value,
    ),
    (
        lambda f: f.strategic,
        lambda f: EscalationReason.STRATEGIC.value,
    ),
)


class GuardrailValidator:
    """
    Validates a candidate answer against one turn's FactPack.

    Stateless: one instance can validate concurrent turns.
    """

    def __init__(self, settings: Optional[GuardrailSettings] = None):
        self._settings = settings or get_settings().guardrails
        self._tolerance = Decimal(str(self._settings.amount_tolerance))
        self._percent_tolerance = Decimal(str(self._settings.percent_tolerance))

    # =========================================================================
    # STAGE 1 - RULE VALIDATION
    # =========================================================================

    def _check_negative_amounts(self, message: str, issues: list[GuardrailIssue]) -> bool:
        mentions = guardrails.extract_money(message) + guardrails.extract_percentages(message)
        negatives = [m for m in mentions if m.negative]
        for mention in negatives:
            issues.append(GuardrailIssue(
                guard=GuardName.NEGATIVE_AMOUNTS.value,
                message="Answer states a negative amount",
                evidence=mention.text,
            ))
        return not negatives

    def _check_sums(
        self,
        message: str,
        fact_pack: FactPack,
        issues: list[GuardrailIssue],
    ) -> bool:
        """
        A stated total must match one of the sums for its subject.

        Sentences with a total but no recognised subject are not checked.
        """
        budgets, goals = fact_pack.budgets, fact_pack.goals
        subject_sums = {
            "budget": [
                sum(b.limit for b in budgets),
                sum(b.spent for b in budgets),
                sum(b.remaining for b in budgets),
            ],
            "goal": [
                sum(g.target_amount for g in goals),
                sum(g.current_amount for g in goals),
                sum(g.remaining for g in goals),
            ],
            "spen": [sum(b.spent for b in budgets)],
        }
        if fact_pack.spending_patterns:
            subject_sums["spen"].append(fact_pack.spending_patterns.total_spent)

        passed = True
        for sentence in guardrails.split_sentences(message):
            claims = guardrails.total_claims(sentence)
            if not claims:
                continue
            lowered = sentence.lower()
            candidates = [
                Decimal(value)
                for subject in guardrails.SUM_SUBJECTS if subject in lowered
                for value in subject_sums[subject]
            ]
            if not candidates:
                continue
            for claim in claims:
                if not any(abs(claim - c) <= self._tolerance for c in candidates):
                    passed = False
                    issues.append(GuardrailIssue(
                        guard=GuardName.SUM_MISMATCH.value,
                        message=f"Stated total ${claim} does not match the user's data",
                        evidence=sentence.strip(),
                    ))
        return passed

    def _check_dates(
        self,
        message: str,
        fact_pack: FactPack,
        issues: list[GuardrailIssue],
    ) -> bool:
        window = fact_pack.time_window
        start, end = window.start.date(), window.end.date()
        passed = True
        for text, value in guardrails.extract_dates(message):
            if not start <= value <= end:
                passed = False
                issues.append(GuardrailIssue(
                    guard=GuardName.DATE_OUT_OF_WINDOW.value,
                    message=f"Date {text} is outside the data window ({window.period or f'{start} to {end}'})",
                    evidence=text,
                ))
        return passed

    def _check_budget_limits(
        self,
        message: str,
        fact_pack: FactPack,
        issues: list[GuardrailIssue],
    ) -> bool:
        """
        A suggested spending amount must fit the named budget's limit.

        With no budget named, the sum of all limits applies.
        """
        if not fact_pack.budgets:
            return True

        total_limit = sum(b.limit for b in fact_pack.budgets)
        passed = True
        for sentence in guardrails.split_sentences(message):
            ceilings = guardrails.spending_ceilings(sentence)
            if not ceilings:
                continue
            words = guardrails.word_set(sentence)
            named = [
                b for b in fact_pack.budgets
                if guardrails.word_set(b.name) and guardrails.word_set(b.name) <= words
            ]
            limit = min(b.limit for b in named) if named else total_limit
            for amount in ceilings:
                if amount > limit + self._tolerance:
                    passed = False
                    issues.append(GuardrailIssue(
                        guard=GuardName.BUDGET_LIMIT_EXCEEDED.value,
                        message=f"Suggested spending ${amount} exceeds the budget limit of ${limit}",
                        evidence=sentence.strip(),
                    ))
        return passed

    def _check_claim_types(self, message: str, issues: list[GuardrailIssue]) -> ClaimTypeValidation:
        claims = [
            f"Contains forbidden pattern: {pattern.pattern}"
            for pattern in guardrails.FORBIDDEN_PATTERNS
            if pattern.search(message)
        ]
        if len(claims) >= self._settings.high_risk_match_count:
            risk_level = RiskLevel.HIGH
        elif claims:
            risk_level = RiskLevel.MEDIUM
        else:
            risk_level = RiskLevel.LOW

        for claim in claims:
            issues.append(GuardrailIssue(
                guard=GuardName.FORBIDDEN_PHRASING.value,
                message=claim,
            ))

        return ClaimTypeValidation(
            has_forbidden_phrasing=bool(claims),
            forbidden_claims=claims,
            risk_level=risk_level,
        )

    def _run_rule_validators(
        self,
        message: str,
        fact_pack: FactPack,
        issues: list[GuardrailIssue],
    ) -> tuple[RuleValidationResult, NumericGuardrails, ClaimTypeValidation]:
        numeric = NumericGuardrails(
            amounts_non_negative=self._check_negative_amounts(message, issues),
            sums_match_fact_pack=self._check_sums(message, fact_pack, issues),
            dates_inside_window=self._check_dates(message, fact_pack, issues),
            budget_limits_respected=self._check_budget_limits(message, fact_pack, issues),
        )
        claim_types = self._check_claim_types(message, issues)

        # Order here is the order guard_failed reports
        failed = [
            guard for guard, ok in (
                (GuardName.NEGATIVE_AMOUNTS, numeric.amounts_non_negative),
                (GuardName.SUM_MISMATCH, numeric.sums_match_fact_pack),
                (GuardName.DATE_OUT_OF_WINDOW, numeric.dates_inside_window),
                (GuardName.BUDGET_LIMIT_EXCEEDED, numeric.budget_limits_respected),
                (GuardName.FORBIDDEN_PHRASING, not claim_types.has_forbidden_phrasing),
            )
            if not ok
        ]
        rule = RuleValidationResult(
            passed=not failed,
            guard_failed=failed[0] if failed else None,
            issues=failed,
            confidence=RULE_FAILED_CONFIDENCE if failed else RULE_PASSED_CONFIDENCE,
        )
        return rule, numeric, claim_types

    # =========================================================================
    # STAGE 2 - CRITIC VALIDATION
    # =========================================================================

    def _detect_hallucination(
        self,
        message: str,
        fact_pack: FactPack,
        issues: list[GuardrailIssue],
    ) -> list[str]:
        """
        Returns:
            Untraceable amounts or percentages and speculative phrases found
        """
        checks = (
            (
                guardrails.extract_money(message),
                guardrails.collect_traceable_amounts(fact_pack),
                self._tolerance,
            ),
            (
                guardrails.extract_percentages(message),
                guardrails.collect_traceable_percentages(fact_pack),
                self._percent_tolerance,
            ),
        )
        found: list[str] = []

        for mentions, traceable, tolerance in checks:
            for mention in mentions:
                if mention.text in found:
                    continue
                if not guardrails.is_traceable(mention.amount, traceable, tolerance):
                    found.append(mention.text)
                    issues.append(GuardrailIssue(
                        guard="hallucination",
                        message=f"Amount {mention.text} does not appear in the user's data",
                        evidence=mention.text,
                    ))

        for pattern in guardrails.SPECULATIVE_PHRASES:
            match = pattern.search(message)
            if match:
                found.append(match.group(0))
                issues.append(GuardrailIssue(
                    guard="hallucination",
                    message="Answer makes a claim the user's data cannot support",
                    evidence=match.group(0),
                ))

        return found

    def _detect_ambiguity(self, message: str, issues: list[GuardrailIssue]) -> list[str]:
        markers = [m.group(0).lower() for m in guardrails.HEDGE_PATTERN.finditer(message)]
        conditionals = [m.group(0).lower() for m in guardrails.CONDITIONAL_PATTERN.finditer(message)]
        if len(conditionals) >= guardrails.CONDITIONAL_THRESHOLD:
            markers.extend(conditionals)

        if markers:
            issues.append(GuardrailIssue(
                guard="ambiguity",
                message="Answer leaves the question unresolved",
                severity="warning",
                evidence=", ".join(markers),
            ))
        return markers

    # =========================================================================
    # QUERY CLASSIFICATION
    # =========================================================================

    @staticmethod
    def is_high_stakes(query: str) -> bool:
        """Long-horizon or restructuring requests."""
        if any(p.search(query) for p in guardrails.HIGH_STAKES_PATTERNS):
            return True
        lowered = query.lower()
        keyword_hits = sum(1 for k in guardrails.HIGH_STAKES_KEYWORDS if k in lowered)
        return keyword_hits >= guardrails.HIGH_STAKES_KEYWORD_THRESHOLD or "rebuild" in lowered

    @staticmethod
    def is_strategic(query: str) -> bool:
        return bool(guardrails.STRATEGIC_PATTERN.search(query))

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def validate_response(
        self,
        message: str,
        query: str,
        fact_pack: FactPack,
    ) -> ValidationResult:
        """
        Run every guard over a candidate answer.

        Args:
            message: Candidate answer text from the backend
            query: The user's question
            fact_pack: Ground truth for this turn (never modified)

        Returns:
            ValidationResult; guard failures are findings, not exceptions
        """
        issues: list[GuardrailIssue] = []

        rule, numeric, claim_types = self._run_rule_validators(message, fact_pack, issues)
        untraceable = self._detect_hallucination(message, fact_pack, issues)
        markers = self._detect_ambiguity(message, issues)

        findings = _Findings(
            rule=rule,
            hallucination=bool(untraceable),
            ambiguity=bool(markers),
            high_stakes=self.is_high_stakes(query),
            strategic=self.is_strategic(query),
            issues=issues,
        )

        reason = next(
            (build(findings) for applies, build in ESCALATION_RULES if applies(findings)),
            None,
        )

        critic_valid = not (
            claim_types.has_forbidden_phrasing or findings.hallucination or findings.ambiguity
        )
        confidence = (
            rule.confidence * RULE_WEIGHT
            + (CRITIC_VALID_CONFIDENCE if critic_valid else CRITIC_INVALID_CONFIDENCE) * CRITIC_WEIGHT
        )

        result = ValidationResult(
            is_valid=rule.passed and not findings.hallucination and not findings.ambiguity,
            rule_validation=rule,
            numeric_guardrails=numeric,
            claim_types=claim_types,
            hallucination_detected=findings.hallucination,
            untraceable_amounts=untraceable,
            ambiguity_detected=findings.ambiguity,
            ambiguity_markers=markers,
            confidence=round(confidence, 4),
            token_count=math.ceil(len(message) / CHARS_PER_TOKEN),
            escalation_triggered=reason is not None,
            escalation_reason=reason,
            issues=issues,
        )

        logger.debug(
            "response_validated",
            is_valid=result.is_valid,
            escalation_reason=reason,
            guard_failed=rule.guard_failed.value if rule.guard_failed else None,
            risk_level=claim_types.risk_level.value,
            fact_pack_hash=fact_pack.metadata.hash,
        )
        return result

    def get_review_summary(self, result: ValidationResult) -> str:
        """
        Plain-text summary for whoever reviews an escalated answer.
        """
        if result.is_valid and not result.escalation_triggered:
            return "All checks passed."

        lines = []
        if result.escalation_reason:
            lines.append(f"Escalated: {result.escalation_reason}")
        if not result.is_valid:
            lines.append("Answer is not safe to deliver as written:")
        else:
            lines.append("Answer passed validation but needs review.")

        for issue in result.issues:
            line = f"  - [{issue.guard}] {issue.message}"
            if issue.evidence and issue.evidence not in issue.message:
                line += f" ({issue.evidence})"
            lines.append(line)

        lines.append(
            f"Risk level: {result.claim_types.risk_level.value}; "
            f"confidence: {result.confidence:.2f}"
        )
        return "\n".join(lines)
