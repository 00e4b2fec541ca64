"""Guardrail validation package."""

from finguard.validation.validator import ESCALATION_RULES, GuardrailValidator

__all__ = ["ESCALATION_RULES", "GuardrailValidator"]
