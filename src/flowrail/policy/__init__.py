"""Guardrail enforcement for resolution plans."""

from flowrail.policy.engine import GuardrailEnforcer
from flowrail.policy.models import GuardrailResult, RuleCategory, RuleViolation
from flowrail.policy.rules import Rule

__all__ = [
    "GuardrailEnforcer",
    "GuardrailResult",
    "RuleCategory",
    "RuleViolation",
    "Rule",
]
