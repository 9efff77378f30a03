"""Base class for guardrail rules."""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

from flowrail.policy.models import RuleCategory, RuleViolation
from flowrail.registry.models import FundingSource, Guardrails
from flowrail.resolution.models import ReasonCode, ResolutionPlan


class Rule(ABC):
    """Abstract base class for guardrail rules."""

    def __init__(
        self,
        name: str,
        category: RuleCategory,
        reason_code: ReasonCode,
        description: str,
        severity: str = "medium",
    ):
        """
        Initialize a guardrail rule.

        Args:
            name: Unique rule identifier
            category: What a failure does to the plan
            reason_code: Code attached to the plan on failure
            description: Human-readable description
            severity: Severity level (critical, high, medium, low)
        """
        self.name = name
        self.category = category
        self.reason_code = reason_code
        self.description = description
        self.severity = severity

    @abstractmethod
    def evaluate(
        self,
        plan: ResolutionPlan,
        guardrails: Guardrails,
        source: Optional[FundingSource] = None,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        """
        Evaluate the rule against a plan.

        Args:
            plan: Plan produced by the resolver
            guardrails: The user's guardrail snapshot
            source: The plan's chosen funding source, if any

        Returns:
            Tuple of (passed: bool, violation: RuleViolation or None)
        """

    def create_violation(self, message: str, details: Optional[dict] = None) -> RuleViolation:
        """Create a violation for this rule."""
        return RuleViolation(
            rule_name=self.name,
            category=self.category,
            reason_code=self.reason_code,
            message=message,
            severity=self.severity,
            details=details,
        )
