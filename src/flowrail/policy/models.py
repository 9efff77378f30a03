"""Guardrail evaluation models."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from flowrail.resolution.models import PlanAction, ReasonCode, ResolutionPlan


class RuleCategory(str, Enum):
    """What a failed rule does to the plan."""

    KILL_SWITCH = "KILL_SWITCH"      # Plan becomes non-executable
    CONFIRMATION = "CONFIRMATION"    # Automatic path removed; user must confirm


class RuleViolation(BaseModel):
    """Details of a guardrail violation."""

    rule_name: str = Field(description="Name of the violated rule")
    category: RuleCategory
    reason_code: ReasonCode
    message: str = Field(description="Human-readable violation message")
    severity: str = Field(description="Severity: critical, high, medium, low")
    details: Optional[dict] = None


class GuardrailResult(BaseModel):
    """Outcome of running the guardrail rules over a plan."""

    plan: ResolutionPlan = Field(description="Plan with guardrail decisions applied")
    violations: List[RuleViolation] = Field(default_factory=list)
    passed_rules: List[str] = Field(default_factory=list)
    evaluation_time_ms: float = 0.0

    @property
    def requires_confirmation(self) -> bool:
        return self.plan.action == PlanAction.REQUIRES_CONFIRMATION

    @property
    def kill_switch_engaged(self) -> bool:
        return any(v.category == RuleCategory.KILL_SWITCH for v in self.violations)
