"""Resolution plan models."""

from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from flowrail.schema.intent_schema import Money
from flowrail.scoring.models import RailScore


class PlanAction(str, Enum):
    """What the caller may do with a plan."""

    PROCEED = "PROCEED"                              # Execute automatically
    REQUIRES_CONFIRMATION = "REQUIRES_CONFIRMATION"  # Execute after explicit user confirmation
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"        # No rail can cover the amount
    BLOCKED = "BLOCKED"                              # No compatible rail


class StepKind(str, Enum):
    TOP_UP = "top_up"
    CHARGE = "charge"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReasonCode(str, Enum):
    """Machine-readable reasons attached to a plan."""

    TOPUP_REQUIRED = "TOPUP_REQUIRED"
    HIGH_VALUE = "HIGH_VALUE"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    SINGLE_PAYMENT_LIMIT = "SINGLE_PAYMENT_LIMIT"
    TOPUP_LIMIT = "TOPUP_LIMIT"
    DAILY_LIMIT = "DAILY_LIMIT"
    SOURCE_CONFIRM_THRESHOLD = "SOURCE_CONFIRM_THRESHOLD"
    KILL_SWITCH = "KILL_SWITCH"
    NO_COMPATIBLE_RAIL = "NO_COMPATIBLE_RAIL"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"


# Amounts above this are flagged HIGH_VALUE / high risk
HIGH_VALUE_THRESHOLD = 500.0
MEDIUM_VALUE_THRESHOLD = 100.0


class PlanStep(BaseModel):
    """One concrete operation against a rail."""

    model_config = ConfigDict(frozen=True)

    kind: StepKind
    source_id: str
    amount: float = Field(gt=0)
    funded_by: Optional[str] = Field(
        default=None,
        description="Source that funds a top-up (None = external funding)",
    )


class ResolutionPlan(BaseModel):
    """
    The selected rail, ordered fallbacks and steps for one intent.

    Plans are immutable. Guardrail evaluation and fallback both produce new
    plans rather than editing an existing one.
    """

    model_config = ConfigDict(frozen=True)

    intent_id: str
    amount: Money
    action: PlanAction
    chosen_rail_id: Optional[str] = None
    fallback_chain: Tuple[str, ...] = ()
    steps: Tuple[PlanStep, ...] = ()
    explanation: str = ""
    blocked_reason: Optional[str] = None

    # Set by the guardrail enforcer
    executable: bool = True
    confirmation_reasons: Tuple[str, ...] = ()
    risk_level: RiskLevel = RiskLevel.LOW
    reason_codes: Tuple[ReasonCode, ...] = ()

    # Ranked score breakdown of every compatible candidate
    scores: Tuple[RailScore, ...] = ()

    @property
    def needs_top_up(self) -> bool:
        return any(step.kind == StepKind.TOP_UP for step in self.steps)

    @property
    def top_up_amount(self) -> float:
        return sum(step.amount for step in self.steps if step.kind == StepKind.TOP_UP)

    @property
    def is_actionable(self) -> bool:
        """PROCEED or REQUIRES_CONFIRMATION."""
        return self.action in (PlanAction.PROCEED, PlanAction.REQUIRES_CONFIRMATION)

    def score_for(self, rail_id: str) -> Optional[RailScore]:
        for score in self.scores:
            if score.rail_id == rail_id:
                return score
        return None


def assign_risk_level(amount: float, action: PlanAction) -> RiskLevel:
    if amount > HIGH_VALUE_THRESHOLD:
        return RiskLevel.HIGH
    if amount > MEDIUM_VALUE_THRESHOLD or action == PlanAction.REQUIRES_CONFIRMATION:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW
