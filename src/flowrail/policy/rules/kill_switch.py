"""Kill switch rule.

An engaged kill switch halts execution of every plan. Resolution still runs
so the user can see what would have happened.
"""

from typing import Optional, Tuple

from flowrail.policy.models import RuleCategory, RuleViolation
from flowrail.policy.rules import Rule
from flowrail.registry.models import FundingSource, Guardrails
from flowrail.resolution.models import ReasonCode, ResolutionPlan


class KillSwitchRule(Rule):
    """Block execution while the user's kill switch is engaged."""

    def __init__(self):
        super().__init__(
            name="kill_switch",
            category=RuleCategory.KILL_SWITCH,
            reason_code=ReasonCode.KILL_SWITCH,
            description="Automatic payments are paused by the user",
            severity="critical",
        )

    def evaluate(
        self,
        plan: ResolutionPlan,
        guardrails: Guardrails,
        source: Optional[FundingSource] = None,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        if not guardrails.kill_switch_engaged:
            return True, None

        paused_at = guardrails.paused_at.isoformat() if guardrails.paused_at else None
        return False, self.create_violation(
            "Payments are paused (kill switch engaged)",
            details={"paused_at": paused_at},
        )


KILL_SWITCH_RULES = [
    KillSwitchRule(),
]
