"""Confirmation limits.

Failing any of these rules never blocks a payment. It removes the automatic
execution path so the user has to confirm explicitly.
"""

from typing import Optional, Tuple

from flowrail.policy.models import RuleCategory, RuleViolation
from flowrail.policy.rules import Rule
from flowrail.registry.models import FundingSource, Guardrails
from flowrail.resolution.models import ReasonCode, ResolutionPlan


class SinglePaymentAutoLimitRule(Rule):
    """Payments above the user's single-payment limit need confirmation."""

    def __init__(self):
        super().__init__(
            name="single_payment_auto_limit",
            category=RuleCategory.CONFIRMATION,
            reason_code=ReasonCode.SINGLE_PAYMENT_LIMIT,
            description="Amount must not exceed the automatic single-payment limit",
            severity="medium",
        )

    def evaluate(
        self,
        plan: ResolutionPlan,
        guardrails: Guardrails,
        source: Optional[FundingSource] = None,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        amount = plan.amount.value
        if amount > guardrails.max_single_payment_auto:
            return False, self.create_violation(
                f"Amount {plan.amount.currency} {amount:.2f} exceeds auto-pay limit of "
                f"{plan.amount.currency} {guardrails.max_single_payment_auto:.2f}",
                details={
                    "amount": amount,
                    "max_single_payment_auto": guardrails.max_single_payment_auto,
                },
            )
        return True, None


class AutoTopUpLimitRule(Rule):
    """Top-ups above the user's auto top-up limit need confirmation."""

    def __init__(self):
        super().__init__(
            name="auto_top_up_limit",
            category=RuleCategory.CONFIRMATION,
            reason_code=ReasonCode.TOPUP_LIMIT,
            description="Top-up amount must not exceed the automatic top-up limit",
            severity="medium",
        )

    def evaluate(
        self,
        plan: ResolutionPlan,
        guardrails: Guardrails,
        source: Optional[FundingSource] = None,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        top_up = plan.top_up_amount
        if top_up > guardrails.max_auto_top_up_amount:
            return False, self.create_violation(
                f"Top-up of {plan.amount.currency} {top_up:.2f} exceeds auto top-up limit of "
                f"{plan.amount.currency} {guardrails.max_auto_top_up_amount:.2f}",
                details={
                    "top_up_amount": top_up,
                    "max_auto_top_up_amount": guardrails.max_auto_top_up_amount,
                },
            )
        return True, None


class DailyAutoLimitRule(Rule):
    """Automatic spend per day is capped."""

    def __init__(self):
        super().__init__(
            name="daily_auto_limit",
            category=RuleCategory.CONFIRMATION,
            reason_code=ReasonCode.DAILY_LIMIT,
            description="Daily automatic spend must not exceed the daily limit",
            severity="high",
        )

    def evaluate(
        self,
        plan: ResolutionPlan,
        guardrails: Guardrails,
        source: Optional[FundingSource] = None,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        if guardrails.daily_committed + plan.amount.value > guardrails.daily_auto_limit:
            return False, self.violation_for(plan, guardrails)
        return True, None

    def violation_for(self, plan: ResolutionPlan, guardrails: Guardrails) -> RuleViolation:
        projected = guardrails.daily_committed + plan.amount.value
        return self.create_violation(
            f"Daily auto-pay limit would be exceeded "
            f"({projected:.2f} > {guardrails.daily_auto_limit:.2f})",
            details={
                "daily_spent_so_far": guardrails.daily_spent_so_far,
                "daily_reserved": guardrails.daily_reserved,
                "amount": plan.amount.value,
                "daily_auto_limit": guardrails.daily_auto_limit,
            },
        )


class SourceConfirmThresholdRule(Rule):
    """Some sources ask for confirmation above their own threshold."""

    def __init__(self):
        super().__init__(
            name="source_confirm_threshold",
            category=RuleCategory.CONFIRMATION,
            reason_code=ReasonCode.SOURCE_CONFIRM_THRESHOLD,
            description="Amount must not exceed the chosen source's confirmation threshold",
            severity="low",
        )

    def evaluate(
        self,
        plan: ResolutionPlan,
        guardrails: Guardrails,
        source: Optional[FundingSource] = None,
    ) -> Tuple[bool, Optional[RuleViolation]]:
        if source is None or source.require_extra_confirm_amount is None:
            return True, None

        if plan.amount.value > source.require_extra_confirm_amount:
            return False, self.create_violation(
                f"{source.name} requires confirmation above "
                f"{plan.amount.currency} {source.require_extra_confirm_amount:.2f}",
                details={
                    "source_id": source.id,
                    "require_extra_confirm_amount": source.require_extra_confirm_amount,
                },
            )
        return True, None


CONFIRMATION_RULES = [
    SinglePaymentAutoLimitRule(),
    AutoTopUpLimitRule(),
    DailyAutoLimitRule(),
    SourceConfirmThresholdRule(),
]
