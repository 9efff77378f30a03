"""Guardrail Enforcer.

Applies the user's risk limits and kill switch to a resolver plan. The
enforcer returns a new plan; it never edits the one it was given.

An automatic payment holds its amount against the daily limit from the
moment it is confirmed (an atomic check-and-reserve in the repository) until
it settles or fails; spent plus held never exceeds the limit. Payments the
user confirmed explicitly are counted on completion only.
"""

import logging
import time
from typing import List, Optional, Tuple

from flowrail.ledger.models import EventType
from flowrail.policy.models import GuardrailResult, RuleCategory, RuleViolation
from flowrail.policy.rules import Rule
from flowrail.policy.rules.kill_switch import KILL_SWITCH_RULES
from flowrail.policy.rules.limits import CONFIRMATION_RULES, DailyAutoLimitRule
from flowrail.registry.models import FundingSource, Guardrails
from flowrail.registry.ports import GuardrailRepository
from flowrail.resolution.models import (
    HIGH_VALUE_THRESHOLD,
    PlanAction,
    ReasonCode,
    ResolutionPlan,
    assign_risk_level,
)


logger = logging.getLogger(__name__)


class GuardrailEnforcer:
    """
    Evaluates guardrail rules against a plan.

    - Kill switch: plan becomes non-executable, whatever its action
    - Confirmation limits: PROCEED becomes REQUIRES_CONFIRMATION
    """

    def __init__(self, repository: Optional[GuardrailRepository] = None, ledger=None):
        self.rules: List[Rule] = []
        self.repository = repository
        self.ledger = ledger

        self.rules.extend(KILL_SWITCH_RULES)
        self.rules.extend(CONFIRMATION_RULES)

        logger.info(f"Guardrail Enforcer initialized with {len(self.rules)} rules")

    def evaluate(
        self,
        plan: ResolutionPlan,
        guardrails: Guardrails,
        source: Optional[FundingSource] = None,
        user_id: Optional[str] = None,
    ) -> GuardrailResult:
        """
        Apply guardrails to a plan.

        Args:
            plan: Plan from the resolver
            guardrails: The user's guardrail snapshot
            source: The plan's chosen funding source (for per-source thresholds)
            user_id: For audit logging

        Returns:
            GuardrailResult carrying the adjusted plan
        """
        start_time = time.time()

        violations: List[RuleViolation] = []
        passed_rules: List[str] = []

        for rule in self.rules:
            # Confirmation limits only matter for plans that could run automatically
            if rule.category == RuleCategory.CONFIRMATION and plan.action != PlanAction.PROCEED:
                continue

            passed, violation = rule.evaluate(plan, guardrails, source)
            if passed:
                passed_rules.append(rule.name)
            else:
                violations.append(violation)
                logger.warning(f"Guardrail '{rule.name}' failed: {violation.message}")

        adjusted = self._apply(plan, violations)
        elapsed_ms = (time.time() - start_time) * 1000

        result = GuardrailResult(
            plan=adjusted,
            violations=violations,
            passed_rules=passed_rules,
            evaluation_time_ms=elapsed_ms,
        )

        if self.ledger:
            self.ledger.log_event(
                event_type=EventType.GUARDRAILS_EVALUATED,
                payload={
                    "action": adjusted.action.value,
                    "executable": adjusted.executable,
                    "violations": [v.model_dump(mode="json") for v in violations],
                    "evaluation_time_ms": elapsed_ms,
                },
                user_id=user_id or guardrails.user_id,
                intent_id=plan.intent_id,
            )

        logger.info(
            f"Guardrails for {plan.intent_id}: {adjusted.action.value} "
            f"(executable={adjusted.executable}, risk={adjusted.risk_level.value})"
        )
        return result

    def _apply(self, plan: ResolutionPlan, violations: List[RuleViolation]) -> ResolutionPlan:
        action, confirmation_reasons = self._determine_action(plan, violations)
        executable = plan.executable and not any(v.category == RuleCategory.KILL_SWITCH for v in violations)

        reason_codes = list(plan.reason_codes)
        for violation in violations:
            if violation.reason_code not in reason_codes:
                reason_codes.append(violation.reason_code)
        if confirmation_reasons and ReasonCode.CONFIRMATION_REQUIRED not in reason_codes:
            reason_codes.append(ReasonCode.CONFIRMATION_REQUIRED)
        if plan.amount.value > HIGH_VALUE_THRESHOLD and ReasonCode.HIGH_VALUE not in reason_codes:
            reason_codes.append(ReasonCode.HIGH_VALUE)

        return plan.model_copy(update={
            "action": action,
            "executable": executable,
            "confirmation_reasons": tuple(confirmation_reasons),
            "reason_codes": tuple(reason_codes),
            "risk_level": assign_risk_level(plan.amount.value, action),
        })

    def _determine_action(
        self,
        plan: ResolutionPlan,
        violations: List[RuleViolation],
    ) -> Tuple[PlanAction, List[str]]:
        confirmation = [v.message for v in violations if v.category == RuleCategory.CONFIRMATION]
        if plan.action == PlanAction.PROCEED and confirmation:
            return PlanAction.REQUIRES_CONFIRMATION, confirmation
        return plan.action, confirmation

    def reserve_daily(self, plan: ResolutionPlan, user_id: str) -> GuardrailResult:
        """
        Hold an automatic plan's amount against the user's daily limit.

        Returns:
            GuardrailResult with the plan unchanged when the hold was taken,
            or with the plan moved to REQUIRES_CONFIRMATION (and the daily
            limit violation) when the limit is already committed
        """
        repository = self._require_repository()
        daily_rule = next(r for r in self.rules if isinstance(r, DailyAutoLimitRule))

        if repository.reserve_daily(user_id, plan.amount.value):
            return GuardrailResult(plan=plan, passed_rules=[daily_rule.name])

        violation = daily_rule.violation_for(plan, repository.get(user_id))
        logger.warning(f"Guardrail '{daily_rule.name}' failed at authorization: {violation.message}")
        adjusted = self._apply(plan, [violation])

        if self.ledger:
            self.ledger.log_event(
                event_type=EventType.GUARDRAILS_EVALUATED,
                payload={
                    "action": adjusted.action.value,
                    "executable": adjusted.executable,
                    "violations": [violation.model_dump(mode="json")],
                    "stage": "reservation",
                },
                user_id=user_id,
                intent_id=plan.intent_id,
            )
        return GuardrailResult(plan=adjusted, violations=[violation])

    def release_daily(self, user_id: str, amount: float) -> Guardrails:
        """Give back the hold of a payment that did not complete."""
        return self._require_repository().release_daily(user_id, amount)

    def record_completion(self, user_id: str, amount: float, reserved: bool = False) -> Guardrails:
        """Count a completed payment against the user's daily limit, settling its hold if it had one."""
        repository = self._require_repository()
        if reserved:
            return repository.settle_daily(user_id, amount)
        return repository.increment_daily_spent(user_id, amount)

    def _require_repository(self) -> GuardrailRepository:
        if self.repository is None:
            raise RuntimeError("GuardrailEnforcer has no repository for daily spend")
        return self.repository
