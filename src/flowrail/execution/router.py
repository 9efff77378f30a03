"""Decision Router - turns a guarded plan into the session's next step."""

import logging
from typing import Callable, Dict

from flowrail.execution.machine import PaymentStateMachine
from flowrail.execution.models import NextAction, PaymentSession
from flowrail.policy.models import GuardrailResult
from flowrail.resolution.models import PlanAction


logger = logging.getLogger(__name__)


class DecisionRouter:
    """
    Routes plan actions to session handling.

    PROCEED               → CONFIRMING, authorize to pay
    REQUIRES_CONFIRMATION → CONFIRMING, confirm with guardrails acknowledged
    INSUFFICIENT_FUNDS    → CONFIRMING, nothing to do (confirming fails)
    BLOCKED               → CONFIRMING, nothing to do (confirming fails)
    """

    def __init__(self):
        self.handlers: Dict[PlanAction, Callable[[PaymentSession, GuardrailResult], None]] = {
            PlanAction.PROCEED: self._handle_proceed,
            PlanAction.REQUIRES_CONFIRMATION: self._handle_requires_confirmation,
            PlanAction.INSUFFICIENT_FUNDS: self._handle_not_executable,
            PlanAction.BLOCKED: self._handle_not_executable,
        }

    def route(self, machine: PaymentStateMachine, result: GuardrailResult) -> PaymentSession:
        """Attach the plan and set what the caller must do next."""
        session = machine.session
        machine.attach_plan(result.plan)

        handler = self.handlers[result.plan.action]
        handler(session, result)

        if not result.plan.executable and result.kill_switch_engaged:
            session.next_action = NextAction.NONE
            session.message = "Payments are paused. Release the kill switch to continue."

        logger.info(
            f"Routed {result.plan.action.value} for {session.intent_id} → "
            f"next action: {session.next_action.value}"
        )
        return session

    def _handle_proceed(self, session: PaymentSession, result: GuardrailResult) -> None:
        session.next_action = NextAction.AUTHORIZE
        session.message = result.plan.explanation

    def _handle_requires_confirmation(self, session: PaymentSession, result: GuardrailResult) -> None:
        session.next_action = NextAction.CONFIRM
        session.message = "Confirmation required: " + "; ".join(result.plan.confirmation_reasons)

    def _handle_not_executable(self, session: PaymentSession, result: GuardrailResult) -> None:
        session.next_action = NextAction.NONE
        session.message = result.plan.blocked_reason or result.plan.explanation
