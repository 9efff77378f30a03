"""Payment State Machine.

Advances a ``PaymentSession`` in response to discrete events: plan attached,
user confirmation, authorization result, step result, fallback selection,
timeout or cancellation. It performs no I/O and never waits; the engine
calls the external collaborators and feeds their outcomes in here.

    SCANNING → CONFIRMING → AUTHENTICATING → PROCESSING → COMPLETE
                   ↘ PAUSED        ↘ CONFIRMING (auth retry)
    PROCESSING → WALLET_ERROR → FALLBACK_SELECTION → FALLBACK_HANDOFF
               → FALLBACK_PROCESSING → COMPLETE | WALLET_ERROR
    FALLBACK_HANDOFF → CONFIRMING (fallback needs confirmation)
    FALLBACK_SELECTION → ERROR (fallback exhausted)
    any non-terminal → ERROR (timeout, cancellation)
"""

import logging
from typing import Optional

from flowrail.errors import (
    ErrorCode,
    GuardrailExceeded,
    InsufficientFunds,
    InvalidTransition,
    NoCompatibleRail,
)
from flowrail.execution.models import ExecutionState, NextAction, PaymentSession
from flowrail.ledger.models import EventType
from flowrail.resolution.models import PlanAction, ResolutionPlan


logger = logging.getLogger(__name__)


PROCESSING_STATES = (ExecutionState.PROCESSING, ExecutionState.FALLBACK_PROCESSING)


class PaymentStateMachine:
    """Event-driven transitions for a single payment session."""

    def __init__(self, session: PaymentSession, max_authorization_attempts: int = 3, ledger=None):
        self.session = session
        self.max_authorization_attempts = max_authorization_attempts
        self.ledger = ledger
        if not session.state_history:
            session.state_history.append((session.state.value, session.created_at.isoformat()))

    @property
    def state(self) -> ExecutionState:
        return self.session.state

    def _require(self, *states: ExecutionState) -> None:
        if self.session.state not in states:
            expected = ", ".join(s.value for s in states)
            raise InvalidTransition(
                f"Event not allowed in {self.session.state.value} (expected {expected})",
                details={"intent_id": self.session.intent_id},
            )

    def _transition(self, new_state: ExecutionState, **payload) -> None:
        previous = self.session.state
        self.session.transition_to(new_state)
        logger.info(f"[{self.session.intent_id}] {previous.value} → {new_state.value}")

        if self.ledger:
            self.ledger.log_event(
                event_type=EventType.STATE_CHANGED,
                payload={"from": previous.value, "to": new_state.value, **payload},
                user_id=self.session.user_id,
                intent_id=self.session.intent_id,
            )

    def attach_plan(self, plan: ResolutionPlan) -> None:
        """Scanning → Confirming once the intent has a plan."""
        self._require(ExecutionState.SCANNING)
        self.session.plan = plan
        self.session.plans.append(plan)
        self._transition(ExecutionState.CONFIRMING, action=plan.action.value, rail=plan.chosen_rail_id)

    def confirm(self, acknowledged: bool = False, kill_switch_engaged: bool = False) -> ExecutionState:
        """
        Handle the user's confirmation gesture.

        Args:
            acknowledged: User explicitly accepted the guardrail warnings
            kill_switch_engaged: Kill switch state read at confirmation time

        Returns:
            PAUSED or AUTHENTICATING

        Raises:
            GuardrailExceeded: Plan requires confirmation and it was not acknowledged
            NoCompatibleRail / InsufficientFunds: Plan cannot be executed
                (the session moves to ERROR first)
        """
        self._require(ExecutionState.CONFIRMING)
        plan = self.session.plan

        if kill_switch_engaged:
            self.session.message = "Payments are paused"
            self._transition(ExecutionState.PAUSED, reason="kill_switch")
            return self.session.state

        if plan.action == PlanAction.BLOCKED:
            self.fail(ErrorCode.NO_COMPATIBLE_RAIL, plan.blocked_reason or plan.explanation)
            raise NoCompatibleRail(plan.blocked_reason or plan.explanation, details={"intent_id": plan.intent_id})

        if plan.action == PlanAction.INSUFFICIENT_FUNDS:
            self.fail(ErrorCode.INSUFFICIENT_FUNDS, plan.explanation)
            raise InsufficientFunds(plan.explanation, details={"intent_id": plan.intent_id})

        if plan.action == PlanAction.REQUIRES_CONFIRMATION and not acknowledged:
            raise GuardrailExceeded(
                "Payment exceeds automatic limits and must be explicitly confirmed",
                details={"confirmation_reasons": list(plan.confirmation_reasons)},
            )

        self.session.acknowledged_guardrails = self.session.acknowledged_guardrails or acknowledged
        self._transition(ExecutionState.AUTHENTICATING, acknowledged=acknowledged)
        return self.session.state

    def authorization_succeeded(self) -> None:
        """Authenticating → Processing; starts the first rail attempt."""
        self._require(ExecutionState.AUTHENTICATING)
        self.session.auth_attempts += 1
        self.session.attempt_number += 1
        self._transition(ExecutionState.PROCESSING, rail=self.session.plan.chosen_rail_id)

    def authorization_failed(self, reason: str = "Authorization failed") -> ExecutionState:
        """Back to Confirming for a retry, or Error once attempts run out."""
        self._require(ExecutionState.AUTHENTICATING)
        self.session.auth_attempts += 1

        if self.session.auth_attempts >= self.max_authorization_attempts:
            self.fail(
                ErrorCode.AUTHORIZATION_FAILED,
                f"{reason} ({self.session.auth_attempts} attempts)",
            )
        else:
            remaining = self.max_authorization_attempts - self.session.auth_attempts
            self.session.message = f"{reason}, {remaining} attempt(s) left"
            self.session.next_action = (
                NextAction.CONFIRM
                if self.session.plan.action == PlanAction.REQUIRES_CONFIRMATION
                else NextAction.AUTHORIZE
            )
            self._transition(ExecutionState.CONFIRMING, reason=reason)
        return self.session.state

    def charge_succeeded(self, rail_id: str, reference: Optional[str]) -> None:
        self._require(*PROCESSING_STATES)
        self.session.rail_used = rail_id
        self.session.reference = reference
        self.session.error_code = None
        self.session.error_message = None
        self.session.message = f"Paid with {rail_id}"
        self._transition(ExecutionState.COMPLETE, rail=rail_id, reference=reference)

    def charge_failed(self, rail_id: str, code: ErrorCode, message: str) -> None:
        """A top-up or charge failed (or timed out) on the current rail."""
        self._require(*PROCESSING_STATES)
        self.session.failed_rails.append(rail_id)
        self.session.error_code = code
        self.session.error_message = message
        self._transition(ExecutionState.WALLET_ERROR, rail=rail_id, code=code.value, message=message)

    def begin_fallback_selection(self) -> None:
        self._require(ExecutionState.WALLET_ERROR)
        self._transition(ExecutionState.FALLBACK_SELECTION, excluded=list(self.session.failed_rails))

    def fallback_selected(self, plan: ResolutionPlan) -> None:
        self._require(ExecutionState.FALLBACK_SELECTION)
        self.session.plan = plan
        self.session.plans.append(plan)
        self._transition(ExecutionState.FALLBACK_HANDOFF, rail=plan.chosen_rail_id)

    def handoff_complete(self) -> None:
        """Fallback Handoff → Fallback Processing; starts the next rail attempt."""
        self._require(ExecutionState.FALLBACK_HANDOFF)
        self.session.attempt_number += 1
        self._transition(ExecutionState.FALLBACK_PROCESSING, rail=self.session.plan.chosen_rail_id)

    def fallback_needs_confirmation(self) -> None:
        """Fallback Handoff → Confirming when the next rail's plan needs the user's confirmation."""
        self._require(ExecutionState.FALLBACK_HANDOFF)
        plan = self.session.plan
        self.session.next_action = NextAction.CONFIRM
        self.session.message = (
            f"Fallback to {plan.chosen_rail_id} needs confirmation: " + "; ".join(plan.confirmation_reasons)
        )
        self._transition(ExecutionState.CONFIRMING, reason="fallback_confirmation", rail=plan.chosen_rail_id)

    def require_confirmation(self, plan: ResolutionPlan) -> None:
        """Swap in a re-guarded plan while Confirming; the user must now acknowledge it."""
        self._require(ExecutionState.CONFIRMING)
        self.session.plan = plan
        self.session.plans.append(plan)
        self.session.next_action = NextAction.CONFIRM
        self.session.message = "Confirmation required: " + "; ".join(plan.confirmation_reasons)

    def fallback_exhausted(self, reason: Optional[str] = None) -> None:
        self._require(ExecutionState.FALLBACK_SELECTION)
        self.fail(
            ErrorCode.FALLBACK_EXHAUSTED,
            reason or f"No fallback rail left after {', '.join(self.session.failed_rails)}",
        )

    def fail(self, code: ErrorCode, message: str) -> None:
        """Any non-terminal state → Error."""
        if self.session.is_terminal:
            raise InvalidTransition(
                f"Session already terminal ({self.session.state.value})",
                details={"intent_id": self.session.intent_id},
            )
        self.session.error_code = code
        self.session.error_message = message
        self.session.message = message
        self._transition(ExecutionState.ERROR, code=code.value, message=message)
