"""Execution models: states, sessions, gateway results and idempotency records."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, SerializeAsAny

from flowrail.errors import ErrorCode, InvalidTransition
from flowrail.ledger.models import TransactionStatus
from flowrail.resolution.models import ResolutionPlan
from flowrail.schema.intent_schema import IntentBase


class ExecutionState(str, Enum):
    """State machine states for one payment intent."""

    SCANNING = "SCANNING"                        # Intent received, no plan yet
    CONFIRMING = "CONFIRMING"                    # Plan shown, awaiting user confirmation
    AUTHENTICATING = "AUTHENTICATING"            # Waiting on the biometric authorizer
    PROCESSING = "PROCESSING"                    # Running steps on the primary rail
    COMPLETE = "COMPLETE"                        # Terminal: paid
    ERROR = "ERROR"                              # Terminal: failed or cancelled
    PAUSED = "PAUSED"                            # Terminal: kill switch engaged at confirmation
    WALLET_ERROR = "WALLET_ERROR"                # A step failed on the current rail
    FALLBACK_SELECTION = "FALLBACK_SELECTION"    # Re-planning without the failed rails
    FALLBACK_HANDOFF = "FALLBACK_HANDOFF"        # Next rail chosen, switching over
    FALLBACK_PROCESSING = "FALLBACK_PROCESSING"  # Running steps on a fallback rail


TERMINAL_STATES: FrozenSet[ExecutionState] = frozenset({
    ExecutionState.COMPLETE,
    ExecutionState.ERROR,
    ExecutionState.PAUSED,
})


TRANSITIONS: Dict[ExecutionState, FrozenSet[ExecutionState]] = {
    ExecutionState.SCANNING: frozenset({ExecutionState.CONFIRMING, ExecutionState.ERROR}),
    ExecutionState.CONFIRMING: frozenset({
        ExecutionState.PAUSED,
        ExecutionState.AUTHENTICATING,
        ExecutionState.ERROR,
    }),
    ExecutionState.AUTHENTICATING: frozenset({
        ExecutionState.PROCESSING,
        ExecutionState.CONFIRMING,
        ExecutionState.ERROR,
    }),
    ExecutionState.PROCESSING: frozenset({
        ExecutionState.COMPLETE,
        ExecutionState.WALLET_ERROR,
        ExecutionState.ERROR,
    }),
    ExecutionState.WALLET_ERROR: frozenset({ExecutionState.FALLBACK_SELECTION, ExecutionState.ERROR}),
    ExecutionState.FALLBACK_SELECTION: frozenset({ExecutionState.FALLBACK_HANDOFF, ExecutionState.ERROR}),
    ExecutionState.FALLBACK_HANDOFF: frozenset({
        ExecutionState.FALLBACK_PROCESSING,
        ExecutionState.CONFIRMING,
        ExecutionState.ERROR,
    }),
    ExecutionState.FALLBACK_PROCESSING: frozenset({
        ExecutionState.COMPLETE,
        ExecutionState.WALLET_ERROR,
        ExecutionState.ERROR,
    }),
    ExecutionState.COMPLETE: frozenset(),
    ExecutionState.ERROR: frozenset(),
    ExecutionState.PAUSED: frozenset(),
}


class NextAction(str, Enum):
    """What the caller has to do to move a session forward."""

    AUTHORIZE = "AUTHORIZE"  # Confirm; no guardrail acknowledgement needed
    CONFIRM = "CONFIRM"      # Confirm with guardrails acknowledged
    NONE = "NONE"            # Nothing can be done (blocked, insufficient funds, terminal)


class PaymentSession(BaseModel):
    """
    Mutable execution record for one intent.

    Only ``PaymentStateMachine`` changes ``state``; every change is
    appended to ``state_history`` and mirrored onto the intent.
    """

    session_id: str = Field(default_factory=lambda: f"pay_{uuid.uuid4().hex[:12]}")
    user_id: str
    intent: SerializeAsAny[IntentBase]
    plan: Optional[ResolutionPlan] = None
    plans: List[ResolutionPlan] = Field(default_factory=list, description="Every plan used, in order")

    state: ExecutionState = ExecutionState.SCANNING
    state_history: List[tuple[str, str]] = Field(
        default_factory=list,
        description="History of (state, timestamp) transitions",
    )
    next_action: NextAction = NextAction.NONE
    message: Optional[str] = None

    acknowledged_guardrails: bool = False
    auth_attempts: int = 0
    attempt_number: int = Field(default=0, description="Rail attempts started; part of every idempotency key")
    failed_rails: List[str] = Field(default_factory=list)

    rail_used: Optional[str] = None
    reference: Optional[str] = None
    status: Optional[TransactionStatus] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: Optional[datetime] = None

    @property
    def intent_id(self) -> str:
        return self.intent.intent_id

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition_to(self, new_state: ExecutionState) -> None:
        """Move to ``new_state`` if the transition table allows it."""
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Cannot move from {self.state.value} to {new_state.value}",
                details={"intent_id": self.intent_id},
            )
        self.state = new_state
        self.state_history.append((new_state.value, datetime.now(UTC).isoformat()))
        self.intent.current_state = new_state.value
        if new_state in TERMINAL_STATES:
            self.completed_at = datetime.now(UTC)
            self.next_action = NextAction.NONE


class ChargeResult(BaseModel):
    """Result of one top-up or charge call against a rail."""

    success: bool
    source_id: str
    amount: float
    idempotency_key: str
    reference: Optional[str] = Field(default=None, description="Gateway reference number")
    error: Optional[str] = None
    replayed: bool = Field(default=False, description="Returned from the idempotency store")
    executed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class IdempotencyKey(BaseModel):
    """Stored outcome for an idempotency key."""

    key: str = Field(description="Unique idempotency key")
    result: ChargeResult
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime = Field(description="When key expires")


class CompensationItem(BaseModel):
    """Money that moved after its intent had already given up on the call."""

    intent_id: str
    user_id: str
    source_id: str
    amount: float
    reference: Optional[str] = None
    operation: str = Field(description="charge or top_up")
    reason: str
    flagged_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ExecutionResult(BaseModel):
    """Outcome handed back to the caller after an engine call."""

    success: bool = Field(description="Whether the payment completed")
    intent_id: str
    state: ExecutionState
    status: Optional[TransactionStatus] = None
    message: str = Field(description="Human-readable result message")
    next_action: NextAction = NextAction.NONE

    rail_used: Optional[str] = None
    reference: Optional[str] = None
    explanation: Optional[str] = None
    failed_rails: List[str] = Field(default_factory=list)
    confirmation_reasons: List[str] = Field(default_factory=list)

    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
