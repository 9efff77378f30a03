"""Execution Engine.

Drives payment sessions through the state machine: resolves the plan,
waits on the authorizer, runs top-up and charge steps against the rails and
walks the fallback chain when a rail fails.

Waits on external calls are bounded by a timeout and raced against user
cancellation. A call that loses the race is not cancelled; its eventual
result is reconciled, and money that moved after the intent gave up is
queued for compensation.
"""

import asyncio
import functools
import logging
from collections import deque
from typing import Any, Awaitable, Deque, Dict, List, Optional, Set, Tuple

from flowrail.concurrency import KeyedLocks
from flowrail.config import settings
from flowrail.errors import (
    Cancelled,
    ChargeFailed,
    ErrorCode,
    InsufficientFunds,
    NoCompatibleRail,
    PaymentTimeout,
    ValidationError,
    classify_failure,
)
from flowrail.execution.fallback import FallbackChain
from flowrail.execution.idempotency import IdempotentChargeGateway, make_idempotency_key
from flowrail.execution.machine import PaymentStateMachine
from flowrail.execution.models import (
    ChargeResult,
    CompensationItem,
    ExecutionResult,
    ExecutionState,
    PaymentSession,
)
from flowrail.execution.ports import BiometricAuthenticator, RailChargeGateway
from flowrail.execution.router import DecisionRouter
from flowrail.ledger.ledger import TransactionLogSink
from flowrail.ledger.models import EventType, TransactionLogEntry, TransactionStatus
from flowrail.resolution.models import PlanAction, PlanStep, ResolutionPlan, StepKind
from flowrail.resolution.service import ResolutionService, ResolutionSnapshot
from flowrail.schema.intent_schema import IntentBase


logger = logging.getLogger(__name__)


class ExecutionEngine:
    """
    Runs payment intents end to end.

    One ``PaymentSession`` and state machine per intent; any number of
    intents may run concurrently. Steps against the same funding source are
    serialized with a per-source lock.
    """

    def __init__(
        self,
        resolution: ResolutionService,
        authenticator: BiometricAuthenticator,
        gateway: RailChargeGateway,
        log_sink: TransactionLogSink,
        ledger=None,
        authorization_timeout: Optional[float] = None,
        charge_timeout: Optional[float] = None,
        max_authorization_attempts: Optional[int] = None,
        max_fallback_rails: Optional[int] = None,
        max_retained_sessions: Optional[int] = None,
    ):
        """
        Initialize the execution engine.

        Args:
            resolution: Resolver + guardrails over the registry
            authenticator: Biometric authorizer
            gateway: Rail gateway; wrapped for idempotency unless it already is
            log_sink: Receives terminal transaction outcomes
            ledger: Optional AuditLedger for audit events
        """
        self.resolution = resolution
        self.authenticator = authenticator
        if isinstance(gateway, IdempotentChargeGateway):
            self.gateway = gateway
        else:
            self.gateway = IdempotentChargeGateway(gateway)
        self.log_sink = log_sink
        self.ledger = ledger

        self.authorization_timeout = authorization_timeout or settings.authorization_timeout_seconds
        self.charge_timeout = charge_timeout or settings.charge_timeout_seconds
        self.max_authorization_attempts = max_authorization_attempts or settings.max_authorization_attempts
        self.max_fallback_rails = max_fallback_rails if max_fallback_rails is not None else settings.max_fallback_rails
        self.max_retained_sessions = max_retained_sessions or settings.max_retained_sessions

        self.router = DecisionRouter()
        self.sessions: Dict[str, PaymentSession] = {}
        self.compensation_queue: List[CompensationItem] = []

        self._machines: Dict[str, PaymentStateMachine] = {}
        self._snapshots: Dict[str, ResolutionSnapshot] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}
        self._inflight: Set[str] = set()
        self._reservations: Dict[str, float] = {}
        self._terminal: Deque[str] = deque()
        self._source_locks = KeyedLocks()

        logger.info(
            f"Execution Engine initialized (auth_timeout={self.authorization_timeout}s, "
            f"charge_timeout={self.charge_timeout}s, max_fallback={self.max_fallback_rails})"
        )

    def start(self, user_id: str, intent: IntentBase) -> PaymentSession:
        """
        Resolve a plan for a new intent and move it to Confirming.

        Blocked and insufficient-funds plans are attached like any other;
        they only fail once the user tries to confirm them.
        """
        if intent.intent_id in self.sessions:
            raise ValidationError(
                f"Intent {intent.intent_id} already started",
                errors=[{"field": "intent_id", "type": "duplicate", "msg": "Intent already started"}],
            )

        if self.ledger:
            self.ledger.log_event(
                event_type=EventType.INTENT_RECEIVED,
                payload=intent.model_dump(mode="json"),
                user_id=user_id,
                intent_id=intent.intent_id,
            )

        session = PaymentSession(user_id=user_id, intent=intent)
        machine = PaymentStateMachine(session, self.max_authorization_attempts, ledger=self.ledger)

        snapshot = self.resolution.snapshot(user_id)
        result = self.resolution.resolve(user_id, intent, snapshot=snapshot)
        self.router.route(machine, result)

        self.sessions[intent.intent_id] = session
        self._machines[intent.intent_id] = machine
        self._snapshots[intent.intent_id] = snapshot
        return session

    async def pay(self, user_id: str, intent: IntentBase, acknowledged: bool = False) -> ExecutionResult:
        """Start and confirm in one call."""
        self.start(user_id, intent)
        return await self.confirm(intent.intent_id, acknowledged=acknowledged)

    async def confirm(self, intent_id: str, acknowledged: bool = False) -> ExecutionResult:
        """
        Confirm a session and run it as far as it goes.

        Args:
            intent_id: Session to confirm
            acknowledged: User accepted the plan's guardrail warnings

        Returns:
            ExecutionResult. The session may be terminal, or back in
            Confirming after a failed authorization or when the next
            fallback rail needs the user's confirmation.

        Raises:
            KeyError: Unknown intent
            GuardrailExceeded: Confirmation required but not acknowledged
            InvalidTransition: Session is not awaiting confirmation
        """
        session, machine = self._get(intent_id)
        kill_switch = self.resolution.guardrails.get(session.user_id).kill_switch_engaged

        if not kill_switch:
            self._reserve_daily(session, machine, acknowledged)

        try:
            state = machine.confirm(acknowledged=acknowledged, kill_switch_engaged=kill_switch)
        except (NoCompatibleRail, InsufficientFunds) as e:
            logger.warning(f"Cannot execute {intent_id}: {e.message}")
            self._finalize(session)
            return self._result(session)

        if state == ExecutionState.PAUSED:
            self._finalize(session)
            return self._result(session)

        self._inflight.add(intent_id)
        self._cancel_events[intent_id] = asyncio.Event()
        try:
            await self._authenticate(session, machine)
            if session.state == ExecutionState.PROCESSING:
                await self._process(session, machine)
        finally:
            self._inflight.discard(intent_id)
            self._cancel_events.pop(intent_id, None)

        if session.is_terminal:
            self._finalize(session)
        return self._result(session)

    def cancel(self, intent_id: str) -> PaymentSession:
        """
        Cancel a session.

        A session waiting on an external call is marked Error(cancelled) by
        the waiting coroutine; otherwise it is failed here. Terminal sessions
        are returned unchanged.
        """
        session, machine = self._get(intent_id)
        if session.is_terminal:
            return session

        if intent_id in self._inflight:
            logger.info(f"Cancellation requested for in-flight {intent_id}")
            self._cancel_events[intent_id].set()
            return session

        machine.fail(ErrorCode.CANCELLED, "Cancelled by user")
        self._finalize(session)
        return session

    def get_session(self, intent_id: str) -> Optional[PaymentSession]:
        return self.sessions.get(intent_id)

    def drain_compensation(self) -> List[CompensationItem]:
        """Hand over every queued compensation item and empty the queue."""
        items, self.compensation_queue = self.compensation_queue, []
        if items:
            logger.info(f"Drained {len(items)} compensation item(s)")
        return items

    def _reserve_daily(self, session: PaymentSession, machine: PaymentStateMachine, acknowledged: bool) -> None:
        """
        Hold an automatic payment's amount against the daily limit before it runs.

        When the limit is already committed by other intents the plan is
        re-guarded to REQUIRES_CONFIRMATION, and ``machine.confirm`` then
        asks for an acknowledgement like for any other confirmation plan.
        """
        plan = session.plan
        if (
            session.state != ExecutionState.CONFIRMING
            or acknowledged
            or plan is None
            or plan.action != PlanAction.PROCEED
            or not plan.executable
            or session.intent_id in self._reservations
        ):
            return

        result = self.resolution.enforcer.reserve_daily(plan, session.user_id)
        if result.violations:
            machine.require_confirmation(result.plan)
            return
        self._reservations[session.intent_id] = plan.amount.value

    async def _authenticate(self, session: PaymentSession, machine: PaymentStateMachine) -> None:
        try:
            approved = await self._await_external(
                session,
                self.authenticator.authorize(session.user_id, session.intent_id),
                timeout=self.authorization_timeout,
                operation="authorization",
            )
        except PaymentTimeout as e:
            machine.fail(ErrorCode.TIMEOUT, e.message)
            return
        except Cancelled as e:
            machine.fail(ErrorCode.CANCELLED, e.message)
            return
        except Exception as e:
            logger.error(f"Authorizer raised for {session.intent_id}: {e!r}")
            machine.fail(ErrorCode.AUTHORIZATION_FAILED, f"Authorizer error: {e}")
            return

        if approved:
            machine.authorization_succeeded()
        else:
            machine.authorization_failed()

    async def _process(self, session: PaymentSession, machine: PaymentStateMachine) -> None:
        snapshot = self._snapshots[session.intent_id]
        chain = FallbackChain(
            initial_plan=session.plan,
            replan=lambda exclude: self.resolution.resolve(
                session.user_id, session.intent, exclude, snapshot=snapshot
            ).plan,
            max_fallback_rails=self.max_fallback_rails,
            already_failed=session.failed_rails,
        )

        plan = next(chain)
        while True:
            try:
                reference = await self._execute_plan(session, plan)
            except Cancelled as e:
                machine.fail(ErrorCode.CANCELLED, e.message)
                return
            except ChargeFailed as e:
                machine.charge_failed(e.rail_id, e.failure_code, e.message)
                machine.begin_fallback_selection()

                plan = next(chain, None)
                if plan is None:
                    machine.fallback_exhausted(chain.exhausted_reason)
                    return

                machine.fallback_selected(plan)
                if self.ledger:
                    self.ledger.log_event(
                        event_type=EventType.FALLBACK_SELECTED,
                        payload={
                            "failed_rails": list(session.failed_rails),
                            "chosen_rail_id": plan.chosen_rail_id,
                            "explanation": plan.explanation,
                        },
                        user_id=session.user_id,
                        intent_id=session.intent_id,
                    )
                if plan.action == PlanAction.REQUIRES_CONFIRMATION and not session.acknowledged_guardrails:
                    machine.fallback_needs_confirmation()
                    return
                machine.handoff_complete()
                continue

            machine.charge_succeeded(plan.chosen_rail_id, reference)
            return

    async def _execute_plan(self, session: PaymentSession, plan: ResolutionPlan) -> Optional[str]:
        """Run every step of ``plan``; returns the charge reference."""
        reference = None
        for step in plan.steps:
            if self._cancel_events[session.intent_id].is_set():
                raise Cancelled(f"Cancelled before {step.kind.value} on {step.source_id}")

            key = make_idempotency_key(session.intent_id, session.attempt_number, step.kind)
            if step.kind == StepKind.TOP_UP:
                call = self.gateway.top_up(
                    step.source_id, step.amount, step.funded_by, key, user_id=session.user_id
                )
            else:
                call = self.gateway.charge(step.source_id, step.amount, key, user_id=session.user_id)

            try:
                result = await self._await_external(
                    session,
                    self._locked(step.source_id, call),
                    timeout=self.charge_timeout,
                    operation=step.kind.value,
                    step=step,
                )
            except PaymentTimeout as e:
                self._log_step(session, step, key, success=False, error=e.message)
                raise ChargeFailed(e.message, rail_id=plan.chosen_rail_id, failure_code=ErrorCode.TIMEOUT)
            except Cancelled:
                raise
            except Exception as e:
                error = f"{step.kind.value} on {step.source_id} raised: {e}"
                logger.error(f"Gateway error for {session.intent_id}: {e!r}")
                self._log_step(session, step, key, success=False, error=error)
                raise ChargeFailed(error, rail_id=plan.chosen_rail_id, failure_code=classify_failure(str(e)))

            if not result.success:
                error = result.error or f"{step.kind.value} failed"
                self._log_step(session, step, key, success=False, error=error)
                raise ChargeFailed(error, rail_id=plan.chosen_rail_id, failure_code=classify_failure(error))

            self._log_step(session, step, key, success=True, reference=result.reference)
            reference = result.reference
        return reference

    async def _locked(self, source_id: str, call: Awaitable[ChargeResult]) -> ChargeResult:
        async with self._source_locks.get(source_id):
            return await call

    async def _await_external(
        self,
        session: PaymentSession,
        call: Awaitable[Any],
        timeout: float,
        operation: str,
        step: Optional[PlanStep] = None,
    ) -> Any:
        """
        Await an external call, bounded by ``timeout`` and user cancellation.

        Raises:
            Cancelled: The user cancelled while waiting
            PaymentTimeout: No result within ``timeout`` seconds
        """
        cancel_event = self._cancel_events[session.intent_id]
        task = asyncio.ensure_future(call)
        cancel_wait = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_wait},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if not cancel_wait.done():
                cancel_wait.cancel()

        if task in done:
            return task.result()

        task.add_done_callback(functools.partial(self._reconcile_late_result, session, operation, step))
        if cancel_event.is_set():
            logger.warning(f"{operation} for {session.intent_id} cancelled while waiting")
            raise Cancelled(f"{operation} cancelled by user")

        logger.warning(f"{operation} for {session.intent_id} timed out after {timeout}s")
        raise PaymentTimeout(f"{operation} timed out after {timeout}s")

    def _reconcile_late_result(
        self,
        session: PaymentSession,
        operation: str,
        step: Optional[PlanStep],
        task: "asyncio.Future",
    ) -> None:
        """Done-callback for calls the session stopped waiting for."""
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error(f"Late {operation} for {session.intent_id} raised: {task.exception()}")
            return

        result = task.result()
        payload = {"operation": operation, "state": session.state.value}

        if isinstance(result, ChargeResult):
            payload.update(result.model_dump(mode="json"))
            if result.success and not result.replayed:
                item = CompensationItem(
                    intent_id=session.intent_id,
                    user_id=session.user_id,
                    source_id=result.source_id,
                    amount=result.amount,
                    reference=result.reference,
                    operation=operation,
                    reason=f"{operation} succeeded after the intent stopped waiting ({session.state.value})",
                )
                self.compensation_queue.append(item)
                payload["compensation"] = True
                logger.warning(
                    f"Late {operation} moved {result.amount:.2f} on {result.source_id} "
                    f"for {session.intent_id}; flagged for compensation"
                )
            else:
                logger.info(f"Late {operation} for {session.intent_id}: no money moved")
        else:
            payload["result"] = result
            logger.info(f"Late {operation} result for {session.intent_id} ignored: {result}")

        if self.ledger:
            self.ledger.log_event(
                event_type=EventType.LATE_RESULT,
                payload=payload,
                user_id=session.user_id,
                intent_id=session.intent_id,
            )

    def _log_step(
        self,
        session: PaymentSession,
        step: PlanStep,
        key: str,
        success: bool,
        reference: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if not self.ledger:
            return
        self.ledger.log_event(
            event_type=EventType.STEP_SUCCEEDED if success else EventType.STEP_FAILED,
            payload={
                **step.model_dump(mode="json"),
                "idempotency_key": key,
                "reference": reference,
                "error": error,
            },
            user_id=session.user_id,
            intent_id=session.intent_id,
        )

    def _finalize(self, session: PaymentSession) -> None:
        """Write the terminal outcome to the log sink and count completed spend."""
        status, note = self._terminal_status(session)
        session.status = status
        amount = session.intent.amount

        self.log_sink.append(TransactionLogEntry(
            intent_id=session.intent_id,
            user_id=session.user_id,
            rail_used=session.rail_used or (session.failed_rails[-1] if session.failed_rails else None),
            amount=amount.value,
            currency=amount.currency,
            status=status,
            note=note,
            reference=session.reference,
        ))

        reserved = self._reservations.pop(session.intent_id, None)
        if status == TransactionStatus.SUCCESS:
            self.resolution.enforcer.record_completion(session.user_id, amount.value, reserved=reserved is not None)
        elif reserved is not None:
            self.resolution.enforcer.release_daily(session.user_id, reserved)

        self._snapshots.pop(session.intent_id, None)
        self._retire(session.intent_id)

    def _retire(self, intent_id: str) -> None:
        """Keep only the most recent terminal sessions."""
        self._terminal.append(intent_id)
        while len(self._terminal) > self.max_retained_sessions:
            evicted = self._terminal.popleft()
            self.sessions.pop(evicted, None)
            self._machines.pop(evicted, None)
            logger.debug(f"Evicted terminal session {evicted}")

    def _terminal_status(self, session: PaymentSession) -> Tuple[TransactionStatus, Optional[str]]:
        if session.state == ExecutionState.COMPLETE:
            note = None
            if session.failed_rails:
                note = f"Paid via fallback after {', '.join(session.failed_rails)} failed"
            return TransactionStatus.SUCCESS, note
        if session.state == ExecutionState.PAUSED:
            return TransactionStatus.CANCELLED, "Paused by kill switch"
        if session.error_code == ErrorCode.CANCELLED:
            return TransactionStatus.CANCELLED, session.error_message
        return TransactionStatus.FAILED, session.error_message

    def _result(self, session: PaymentSession) -> ExecutionResult:
        plan = session.plan
        success = session.state == ExecutionState.COMPLETE
        if success:
            message = f"Paid {session.intent.amount.currency} {session.intent.amount.value:.2f} with {session.rail_used}"
        else:
            message = session.message or session.error_message or session.state.value

        return ExecutionResult(
            success=success,
            intent_id=session.intent_id,
            state=session.state,
            status=session.status,
            message=message,
            next_action=session.next_action,
            rail_used=session.rail_used,
            reference=session.reference,
            explanation=plan.explanation if plan else None,
            failed_rails=list(session.failed_rails),
            confirmation_reasons=list(plan.confirmation_reasons) if plan else [],
            error_code=session.error_code,
            error_message=session.error_message,
        )

    def _get(self, intent_id: str) -> Tuple[PaymentSession, PaymentStateMachine]:
        if intent_id not in self.sessions:
            raise KeyError(f"Unknown intent: {intent_id}")
        return self.sessions[intent_id], self._machines[intent_id]
