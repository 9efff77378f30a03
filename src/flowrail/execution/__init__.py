"""Payment execution: state machine, fallback, idempotent rails and the engine."""

from flowrail.execution.engine import ExecutionEngine
from flowrail.execution.fallback import FallbackChain
from flowrail.execution.idempotency import IdempotentChargeGateway, make_idempotency_key
from flowrail.execution.machine import PaymentStateMachine
from flowrail.execution.models import (
    TERMINAL_STATES,
    TRANSITIONS,
    ChargeResult,
    CompensationItem,
    ExecutionResult,
    ExecutionState,
    NextAction,
    PaymentSession,
)
from flowrail.execution.ports import BiometricAuthenticator, RailChargeGateway
from flowrail.execution.router import DecisionRouter
from flowrail.execution.simulator import SimulatedAuthenticator, SimulatedRailGateway

__all__ = [
    "ExecutionEngine",
    "FallbackChain",
    "IdempotentChargeGateway",
    "make_idempotency_key",
    "PaymentStateMachine",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "ChargeResult",
    "CompensationItem",
    "ExecutionResult",
    "ExecutionState",
    "NextAction",
    "PaymentSession",
    "BiometricAuthenticator",
    "RailChargeGateway",
    "DecisionRouter",
    "SimulatedAuthenticator",
    "SimulatedRailGateway",
]
