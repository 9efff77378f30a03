"""Error taxonomy for rail resolution and payment execution.

Resolution-time failures (no compatible rail, insufficient funds) are returned
as blocked plans and only raised when a caller tries to act on such a plan.
Execution-time failures drive state transitions and are recorded on the
payment session by their ``ErrorCode``.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Stable error codes recorded on sessions and log entries."""

    VALIDATION_ERROR = "validation_error"
    NO_COMPATIBLE_RAIL = "no_compatible_rail"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    GUARDRAIL_EXCEEDED = "guardrail_exceeded"
    KILL_SWITCH_ENGAGED = "kill_switch_engaged"
    AUTHORIZATION_FAILED = "authorization_failed"
    CHARGE_FAILED = "charge_failed"
    CONNECTOR_UNAVAILABLE = "connector_unavailable"
    FALLBACK_EXHAUSTED = "fallback_exhausted"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INVALID_TRANSITION = "invalid_transition"
    UNKNOWN = "unknown"


class FlowRailError(Exception):
    """Base class for all flowrail errors."""

    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(FlowRailError):
    """Malformed intent or non-positive amount."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        self.errors = errors or []
        super().__init__(message, details={"errors": self.errors})


class NoCompatibleRail(FlowRailError):
    code = ErrorCode.NO_COMPATIBLE_RAIL


class InsufficientFunds(FlowRailError):
    code = ErrorCode.INSUFFICIENT_FUNDS


class GuardrailExceeded(FlowRailError):
    """Non-fatal: the payment needs an explicit confirmation gesture."""

    code = ErrorCode.GUARDRAIL_EXCEEDED


class KillSwitchEngaged(FlowRailError):
    code = ErrorCode.KILL_SWITCH_ENGAGED


class AuthorizationFailed(FlowRailError):
    code = ErrorCode.AUTHORIZATION_FAILED


class ChargeFailed(FlowRailError):
    """A charge or top-up against a rail failed; triggers fallback."""

    code = ErrorCode.CHARGE_FAILED

    def __init__(
        self,
        message: str,
        rail_id: str,
        failure_code: ErrorCode = ErrorCode.CHARGE_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.rail_id = rail_id
        self.failure_code = failure_code
        super().__init__(message, details)


class FallbackExhausted(FlowRailError):
    code = ErrorCode.FALLBACK_EXHAUSTED


class PaymentTimeout(FlowRailError):
    code = ErrorCode.TIMEOUT


class Cancelled(FlowRailError):
    """User-initiated cancellation."""

    code = ErrorCode.CANCELLED


class InvalidTransition(FlowRailError):
    code = ErrorCode.INVALID_TRANSITION


def classify_failure(error: str) -> ErrorCode:
    """Map a gateway failure message onto an error code."""
    error_lower = error.lower()

    if "insufficient" in error_lower or "balance" in error_lower:
        return ErrorCode.INSUFFICIENT_FUNDS
    if "unavailable" in error_lower or "connector" in error_lower:
        return ErrorCode.CONNECTOR_UNAVAILABLE
    if "timeout" in error_lower or "timed out" in error_lower:
        return ErrorCode.TIMEOUT
    if "paused" in error_lower or "kill switch" in error_lower:
        return ErrorCode.KILL_SWITCH_ENGAGED

    return ErrorCode.CHARGE_FAILED
