"""Ledger models: hash-chained audit events and terminal transaction log entries."""

import hashlib
import json
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events in the audit ledger."""

    INTENT_RECEIVED = "INTENT_RECEIVED"              # Intent passed schema validation
    INTENT_REJECTED = "INTENT_REJECTED"              # Schema validation failed
    PLAN_RESOLVED = "PLAN_RESOLVED"                  # Resolver produced a plan
    GUARDRAILS_EVALUATED = "GUARDRAILS_EVALUATED"    # Guardrail enforcer ran
    STATE_CHANGED = "STATE_CHANGED"                  # Execution state transition
    STEP_SUCCEEDED = "STEP_SUCCEEDED"                # Top-up or charge succeeded
    STEP_FAILED = "STEP_FAILED"                      # Top-up or charge failed
    FALLBACK_SELECTED = "FALLBACK_SELECTED"          # Next rail picked after a failure
    LATE_RESULT = "LATE_RESULT"                      # External result after timeout/cancel
    TRANSACTION_LOGGED = "TRANSACTION_LOGGED"        # Terminal outcome recorded
    KILL_SWITCH_TOGGLED = "KILL_SWITCH_TOGGLED"      # User engaged/released the kill switch


class TransactionStatus(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransactionLogEntry(BaseModel):
    """Terminal outcome of one payment intent. Append-only."""

    intent_id: str
    user_id: Optional[str] = None
    rail_used: Optional[str] = None
    amount: float = Field(gt=0)
    currency: str = "MYR"
    status: TransactionStatus
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    note: Optional[str] = None
    reference: Optional[str] = Field(default=None, description="Gateway reference of the charge")


class LedgerEntry(BaseModel):
    """
    Immutable ledger entry with hash-chaining.

    Each entry carries the previous entry's hash, so editing any stored
    entry breaks the chain from that point on.
    """

    entry_id: str = Field(
        default_factory=lambda: f"entry_{uuid.uuid4().hex[:12]}",
        description="Unique entry identifier",
    )
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    event_type: EventType
    payload: dict = Field(description="Event-specific data")
    previous_hash: str = Field(default="genesis", description="Hash of previous entry")

    user_id: Optional[str] = None
    intent_id: Optional[str] = None

    def compute_hash(self) -> str:
        """SHA-256 over previous hash, timestamp, event type, payload and id."""
        hash_input = json.dumps({
            "previous_hash": self.previous_hash,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "payload": self.payload,
            "entry_id": self.entry_id,
        }, sort_keys=True, default=str)

        return hashlib.sha256(hash_input.encode()).hexdigest()[:32]

    @property
    def hash(self) -> str:
        return self.compute_hash()


class ChainValidationResult(BaseModel):
    """Result of ledger chain validation."""

    is_valid: bool
    total_entries: int
    broken_at: Optional[int] = Field(default=None, description="Index where chain broke")
    error_message: Optional[str] = None
