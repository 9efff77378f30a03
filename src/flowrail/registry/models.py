"""
Registry Data Models

Funding sources, connector health and per-user guardrails. These records are
owned by the registry collaborators; the resolver only reads them.
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, Field, field_validator


class SourceKind(str, Enum):
    """Kind of funding source."""

    WALLET = "wallet"
    BANK = "bank"
    CARD = "card"
    BNPL = "bnpl"


class LinkedStatus(str, Enum):
    LINKED = "linked"
    UNLINKED = "unlinked"
    PENDING = "pending"


class ConnectorStatus(str, Enum):
    """Health of a rail's connector, refreshed independently of resolution."""

    AVAILABLE = "available"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class FundingSource(BaseModel):
    """
    A linked payment rail (wallet, bank account, card or BNPL line).

    ``priority_rank`` 1 is the user's most preferred source.
    """

    id: str = Field(min_length=1, description="Rail identifier")
    kind: SourceKind
    name: str
    balance: float = Field(ge=0, description="Spendable balance")
    currency: str = Field(default="MYR")
    priority_rank: int = Field(ge=1, description="1 = most preferred")
    linked_status: LinkedStatus = LinkedStatus.LINKED
    available: bool = True
    capabilities: FrozenSet[str] = Field(default_factory=frozenset)

    # How much this source may be topped up automatically (0 = cannot be topped up)
    max_auto_top_up_amount: float = Field(default=0.0, ge=0)

    # Payments above this amount need an extra confirmation (None = no threshold)
    require_extra_confirm_amount: Optional[float] = Field(default=None, gt=0)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()

    @property
    def is_candidate(self) -> bool:
        """Linked and available sources are considered by the resolver."""
        return self.linked_status == LinkedStatus.LINKED and self.available


class Guardrails(BaseModel):
    """
    Per-user risk limits gating automatic execution.

    ``daily_spent_so_far`` and ``daily_reserved`` are only changed through the
    repository's atomic operations; ``kill_switch_engaged`` only through an
    explicit user action. ``daily_reserved`` holds automatic payments that are
    in flight and not yet settled.
    """

    user_id: str
    max_single_payment_auto: float = Field(default=50.0, gt=0)
    max_auto_top_up_amount: float = Field(default=100.0, ge=0)
    daily_auto_limit: float = Field(default=200.0, gt=0)
    daily_spent_so_far: float = Field(default=0.0, ge=0)
    daily_reserved: float = Field(default=0.0, ge=0)
    kill_switch_engaged: bool = False
    paused_at: Optional[datetime] = None
    last_reset_date: date = Field(default_factory=lambda: datetime.now(UTC).date())

    @property
    def daily_committed(self) -> float:
        """Spent today plus automatic payments still in flight."""
        return self.daily_spent_so_far + self.daily_reserved

    @property
    def daily_remaining(self) -> float:
        return max(0.0, self.daily_auto_limit - self.daily_committed)
