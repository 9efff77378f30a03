"""Scoring factors.

Each factor scores one aspect of a candidate rail on a scale from 0 to its
weight. ``RailScorer`` sums them.
"""

from abc import ABC, abstractmethod

from flowrail.registry.models import ConnectorStatus, FundingSource
from flowrail.schema.intent_schema import REQUIRED_CAPABILITY, Capability, IntentBase
from flowrail.scoring.models import (
    BALANCE_WEIGHT,
    COMPATIBILITY_WEIGHT,
    HEALTH_WEIGHT,
    HISTORY_WEIGHT,
    PRIORITY_WEIGHT,
    ScoringContext,
)


def required_capability(intent: IntentBase) -> Capability:
    """Capability tag a rail needs to serve this intent kind."""
    try:
        return REQUIRED_CAPABILITY[intent.kind]
    except KeyError:
        raise ValueError(f"No capability mapping for intent kind {intent.kind!r}")


def accepts_rail(intent: IntentBase, source: FundingSource) -> bool:
    """Whether the counterparty accepts this rail (matched on id or name)."""
    accepted = {rail.lower() for rail in intent.accepted_rails}
    if not accepted:
        return True
    return source.id.lower() in accepted or source.name.lower() in accepted


class ScoringFactor(ABC):
    """Abstract base class for scoring factors."""

    def __init__(self, name: str, weight: float, description: str):
        self.name = name
        self.weight = weight
        self.description = description

    @abstractmethod
    def score(self, source: FundingSource, context: ScoringContext) -> float:
        """Score ``source`` in the range [0, weight]."""

    def clamp(self, value: float) -> float:
        return max(0.0, min(self.weight, value))


class CompatibilityFactor(ScoringFactor):
    """Binary: full weight if the rail is accepted and capable, else 0."""

    def __init__(self):
        super().__init__(
            name="compatibility",
            weight=COMPATIBILITY_WEIGHT,
            description="Rail is accepted by the counterparty and supports the intent kind",
        )

    def score(self, source: FundingSource, context: ScoringContext) -> float:
        intent = context.intent
        if source.currency != intent.amount.currency:
            return 0.0
        if not accepts_rail(intent, source):
            return 0.0
        if required_capability(intent).value not in source.capabilities:
            return 0.0
        return self.weight


class BalanceFactor(ScoringFactor):
    """Full weight when the balance covers the amount, half if a top-up can."""

    def __init__(self):
        super().__init__(
            name="balance",
            weight=BALANCE_WEIGHT,
            description="Balance covers the amount directly or via auto top-up",
        )

    def score(self, source: FundingSource, context: ScoringContext) -> float:
        if source.balance >= context.amount:
            return self.weight
        shortfall = context.amount - source.balance
        if shortfall <= source.max_auto_top_up_amount:
            return self.weight / 2
        return 0.0


class PriorityFactor(ScoringFactor):
    """User preference; rank 1 earns full weight."""

    def __init__(self):
        super().__init__(
            name="priority",
            weight=PRIORITY_WEIGHT,
            description="User's preferred ordering of funding sources",
        )

    def score(self, source: FundingSource, context: ScoringContext) -> float:
        return self.clamp(self.weight * (1 - (source.priority_rank - 1) / context.max_rank))


class HistoryFactor(ScoringFactor):
    """Recent successful use of the rail, saturating at the normalization count."""

    def __init__(self):
        super().__init__(
            name="history",
            weight=HISTORY_WEIGHT,
            description="Successful payments on this rail in the history window",
        )

    def score(self, source: FundingSource, context: ScoringContext) -> float:
        count = context.history.get(source.id, 0)
        return self.weight * min(1.0, count / context.history_normalization)


class HealthFactor(ScoringFactor):

    SCALE = {
        ConnectorStatus.AVAILABLE: 1.0,
        ConnectorStatus.DEGRADED: 0.5,
        ConnectorStatus.UNAVAILABLE: 0.0,
    }

    def __init__(self):
        super().__init__(
            name="health",
            weight=HEALTH_WEIGHT,
            description="Connector health of the rail",
        )

    def score(self, source: FundingSource, context: ScoringContext) -> float:
        return self.weight * self.SCALE[context.health_of(source.id)]


SCORING_FACTORS = [
    CompatibilityFactor(),
    BalanceFactor(),
    PriorityFactor(),
    HistoryFactor(),
    HealthFactor(),
]
