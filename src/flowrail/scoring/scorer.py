"""Rail Scorer.

Pure scoring of candidate funding sources for one intent. No I/O and no
mutation, so it is safe to run concurrently for any number of intents.
"""

import logging
from typing import Dict, List, Optional

from flowrail.registry.models import ConnectorStatus, FundingSource
from flowrail.schema.intent_schema import IntentBase
from flowrail.scoring.factors import SCORING_FACTORS, ScoringFactor
from flowrail.scoring.models import RailScore, ScoringContext


logger = logging.getLogger(__name__)


class RailScorer:
    """Sums the weighted factors into a ``RailScore`` per candidate."""

    def __init__(self, factors: Optional[List[ScoringFactor]] = None, history_normalization: int = 10):
        self.factors = factors if factors is not None else list(SCORING_FACTORS)
        self.history_normalization = history_normalization

    def build_context(
        self,
        intent: IntentBase,
        sources: List[FundingSource],
        history: Optional[Dict[str, int]] = None,
        health: Optional[Dict[str, ConnectorStatus]] = None,
    ) -> ScoringContext:
        max_rank = max((s.priority_rank for s in sources), default=1)
        return ScoringContext(
            intent=intent,
            history=history or {},
            health=health or {},
            max_rank=max_rank,
            history_normalization=self.history_normalization,
        )

    def score(self, source: FundingSource, context: ScoringContext) -> RailScore:
        """Score a single candidate."""
        components = {factor.name: factor.score(source, context) for factor in self.factors}
        balance = components.get("balance", 0.0)

        return RailScore(
            rail_id=source.id,
            compatibility=components.get("compatibility", 0.0),
            balance=balance,
            priority=components.get("priority", 0.0),
            history=components.get("history", 0.0),
            health=components.get("health", 0.0),
            total=sum(components.values()),
            needs_top_up=source.balance < context.amount and 0 < balance < self._balance_weight(),
        )

    def score_all(
        self,
        intent: IntentBase,
        sources: List[FundingSource],
        history: Optional[Dict[str, int]] = None,
        health: Optional[Dict[str, ConnectorStatus]] = None,
    ) -> Dict[str, RailScore]:
        """Score every candidate, keyed by rail id."""
        context = self.build_context(intent, sources, history, health)
        scores = {source.id: self.score(source, context) for source in sources}
        logger.debug(
            f"Scored {len(scores)} rails for {intent.intent_id}: "
            + ", ".join(f"{rid}={s.total:.1f}" for rid, s in scores.items())
        )
        return scores

    def _balance_weight(self) -> float:
        for factor in self.factors:
            if factor.name == "balance":
                return factor.weight
        return 0.0
