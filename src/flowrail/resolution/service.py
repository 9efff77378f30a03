"""Resolution Service.

Gathers the registry reads for a user (sources, history, health,
guardrails), runs the resolver and then the guardrail enforcer.
"""

import logging
from typing import AbstractSet, Dict, List, Optional

from pydantic import BaseModel, Field

from flowrail.config import settings
from flowrail.ledger.models import EventType
from flowrail.policy.engine import GuardrailEnforcer
from flowrail.policy.models import GuardrailResult
from flowrail.registry.models import ConnectorStatus, FundingSource, Guardrails
from flowrail.registry.ports import (
    ConnectorHealthRepository,
    FundingSourceRepository,
    GuardrailRepository,
    TransactionHistoryRepository,
)
from flowrail.resolution.models import ResolutionPlan
from flowrail.resolution.resolver import Resolver
from flowrail.schema.intent_schema import IntentBase
from flowrail.scoring.scorer import RailScorer


logger = logging.getLogger(__name__)


class ResolutionSnapshot(BaseModel):
    """Registry state read once per intent and reused for every re-plan."""

    user_id: str
    sources: List[FundingSource] = Field(default_factory=list)
    history: Dict[str, int] = Field(default_factory=dict)
    health: Dict[str, ConnectorStatus] = Field(default_factory=dict)
    guardrails: Guardrails

    def source(self, source_id: Optional[str]) -> Optional[FundingSource]:
        for source in self.sources:
            if source.id == source_id:
                return source
        return None


class ResolutionService:
    """Read-only orchestration of scorer, resolver and guardrail enforcer."""

    def __init__(
        self,
        funding_sources: FundingSourceRepository,
        history: TransactionHistoryRepository,
        health: ConnectorHealthRepository,
        guardrails: GuardrailRepository,
        resolver: Optional[Resolver] = None,
        enforcer: Optional[GuardrailEnforcer] = None,
        ledger=None,
        history_window_days: Optional[int] = None,
    ):
        self.funding_sources = funding_sources
        self.history = history
        self.health = health
        self.guardrails = guardrails
        self.resolver = resolver or Resolver(
            scorer=RailScorer(history_normalization=settings.history_normalization),
            max_fallback_rails=settings.max_fallback_rails,
        )
        self.enforcer = enforcer or GuardrailEnforcer(repository=guardrails, ledger=ledger)
        self.ledger = ledger
        self.history_window_days = history_window_days or settings.history_window_days

    def snapshot(self, user_id: str) -> ResolutionSnapshot:
        """Read everything the resolver needs for ``user_id``."""
        sources = self.funding_sources.list_linked(user_id)
        return ResolutionSnapshot(
            user_id=user_id,
            sources=sources,
            history=self.history.recent_by_rail(user_id, days=self.history_window_days),
            health={s.id: self.health.status_of(s.id) for s in sources},
            guardrails=self.guardrails.get(user_id),
        )

    def resolve(
        self,
        user_id: str,
        intent: IntentBase,
        exclude: AbstractSet[str] = frozenset(),
        snapshot: Optional[ResolutionSnapshot] = None,
    ) -> GuardrailResult:
        """
        Resolve and apply guardrails.

        Args:
            user_id: Paying user
            intent: Validated intent
            exclude: Rails to leave out (already failed)
            snapshot: Registry state to reuse; read fresh when omitted

        Returns:
            GuardrailResult whose ``plan`` is the final plan
        """
        snap = snapshot or self.snapshot(user_id)
        plan = self.resolver.resolve(intent, snap.sources, snap.history, snap.health, exclude)

        if self.ledger:
            self.ledger.log_event(
                event_type=EventType.PLAN_RESOLVED,
                payload={
                    "kind": intent.kind.value,
                    "amount": intent.amount.value,
                    "currency": intent.amount.currency,
                    "action": plan.action.value,
                    "chosen_rail_id": plan.chosen_rail_id,
                    "fallback_chain": list(plan.fallback_chain),
                    "explanation": plan.explanation,
                    "excluded": sorted(exclude),
                },
                user_id=user_id,
                intent_id=intent.intent_id,
            )

        return self.enforcer.evaluate(
            plan,
            snap.guardrails,
            source=snap.source(plan.chosen_rail_id),
            user_id=user_id,
        )

    def plan(
        self,
        user_id: str,
        intent: IntentBase,
        exclude: AbstractSet[str] = frozenset(),
    ) -> ResolutionPlan:
        """Shortcut returning just the guarded plan."""
        return self.resolve(user_id, intent, exclude).plan
