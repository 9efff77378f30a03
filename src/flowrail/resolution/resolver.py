"""Resolver.

Turns scored candidates into a ``ResolutionPlan``: picks the primary rail,
orders the fallback chain, lays out the top-up and charge steps and explains
the choice. Guardrails are applied afterwards by the enforcer.

Fallback is realized by calling ``resolve`` again with the failed rails in
``exclude``; nothing here is replayed from an earlier plan.
"""

import logging
import math
from typing import AbstractSet, Dict, List, Optional

from flowrail.registry.models import ConnectorStatus, FundingSource, SourceKind
from flowrail.resolution.models import (
    PlanAction,
    PlanStep,
    ReasonCode,
    ResolutionPlan,
    StepKind,
    assign_risk_level,
)
from flowrail.schema.intent_schema import Capability, IntentBase
from flowrail.scoring.factors import SCORING_FACTORS
from flowrail.scoring.models import RailScore
from flowrail.scoring.scorer import RailScorer


logger = logging.getLogger(__name__)


DEFAULT_MAX_FALLBACK_RAILS = 3

# Order used when two factors separate the primary from the runner-up equally
EXPLANATION_FACTOR_ORDER = ["balance", "priority", "history", "health", "compatibility"]


def top_up_shortfall(amount: float, balance: float) -> float:
    """Amount to top up so ``balance`` covers ``amount``, rounded up to the cent."""
    cents = round((amount - balance) * 100, 6)
    return math.ceil(cents) / 100


class Resolver:
    """Deterministic plan builder. Holds no state between calls."""

    def __init__(self, scorer: Optional[RailScorer] = None, max_fallback_rails: int = DEFAULT_MAX_FALLBACK_RAILS):
        self.scorer = scorer or RailScorer()
        self.max_fallback_rails = max_fallback_rails

    def resolve(
        self,
        intent: IntentBase,
        sources: List[FundingSource],
        history: Optional[Dict[str, int]] = None,
        health: Optional[Dict[str, ConnectorStatus]] = None,
        exclude: AbstractSet[str] = frozenset(),
    ) -> ResolutionPlan:
        """
        Build a plan for ``intent`` from the user's funding sources.

        Args:
            intent: Validated payment intent
            sources: The user's linked funding sources
            history: Successful payment count per rail in the history window
            health: Connector health per rail (missing = available)
            exclude: Rails that already failed for this intent

        Returns:
            ResolutionPlan. Blocked and insufficient-funds outcomes are
            returned as plans, never raised.
        """
        health = health or {}
        linked = [s for s in sources if s.is_candidate]
        candidates = [s for s in linked if s.id not in exclude]
        amount = intent.amount.value

        if not candidates:
            reason = "No payment methods linked" if not linked else "All linked payment methods have failed"
            return self._blocked(intent, reason, ReasonCode.NO_COMPATIBLE_RAIL)

        # Priority is normalized over every linked rail, excluded ones included
        scores = self.scorer.score_all(intent, linked, history, health)

        compatible = [
            s for s in candidates
            if scores[s.id].compatibility > 0 or self._is_universal_fallback(s, intent)
        ]
        if not compatible:
            return self._blocked(
                intent,
                f"No linked payment method can be used for {intent.counterparty_ref}",
                ReasonCode.NO_COMPATIBLE_RAIL,
            )

        ranked = sorted(compatible, key=lambda s: (-scores[s.id].total, s.priority_rank, s.id))
        ranked_scores = tuple(scores[s.id] for s in ranked)

        viable = [
            s for s in ranked
            if scores[s.id].balance > 0 and health.get(s.id, ConnectorStatus.AVAILABLE) != ConnectorStatus.UNAVAILABLE
        ]
        if not viable:
            if all(scores[s.id].compatibility == 0 for s in ranked):
                return self._blocked(
                    intent,
                    f"No linked payment method can be used for {intent.counterparty_ref}",
                    ReasonCode.NO_COMPATIBLE_RAIL,
                    ranked_scores,
                )
            if all(health.get(s.id, ConnectorStatus.AVAILABLE) == ConnectorStatus.UNAVAILABLE for s in ranked):
                return self._blocked(
                    intent,
                    "All compatible payment methods are currently unavailable",
                    ReasonCode.NO_COMPATIBLE_RAIL,
                    ranked_scores,
                )
            logger.info(f"Insufficient funds for {intent.intent_id}: no rail covers {amount:.2f}")
            return ResolutionPlan(
                intent_id=intent.intent_id,
                amount=intent.amount,
                action=PlanAction.INSUFFICIENT_FUNDS,
                explanation=f"No payment method can cover {intent.amount.currency} {amount:.2f}, even with a top-up",
                blocked_reason="insufficient funds",
                executable=False,
                risk_level=assign_risk_level(amount, PlanAction.INSUFFICIENT_FUNDS),
                reason_codes=(ReasonCode.INSUFFICIENT_FUNDS,),
                scores=ranked_scores,
            )

        primary = viable[0]
        primary_score = scores[primary.id]
        fallback_chain = tuple(
            s.id for s in viable[1:] if scores[s.id].total > 0
        )[: self.max_fallback_rails]

        steps: List[PlanStep] = []
        reason_codes: List[ReasonCode] = []
        if primary_score.needs_top_up:
            shortfall = top_up_shortfall(amount, primary.balance)
            funded_by = self._find_top_up_source(primary, shortfall, candidates)
            steps.append(PlanStep(kind=StepKind.TOP_UP, source_id=primary.id, amount=shortfall, funded_by=funded_by))
            reason_codes.append(ReasonCode.TOPUP_REQUIRED)
        steps.append(PlanStep(kind=StepKind.CHARGE, source_id=primary.id, amount=amount))

        runner_up = next((s for s in ranked if s.id != primary.id), None)
        explanation = self._explain(
            intent,
            primary,
            primary_score,
            scores[runner_up.id] if runner_up else None,
            steps,
        )

        plan = ResolutionPlan(
            intent_id=intent.intent_id,
            amount=intent.amount,
            action=PlanAction.PROCEED,
            chosen_rail_id=primary.id,
            fallback_chain=fallback_chain,
            steps=tuple(steps),
            explanation=explanation,
            risk_level=assign_risk_level(amount, PlanAction.PROCEED),
            reason_codes=tuple(reason_codes),
            scores=ranked_scores,
        )
        logger.info(
            f"Resolved {intent.intent_id}: {primary.id} ({primary_score.total:.1f}), "
            f"fallback={list(fallback_chain)}, excluded={sorted(exclude)}"
        )
        return plan

    def _blocked(self, intent: IntentBase, reason: str, code: ReasonCode, scores=()) -> ResolutionPlan:
        logger.info(f"Blocked {intent.intent_id}: {reason}")
        return ResolutionPlan(
            intent_id=intent.intent_id,
            amount=intent.amount,
            action=PlanAction.BLOCKED,
            explanation=reason,
            blocked_reason=reason,
            executable=False,
            risk_level=assign_risk_level(intent.amount.value, PlanAction.BLOCKED),
            reason_codes=(code,),
            scores=tuple(scores),
        )

    def _is_universal_fallback(self, source: FundingSource, intent: IntentBase) -> bool:
        """Universal rails skip the acceptance check but still need the intent's currency."""
        return (
            Capability.UNIVERSAL_FALLBACK.value in source.capabilities
            and source.currency == intent.amount.currency
        )

    def _find_top_up_source(
        self,
        primary: FundingSource,
        shortfall: float,
        candidates: List[FundingSource],
    ) -> Optional[str]:
        """Pick the source that funds a top-up: a bank first, then anything else that can cover it."""
        others = sorted(
            (s for s in candidates if s.id != primary.id and s.balance >= shortfall),
            key=lambda s: (s.priority_rank, s.id),
        )
        for source in others:
            if source.kind == SourceKind.BANK:
                return source.id
        return others[0].id if others else None

    def _explain(
        self,
        intent: IntentBase,
        primary: FundingSource,
        score: RailScore,
        runner_up: Optional[RailScore],
        steps: List[PlanStep],
    ) -> str:
        factor = self._decisive_factor(score, runner_up)
        currency = intent.amount.currency

        if factor == "balance":
            if score.needs_top_up:
                reason = f"needs top-up of {currency} {steps[0].amount:.2f}"
            else:
                reason = f"sufficient balance ({currency} {primary.balance:.2f})"
        elif factor == "priority":
            reason = "your preferred payment method"
        elif factor == "history":
            reason = "your most-used rail"
        elif factor == "health":
            reason = "most reliable connection right now"
        else:
            reason = f"accepted by {intent.counterparty_ref}"

        explanation = f"Using {primary.name}: {reason}"
        if score.needs_top_up and factor != "balance":
            explanation += f", needs top-up of {currency} {steps[0].amount:.2f}"
        return explanation

    def _decisive_factor(self, score: RailScore, runner_up: Optional[RailScore]) -> str:
        """The factor that separates the primary from the runner-up the most."""
        if runner_up is not None:
            best, best_diff = None, 0.0
            for name in EXPLANATION_FACTOR_ORDER:
                diff = score.component(name) - runner_up.component(name)
                if diff > best_diff:
                    best, best_diff = name, diff
            if best is not None:
                return best

        weights = {f.name: f.weight for f in SCORING_FACTORS}
        return max(
            EXPLANATION_FACTOR_ORDER,
            key=lambda name: (score.component(name) / weights[name], -EXPLANATION_FACTOR_ORDER.index(name)),
        )
