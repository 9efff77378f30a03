"""Fallback chain iteration.

``FallbackChain`` yields the plan for each rail attempt: the initial plan
first, then a fresh plan per failure, computed by re-resolving with every
rail tried so far excluded. Re-resolution runs against the snapshot taken
when the intent started, so the n-th fallback is the n-th entry of the
initial plan's fallback chain.

Plans that need confirmation are yielded like any other; the engine decides
whether the user has to confirm before the handoff.
"""

import logging
from typing import AbstractSet, Callable, Iterable, List, Optional

from flowrail.resolution.models import ResolutionPlan


logger = logging.getLogger(__name__)


class FallbackChain:
    """Bounded iterator over the plans for successive rail attempts."""

    def __init__(
        self,
        initial_plan: ResolutionPlan,
        replan: Callable[[AbstractSet[str]], ResolutionPlan],
        max_fallback_rails: int = 3,
        already_failed: Iterable[str] = (),
    ):
        """
        Args:
            initial_plan: Plan for the first attempt
            replan: Builds a guarded plan excluding the given rail ids
            max_fallback_rails: Fallback attempts after the first
            already_failed: Rails that failed before this chain started
                (a session resumed after a fallback confirmation)
        """
        self.initial_plan = initial_plan
        self.replan = replan
        self.max_fallback_rails = max_fallback_rails

        self.tried: List[str] = list(already_failed)
        self.exhausted_reason: Optional[str] = None
        self._started = False

    @property
    def fallbacks_used(self) -> int:
        return max(0, len(self.tried) - 1)

    def __iter__(self) -> "FallbackChain":
        return self

    def __next__(self) -> ResolutionPlan:
        if not self._started:
            self._started = True
            return self._accept(self.initial_plan)

        if self.exhausted_reason is not None:
            raise StopIteration

        if self.fallbacks_used >= self.max_fallback_rails:
            return self._stop(f"Fallback limit of {self.max_fallback_rails} rail(s) reached")

        plan = self.replan(frozenset(self.tried))

        if not plan.executable:
            return self._stop(plan.blocked_reason or "Payments are paused")
        if not plan.is_actionable:
            return self._stop(plan.blocked_reason or plan.explanation)

        logger.info(f"Fallback {self.fallbacks_used + 1} for {plan.intent_id}: {plan.chosen_rail_id}")
        return self._accept(plan)

    def _accept(self, plan: ResolutionPlan) -> ResolutionPlan:
        if plan.chosen_rail_id is not None and plan.chosen_rail_id not in self.tried:
            self.tried.append(plan.chosen_rail_id)
        return plan

    def _stop(self, reason: str):
        self.exhausted_reason = reason
        logger.warning(f"Fallback chain exhausted after {self.tried}: {reason}")
        raise StopIteration
