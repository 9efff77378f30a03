"""Weighted multi-factor rail scoring."""

from flowrail.scoring.factors import SCORING_FACTORS, ScoringFactor, accepts_rail, required_capability
from flowrail.scoring.models import MAX_TOTAL, RailScore, ScoringContext
from flowrail.scoring.scorer import RailScorer

__all__ = [
    "SCORING_FACTORS",
    "ScoringFactor",
    "accepts_rail",
    "required_capability",
    "MAX_TOTAL",
    "RailScore",
    "ScoringContext",
    "RailScorer",
]
