"""Plan building: primary rail, fallback chain, steps and explanation.

``ResolutionService`` lives in ``flowrail.resolution.service``.
"""

from flowrail.resolution.models import (
    PlanAction,
    PlanStep,
    ReasonCode,
    ResolutionPlan,
    RiskLevel,
    StepKind,
)
from flowrail.resolution.resolver import Resolver

__all__ = [
    "PlanAction",
    "PlanStep",
    "ReasonCode",
    "ResolutionPlan",
    "RiskLevel",
    "StepKind",
    "Resolver",
]
