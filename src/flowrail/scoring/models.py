"""Scoring models."""

from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, model_validator

from flowrail.registry.models import ConnectorStatus
from flowrail.schema.intent_schema import IntentBase


# Component weights; a rail's total is the sum of its capped components
COMPATIBILITY_WEIGHT = 35.0
BALANCE_WEIGHT = 30.0
PRIORITY_WEIGHT = 15.0
HISTORY_WEIGHT = 10.0
HEALTH_WEIGHT = 10.0

MAX_TOTAL = COMPATIBILITY_WEIGHT + BALANCE_WEIGHT + PRIORITY_WEIGHT + HISTORY_WEIGHT + HEALTH_WEIGHT


class ScoringContext(BaseModel):
    """Everything a factor may look at besides the candidate itself."""

    model_config = ConfigDict(frozen=True)

    intent: IntentBase
    history: Dict[str, int] = Field(default_factory=dict, description="30-day success count per rail")
    health: Dict[str, ConnectorStatus] = Field(default_factory=dict)
    max_rank: int = Field(default=1, ge=1, description="Largest priority rank among candidates")
    history_normalization: int = Field(default=10, ge=1)

    @property
    def amount(self) -> float:
        return self.intent.amount.value

    def health_of(self, rail_id: str) -> ConnectorStatus:
        return self.health.get(rail_id, ConnectorStatus.AVAILABLE)


class RailScore(BaseModel):
    """Per-candidate score breakdown."""

    model_config = ConfigDict(frozen=True)

    rail_id: str
    compatibility: float = Field(ge=0, le=COMPATIBILITY_WEIGHT)
    balance: float = Field(ge=0, le=BALANCE_WEIGHT)
    priority: float = Field(ge=0, le=PRIORITY_WEIGHT)
    history: float = Field(ge=0, le=HISTORY_WEIGHT)
    health: float = Field(ge=0, le=HEALTH_WEIGHT)
    total: float = Field(ge=0, le=MAX_TOTAL)
    needs_top_up: bool = False

    @model_validator(mode="after")
    def check_total(self) -> "RailScore":
        expected = self.compatibility + self.balance + self.priority + self.history + self.health
        if abs(self.total - expected) > 1e-9:
            raise ValueError(f"total {self.total} != sum of components {expected}")
        return self

    def component(self, name: str) -> float:
        return getattr(self, name)
