"""Funding source registry: models, ports and implementations."""

from flowrail.registry.client import RegistryClient, RegistryError
from flowrail.registry.memory import (
    InMemoryConnectorHealthRepository,
    InMemoryFundingSourceRepository,
    InMemoryGuardrailRepository,
)
from flowrail.registry.models import (
    ConnectorStatus,
    FundingSource,
    Guardrails,
    LinkedStatus,
    SourceKind,
)
from flowrail.registry.ports import (
    ConnectorHealthRepository,
    FundingSourceRepository,
    GuardrailRepository,
    TransactionHistoryRepository,
)

__all__ = [
    "RegistryClient",
    "RegistryError",
    "InMemoryConnectorHealthRepository",
    "InMemoryFundingSourceRepository",
    "InMemoryGuardrailRepository",
    "ConnectorStatus",
    "FundingSource",
    "Guardrails",
    "LinkedStatus",
    "SourceKind",
    "ConnectorHealthRepository",
    "FundingSourceRepository",
    "GuardrailRepository",
    "TransactionHistoryRepository",
]
