"""
Registry collaborator interfaces.

The core reads funding sources, connector health, transaction history and
guardrails only through these ports.
"""

from abc import ABC, abstractmethod
from typing import Dict, List

from flowrail.registry.models import ConnectorStatus, FundingSource, Guardrails


class FundingSourceRepository(ABC):

    @abstractmethod
    def list_linked(self, user_id: str) -> List[FundingSource]:
        """All funding sources the user has linked (any availability)."""


class TransactionHistoryRepository(ABC):

    @abstractmethod
    def recent_by_rail(self, user_id: str, days: int = 30) -> Dict[str, int]:
        """Successful payment count per rail id over the last ``days`` days."""


class ConnectorHealthRepository(ABC):

    @abstractmethod
    def status_of(self, rail_id: str) -> ConnectorStatus:
        """Current connector health for a rail."""


class GuardrailRepository(ABC):

    @abstractmethod
    def get(self, user_id: str) -> Guardrails:
        """Snapshot of the user's guardrails (daily counters already reset)."""

    @abstractmethod
    def increment_daily_spent(self, user_id: str, amount: float) -> Guardrails:
        """Atomically add ``amount`` to the user's daily spend."""

    @abstractmethod
    def reserve_daily(self, user_id: str, amount: float) -> bool:
        """
        Atomically hold ``amount`` against the daily automatic limit.

        Returns False, holding nothing, when spent plus reserved plus
        ``amount`` would exceed the limit.
        """

    @abstractmethod
    def release_daily(self, user_id: str, amount: float) -> Guardrails:
        """Drop a reservation for a payment that did not complete."""

    @abstractmethod
    def settle_daily(self, user_id: str, amount: float) -> Guardrails:
        """Move a reservation into the daily spend once the payment completes."""

    @abstractmethod
    def set_kill_switch(self, user_id: str, engaged: bool) -> Guardrails:
        """Engage or release the user's kill switch."""
