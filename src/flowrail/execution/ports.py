"""External collaborators the engine waits on.

Both calls are suspension points: the engine bounds them with a timeout and
races them against user cancellation.
"""

from abc import ABC, abstractmethod
from typing import Optional

from flowrail.execution.models import ChargeResult


class BiometricAuthenticator(ABC):

    @abstractmethod
    async def authorize(self, user_id: str, intent_id: str) -> bool:
        """Ask the user to authorize the payment. True on success."""


class RailChargeGateway(ABC):
    """
    Moves money on a rail.

    Implementations must honour ``idempotency_key``: repeating a call with a
    key they have already seen returns the original result. ``user_id``
    identifies the account holder for gateways that key sources per user.
    """

    @abstractmethod
    async def charge(
        self,
        source_id: str,
        amount: float,
        idempotency_key: str,
        user_id: Optional[str] = None,
    ) -> ChargeResult:
        """Debit ``amount`` from the source for the payment."""

    @abstractmethod
    async def top_up(
        self,
        source_id: str,
        amount: float,
        funded_by: Optional[str],
        idempotency_key: str,
        user_id: Optional[str] = None,
    ) -> ChargeResult:
        """Credit ``amount`` to the source, debiting ``funded_by`` when given."""
