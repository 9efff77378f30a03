"""Simulated rails and authorizer.

Backs the demo server, the CLI and the tests. Balances live in an
``InMemoryFundingSourceRepository``; failures can be forced per rail or
drawn at random.
"""

import asyncio
import logging
import random
import uuid
from typing import Iterable, List, Optional

from flowrail.errors import InsufficientFunds
from flowrail.execution.models import ChargeResult
from flowrail.execution.ports import BiometricAuthenticator, RailChargeGateway
from flowrail.registry.memory import InMemoryFundingSourceRepository


logger = logging.getLogger(__name__)


class SimulatedRailGateway(RailChargeGateway):
    """
    Mock rail gateway.

    Simulates:
    - Connector failures (forced per rail, or at ``failure_rate``)
    - Latency (``latency`` seconds, or per rail via ``slow_rails``)
    - Real balance movement on the in-memory registry
    """

    def __init__(
        self,
        sources: InMemoryFundingSourceRepository,
        failure_rate: float = 0.0,
        latency: float = 0.0,
        fail_rails: Optional[Iterable[str]] = None,
        slow_rails: Optional[dict] = None,
    ):
        self.sources = sources
        self.failure_rate = failure_rate
        self.latency = latency
        self.fail_rails = set(fail_rails or ())
        self.slow_rails = dict(slow_rails or {})
        self.calls: List[str] = []

        logger.info(f"Simulated rail gateway initialized (failure_rate={failure_rate})")

    async def charge(
        self,
        source_id: str,
        amount: float,
        idempotency_key: str,
        user_id: Optional[str] = None,
    ) -> ChargeResult:
        self.calls.append(f"charge:{source_id}:{idempotency_key}")
        await self._delay(source_id)

        if error := self._simulated_failure(source_id):
            return ChargeResult(success=False, source_id=source_id, amount=amount,
                                idempotency_key=idempotency_key, error=error)

        owner = user_id or self.sources.owner_of(source_id)
        try:
            self.sources.apply_balance_delta(owner, source_id, -amount)
        except InsufficientFunds as e:
            return ChargeResult(success=False, source_id=source_id, amount=amount,
                                idempotency_key=idempotency_key, error=e.message)

        reference = f"FR{uuid.uuid4().hex[:12].upper()}"
        logger.info(f"Charged {amount:.2f} on {source_id} [Ref: {reference}]")
        return ChargeResult(success=True, source_id=source_id, amount=amount,
                            idempotency_key=idempotency_key, reference=reference)

    async def top_up(
        self,
        source_id: str,
        amount: float,
        funded_by: Optional[str],
        idempotency_key: str,
        user_id: Optional[str] = None,
    ) -> ChargeResult:
        self.calls.append(f"top_up:{source_id}:{idempotency_key}")
        await self._delay(source_id)

        if error := self._simulated_failure(source_id):
            return ChargeResult(success=False, source_id=source_id, amount=amount,
                                idempotency_key=idempotency_key, error=error)

        owner = user_id or self.sources.owner_of(source_id)
        if funded_by is not None:
            try:
                self.sources.apply_balance_delta(owner, funded_by, -amount)
            except InsufficientFunds as e:
                return ChargeResult(success=False, source_id=source_id, amount=amount,
                                    idempotency_key=idempotency_key,
                                    error=f"Top-up funding failed: {e.message}")
        self.sources.apply_balance_delta(owner, source_id, amount)

        reference = f"TU{uuid.uuid4().hex[:12].upper()}"
        logger.info(f"Topped up {source_id} by {amount:.2f} from {funded_by or 'external'} [Ref: {reference}]")
        return ChargeResult(success=True, source_id=source_id, amount=amount,
                            idempotency_key=idempotency_key, reference=reference)

    async def _delay(self, source_id: str) -> None:
        delay = self.slow_rails.get(source_id, self.latency)
        if delay:
            await asyncio.sleep(delay)

    def _simulated_failure(self, source_id: str) -> Optional[str]:
        if source_id in self.fail_rails:
            return f"Connector unavailable for {source_id}"
        if random.random() < self.failure_rate:
            return "Simulated network failure"
        return None


class SimulatedAuthenticator(BiometricAuthenticator):
    """Authorizer that replays a scripted sequence of outcomes, then approves."""

    def __init__(self, outcomes: Optional[Iterable[bool]] = None, latency: float = 0.0):
        self.outcomes = list(outcomes or [])
        self.latency = latency
        self.calls = 0

    async def authorize(self, user_id: str, intent_id: str) -> bool:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        approved = self.outcomes.pop(0) if self.outcomes else True
        logger.info(f"Biometric authorization for {intent_id}: {'approved' if approved else 'rejected'}")
        return approved
