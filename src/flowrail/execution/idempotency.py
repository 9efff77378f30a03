"""Idempotent gateway wrapper.

Stores the outcome of every top-up and charge by idempotency key. A repeated
call with a known key returns the stored result without touching the rail;
concurrent calls with the same key wait for the first one to finish.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Dict, Optional

from flowrail.concurrency import KeyedLocks
from flowrail.execution.models import ChargeResult, IdempotencyKey
from flowrail.execution.ports import RailChargeGateway
from flowrail.resolution.models import StepKind


logger = logging.getLogger(__name__)


IDEMPOTENCY_TTL = timedelta(hours=24)


def make_idempotency_key(intent_id: str, attempt_number: int, step: StepKind) -> str:
    """Key for one step of one rail attempt: ``intent:attempt:step``."""
    return f"{intent_id}:{attempt_number}:{step.value}"


class IdempotentChargeGateway(RailChargeGateway):
    """Wraps another gateway with a keyed result store."""

    def __init__(self, inner: RailChargeGateway, ttl: timedelta = IDEMPOTENCY_TTL):
        self.inner = inner
        self.ttl = ttl
        self.idempotency_store: Dict[str, IdempotencyKey] = {}
        self._locks = KeyedLocks()

    async def charge(
        self,
        source_id: str,
        amount: float,
        idempotency_key: str,
        user_id: Optional[str] = None,
    ) -> ChargeResult:
        async with self._locks.get(idempotency_key):
            if existing := self._check_idempotency(idempotency_key):
                return self._replay(existing)
            result = await self.inner.charge(source_id, amount, idempotency_key, user_id=user_id)
            self._store_idempotency(idempotency_key, result)
            return result

    async def top_up(
        self,
        source_id: str,
        amount: float,
        funded_by: Optional[str],
        idempotency_key: str,
        user_id: Optional[str] = None,
    ) -> ChargeResult:
        async with self._locks.get(idempotency_key):
            if existing := self._check_idempotency(idempotency_key):
                return self._replay(existing)
            result = await self.inner.top_up(source_id, amount, funded_by, idempotency_key, user_id=user_id)
            self._store_idempotency(idempotency_key, result)
            return result

    def _replay(self, existing: IdempotencyKey) -> ChargeResult:
        logger.warning(f"Duplicate call for key {existing.key}; returning stored result")
        return existing.result.model_copy(update={"replayed": True})

    def _check_idempotency(self, key: str) -> Optional[IdempotencyKey]:
        """Stored record for ``key`` if present and not expired."""
        if key in self.idempotency_store:
            existing = self.idempotency_store[key]
            if datetime.now(UTC) < existing.expires_at:
                return existing
            # Expired, remove it
            del self.idempotency_store[key]
        return None

    def _store_idempotency(self, key: str, result: ChargeResult) -> None:
        self._purge_expired()
        self.idempotency_store[key] = IdempotencyKey(
            key=key,
            result=result,
            expires_at=datetime.now(UTC) + self.ttl,
        )

    def _purge_expired(self) -> None:
        """Drop every stored key past its expiry."""
        now = datetime.now(UTC)
        expired = [key for key, record in self.idempotency_store.items() if record.expires_at <= now]
        for key in expired:
            del self.idempotency_store[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired idempotency key(s)")
