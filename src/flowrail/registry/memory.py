"""
In-memory registry implementations.

Used by the demo server, the CLI and the tests. Mutations (balance changes
and daily spend increments) are serialized with a lock per source and per
user so concurrent intents can't over-draw a rail or double-count a limit.
"""

import logging
import threading
from collections import defaultdict
from datetime import UTC, datetime
from typing import Dict, Iterable, List, Optional

from flowrail.errors import InsufficientFunds
from flowrail.registry.models import ConnectorStatus, FundingSource, Guardrails
from flowrail.registry.ports import (
    ConnectorHealthRepository,
    FundingSourceRepository,
    GuardrailRepository,
)


logger = logging.getLogger(__name__)


class _KeyedLocks:
    """Lazily created ``threading.Lock`` per key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]


class InMemoryFundingSourceRepository(FundingSourceRepository):
    """Funding sources per user, with serialized balance mutation."""

    def __init__(self, sources_by_user: Optional[Dict[str, Iterable[FundingSource]]] = None):
        self._sources: Dict[str, Dict[str, FundingSource]] = defaultdict(dict)
        self._locks = _KeyedLocks()
        for user_id, sources in (sources_by_user or {}).items():
            for source in sources:
                self.upsert(user_id, source)

    def upsert(self, user_id: str, source: FundingSource) -> None:
        self._sources[user_id][source.id] = source.model_copy(deep=True)

    def list_linked(self, user_id: str) -> List[FundingSource]:
        return [s.model_copy() for s in self._sources.get(user_id, {}).values()]

    def get_source(self, user_id: str, source_id: str) -> Optional[FundingSource]:
        source = self._sources.get(user_id, {}).get(source_id)
        return source.model_copy() if source else None

    def owner_of(self, source_id: str) -> Optional[str]:
        for user_id, sources in self._sources.items():
            if source_id in sources:
                return user_id
        return None

    def apply_balance_delta(self, user_id: str, source_id: str, delta: float) -> FundingSource:
        """
        Add ``delta`` (negative to debit) to a source's balance.

        Raises:
            KeyError: Unknown source
            InsufficientFunds: The debit would overdraw the source
        """
        with self._locks.get(f"{user_id}:{source_id}"):
            source = self._sources[user_id][source_id]
            new_balance = round(source.balance + delta, 2)
            if new_balance < 0:
                raise InsufficientFunds(
                    f"Insufficient balance on {source_id}: {source.balance:.2f} < {-delta:.2f}",
                    details={"source_id": source_id, "balance": source.balance},
                )
            updated = source.model_copy(update={"balance": new_balance})
            self._sources[user_id][source_id] = updated
            logger.debug(f"Balance {source_id}: {source.balance:.2f} -> {new_balance:.2f}")
            return updated.model_copy()


class InMemoryConnectorHealthRepository(ConnectorHealthRepository):
    """Connector health map; unknown rails are reported available."""

    def __init__(self, statuses: Optional[Dict[str, ConnectorStatus]] = None):
        self._statuses: Dict[str, ConnectorStatus] = dict(statuses or {})

    def set_status(self, rail_id: str, status: ConnectorStatus) -> None:
        self._statuses[rail_id] = status

    def status_of(self, rail_id: str) -> ConnectorStatus:
        return self._statuses.get(rail_id, ConnectorStatus.AVAILABLE)


class InMemoryGuardrailRepository(GuardrailRepository):
    """Guardrail records per user with an atomic daily-spend counter."""

    def __init__(self, defaults: Optional[Guardrails] = None):
        self._records: Dict[str, Guardrails] = {}
        self._locks = _KeyedLocks()
        self._defaults = defaults

    def put(self, guardrails: Guardrails) -> None:
        self._records[guardrails.user_id] = guardrails.model_copy()

    def _load(self, user_id: str) -> Guardrails:
        record = self._records.get(user_id)
        if record is None:
            if self._defaults is not None:
                record = self._defaults.model_copy(update={"user_id": user_id})
            else:
                record = Guardrails(user_id=user_id)
            self._records[user_id] = record

        today = datetime.now(UTC).date()
        if record.last_reset_date != today:
            logger.info(f"Resetting daily spend for {user_id} (was {record.daily_spent_so_far:.2f})")
            record = record.model_copy(update={"daily_spent_so_far": 0.0, "last_reset_date": today})
            self._records[user_id] = record
        return record

    def get(self, user_id: str) -> Guardrails:
        with self._locks.get(user_id):
            return self._load(user_id).model_copy()

    def increment_daily_spent(self, user_id: str, amount: float) -> Guardrails:
        with self._locks.get(user_id):
            record = self._load(user_id)
            updated = record.model_copy(
                update={"daily_spent_so_far": round(record.daily_spent_so_far + amount, 2)}
            )
            self._records[user_id] = updated
            logger.info(f"Daily spend for {user_id}: {updated.daily_spent_so_far:.2f}/{updated.daily_auto_limit:.2f}")
            return updated.model_copy()

    def reserve_daily(self, user_id: str, amount: float) -> bool:
        with self._locks.get(user_id):
            record = self._load(user_id)
            if record.daily_committed + amount > record.daily_auto_limit:
                logger.info(
                    f"Daily reservation of {amount:.2f} refused for {user_id} "
                    f"({record.daily_committed:.2f}/{record.daily_auto_limit:.2f} committed)"
                )
                return False
            self._records[user_id] = record.model_copy(
                update={"daily_reserved": round(record.daily_reserved + amount, 2)}
            )
            return True

    def release_daily(self, user_id: str, amount: float) -> Guardrails:
        with self._locks.get(user_id):
            record = self._load(user_id)
            updated = record.model_copy(
                update={"daily_reserved": max(0.0, round(record.daily_reserved - amount, 2))}
            )
            self._records[user_id] = updated
            return updated.model_copy()

    def settle_daily(self, user_id: str, amount: float) -> Guardrails:
        with self._locks.get(user_id):
            record = self._load(user_id)
            updated = record.model_copy(update={
                "daily_reserved": max(0.0, round(record.daily_reserved - amount, 2)),
                "daily_spent_so_far": round(record.daily_spent_so_far + amount, 2),
            })
            self._records[user_id] = updated
            logger.info(f"Daily spend for {user_id}: {updated.daily_spent_so_far:.2f}/{updated.daily_auto_limit:.2f}")
            return updated.model_copy()

    def set_kill_switch(self, user_id: str, engaged: bool) -> Guardrails:
        with self._locks.get(user_id):
            record = self._load(user_id)
            updated = record.model_copy(update={
                "kill_switch_engaged": engaged,
                "paused_at": datetime.now(UTC) if engaged else None,
            })
            self._records[user_id] = updated
            logger.warning(f"Kill switch for {user_id}: {'ENGAGED' if engaged else 'released'}")
            return updated.model_copy()
