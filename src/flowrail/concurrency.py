"""Per-key asyncio locks.

Serializes mutations per funding source: two intents charging the same rail
take turns, intents on different rails run concurrently.
"""

import asyncio
from typing import Dict


class KeyedLocks:
    """Lazily created ``asyncio.Lock`` per key."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock
