"""Per-key async locks: one writer per vehicle, no contention across vehicles."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Hashable

from app.core.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLocks:
    """Lazily created asyncio locks, dropped again once nobody holds or waits on them."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._entries: Dict[Hashable, _Entry] = {}

    def __len__(self):
        return len(self._entries)

    def locked(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable):
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Lock wait for {key!r} exceeded {self.timeout}s")
                raise ConcurrencyConflict(key=str(key))
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)
