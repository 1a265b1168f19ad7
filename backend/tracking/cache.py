"""
Tracking Cache
Per-user TTL cache over tracking-list reads with per-user locks
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Tuple
import asyncio
import logging
import time

from database.models import TrackingRecord

logger = logging.getLogger(__name__)

Loader = Callable[[str], Awaitable[List[TrackingRecord]]]


class _UserLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class TrackingCache:
    """userId -> (expires_at, records).

    Each user has its own lock; there is no lock shared across users. A lock
    lives only while some task holds or waits for it, and expired entries are
    pruned on every load, so idle users cost nothing.
    Mutations call ``refresh_locked`` while holding the user's lock so the
    acting user reads their own write immediately.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, List[TrackingRecord]]] = {}
        self._locks: Dict[str, _UserLock] = {}
        self.hits = 0
        self.misses = 0

    @asynccontextmanager
    async def lock_for(self, user_id: str) -> AsyncIterator[None]:
        """Hold ``user_id``'s lock for the duration of the block."""
        holder = self._locks.get(user_id)
        if holder is None:
            holder = self._locks[user_id] = _UserLock()
        holder.users += 1
        try:
            async with holder.lock:
                yield
        finally:
            holder.users -= 1
            if holder.users == 0 and self._locks.get(user_id) is holder:
                del self._locks[user_id]

    def _fresh(self, user_id: str):
        entry = self._entries.get(user_id)
        if entry and entry[0] > self._clock():
            return entry[1]
        return None

    async def get(self, user_id: str, loader: Loader) -> List[TrackingRecord]:
        records = self._fresh(user_id)
        if records is not None:
            self.hits += 1
            return list(records)

        async with self.lock_for(user_id):
            # another reader may have filled the entry while we waited
            records = self._fresh(user_id)
            if records is not None:
                self.hits += 1
                return list(records)
            self.misses += 1
            return await self._load(user_id, loader)

    async def refresh_locked(self, user_id: str, loader: Loader) -> List[TrackingRecord]:
        """Invalidate and repopulate. Caller must hold ``lock_for(user_id)``."""
        self._entries.pop(user_id, None)
        return await self._load(user_id, loader)

    def invalidate(self, user_id: str):
        self._entries.pop(user_id, None)

    async def _load(self, user_id: str, loader: Loader) -> List[TrackingRecord]:
        records = await loader(user_id)
        self._evict_expired()
        self._entries[user_id] = (self._clock() + self.ttl_seconds, list(records))
        return list(records)

    def _evict_expired(self):
        now = self._clock()
        expired = [user_id for user_id, (expires_at, _) in self._entries.items() if expires_at <= now]
        for user_id in expired:
            del self._entries[user_id]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired tracking lists")

    def stats(self) -> Dict[str, int]:
        return {
            "entries": len(self._entries),
            "locks": len(self._locks),
            "hits": self.hits,
            "misses": self.misses,
        }
