"""Bounded in-memory cache for geocoding results."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from newsglobe.data import GeocodeResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Entry:
    result: GeocodeResult
    stored_at: float


class GeocodeCache:
    """Fixed-capacity TTL cache keyed by normalized place name.

    Eviction is FIFO: once more than ``max_entries`` distinct keys are held,
    the oldest inserted key is dropped regardless of how recently it was
    read. Expired entries are removed lazily on read and by
    :meth:`purge_expired`.

    Args:
        ttl_seconds: Entry lifetime (default 24 hours).
        max_entries: Capacity before FIFO eviction.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 24 * 60 * 60,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def make_key(location: str) -> str:
        return location.strip().lower()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, location: str) -> GeocodeResult | None:
        key = self.make_key(location)
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at >= self._ttl:
                del self._entries[key]
                return None
            return entry.result

    async def put(self, location: str, result: GeocodeResult) -> None:
        key = self.make_key(location)
        async with self._lock:
            # Re-inserting moves the key to the back of the FIFO order.
            self._entries.pop(key, None)
            self._entries[key] = _Entry(result=result, stored_at=self._clock())
            while len(self._entries) > self._max_entries:
                oldest = next(iter(self._entries))
                del self._entries[oldest]

    async def purge_expired(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        async with self._lock:
            expired = [k for k, e in self._entries.items() if now - e.stored_at >= self._ttl]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info(f"Purged {len(expired)} expired geocode cache entries")
        return len(expired)
