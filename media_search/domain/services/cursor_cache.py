from __future__ import annotations

import asyncio
from collections import OrderedDict
from datetime import timedelta

from media_search.domain.entities.cursors import CursorHandle
from media_search.utils.logging import make_logger
from media_search.utils.timestamp import Clock, from_timestamp, timestamp

logger = make_logger(__name__)

"""
Server-side cursor cache.

Maps a query signature to the cursor currently used to walk that query's
result set. Entries are considered live while younger than the TTL margin,
which is kept below the backend's own keep-alive so the cache never hands
out a cursor the backend is about to drop.

The clock tracks the entry's original creation; reusing an entry does not
extend its life, so long walks degrade to recreation on their own.

Reads never delete. Stale entries are swept on every write, and past
``max_size`` the least recently used signature is evicted.
"""


class CursorCache:
    """Async-safe signature -> cursor map with a creation-time TTL and LRU bound."""

    def __init__(
        self, ttl_seconds: int = 240, max_size: int = 1000, clock: Clock = timestamp
    ):
        """
        Initialize the cursor cache.

        Args:
            ttl_seconds: How long after creation an entry is handed out
            max_size: Maximum number of signatures held at once
            clock: Wall-clock source in epoch seconds, injectable for tests
        """
        self._entries: OrderedDict[str, tuple[CursorHandle, float]] = OrderedDict()
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._lock = asyncio.Lock()

    def _is_live(self, created_at: float, now: float) -> bool:
        return now - created_at < self.ttl_seconds

    def _stamp(self, handle: CursorHandle, created_at: float) -> CursorHandle:
        return handle.model_copy(
            update={
                "created_at": from_timestamp(created_at),
                "expires_at": from_timestamp(created_at)
                + timedelta(seconds=self.ttl_seconds),
            }
        )

    def _drop_expired(self, now: float) -> int:
        # Caller holds the lock
        expired = [
            signature
            for signature, (_, created_at) in self._entries.items()
            if not self._is_live(created_at, now)
        ]
        for signature in expired:
            del self._entries[signature]
        return len(expired)

    async def get(self, signature: str) -> CursorHandle | None:
        """Return the handle for ``signature`` if it is still inside the TTL margin."""
        async with self._lock:
            entry = self._entries.get(signature)
            if entry is None:
                return None

            handle, created_at = entry
            if not self._is_live(created_at, self._clock()):
                # Left in place; the next put sweeps it
                return None

            self._entries.move_to_end(signature)
            return handle

    async def put(self, signature: str, handle: CursorHandle) -> CursorHandle:
        """Store ``handle`` for ``signature``, replacing any entry. Starts a new TTL."""
        async with self._lock:
            created_at = self._clock()
            self._drop_expired(created_at)

            if len(self._entries) >= self.max_size and signature not in self._entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cursor cache entry for signature '{evicted}'")

            stamped = self._stamp(handle, created_at)
            self._entries[signature] = (stamped, created_at)
            self._entries.move_to_end(signature)
            return stamped

    async def rotate(
        self, signature: str, previous_cursor_id: str, handle: CursorHandle
    ) -> bool:
        """
        Swap in a backend-rotated cursor id without resetting the entry's TTL.

        The entry is replaced only if it still holds ``previous_cursor_id``; if
        another request already replaced it, the newer entry wins.
        """
        async with self._lock:
            entry = self._entries.get(signature)
            if entry is None or entry[0].cursor_id != previous_cursor_id:
                return False
            created_at = entry[1]
            self._entries[signature] = (self._stamp(handle, created_at), created_at)
            return True

    async def delete(self, signature: str) -> None:
        async with self._lock:
            self._entries.pop(signature, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def remove_expired(self) -> int:
        """Drop every entry outside the TTL margin. Returns how many were dropped."""
        async with self._lock:
            removed = self._drop_expired(self._clock())
        if removed:
            logger.debug(f"Removed {removed} expired cursor cache entries")
        return removed

    def size(self) -> int:
        """Get current cache size (non-async for stats)."""
        return len(self._entries)
