"""TTL cache for parsed external feeds with per-URL request coalescing."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_FEED_CACHE_TTL_SECONDS = 300.0

T = TypeVar("T")


@dataclass
class FeedCacheEntry(Generic[T]):
    """Cached feed data with the clock reading taken when it was stored."""

    data: T
    fetched_at: float


class FeedCache(Generic[T]):
    """Feed cache keyed by URL.

    Entries younger than ``ttl_seconds`` are served directly. Cold or stale keys
    are loaded once; concurrent callers for the same key await the same in-flight
    task. Failed loads are never stored.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_FEED_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, FeedCacheEntry[T]] = {}
        self._in_flight: dict[str, asyncio.Future[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, key: str) -> Optional[T]:
        """Return fresh cached data for ``key`` without loading."""
        entry = self._entries.get(key)
        if entry is None or not self._is_fresh(entry):
            return None
        return entry.data

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        """Return cached data for ``key``, loading it when missing or stale.

        Args:
            key: Cache key (the feed URL)
            loader: Coroutine factory performing the upstream fetch and parse

        Returns:
            Cached or freshly loaded data

        Raises:
            Exception: Whatever ``loader`` raised; the failure is not cached
        """
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            logger.debug("Feed cache hit for %s", key)
            return entry.data

        future = self._in_flight.get(key)
        if future is None:
            logger.debug("Feed cache miss for %s, loading", key)
            future = asyncio.ensure_future(self._load(key, loader))
            self._in_flight[key] = future
            future.add_done_callback(lambda f, k=key: self._finish(k, f))
        else:
            logger.debug("Joining in-flight load for %s", key)

        # Shielded so one cancelled caller does not cancel the load for the others
        return await asyncio.shield(future)

    async def _load(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        data = await loader()
        self._entries[key] = FeedCacheEntry(data=data, fetched_at=self._clock())
        return data

    def _finish(self, key: str, future: asyncio.Future[T]) -> None:
        if self._in_flight.get(key) is future:
            del self._in_flight[key]
        if not future.cancelled() and future.exception() is not None:
            logger.debug("Feed load for %s failed, not caching", key)

    def _is_fresh(self, entry: FeedCacheEntry[T]) -> bool:
        return self._clock() - entry.fetched_at < self.ttl_seconds
