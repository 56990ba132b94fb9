"""Reconciliation scheduler: decides when cached views are stale and refetches them.

Readers go through :meth:`ReconciliationScheduler.query`; the mutation
coordinator calls :meth:`invalidate` after every commit so speculative values
are replaced by what the backend actually stored.
"""

import asyncio
import logging
from typing import Any

from talentflow.cache.query_cache import CacheEntry, Fetcher, QueryCache, QueryKey

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Stale-time policy and background refetch bookkeeping for one QueryCache."""

    def __init__(self, cache: QueryCache, stale_time_ms: float = 30000.0) -> None:
        self._cache = cache
        self.stale_time_ms = stale_time_ms

    def is_stale(self, entry: CacheEntry) -> bool:
        return not self._cache.is_fresh(entry, self.stale_time_ms)

    def peek(self, key: QueryKey) -> CacheEntry | None:
        """Current entry for ``key`` without triggering a fetch."""
        return self._cache.read(key)

    async def query(self, key: QueryKey, fetcher: Fetcher) -> Any:
        return await self._cache.get_or_fetch(key, fetcher, self.stale_time_ms)

    def refetch(self, key: QueryKey) -> asyncio.Task[Any] | None:
        """Kick one background fetch for ``key`` using its last known fetcher."""
        fetcher = self._cache.fetcher_for(key)
        if fetcher is None:
            logger.debug("No fetcher registered for %s - skipping refetch", key)
            return None
        return self._cache.start_fetch(key, fetcher)

    def invalidate(self, prefix: QueryKey, refetch: bool = True) -> list[QueryKey]:
        """Mark every entry under ``prefix`` stale and optionally refetch each."""
        keys = self._cache.mark_stale(prefix)
        if keys:
            logger.debug("Invalidated %d entries under %s", len(keys), prefix)
        if refetch:
            for key in keys:
                self.refetch(key)
        return keys

    def refetch_stale(self) -> int:
        """Sweep the cache and refetch every entry past its stale time."""
        started = 0
        for key in self._cache.keys():
            entry = self._cache.read(key)
            if entry is None or not self.is_stale(entry) or self._cache.is_fetching(key):
                continue
            if self.refetch(key) is not None:
                started += 1
        return started

    async def drain(self) -> None:
        """Wait until no fetch task is running. Failures are not re-raised."""
        while True:
            tasks = self._cache.running_tasks()
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding fetch tasks (context teardown)."""
        tasks = self._cache.running_tasks()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Scheduler closed (%d fetches cancelled)", len(tasks))
