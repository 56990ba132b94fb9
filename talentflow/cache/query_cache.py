"""In-memory query cache with per-key fetch coalescing and logical cancellation.

Entries are immutable values replaced wholesale, so a reader never observes a
half-updated entry. Each key carries a generation counter: a fetch remembers
the generation it started under and may only write its result if the counter
has not moved since. Cancelling a key (as a mutation does when it starts)
bumps the counter, which turns every fetch already in flight for that key into
a no-op on arrival without aborting the underlying transport call.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from talentflow.transport.clock import Clock

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(sorted(str(v) for v in value))
    return value


class QueryKey(BaseModel):
    """Identity of a cached view: resource name plus canonical parameters.

    Build keys with :meth:`of`, which drops ``None`` parameters, sorts the rest
    by name and turns collections into sorted tuples, so equal filters always
    produce equal keys.
    """

    model_config = ConfigDict(frozen=True)

    resource: str
    params: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, resource: str, **params: Any) -> "QueryKey":
        items = tuple(
            (name, _freeze(params[name]))
            for name in sorted(params)
            if params[name] is not None
        )
        return cls(resource=resource, params=items)

    def param(self, name: str, default: Any = None) -> Any:
        return dict(self.params).get(name, default)

    def matches(self, prefix: "QueryKey") -> bool:
        """True if ``prefix`` names this key or a broader view containing it."""
        return self.resource == prefix.resource and set(prefix.params) <= set(self.params)

    def __str__(self) -> str:
        if not self.params:
            return self.resource
        query = "&".join(f"{name}={value}" for name, value in self.params)
        return f"{self.resource}?{query}"


class EntryStatus(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    FETCHING = "fetching"


class CacheEntry(BaseModel):
    """Last known result for one query key. Replaced, never mutated."""

    model_config = ConfigDict(frozen=True)

    key: QueryKey
    data: Any
    status: EntryStatus = EntryStatus.FRESH
    last_updated_at: float
    is_optimistic: bool = False


Snapshot = dict[QueryKey, CacheEntry]


class QueryCache:
    """Map from QueryKey to CacheEntry, plus the fetches that feed it."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._generations: dict[QueryKey, int] = {}
        self._inflight: dict[QueryKey, asyncio.Task[Any]] = {}
        self._running: set[asyncio.Task[Any]] = set()
        self._fetchers: dict[QueryKey, Fetcher] = {}
        self.fetch_count = 0

    # --- entries ----------------------------------------------------------

    def read(self, key: QueryKey) -> CacheEntry | None:
        return self._entries.get(key)

    def write(self, key: QueryKey, data: Any, *, optimistic: bool = False) -> CacheEntry:
        entry = CacheEntry(
            key=key,
            data=data,
            status=EntryStatus.FRESH,
            last_updated_at=self._clock.now(),
            is_optimistic=optimistic,
        )
        self._entries[key] = entry
        return entry

    def keys(self) -> list[QueryKey]:
        return list(self._entries)

    def keys_matching(self, prefix: QueryKey) -> list[QueryKey]:
        return [key for key in self._entries if key.matches(prefix)]

    def is_fresh(self, entry: CacheEntry, stale_time_ms: float) -> bool:
        if entry.status != EntryStatus.FRESH:
            return False
        if entry.is_optimistic:
            return True
        return self._clock.now() - entry.last_updated_at < stale_time_ms

    def mark_stale(self, prefix: QueryKey) -> list[QueryKey]:
        """Flip every matching entry to stale. Data is kept for stale reads."""
        keys = self.keys_matching(prefix)
        for key in keys:
            entry = self._entries[key]
            if entry.status == EntryStatus.FRESH:
                self._entries[key] = entry.model_copy(update={"status": EntryStatus.STALE})
        return keys

    def snapshot(self, keys: list[QueryKey]) -> Snapshot:
        return {
            key: self._entries[key].model_copy(deep=True)
            for key in keys
            if key in self._entries
        }

    def restore(self, snapshot: Snapshot) -> None:
        for key, entry in snapshot.items():
            self._entries[key] = entry

    def clear(self) -> None:
        """Process-wide reset: forget entries, fetchers and in-flight fetches."""
        for key in list(self._generations) + list(self._inflight):
            self._bump(key)
        self._entries.clear()
        self._inflight.clear()
        self._fetchers.clear()

    # --- fetches ----------------------------------------------------------

    def fetcher_for(self, key: QueryKey) -> Fetcher | None:
        return self._fetchers.get(key)

    def is_fetching(self, key: QueryKey) -> bool:
        return key in self._inflight

    def running_tasks(self) -> set[asyncio.Task[Any]]:
        """Every fetch task still executing, including logically cancelled ones."""
        return set(self._running)

    def _bump(self, key: QueryKey) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def cancel(self, prefix: QueryKey) -> list[QueryKey]:
        """Make in-flight fetches for matching keys irrelevant.

        Their transport calls run to completion but the results are dropped.
        """
        cancelled = [key for key in self._inflight if key.matches(prefix)]
        for key in set(cancelled) | set(self.keys_matching(prefix)):
            self._bump(key)
        for key in cancelled:
            del self._inflight[key]
            entry = self._entries.get(key)
            if entry is not None and entry.status == EntryStatus.FETCHING:
                self._entries[key] = entry.model_copy(update={"status": EntryStatus.STALE})
            logger.debug("Cancelled in-flight fetch for %s", key)
        return cancelled

    def start_fetch(self, key: QueryKey, fetcher: Fetcher) -> asyncio.Task[Any]:
        """Start a fetch for ``key`` or join the one already in flight."""
        self._fetchers[key] = fetcher
        inflight = self._inflight.get(key)
        if inflight is not None:
            return inflight

        generation = self._generations.get(key, 0)
        entry = self._entries.get(key)
        if entry is not None:
            self._entries[key] = entry.model_copy(update={"status": EntryStatus.FETCHING})
        task = asyncio.create_task(self._run_fetch(key, fetcher, generation))
        self._inflight[key] = task
        self._running.add(task)
        task.add_done_callback(self._fetch_done)
        self.fetch_count += 1
        logger.debug("Fetching %s", key)
        return task

    async def _run_fetch(self, key: QueryKey, fetcher: Fetcher, generation: int) -> Any:
        try:
            data = await fetcher()
        except Exception as e:
            if self._generations.get(key, 0) == generation:
                self._inflight.pop(key, None)
                entry = self._entries.get(key)
                if entry is not None and entry.status == EntryStatus.FETCHING:
                    self._entries[key] = entry.model_copy(update={"status": EntryStatus.STALE})
            logger.warning("Fetch for %s failed: %s", key, e)
            raise

        if self._generations.get(key, 0) != generation:
            logger.debug("Discarding superseded fetch result for %s", key)
            return data
        self._inflight.pop(key, None)
        self.write(key, data)
        return data

    def _fetch_done(self, task: asyncio.Task[Any]) -> None:
        self._running.discard(task)
        # Retrieve the exception so background failures are not reported as
        # unhandled; the failure itself was already logged by _run_fetch.
        if not task.cancelled():
            task.exception()

    async def get_or_fetch(self, key: QueryKey, fetcher: Fetcher, stale_time_ms: float) -> Any:
        """Stale-while-revalidate read.

        Fresh entry: returned without any fetch. Stale entry: returned at once
        while one background fetch refreshes it. No entry: wait for the first
        fetch (shared with any concurrent caller).
        """
        self._fetchers[key] = fetcher
        entry = self._entries.get(key)
        if entry is not None:
            if not self.is_fresh(entry, stale_time_ms):
                self.start_fetch(key, fetcher)
            return entry.data
        task = self.start_fetch(key, fetcher)
        return await asyncio.shield(task)
