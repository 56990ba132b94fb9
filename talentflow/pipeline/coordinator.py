"""Mutation coordinator: optimistic apply, commit or rollback, then reconcile.

Lifecycle of one mutation:
  1. Validate the intent (ValidationError rejects it before anything is touched)
  2. Logically cancel in-flight fetches for the affected keys
  3. Snapshot the affected cache entries
  4. Apply the intent's pure transform to each entry (visible immediately)
  5. Send the real write through the API client
  6a. Success: drop the snapshot, mark the keys stale, refetch them
  6b. Failure: restore the snapshot and hand the error back

A later mutation snapshots whatever is visible when it starts, including an
earlier mutation's pending optimistic value; if it rolls back it returns to
that value while the earlier one is still pending. When no other mutation on
the key is pending any more, the earlier one has already settled and its
refetch may have landed, so a restored speculative value is demoted to a stale
non-optimistic entry and refetched. Mutations on the same record should be
serialized by the caller (see KeyedMutex); the coordinator does not lock
anything itself.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Hashable, Iterable
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any

from talentflow.cache.query_cache import EntryStatus, QueryCache, QueryKey, Snapshot
from talentflow.cache.scheduler import ReconciliationScheduler
from talentflow.core.errors import ValidationError
from talentflow.transport.client import ApiClient

logger = logging.getLogger(__name__)

Transform = Callable[[QueryKey, Any], Any]
Perform = Callable[[ApiClient], Awaitable[Any]]


class MutationPhase(str, Enum):
    PENDING = "pending"
    OPTIMISTIC_APPLIED = "optimistic_applied"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class MutationIntent:
    """What a mutation wants to do.

    Args:
        name: Label for logs.
        targets: Key prefixes whose cached entries get the optimistic transform.
        transform: Pure ``(key, previous data) -> new data``. Must not mutate
            its input.
        perform: Coroutine doing the real write through the API client.
        invalidates: Extra prefixes to reconcile after a commit (views the
            transform cannot predict, e.g. a timeline).
        validate: Optional check raising ValidationError before anything runs.
    """

    def __init__(
        self,
        name: str,
        targets: Iterable[QueryKey],
        transform: Transform,
        perform: Perform,
        invalidates: Iterable[QueryKey] = (),
        validate: Callable[[], None] | None = None,
    ) -> None:
        self.name = name
        self.targets = list(targets)
        self.transform = transform
        self.perform = perform
        self.invalidates = list(invalidates)
        self.validate = validate


class MutationContext:
    """Per-mutation state, alive from start until the mutation settles."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.phase = MutationPhase.PENDING
        self.affected_keys: set[QueryKey] = set()
        self.snapshot: Snapshot = {}


class MutationResult:
    """Settled outcome of a mutation: COMMITTED with a value or ROLLED_BACK with an error."""

    def __init__(
        self,
        name: str,
        phase: MutationPhase,
        affected_keys: set[QueryKey],
        value: Any = None,
        error: BaseException | None = None,
    ) -> None:
        self.name = name
        self.phase = phase
        self.affected_keys = affected_keys
        self.value = value
        self.error = error

    @property
    def committed(self) -> bool:
        return self.phase == MutationPhase.COMMITTED

    def unwrap(self) -> Any:
        """Return the committed value or re-raise the error that rolled it back."""
        if self.error is not None:
            raise self.error
        return self.value

    def __repr__(self) -> str:
        return f"MutationResult({self.name!r}, {self.phase.value}, error={self.error!r})"


class MutationCoordinator:
    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        scheduler: ReconciliationScheduler,
    ) -> None:
        self._api = api
        self._cache = cache
        self._scheduler = scheduler
        self.committed = 0
        self.rolled_back = 0
        # Number of unsettled mutations holding an optimistic write per key.
        self._pending: dict[QueryKey, int] = {}

    def _resolve(self, targets: list[QueryKey]) -> list[QueryKey]:
        keys: list[QueryKey] = []
        for prefix in targets:
            for key in self._cache.keys_matching(prefix):
                if key not in keys:
                    keys.append(key)
        return keys

    def _settle(self, context: MutationContext) -> None:
        for key in context.affected_keys:
            remaining = self._pending.get(key, 0) - 1
            if remaining > 0:
                self._pending[key] = remaining
            else:
                self._pending.pop(key, None)

    def _rollback(self, context: MutationContext, error: BaseException) -> MutationResult:
        self._settle(context)
        restored: Snapshot = {}
        orphaned: list[QueryKey] = []
        for key, entry in context.snapshot.items():
            if entry.is_optimistic and key not in self._pending:
                entry = entry.model_copy(
                    update={"is_optimistic": False, "status": EntryStatus.STALE},
                )
                orphaned.append(key)
            restored[key] = entry
        self._cache.restore(restored)
        for key in orphaned:
            self._scheduler.refetch(key)

        context.phase = MutationPhase.ROLLED_BACK
        self.rolled_back += 1
        logger.warning(
            "Mutation '%s' rolled back (%d keys restored, %d refetched): %s",
            context.name, len(context.snapshot), len(orphaned), error,
        )
        return MutationResult(context.name, context.phase, context.affected_keys, error=error)

    async def mutate(self, intent: MutationIntent) -> MutationResult:
        context = MutationContext(intent.name)

        if intent.validate is not None:
            try:
                intent.validate()
            except ValidationError as e:
                context.phase = MutationPhase.ROLLED_BACK
                self.rolled_back += 1
                logger.info("Mutation '%s' rejected: %s", intent.name, e)
                return MutationResult(intent.name, context.phase, set(), error=e)

        for prefix in intent.targets:
            self._cache.cancel(prefix)
        keys = self._resolve(intent.targets)
        context.affected_keys = set(keys)
        context.snapshot = self._cache.snapshot(keys)
        for key in keys:
            self._pending[key] = self._pending.get(key, 0) + 1

        try:
            for key in keys:
                entry = self._cache.read(key)
                if entry is not None:
                    self._cache.write(key, intent.transform(key, entry.data), optimistic=True)
        except Exception as e:
            return self._rollback(context, e)
        context.phase = MutationPhase.OPTIMISTIC_APPLIED
        logger.debug("Mutation '%s' applied optimistically to %d keys", intent.name, len(keys))

        try:
            value = await intent.perform(self._api)
        except asyncio.CancelledError as e:
            self._rollback(context, e)
            raise
        except Exception as e:
            return self._rollback(context, e)

        self._settle(context)
        context.snapshot = {}
        context.phase = MutationPhase.COMMITTED
        self.committed += 1
        logger.info("Mutation '%s' committed", intent.name)
        for prefix in (*intent.targets, *intent.invalidates):
            self._scheduler.invalidate(prefix)
        return MutationResult(intent.name, context.phase, context.affected_keys, value=value)


class KeyedMutex:
    """One asyncio.Lock per logical record, for callers that serialize mutations.

    Usage::

        async with mutex.hold(("candidate", candidate_id)):
            await coordinator.mutate(intent)
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._holders: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # The last holder or waiter to leave drops the lock.
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]
