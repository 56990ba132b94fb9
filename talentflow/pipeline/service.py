"""Shared plumbing for the resource services (jobs, candidates, assessments, notes)."""

from collections.abc import Awaitable, Callable
from typing import Any

from talentflow.cache.query_cache import QueryKey
from talentflow.cache.scheduler import ReconciliationScheduler
from talentflow.core.errors import ValidationError
from talentflow.core.schemas import new_id
from talentflow.pipeline.coordinator import KeyedMutex, MutationCoordinator, MutationIntent, MutationResult
from talentflow.transport.client import ApiClient

TEMP_ID_PREFIX = "temp-"


def temp_id() -> str:
    """Placeholder id for a record that exists only optimistically."""
    return f"{TEMP_ID_PREFIX}{new_id()}"


def require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        msg = f"{field} is required"
        raise ValidationError(msg)
    return value.strip()


class ResourceService:
    """Reads go through the scheduler, writes through the coordinator."""

    def __init__(
        self,
        api: ApiClient,
        scheduler: ReconciliationScheduler,
        coordinator: MutationCoordinator,
        mutex: KeyedMutex | None = None,
    ) -> None:
        self.api = api
        self.scheduler = scheduler
        self.coordinator = coordinator
        self.mutex = mutex or KeyedMutex()

    async def _query(self, key: QueryKey, fetch: Callable[[], Awaitable[Any]]) -> Any:
        return await self.scheduler.query(key, fetch)

    async def _mutate(self, intent: MutationIntent) -> MutationResult:
        return await self.coordinator.mutate(intent)
