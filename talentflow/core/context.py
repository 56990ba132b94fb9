"""Application context: wires store, transport, cache and services for one run."""

import logging
import random
import sqlite3
from types import TracebackType

from talentflow.cache.query_cache import QueryCache
from talentflow.cache.scheduler import ReconciliationScheduler
from talentflow.core.config import Settings
from talentflow.core.db import init_db
from talentflow.core.ordering import check_collection_order
from talentflow.pipeline.assessments import AssessmentsService
from talentflow.pipeline.candidates import CandidatesService
from talentflow.pipeline.coordinator import KeyedMutex, MutationCoordinator
from talentflow.pipeline.jobs import JobsService
from talentflow.pipeline.notes import NotesService
from talentflow.transport.client import ApiClient
from talentflow.transport.clock import Clock, SystemClock
from talentflow.transport.handlers import Backend
from talentflow.transport.simulator import TransportPolicy, TransportSimulator

logger = logging.getLogger(__name__)


class AppContext:
    """Async context manager that owns one store connection and everything built on it.

    Usage::

        async with AppContext(settings) as app:
            page = await app.jobs.list_jobs()
            result = await app.jobs.reorder_jobs(0, 3)
    """

    def __init__(
        self,
        settings: Settings,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings
        self.clock = clock or SystemClock()
        self._rng = rng
        self._conn: sqlite3.Connection | None = None
        self._jobs: JobsService | None = None
        self.backend: Backend | None = None
        self.transport: TransportSimulator | None = None
        self.api: ApiClient | None = None
        self.cache: QueryCache | None = None
        self.scheduler: ReconciliationScheduler | None = None
        self.coordinator: MutationCoordinator | None = None
        self.candidates: CandidatesService | None = None
        self.assessments: AssessmentsService | None = None
        self.notes: NotesService | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            msg = "AppContext not entered - use 'async with'"
            raise RuntimeError(msg)
        return self._conn

    @property
    def jobs(self) -> JobsService:
        if self._jobs is None:
            msg = "AppContext not entered - use 'async with'"
            raise RuntimeError(msg)
        return self._jobs

    async def __aenter__(self) -> "AppContext":
        self._conn = init_db(self._settings.database.path)
        check_collection_order(self._conn, "jobs")

        self.backend = Backend(self._conn)
        policy = TransportPolicy.from_config(self._settings.transport, clock=self.clock, rng=self._rng)
        self.transport = TransportSimulator(self.backend.dispatch, policy)
        self.api = ApiClient(self.transport)
        self.cache = QueryCache(self.clock)
        self.scheduler = ReconciliationScheduler(self.cache, self._settings.cache.stale_time_ms)
        self.coordinator = MutationCoordinator(self.api, self.cache, self.scheduler)

        mutex = KeyedMutex()
        parts = (self.api, self.scheduler, self.coordinator, mutex)
        self._jobs = JobsService(*parts)
        self.candidates = CandidatesService(*parts)
        self.assessments = AssessmentsService(*parts)
        self.notes = NotesService(*parts)
        logger.debug("AppContext ready (store=%s)", self._settings.database.path)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.scheduler is not None:
            await self.scheduler.close()
        if self.cache is not None:
            self.cache.clear()
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self._jobs = None
