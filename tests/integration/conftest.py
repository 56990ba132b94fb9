"""Fixtures for end-to-end tests: a seeded on-disk store behind an AppContext."""

from collections.abc import AsyncIterator, Callable
from pathlib import Path

import pytest

from talentflow.core.config import (
    CacheConfig,
    DatabaseConfig,
    SeedConfig,
    Settings,
    TransportConfig,
)
from talentflow.core.context import AppContext
from talentflow.core.db import init_db
from talentflow.core.seed import seed_database
from talentflow.transport.clock import ManualClock

STALE_MS = 30_000.0


def make_settings(
    tmp_path: Path,
    *,
    latency_ms: tuple[float, float] = (0.0, 0.0),
    failure_probability: float = 0.0,
    jobs: int = 6,
) -> Settings:
    return Settings(
        database=DatabaseConfig(path=str(tmp_path / "talentflow.db")),
        transport=TransportConfig(
            latency_min_ms=latency_ms[0],
            latency_max_ms=latency_ms[1],
            failure_probability=failure_probability,
            seed=1,
        ),
        cache=CacheConfig(stale_time_ms=STALE_MS),
        seed=SeedConfig(jobs=jobs, candidates=12, assessments=2, random_seed=42),
    )


def seed_store(settings: Settings) -> None:
    conn = init_db(settings.database.path)
    try:
        seed_database(conn, settings.seed)
    finally:
        conn.close()


AppFactory = Callable[..., AppContext]


@pytest.fixture()
def open_app(tmp_path: Path) -> AppFactory:
    """Build a seeded AppContext on a ManualClock; enter it with ``async with``."""

    def factory(**overrides: object) -> AppContext:
        settings = make_settings(tmp_path, **overrides)  # type: ignore[arg-type]
        seed_store(settings)
        return AppContext(settings, clock=ManualClock())

    return factory


@pytest.fixture()
async def app(open_app: AppFactory) -> AsyncIterator[AppContext]:
    async with open_app() as ctx:
        yield ctx
