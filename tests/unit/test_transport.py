"""Tests for clocks, the transport simulator and the API client."""

import asyncio
import random
import sqlite3
from unittest.mock import MagicMock

import pytest

from talentflow.core.config import TransportConfig
from talentflow.core.db import count_records, init_db
from talentflow.core.errors import NotFoundError, TransientServerError, ValidationError
from talentflow.transport.client import ApiClient
from talentflow.transport.clock import ManualClock, SystemClock
from talentflow.transport.handlers import Backend
from talentflow.transport.simulator import Request, TransportPolicy, TransportSimulator


def _simulator(
    conn: sqlite3.Connection,
    clock: ManualClock,
    failure_probability: float = 0.0,
    latency: tuple[float, float] = (0.0, 0.0),
) -> TransportSimulator:
    policy = TransportPolicy(latency, failure_probability, rng=random.Random(7), clock=clock)
    return TransportSimulator(Backend(conn).dispatch, policy)


@pytest.fixture()
def db() -> sqlite3.Connection:
    return init_db(":memory:")


# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------


class TestManualClock:
    async def test_sleepers_wake_in_deadline_order(self) -> None:
        clock = ManualClock()
        woke: list[str] = []

        async def sleeper(name: str, ms: float) -> None:
            await clock.sleep(ms)
            woke.append(name)

        tasks = [asyncio.create_task(sleeper("slow", 300)),
                 asyncio.create_task(sleeper("fast", 100))]
        await clock.advance(150)
        assert woke == ["fast"]
        assert clock.now() == 150
        await clock.advance(200)
        assert woke == ["fast", "slow"]
        await asyncio.gather(*tasks)

    async def test_run_until_idle(self) -> None:
        clock = ManualClock()
        task = asyncio.create_task(clock.sleep(5000))
        await clock.run_until_idle()
        await task
        assert clock.now() == 5000
        assert clock.pending == 0

    async def test_zero_sleep_does_not_block(self) -> None:
        clock = ManualClock()
        await clock.sleep(0)
        assert clock.now() == 0

    async def test_system_clock_moves_forward(self) -> None:
        clock = SystemClock()
        start = clock.now()
        await clock.sleep(1)
        assert clock.now() >= start


# ---------------------------------------------------------------------------
# Transport policy and simulator
# ---------------------------------------------------------------------------


class TestTransportPolicy:
    def test_invalid_range(self) -> None:
        with pytest.raises(ValueError):
            TransportPolicy((500.0, 100.0))

    def test_invalid_probability(self) -> None:
        with pytest.raises(ValueError):
            TransportPolicy(failure_probability=1.2)

    def test_latency_within_range(self) -> None:
        policy = TransportPolicy((200.0, 1200.0), rng=random.Random(1))
        draws = [policy.draw_latency() for _ in range(200)]
        assert all(200.0 <= d <= 1200.0 for d in draws)

    def test_seeded_rng_is_reproducible(self) -> None:
        a = TransportPolicy.from_config(TransportConfig(seed=3))
        b = TransportPolicy.from_config(TransportConfig(seed=3))
        assert [a.draw_latency() for _ in range(5)] == [b.draw_latency() for _ in range(5)]


class TestTransportSimulator:
    async def test_waits_for_latency(self, db: sqlite3.Connection) -> None:
        clock = ManualClock()
        sim = _simulator(db, clock, latency=(400.0, 400.0))
        task = asyncio.create_task(sim.perform(Request(method="GET", path="/jobs")))
        await clock.advance(399)
        assert not task.done()
        await clock.advance(1)
        response = await task
        assert response.ok
        assert response.body["total"] == 0

    async def test_write_failure_never_reaches_store(self, db: sqlite3.Connection) -> None:
        dispatch = MagicMock()
        policy = TransportPolicy((0.0, 0.0), 1.0, clock=ManualClock())
        sim = TransportSimulator(dispatch, policy)
        response = await sim.perform(Request(method="POST", path="/jobs", body={"title": "QA"}))
        assert response.status == 500
        assert response.body == {"error": "Failed to POST /jobs. Please try again."}
        dispatch.assert_not_called()
        assert sim.failures == 1

    async def test_reads_never_fail(self, db: sqlite3.Connection) -> None:
        sim = _simulator(db, ManualClock(), failure_probability=1.0)
        for _ in range(20):
            response = await sim.perform(Request(method="GET", path="/jobs"))
            assert response.ok
        assert sim.failures == 0
        assert sim.calls == 20

    async def test_domain_error_becomes_response(self, db: sqlite3.Connection) -> None:
        sim = _simulator(db, ManualClock())
        response = await sim.perform(Request(method="GET", path="/jobs/missing"))
        assert response.status == 404
        assert response.body == {"error": "Job not found"}

    async def test_failure_rate_follows_probability(self, db: sqlite3.Connection) -> None:
        dispatch = MagicMock(return_value={})
        policy = TransportPolicy((0.0, 0.0), 0.25, rng=random.Random(99), clock=ManualClock())
        sim = TransportSimulator(dispatch, policy)
        for _ in range(400):
            await sim.perform(Request(method="PATCH", path="/jobs/x", body={}))
        assert 60 <= sim.failures <= 140
        assert dispatch.call_count == 400 - sim.failures


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


class TestApiClient:
    async def test_create_and_get_job(self, db: sqlite3.Connection) -> None:
        api = ApiClient(_simulator(db, ManualClock()))
        created = (await api.create_job({"title": "Data Engineer", "tags": ["Remote"]}))["data"]
        assert created["slug"] == "data-engineer"
        assert created["order"] == 0
        fetched = (await api.get_job(created["id"]))["data"]
        assert fetched == created

    async def test_error_status_raises_domain_error(self, db: sqlite3.Connection) -> None:
        api = ApiClient(_simulator(db, ManualClock()))
        with pytest.raises(NotFoundError, match="Candidate not found"):
            await api.get_candidate("nope")
        with pytest.raises(ValidationError):
            await api.create_job({"title": ""})

    async def test_injected_failure_raises_transient(self, db: sqlite3.Connection) -> None:
        api = ApiClient(_simulator(db, ManualClock(), failure_probability=1.0))
        with pytest.raises(TransientServerError, match="Please try again"):
            await api.create_job({"title": "QA Engineer"})
        assert count_records(db, "jobs") == 0

    async def test_list_params_are_joined(self, db: sqlite3.Connection) -> None:
        api = ApiClient(_simulator(db, ManualClock()))
        await api.create_job({"title": "A", "tags": ["Remote"]})
        await api.create_job({"title": "B", "tags": ["Onsite"]})
        page = await api.list_jobs(tags=["remote", "hybrid"])
        assert [j["title"] for j in page["data"]] == ["A"]
