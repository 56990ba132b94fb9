"""Tests for the persistent store: collections, indexes, partial updates."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from talentflow.core.db import (
    bulk_put,
    clear_all,
    count_records,
    delete_record,
    find_by_index,
    get_record,
    init_db,
    list_records,
    put_record,
    update_fields,
)
from talentflow.core.errors import NotFoundError, ValidationError
from talentflow.core.schemas import Candidate, Job, Note

BASE = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _job(order: int, **kw: object) -> Job:
    defaults: dict[str, object] = {
        "id": f"job-{order}",
        "title": f"Job {order}",
        "slug": f"job-{order}",
        "order": order,
        "created_at": BASE + timedelta(minutes=order),
    }
    defaults.update(kw)
    return Job(**defaults)  # type: ignore[arg-type]


@pytest.fixture()
def db() -> sqlite3.Connection:
    return init_db(":memory:")


class TestInitDb:
    def test_creates_collections(self, db: sqlite3.Connection) -> None:
        tables = {
            row[0]
            for row in db.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        }
        assert {"jobs", "candidates", "timeline", "notes", "assessments",
                "assessment_responses"} <= tables

    def test_idempotent(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        p = tmp_path / "nested" / "store.db"
        init_db(p).close()
        conn = init_db(p)
        assert count_records(conn, "jobs") == 0
        conn.close()


class TestPutAndGet:
    def test_round_trip(self, db: sqlite3.Connection) -> None:
        job = _job(0, tags=["Remote", "Senior"], description="Build things")
        put_record(db, "jobs", job)
        assert get_record(db, "jobs", job.id) == job

    def test_replace_same_id(self, db: sqlite3.Connection) -> None:
        put_record(db, "jobs", _job(0))
        put_record(db, "jobs", _job(0, title="Renamed"))
        assert count_records(db, "jobs") == 1
        assert get_record(db, "jobs", "job-0").title == "Renamed"

    def test_missing_record(self, db: sqlite3.Connection) -> None:
        with pytest.raises(NotFoundError):
            get_record(db, "jobs", "nope")

    def test_unknown_collection(self, db: sqlite3.Connection) -> None:
        with pytest.raises(ValidationError):
            get_record(db, "widgets", "x")

    def test_wrong_record_type(self, db: sqlite3.Connection) -> None:
        note = Note(candidate_id="c1", content="hi")
        with pytest.raises(ValidationError):
            put_record(db, "jobs", note)

    def test_bulk_put(self, db: sqlite3.Connection) -> None:
        assert bulk_put(db, "jobs", [_job(i) for i in range(5)]) == 5
        assert count_records(db, "jobs") == 5


class TestQueries:
    def test_list_sorted_by_order(self, db: sqlite3.Connection) -> None:
        bulk_put(db, "jobs", [_job(2), _job(0), _job(1)])
        assert [j.order for j in list_records(db, "jobs", order_by="order")] == [0, 1, 2]

    def test_list_descending_dates(self, db: sqlite3.Connection) -> None:
        bulk_put(db, "jobs", [_job(i) for i in range(3)])
        jobs = list_records(db, "jobs", order_by="created_at", descending=True)
        assert [j.id for j in jobs] == ["job-2", "job-1", "job-0"]

    def test_list_with_predicate(self, db: sqlite3.Connection) -> None:
        bulk_put(db, "jobs", [_job(0), _job(1, status="archived")])
        active = list_records(db, "jobs", predicate=lambda j: j.status == "active")
        assert [j.id for j in active] == ["job-0"]

    def test_order_by_unindexed_field(self, db: sqlite3.Connection) -> None:
        with pytest.raises(ValidationError):
            list_records(db, "jobs", order_by="title")

    def test_find_by_index(self, db: sqlite3.Connection) -> None:
        bulk_put(db, "candidates", [
            Candidate(id="c1", name="Ada", email="a@x.io", job_id="j1", applied_at=BASE),
            Candidate(id="c2", name="Alan", email="b@x.io", job_id="j2", applied_at=BASE),
            Candidate(id="c3", name="Grace", email="c@x.io", job_id="j1",
                      applied_at=BASE + timedelta(days=1)),
        ])
        found = find_by_index(db, "candidates", "job_id", "j1",
                              order_by="applied_at", descending=True)
        assert [c.id for c in found] == ["c3", "c1"]

    def test_find_by_enum_value(self, db: sqlite3.Connection) -> None:
        put_record(db, "candidates", Candidate(id="c1", name="Ada", email="a@x.io",
                                               job_id="j1", stage="offer"))
        assert len(find_by_index(db, "candidates", "stage", "offer")) == 1

    def test_find_by_unindexed_field(self, db: sqlite3.Connection) -> None:
        with pytest.raises(ValidationError):
            find_by_index(db, "candidates", "name", "Ada")


class TestUpdateFields:
    def test_partial_update(self, db: sqlite3.Connection) -> None:
        put_record(db, "jobs", _job(0, tags=["Remote"]))
        updated = update_fields(db, "jobs", "job-0", {"title": "New title", "order": 3})
        assert updated.title == "New title"
        assert updated.tags == ["Remote"]
        stored = get_record(db, "jobs", "job-0")
        assert stored.order == 3
        assert find_by_index(db, "jobs", "order", 3)[0].id == "job-0"

    def test_unknown_field(self, db: sqlite3.Connection) -> None:
        put_record(db, "jobs", _job(0))
        with pytest.raises(ValidationError):
            update_fields(db, "jobs", "job-0", {"salary": 1})

    def test_id_is_immutable(self, db: sqlite3.Connection) -> None:
        put_record(db, "jobs", _job(0))
        with pytest.raises(ValidationError):
            update_fields(db, "jobs", "job-0", {"id": "other"})

    def test_invalid_value_leaves_record(self, db: sqlite3.Connection) -> None:
        put_record(db, "jobs", _job(0))
        with pytest.raises(ValidationError):
            update_fields(db, "jobs", "job-0", {"order": -5})
        assert get_record(db, "jobs", "job-0").order == 0

    def test_missing_record(self, db: sqlite3.Connection) -> None:
        with pytest.raises(NotFoundError):
            update_fields(db, "jobs", "nope", {"title": "x"})


class TestDelete:
    def test_delete(self, db: sqlite3.Connection) -> None:
        put_record(db, "jobs", _job(0))
        delete_record(db, "jobs", "job-0")
        assert count_records(db, "jobs") == 0

    def test_delete_missing(self, db: sqlite3.Connection) -> None:
        with pytest.raises(NotFoundError):
            delete_record(db, "jobs", "job-0")

    def test_clear_all(self, db: sqlite3.Connection) -> None:
        bulk_put(db, "jobs", [_job(i) for i in range(3)])
        put_record(db, "notes", Note(candidate_id="c1", content="hi"))
        clear_all(db)
        assert count_records(db, "jobs") == 0
        assert count_records(db, "notes") == 0
