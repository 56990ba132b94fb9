"""SQLite persistent store: keyed collections of JSON documents with secondary indexes.

Each collection is a table holding the record body as JSON plus a handful of
extracted columns that back indexed lookups and ordering. Every function call
commits on its own; there are no cross-call transactions.
"""

import sqlite3
from collections.abc import Callable, Iterable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from talentflow.core.errors import NotFoundError, ValidationError
from talentflow.core.schemas import (
    Assessment,
    AssessmentResponse,
    Candidate,
    Job,
    Note,
    TimelineEvent,
)

COLLECTIONS: dict[str, type[BaseModel]] = {
    "jobs": Job,
    "candidates": Candidate,
    "timeline": TimelineEvent,
    "notes": Note,
    "assessments": Assessment,
    "assessment_responses": AssessmentResponse,
}

# Secondary index columns per collection (Python field names).
INDEXES: dict[str, tuple[str, ...]] = {
    "jobs": ("slug", "status", "order", "created_at"),
    "candidates": ("job_id", "email", "stage", "applied_at"),
    "timeline": ("candidate_id", "created_at"),
    "notes": ("candidate_id", "created_at"),
    "assessments": ("job_id", "created_at"),
    "assessment_responses": ("assessment_id", "candidate_id", "submitted_at"),
}

Predicate = Callable[[Any], bool]


def _table_ddl(collection: str) -> list[str]:
    columns = "".join(f',\n    "{name}"' for name in INDEXES[collection])
    statements = [
        f"""
        CREATE TABLE IF NOT EXISTS {collection} (
            id   TEXT PRIMARY KEY,
            body TEXT NOT NULL{columns}
        );
        """
    ]
    for name in INDEXES[collection]:
        statements.append(
            f'CREATE INDEX IF NOT EXISTS ix_{collection}_{name} ON {collection}("{name}")'
        )
    return statements


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    if str(path) == ":memory:":
        conn = sqlite3.connect(":memory:")
    else:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path))
        conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    for collection in COLLECTIONS:
        for statement in _table_ddl(collection):
            conn.execute(statement)
    conn.commit()
    return conn


def _model_for(collection: str) -> type[BaseModel]:
    model = COLLECTIONS.get(collection)
    if model is None:
        msg = f"Unknown collection '{collection}'"
        raise ValidationError(msg)
    return model


def _index_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, Enum):
        return value.value
    return value


def _row_params(collection: str, record: BaseModel) -> tuple[Any, ...]:
    fields = record.model_dump()
    body = record.model_dump_json(by_alias=True)
    indexed = tuple(_index_value(fields[name]) for name in INDEXES[collection])
    return (fields["id"], body, *indexed)


def _upsert_sql(collection: str) -> str:
    names = ", ".join(f'"{name}"' for name in INDEXES[collection])
    marks = ", ".join("?" for _ in INDEXES[collection])
    return (
        f"INSERT OR REPLACE INTO {collection} (id, body, {names}) "
        f"VALUES (?, ?, {marks})"
    )


def _decode(collection: str, row: sqlite3.Row) -> Any:
    return _model_for(collection).model_validate_json(row["body"])


def _check_type(collection: str, record: BaseModel) -> None:
    model = _model_for(collection)
    if not isinstance(record, model):
        msg = f"Collection '{collection}' stores {model.__name__}, got {type(record).__name__}"
        raise ValidationError(msg)


def get_record(conn: sqlite3.Connection, collection: str, record_id: str) -> Any:
    """Return one record by id. Raises NotFoundError if absent."""
    _model_for(collection)
    row = conn.execute(
        f"SELECT body FROM {collection} WHERE id = ?", (record_id,)
    ).fetchone()
    if row is None:
        msg = f"{collection} record not found: {record_id}"
        raise NotFoundError(msg)
    return _decode(collection, row)


def _order_clause(collection: str, order_by: str | None, descending: bool) -> str:
    if order_by is None:
        return "ORDER BY rowid"
    if order_by not in INDEXES[collection]:
        msg = f"'{order_by}' is not an indexed field of '{collection}'"
        raise ValidationError(msg)
    direction = "DESC" if descending else "ASC"
    return f'ORDER BY "{order_by}" {direction}, rowid {direction}'


def list_records(
    conn: sqlite3.Connection,
    collection: str,
    predicate: Predicate | None = None,
    order_by: str | None = None,
    descending: bool = False,
) -> list[Any]:
    """Return all records of a collection, optionally filtered and sorted.

    ``order_by`` must name an indexed field; insertion order is used otherwise.
    """
    _model_for(collection)
    order = _order_clause(collection, order_by, descending)
    rows = conn.execute(f"SELECT body FROM {collection} {order}").fetchall()
    records = [_decode(collection, row) for row in rows]
    if predicate is not None:
        records = [r for r in records if predicate(r)]
    return records


def find_by_index(
    conn: sqlite3.Connection,
    collection: str,
    field: str,
    value: Any,
    order_by: str | None = None,
    descending: bool = False,
) -> list[Any]:
    """Equality lookup on a secondary index."""
    _model_for(collection)
    if field not in INDEXES[collection]:
        msg = f"'{field}' is not an indexed field of '{collection}'"
        raise ValidationError(msg)
    order = _order_clause(collection, order_by, descending)
    rows = conn.execute(
        f'SELECT body FROM {collection} WHERE "{field}" = ? {order}',
        (_index_value(value),),
    ).fetchall()
    return [_decode(collection, row) for row in rows]


def count_records(conn: sqlite3.Connection, collection: str) -> int:
    _model_for(collection)
    return conn.execute(f"SELECT COUNT(*) FROM {collection}").fetchone()[0]


def put_record(conn: sqlite3.Connection, collection: str, record: BaseModel) -> None:
    """Insert or replace a single record."""
    _check_type(collection, record)
    conn.execute(_upsert_sql(collection), _row_params(collection, record))
    conn.commit()


def bulk_put(
    conn: sqlite3.Connection,
    collection: str,
    records: Iterable[BaseModel],
) -> int:
    """Insert or replace many records in one transaction. Returns the count."""
    records = list(records)
    for record in records:
        _check_type(collection, record)
    with conn:
        conn.executemany(
            _upsert_sql(collection),
            [_row_params(collection, r) for r in records],
        )
    return len(records)


def update_fields(
    conn: sqlite3.Connection,
    collection: str,
    record_id: str,
    patch: dict[str, Any],
) -> Any:
    """Apply a partial update (Python field names) and return the new record.

    The read-modify-write runs inside one transaction, so a half-applied
    patch is never observable.
    """
    model = _model_for(collection)
    unknown = set(patch) - set(model.model_fields)
    if unknown:
        msg = f"Unknown fields for '{collection}': {sorted(unknown)}"
        raise ValidationError(msg)
    if "id" in patch and patch["id"] != record_id:
        msg = "Record id cannot be changed"
        raise ValidationError(msg)

    with conn:
        current = get_record(conn, collection, record_id)
        data = current.model_dump()
        data.update(patch)
        try:
            updated = model.model_validate(data)
        except PydanticValidationError as e:
            msg = f"Invalid update for {collection}/{record_id}: {e}"
            raise ValidationError(msg) from e
        conn.execute(_upsert_sql(collection), _row_params(collection, updated))
    return updated


def delete_record(conn: sqlite3.Connection, collection: str, record_id: str) -> None:
    """Delete one record. Raises NotFoundError if absent."""
    _model_for(collection)
    cursor = conn.execute(f"DELETE FROM {collection} WHERE id = ?", (record_id,))
    conn.commit()
    if cursor.rowcount == 0:
        msg = f"{collection} record not found: {record_id}"
        raise NotFoundError(msg)


def clear_all(conn: sqlite3.Connection) -> None:
    """Delete every record of every collection in one transaction."""
    with conn:
        for collection in COLLECTIONS:
            conn.execute(f"DELETE FROM {collection}")
