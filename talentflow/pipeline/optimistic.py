"""Pure transforms over cached payloads, used as optimistic mutation updates.

Cached payloads come in two shapes: a detail ``{"data": {...}}`` and a list
``{"data": [...], "total": ...}`` (paginated or not). Every helper returns a
new payload and leaves its input untouched.
"""

from typing import Any

from talentflow.core.ordering import apply_reorder_to_items


def _with_data(payload: dict[str, Any], data: Any, total_delta: int = 0) -> dict[str, Any]:
    updated = {**payload, "data": data}
    if total_delta and isinstance(payload.get("total"), int):
        updated["total"] = max(0, payload["total"] + total_delta)
    return updated


def patch_record(payload: dict[str, Any], record_id: str, patch: dict[str, Any]) -> dict[str, Any]:
    """Merge ``patch`` into the record with ``record_id`` wherever it appears."""
    data = payload.get("data")
    if isinstance(data, dict):
        if data.get("id") != record_id:
            return payload
        return _with_data(payload, {**data, **patch})
    if isinstance(data, list):
        return _with_data(
            payload,
            [{**item, **patch} if item.get("id") == record_id else item for item in data],
        )
    return payload


def remove_record(payload: dict[str, Any], record_id: str) -> dict[str, Any]:
    data = payload.get("data")
    if not isinstance(data, list):
        return payload
    kept = [item for item in data if item.get("id") != record_id]
    return _with_data(payload, kept, total_delta=len(kept) - len(data))


def drop_unmatched(payload: dict[str, Any], field: str, value: Any) -> dict[str, Any]:
    """Remove list items whose ``field`` no longer equals the view's filter ``value``."""
    data = payload.get("data")
    if value is None or not isinstance(data, list):
        return payload
    kept = [item for item in data if item.get(field) == value]
    return _with_data(payload, kept, total_delta=len(kept) - len(data))


def prepend_record(payload: dict[str, Any], record: dict[str, Any]) -> dict[str, Any]:
    data = payload.get("data")
    if not isinstance(data, list):
        return payload
    return _with_data(payload, [record, *data], total_delta=1)


def append_record(payload: dict[str, Any], record: dict[str, Any]) -> dict[str, Any]:
    data = payload.get("data")
    if not isinstance(data, list):
        return payload
    return _with_data(payload, [*data, record], total_delta=1)


def reorder_items(payload: dict[str, Any], from_order: int, to_order: int) -> dict[str, Any]:
    data = payload.get("data")
    if not isinstance(data, list):
        return payload
    return _with_data(payload, apply_reorder_to_items(data, from_order, to_order))
