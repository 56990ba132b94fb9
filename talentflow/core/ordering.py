"""Dense positional ordering for reorderable collections.

Invariant: the ``order`` values of a collection are exactly ``{0 .. N-1}``.

A move from ``from_order`` to ``to_order`` shifts the members in between by one
and drops the moved member into the target slot. The shift is written as a
sequence of single-record updates with no enclosing transaction, so an
interrupted move leaves gaps or duplicates behind. That state is reported as
RepairRequired on the next load; it is never patched up automatically.
"""

import logging
import sqlite3
from collections import Counter
from collections.abc import Iterable, Sequence
from typing import Any, NamedTuple

from talentflow.core.db import list_records, update_fields
from talentflow.core.errors import RepairRequired, ValidationError

logger = logging.getLogger(__name__)


class OrderViolations(NamedTuple):
    """Order values that break density: repeated ones and absent ones."""

    duplicates: list[int]
    missing: list[int]

    @property
    def ok(self) -> bool:
        return not self.duplicates and not self.missing


def find_order_violations(orders: Iterable[int]) -> OrderViolations:
    counts = Counter(orders)
    size = sum(counts.values())
    duplicates = sorted(value for value, n in counts.items() if n > 1)
    missing = [value for value in range(size) if value not in counts]
    return OrderViolations(duplicates=duplicates, missing=missing)


def ensure_dense(orders: Iterable[int], collection: str = "collection") -> None:
    """Raise RepairRequired unless ``orders`` is exactly ``{0 .. N-1}``."""
    violations = find_order_violations(orders)
    if not violations.ok:
        msg = (
            f"Order of '{collection}' is not dense "
            f"(duplicates={violations.duplicates}, missing={violations.missing}); "
            "reorders are blocked until it is repaired"
        )
        raise RepairRequired(msg)


def validate_move(size: int, from_order: int, to_order: int) -> None:
    for name, value in (("fromOrder", from_order), ("toOrder", to_order)):
        if isinstance(value, bool) or not isinstance(value, int):
            msg = f"{name} must be an integer, got {value!r}"
            raise ValidationError(msg)
        if not 0 <= value < size:
            msg = f"{name}={value} is outside [0, {size - 1}]"
            raise ValidationError(msg)


def plan_reorder(
    members: Sequence[tuple[str, int]],
    from_order: int,
    to_order: int,
) -> list[tuple[str, int]]:
    """Return the ``(id, new_order)`` writes that move ``from_order`` to ``to_order``.

    ``members`` are ``(id, order)`` pairs of a dense collection. Only members
    whose order actually changes appear in the plan; the moved member comes
    last. Moving a member onto its own position yields an empty plan.
    """
    validate_move(len(members), from_order, to_order)
    ensure_dense(order for _, order in members)
    if from_order == to_order:
        return []

    moved = next(member_id for member_id, order in members if order == from_order)
    plan: list[tuple[str, int]] = []
    if from_order < to_order:
        for member_id, order in members:
            if from_order < order <= to_order:
                plan.append((member_id, order - 1))
    else:
        for member_id, order in members:
            if to_order <= order < from_order:
                plan.append((member_id, order + 1))
    plan.append((moved, to_order))
    return plan


def apply_reorder_to_items(
    items: Iterable[dict[str, Any]],
    from_order: int,
    to_order: int,
    field: str = "order",
) -> list[dict[str, Any]]:
    """Pure version of a move over wire dicts, for optimistic cache updates.

    ``items`` may be any subset of the collection (a filtered page); only the
    members present are shifted. The result is sorted by the order field.
    """
    result: list[dict[str, Any]] = []
    for item in items:
        order = item[field]
        if order == from_order:
            order = to_order
        elif from_order < to_order and from_order < order <= to_order:
            order -= 1
        elif from_order > to_order and to_order <= order < from_order:
            order += 1
        result.append(item if order == item[field] else {**item, field: order})
    result.sort(key=lambda item: item[field])
    return result


def check_collection_order(conn: sqlite3.Connection, collection: str) -> OrderViolations:
    """Load-time density check. Logs an error when the invariant is broken."""
    records = list_records(conn, collection, order_by="order")
    violations = find_order_violations(r.order for r in records)
    if not violations.ok:
        logger.error(
            "Order of '%s' needs repair: duplicates=%s missing=%s",
            collection, violations.duplicates, violations.missing,
        )
    return violations


def reorder_collection(
    conn: sqlite3.Connection,
    collection: str,
    from_order: int,
    to_order: int,
) -> list[tuple[str, int]]:
    """Move one member of a persisted collection and return the applied plan.

    Raises ValidationError for out-of-range positions and RepairRequired when
    the stored order is already broken; both happen before any write.
    """
    records = list_records(conn, collection, order_by="order")
    validate_move(len(records), from_order, to_order)
    ensure_dense((r.order for r in records), collection)

    plan = plan_reorder([(r.id, r.order) for r in records], from_order, to_order)
    for member_id, new_order in plan:
        update_fields(conn, collection, member_id, {"order": new_order})
    logger.debug(
        "Reordered '%s' %d -> %d (%d writes)", collection, from_order, to_order, len(plan),
    )
    return plan
