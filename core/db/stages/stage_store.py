"""
Stage catalog: system stages shared by everyone plus per-user custom stages.

A user's view is every system stage together with that user's own stages,
ordered by (sort_order, id). A user can move system stages on their own
board; those positions live in user_stage_orders and override the system
default for that user only. Sort orders inside a view are unique but may
have gaps.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Set

from core.db.base import get_conn, transaction, utcnow_iso
from core.db.locks import lock_stage_catalog
from core.errors import (
    ReorderTransactionError,
    StageConflictError,
    StageInUseError,
    StageNotFoundError,
    StageNotVisibleError,
    StageReadOnlyError,
)

log = logging.getLogger(__name__)

STAGE_COLUMNS = "id, user_id, name, color, sort_order, is_system, is_default, created_at"
DEFAULT_COLOR = "#6B7280"
MAX_NAME_LENGTH = 50

# One user's board. Takes the user id twice.
VIEW_SELECT = """
    SELECT s.id, s.user_id, s.name, s.color,
           COALESCE(o.sort_order, s.sort_order) AS sort_order,
           s.is_system, s.is_default, s.created_at
    FROM job_stages s
    LEFT JOIN user_stage_orders o ON o.stage_id = s.id AND o.user_id = ?
    WHERE s.user_id IS NULL OR s.user_id = ?
"""

_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

# System pipeline stages, in board order. Exactly one is the default.
DEFAULT_STAGES = [
    {"name": "Interested", "color": "#3B82F6", "is_default": True},
    {"name": "Applied", "color": "#F59E0B"},
    {"name": "Phone Screen", "color": "#8B5CF6"},
    {"name": "Technical Interview", "color": "#06B6D4"},
    {"name": "Final Round", "color": "#10B981"},
    {"name": "Offer Received", "color": "#22C55E"},
    {"name": "Accepted", "color": "#16A34A"},
    {"name": "Rejected", "color": "#EF4444"},
    {"name": "Not Interested", "color": "#6B7280"},
]


def _is_visible(stage: Dict, user_id: Optional[int]) -> bool:
    return stage["user_id"] is None or stage["user_id"] == user_id


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("Stage name is required")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValueError(f"Stage name must be at most {MAX_NAME_LENGTH} characters")
    return cleaned


def _clean_color(color: str) -> str:
    if not _COLOR_RE.match(color or ""):
        raise ValueError("Color must be a hex value like #3B82F6")
    return color.upper()


def _view(cur, user_id: Optional[int]) -> List[Dict]:
    cur.execute(f"SELECT * FROM ({VIEW_SELECT}) v ORDER BY sort_order, id", (user_id, user_id))
    return [dict(r) for r in cur.fetchall()]


def list_for_user(user_id: Optional[int]) -> List[Dict]:
    """System stages plus the user's custom stages, board order."""
    with get_conn() as conn:
        return _view(conn.cursor(), user_id)


def get_stage(stage_id: int) -> Optional[Dict]:
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(f"SELECT {STAGE_COLUMNS} FROM job_stages WHERE id = ?", (stage_id,))
        row = cur.fetchone()
    return dict(row) if row else None


def get_stage_for_user(user_id: Optional[int], stage_id: int) -> Dict:
    """One stage as it appears on the user's board."""
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(f"SELECT * FROM ({VIEW_SELECT}) v WHERE id = ?", (user_id, user_id, stage_id))
        row = cur.fetchone()
    if row:
        return dict(row)
    if get_stage(stage_id) is None:
        raise StageNotFoundError(f"Stage {stage_id} not found")
    raise StageNotVisibleError(stage_id, user_id)


def default_stage() -> Dict:
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {STAGE_COLUMNS}
            FROM job_stages
            WHERE is_system AND is_default
            ORDER BY id
            LIMIT 1
            """
        )
        row = cur.fetchone()
    if not row:
        raise StageNotFoundError("No default stage has been seeded")
    return dict(row)


def _normalize_assignments(assignments: Iterable[Any]) -> Dict[int, int]:
    """
    Collapse identical (id, order) repeats; reject conflicting orders for one id.
    """
    resolved: Dict[int, int] = {}
    for item in assignments:
        if isinstance(item, dict):
            raw_id = item.get("id", item.get("stage_id"))
            raw_order = item.get("sort_order", item.get("sortOrder"))
        else:
            try:
                raw_id, raw_order = item
            except (TypeError, ValueError) as exc:
                raise ReorderTransactionError(f"Invalid reorder assignment {item!r}") from exc
        try:
            stage_id, order = int(raw_id), int(raw_order)
        except (TypeError, ValueError) as exc:
            raise ReorderTransactionError(f"Invalid reorder assignment {item!r}") from exc
        if order < 0:
            raise ReorderTransactionError(f"Sort order for stage {stage_id} must not be negative")
        if stage_id in resolved and resolved[stage_id] != order:
            raise ReorderTransactionError(
                f"Conflicting sort orders for stage {stage_id}: {resolved[stage_id]} and {order}"
            )
        resolved[stage_id] = order
    return resolved


def _duplicate_orders(cur, owner: Optional[int]) -> List[int]:
    cur.execute(
        f"SELECT sort_order FROM ({VIEW_SELECT}) v GROUP BY sort_order HAVING COUNT(*) > 1",
        (owner, owner),
    )
    return [r["sort_order"] for r in cur.fetchall()]


def _apply(cur, resolved: Dict[int, int], user_id: Optional[int]) -> None:
    cur.execute(
        "SELECT id, user_id FROM job_stages WHERE id = ANY(?) FOR UPDATE",
        (list(resolved),),
    )
    found = {r["id"]: dict(r) for r in cur.fetchall()}

    for stage_id in resolved:
        stage = found.get(stage_id)
        if stage is None:
            raise StageNotFoundError(f"Stage {stage_id} not found")
        if not _is_visible(stage, user_id):
            raise StageNotVisibleError(stage_id, user_id)

    for stage_id, order in resolved.items():
        if found[stage_id]["user_id"] is None and user_id is not None:
            cur.execute(
                """
                INSERT INTO user_stage_orders (user_id, stage_id, sort_order)
                VALUES (?, ?, ?)
                ON CONFLICT (user_id, stage_id) DO UPDATE SET sort_order = EXCLUDED.sort_order
                """,
                (user_id, stage_id, order),
            )
        else:
            cur.execute("UPDATE job_stages SET sort_order = ? WHERE id = ?", (order, stage_id))

    owners: Set[Optional[int]] = {user_id}
    if user_id is None:
        # The system defaults show through on every board without an override.
        cur.execute(
            """
            SELECT user_id FROM job_stages WHERE user_id IS NOT NULL
            UNION
            SELECT user_id FROM user_stage_orders
            """
        )
        owners.update(r["user_id"] for r in cur.fetchall())
    for owner in sorted(owners, key=lambda o: -1 if o is None else o):
        duplicates = _duplicate_orders(cur, owner)
        if duplicates:
            raise ReorderTransactionError(
                f"Reorder would duplicate sort order(s) {sorted(duplicates)} "
                f"in the view of user {owner}"
            )


def reorder(assignments: Iterable[Any], user_id: Optional[int] = None) -> List[Dict]:
    """
    Apply (stage_id, sort_order) assignments atomically and return the caller's view.

    Moving a system stage for a user only changes that user's board. With
    no user the system defaults themselves move.

    Raises ReorderTransactionError for conflicting duplicates or when the
    result would give two stages in one view the same order,
    StageNotFoundError / StageNotVisibleError for bad ids. Any failure leaves
    every stage untouched.
    """
    resolved = _normalize_assignments(assignments)
    if not resolved:
        return list_for_user(user_id)

    with transaction() as conn:
        cur = conn.cursor()
        lock_stage_catalog(cur)
        _apply(cur, resolved, user_id)
        view = _view(cur, user_id)

    log.info("Reordered stages", extra={"user_id": user_id, "stages": len(resolved)})
    return view


def reorder_by_ids(user_id: Optional[int], stage_ids: Iterable[Any]) -> List[Dict]:
    """
    Put the given stages in the given order.

    A list covering the whole board renumbers it 1..n. A shorter list
    permutes those stages among the positions they already hold and leaves
    every other stage in place.
    """
    ordered = list(_normalize_assignments((sid, i) for i, sid in enumerate(stage_ids, start=1)))
    if not ordered:
        return list_for_user(user_id)

    with transaction() as conn:
        cur = conn.cursor()
        lock_stage_catalog(cur)
        current = {s["id"]: s["sort_order"] for s in _view(cur, user_id)}

        missing = [sid for sid in ordered if sid not in current]
        if missing:
            cur.execute("SELECT id FROM job_stages WHERE id = ?", (missing[0],))
            if cur.fetchone():
                raise StageNotVisibleError(missing[0], user_id)
            raise StageNotFoundError(f"Stage {missing[0]} not found")

        if set(ordered) >= set(current):
            slots = list(range(1, len(ordered) + 1))
        else:
            slots = sorted(current[sid] for sid in ordered)
        _apply(cur, dict(zip(ordered, slots)), user_id)
        view = _view(cur, user_id)

    log.info("Reordered stages", extra={"user_id": user_id, "stages": len(ordered)})
    return view


def create_stage(
    user_id: int,
    name: str,
    color: str = DEFAULT_COLOR,
    sort_order: Optional[int] = None,
) -> Dict:
    """Create a custom stage at the end of the user's view unless an order is given."""
    name = _clean_name(name)
    color = _clean_color(color)

    with transaction() as conn:
        cur = conn.cursor()
        lock_stage_catalog(cur)
        cur.execute(
            """
            SELECT 1 FROM job_stages
            WHERE (user_id IS NULL OR user_id = ?) AND lower(name) = lower(?)
            """,
            (user_id, name),
        )
        if cur.fetchone():
            raise StageConflictError(f"A stage named {name!r} already exists")

        if sort_order is None:
            cur.execute(
                f"SELECT COALESCE(MAX(sort_order), 0) + 1 AS next_order FROM ({VIEW_SELECT}) v",
                (user_id, user_id),
            )
            sort_order = int(cur.fetchone()["next_order"])
        else:
            cur.execute(
                f"SELECT 1 FROM ({VIEW_SELECT}) v WHERE sort_order = ?",
                (user_id, user_id, int(sort_order)),
            )
            if cur.fetchone():
                raise StageConflictError(f"Sort order {sort_order} is already taken")

        cur.execute(
            f"""
            INSERT INTO job_stages (user_id, name, color, sort_order, is_system, is_default, created_at)
            VALUES (?, ?, ?, ?, FALSE, FALSE, ?)
            RETURNING {STAGE_COLUMNS}
            """,
            (user_id, name, color, int(sort_order), utcnow_iso()),
        )
        stage = dict(cur.fetchone())

    log.info("Created stage", extra={"user_id": user_id, "stage_id": stage["id"]})
    return stage


def _owned_stage(cur, user_id: Optional[int], stage_id: int) -> Dict:
    cur.execute(f"SELECT {STAGE_COLUMNS} FROM job_stages WHERE id = ? FOR UPDATE", (stage_id,))
    row = cur.fetchone()
    if not row:
        raise StageNotFoundError(f"Stage {stage_id} not found")
    stage = dict(row)
    if stage["user_id"] is None:
        raise StageReadOnlyError(stage_id, user_id)
    if stage["user_id"] != user_id:
        raise StageNotVisibleError(stage_id, user_id)
    return stage


def update_stage(
    user_id: int,
    stage_id: int,
    name: Optional[str] = None,
    color: Optional[str] = None,
) -> Dict:
    """Rename or recolour one of the user's custom stages."""
    with transaction() as conn:
        cur = conn.cursor()
        stage = _owned_stage(cur, user_id, stage_id)

        new_name = _clean_name(name) if name is not None else stage["name"]
        new_color = _clean_color(color) if color is not None else stage["color"]

        if new_name.lower() != stage["name"].lower():
            cur.execute(
                """
                SELECT 1 FROM job_stages
                WHERE (user_id IS NULL OR user_id = ?) AND lower(name) = lower(?) AND id <> ?
                """,
                (user_id, new_name, stage_id),
            )
            if cur.fetchone():
                raise StageConflictError(f"A stage named {new_name!r} already exists")

        cur.execute(
            f"UPDATE job_stages SET name = ?, color = ? WHERE id = ? RETURNING {STAGE_COLUMNS}",
            (new_name, new_color, stage_id),
        )
        updated = dict(cur.fetchone())
    return updated


def delete_stage(user_id: int, stage_id: int) -> None:
    """Delete a custom stage. Rejected while any tracked job still sits in it."""
    with transaction() as conn:
        cur = conn.cursor()
        _owned_stage(cur, user_id, stage_id)
        cur.execute("SELECT COUNT(*) AS count FROM user_jobs WHERE stage_id = ?", (stage_id,))
        in_use = int(cur.fetchone()["count"])
        if in_use:
            raise StageInUseError(stage_id, in_use)
        cur.execute("DELETE FROM job_stages WHERE id = ?", (stage_id,))
    log.info("Deleted stage", extra={"user_id": user_id, "stage_id": stage_id})


def seed_default_stages() -> int:
    """Insert DEFAULT_STAGES as system stages (idempotent). Returns the number inserted."""
    now = utcnow_iso()
    inserted = 0

    with transaction() as conn:
        cur = conn.cursor()
        for order, stage in enumerate(DEFAULT_STAGES, start=1):
            cur.execute(
                """
                INSERT INTO job_stages (user_id, name, color, sort_order, is_system, is_default, created_at)
                VALUES (NULL, ?, ?, ?, TRUE, ?, ?)
                ON CONFLICT (name) WHERE user_id IS NULL DO NOTHING
                RETURNING id
                """,
                (stage["name"], stage["color"], order, bool(stage.get("is_default")), now),
            )
            if cur.fetchone():
                inserted += 1

    return inserted


__all__ = [
    "STAGE_COLUMNS",
    "VIEW_SELECT",
    "DEFAULT_COLOR",
    "DEFAULT_STAGES",
    "list_for_user",
    "get_stage",
    "get_stage_for_user",
    "default_stage",
    "reorder",
    "reorder_by_ids",
    "create_stage",
    "update_stage",
    "delete_stage",
    "seed_default_stages",
]
