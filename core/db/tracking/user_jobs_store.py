"""
Per-user tracking records: which stage a job sits in plus the user's notes.

Single-row updates are last-writer-wins. Partial updates only touch the
fields passed in; pass None explicitly to clear a field.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from core.db.base import get_conn, transaction, utcnow_iso
from core.db.stages.stage_store import VIEW_SELECT, default_stage, list_for_user as list_stages
from core.errors import NotFoundError, StageNotFoundError, StageNotVisibleError


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()

USER_JOB_COLUMNS = """
    uj.id, uj.user_id, uj.job_id, uj.stage_id, uj.is_interested, uj.applied_date,
    uj.interview_date, uj.notes, uj.application_url, uj.contact_person,
    uj.salary_expectation, uj.created_at, uj.updated_at
"""

JOINED_SELECT = f"""
    SELECT {USER_JOB_COLUMNS},
           j.title, j.company, j.location, j.is_remote, j.apply_url, j.source,
           j.relevance_score, s.name AS stage_name, s.color AS stage_color
    FROM user_jobs uj
    JOIN jobs j ON j.id = uj.job_id
    JOIN job_stages s ON s.id = uj.stage_id
"""

EDITABLE_FIELDS = (
    "is_interested",
    "applied_date",
    "interview_date",
    "notes",
    "application_url",
    "contact_person",
    "salary_expectation",
)


def get_user_job(user_id: int, job_id: int) -> Optional[Dict]:
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(f"{JOINED_SELECT} WHERE uj.user_id = ? AND uj.job_id = ?", (user_id, job_id))
        row = cur.fetchone()
    return dict(row) if row else None


def _require_user_job(user_id: int, job_id: int) -> Dict:
    record = get_user_job(user_id, job_id)
    if record is None:
        raise NotFoundError(f"User {user_id} is not tracking job {job_id}")
    return record


def get_or_create(user_id: int, job_id: int) -> Dict:
    """
    Return the tracking record, creating it in the default stage if missing.

    Concurrent callers converge on one row via the (user_id, job_id) unique key.
    """
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute("SELECT 1 FROM jobs WHERE id = ?", (job_id,))
        job_exists = cur.fetchone() is not None
    if not job_exists:
        raise NotFoundError(f"Job {job_id} not found")

    stage = default_stage()
    now = utcnow_iso()

    with transaction() as conn:
        conn.cursor().execute(
            """
            INSERT INTO user_jobs (user_id, job_id, stage_id, is_interested, created_at, updated_at)
            VALUES (?, ?, ?, FALSE, ?, ?)
            ON CONFLICT (user_id, job_id) DO NOTHING
            """,
            (user_id, job_id, stage["id"], now, now),
        )

    return _require_user_job(user_id, job_id)


def update_stage(user_id: int, job_id: int, stage_id: int) -> Dict:
    """Move a tracked job to another stage visible to the user."""
    with transaction() as conn:
        cur = conn.cursor()
        cur.execute("SELECT id, user_id FROM job_stages WHERE id = ?", (stage_id,))
        stage = cur.fetchone()
        if not stage:
            raise StageNotFoundError(f"Stage {stage_id} not found")
        if stage["user_id"] is not None and stage["user_id"] != user_id:
            raise StageNotVisibleError(stage_id, user_id)

        cur.execute(
            """
            UPDATE user_jobs SET stage_id = ?, updated_at = ?
            WHERE user_id = ? AND job_id = ?
            RETURNING id
            """,
            (stage_id, utcnow_iso(), user_id, job_id),
        )
        if not cur.fetchone():
            raise NotFoundError(f"User {user_id} is not tracking job {job_id}")

    return _require_user_job(user_id, job_id)


def update_user_job(user_id: int, job_id: int, changes: Dict[str, Any]) -> Dict:
    """
    Apply a partial update. Keys absent from `changes` (or set to UNSET) are left alone.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

    fields = {k: v for k, v in changes.items() if v is not UNSET}
    if not fields:
        return _require_user_job(user_id, job_id)
    if "is_interested" in fields:
        if fields["is_interested"] is None:
            raise ValueError("is_interested cannot be cleared")
        fields["is_interested"] = bool(fields["is_interested"])

    assignments = ", ".join(f"{name} = ?" for name in fields)
    with transaction() as conn:
        cur = conn.cursor()
        cur.execute(
            f"""
            UPDATE user_jobs SET {assignments}, updated_at = ?
            WHERE user_id = ? AND job_id = ?
            RETURNING id
            """,
            list(fields.values()) + [utcnow_iso(), user_id, job_id],
        )
        updated = cur.fetchone()

    if not updated:
        raise NotFoundError(f"User {user_id} is not tracking job {job_id}")
    return _require_user_job(user_id, job_id)


def update_notes(user_id: int, job_id: int, notes: Optional[str] = UNSET) -> Dict:
    return update_user_job(user_id, job_id, {"notes": notes})


def update_dates(
    user_id: int,
    job_id: int,
    applied_date: Optional[str] = UNSET,
    interview_date: Optional[str] = UNSET,
) -> Dict:
    return update_user_job(
        user_id, job_id, {"applied_date": applied_date, "interview_date": interview_date}
    )


def update_application_meta(
    user_id: int,
    job_id: int,
    application_url: Optional[str] = UNSET,
    contact_person: Optional[str] = UNSET,
    salary_expectation: Optional[str] = UNSET,
) -> Dict:
    return update_user_job(
        user_id,
        job_id,
        {
            "application_url": application_url,
            "contact_person": contact_person,
            "salary_expectation": salary_expectation,
        },
    )


def set_interested(user_id: int, job_id: int, is_interested: bool) -> Dict:
    return update_user_job(user_id, job_id, {"is_interested": is_interested})


def list_for_user(
    user_id: int,
    stage_id: Optional[int] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Dict], int]:
    """Return (rows, total) of the user's tracked jobs, most recently updated first."""
    where = "WHERE uj.user_id = ?"
    params: List[Any] = [user_id]
    if stage_id is not None:
        where += " AND uj.stage_id = ?"
        params.append(stage_id)

    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(f"SELECT COUNT(*) AS count FROM user_jobs uj {where}", params)
        total_row = cur.fetchone()
        total = int(total_row["count"]) if total_row else 0

        cur.execute(
            f"{JOINED_SELECT} {where} ORDER BY uj.updated_at DESC, uj.id DESC LIMIT ? OFFSET ?",
            params + [int(limit), int(offset)],
        )
        rows = [dict(r) for r in cur.fetchall()]
    return rows, total


def get_board(user_id: int) -> List[Dict]:
    """Kanban view: the user's stages in order, each with its tracked jobs."""
    stages = list_stages(user_id)

    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(f"{JOINED_SELECT} WHERE uj.user_id = ? ORDER BY uj.updated_at DESC, uj.id DESC", (user_id,))
        records = [dict(r) for r in cur.fetchall()]

    by_stage: Dict[int, List[Dict]] = {}
    for record in records:
        by_stage.setdefault(record["stage_id"], []).append(record)

    return [dict(stage, jobs=by_stage.get(stage["id"], [])) for stage in stages]


def get_stage_stats(user_id: int) -> List[Dict]:
    """Tracked-job count per visible stage, in the user's board order."""
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT v.id AS stage_id, v.name, v.color, v.sort_order, COUNT(uj.id) AS count
            FROM ({VIEW_SELECT}) v
            LEFT JOIN user_jobs uj ON uj.stage_id = v.id AND uj.user_id = ?
            GROUP BY v.id, v.name, v.color, v.sort_order
            ORDER BY v.sort_order, v.id
            """,
            (user_id, user_id, user_id),
        )
        rows = [dict(r, count=int(r["count"])) for r in cur.fetchall()]
    return rows


def delete_user_job(user_id: int, job_id: int) -> bool:
    with transaction() as conn:
        cur = conn.cursor()
        cur.execute("DELETE FROM user_jobs WHERE user_id = ? AND job_id = ?", (user_id, job_id))
        deleted = cur.rowcount > 0
    return deleted


__all__ = [
    "UNSET",
    "EDITABLE_FIELDS",
    "get_user_job",
    "get_or_create",
    "update_stage",
    "update_user_job",
    "update_notes",
    "update_dates",
    "update_application_meta",
    "set_interested",
    "list_for_user",
    "get_board",
    "get_stage_stats",
    "delete_user_job",
]
