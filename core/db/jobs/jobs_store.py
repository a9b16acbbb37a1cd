"""
Jobs storage helpers.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from core.db.base import get_conn, transaction, utc_iso_ago, utcnow_iso
from core.db.jobs.dedup import compute_dedup_key

log = logging.getLogger(__name__)

JOB_COLUMNS = """
    id, title, company, location, is_remote, description, apply_url, salary,
    posted_date, source, relevance_score, processed, email_message_id, dedup_key, created_at
"""


def _value(candidate: Any, name: str) -> Any:
    if isinstance(candidate, dict):
        return candidate.get(name)
    return getattr(candidate, name, None)


def deduplicate_and_insert(
    candidates: Sequence[Any],
    email_message_id: Optional[str] = None,
    precedence: str = "url",
) -> List[Dict]:
    """
    Insert candidates whose dedup key is new. Returns the inserted rows.

    The unique index on dedup_key decides: an existing key (including one
    inserted earlier in the same batch) is skipped, never updated.
    """
    if not candidates:
        return []

    now = utcnow_iso()
    inserted: List[Dict] = []

    with transaction() as conn:
        cur = conn.cursor()
        for candidate in candidates:
            cur.execute(
                f"""
                INSERT INTO jobs (title, company, location, is_remote, description, apply_url, salary,
                                  posted_date, source, relevance_score, processed, email_message_id,
                                  dedup_key, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, FALSE, ?, ?, ?)
                ON CONFLICT (dedup_key) DO NOTHING
                RETURNING {JOB_COLUMNS}
                """,
                (
                    _value(candidate, "title"),
                    _value(candidate, "company"),
                    _value(candidate, "location"),
                    bool(_value(candidate, "is_remote")),
                    _value(candidate, "description"),
                    _value(candidate, "apply_url"),
                    _value(candidate, "salary"),
                    _value(candidate, "posted_date"),
                    _value(candidate, "source"),
                    _value(candidate, "relevance_score"),
                    email_message_id,
                    compute_dedup_key(candidate, precedence),
                    now,
                ),
            )
            row = cur.fetchone()
            if row:
                inserted.append(dict(row))

    log.info(
        "Inserted jobs",
        extra={
            "email_message_id": email_message_id,
            "candidates": len(candidates),
            "inserted": len(inserted),
        },
    )
    return inserted


def mark_processed(job_ids: Iterable[int]) -> int:
    ids = [int(i) for i in job_ids]
    if not ids:
        return 0
    with transaction() as conn:
        cur = conn.cursor()
        cur.execute("UPDATE jobs SET processed = TRUE WHERE id = ANY(?)", (ids,))
        updated = cur.rowcount
    return updated


def get_job(job_id: int) -> Optional[Dict]:
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(f"SELECT {JOB_COLUMNS} FROM jobs WHERE id = ?", (job_id,))
        row = cur.fetchone()
    return dict(row) if row else None


def list_jobs(
    limit: int = 20,
    offset: int = 0,
    remote: Optional[bool] = None,
    min_relevance: Optional[float] = None,
    untracked_by: Optional[int] = None,
) -> Tuple[List[Dict], int]:
    """Return (rows, total) newest first, with optional filters."""
    where: List[str] = []
    params: List[Any] = []
    if remote is not None:
        where.append("is_remote = ?")
        params.append(bool(remote))
    if min_relevance is not None:
        where.append("relevance_score >= ?")
        params.append(float(min_relevance))
    if untracked_by is not None:
        where.append("NOT EXISTS (SELECT 1 FROM user_jobs uj WHERE uj.job_id = jobs.id AND uj.user_id = ?)")
        params.append(int(untracked_by))
    clause = f"WHERE {' AND '.join(where)}" if where else ""

    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(f"SELECT COUNT(*) AS count FROM jobs {clause}", params)
        total_row = cur.fetchone()
        total = int(total_row["count"]) if total_row else 0

        cur.execute(
            f"""
            SELECT {JOB_COLUMNS}
            FROM jobs
            {clause}
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            params + [int(limit), int(offset)],
        )
        rows = [dict(r) for r in cur.fetchall()]
    return rows, total


def get_unnotified_jobs(min_relevance: float = 0.0, limit: int = 100) -> List[Dict]:
    """Unprocessed jobs at or above the relevance threshold, best first."""
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {JOB_COLUMNS}
            FROM jobs
            WHERE processed = FALSE AND relevance_score >= ?
            ORDER BY relevance_score DESC, id
            LIMIT ?
            """,
            (float(min_relevance), int(limit)),
        )
        rows = [dict(r) for r in cur.fetchall()]
    return rows


def delete_job(job_id: int) -> bool:
    """Delete a job and every tracking record that points at it."""
    with transaction() as conn:
        cur = conn.cursor()
        cur.execute("DELETE FROM user_jobs WHERE job_id = ?", (job_id,))
        cur.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
        deleted = cur.rowcount > 0
    return deleted


def cleanup_old_untracked_jobs(days: int = 3) -> Dict:
    """
    Delete jobs older than `days` that no user tracks.

    Tracked jobs are kept whatever their age. Returns the number deleted,
    a per-source breakdown and the cutoff used.
    """
    if days < 1:
        raise ValueError("Retention must be at least one day")
    cutoff = utc_iso_ago(days=days)

    with transaction() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            DELETE FROM jobs
            WHERE created_at < ?
              AND NOT EXISTS (SELECT 1 FROM user_jobs uj WHERE uj.job_id = jobs.id)
            RETURNING COALESCE(source, 'Unknown') AS source
            """,
            (cutoff,),
        )
        by_source: Dict[str, int] = {}
        for row in cur.fetchall():
            by_source[row["source"]] = by_source.get(row["source"], 0) + 1

    deleted = sum(by_source.values())
    log.info("Cleaned up old jobs", extra={"deleted": deleted, "cutoff": cutoff, "by_source": by_source})
    return {"deleted": deleted, "by_source": by_source, "cutoff": cutoff}


def get_summary(since: str, min_relevance: float = 0.6, limit: int = 20) -> Dict:
    """Jobs found since an ISO timestamp: counts, top sources and the best matches."""
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(CASE WHEN relevance_score >= ? THEN 1 ELSE 0 END), 0) AS relevant
            FROM jobs
            WHERE created_at >= ?
            """,
            (float(min_relevance), since),
        )
        row = cur.fetchone() or {}

        cur.execute(
            """
            SELECT COALESCE(source, 'Unknown') AS source, COUNT(*) AS count
            FROM jobs
            WHERE created_at >= ?
            GROUP BY COALESCE(source, 'Unknown')
            ORDER BY count DESC, source
            LIMIT 5
            """,
            (since,),
        )
        top_sources = [{"source": r["source"], "count": int(r["count"])} for r in cur.fetchall()]

        cur.execute(
            f"""
            SELECT {JOB_COLUMNS}
            FROM jobs
            WHERE created_at >= ? AND relevance_score >= ?
            ORDER BY relevance_score DESC, id
            LIMIT ?
            """,
            (since, float(min_relevance), int(limit)),
        )
        jobs = [dict(r) for r in cur.fetchall()]

    return {
        "jobs": int(row.get("total") or 0),
        "relevant": int(row.get("relevant") or 0),
        "top_sources": top_sources,
        "relevant_jobs": jobs,
    }


def get_stats() -> Dict:
    """Return simple stats about the jobs table."""
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(CASE WHEN is_remote THEN 1 ELSE 0 END), 0) AS remote,
                   COALESCE(SUM(CASE WHEN processed THEN 1 ELSE 0 END), 0) AS processed,
                   AVG(relevance_score) AS avg_relevance
            FROM jobs
            """
        )
        row = cur.fetchone() or {}

        cur.execute(
            """
            SELECT COALESCE(source, 'Unknown') AS source, COUNT(*) AS count
            FROM jobs
            GROUP BY COALESCE(source, 'Unknown')
            ORDER BY count DESC
            """
        )
        by_source = {r["source"]: int(r["count"]) for r in cur.fetchall()}

    avg = row.get("avg_relevance")
    return {
        "jobs": int(row.get("total") or 0),
        "remote": int(row.get("remote") or 0),
        "processed": int(row.get("processed") or 0),
        "avg_relevance": round(float(avg), 3) if avg is not None else None,
        "by_source": by_source,
    }


__all__ = [
    "JOB_COLUMNS",
    "deduplicate_and_insert",
    "mark_processed",
    "get_job",
    "list_jobs",
    "get_unnotified_jobs",
    "delete_job",
    "cleanup_old_untracked_jobs",
    "get_summary",
    "get_stats",
]
