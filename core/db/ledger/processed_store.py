"""
Processed-email ledger: one row per mailbox message the pipeline has handled.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from core.db.base import get_conn, transaction, utcnow_iso
from core.errors import DuplicateRecordError


def has_processed(message_id: str) -> bool:
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute("SELECT 1 FROM processed_emails WHERE message_id = ?", (message_id,))
        row = cur.fetchone()
    return row is not None


def filter_unprocessed(message_ids: Iterable[str]) -> List[str]:
    """Return the ids with no ledger record, preserving input order."""
    ids = list(dict.fromkeys(message_ids))
    if not ids:
        return []

    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            "SELECT message_id FROM processed_emails WHERE message_id = ANY(?)",
            (ids,),
        )
        seen = {row["message_id"] for row in cur.fetchall()}
    return [mid for mid in ids if mid not in seen]


def record_processed(
    message_id: str,
    sender: str,
    candidate_count: int,
    subject: str = "",
) -> Dict:
    """
    Insert the ledger row for a message.

    Raises DuplicateRecordError when the message is already recorded; the
    unique index on message_id decides concurrent writers.
    """
    with transaction() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO processed_emails (message_id, sender, subject, jobs_extracted, deleted, processed_at)
            VALUES (?, ?, ?, ?, FALSE, ?)
            ON CONFLICT (message_id) DO NOTHING
            RETURNING id, message_id, sender, subject, jobs_extracted, deleted, processed_at
            """,
            (message_id, sender, subject, int(candidate_count), utcnow_iso()),
        )
        row = cur.fetchone()

    if not row:
        raise DuplicateRecordError(message_id)
    return dict(row)


def mark_deleted(message_id: str) -> None:
    """Flag a message as removed from the inbox. Missing records are ignored."""
    with transaction() as conn:
        conn.cursor().execute(
            "UPDATE processed_emails SET deleted = TRUE WHERE message_id = ? AND deleted = FALSE",
            (message_id,),
        )


def get_processed_email(message_id: str) -> Optional[Dict]:
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, message_id, sender, subject, jobs_extracted, deleted, processed_at
            FROM processed_emails
            WHERE message_id = ?
            """,
            (message_id,),
        )
        row = cur.fetchone()
    return dict(row) if row else None


def get_processed_stats(since: Optional[str] = None) -> Dict:
    """Counts of recorded emails (optionally since an ISO timestamp)."""
    sql = """
        SELECT COUNT(*) AS emails,
               COALESCE(SUM(jobs_extracted), 0) AS candidates,
               COALESCE(SUM(CASE WHEN deleted THEN 1 ELSE 0 END), 0) AS removed,
               COALESCE(SUM(CASE WHEN jobs_extracted = 0 THEN 1 ELSE 0 END), 0) AS empty
        FROM processed_emails
    """
    with get_conn() as conn:
        cur = conn.cursor()
        if since:
            cur.execute(sql + " WHERE processed_at >= ?", (since,))
        else:
            cur.execute(sql)
        row = cur.fetchone() or {}

    return {
        "emails": int(row.get("emails") or 0),
        "candidates": int(row.get("candidates") or 0),
        "removed": int(row.get("removed") or 0),
        "empty": int(row.get("empty") or 0),
    }


__all__ = [
    "has_processed",
    "filter_unprocessed",
    "record_processed",
    "mark_deleted",
    "get_processed_email",
    "get_processed_stats",
]
