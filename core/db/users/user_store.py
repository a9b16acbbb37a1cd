"""
User rows and the explicit delete cascade.

Authentication happens upstream; this table only holds what the pipeline
needs (notification handle, active flag) and anchors tracking records.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from core.db.base import get_conn, transaction, utcnow_iso

log = logging.getLogger(__name__)

USER_COLUMNS = "id, email, telegram_chat_id, active, created_at"


def create_user(email: str, telegram_chat_id: Optional[str] = None) -> int:
    with transaction() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO users (email, telegram_chat_id, active, created_at)
            VALUES (?, ?, 1, ?)
            RETURNING id
            """,
            (email.strip().lower(), telegram_chat_id, utcnow_iso()),
        )
        row = cur.fetchone()
    return int(row["id"]) if row else 0


def get_user_by_email(email: str) -> Dict | None:
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE email = ?", (email.strip().lower(),))
        row = cur.fetchone()
    return dict(row) if row else None


def get_user_by_id(user_id: int) -> Optional[Dict]:
    """Look up a user by numeric id. Returns dict or None."""
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,))
        row = cur.fetchone()
    return dict(row) if row else None


def set_telegram_chat_id(user_id: int, chat_id: Optional[str]) -> None:
    with transaction() as conn:
        conn.cursor().execute("UPDATE users SET telegram_chat_id = ? WHERE id = ?", (chat_id, user_id))


def set_user_active(user_id: int, active: bool) -> None:
    with transaction() as conn:
        conn.cursor().execute("UPDATE users SET active = ? WHERE id = ?", (1 if active else 0, user_id))


def get_notifiable_users() -> List[Dict]:
    """Active users with a Telegram chat handle."""
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {USER_COLUMNS}
            FROM users
            WHERE active = 1 AND telegram_chat_id IS NOT NULL AND telegram_chat_id <> ''
            ORDER BY id
            """
        )
        rows = [dict(r) for r in cur.fetchall()]
    return rows


def delete_user_data(user_id: int) -> bool:
    """
    Remove a user and everything that belongs to them: tracking records,
    board positions, custom stages, then the user row. Returns False if the
    user did not exist.
    """
    with transaction() as conn:
        cur = conn.cursor()
        cur.execute("DELETE FROM user_jobs WHERE user_id = ?", (user_id,))
        tracked = cur.rowcount
        cur.execute("DELETE FROM user_stage_orders WHERE user_id = ?", (user_id,))
        cur.execute("DELETE FROM job_stages WHERE user_id = ?", (user_id,))
        stages = cur.rowcount
        cur.execute("DELETE FROM users WHERE id = ?", (user_id,))
        deleted = cur.rowcount > 0

    log.info(
        "Deleted user data",
        extra={"user_id": user_id, "tracked": tracked, "stages": stages, "existed": deleted},
    )
    return deleted


__all__ = [
    "create_user",
    "get_user_by_email",
    "get_user_by_id",
    "set_telegram_chat_id",
    "set_user_active",
    "get_notifiable_users",
    "delete_user_data",
]
