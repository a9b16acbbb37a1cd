"""
Postgres advisory locks shared by the API and worker processes.
"""
from __future__ import annotations

import logging
from typing import Optional

from core.db import base

log = logging.getLogger(__name__)

# Fixed keys; any two processes using the same database agree on them.
PIPELINE_RUN_LOCK = 0x6A6F6264
STAGE_CATALOG_LOCK = 0x73746167


class AdvisoryLock:
    """
    A session-level advisory lock held on its own connection until release().

    Closing the connection also releases the lock, so a crashed holder never
    blocks the next one for longer than its connection lives.
    """

    def __init__(self, key: int):
        self.key = key
        self._conn = None

    @property
    def held(self) -> bool:
        return self._conn is not None

    def acquire(self) -> bool:
        """Try once without waiting. Returns True when the lock is now held."""
        if self._conn is not None:
            return True
        conn = base.get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT pg_try_advisory_lock(?::bigint) AS locked", (self.key,))
            row = cur.fetchone()
        except Exception:
            conn.close()
            raise
        if not row or not row["locked"]:
            conn.close()
            return False
        self._conn = conn
        return True

    def release(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.cursor().execute("SELECT pg_advisory_unlock(?::bigint)", (self.key,))
        finally:
            conn.close()


def try_acquire_run_lock() -> Optional[AdvisoryLock]:
    """Return the held pipeline lock, or None when another process is running."""
    lock = AdvisoryLock(PIPELINE_RUN_LOCK)
    return lock if lock.acquire() else None


def release_run_lock(lock: Optional[AdvisoryLock]) -> None:
    if lock is not None:
        lock.release()


def lock_stage_catalog(cur) -> None:
    """Serialize stage catalog writers until the surrounding transaction ends."""
    cur.execute("SELECT pg_advisory_xact_lock(?::bigint)", (STAGE_CATALOG_LOCK,))


__all__ = [
    "PIPELINE_RUN_LOCK",
    "STAGE_CATALOG_LOCK",
    "AdvisoryLock",
    "try_acquire_run_lock",
    "release_run_lock",
    "lock_stage_catalog",
]
