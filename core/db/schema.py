"""
Schema and seed helpers for Postgres.
"""
from __future__ import annotations

from core.db.base import transaction
from core.db.stages.stage_store import DEFAULT_STAGES, seed_default_stages

TABLES = ("user_jobs", "user_stage_orders", "job_stages", "jobs", "processed_emails", "users")


def init_db() -> None:
    """Create the users, ledger, jobs, stages and tracking tables if they don't exist."""
    with transaction() as conn:
        _create_tables(conn.cursor())

    seed_default_stages()


def _create_tables(cur) -> None:
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS users(
            id SERIAL PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            telegram_chat_id TEXT,
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS processed_emails(
            id SERIAL PRIMARY KEY,
            message_id TEXT NOT NULL UNIQUE,
            sender TEXT,
            subject TEXT,
            jobs_extracted INTEGER NOT NULL DEFAULT 0,
            deleted BOOLEAN NOT NULL DEFAULT FALSE,
            processed_at TEXT NOT NULL
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS jobs(
            id SERIAL PRIMARY KEY,
            title TEXT NOT NULL,
            company TEXT NOT NULL,
            location TEXT,
            is_remote BOOLEAN NOT NULL DEFAULT FALSE,
            description TEXT,
            apply_url TEXT,
            salary TEXT,
            posted_date TEXT,
            source TEXT,
            relevance_score DOUBLE PRECISION,
            processed BOOLEAN NOT NULL DEFAULT FALSE,
            email_message_id TEXT,
            dedup_key TEXT NOT NULL UNIQUE,
            created_at TEXT NOT NULL
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS job_stages(
            id SERIAL PRIMARY KEY,
            user_id INTEGER,
            name TEXT NOT NULL,
            color TEXT NOT NULL DEFAULT '#6B7280',
            sort_order INTEGER NOT NULL,
            is_system BOOLEAN NOT NULL DEFAULT FALSE,
            is_default BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TEXT NOT NULL,
            FOREIGN KEY(user_id) REFERENCES users(id)
        )
        """
    )
    cur.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS job_stages_single_default
        ON job_stages (is_default) WHERE is_default AND is_system
        """
    )
    cur.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS job_stages_system_name
        ON job_stages (name) WHERE user_id IS NULL
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS user_jobs(
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL,
            job_id INTEGER NOT NULL,
            stage_id INTEGER NOT NULL,
            is_interested BOOLEAN NOT NULL DEFAULT FALSE,
            applied_date TEXT,
            interview_date TEXT,
            notes TEXT,
            application_url TEXT,
            contact_person TEXT,
            salary_expectation TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(user_id) REFERENCES users(id),
            FOREIGN KEY(job_id) REFERENCES jobs(id),
            FOREIGN KEY(stage_id) REFERENCES job_stages(id),
            UNIQUE(user_id, job_id)
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS user_stage_orders(
            user_id INTEGER NOT NULL,
            stage_id INTEGER NOT NULL,
            sort_order INTEGER NOT NULL,
            PRIMARY KEY(user_id, stage_id),
            FOREIGN KEY(user_id) REFERENCES users(id),
            FOREIGN KEY(stage_id) REFERENCES job_stages(id)
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS user_jobs_stage_idx ON user_jobs (stage_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS jobs_created_idx ON jobs (created_at)")


def truncate_all() -> None:
    """Empty every table and reseed the system stages. Used by tests and scripts.reset_db."""
    with transaction() as conn:
        conn.cursor().execute(f"TRUNCATE {', '.join(TABLES)} RESTART IDENTITY")
    seed_default_stages()


__all__ = [
    "DEFAULT_STAGES",
    "TABLES",
    "init_db",
    "seed_default_stages",
    "truncate_all",
]
