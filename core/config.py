"""
Runtime configuration read from the environment (and `.env` via python-dotenv).
"""
from __future__ import annotations

import os
from dataclasses import dataclass

from core.mailbox.models import DisposePolicy

DEDUP_PRECEDENCES = ("url", "fields")


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _get_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


@dataclass(frozen=True)
class Settings:
    mail_window_days: int = 3
    mail_max_results: int = 100
    mail_batch_size: int = 10
    mail_batch_delay: float = 0.2
    mail_fetch_timeout: float = 30.0
    extractor_timeout: float = 60.0
    dispose_policy: DisposePolicy = DisposePolicy.MARK_READ_AND_ARCHIVE
    empty_policy: DisposePolicy = DisposePolicy.MARK_READ
    dedup_precedence: str = "url"
    min_relevance_score: float = 0.6
    check_interval: int = 3600
    pipeline_run_limit: int = 3
    job_retention_days: int = 3

    gmail_client_id: str = ""
    gmail_client_secret: str = ""
    gmail_refresh_token: str = ""
    gmail_token_path: str = ""
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    telegram_bot_token: str = ""

    def __post_init__(self):
        if self.mail_batch_size < 1:
            raise ValueError("MAIL_BATCH_SIZE must be at least 1")
        if self.mail_max_results < 1:
            raise ValueError("MAIL_MAX_RESULTS must be at least 1")
        if self.dedup_precedence not in DEDUP_PRECEDENCES:
            raise ValueError(
                f"DEDUP_PRECEDENCE must be one of {', '.join(DEDUP_PRECEDENCES)}"
            )
        if not 0.0 <= self.min_relevance_score <= 1.0:
            raise ValueError("MIN_RELEVANCE_SCORE must be between 0 and 1")
        if self.job_retention_days < 1:
            raise ValueError("JOB_RETENTION_DAYS must be at least 1")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            mail_window_days=_get_int("MAIL_WINDOW_DAYS", 3),
            mail_max_results=_get_int("MAIL_MAX_RESULTS", 100),
            mail_batch_size=_get_int("MAIL_BATCH_SIZE", 10),
            mail_batch_delay=_get_float("MAIL_BATCH_DELAY", 0.2),
            mail_fetch_timeout=_get_float("MAIL_FETCH_TIMEOUT", 30.0),
            extractor_timeout=_get_float("EXTRACTOR_TIMEOUT", 60.0),
            dispose_policy=DisposePolicy.parse(
                _get_str("DISPOSE_POLICY", DisposePolicy.MARK_READ_AND_ARCHIVE.value)
            ),
            empty_policy=DisposePolicy.parse(
                _get_str("EMPTY_POLICY", DisposePolicy.MARK_READ.value)
            ),
            dedup_precedence=_get_str("DEDUP_PRECEDENCE", "url").lower(),
            min_relevance_score=_get_float("MIN_RELEVANCE_SCORE", 0.6),
            check_interval=_get_int("CHECK_INTERVAL", 3600),
            pipeline_run_limit=_get_int("PIPELINE_RUN_LIMIT", 3),
            job_retention_days=_get_int("JOB_RETENTION_DAYS", 3),
            gmail_client_id=_get_str("GMAIL_CLIENT_ID"),
            gmail_client_secret=_get_str("GMAIL_CLIENT_SECRET"),
            gmail_refresh_token=_get_str("GMAIL_REFRESH_TOKEN"),
            gmail_token_path=_get_str("GMAIL_TOKEN_PATH"),
            openai_api_key=_get_str("OPENAI_API_KEY"),
            openai_model=_get_str("OPENAI_MODEL", "gpt-4o-mini"),
            telegram_bot_token=_get_str("TELEGRAM_BOT_TOKEN"),
        )


__all__ = ["DEDUP_PRECEDENCES", "Settings"]
