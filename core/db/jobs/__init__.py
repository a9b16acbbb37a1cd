"""
Jobs storage re-exports.
"""
from core.db.jobs.dedup import compute_dedup_key, is_generic_url, normalize_url
from core.db.jobs.jobs_store import (
    deduplicate_and_insert,
    mark_processed,
    get_job,
    list_jobs,
    get_unnotified_jobs,
    delete_job,
    cleanup_old_untracked_jobs,
    get_summary,
    get_stats,
)

__all__ = [
    "compute_dedup_key",
    "is_generic_url",
    "normalize_url",
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
