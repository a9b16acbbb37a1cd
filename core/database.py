"""
Single import point for the storage layer, used by the API and the worker.

Stage-catalog and tracking functions share names in their own modules, so
they are re-exported here under qualified names.
"""
from core.db.base import get_conn, transaction
from core.db.locks import release_run_lock, try_acquire_run_lock
from core.db.schema import init_db, truncate_all
from core.db.ledger import (
    has_processed,
    filter_unprocessed,
    record_processed,
    mark_deleted,
    get_processed_email,
    get_processed_stats,
)
from core.db.jobs import (
    compute_dedup_key,
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
from core.db.stages import (
    DEFAULT_STAGES,
    list_for_user as list_stages,
    get_stage,
    get_stage_for_user,
    default_stage,
    reorder as reorder_stages,
    reorder_by_ids as reorder_stages_by_ids,
    create_stage,
    update_stage,
    delete_stage,
    seed_default_stages,
)
from core.db.tracking import (
    UNSET,
    get_user_job,
    get_or_create as get_or_create_user_job,
    update_stage as move_user_job,
    update_user_job,
    update_notes,
    update_dates,
    update_application_meta,
    set_interested,
    list_for_user as list_user_jobs,
    get_board,
    get_stage_stats,
    delete_user_job,
)
from core.db.users import (
    create_user,
    get_user_by_email,
    get_user_by_id,
    set_telegram_chat_id,
    set_user_active,
    get_notifiable_users,
    delete_user_data,
)

__all__ = [
    "get_conn",
    "transaction",
    "try_acquire_run_lock",
    "release_run_lock",
    "init_db",
    "truncate_all",
    "has_processed",
    "filter_unprocessed",
    "record_processed",
    "mark_deleted",
    "get_processed_email",
    "get_processed_stats",
    "compute_dedup_key",
    "deduplicate_and_insert",
    "mark_processed",
    "get_job",
    "list_jobs",
    "get_unnotified_jobs",
    "delete_job",
    "cleanup_old_untracked_jobs",
    "get_summary",
    "get_stats",
    "DEFAULT_STAGES",
    "list_stages",
    "get_stage",
    "get_stage_for_user",
    "default_stage",
    "reorder_stages",
    "reorder_stages_by_ids",
    "create_stage",
    "update_stage",
    "delete_stage",
    "seed_default_stages",
    "UNSET",
    "get_user_job",
    "get_or_create_user_job",
    "move_user_job",
    "update_user_job",
    "update_notes",
    "update_dates",
    "update_application_meta",
    "set_interested",
    "list_user_jobs",
    "get_board",
    "get_stage_stats",
    "delete_user_job",
    "create_user",
    "get_user_by_email",
    "get_user_by_id",
    "set_telegram_chat_id",
    "set_user_active",
    "get_notifiable_users",
    "delete_user_data",
]
