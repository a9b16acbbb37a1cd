"""
User tracking store re-exports.
"""
from core.db.tracking.user_jobs_store import (
    UNSET,
    EDITABLE_FIELDS,
    get_user_job,
    get_or_create,
    update_stage,
    update_user_job,
    update_notes,
    update_dates,
    update_application_meta,
    set_interested,
    list_for_user,
    get_board,
    get_stage_stats,
    delete_user_job,
)

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
