"""
Stage catalog re-exports.
"""
from core.db.stages.stage_store import (
    DEFAULT_STAGES,
    list_for_user,
    get_stage,
    get_stage_for_user,
    default_stage,
    reorder,
    reorder_by_ids,
    create_stage,
    update_stage,
    delete_stage,
    seed_default_stages,
)

__all__ = [
    "DEFAULT_STAGES",
    "list_for_user",
    "get_stage",
    "get_stage_for_user",
    "default_stage",
    "reorder",
    "reorder_by_ids",
    "create_stage",
    "update_stage",
    "delete_stage",
    "seed_default_stages",
]
