"""
Processed-email ledger re-exports.
"""
from core.db.ledger.processed_store import (
    has_processed,
    filter_unprocessed,
    record_processed,
    mark_deleted,
    get_processed_email,
    get_processed_stats,
)

__all__ = [
    "has_processed",
    "filter_unprocessed",
    "record_processed",
    "mark_deleted",
    "get_processed_email",
    "get_processed_stats",
]
