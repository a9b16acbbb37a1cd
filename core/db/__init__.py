"""
Postgres storage layer.
"""
from core.db.base import get_conn, transaction
from core.db.schema import init_db

__all__ = ["get_conn", "transaction", "init_db"]
