"""
User storage helpers.
"""
from core.db.users.user_store import (
    create_user,
    get_user_by_email,
    get_user_by_id,
    set_telegram_chat_id,
    set_user_active,
    get_notifiable_users,
    delete_user_data,
)

__all__ = [
    "create_user",
    "get_user_by_email",
    "get_user_by_id",
    "set_telegram_chat_id",
    "set_user_active",
    "get_notifiable_users",
    "delete_user_data",
]
