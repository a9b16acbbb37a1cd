"""
Caller identity. Authentication happens upstream; the gateway forwards the
authenticated user's id in the X-User-Id header.
"""
from __future__ import annotations

from typing import Dict, Optional

from fastapi import Header, HTTPException

from core.database import get_user_by_id

USER_HEADER = "X-User-Id"


def get_current_user(x_user_id: Optional[str] = Header(default=None, alias=USER_HEADER)) -> Dict:
    """Resolve the header to an active user row, or reject with 401."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail=f"Missing {USER_HEADER} header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Invalid {USER_HEADER} header")

    user = get_user_by_id(user_id)
    if not user or not user.get("active"):
        raise HTTPException(status_code=401, detail="Unknown or inactive user")
    return user


__all__ = ["USER_HEADER", "get_current_user"]
