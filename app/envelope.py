"""
JSON envelope helpers: every response is {success, data?, error?, meta?}.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def clamp_limit(limit: Optional[int], default: int = DEFAULT_LIMIT) -> int:
    if not limit or limit < 1:
        return default
    return min(int(limit), MAX_LIMIT)


def page_meta(total: int, limit: int, offset: int, count: int) -> Dict[str, int]:
    return {"total": total, "limit": limit, "offset": offset, "count": count}


def ok(data: Any = None, *, meta: Optional[Dict] = None, status_code: int = 200) -> JSONResponse:
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if meta is not None:
        body["meta"] = meta
    return JSONResponse(jsonable_encoder(body), status_code=status_code)


def fail(error: str, status_code: int = 400, *, details: Any = None) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": error}
    if details is not None:
        body["details"] = details
    return JSONResponse(jsonable_encoder(body), status_code=status_code)


__all__ = ["DEFAULT_LIMIT", "MAX_LIMIT", "clamp_limit", "page_meta", "ok", "fail"]
