from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.auth_utils import get_current_user
from app.envelope import clamp_limit, ok, page_meta
from core.database import delete_job, get_job, get_stats, list_jobs
from core.errors import NotFoundError

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


@router.get("")
def jobs_list(
    limit: int = Query(20),
    offset: int = Query(0, ge=0),
    remote: Optional[bool] = None,
    min_relevance: Optional[float] = Query(None, ge=0.0, le=1.0),
    untracked: bool = False,
    user: dict = Depends(get_current_user),
):
    limit = clamp_limit(limit)
    rows, total = list_jobs(
        limit=limit,
        offset=offset,
        remote=remote,
        min_relevance=min_relevance,
        untracked_by=user["id"] if untracked else None,
    )
    return ok(rows, meta=page_meta(total, limit, offset, len(rows)))


@router.get("/stats")
def jobs_stats(user: dict = Depends(get_current_user)):
    return ok(get_stats())


@router.get("/{job_id}")
def jobs_get(job_id: int, user: dict = Depends(get_current_user)):
    job = get_job(job_id)
    if not job:
        raise NotFoundError(f"Job {job_id} not found")
    return ok(job)


@router.delete("/{job_id}")
def jobs_delete(job_id: int, user: dict = Depends(get_current_user)):
    if not delete_job(job_id):
        raise NotFoundError(f"Job {job_id} not found")
    return ok({"id": job_id, "deleted": True})
