from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.auth_utils import get_current_user
from app.envelope import clamp_limit, ok, page_meta
from core.database import (
    delete_user_job,
    get_board,
    get_or_create_user_job,
    get_stage_stats,
    get_user_job,
    list_user_jobs,
    move_user_job,
    update_user_job,
)
from core.errors import NotFoundError

router = APIRouter(prefix="/api/v1/user-jobs", tags=["tracking"])


class StageMove(BaseModel):
    stage_id: int


class UserJobPatch(BaseModel):
    is_interested: Optional[bool] = None
    applied_date: Optional[date] = None
    interview_date: Optional[date] = None
    notes: Optional[str] = None
    application_url: Optional[str] = None
    contact_person: Optional[str] = None
    salary_expectation: Optional[str] = None


@router.get("")
def user_jobs_list(
    stage_id: Optional[int] = None,
    limit: int = Query(50),
    offset: int = Query(0, ge=0),
    user: dict = Depends(get_current_user),
):
    limit = clamp_limit(limit, default=50)
    rows, total = list_user_jobs(user["id"], stage_id=stage_id, limit=limit, offset=offset)
    return ok(rows, meta=page_meta(total, limit, offset, len(rows)))


@router.get("/board")
def user_jobs_board(user: dict = Depends(get_current_user)):
    return ok(get_board(user["id"]))


@router.get("/stats")
def user_jobs_stats(user: dict = Depends(get_current_user)):
    return ok(get_stage_stats(user["id"]))


@router.post("/{job_id}")
def user_jobs_track(job_id: int, user: dict = Depends(get_current_user)):
    return ok(get_or_create_user_job(user["id"], job_id))


@router.get("/{job_id}")
def user_jobs_get(job_id: int, user: dict = Depends(get_current_user)):
    record = get_user_job(user["id"], job_id)
    if not record:
        raise NotFoundError(f"Job {job_id} is not tracked")
    return ok(record)


@router.put("/{job_id}/stage")
def user_jobs_move(job_id: int, payload: StageMove, user: dict = Depends(get_current_user)):
    return ok(move_user_job(user["id"], job_id, payload.stage_id))


@router.patch("/{job_id}")
def user_jobs_patch(job_id: int, payload: UserJobPatch, user: dict = Depends(get_current_user)):
    changes = payload.model_dump(exclude_unset=True)
    for field in ("applied_date", "interview_date"):
        if changes.get(field) is not None:
            changes[field] = changes[field].isoformat()
    return ok(update_user_job(user["id"], job_id, changes))


@router.delete("/{job_id}")
def user_jobs_delete(job_id: int, user: dict = Depends(get_current_user)):
    if not delete_user_job(user["id"], job_id):
        raise NotFoundError(f"Job {job_id} is not tracked")
    return ok({"job_id": job_id, "deleted": True})
