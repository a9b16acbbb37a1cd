from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, model_validator

from app.auth_utils import get_current_user
from app.envelope import clamp_limit, ok, page_meta
from core.database import (
    create_stage,
    delete_stage,
    get_stage_for_user,
    list_stages,
    list_user_jobs,
    reorder_stages,
    reorder_stages_by_ids,
    update_stage,
)

router = APIRouter(prefix="/api/v1/stages", tags=["stages"])


class StageCreate(BaseModel):
    name: str
    color: str = "#6B7280"
    sort_order: Optional[int] = Field(default=None, ge=0)


class StageUpdate(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None


class StageAssignment(BaseModel):
    id: int
    sort_order: int = Field(ge=0)


class StageReorder(BaseModel):
    """Either an ordered id list (orders 1..n) or explicit assignments."""

    stageIds: Optional[List[int]] = None
    assignments: Optional[List[StageAssignment]] = None

    @model_validator(mode="after")
    def _one_form(self):
        if (self.stageIds is None) == (self.assignments is None):
            raise ValueError("Provide exactly one of stageIds or assignments")
        return self


@router.get("")
def stages_list(user: dict = Depends(get_current_user)):
    return ok(list_stages(user["id"]))


@router.post("", status_code=201)
def stages_create(payload: StageCreate, user: dict = Depends(get_current_user)):
    stage = create_stage(user["id"], payload.name, payload.color, payload.sort_order)
    return ok(stage, status_code=201)


@router.put("/reorder")
def stages_reorder(payload: StageReorder, user: dict = Depends(get_current_user)):
    if payload.stageIds is not None:
        stages = reorder_stages_by_ids(user["id"], payload.stageIds)
    else:
        stages = reorder_stages([(a.id, a.sort_order) for a in payload.assignments], user["id"])
    return ok(stages)


@router.put("/{stage_id}")
def stages_update(stage_id: int, payload: StageUpdate, user: dict = Depends(get_current_user)):
    return ok(update_stage(user["id"], stage_id, name=payload.name, color=payload.color))


@router.delete("/{stage_id}")
def stages_delete(stage_id: int, user: dict = Depends(get_current_user)):
    delete_stage(user["id"], stage_id)
    return ok({"id": stage_id, "deleted": True})


@router.get("/{stage_id}/jobs")
def stages_jobs(
    stage_id: int,
    limit: int = Query(20),
    offset: int = Query(0, ge=0),
    user: dict = Depends(get_current_user),
):
    stage = get_stage_for_user(user["id"], stage_id)
    limit = clamp_limit(limit)
    rows, total = list_user_jobs(user["id"], stage_id=stage_id, limit=limit, offset=offset)
    return ok({"stage": stage, "jobs": rows}, meta=page_meta(total, limit, offset, len(rows)))
