from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.auth_utils import get_current_user
from app.envelope import fail, ok
from app.security import check_rate
from core.config import Settings
from core.errors import ExtractionError, TransportError
from worker.pipeline import Pipeline, build_pipeline

router = APIRouter(prefix="/api/v1/pipeline", tags=["pipeline"])

_pipeline: Optional[Pipeline] = None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def get_pipeline() -> Pipeline:
    """Build the process-wide pipeline on first use; every trigger shares its lock."""
    global _pipeline
    if _pipeline is None:
        try:
            _pipeline = build_pipeline(get_settings())
        except (TransportError, ExtractionError) as exc:
            raise HTTPException(status_code=503, detail=f"Pipeline not configured: {exc}")
    return _pipeline


@router.post("/run")
async def pipeline_run(user: dict = Depends(get_current_user)):
    decision = check_rate(f"pipeline-run:{user['id']}", get_settings().pipeline_run_limit, window_seconds=60)
    if not decision.allowed:
        resp = fail("Too many manual runs; try again later", 429)
        resp.headers["Retry-After"] = str(decision.retry_after)
        return resp

    result = await get_pipeline().run()
    if result.skipped:
        return fail(result.error or "Pipeline is already running", 409, details=result.to_dict())
    if not result.success:
        return fail(result.error or "Pipeline run failed", 502, details=result.to_dict())
    return ok(result.to_dict(), meta={"remaining_runs": decision.remaining})


@router.get("/status")
def pipeline_status(user: dict = Depends(get_current_user)):
    pipeline = _pipeline
    if pipeline is None:
        return ok({"state": "not_running", "step": "idle", "last_result": None})
    last = pipeline.last_result
    return ok(
        {
            "state": pipeline.run_state.value,
            "step": pipeline.state.value,
            "last_result": last.to_dict() if last else None,
        }
    )
