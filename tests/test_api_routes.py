import pytest
from fastapi.testclient import TestClient

import app.auth_utils as auth_utils
import app.routes.jobs as jobs_routes
import app.routes.pipeline as pipeline_routes
import app.routes.stages as stages_routes
import app.routes.user_jobs as user_jobs_routes
from app.api import app
from app.auth_utils import get_current_user
from app.security import reset_rate_limits
from core.config import Settings
from core.errors import (
    ReorderTransactionError,
    StageConflictError,
    StageInUseError,
    StageNotFoundError,
    StageNotVisibleError,
    StageReadOnlyError,
)
from worker.pipeline import RunResult

USER = {"id": 7, "email": "dev@example.com", "active": 1}


@pytest.fixture
def client():
    # No `with` block: the lifespan (init_db) is not run.
    app.dependency_overrides[get_current_user] = lambda: USER
    reset_rate_limits()
    yield TestClient(app)
    app.dependency_overrides.clear()
    reset_rate_limits()


def test_missing_user_header_is_401():
    resp = TestClient(app).get("/api/v1/stages")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Missing X-User-Id header"}


def test_unknown_user_is_401(monkeypatch):
    monkeypatch.setattr(auth_utils, "get_user_by_id", lambda user_id: None)
    resp = TestClient(app).get("/api/v1/stages", headers={"X-User-Id": "99"})
    assert resp.status_code == 401

    resp = TestClient(app).get("/api/v1/stages", headers={"X-User-Id": "abc"})
    assert resp.status_code == 401


def test_header_resolves_active_user(monkeypatch):
    monkeypatch.setattr(auth_utils, "get_user_by_id", lambda user_id: dict(USER, id=user_id))
    monkeypatch.setattr(stages_routes, "list_stages", lambda user_id: [{"id": 1, "owner": user_id}])

    resp = TestClient(app).get("/api/v1/stages", headers={"X-User-Id": "12"})

    assert resp.status_code == 200
    assert resp.json()["data"] == [{"id": 1, "owner": 12}]


def test_health(client):
    assert client.get("/api/v1/health").json() == {"success": True, "data": {"status": "ok"}}


def test_jobs_list_envelope_and_limit_clamp(client, monkeypatch):
    seen = {}

    def fake_list_jobs(**kwargs):
        seen.update(kwargs)
        return [{"id": 1, "title": "Engineer"}], 41

    monkeypatch.setattr(jobs_routes, "list_jobs", fake_list_jobs)

    resp = client.get("/api/v1/jobs", params={"limit": 500, "offset": 40, "untracked": "true"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"] == [{"id": 1, "title": "Engineer"}]
    assert body["meta"] == {"total": 41, "limit": 100, "offset": 40, "count": 1}
    assert seen["limit"] == 100
    assert seen["untracked_by"] == 7


def test_jobs_list_default_limit(client, monkeypatch):
    monkeypatch.setattr(jobs_routes, "list_jobs", lambda **kwargs: ([], 0))
    assert client.get("/api/v1/jobs").json()["meta"]["limit"] == 20


def test_job_not_found(client, monkeypatch):
    monkeypatch.setattr(jobs_routes, "get_job", lambda job_id: None)
    resp = client.get("/api/v1/jobs/5")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Job 5 not found"}


def test_invalid_query_is_400(client):
    resp = client.get("/api/v1/jobs", params={"min_relevance": 3})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid request"


def test_reorder_by_ids(client, monkeypatch):
    calls = []

    def fake_reorder(user_id, stage_ids):
        calls.append((user_id, stage_ids))
        return [{"id": sid, "sort_order": i} for i, sid in enumerate(stage_ids, start=1)]

    monkeypatch.setattr(stages_routes, "reorder_stages_by_ids", fake_reorder)

    resp = client.put("/api/v1/stages/reorder", json={"stageIds": [3, 1, 2]})

    assert resp.status_code == 200
    assert [s["id"] for s in resp.json()["data"]] == [3, 1, 2]
    assert calls == [(7, [3, 1, 2])]


def test_reorder_with_assignments(client, monkeypatch):
    calls = []
    monkeypatch.setattr(
        stages_routes, "reorder_stages", lambda assignments, user_id: calls.append((assignments, user_id)) or []
    )

    resp = client.put("/api/v1/stages/reorder", json={"assignments": [{"id": 5, "sort_order": 2}]})

    assert resp.status_code == 200
    assert calls == [([(5, 2)], 7)]


def test_reorder_requires_exactly_one_form(client):
    resp = client.put("/api/v1/stages/reorder", json={"stageIds": [1], "assignments": []})
    assert resp.status_code == 400
    resp = client.put("/api/v1/stages/reorder", json={})
    assert resp.status_code == 400


@pytest.mark.parametrize(
    "error, status",
    [
        (ReorderTransactionError("Conflicting sort orders for stage 5: 1 and 2"), 409),
        (StageNotVisibleError(4, 7), 403),
        (StageNotFoundError("Stage 99 not found"), 404),
    ],
)
def test_reorder_errors_map_to_status(client, monkeypatch, error, status):
    def boom(user_id, stage_ids):
        raise error

    monkeypatch.setattr(stages_routes, "reorder_stages_by_ids", boom)

    resp = client.put("/api/v1/stages/reorder", json={"stageIds": [5, 5]})

    assert resp.status_code == status
    assert resp.json() == {"success": False, "error": str(error)}


def test_create_stage_conflict(client, monkeypatch):
    def boom(*args):
        raise StageConflictError("A stage named 'Applied' already exists")

    monkeypatch.setattr(stages_routes, "create_stage", boom)
    resp = client.post("/api/v1/stages", json={"name": "Applied"})
    assert resp.status_code == 409


def test_create_stage_bad_color_is_400(client, monkeypatch):
    def boom(*args):
        raise ValueError("Color must be a hex value like #3B82F6")

    monkeypatch.setattr(stages_routes, "create_stage", boom)
    resp = client.post("/api/v1/stages", json={"name": "Later", "color": "blue"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Color must be a hex value like #3B82F6"


def test_create_stage_returns_201(client, monkeypatch):
    monkeypatch.setattr(
        stages_routes,
        "create_stage",
        lambda user_id, name, color, sort_order: {"id": 20, "user_id": user_id, "name": name, "color": color},
    )
    resp = client.post("/api/v1/stages", json={"name": "Later"})
    assert resp.status_code == 201
    assert resp.json()["data"]["user_id"] == 7


def test_delete_stage_in_use_is_409(client, monkeypatch):
    def boom(user_id, stage_id):
        raise StageInUseError(stage_id, 3)

    monkeypatch.setattr(stages_routes, "delete_stage", boom)
    resp = client.delete("/api/v1/stages/12")
    assert resp.status_code == 409
    assert resp.json()["error"] == "Stage 12 is used by 3 tracked job(s)"


def test_system_stage_is_read_only(client, monkeypatch):
    def boom(user_id, stage_id, name=None, color=None):
        raise StageReadOnlyError(stage_id, user_id)

    monkeypatch.setattr(stages_routes, "update_stage", boom)
    resp = client.put("/api/v1/stages/1", json={"name": "Mine now"})
    assert resp.status_code == 403
    assert "system stage" in resp.json()["error"]


def test_stage_jobs_payload(client, monkeypatch):
    monkeypatch.setattr(stages_routes, "get_stage_for_user", lambda user_id, stage_id: {"id": stage_id})
    monkeypatch.setattr(
        stages_routes, "list_user_jobs", lambda user_id, stage_id, limit, offset: ([{"job_id": 1}], 1)
    )

    body = client.get("/api/v1/stages/3/jobs").json()

    assert body["data"] == {"stage": {"id": 3}, "jobs": [{"job_id": 1}]}
    assert body["meta"]["total"] == 1


def test_move_to_other_users_stage_is_403(client, monkeypatch):
    def boom(user_id, job_id, stage_id):
        raise StageNotVisibleError(stage_id, user_id)

    monkeypatch.setattr(user_jobs_routes, "move_user_job", boom)
    resp = client.put("/api/v1/user-jobs/4/stage", json={"stage_id": 30})
    assert resp.status_code == 403


def test_patch_sends_only_set_fields(client, monkeypatch):
    seen = {}

    def fake_update(user_id, job_id, changes):
        seen.update(changes)
        return {"job_id": job_id, **changes}

    monkeypatch.setattr(user_jobs_routes, "update_user_job", fake_update)

    resp = client.patch("/api/v1/user-jobs/4", json={"notes": "call back", "applied_date": "2024-03-01"})

    assert resp.status_code == 200
    assert seen == {"notes": "call back", "applied_date": "2024-03-01"}


def test_patch_can_clear_a_field(client, monkeypatch):
    seen = {}
    monkeypatch.setattr(
        user_jobs_routes, "update_user_job", lambda user_id, job_id, changes: seen.update(changes) or {}
    )
    client.patch("/api/v1/user-jobs/4", json={"interview_date": None})
    assert seen == {"interview_date": None}


def test_untracked_job_get_is_404(client, monkeypatch):
    monkeypatch.setattr(user_jobs_routes, "get_user_job", lambda user_id, job_id: None)
    assert client.get("/api/v1/user-jobs/8").status_code == 404


class FakePipeline:
    def __init__(self, result):
        self.result = result
        self.runs = 0

    async def run(self):
        self.runs += 1
        return self.result


def test_pipeline_run_ok_and_rate_limited(client, monkeypatch):
    fake = FakePipeline(RunResult(emails_seen=2, emails_processed=2, jobs_inserted=1))
    monkeypatch.setattr(pipeline_routes, "get_pipeline", lambda: fake)
    monkeypatch.setattr(pipeline_routes, "get_settings", lambda: Settings(pipeline_run_limit=2))

    first = client.post("/api/v1/pipeline/run")
    assert first.status_code == 200
    assert first.json()["data"]["jobs_inserted"] == 1
    assert first.json()["meta"] == {"remaining_runs": 1}

    assert client.post("/api/v1/pipeline/run").status_code == 200
    limited = client.post("/api/v1/pipeline/run")
    assert limited.status_code == 429
    assert 1 <= int(limited.headers["Retry-After"]) <= 60
    assert fake.runs == 2


def test_pipeline_run_already_running_is_409(client, monkeypatch):
    fake = FakePipeline(RunResult(success=False, skipped=True, error="Pipeline is already running"))
    monkeypatch.setattr(pipeline_routes, "get_pipeline", lambda: fake)

    resp = client.post("/api/v1/pipeline/run")

    assert resp.status_code == 409
    assert resp.json()["error"] == "Pipeline is already running"
    assert resp.json()["details"]["skipped"] is True


def test_pipeline_run_failure_is_502(client, monkeypatch):
    fake = FakePipeline(RunResult(success=False, error="Failed to list messages: 503"))
    monkeypatch.setattr(pipeline_routes, "get_pipeline", lambda: fake)

    resp = client.post("/api/v1/pipeline/run")

    assert resp.status_code == 502


def test_pipeline_status_before_first_run(client, monkeypatch):
    monkeypatch.setattr(pipeline_routes, "_pipeline", None)
    data = client.get("/api/v1/pipeline/status").json()["data"]
    assert data == {"state": "not_running", "step": "idle", "last_result": None}
