"""
Python client for the tracking API plus an optimistic kanban board model.

`KanbanBoard` applies moves and reorders locally first, then confirms them
with the server; on any failure it restores the last confirmed snapshot and
re-raises so the caller can surface the error.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from core.errors import JobDigestError
from core.retry import retry

log = logging.getLogger(__name__)

IDEMPOTENT_METHODS = {"GET", "PUT", "DELETE"}


class ApiError(JobDigestError):
    def __init__(self, status_code: int, error: str, details: Any = None):
        super().__init__(f"{status_code}: {error}")
        self.status_code = status_code
        self.error = error
        self.details = details


class TrackerClient:
    def __init__(
        self,
        base_url: str,
        user_id: int,
        *,
        timeout: float = 10.0,
        retries: int = 2,
        http: Optional[httpx.Client] = None,
    ):
        self._http = http or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)
        self._headers = {"X-User-Id": str(user_id)}
        self.retries = retries

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "TrackerClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        return self._http.request(method, path, headers=self._headers, **kwargs)

    def request(self, method: str, path: str, **kwargs) -> Dict:
        """Send a request and return the unwrapped envelope ({data, meta})."""
        method = method.upper()
        if method in IDEMPOTENT_METHODS:
            send = retry(attempts=self.retries + 1, retry_on=(httpx.TransportError,))(self._send)
        else:
            send = self._send
        response = send(method, path, **kwargs)

        try:
            body = response.json()
        except ValueError:
            raise ApiError(response.status_code, response.text or "Invalid JSON response")
        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            details = body.get("details") if isinstance(body, dict) else None
            raise ApiError(response.status_code, error or "Request failed", details)
        return {"data": body.get("data"), "meta": body.get("meta")}

    def list_jobs(self, **params) -> Dict:
        return self.request("GET", "/api/v1/jobs", params=params)

    def list_stages(self) -> List[Dict]:
        return self.request("GET", "/api/v1/stages")["data"]

    def create_stage(self, name: str, color: str = "#6B7280", sort_order: Optional[int] = None) -> Dict:
        payload: Dict[str, Any] = {"name": name, "color": color}
        if sort_order is not None:
            payload["sort_order"] = sort_order
        return self.request("POST", "/api/v1/stages", json=payload)["data"]

    def update_stage(self, stage_id: int, **changes) -> Dict:
        return self.request("PUT", f"/api/v1/stages/{stage_id}", json=changes)["data"]

    def delete_stage(self, stage_id: int) -> None:
        self.request("DELETE", f"/api/v1/stages/{stage_id}")

    def reorder_stages(self, stage_ids: Sequence[int]) -> List[Dict]:
        return self.request("PUT", "/api/v1/stages/reorder", json={"stageIds": list(stage_ids)})["data"]

    def get_board(self) -> List[Dict]:
        return self.request("GET", "/api/v1/user-jobs/board")["data"]

    def track_job(self, job_id: int) -> Dict:
        return self.request("POST", f"/api/v1/user-jobs/{job_id}")["data"]

    def move_job(self, job_id: int, stage_id: int) -> Dict:
        return self.request("PUT", f"/api/v1/user-jobs/{job_id}/stage", json={"stage_id": stage_id})["data"]

    def update_user_job(self, job_id: int, **changes) -> Dict:
        return self.request("PATCH", f"/api/v1/user-jobs/{job_id}", json=changes)["data"]

    def run_pipeline(self) -> Dict:
        return self.request("POST", "/api/v1/pipeline/run")["data"]

    def pipeline_status(self) -> Dict:
        return self.request("GET", "/api/v1/pipeline/status")["data"]


class KanbanBoard:
    def __init__(self, client: TrackerClient):
        self.client = client
        self.stages: List[Dict] = []

    def refresh(self) -> List[Dict]:
        """Replace local state with the server's board."""
        self.stages = self.client.get_board()
        return self.stages

    def column(self, stage_id: int) -> Dict:
        for stage in self.stages:
            if stage["id"] == stage_id:
                return stage
        raise KeyError(f"Stage {stage_id} is not on the board")

    def find_job(self, job_id: int) -> Optional[Dict]:
        for stage in self.stages:
            for record in stage.get("jobs", []):
                if record["job_id"] == job_id:
                    return record
        return None

    def move_job(self, job_id: int, stage_id: int) -> Dict:
        record = self.find_job(job_id)
        if record is None:
            raise KeyError(f"Job {job_id} is not on the board")
        target = self.column(stage_id)
        snapshot = copy.deepcopy(self.stages)

        source = self.column(record["stage_id"])
        source["jobs"] = [r for r in source["jobs"] if r["job_id"] != job_id]
        moved = dict(record, stage_id=stage_id, stage_name=target.get("name"), stage_color=target.get("color"))
        target.setdefault("jobs", []).insert(0, moved)

        try:
            confirmed = self.client.move_job(job_id, stage_id)
        except Exception as exc:
            self.stages = snapshot
            log.warning("Move rejected; board restored", extra={"job_id": job_id, "error": str(exc)})
            raise

        moved.update(confirmed)
        return moved

    def reorder_stages(self, stage_ids: Sequence[int]) -> List[Dict]:
        ids = list(stage_ids)
        snapshot = copy.deepcopy(self.stages)

        by_id = {s["id"]: s for s in self.stages}
        positions = {sid: index for index, sid in enumerate(ids, start=1)}
        for sid, order in positions.items():
            if sid in by_id:
                by_id[sid]["sort_order"] = order
        self.stages.sort(key=lambda s: (s["sort_order"], s["id"]))

        try:
            confirmed = self.client.reorder_stages(ids)
        except Exception as exc:
            self.stages = snapshot
            log.warning("Reorder rejected; board restored", extra={"error": str(exc)})
            raise

        orders = {s["id"]: s["sort_order"] for s in confirmed}
        for stage in self.stages:
            if stage["id"] in orders:
                stage["sort_order"] = orders[stage["id"]]
        self.stages.sort(key=lambda s: (s["sort_order"], s["id"]))
        return self.stages


__all__ = ["ApiError", "KanbanBoard", "TrackerClient"]
