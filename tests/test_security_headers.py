import asyncio
from starlette.requests import Request
from starlette.responses import Response

import app.api as api_module


def _request() -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [],
        "query_string": b"",
    }
    return Request(scope)


def test_security_headers_applied():
    async def run_test():
        async def call_next(_request: Request) -> Response:
            return Response()

        resp = await api_module.add_security_headers(_request(), call_next)

        assert resp.status_code == 200
        headers = resp.headers
        assert headers.get("X-Content-Type-Options") == "nosniff"
        assert headers.get("X-Frame-Options") == "DENY"
        assert headers.get("Cache-Control") == "no-store"
        csp = headers.get("Content-Security-Policy")
        assert csp is not None
        assert "default-src 'none'" in csp

    asyncio.run(run_test())


def test_security_headers_preserve_existing_values():
    async def run_test():
        async def call_next(_request: Request) -> Response:
            resp = Response()
            resp.headers["Cache-Control"] = "max-age=60"
            return resp

        resp = await api_module.add_security_headers(_request(), call_next)

        # Existing Cache-Control should not be overridden; other headers still set
        assert resp.headers["Cache-Control"] == "max-age=60"
        assert resp.headers.get("X-Content-Type-Options") == "nosniff"
        assert resp.headers.get("X-Frame-Options") == "DENY"

    asyncio.run(run_test())


def test_security_headers_full_app_with_testclient():
    import pytest as _pytest
    _pytest.importorskip("httpx")
    from fastapi.testclient import TestClient

    client = TestClient(api_module.app)
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.headers.get("X-Content-Type-Options") == "nosniff"
    assert resp.headers.get("X-Frame-Options") == "DENY"
    assert "frame-ancestors 'none'" in (resp.headers.get("Content-Security-Policy") or "")

    # Error envelopes carry the same headers.
    missing = client.get("/api/v1/nope")
    assert missing.status_code == 404
    assert missing.json()["success"] is False
    assert missing.headers.get("X-Content-Type-Options") == "nosniff"


def test_rate_limit_window_slides():
    from app.security import check_rate, reset_rate_limits

    reset_rate_limits()
    assert check_rate("k", 2, window_seconds=60, now=0.0).remaining == 1
    assert check_rate("k", 2, window_seconds=60, now=10.0).remaining == 0

    blocked = check_rate("k", 2, window_seconds=60, now=30.0)
    assert blocked.allowed is False
    assert blocked.retry_after == 30

    # The first hit has aged out of the window.
    assert check_rate("k", 2, window_seconds=60, now=60.5).allowed is True
    assert check_rate("other", 2, window_seconds=60, now=30.0).allowed is True
    reset_rate_limits()
