import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from dotenv import load_dotenv
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.envelope import fail
from app.routes import jobs, pipeline, stages, user_jobs
from core.database import init_db
from core.errors import (
    DuplicateRecordError,
    NotFoundError,
    ReorderTransactionError,
    StageConflictError,
    StageInUseError,
    StageNotVisibleError,
)

# Ensure .env values are loaded even if uvicorn is launched without `dotenv run`.
# Use override=True so editing `.env` (and restarting uvicorn) reliably takes effect even if
# older values exist in the environment from a previous shell/session.
load_dotenv(override=True)

log = logging.getLogger("api")

ERROR_STATUS = (
    (NotFoundError, 404),
    (StageNotVisibleError, 403),
    (StageInUseError, 409),
    (StageConflictError, 409),
    (ReorderTransactionError, 409),
    (DuplicateRecordError, 409),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="jobdigest", lifespan=lifespan)


app.include_router(jobs.router)
app.include_router(stages.router)
app.include_router(user_jobs.router)
app.include_router(pipeline.router)


async def domain_error_handler(request: Request, exc: Exception):
    status = next((code for exc_type, code in ERROR_STATUS if isinstance(exc, exc_type)), 400)
    log.info("Request rejected", extra={"path": request.url.path, "status": status, "error": str(exc)})
    return fail(str(exc), status)


for _exc_type, _ in ERROR_STATUS:
    app.add_exception_handler(_exc_type, domain_error_handler)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return fail(str(exc), 400)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return fail("Invalid request", 400, details=exc.errors())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return fail(str(exc.detail), exc.status_code)


@app.get("/api/v1/health")
def health():
    return {"success": True, "data": {"status": "ok"}}


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("Cache-Control", "no-store")
    return response
