"""FastAPI application entrypoint."""

import logging
import os
from uuid import uuid4

from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.responses import Response
from sqlalchemy import text

from app import db
from app.db import create_db_and_tables
from app.jobs.queue import QueueMonitor, get_job_queue, reset_job_queue
from app.logging_config import configure_logging
from app.notifications import get_notifier
from app.routers.projects import router as projects_router
from app.routers.submissions import router as submissions_router
from app.settings import settings
from app.storage_provider import ensure_dir, get_storage_provider
from app.submission_store import SubmissionStore

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

_PUBLIC_PATHS = {
    "/health",
    "/health/deep",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/favicon.ico",
}


@app.middleware("http")
async def enforce_api_key(request: Request, call_next):
    if request.method == "OPTIONS":
        return await call_next(request)

    if request.url.path in _PUBLIC_PATHS:
        return await call_next(request)

    expected_api_key = os.getenv("BACKEND_API_KEY", "").strip()
    if expected_api_key:
        received_api_key = request.headers.get("X-API-Key", "")
        if received_api_key != expected_api_key:
            return JSONResponse(status_code=401, content={"detail": "Unauthorized"})

    return await call_next(request)

app.include_router(projects_router, prefix="/api")
app.include_router(submissions_router, prefix="/api")

_background: dict[str, object] = {}


def enqueue_deferred_checks() -> int:
    """Queue checks deferred during a broker outage or abandoned by a dead worker."""
    with db.new_session() as session:
        store = SubmissionStore(session, storage=get_storage_provider(), job_queue=get_job_queue(), notifier=get_notifier())
        return store.enqueue_deferred()


@app.on_event("startup")
def on_startup() -> None:
    configure_logging(log_level=settings.log_level, environment=settings.environment)
    ensure_dir(settings.data_path)
    create_db_and_tables()

    job_queue = get_job_queue()
    if job_queue.probe():
        enqueue_deferred_checks()

    monitor = QueueMonitor(job_queue, settings.queue_reprobe_interval_seconds, on_recovered=enqueue_deferred_checks)
    monitor.start()
    _background["monitor"] = monitor


@app.on_event("shutdown")
def on_shutdown() -> None:
    monitor = _background.pop("monitor", None)
    if isinstance(monitor, QueueMonitor):
        monitor.stop()

    get_job_queue().drain(settings.queue_drain_timeout_seconds)
    reset_job_queue()


@app.get("/health", tags=["meta"])
def health() -> dict[str, bool]:
    return {"ok": True, "queue_available": get_job_queue().is_available()}


@app.get("/health/deep", tags=["meta"])
def deep_health() -> dict[str, bool | str]:
    data_dir = settings.data_path

    storage_writable = False
    try:
        ensure_dir(data_dir)
        probe_path = data_dir / f".health_probe_{uuid4().hex}"
        probe_path.write_text("ok", encoding="utf-8")
        probe_path.unlink(missing_ok=True)
        storage_writable = True
    except OSError:
        storage_writable = False

    db_ok = False
    try:
        with db.new_session() as session:
            session.exec(text("SELECT 1"))
        db_ok = True
    except Exception:  # noqa: BLE001
        logger.exception("database health probe failed")
        db_ok = False

    return {
        "ok": True,
        "storage_writable": storage_writable,
        "data_dir": str(data_dir),
        "db_ok": db_ok,
        "queue_available": get_job_queue().is_available(),
    }


@app.options("/{path:path}", include_in_schema=False)
async def preflight(path: str) -> Response:
    del path
    return Response(status_code=204)
