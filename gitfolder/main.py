"""FastAPI application entry point."""

import asyncio
import logging
import os
import platform
import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from gitfolder.auth.routes import router as auth_router
from gitfolder.branches.routes import router as branches_router
from gitfolder.config import get_settings
from gitfolder.db.session import get_session, init_db
from gitfolder.errors import GitFolderError
from gitfolder.files.routes import router as files_router
from gitfolder.limiter import limiter
from gitfolder.repositories.routes import router as repositories_router
from gitfolder.services import build_services
from gitfolder.shared.routes import router as shared_router
from gitfolder.users.routes import router as users_router
from gitfolder.users.service import ensure_dev_user

VERSION = "0.1.0"

log = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging from settings (stderr always; optional file)."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger("gitfolder")
    root.setLevel(level)
    root.handlers.clear()
    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root.addHandler(sh)
    if settings.log_file and str(settings.log_file).strip():
        try:
            fh = logging.FileHandler(settings.log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(fmt)
            root.addHandler(fh)
            root.info("Logging to file %s", settings.log_file)
        except OSError as e:
            root.warning("Could not open log file %s: %s", settings.log_file, e)
    else:
        root.debug("Logging to stderr only (no log_file set)")


_setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, build services and start the upload sweeper."""
    settings = get_settings()
    log.info("Startup: initializing database and storage (auth_mode=%s)", settings.auth_mode)
    await init_db()
    services = build_services(settings)
    services.repositories.initialize()
    settings.upload_temp_path.mkdir(parents=True, exist_ok=True)
    if settings.is_dev_auth:
        async with get_session() as session:
            await ensure_dev_user(session)
    app.state.services = services
    app.state.started_at = time.monotonic()
    sweeper = asyncio.create_task(services.uploads.run_sweeper(settings.upload_sweep_interval_seconds))
    log.info("Startup complete")
    yield
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    log.info("Shutdown")


app = FastAPI(title="git-folder API", version=VERSION, lifespan=lifespan)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


def _error_body(detail: str, code: Optional[str], exc: Exception) -> dict:
    body = {"detail": detail, "code": code}
    if get_settings().debug:
        body["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return body


@app.exception_handler(GitFolderError)
async def gitfolder_exception_handler(request: Request, exc: GitFolderError):
    """Typed service errors map to their HTTP status."""
    if exc.status_code >= 500:
        log.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    else:
        log.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.code, exc))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Return generic 500 without leaking stack trace or internals."""
    if isinstance(exc, HTTPException):
        raise exc
    log.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content=_error_body("Internal server error", None, exc),
    )


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(repositories_router)
app.include_router(files_router)
app.include_router(branches_router)
app.include_router(shared_router)


def _memory_mb() -> Optional[dict]:
    """Host memory in MB from sysconf; None where the platform does not expose it."""
    try:
        page = os.sysconf("SC_PAGE_SIZE")
        total = os.sysconf("SC_PHYS_PAGES") * page
        free = os.sysconf("SC_AVPHYS_PAGES") * page
    except (ValueError, OSError, AttributeError):
        return None
    used = total - free
    return {
        "free": round(free / 1024 / 1024),
        "total": round(total / 1024 / 1024),
        "used": round(used / 1024 / 1024),
        "percentage": round(used * 100 / total) if total else 0,
    }


@app.get("/api/health")
@limiter.exempt
async def api_health(request: Request) -> dict:
    """Service status with uptime and host info."""
    started_at = getattr(request.app.state, "started_at", time.monotonic())
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - started_at, 3),
        "environment": get_settings().environment,
        "version": VERSION,
        "system": {"platform": platform.system().lower(), "memory": _memory_mb()},
    }


@app.get("/api/health/ping")
@limiter.exempt
async def ping() -> dict:
    return {"pong": True}


@app.get("/health")
@limiter.exempt
def health() -> JSONResponse:
    """Health check for Docker and tunnel. Exempt from rate limiting."""
    return JSONResponse(content={"status": "ok"})
