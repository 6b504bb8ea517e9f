"""FastAPI application factory with middleware, routers, and lifespan."""

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .candidates.source import create_candidate_source
from .config import settings, setup_logging
from .database.base import SessionLocal, get_db
from .errors import AlertEngineError, EntityNotFoundError, ScheduleNotFoundError
from .integrations.locks import create_lock_manager
from .providers.client import SmsDeliveryClient
from .rate_limit import limiter
from .schedules.runner import ScheduleRunner
from .schedules.scheduler import AlertScheduler

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


def _run_migrations() -> None:
    """Run Alembic migrations (upgrade head) on startup."""
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config()
    alembic_cfg.set_main_option("script_location", str(Path(__file__).parent.parent / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.effective_database_url)
    command.upgrade(alembic_cfg, "head")


def build_runner() -> ScheduleRunner:
    """Wire the runner from configuration."""
    return ScheduleRunner(
        session_factory=SessionLocal,
        candidate_source=create_candidate_source(),
        delivery_client=SmsDeliveryClient(),
        lock_manager=create_lock_manager(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    global _startup_time
    _startup_time = time.time()

    setup_logging()

    if settings.secret_key == "change-me":
        logger.warning("SECRET_KEY is the default value: provider credentials are not safely encrypted")

    _run_migrations()

    runner = build_runner()
    app.state.runner = runner
    app.state.delivery_client = runner.delivery_client

    scheduler = AlertScheduler(runner, settings.scheduler_interval_seconds)
    app.state.scheduler = scheduler
    if settings.scheduler_enabled:
        scheduler.start()

    yield

    scheduler.stop()
    runner.delivery_client.close()


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    retry_after = "60"
    return JSONResponse(
        {"error": "Too many requests", "detail": str(exc.detail), "retry_after": int(retry_after)},
        status_code=429,
        headers={"Retry-After": retry_after},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Alert Engine",
        lifespan=lifespan,
    )

    # --- Exception handlers ---
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)

    @app.exception_handler(ScheduleNotFoundError)
    @app.exception_handler(EntityNotFoundError)
    async def not_found_handler(request: Request, exc: AlertEngineError):
        return JSONResponse({"error": exc.message}, status_code=404)

    @app.exception_handler(AlertEngineError)
    async def engine_error_handler(request: Request, exc: AlertEngineError):
        logger.warning("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
        return JSONResponse({"error": exc.message, "kind": exc.kind}, status_code=400)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": "Invalid request", "detail": exc.errors()}, status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    # --- Middleware stack (LIFO: last added = outermost) ---

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    if settings.trusted_hosts_list != ["*"]:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=settings.trusted_hosts_list,
        )

    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        return response

    # --- API v1 (all JSON endpoints) ---
    from .api_v1 import api_v1_router

    app.include_router(api_v1_router)

    # --- Health check ---
    @app.get("/health")
    def health(request: Request, db: Session = Depends(get_db)):
        db_status = "ok"
        try:
            db.execute(text("SELECT 1"))
        except Exception:
            db_status = "unreachable"

        scheduler = getattr(request.app.state, "scheduler", None)
        scheduler_health = scheduler.health() if scheduler else {"running": False}

        status = "ok" if db_status == "ok" else "degraded"
        uptime = round(time.time() - _startup_time, 1) if _startup_time else 0.0

        return {
            "status": status,
            "db": db_status,
            "scheduler": scheduler_health,
            "version": "1.0.0",
            "uptime_seconds": uptime,
        }

    return app


app = create_app()
