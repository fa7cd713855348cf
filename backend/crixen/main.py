"""Crixen billing backend: FastAPI application entry point."""

import asyncio
import signal
import uuid
from contextlib import asynccontextmanager, suppress

# configure_structlog must run before any other crixen import: structlog
# caches the processor chain on first use.
from crixen.core.logging import configure_structlog
from crixen.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crixen.api.routes import api_router
from crixen.core.config import Settings, get_settings
from crixen.core.container import BillingContainer
from crixen.core.exceptions import CrixenError
from crixen.db import close_db, close_redis, get_redis, get_session_factory, init_db, init_redis
from crixen.middleware.correlation import get_correlation_id, setup_correlation_middleware

logger = structlog.get_logger(__name__)


def validate_billing_config(settings: Settings | None = None) -> None:
    """Fail fast if provider credentials or the callback URL are missing.

    Skipped in debug mode, where per-request paths still raise
    ConfigurationError for whatever is unset.
    """
    settings = settings or get_settings()
    if settings.debug:
        return
    required = {
        "backend_url": settings.backend_url,
        "jwt_secret": settings.jwt_secret,
        "hot_pay_item_id": settings.hot_pay_item_id,
        "hot_pay_webhook_secret": settings.hot_pay_webhook_secret,
        "pingpay_api_key": settings.pingpay_api_key,
        "pingpay_webhook_secret": settings.pingpay_webhook_secret,
    }
    missing = [k for k, v in required.items() if not v]
    if missing:
        raise RuntimeError(f"Missing billing configuration at startup: {missing}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # SIGTERM flips this so /api/health returns 503 while draining
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    validate_billing_config(settings)
    logger.info("billing_config_validated")

    # Alembic owns the production schema
    await init_db(create_tables=settings.debug)
    logger.info("db_initialized")

    await init_redis()
    logger.info("redis_initialized")

    billing = BillingContainer.from_settings(settings, get_session_factory(), get_redis())
    app.state.billing = billing

    scheduler_task = None
    if settings.scheduler_enabled:
        scheduler_task = asyncio.create_task(billing.scheduler.run())
        logger.info("scheduler_started", hour_utc=settings.scheduler_hour_utc)

    yield

    logger.info("shutdown_begin")
    if scheduler_task is not None:
        billing.scheduler.stop()
        scheduler_task.cancel()
        with suppress(asyncio.CancelledError):
            await scheduler_task
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


async def crixen_exception_handler(request: Request, exc: CrixenError) -> JSONResponse:
    """Map domain errors to their HTTP status with a debug_id."""
    debug_id = str(uuid.uuid4())
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "crixen_error",
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        detail=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "debug_id": debug_id},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """HTTPException with debug_id tracking. Logs server-side, returns a sanitized body."""
    debug_id = str(uuid.uuid4())
    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        detail=exc.detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unhandled errors: log with traceback, return a generic 500."""
    debug_id = str(uuid.uuid4())
    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.exception_handler(CrixenError)(crixen_exception_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Crixen billing and entitlements API",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, *settings.cors_allowed_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "crixen.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
