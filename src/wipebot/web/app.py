"""FastAPI application for WipeBot.

Creates the FastAPI app with:
- Lifespan context manager for dependency initialization and scheduler
- Exception handlers that turn every failure into {success: false, error}
- The API router

Auto cleanups run as coroutine jobs of APScheduler's AsyncIOScheduler on
the same event loop as uvicorn, so they share the Crisp client and the
database store with the API routes.

Usage:
    from wipebot.web.app import create_app

    app = create_app()
    # Run with: uvicorn.run(app, host="127.0.0.1", port=8000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wipebot.core.errors import (
    AuthenticationError,
    AuthTransient,
    CyclicFilterError,
    NotFoundError,
    RateLimited,
    UpstreamFailure,
    ValidationError,
    WipeBotError,
)
from wipebot.core.logging import get_logger

logger = get_logger(__name__)

APP_VERSION = "0.1.0"

# First match wins; anything else is a 500
_ERROR_STATUS: tuple[tuple[type[WipeBotError], int], ...] = (
    (ValidationError, 400),
    (CyclicFilterError, 400),
    (NotFoundError, 404),
    (RateLimited, 502),
    (AuthTransient, 502),
    (AuthenticationError, 502),
    (UpstreamFailure, 502),
)


def status_code_for(exc: WipeBotError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize dependencies on startup, clean up on shutdown.

    On startup:
    1. Load config and configure logging
    2. Initialize database
    3. Initialize registry, Crisp client and cleanup orchestrator
    4. Start the auto cleanup scheduler

    On shutdown:
    - Stop the scheduler and close the Crisp client
    """
    from wipebot.config import get_config
    from wipebot.config_schema import OperatingMode
    from wipebot.core.logging import configure_logging
    from wipebot.core.retry import RateLimitedExecutor
    from wipebot.crisp.client import CrispClient
    from wipebot.db.store import DatabaseStore
    from wipebot.engine.cleanup import CleanupOrchestrator
    from wipebot.engine.scheduler import AutoCleanupScheduler
    from wipebot.filters.registry import FilterRegistry

    # 1. Load config
    try:
        config = get_config()
    except WipeBotError as e:
        logger.error("config_load_failed", error=str(e))
        # Store None values so health checks still answer
        app.state.config = None
        app.state.store = None
        app.state.registry = None
        app.state.crisp_client = None
        app.state.orchestrator = None
        app.state.scheduler = None
        yield
        return

    # Debug mode logs every API call; the output format stays the same
    log_level = "DEBUG" if config.mode is OperatingMode.DEBUG else config.log_level
    configure_logging(log_level, json_output=True)
    app.state.config = config

    # 2. Initialize database
    db_path = Path(config.database.path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = DatabaseStore(db_path)
    await store.initialize()
    app.state.store = store

    # 3. Registry, client and orchestrator
    registry = FilterRegistry(store, max_filters=config.registry.max_filters_per_tenant)
    if not config.crisp.identifier or not config.crisp.key:
        logger.warning("crisp_credentials_missing")
    crisp_client = CrispClient(
        identifier=config.crisp.identifier,
        key=config.crisp.key,
        base_url=config.crisp.base_url,
        timeout=config.crisp.timeout_seconds,
    )
    executor = RateLimitedExecutor(
        max_retries=config.retry.max_retries,
        base_delay=config.retry.base_delay_seconds,
        auth_retries=config.retry.auth_retries,
        auth_delay=config.retry.auth_delay_seconds,
    )
    orchestrator = CleanupOrchestrator(
        source=crisp_client,
        registry=registry,
        executor=executor,
        mode=config.mode,
        page_size=config.cleanup.effective_page_size,
        page_delay=config.cleanup.page_delay_seconds,
        delete_delay=config.cleanup.delete_delay_seconds,
        stats=store,
    )
    app.state.registry = registry
    app.state.crisp_client = crisp_client
    app.state.orchestrator = orchestrator

    # 4. Start the scheduler
    scheduler = None
    if config.scheduler.enabled:
        scheduler = AutoCleanupScheduler(
            orchestrator, registry, stats=store, timezone=config.scheduler.timezone
        )
        try:
            await scheduler.start()
        except WipeBotError as e:
            logger.error("scheduler_start_failed", error=str(e))
            scheduler = None
    app.state.scheduler = scheduler

    logger.info("app_started", mode=config.mode.value, version=APP_VERSION)

    yield

    # Shutdown
    if scheduler:
        await scheduler.shutdown()
    await crisp_client.close()
    logger.info("app_stopped")


async def _wipebot_error_handler(request: Request, exc: WipeBotError) -> JSONResponse:
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log("api_request_failed", path=request.url.path, status_code=status_code, error=str(exc))
    return JSONResponse({"success": False, "error": str(exc)}, status_code=status_code)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    lines = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        lines.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(
        {"success": False, "error": "Invalid request: " + "; ".join(lines)}, status_code=400
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("api_request_crashed", path=request.url.path, error=str(exc), exc_info=exc)
    return JSONResponse({"success": False, "error": "Internal error"}, status_code=500)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance
    """
    from wipebot.web.routes import api_router

    app = FastAPI(
        title="WipeBot",
        description="Filter-driven conversation cleanup for Crisp",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    app.add_exception_handler(WipeBotError, _wipebot_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(api_router)

    return app
