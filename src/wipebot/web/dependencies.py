"""FastAPI dependency injection helpers.

Extracts shared dependencies from app.state for use in route handlers.
All dependencies are initialized during the FastAPI lifespan. A missing
dependency (config failed to load at startup) answers 503.

Usage:
    from wipebot.web.dependencies import get_registry

    @router.get("/filters/{tenant}")
    async def list_filters(tenant: str, registry: FilterRegistry = Depends(get_registry)):
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import HTTPException, Request

if TYPE_CHECKING:
    from wipebot.crisp.client import CrispClient
    from wipebot.db.store import DatabaseStore
    from wipebot.engine.cleanup import CleanupOrchestrator
    from wipebot.engine.scheduler import AutoCleanupScheduler
    from wipebot.filters.registry import FilterRegistry


def _require(request: Request, name: str, label: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{label} not available, check the server logs")
    return value


def get_store(request: Request) -> DatabaseStore:
    """Get the shared DatabaseStore from app state."""
    return _require(request, "store", "Database")


def get_registry(request: Request) -> FilterRegistry:
    return _require(request, "registry", "Filter registry")


def get_orchestrator(request: Request) -> CleanupOrchestrator:
    return _require(request, "orchestrator", "Cleanup engine")


def get_crisp_client(request: Request) -> CrispClient:
    return _require(request, "crisp_client", "Crisp client")


def get_scheduler(request: Request) -> AutoCleanupScheduler | None:
    """Scheduler is optional: None when disabled in config."""
    return getattr(request.app.state, "scheduler", None)
