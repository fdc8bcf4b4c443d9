"""REST routes for WipeBot.

Every route answers {success: true, ...} on success. Failures raise
WipeBotError subclasses, which the handlers registered in create_app()
turn into {success: false, error} with a 400/404/5xx status.

Destructive routes (cleanup, statistics reset, plugin disconnect)
require {"confirm": true} in the request body.

All routes use FastAPI dependency injection to access shared state.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from wipebot.core.errors import ValidationError, WipeBotError
from wipebot.core.logging import get_logger
from wipebot.crisp.client import CrispClient
from wipebot.db.store import DatabaseStore
from wipebot.engine.cleanup import CleanupOrchestrator
from wipebot.engine.scheduler import AutoCleanupScheduler
from wipebot.filters.registry import FilterRegistry
from wipebot.web.dependencies import (
    get_crisp_client,
    get_orchestrator,
    get_registry,
    get_scheduler,
    get_store,
)

logger = get_logger(__name__)

api_router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Pydantic models for API input validation
# ---------------------------------------------------------------------------


class ConfirmRequest(BaseModel):
    """Request body for destructive operations."""

    confirm: bool = False


class CleanupRequest(ConfirmRequest):
    """Request body for running a cleanup."""

    dry_run: bool = False


class CloneFilterRequest(BaseModel):
    new_name: str


class CreateGroupRequest(BaseModel):
    name: str


def _require_confirm(body: ConfirmRequest | None, action: str) -> None:
    if body is None or not body.confirm:
        raise ValidationError(f"Confirmation required: send {{\"confirm\": true}} to {action}")


async def _refresh_schedule(scheduler: AutoCleanupScheduler | None, tenant: str) -> None:
    """Reschedule a tenant's auto cleanups after a registry change."""
    if scheduler is None:
        return
    try:
        await scheduler.refresh_tenant(tenant)
    except WipeBotError as e:
        logger.error("schedule_refresh_failed", tenant=tenant, error=str(e))


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


@api_router.get("/filters/{tenant}")
async def list_filters(tenant: str, registry: FilterRegistry = Depends(get_registry)):
    doc = await registry.load(tenant)
    return {
        "success": True,
        "filters": [f.model_dump(mode="json") for f in doc.filters],
        "groups": [g.model_dump(mode="json") for g in doc.groups],
    }


@api_router.post("/filters/{tenant}")
async def create_filter(
    tenant: str,
    body: dict[str, Any] = Body(...),
    registry: FilterRegistry = Depends(get_registry),
    scheduler: AutoCleanupScheduler | None = Depends(get_scheduler),
):
    flt = await registry.create_filter(tenant, body)
    await _refresh_schedule(scheduler, tenant)
    return {"success": True, "filter": flt.model_dump(mode="json")}


@api_router.put("/filters/{tenant}/{filter_id}")
async def update_filter(
    tenant: str,
    filter_id: str,
    body: dict[str, Any] = Body(...),
    registry: FilterRegistry = Depends(get_registry),
    scheduler: AutoCleanupScheduler | None = Depends(get_scheduler),
):
    flt = await registry.update_filter(tenant, filter_id, body)
    await _refresh_schedule(scheduler, tenant)
    return {"success": True, "filter": flt.model_dump(mode="json")}


@api_router.delete("/filters/{tenant}/{filter_id}")
async def delete_filter(
    tenant: str,
    filter_id: str,
    registry: FilterRegistry = Depends(get_registry),
    scheduler: AutoCleanupScheduler | None = Depends(get_scheduler),
):
    await registry.delete_filter(tenant, filter_id)
    await _refresh_schedule(scheduler, tenant)
    return {"success": True, "deleted": filter_id}


@api_router.post("/filters/{tenant}/{filter_id}/clone")
async def clone_filter(
    tenant: str,
    filter_id: str,
    body: CloneFilterRequest,
    registry: FilterRegistry = Depends(get_registry),
    scheduler: AutoCleanupScheduler | None = Depends(get_scheduler),
):
    clone = await registry.clone_filter(tenant, filter_id, body.new_name)
    await _refresh_schedule(scheduler, tenant)
    return {"success": True, "filter": clone.model_dump(mode="json")}


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


@api_router.get("/groups/{tenant}")
async def list_groups(tenant: str, registry: FilterRegistry = Depends(get_registry)):
    groups = await registry.list_groups(tenant)
    return {"success": True, "groups": [g.model_dump(mode="json") for g in groups]}


@api_router.post("/groups/{tenant}")
async def create_group(
    tenant: str,
    body: CreateGroupRequest,
    registry: FilterRegistry = Depends(get_registry),
):
    group = await registry.create_group(tenant, body.name)
    return {"success": True, "group": group.model_dump(mode="json")}


@api_router.delete("/groups/{tenant}/{group_id}")
async def delete_group(
    tenant: str,
    group_id: str,
    registry: FilterRegistry = Depends(get_registry),
):
    await registry.delete_group(tenant, group_id)
    return {"success": True, "deleted": group_id}


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------


@api_router.post("/cleanup/{tenant}/{filter_id}")
async def run_cleanup(
    tenant: str,
    filter_id: str,
    body: CleanupRequest | None = None,
    registry: FilterRegistry = Depends(get_registry),
    orchestrator: CleanupOrchestrator = Depends(get_orchestrator),
):
    """Run a cleanup. A dry run needs no confirmation."""
    if body is None or not body.dry_run:
        _require_confirm(body, "delete conversations")

    # Unknown filters answer 404 before any upstream call
    await registry.get_filter(tenant, filter_id)

    result = await orchestrator.run(
        tenant, filter_id, dry_run=bool(body and body.dry_run), triggered_by="api"
    )
    if not result.success:
        return JSONResponse(result.to_dict(), status_code=502)
    return result.to_dict()


@api_router.post("/cleanup/{tenant}/{filter_id}/test")
async def test_cleanup(
    tenant: str,
    filter_id: str,
    registry: FilterRegistry = Depends(get_registry),
    orchestrator: CleanupOrchestrator = Depends(get_orchestrator),
):
    """Preview which conversations a cleanup would delete."""
    await registry.get_filter(tenant, filter_id)

    result = await orchestrator.simulate(tenant, filter_id)
    if not result.success:
        return JSONResponse(result.to_dict(), status_code=502)
    return result.to_dict(detailed_preview=True)


@api_router.get("/platforms/{tenant}")
async def list_platforms(tenant: str, crisp: CrispClient = Depends(get_crisp_client)):
    return {"success": True, "platforms": await crisp.list_platforms(tenant)}


@api_router.get("/mailboxes/{tenant}")
async def list_mailboxes(tenant: str, crisp: CrispClient = Depends(get_crisp_client)):
    return {"success": True, "mailboxes": await crisp.list_mailboxes(tenant)}


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


@api_router.get("/statistics/{tenant}")
async def get_statistics(tenant: str, store: DatabaseStore = Depends(get_store)):
    return {"success": True, "statistics": await store.get_statistics(tenant)}


@api_router.get("/statistics/{tenant}/detailed")
async def get_detailed_statistics(
    tenant: str,
    period: str = "week",
    store: DatabaseStore = Depends(get_store),
):
    return {"success": True, "statistics": await store.get_daily_statistics(tenant, period)}


@api_router.post("/statistics/{tenant}/reset")
async def reset_statistics(
    tenant: str,
    body: ConfirmRequest | None = None,
    store: DatabaseStore = Depends(get_store),
    scheduler: AutoCleanupScheduler | None = Depends(get_scheduler),
):
    _require_confirm(body, "reset statistics")
    await store.reset_statistics(tenant)
    await store.log_action("statistics_reset", tenant=tenant)
    # The reset also cleared the stored next run time
    await _refresh_schedule(scheduler, tenant)
    return {"success": True, "message": "Statistics reset"}


# ---------------------------------------------------------------------------
# Plugin lifecycle
# ---------------------------------------------------------------------------


@api_router.delete("/plugin/{tenant}")
async def disconnect_plugin(
    tenant: str,
    body: ConfirmRequest | None = None,
    registry: FilterRegistry = Depends(get_registry),
    store: DatabaseStore = Depends(get_store),
    scheduler: AutoCleanupScheduler | None = Depends(get_scheduler),
):
    """Remove every filter, group and statistic of a tenant."""
    _require_confirm(body, "remove all tenant data")

    if scheduler is not None:
        scheduler.remove_tenant(tenant)
    await registry.remove_tenant(tenant)
    await store.reset_statistics(tenant)
    await store.log_action("plugin_disconnected", tenant=tenant)

    logger.info("plugin_disconnected", tenant=tenant)
    return {"success": True, "message": f"All data for tenant {tenant} removed"}


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


@api_router.get("/system/scheduler")
async def scheduler_status(scheduler: AutoCleanupScheduler | None = Depends(get_scheduler)):
    if scheduler is None:
        return {
            "success": True,
            "scheduler": {"running": False, "jobs": [], "scheduled": 0, "successful": 0, "failed": 0},
        }
    return {"success": True, "scheduler": scheduler.status()}


@api_router.get("/system/version")
async def version():
    from wipebot.web.app import APP_VERSION

    return {"success": True, "version": APP_VERSION}


@api_router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for Docker and monitoring."""
    from wipebot.web.app import APP_VERSION

    config = getattr(request.app.state, "config", None)
    scheduler = getattr(request.app.state, "scheduler", None)
    ready = getattr(request.app.state, "orchestrator", None) is not None

    return {
        "success": True,
        "status": "healthy" if ready else "degraded",
        "mode": config.mode.value if config else None,
        "scheduler_running": bool(scheduler and scheduler.running),
        "version": APP_VERSION,
    }
