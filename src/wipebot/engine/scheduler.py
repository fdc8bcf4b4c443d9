"""Daily automatic cleanup runs.

Every active filter with auto_enabled gets one cron job that fires at its
auto_time each day. Job ids are "<tenant>:<filter id>", so all jobs of a
tenant can be replaced at once after a registry change.

The scheduler is APScheduler's AsyncIOScheduler: jobs are coroutines
running on the same event loop as the API server, so they share the
Crisp client and the database store without any thread bridging.

Usage:
    from wipebot.engine.scheduler import AutoCleanupScheduler

    scheduler = AutoCleanupScheduler(orchestrator, registry, stats=store, timezone="UTC")
    await scheduler.start()
    ...
    await scheduler.refresh_tenant("website-id")  # after a filter changed
    await scheduler.shutdown()
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from wipebot.core.logging import get_logger

if TYPE_CHECKING:
    from wipebot.db.store import DatabaseStore
    from wipebot.engine.cleanup import CleanupOrchestrator
    from wipebot.filters.registry import FilterRegistry

logger = get_logger(__name__)


def job_id(tenant: str, filter_id: str) -> str:
    return f"{tenant}:{filter_id}"


class AutoCleanupScheduler:
    """Schedules and runs the daily cleanups of auto-enabled filters.

    Attributes:
        successful: Jobs whose cleanup run succeeded
        failed: Jobs whose cleanup run failed
        last_error: Error message of the most recent failed job
        last_run: When the most recent job finished
    """

    def __init__(
        self,
        orchestrator: CleanupOrchestrator,
        registry: FilterRegistry,
        stats: DatabaseStore | None = None,
        timezone: str = "UTC",
        scheduler: AsyncIOScheduler | None = None,
    ):
        self._orchestrator = orchestrator
        self._registry = registry
        self._stats = stats
        self._tz = ZoneInfo(timezone)
        self._scheduler = scheduler or AsyncIOScheduler(timezone=self._tz)
        self.successful = 0
        self.failed = 0
        self.last_error: str | None = None
        self.last_run: datetime | None = None

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def start(self) -> None:
        """Schedule every stored tenant's auto filters and start the scheduler."""
        for tenant in await self._registry.list_tenants():
            await self.refresh_tenant(tenant)
        self._scheduler.start()
        logger.info("scheduler_started", jobs=len(self.job_ids()))

    async def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            # AsyncIOScheduler stops on the next loop iteration
            await asyncio.sleep(0)
            logger.info("scheduler_stopped")

    def job_ids(self, tenant: str | None = None) -> list[str]:
        ids = [job.id for job in self._scheduler.get_jobs()]
        if tenant is not None:
            prefix = f"{tenant}:"
            ids = [i for i in ids if i.startswith(prefix)]
        return sorted(ids)

    async def refresh_tenant(self, tenant: str) -> int:
        """Replace all jobs of a tenant with the current auto filters.

        Returns:
            Number of jobs scheduled for the tenant
        """
        for existing in self.job_ids(tenant):
            self._scheduler.remove_job(existing)

        scheduled = 0
        for flt in await self._registry.list_active_filters(tenant):
            if not flt.auto_enabled:
                continue
            hour, minute = flt.auto_hour_minute
            self._scheduler.add_job(
                self.run_job,
                CronTrigger(hour=hour, minute=minute, timezone=self._tz),
                args=[tenant, flt.id],
                id=job_id(tenant, flt.id),
                name=f"auto cleanup: {flt.name}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            scheduled += 1
            logger.debug(
                "auto_cleanup_scheduled",
                tenant=tenant,
                filter_id=flt.id,
                auto_time=flt.auto_time,
            )

        await self._store_next_run(tenant)
        logger.info("tenant_schedule_refreshed", tenant=tenant, jobs=scheduled)
        return scheduled

    def remove_tenant(self, tenant: str) -> None:
        for existing in self.job_ids(tenant):
            self._scheduler.remove_job(existing)

    def next_run_time(self, tenant: str) -> datetime | None:
        """Earliest upcoming fire time across a tenant's jobs."""
        now = datetime.now(self._tz)
        fire_times = []
        for existing in self.job_ids(tenant):
            job = self._scheduler.get_job(existing)
            if job is None:
                continue
            fire_time = job.trigger.get_next_fire_time(None, now)
            if fire_time is not None:
                fire_times.append(fire_time)
        return min(fire_times) if fire_times else None

    async def run_job(self, tenant: str, filter_id: str) -> None:
        """Scheduled entry point: run one filter's cleanup for real."""
        logger.info("auto_cleanup_triggered", tenant=tenant, filter_id=filter_id)
        try:
            result = await self._orchestrator.run(
                tenant, filter_id, dry_run=False, triggered_by="scheduler"
            )
        except Exception as e:
            self.failed += 1
            self.last_error = str(e)
            logger.error("auto_cleanup_crashed", tenant=tenant, filter_id=filter_id, error=str(e))
        else:
            if result.success:
                self.successful += 1
            else:
                self.failed += 1
                self.last_error = result.error
                logger.warning(
                    "auto_cleanup_failed", tenant=tenant, filter_id=filter_id, error=result.error
                )
        finally:
            self.last_run = datetime.now(self._tz)

        await self._store_next_run(tenant)

    def status(self) -> dict[str, Any]:
        jobs = self.job_ids()
        return {
            "running": self.running,
            "jobs": jobs,
            "scheduled": len(jobs),
            "successful": self.successful,
            "failed": self.failed,
            "last_error": self.last_error,
            "last_run": self.last_run.isoformat() if self.last_run else None,
        }

    async def _store_next_run(self, tenant: str) -> None:
        if self._stats is None:
            return
        try:
            await self._stats.set_next_scheduled_run(tenant, self.next_run_time(tenant))
        except Exception as e:
            logger.warning("next_run_not_stored", tenant=tenant, error=str(e))
