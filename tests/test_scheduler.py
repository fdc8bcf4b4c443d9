"""Tests for the daily auto-cleanup scheduler.

The orchestrator and statistics store are AsyncMocks; the registry is the
real one over the in-memory store.
"""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from wipebot.engine.cleanup import CleanupResult
from wipebot.engine.scheduler import AutoCleanupScheduler, job_id
from wipebot.filters.registry import FilterRegistry


@pytest.fixture
def mock_orchestrator() -> AsyncMock:
    orchestrator = AsyncMock()
    orchestrator.run.return_value = CleanupResult(success=True, total=1, deleted=1)
    return orchestrator


@pytest.fixture
def mock_stats() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def scheduler(
    mock_orchestrator: AsyncMock, registry: FilterRegistry, mock_stats: AsyncMock
) -> AutoCleanupScheduler:
    return AutoCleanupScheduler(
        mock_orchestrator, registry, stats=mock_stats, timezone="Europe/Berlin"
    )


class TestRefreshTenant:
    """Tests for building a tenant's jobs."""

    @pytest.mark.asyncio
    async def test_only_active_auto_filters_scheduled(
        self, scheduler: AutoCleanupScheduler, registry: FilterRegistry
    ) -> None:
        auto = await registry.create_filter("W1", {"name": "auto", "auto_enabled": True})
        await registry.create_filter("W1", {"name": "manual"})
        await registry.create_filter(
            "W1", {"name": "paused", "auto_enabled": True, "active": False}
        )

        scheduled = await scheduler.refresh_tenant("W1")

        assert scheduled == 1
        assert scheduler.job_ids() == [job_id("W1", auto.id)]
        assert job_id("W1", auto.id) == f"W1:{auto.id}"

    @pytest.mark.asyncio
    async def test_refresh_replaces_previous_jobs(
        self, scheduler: AutoCleanupScheduler, registry: FilterRegistry
    ) -> None:
        flt = await registry.create_filter("W1", {"name": "auto", "auto_enabled": True})
        await scheduler.refresh_tenant("W1")

        await registry.update_filter("W1", flt.id, {"auto_enabled": False})
        assert await scheduler.refresh_tenant("W1") == 0
        assert scheduler.job_ids("W1") == []

    @pytest.mark.asyncio
    async def test_tenants_kept_apart(
        self, scheduler: AutoCleanupScheduler, registry: FilterRegistry
    ) -> None:
        await registry.create_filter("W1", {"name": "a", "auto_enabled": True})
        await registry.create_filter("W2", {"name": "b", "auto_enabled": True})
        await scheduler.refresh_tenant("W1")
        await scheduler.refresh_tenant("W2")

        scheduler.remove_tenant("W1")

        assert scheduler.job_ids("W1") == []
        assert len(scheduler.job_ids("W2")) == 1

    @pytest.mark.asyncio
    async def test_next_run_stored(
        self,
        scheduler: AutoCleanupScheduler,
        registry: FilterRegistry,
        mock_stats: AsyncMock,
    ) -> None:
        await registry.create_filter(
            "W1", {"name": "auto", "auto_enabled": True, "auto_time": "04:30"}
        )

        await scheduler.refresh_tenant("W1")

        tenant, when = mock_stats.set_next_scheduled_run.await_args.args
        assert tenant == "W1"
        assert isinstance(when, datetime)
        assert (when.hour, when.minute) == (4, 30)
        assert when == scheduler.next_run_time("W1")

    @pytest.mark.asyncio
    async def test_next_run_cleared_without_jobs(
        self, scheduler: AutoCleanupScheduler, mock_stats: AsyncMock
    ) -> None:
        await scheduler.refresh_tenant("W1")
        mock_stats.set_next_scheduled_run.assert_awaited_once_with("W1", None)

    @pytest.mark.asyncio
    async def test_stats_failure_does_not_break_refresh(
        self,
        scheduler: AutoCleanupScheduler,
        registry: FilterRegistry,
        mock_stats: AsyncMock,
    ) -> None:
        mock_stats.set_next_scheduled_run.side_effect = RuntimeError("disk full")
        await registry.create_filter("W1", {"name": "auto", "auto_enabled": True})

        assert await scheduler.refresh_tenant("W1") == 1


class TestRunJob:
    """Tests for the scheduled job body."""

    @pytest.mark.asyncio
    async def test_successful_run(
        self, scheduler: AutoCleanupScheduler, mock_orchestrator: AsyncMock
    ) -> None:
        await scheduler.run_job("W1", "f1")

        mock_orchestrator.run.assert_awaited_once_with(
            "W1", "f1", dry_run=False, triggered_by="scheduler"
        )
        assert scheduler.successful == 1
        assert scheduler.failed == 0
        assert scheduler.last_run is not None

    @pytest.mark.asyncio
    async def test_failed_result(
        self, scheduler: AutoCleanupScheduler, mock_orchestrator: AsyncMock
    ) -> None:
        mock_orchestrator.run.return_value = CleanupResult(success=False, error="HTTP 503")

        await scheduler.run_job("W1", "f1")

        assert scheduler.failed == 1
        assert scheduler.last_error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_crash_is_counted(
        self, scheduler: AutoCleanupScheduler, mock_orchestrator: AsyncMock
    ) -> None:
        mock_orchestrator.run.side_effect = RuntimeError("boom")

        await scheduler.run_job("W1", "f1")

        assert scheduler.failed == 1
        assert scheduler.last_error == "boom"
        assert scheduler.last_run is not None


class TestLifecycle:
    """Tests for start, shutdown and status."""

    @pytest.mark.asyncio
    async def test_start_schedules_stored_tenants(
        self, scheduler: AutoCleanupScheduler, registry: FilterRegistry
    ) -> None:
        await registry.create_filter("W1", {"name": "a", "auto_enabled": True})
        await registry.create_filter("W2", {"name": "b", "auto_enabled": True})

        await scheduler.start()
        try:
            assert scheduler.running
            assert len(scheduler.job_ids()) == 2
        finally:
            await scheduler.shutdown()

        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_shutdown_when_not_running(
        self, scheduler: AutoCleanupScheduler
    ) -> None:
        await scheduler.shutdown()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_status(
        self, scheduler: AutoCleanupScheduler, registry: FilterRegistry
    ) -> None:
        flt = await registry.create_filter("W1", {"name": "a", "auto_enabled": True})
        await scheduler.refresh_tenant("W1")
        await scheduler.run_job("W1", flt.id)

        status = scheduler.status()

        assert status["running"] is False
        assert status["jobs"] == [f"W1:{flt.id}"]
        assert status["scheduled"] == 1
        assert status["successful"] == 1
        assert status["failed"] == 0
        assert status["last_error"] is None
        assert isinstance(status["last_run"], str)
