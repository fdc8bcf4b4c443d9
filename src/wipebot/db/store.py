"""Database store for filter documents, cleanup statistics and the audit log.

This module provides the DatabaseStore class that encapsulates all database
operations for WipeBot. It uses aiosqlite for async access. It implements
the FilterStore interface used by the filter registry and the statistics
interface used by the cleanup orchestrator and the scheduler.

Usage:
    from wipebot.db.store import DatabaseStore

    store = DatabaseStore("data/wipebot.db")
    await store.initialize()

    # Filter documents
    doc = await store.load_filters("website-id")
    await store.save_filters("website-id", doc)

    # Statistics
    await store.record_cleanup("website-id", deleted_chats=12, deleted_segments=0)
    stats = await store.get_statistics("website-id")
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any, Literal

import aiosqlite
from pydantic import ValidationError as PydanticValidationError

from wipebot.core.errors import DatabaseError, ValidationError
from wipebot.core.logging import get_logger
from wipebot.db.models import init_database
from wipebot.filters.models import TenantFilters

logger = get_logger(__name__)

# Daily statistics older than this are pruned on every write
STATS_RETENTION_DAYS = 30

# Window summed into the "last two weeks" counters
RECENT_WINDOW_DAYS = 14

StatisticsPeriod = Literal["day", "week", "month", "all"]

PERIOD_DAYS: dict[str, int | None] = {
    "day": 1,
    "week": 7,
    "month": 30,
    "all": None,
}

# tenant_state keys
KEY_TOTAL_CHATS = "total_deleted_chats"
KEY_TOTAL_SEGMENTS = "total_deleted_segments"
KEY_LAST_RUN = "last_run"
KEY_NEXT_RUN = "next_scheduled_run"


@dataclass
class ActionLogEntry:
    """Action log entry from the database."""

    id: int
    timestamp: datetime
    action_type: str
    tenant_id: str | None = None
    filter_id: str | None = None
    details_json: dict[str, Any] | None = None
    triggered_by: str | None = None


def _today(now: datetime | None) -> date:
    return (now or datetime.now(UTC)).astimezone(UTC).date()


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class DatabaseStore:
    """Database store for all WipeBot data.

    Attributes:
        db_path: Path to the SQLite database file
        _initialized: Whether the database has been initialized
    """

    def __init__(self, db_path: str | Path):
        """Initialize the database store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed.

        This must be called before any other operations.
        """
        await init_database(self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured database connection.

        Sets the PRAGMAs every connection needs:
        - busy_timeout: 10s to handle the scheduler and the API writing together
        - synchronous: NORMAL (safe with WAL, faster writes)

        Usage:
            async with self._db() as db:
                await db.execute(...)
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout = 10000")
            await db.execute("PRAGMA synchronous = NORMAL")
            db.row_factory = aiosqlite.Row
            yield db

    # =========================================================================
    # Filter Documents
    # =========================================================================

    async def load_filters(self, tenant: str) -> TenantFilters:
        """Load a tenant's filters and groups.

        Returns:
            The stored document, or an empty one for unknown tenants

        Raises:
            DatabaseError: On SQLite errors or an unreadable stored document
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT document_json FROM tenant_filters WHERE tenant_id = ?", (tenant,)
                )
                row = await cursor.fetchone()

        except aiosqlite.Error as e:
            logger.error("Failed to load filters", tenant=tenant, error=str(e))
            raise DatabaseError(f"Failed to load filters: {e}") from e

        if row is None:
            return TenantFilters()

        try:
            return TenantFilters.model_validate_json(row["document_json"])
        except PydanticValidationError as e:
            logger.error("Stored filter document is invalid", tenant=tenant, error=str(e))
            raise DatabaseError(
                f"Stored filters for tenant {tenant} are unreadable: {e}. "
                "Restore the database from a backup or remove the tenant's row."
            ) from e

    async def save_filters(self, tenant: str, data: TenantFilters) -> None:
        """Replace a tenant's stored document.

        Raises:
            DatabaseError: On SQLite errors
        """
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO tenant_filters (tenant_id, document_json, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(tenant_id) DO UPDATE SET
                        document_json = excluded.document_json,
                        updated_at = excluded.updated_at
                    """,
                    (tenant, data.model_dump_json(), datetime.now(UTC).isoformat()),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to save filters", tenant=tenant, error=str(e))
            raise DatabaseError(f"Failed to save filters: {e}") from e

        logger.debug(
            "Filters saved", tenant=tenant, filters=len(data.filters), groups=len(data.groups)
        )

    async def delete_filters(self, tenant: str) -> bool:
        """Delete a tenant's stored document.

        Returns:
            True if a document existed
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "DELETE FROM tenant_filters WHERE tenant_id = ?", (tenant,)
                )
                await db.commit()
                return cursor.rowcount > 0

        except aiosqlite.Error as e:
            logger.error("Failed to delete filters", tenant=tenant, error=str(e))
            raise DatabaseError(f"Failed to delete filters: {e}") from e

    async def list_tenants(self) -> list[str]:
        """All tenants with a stored filter document, sorted."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT tenant_id FROM tenant_filters ORDER BY tenant_id"
                )
                return [row["tenant_id"] for row in await cursor.fetchall()]

        except aiosqlite.Error as e:
            logger.error("Failed to list tenants", error=str(e))
            raise DatabaseError(f"Failed to list tenants: {e}") from e

    # =========================================================================
    # Tenant State
    # =========================================================================

    async def set_state(self, tenant: str, key: str, value: str | None) -> None:
        """Set a per-tenant state value; None deletes it."""
        try:
            async with self._db() as db:
                if value is None:
                    await db.execute(
                        "DELETE FROM tenant_state WHERE tenant_id = ? AND key = ?", (tenant, key)
                    )
                else:
                    await db.execute(
                        """
                        INSERT INTO tenant_state (tenant_id, key, value, updated_at)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT(tenant_id, key) DO UPDATE SET
                            value = excluded.value,
                            updated_at = excluded.updated_at
                        """,
                        (tenant, key, value, datetime.now(UTC).isoformat()),
                    )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to set state", tenant=tenant, key=key, error=str(e))
            raise DatabaseError(f"Failed to set state: {e}") from e

    async def _get_states(self, db: aiosqlite.Connection, tenant: str) -> dict[str, str]:
        cursor = await db.execute(
            "SELECT key, value FROM tenant_state WHERE tenant_id = ?", (tenant,)
        )
        return {row["key"]: row["value"] for row in await cursor.fetchall()}

    # =========================================================================
    # Cleanup Statistics
    # =========================================================================

    async def record_cleanup(
        self,
        tenant: str,
        deleted_chats: int = 0,
        deleted_segments: int = 0,
        now: datetime | None = None,
    ) -> None:
        """Add a cleanup run's counts to today's row and the running totals.

        Also stamps last_run and prunes daily rows past the retention window.

        Args:
            tenant: Crisp website ID
            deleted_chats: Conversations deleted (or trimmed) in this run
            deleted_segments: Individual messages deleted in this run
            now: Override for the current time (tests)
        """
        now = now or datetime.now(UTC)
        today = _today(now)
        cutoff = today - timedelta(days=STATS_RETENTION_DAYS)

        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO cleanup_stats (tenant_id, day, deleted_chats, deleted_segments)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(tenant_id, day) DO UPDATE SET
                        deleted_chats = deleted_chats + excluded.deleted_chats,
                        deleted_segments = deleted_segments + excluded.deleted_segments
                    """,
                    (tenant, today.isoformat(), deleted_chats, deleted_segments),
                )

                states = await self._get_states(db, tenant)
                totals = {
                    KEY_TOTAL_CHATS: int(states.get(KEY_TOTAL_CHATS, 0)) + deleted_chats,
                    KEY_TOTAL_SEGMENTS: int(states.get(KEY_TOTAL_SEGMENTS, 0)) + deleted_segments,
                    KEY_LAST_RUN: now.isoformat(),
                }
                for key, value in totals.items():
                    await db.execute(
                        """
                        INSERT INTO tenant_state (tenant_id, key, value, updated_at)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT(tenant_id, key) DO UPDATE SET
                            value = excluded.value,
                            updated_at = excluded.updated_at
                        """,
                        (tenant, key, str(value), now.isoformat()),
                    )

                cursor = await db.execute(
                    "DELETE FROM cleanup_stats WHERE tenant_id = ? AND day < ?",
                    (tenant, cutoff.isoformat()),
                )
                pruned = cursor.rowcount
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to record cleanup", tenant=tenant, error=str(e))
            raise DatabaseError(f"Failed to record cleanup statistics: {e}") from e

        logger.debug(
            "Cleanup statistics recorded",
            tenant=tenant,
            deleted_chats=deleted_chats,
            deleted_segments=deleted_segments,
            days_pruned=pruned,
        )

    async def _daily_rows(
        self, db: aiosqlite.Connection, tenant: str, since: date | None
    ) -> dict[str, dict[str, int]]:
        if since is None:
            cursor = await db.execute(
                "SELECT day, deleted_chats, deleted_segments FROM cleanup_stats "
                "WHERE tenant_id = ? ORDER BY day",
                (tenant,),
            )
        else:
            cursor = await db.execute(
                "SELECT day, deleted_chats, deleted_segments FROM cleanup_stats "
                "WHERE tenant_id = ? AND day >= ? ORDER BY day",
                (tenant, since.isoformat()),
            )
        return {
            row["day"]: {
                "deleted_chats": row["deleted_chats"],
                "deleted_segments": row["deleted_segments"],
            }
            for row in await cursor.fetchall()
        }

    async def get_statistics(self, tenant: str, now: datetime | None = None) -> dict[str, Any]:
        """Totals, last-two-weeks sums and run timestamps for a tenant.

        Returns:
            Dict with total_deleted_chats, total_deleted_segments,
            last_two_weeks {deleted_chats, deleted_segments}, last_run and
            next_scheduled_run (datetimes or None)
        """
        since = _today(now) - timedelta(days=RECENT_WINDOW_DAYS)
        try:
            async with self._db() as db:
                states = await self._get_states(db, tenant)
                recent = await self._daily_rows(db, tenant, since)

        except aiosqlite.Error as e:
            logger.error("Failed to get statistics", tenant=tenant, error=str(e))
            raise DatabaseError(f"Failed to get statistics: {e}") from e

        return {
            "total_deleted_chats": int(states.get(KEY_TOTAL_CHATS, 0)),
            "total_deleted_segments": int(states.get(KEY_TOTAL_SEGMENTS, 0)),
            "last_two_weeks": {
                "deleted_chats": sum(d["deleted_chats"] for d in recent.values()),
                "deleted_segments": sum(d["deleted_segments"] for d in recent.values()),
            },
            "last_run": _parse_datetime(states.get(KEY_LAST_RUN)),
            "next_scheduled_run": _parse_datetime(states.get(KEY_NEXT_RUN)),
        }

    async def get_daily_statistics(
        self,
        tenant: str,
        period: str = "week",
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Per-day counts for a period (day, week, month or all).

        Raises:
            ValidationError: Unknown period
        """
        if period not in PERIOD_DAYS:
            raise ValidationError(
                f"Invalid statistics period '{period}'. Use one of: {', '.join(PERIOD_DAYS)}"
            )
        days = PERIOD_DAYS[period]
        since = _today(now) - timedelta(days=days) if days is not None else None

        try:
            async with self._db() as db:
                states = await self._get_states(db, tenant)
                daily = await self._daily_rows(db, tenant, since)

        except aiosqlite.Error as e:
            logger.error("Failed to get daily statistics", tenant=tenant, error=str(e))
            raise DatabaseError(f"Failed to get daily statistics: {e}") from e

        return {
            "period": period,
            "summary": {
                "deleted_chats": sum(d["deleted_chats"] for d in daily.values()),
                "deleted_segments": sum(d["deleted_segments"] for d in daily.values()),
            },
            "daily_stats": daily,
            "last_run": _parse_datetime(states.get(KEY_LAST_RUN)),
            "next_scheduled_run": _parse_datetime(states.get(KEY_NEXT_RUN)),
        }

    async def reset_statistics(self, tenant: str) -> None:
        """Clear daily rows, totals and run timestamps for a tenant."""
        try:
            async with self._db() as db:
                await db.execute("DELETE FROM cleanup_stats WHERE tenant_id = ?", (tenant,))
                await db.execute("DELETE FROM tenant_state WHERE tenant_id = ?", (tenant,))
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("Failed to reset statistics", tenant=tenant, error=str(e))
            raise DatabaseError(f"Failed to reset statistics: {e}") from e

        logger.info("Statistics reset", tenant=tenant)

    async def set_next_scheduled_run(self, tenant: str, when: datetime | None) -> None:
        await self.set_state(tenant, KEY_NEXT_RUN, when.isoformat() if when else None)

    # =========================================================================
    # Action Log
    # =========================================================================

    async def log_action(
        self,
        action_type: str,
        tenant: str | None = None,
        filter_id: str | None = None,
        details: dict[str, Any] | None = None,
        triggered_by: str = "api",
    ) -> int:
        """Log a cleanup action for the audit trail.

        Args:
            action_type: 'cleanup', 'segment_cleanup' or 'statistics_reset'
            tenant: Crisp website ID
            filter_id: Filter that drove the action (if applicable)
            details: Tallies, mode and other context
            triggered_by: 'api', 'scheduler' or 'cli'

        Returns:
            The log entry ID
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO action_log (
                        tenant_id, filter_id, action_type, details_json, triggered_by
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        tenant,
                        filter_id,
                        action_type,
                        json.dumps(details, default=str) if details else None,
                        triggered_by,
                    ),
                )
                await db.commit()
                return cursor.lastrowid

        except aiosqlite.Error as e:
            logger.error("Failed to log action", action_type=action_type, error=str(e))
            raise DatabaseError(f"Failed to log action: {e}") from e

    async def get_action_logs(self, tenant: str | None = None, limit: int = 50) -> list[ActionLogEntry]:
        """Most recent action log entries, newest first."""
        try:
            async with self._db() as db:
                if tenant is None:
                    cursor = await db.execute(
                        "SELECT * FROM action_log ORDER BY id DESC LIMIT ?", (limit,)
                    )
                else:
                    cursor = await db.execute(
                        "SELECT * FROM action_log WHERE tenant_id = ? ORDER BY id DESC LIMIT ?",
                        (tenant, limit),
                    )
                rows = await cursor.fetchall()

        except aiosqlite.Error as e:
            logger.error("Failed to get action logs", error=str(e))
            raise DatabaseError(f"Failed to get action logs: {e}") from e

        return [
            ActionLogEntry(
                id=row["id"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                action_type=row["action_type"],
                tenant_id=row["tenant_id"],
                filter_id=row["filter_id"],
                details_json=json.loads(row["details_json"]) if row["details_json"] else None,
                triggered_by=row["triggered_by"],
            )
            for row in rows
        ]
