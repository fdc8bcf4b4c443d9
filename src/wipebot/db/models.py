"""SQLite database schema and initialization for WipeBot.

This module defines the database schema with 4 tables:
- tenant_filters: One JSON document of filters and groups per tenant
- cleanup_stats: Per-tenant, per-day counts of deleted chats and segments
- tenant_state: Per-tenant key-value state (last run, next scheduled run)
- action_log: Audit trail of cleanup runs

Usage:
    from wipebot.db.models import init_database

    # Initialize database (creates tables if not exist)
    await init_database("data/wipebot.db")
"""

import stat
from pathlib import Path

import aiosqlite

from wipebot.core.errors import DatabaseError
from wipebot.core.logging import get_logger

logger = get_logger(__name__)

# Schema version for migrations (increment when schema changes)
SCHEMA_VERSION = 1

# SQL schema definition
SCHEMA_SQL = """
-- MUST be set before creating tables. Persists across connections.
PRAGMA journal_mode=WAL;

-- Filters and groups of one tenant, stored as a single document
CREATE TABLE IF NOT EXISTS tenant_filters (
    tenant_id TEXT PRIMARY KEY,             -- Crisp website ID
    document_json TEXT NOT NULL,            -- {"filters": [...], "groups": [...]}
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- Daily cleanup counters (rows older than the retention window are pruned)
CREATE TABLE IF NOT EXISTS cleanup_stats (
    tenant_id TEXT NOT NULL,
    day TEXT NOT NULL,                      -- ISO date, UTC (YYYY-MM-DD)
    deleted_chats INTEGER DEFAULT 0,
    deleted_segments INTEGER DEFAULT 0,
    PRIMARY KEY (tenant_id, day)
);

-- Running totals and timestamps per tenant
CREATE TABLE IF NOT EXISTS tenant_state (
    tenant_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (tenant_id, key)
);
-- Keys: 'total_deleted_chats', 'total_deleted_segments', 'last_run',
--       'next_scheduled_run'

-- Audit log of cleanup runs
CREATE TABLE IF NOT EXISTS action_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
    tenant_id TEXT,
    filter_id TEXT,
    action_type TEXT,                       -- 'cleanup', 'segment_cleanup', 'statistics_reset'
    details_json TEXT,                      -- Tallies and mode
    triggered_by TEXT                       -- 'api', 'scheduler', 'cli'
);

CREATE INDEX IF NOT EXISTS idx_action_log_timestamp ON action_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_action_log_tenant ON action_log(tenant_id);
"""

REQUIRED_TABLES = ["tenant_filters", "cleanup_stats", "tenant_state", "action_log"]


async def init_database(db_path: str | Path) -> None:
    """Initialize the SQLite database with schema and WAL mode.

    Creates the database file if it doesn't exist, enables WAL mode for
    concurrent access, and creates all tables and indexes.

    Args:
        db_path: Path to the SQLite database file

    Raises:
        DatabaseError: If database initialization fails
    """
    db_path = Path(db_path)

    # Ensure parent directory exists
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            journal_mode = await db.execute("PRAGMA journal_mode")
            mode = await journal_mode.fetchone()
            if mode and mode[0].lower() != "wal":
                logger.warning(
                    "WAL mode not enabled",
                    requested="wal",
                    actual=mode[0],
                    db_path=str(db_path),
                )

            await db.executescript(SCHEMA_SQL)
            await db.commit()

            cursor = await db.execute("SELECT COUNT(*) FROM sqlite_master WHERE type='table'")
            table_count = (await cursor.fetchone())[0]

        # Owner read/write only: the database holds Crisp website IDs and filter rules
        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)

        for suffix in ["-wal", "-shm"]:
            wal_file = db_path.with_suffix(db_path.suffix + suffix)
            if wal_file.exists():
                wal_file.chmod(stat.S_IRUSR | stat.S_IWUSR)

        logger.info(
            "Database initialized",
            db_path=str(db_path),
            schema_version=SCHEMA_VERSION,
            tables_created=table_count,
        )

    except aiosqlite.Error as e:
        logger.error(
            "Database initialization failed",
            db_path=str(db_path),
            error=str(e),
        )
        raise DatabaseError(
            f"Failed to initialize database at {db_path}: {e}. "
            "Check that the directory is writable and the database file is not corrupted."
        ) from e


async def verify_schema(db_path: str | Path) -> bool:
    """Check that all required tables exist.

    Returns:
        True if all tables exist, False otherwise
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            existing_tables = {row[0] for row in await cursor.fetchall()}

            missing = set(REQUIRED_TABLES) - existing_tables
            if missing:
                logger.warning(
                    "Missing database tables",
                    missing=sorted(missing),
                    db_path=str(db_path),
                )
                return False

            return True

    except aiosqlite.Error as e:
        logger.error("Schema verification failed", db_path=str(db_path), error=str(e))
        return False
