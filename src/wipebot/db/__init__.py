"""Database layer for WipeBot.

This module provides SQLite database access with async operations.

Usage:
    from wipebot.db import DatabaseStore

    store = DatabaseStore("data/wipebot.db")
    await store.initialize()

    doc = await store.load_filters("website-id")
    await store.record_cleanup("website-id", deleted_chats=3)
"""

from wipebot.db.models import SCHEMA_VERSION, init_database, verify_schema
from wipebot.db.store import ActionLogEntry, DatabaseStore

__all__ = [
    "SCHEMA_VERSION",
    "ActionLogEntry",
    "DatabaseStore",
    "init_database",
    "verify_schema",
]
