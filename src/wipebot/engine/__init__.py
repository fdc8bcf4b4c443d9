"""Cleanup engine: orchestrating runs and scheduling automatic ones."""

from wipebot.engine.cleanup import CleanupOrchestrator, CleanupResult, ProgressUpdate
from wipebot.engine.scheduler import AutoCleanupScheduler

__all__ = [
    "AutoCleanupScheduler",
    "CleanupOrchestrator",
    "CleanupResult",
    "ProgressUpdate",
]
