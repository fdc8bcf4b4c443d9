"""Cooperative cancellation for long-running cleanup work.

A CancelToken is checked at the interrupt points of a cleanup run: before
each retry attempt, during backoff waits, between pagination requests and
between per-item deletions. Nothing is interrupted mid-request.

Usage:
    token = CancelToken()
    task = asyncio.create_task(orchestrator.run(tenant, filter_id, cancel=token))
    ...
    token.cancel()
"""

from __future__ import annotations

import asyncio
import contextlib

from wipebot.core.errors import OperationCancelled


class CancelToken:
    """One-shot cancellation flag backed by an asyncio.Event."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelled if cancel() has been called."""
        if self._event.is_set():
            raise OperationCancelled("Operation was cancelled")

    async def sleep(self, delay: float) -> None:
        """Sleep for `delay` seconds, waking early if the token is cancelled.

        Raises:
            OperationCancelled: If the token is cancelled before or during the wait
        """
        self.raise_if_cancelled()
        if delay <= 0:
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        self.raise_if_cancelled()


async def pause(delay: float, cancel: CancelToken | None = None) -> None:
    """Sleep for `delay` seconds, honoring an optional CancelToken."""
    if cancel is not None:
        await cancel.sleep(delay)
    elif delay > 0:
        await asyncio.sleep(delay)
