"""Cleanup orchestrator: find the conversations a filter matches and delete them.

A cleanup run has two phases:

1. Collect: resolve the filter, page through every conversation of the
   tenant (until an empty page) and keep the ones the filter matches.
   Any failure here aborts the run with CleanupResult(success=False).
2. Delete: either whole conversations (one DELETE per session, in
   retrieval order) or, for segment filters, individual messages. Each
   item's failure is counted and logged; the loop always continues.

Every call against the chat platform goes through RateLimitedExecutor.
In OperatingMode.DEBUG the delete calls are skipped and counted as
successful, so a debug run reports what a live run would do.

Usage:
    from wipebot.engine.cleanup import CleanupOrchestrator

    orchestrator = CleanupOrchestrator(source=crisp, registry=registry)
    preview = await orchestrator.simulate("website-id", "Old chats")
    result = await orchestrator.run("website-id", "Old chats")
    print(result.to_dict())
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from wipebot.config_schema import MAX_PAGE_SIZE, OperatingMode
from wipebot.core.cancellation import CancelToken, pause
from wipebot.core.errors import NotFoundError, OperationCancelled, WipeBotError
from wipebot.core.logging import get_logger, set_correlation_id
from wipebot.core.retry import RateLimitedExecutor
from wipebot.filters.matching import FilterMatcher

if TYPE_CHECKING:
    from wipebot.crisp.models import Conversation
    from wipebot.crisp.source import ConversationSource
    from wipebot.filters.models import FilterDefinition, TenantFilters
    from wipebot.filters.registry import FilterRegistry

logger = get_logger(__name__)

NO_PREVIEW = "(no preview available)"

DEFAULT_PAGE_DELAY = 0.3  # seconds between list requests
DEFAULT_DELETE_DELAY = 0.1  # seconds between delete requests


class StatisticsRecorder(Protocol):
    async def record_cleanup(
        self, tenant: str, deleted_chats: int = 0, deleted_segments: int = 0
    ) -> None: ...

    async def log_action(
        self,
        action_type: str,
        tenant: str | None = None,
        filter_id: str | None = None,
        details: dict[str, Any] | None = None,
        triggered_by: str = "api",
    ) -> int: ...


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ProgressUpdate:
    """Bulk delete progress, reported after each item."""

    current: int
    total: int
    percent: int


ProgressCallback = Callable[[ProgressUpdate], None]


@dataclass
class ConversationPreview:
    """Lightweight description of a conversation a cleanup would delete."""

    id: str
    preview: str
    created: datetime | None = None
    updated: datetime | None = None
    status: str = "unknown"

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> ConversationPreview:
        return cls(
            id=conversation.session_id,
            preview=conversation.preview or NO_PREVIEW,
            created=conversation.created,
            updated=conversation.updated,
            status=conversation.status or "unknown",
        )

    def to_dict(self, detailed: bool = True) -> dict[str, Any]:
        if not detailed:
            return {"id": self.id, "preview": self.preview}
        return {
            "id": self.id,
            "created": self.created.isoformat() if self.created else None,
            "updated": self.updated.isoformat() if self.updated else None,
            "status": self.status,
            "preview": self.preview,
        }


@dataclass
class DeleteFailure:
    session_id: str
    error: str


@dataclass
class BulkDeleteResult:
    """Outcome of deleting a list of conversations one by one."""

    total: int
    successful: int = 0
    failed: int = 0
    errors: list[DeleteFailure] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class SegmentDeleteResult:
    """Outcome of a segment-only cleanup over several conversations."""

    conversations_deleted: int = 0
    segments_deleted: int = 0
    failed: int = 0
    cancelled: bool = False


@dataclass
class CleanupResult:
    """Outcome of simulate() or run().

    Simulations and dry runs fill `count` and `conversations`; real runs
    fill `total`, `deleted` and `errors`. A failed collect phase sets
    success=False and `error`.
    """

    success: bool
    filter_name: str | None = None
    dry_run: bool = False
    count: int = 0
    conversations: list[ConversationPreview] = field(default_factory=list)
    total: int = 0
    deleted: int = 0
    errors: int = 0
    segments_deleted: int = 0
    cancelled: bool = False
    mode: str = OperatingMode.LIVE.value
    error: str | None = None

    @classmethod
    def failure(cls, message: str, cancelled: bool = False) -> CleanupResult:
        return cls(success=False, error=message, cancelled=cancelled)

    def to_dict(self, detailed_preview: bool = False) -> dict[str, Any]:
        """REST/CLI payload: {success, ...} or {success: false, error}."""
        if not self.success:
            payload: dict[str, Any] = {"success": False, "error": self.error}
            if self.cancelled:
                payload["cancelled"] = True
            return payload

        if self.dry_run:
            return {
                "success": True,
                "filter": self.filter_name,
                "count": self.count,
                "conversations": [c.to_dict(detailed_preview) for c in self.conversations],
            }

        payload = {
            "success": True,
            "filter": self.filter_name,
            "total": self.total,
            "deleted": self.deleted,
            "errors": self.errors,
            "mode": self.mode,
        }
        if self.segments_deleted:
            payload["segments_deleted"] = self.segments_deleted
        if self.cancelled:
            payload["cancelled"] = True
        return payload


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class CleanupOrchestrator:
    """Runs simulations and cleanups for one filter at a time.

    Attributes:
        _source: ConversationSource (CrispClient in production)
        _registry: FilterRegistry used to resolve filters and references
        _matcher: FilterMatcher evaluating the filters
        _executor: RateLimitedExecutor wrapping every source call
        _stats: Optional statistics recorder (DatabaseStore)
        mode: LIVE or DEBUG
    """

    def __init__(
        self,
        source: ConversationSource,
        registry: FilterRegistry,
        matcher: FilterMatcher | None = None,
        executor: RateLimitedExecutor | None = None,
        mode: OperatingMode = OperatingMode.LIVE,
        page_size: int = MAX_PAGE_SIZE,
        page_delay: float = DEFAULT_PAGE_DELAY,
        delete_delay: float = DEFAULT_DELETE_DELAY,
        stats: StatisticsRecorder | None = None,
    ):
        self._source = source
        self._registry = registry
        self._matcher = matcher or FilterMatcher()
        self._executor = executor or RateLimitedExecutor()
        self._stats = stats
        self.mode = mode
        self.page_size = max(1, min(page_size, MAX_PAGE_SIZE))
        self.page_delay = page_delay
        self.delete_delay = delete_delay

    # ------------------------------------------------------------------
    # Collect phase
    # ------------------------------------------------------------------

    async def fetch_all(self, tenant: str, cancel: CancelToken | None = None) -> list[Conversation]:
        """Page through every conversation of a tenant.

        Stops at the first empty page. Pages are requested in ascending
        order, so the result keeps the source's ordering.
        """
        conversations: list[Conversation] = []
        page_number = 1

        while True:
            page = await self._executor.call(
                lambda n=page_number: self._source.list_page(tenant, n, self.page_size),
                cancel=cancel,
                description="list_conversations",
            )
            if not page:
                break

            conversations.extend(page)
            logger.debug(
                "conversation_page_fetched",
                tenant=tenant,
                page=page_number,
                items=len(page),
                total=len(conversations),
            )
            page_number += 1
            await pause(self.page_delay, cancel)

        logger.info("conversations_fetched", tenant=tenant, total=len(conversations), pages=page_number - 1)
        return conversations

    async def _collect(
        self, tenant: str, filter_id: str, cancel: CancelToken | None
    ) -> tuple[FilterDefinition, list[Conversation]]:
        doc = await self._registry.load(tenant)
        flt = self._resolve(doc, tenant, filter_id)
        self._matcher.check_references(flt, doc.find)

        conversations = await self.fetch_all(tenant, cancel)
        now = datetime.now(UTC)
        retained = [c for c in conversations if self._matcher.matches(c, flt, doc.find, now)]

        logger.info(
            "filter_applied",
            tenant=tenant,
            filter_id=flt.id,
            filter_name=flt.name,
            candidates=len(conversations),
            matched=len(retained),
        )
        return flt, retained

    def _resolve(self, doc: TenantFilters, tenant: str, filter_id: str) -> FilterDefinition:
        flt = doc.find(filter_id)
        if flt is None:
            raise NotFoundError(f"Filter '{filter_id}' not found for tenant {tenant}")
        return flt

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def simulate(
        self, tenant: str, filter_id: str, cancel: CancelToken | None = None
    ) -> CleanupResult:
        """Count and preview the conversations a cleanup would delete.

        Never mutates anything. Calling it twice without upstream changes
        returns the same result.
        """
        try:
            flt, retained = await self._collect(tenant, filter_id, cancel)
        except OperationCancelled as e:
            return CleanupResult.failure(str(e), cancelled=True)
        except WipeBotError as e:
            logger.warning("simulation_failed", tenant=tenant, filter_id=filter_id, error=str(e))
            return CleanupResult.failure(str(e))
        except Exception as e:
            logger.error(
                "simulation_crashed",
                tenant=tenant,
                filter_id=filter_id,
                error=str(e),
                exc_info=True,
            )
            return CleanupResult.failure(str(e) or type(e).__name__)

        return CleanupResult(
            success=True,
            filter_name=flt.name,
            dry_run=True,
            count=len(retained),
            conversations=[ConversationPreview.from_conversation(c) for c in retained],
            mode=self.mode.value,
        )

    async def run(
        self,
        tenant: str,
        filter_id: str,
        dry_run: bool = False,
        progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
        triggered_by: str = "api",
    ) -> CleanupResult:
        """Run a cleanup for one filter.

        Args:
            tenant: Crisp website ID
            filter_id: Filter id or name
            dry_run: Only report matches, delete nothing
            progress: Called after each whole-conversation delete
            cancel: Stops the run between items; the partial tally is returned
            triggered_by: Recorded in the audit log ('api', 'scheduler', 'cli')

        Returns:
            CleanupResult; success=False only when the collect phase failed
        """
        run_id = str(uuid.uuid4())
        set_correlation_id(run_id)
        try:
            return await self._run(tenant, filter_id, dry_run, progress, cancel, triggered_by)
        finally:
            set_correlation_id(None)

    async def _run(
        self,
        tenant: str,
        filter_id: str,
        dry_run: bool,
        progress: ProgressCallback | None,
        cancel: CancelToken | None,
        triggered_by: str,
    ) -> CleanupResult:
        logger.info(
            "cleanup_started",
            tenant=tenant,
            filter_id=filter_id,
            dry_run=dry_run,
            mode=self.mode.value,
            triggered_by=triggered_by,
        )

        try:
            flt, retained = await self._collect(tenant, filter_id, cancel)
        except OperationCancelled as e:
            logger.info("cleanup_cancelled", tenant=tenant, filter_id=filter_id, phase="collect")
            return CleanupResult.failure(str(e), cancelled=True)
        except WipeBotError as e:
            logger.warning("cleanup_failed", tenant=tenant, filter_id=filter_id, error=str(e))
            return CleanupResult.failure(str(e))
        except Exception as e:
            logger.error(
                "cleanup_crashed",
                tenant=tenant,
                filter_id=filter_id,
                error=str(e),
                exc_info=True,
            )
            return CleanupResult.failure(str(e) or type(e).__name__)

        if dry_run:
            return CleanupResult(
                success=True,
                filter_name=flt.name,
                dry_run=True,
                count=len(retained),
                conversations=[ConversationPreview.from_conversation(c) for c in retained],
                mode=self.mode.value,
            )

        result = CleanupResult(
            success=True,
            filter_name=flt.name,
            total=len(retained),
            mode=self.mode.value,
        )

        if flt.delete_segments_only and flt.include_segments:
            action_type = "segment_cleanup"
            segments = await self.delete_segments(tenant, retained, flt, cancel)
            result.deleted = segments.conversations_deleted
            result.errors = segments.failed
            result.segments_deleted = segments.segments_deleted
            result.cancelled = segments.cancelled
        else:
            action_type = "cleanup"
            bulk = await self.bulk_delete(
                tenant, [c.session_id for c in retained], progress=progress, cancel=cancel
            )
            result.deleted = bulk.successful
            result.errors = bulk.failed
            result.cancelled = bulk.cancelled

        logger.info(
            "cleanup_complete",
            tenant=tenant,
            filter_id=flt.id,
            filter_name=flt.name,
            total=result.total,
            deleted=result.deleted,
            errors=result.errors,
            segments_deleted=result.segments_deleted,
            cancelled=result.cancelled,
            mode=self.mode.value,
        )

        await self._record(tenant, flt, result, action_type, triggered_by)
        return result

    async def bulk_delete(
        self,
        tenant: str,
        session_ids: list[str],
        progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> BulkDeleteResult:
        """Delete conversations one at a time, tallying each outcome.

        A failed delete is recorded and the loop moves on to the next id.
        Cancellation stops the loop and returns the partial tally.
        """
        result = BulkDeleteResult(total=len(session_ids))

        for index, session_id in enumerate(session_ids):
            try:
                await self._delete_conversation(tenant, session_id, cancel)
                result.successful += 1
            except OperationCancelled:
                result.cancelled = True
                break
            except Exception as e:
                result.failed += 1
                result.errors.append(DeleteFailure(session_id=session_id, error=str(e)))
                logger.warning(
                    "conversation_delete_failed",
                    tenant=tenant,
                    session_id=session_id,
                    error=str(e),
                )

            if progress is not None:
                current = index + 1
                progress(
                    ProgressUpdate(
                        current=current,
                        total=result.total,
                        percent=round(current / result.total * 100),
                    )
                )

            if index < len(session_ids) - 1:
                try:
                    await pause(self.delete_delay, cancel)
                except OperationCancelled:
                    result.cancelled = True
                    break

        if result.cancelled:
            logger.info(
                "bulk_delete_cancelled",
                tenant=tenant,
                attempted=result.successful + result.failed,
                total=result.total,
            )
        return result

    async def delete_segments(
        self,
        tenant: str,
        conversations: list[Conversation],
        flt: FilterDefinition,
        cancel: CancelToken | None = None,
    ) -> SegmentDeleteResult:
        """Delete the matching messages of each conversation.

        A conversation counts as deleted when at least one of its segment
        deletions succeeded. It counts as an error when its messages could
        not be loaded or when every attempted segment deletion failed.
        """
        result = SegmentDeleteResult()

        for index, conversation in enumerate(conversations):
            session_id = conversation.session_id
            try:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                if index > 0:
                    await pause(self.delete_delay, cancel)

                detail = await self._executor.call(
                    lambda sid=session_id: self._source.get_detail(tenant, sid),
                    cancel=cancel,
                    description="get_conversation",
                )
            except OperationCancelled:
                result.cancelled = True
                break
            except Exception as e:
                result.failed += 1
                logger.warning(
                    "conversation_detail_failed", tenant=tenant, session_id=session_id, error=str(e)
                )
                continue

            fingerprints = self._matcher.segments_to_delete(detail, flt)
            if not fingerprints:
                continue

            deleted = 0
            for fingerprint in fingerprints:
                try:
                    await self._delete_message(tenant, session_id, fingerprint, cancel)
                    deleted += 1
                except OperationCancelled:
                    result.cancelled = True
                    break
                except Exception as e:
                    logger.warning(
                        "segment_delete_failed",
                        tenant=tenant,
                        session_id=session_id,
                        fingerprint=fingerprint,
                        error=str(e),
                    )

            result.segments_deleted += deleted
            if deleted:
                result.conversations_deleted += 1
                logger.debug(
                    "segments_deleted",
                    tenant=tenant,
                    session_id=session_id,
                    deleted=deleted,
                    matched=len(fingerprints),
                )
            elif not result.cancelled:
                result.failed += 1

            if result.cancelled:
                break

        return result

    # ------------------------------------------------------------------
    # Mutating calls (suppressed in debug mode)
    # ------------------------------------------------------------------

    async def _delete_conversation(
        self, tenant: str, session_id: str, cancel: CancelToken | None
    ) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()
        if self.mode is OperatingMode.DEBUG:
            logger.debug("debug_mode_skip_delete", tenant=tenant, session_id=session_id)
            return
        await self._executor.call(
            lambda: self._source.delete_conversation(tenant, session_id),
            cancel=cancel,
            description="delete_conversation",
        )

    async def _delete_message(
        self, tenant: str, session_id: str, fingerprint: str, cancel: CancelToken | None
    ) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()
        if self.mode is OperatingMode.DEBUG:
            logger.debug(
                "debug_mode_skip_delete_message",
                tenant=tenant,
                session_id=session_id,
                fingerprint=fingerprint,
            )
            return
        await self._executor.call(
            lambda: self._source.delete_message(tenant, session_id, fingerprint),
            cancel=cancel,
            description="delete_message",
        )

    async def _record(
        self,
        tenant: str,
        flt: FilterDefinition,
        result: CleanupResult,
        action_type: str,
        triggered_by: str,
    ) -> None:
        """Persist statistics and an audit entry for a finished run.

        Debug runs are audited but not counted in the statistics.
        """
        if self._stats is None:
            return

        details = asdict(result)
        details.pop("conversations", None)
        try:
            if self.mode is OperatingMode.LIVE:
                if action_type == "segment_cleanup":
                    await self._stats.record_cleanup(tenant, deleted_segments=result.segments_deleted)
                else:
                    await self._stats.record_cleanup(tenant, deleted_chats=result.deleted)
            await self._stats.log_action(
                action_type,
                tenant=tenant,
                filter_id=flt.id,
                details=details,
                triggered_by=triggered_by,
            )
        except WipeBotError as e:
            logger.error("cleanup_statistics_failed", tenant=tenant, filter_id=flt.id, error=str(e))
