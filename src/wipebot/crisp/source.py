"""Interface the cleanup engine expects from the chat platform.

CrispClient implements it over HTTP; tests use AsyncMock objects with the
same method names. Any method may raise RateLimited or AuthTransient, which
RateLimitedExecutor retries; other failures surface as UpstreamFailure or
NotFoundError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from wipebot.crisp.models import Conversation, ConversationDetail

# Conversation states accepted by patch_status
CONVERSATION_STATUSES = ("pending", "unresolved", "resolved", "closed")


class ConversationSource(Protocol):
    async def list_page(
        self,
        tenant: str,
        page_number: int,
        page_size: int,
        status: str | None = None,
    ) -> list[Conversation]: ...

    async def get_detail(self, tenant: str, session_id: str) -> ConversationDetail: ...

    async def delete_conversation(self, tenant: str, session_id: str) -> None: ...

    async def delete_message(self, tenant: str, session_id: str, fingerprint: str) -> None: ...

    async def patch_status(self, tenant: str, session_id: str, status: str) -> None: ...

    async def send_message(self, tenant: str, session_id: str, content: str) -> None: ...
