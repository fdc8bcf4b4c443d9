"""Typed views over Crisp conversation payloads.

The REST API returns timestamps as epoch milliseconds and nests most of the
interesting attributes under `meta`. These dataclasses flatten what the
filter engine needs and keep the raw payload around for anything else.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

EPOCH = datetime.fromtimestamp(0, tz=UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Convert an epoch-milliseconds value into an aware UTC datetime.

    Returns None for missing, zero or unparseable values.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        millis = float(value)
    except (TypeError, ValueError):
        return None
    if millis <= 0:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=UTC)


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


@dataclass
class Conversation:
    """One entry of the paginated conversation list.

    Attributes:
        session_id: Crisp session identifier
        status: pending, unresolved, resolved or closed (as reported upstream)
        created: Creation time, None when the payload has none
        updated: Last update time, None when the payload has none
        origin: Platform the conversation came from (e.g. 'chat', 'email')
        email: Visitor email address from the conversation meta
        tags: Tags attached to the conversation
        operators: Operator identifiers assigned to the conversation
        preview: Last message excerpt shown in the inbox
        raw: Untouched API payload
    """

    session_id: str
    status: str | None = None
    created: datetime | None = None
    updated: datetime | None = None
    origin: str | None = None
    email: str | None = None
    tags: list[str] = field(default_factory=list)
    operators: list[str] = field(default_factory=list)
    preview: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def last_activity(self) -> datetime:
        """Updated time, else created time, else the Unix epoch."""
        return self.updated or self.created or EPOCH

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Conversation:
        """Build a Conversation from a Crisp list-item payload."""
        meta = data.get("meta")
        if not isinstance(meta, dict):
            meta = {}
        preview = data.get("preview")
        if preview is None:
            preview = data.get("last_message")
        return cls(
            session_id=str(data.get("session_id", "")),
            status=data.get("status"),
            created=parse_timestamp(data.get("created_at", data.get("created"))),
            updated=parse_timestamp(data.get("updated_at", data.get("updated"))),
            origin=meta.get("origin"),
            email=meta.get("email") or None,
            tags=_string_list(meta.get("tags")),
            operators=_string_list(meta.get("operators")),
            preview=preview if isinstance(preview, str) and preview else None,
            raw=data,
        )


@dataclass
class Message:
    """A single message (segment) inside a conversation.

    Content is kept as-is: text messages carry a string, file and
    event messages carry a dict that never matches segment patterns.
    """

    fingerprint: str
    content: Any = None
    type: str | None = None
    sender: str | None = None
    timestamp: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Message:
        return cls(
            fingerprint=str(data.get("fingerprint", "")),
            content=data.get("content"),
            type=data.get("type"),
            sender=data.get("from"),
            timestamp=parse_timestamp(data.get("timestamp")),
        )


@dataclass
class ConversationDetail:
    """A conversation together with its full message list."""

    session_id: str
    status: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    messages: list[Message] = field(default_factory=list)

    @classmethod
    def from_api(cls, session_id: str, data: dict[str, Any]) -> ConversationDetail:
        raw_messages = data.get("messages")
        if not isinstance(raw_messages, list):
            raw_messages = []
        meta = data.get("meta")
        return cls(
            session_id=session_id,
            status=data.get("status"),
            meta=meta if isinstance(meta, dict) else {},
            messages=[Message.from_api(m) for m in raw_messages if isinstance(m, dict)],
        )
