"""Filter predicate engine.

Decides whether a conversation matches a filter and, for segment cleanup,
which of its messages should be deleted. Evaluation is pure: no I/O and no
exceptions for missing conversation data. A criterion whose input is
missing (no preview, no email) is skipped rather than failed, except where
noted on the individual checks.

Combination filters evaluate their subfilters recursively. A subfilter can
reference another filter by id or name; references are resolved through a
caller-supplied function (usually TenantFilters.find) and tracked along
the current path so that a reference loop raises CyclicFilterError
instead of recursing forever.

Usage:
    from wipebot.filters.matching import FilterMatcher

    matcher = FilterMatcher()
    resolve = tenant_filters.find
    retained = [c for c in conversations if matcher.matches(c, flt, resolve)]
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from wipebot.core.errors import CyclicFilterError
from wipebot.core.logging import get_logger
from wipebot.filters.models import ALL_PLATFORMS, FilterCriteria, FilterDefinition

if TYPE_CHECKING:
    from wipebot.crisp.models import Conversation, ConversationDetail, Message

logger = get_logger(__name__)

FilterResolver = Callable[[str], FilterDefinition | None]

ONE_DAY = timedelta(days=1)


# ---------------------------------------------------------------------------
# Single-criterion helpers
# ---------------------------------------------------------------------------


def text_contains_keywords(text: str, keywords: list[str], match_type: str = "any") -> bool:
    """Case-insensitive substring check for any/all keywords."""
    if not text or not keywords:
        return False
    lowered = text.lower()
    if match_type == "all":
        return all(keyword.lower() in lowered for keyword in keywords)
    return any(keyword.lower() in lowered for keyword in keywords)


def email_matches_domains(email: str | None, domains: list[str], match_type: str = "include") -> bool:
    """Check an email's domain against a domain list.

    With no email or no domains, exclude mode passes and include mode fails.
    A malformed address (not exactly one '@') never matches.
    """
    if not email or not domains:
        return match_type == "exclude"

    parts = email.lower().split("@")
    if len(parts) != 2:
        return False

    domain_listed = parts[1] in {d.lower() for d in domains}
    return domain_listed if match_type == "include" else not domain_listed


def has_any_tag(conversation_tags: list[str], tags: list[str]) -> bool:
    if not conversation_tags or not tags:
        return False
    return any(tag in conversation_tags for tag in tags)


def operators_match(conversation_operators: list[str], operators: list[str], match_type: str = "any") -> bool:
    """any/all/none semantics; an empty side only satisfies 'none'."""
    if not conversation_operators or not operators:
        return match_type == "none"
    if match_type == "all":
        return all(op in conversation_operators for op in operators)
    if match_type == "none":
        return not any(op in conversation_operators for op in operators)
    return any(op in conversation_operators for op in operators)


def inactivity_days(conversation: Conversation, now: datetime) -> int:
    """Whole days since the conversation's last activity."""
    return (now - conversation.last_activity) // ONE_DAY


def _content_contains(content: object, patterns: list[str]) -> bool:
    if not isinstance(content, str):
        return False
    lowered = content.lower()
    return any(pattern.lower() in lowered for pattern in patterns)


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------


class FilterMatcher:
    """Evaluates filters against conversations.

    Stateless; one instance can be shared by the orchestrator, the
    scheduler and the REST layer.
    """

    def matches(
        self,
        conversation: Conversation,
        flt: FilterCriteria,
        resolve: FilterResolver | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Return True if the conversation satisfies the filter.

        Args:
            conversation: Conversation from the list endpoint
            flt: Stored filter or inline criteria
            resolve: Looks up referenced filters by id or name; without it every
                reference evaluates to False
            now: Reference time (defaults to the current UTC time)

        Raises:
            CyclicFilterError: If subfilter references form a loop
        """
        now = now or datetime.now(UTC)
        path = [flt.id] if isinstance(flt, FilterDefinition) else []
        return self._matches(conversation, flt, resolve, now, path)

    def check_references(self, flt: FilterCriteria, resolve: FilterResolver) -> None:
        """Walk every reachable reference once and raise on a loop.

        Lets callers reject a cyclic filter before fetching any
        conversations.

        Raises:
            CyclicFilterError: If subfilter references form a loop
        """
        path = [flt.id] if isinstance(flt, FilterDefinition) else []
        self._walk_references(flt, resolve, path)

    def segments_to_delete(self, detail: ConversationDetail, flt: FilterCriteria) -> list[str]:
        """Fingerprints of the messages a segment cleanup should delete.

        A message qualifies when its text contains any include pattern and
        no exclude pattern (both case-insensitive). Order follows the
        conversation's message order.
        """
        if not flt.include_segments:
            return []
        return [
            message.fingerprint
            for message in self._qualifying_messages(detail.messages, flt)
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _qualifying_messages(self, messages: Iterable[Message], flt: FilterCriteria) -> Iterable[Message]:
        for message in messages:
            if not _content_contains(message.content, flt.include_segments):
                continue
            if flt.exclude_segments and _content_contains(message.content, flt.exclude_segments):
                continue
            yield message

    def _enter_reference(self, filter_id: str, path: list[str]) -> list[str]:
        if filter_id in path:
            cycle = path[path.index(filter_id):] + [filter_id]
            logger.warning("Cyclic filter reference", path=cycle)
            raise CyclicFilterError(
                f"Filter references form a loop: {' -> '.join(cycle)}. "
                "Remove one of the subfilter references to break it.",
                path=cycle,
            )
        return path + [filter_id]

    def _walk_references(self, flt: FilterCriteria, resolve: FilterResolver, path: list[str]) -> None:
        if not flt.is_combination_filter:
            return
        for sub in flt.subfilters:
            if sub.filter_id:
                target = resolve(sub.filter_id)
                if target is None:
                    continue
                self._walk_references(target, resolve, self._enter_reference(target.id, path))
            else:
                self._walk_references(sub, resolve, path)

    def _subfilter_matches(
        self,
        conversation: Conversation,
        sub: FilterCriteria,
        resolve: FilterResolver | None,
        now: datetime,
        path: list[str],
    ) -> bool:
        filter_id = getattr(sub, "filter_id", None)
        if not filter_id:
            return self._matches(conversation, sub, resolve, now, path)

        target = resolve(filter_id) if resolve is not None else None
        if target is None:
            logger.debug("Unresolvable subfilter reference", filter_id=filter_id)
            return False
        return self._matches(
            conversation, target, resolve, now, self._enter_reference(target.id, path)
        )

    def _matches(
        self,
        conversation: Conversation,
        flt: FilterCriteria,
        resolve: FilterResolver | None,
        now: datetime,
        path: list[str],
    ) -> bool:
        if flt.is_combination_filter and flt.subfilters:
            results = (
                self._subfilter_matches(conversation, sub, resolve, now, path)
                for sub in flt.subfilters
            )
            if flt.combination_operation == "AND":
                return all(results)
            return any(results)

        # 1. Closed conversations only
        if flt.closed_only and conversation.status != "closed":
            return False

        # 2. Age: last activity strictly before now - max_days
        if flt.max_days:
            cutoff = now - timedelta(days=flt.max_days)
            if conversation.last_activity >= cutoff:
                return False

        # 3. Platform allow-list
        if flt.platforms and ALL_PLATFORMS not in flt.platforms:
            if not conversation.origin or conversation.origin not in flt.platforms:
                return False

        # 4. Inactivity
        if flt.inactivity_enabled and flt.inactivity_days:
            if inactivity_days(conversation, now) < flt.inactivity_days:
                return False

        # 5. Keywords in the preview text
        if flt.keyword_enabled and flt.keywords and conversation.preview:
            if not text_contains_keywords(conversation.preview, flt.keywords, flt.keyword_match_type):
                return False

        # 6. Visitor email domain
        if flt.user_attributes_enabled and flt.email_domains and conversation.email:
            if not email_matches_domains(
                conversation.email, flt.email_domains, flt.email_domain_match_type
            ):
                return False

        # 7. Tags
        if flt.tags_enabled:
            if flt.exclude_tags and has_any_tag(conversation.tags, flt.exclude_tags):
                return False
            if flt.include_tags and not has_any_tag(conversation.tags, flt.include_tags):
                return False

        # 8. Operators
        if flt.operators_enabled and flt.operators:
            if not operators_match(conversation.operators, flt.operators, flt.operator_match_type):
                return False

        return True
