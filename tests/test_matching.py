"""Tests for the filter predicate engine.

Covers the individual criteria, combination filters with inline and
referenced subfilters, cycle detection and segment selection.
"""

from datetime import UTC, datetime, timedelta

import pytest

from wipebot.core.errors import CyclicFilterError
from wipebot.crisp.models import Conversation, ConversationDetail, Message
from wipebot.filters.matching import (
    FilterMatcher,
    email_matches_domains,
    inactivity_days,
    operators_match,
    text_contains_keywords,
)
from wipebot.filters.models import FilterCriteria, FilterDefinition, Subfilter, TenantFilters

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


def _conversation(age_days: float = 60, **kwargs) -> Conversation:
    updated = NOW - timedelta(days=age_days)
    defaults = {
        "session_id": "session_1",
        "status": "closed",
        "created": updated - timedelta(hours=1),
        "updated": updated,
        "origin": "chat",
        "preview": "Hello there",
    }
    defaults.update(kwargs)
    return Conversation(**defaults)


def _filter(filter_id: str = "f1", **kwargs) -> FilterDefinition:
    return FilterDefinition(id=filter_id, name=kwargs.pop("name", filter_id), **kwargs)


@pytest.fixture
def matcher() -> FilterMatcher:
    return FilterMatcher()


class TestHelpers:
    """Tests for the single-criterion helpers."""

    def test_keywords_any_is_case_insensitive(self) -> None:
        assert text_contains_keywords("Please CANCEL my order", ["cancel", "refund"])

    def test_keywords_all_requires_every_keyword(self) -> None:
        assert not text_contains_keywords("cancel my order", ["cancel", "refund"], "all")
        assert text_contains_keywords("cancel and refund", ["cancel", "refund"], "all")

    def test_keywords_empty_text_never_matches(self) -> None:
        assert not text_contains_keywords("", ["cancel"])

    def test_email_include_and_exclude(self) -> None:
        assert email_matches_domains("bob@Spam.io", ["spam.io"], "include")
        assert not email_matches_domains("bob@example.com", ["spam.io"], "include")
        assert email_matches_domains("bob@example.com", ["spam.io"], "exclude")
        assert not email_matches_domains("bob@spam.io", ["spam.io"], "exclude")

    def test_email_missing_passes_only_exclude(self) -> None:
        assert email_matches_domains(None, ["spam.io"], "exclude")
        assert not email_matches_domains(None, ["spam.io"], "include")

    def test_malformed_email_never_matches(self) -> None:
        assert not email_matches_domains("not-an-email", ["spam.io"], "include")
        assert not email_matches_domains("a@b@spam.io", ["spam.io"], "exclude")

    def test_operators_modes(self) -> None:
        assert operators_match(["op1", "op2"], ["op2"], "any")
        assert not operators_match(["op1"], ["op1", "op2"], "all")
        assert operators_match(["op1"], ["op2"], "none")
        assert not operators_match(["op1"], ["op1"], "none")

    def test_operators_empty_side_only_satisfies_none(self) -> None:
        assert operators_match([], ["op1"], "none")
        assert not operators_match([], ["op1"], "any")

    def test_inactivity_days_floors(self) -> None:
        conversation = _conversation(age_days=3.9)
        assert inactivity_days(conversation, NOW) == 3


class TestBaseCriteria:
    """Tests for the base matching criteria."""

    def test_closed_only_rejects_open_conversation(self, matcher: FilterMatcher) -> None:
        flt = _filter(closed_only=True)
        assert not matcher.matches(_conversation(status="pending"), flt, now=NOW)
        assert matcher.matches(_conversation(status="closed"), flt, now=NOW)

    def test_closed_only_wins_over_every_other_criterion(self, matcher: FilterMatcher) -> None:
        flt = _filter(closed_only=True, max_days=1, keyword_enabled=True, keywords=["hello"])
        assert not matcher.matches(_conversation(age_days=400, status="resolved"), flt, now=NOW)

    def test_max_days_boundary_is_exclusive(self, matcher: FilterMatcher) -> None:
        flt = _filter(max_days=30)
        assert not matcher.matches(_conversation(age_days=30), flt, now=NOW)
        assert matcher.matches(_conversation(age_days=31), flt, now=NOW)

    def test_max_days_rejects_recent_conversation(self, matcher: FilterMatcher) -> None:
        assert not matcher.matches(_conversation(age_days=2), _filter(max_days=30), now=NOW)

    def test_conversation_without_timestamps_counts_as_oldest(self, matcher: FilterMatcher) -> None:
        conversation = _conversation(created=None, updated=None)
        assert matcher.matches(conversation, _filter(max_days=3650), now=NOW)

    def test_platform_allow_list(self, matcher: FilterMatcher) -> None:
        flt = _filter(platforms=["email"])
        assert matcher.matches(_conversation(origin="email"), flt, now=NOW)
        assert not matcher.matches(_conversation(origin="chat"), flt, now=NOW)
        assert not matcher.matches(_conversation(origin=None), flt, now=NOW)

    def test_all_platforms_sentinel(self, matcher: FilterMatcher) -> None:
        assert matcher.matches(_conversation(origin="whatsapp"), _filter(), now=NOW)

    def test_inactivity(self, matcher: FilterMatcher) -> None:
        flt = _filter(inactivity_enabled=True, inactivity_days=14)
        assert not matcher.matches(_conversation(age_days=10), flt, now=NOW)
        assert matcher.matches(_conversation(age_days=14), flt, now=NOW)

    def test_inactivity_ignored_when_disabled(self, matcher: FilterMatcher) -> None:
        flt = _filter(inactivity_enabled=False, inactivity_days=14)
        assert matcher.matches(_conversation(age_days=1), flt, now=NOW)


class TestExtendedCriteria:
    """Tests for keyword, email, tag and operator criteria."""

    def test_keywords_filter_preview(self, matcher: FilterMatcher) -> None:
        flt = _filter(keyword_enabled=True, keywords=["unsubscribe"])
        assert matcher.matches(_conversation(preview="Please unsubscribe me"), flt, now=NOW)
        assert not matcher.matches(_conversation(preview="Where is my order?"), flt, now=NOW)

    def test_keywords_skipped_without_preview(self, matcher: FilterMatcher) -> None:
        flt = _filter(keyword_enabled=True, keywords=["unsubscribe"])
        assert matcher.matches(_conversation(preview=None), flt, now=NOW)

    def test_email_domain_skipped_without_email(self, matcher: FilterMatcher) -> None:
        flt = _filter(user_attributes_enabled=True, email_domains=["spam.io"])
        assert matcher.matches(_conversation(email=None), flt, now=NOW)
        assert matcher.matches(_conversation(email="x@spam.io"), flt, now=NOW)
        assert not matcher.matches(_conversation(email="x@example.com"), flt, now=NOW)

    def test_exclude_tags_take_precedence(self, matcher: FilterMatcher) -> None:
        flt = _filter(tags_enabled=True, include_tags=["spam"], exclude_tags=["vip"])
        assert matcher.matches(_conversation(tags=["spam"]), flt, now=NOW)
        assert not matcher.matches(_conversation(tags=["spam", "vip"]), flt, now=NOW)
        assert not matcher.matches(_conversation(tags=["other"]), flt, now=NOW)

    def test_operators_criterion(self, matcher: FilterMatcher) -> None:
        flt = _filter(operators_enabled=True, operators=["op1"], operator_match_type="none")
        assert matcher.matches(_conversation(operators=[]), flt, now=NOW)
        assert not matcher.matches(_conversation(operators=["op1"]), flt, now=NOW)


class TestCombinationFilters:
    """Tests for AND/OR combination filters."""

    def test_or_matches_if_any_subfilter_matches(self, matcher: FilterMatcher) -> None:
        flt = _filter(
            is_combination_filter=True,
            combination_operation="OR",
            subfilters=[{"closed_only": True}, {"max_days": 30}],
        )
        assert matcher.matches(_conversation(status="pending", age_days=60), flt, now=NOW)
        assert matcher.matches(_conversation(status="closed", age_days=1), flt, now=NOW)
        assert not matcher.matches(_conversation(status="pending", age_days=1), flt, now=NOW)

    def test_and_requires_every_subfilter(self, matcher: FilterMatcher) -> None:
        flt = _filter(
            is_combination_filter=True,
            combination_operation="and",
            subfilters=[{"closed_only": True}, {"max_days": 30}],
        )
        assert flt.combination_operation == "AND"
        assert matcher.matches(_conversation(status="closed", age_days=60), flt, now=NOW)
        assert not matcher.matches(_conversation(status="closed", age_days=1), flt, now=NOW)

    def test_combination_ignores_own_base_criteria(self, matcher: FilterMatcher) -> None:
        flt = _filter(
            closed_only=True,
            is_combination_filter=True,
            combination_operation="OR",
            subfilters=[{"max_days": 30}],
        )
        assert matcher.matches(_conversation(status="pending", age_days=60), flt, now=NOW)

    def test_empty_subfilters_fall_through_to_base_criteria(self, matcher: FilterMatcher) -> None:
        flt = _filter(is_combination_filter=True, closed_only=True, subfilters=[])
        assert matcher.matches(_conversation(status="closed"), flt, now=NOW)
        assert not matcher.matches(_conversation(status="pending"), flt, now=NOW)

    def test_reference_subfilter_uses_target_criteria(self, matcher: FilterMatcher) -> None:
        closed = _filter("closed", closed_only=True)
        combo = _filter(
            "combo",
            is_combination_filter=True,
            combination_operation="AND",
            # Inline criteria on a reference are ignored
            subfilters=[Subfilter(filter_id="closed", max_days=9999)],
        )
        doc = TenantFilters(filters=[closed, combo])
        assert matcher.matches(_conversation(status="closed", age_days=1), combo, doc.get, NOW)
        assert not matcher.matches(_conversation(status="pending"), combo, doc.get, NOW)

    def test_unresolvable_reference_is_false(self, matcher: FilterMatcher) -> None:
        combo = _filter(
            "combo",
            is_combination_filter=True,
            combination_operation="OR",
            subfilters=[{"filter_id": "missing"}],
        )
        assert not matcher.matches(_conversation(), combo, lambda _id: None, NOW)
        assert not matcher.matches(_conversation(), combo, None, NOW)

    def test_diamond_references_are_not_cycles(self, matcher: FilterMatcher) -> None:
        leaf = _filter("leaf", closed_only=True)
        left = _filter("left", is_combination_filter=True, subfilters=[{"filter_id": "leaf"}])
        right = _filter("right", is_combination_filter=True, subfilters=[{"filter_id": "leaf"}])
        top = _filter(
            "top",
            is_combination_filter=True,
            subfilters=[{"filter_id": "left"}, {"filter_id": "right"}],
        )
        doc = TenantFilters(filters=[leaf, left, right, top])

        matcher.check_references(top, doc.get)
        assert matcher.matches(_conversation(status="closed"), top, doc.get, NOW)


class TestCycleDetection:
    """Tests for cyclic subfilter references."""

    def _cyclic_doc(self) -> TenantFilters:
        a = _filter("a", is_combination_filter=True, subfilters=[{"filter_id": "b"}])
        b = _filter("b", is_combination_filter=True, subfilters=[{"filter_id": "a"}])
        return TenantFilters(filters=[a, b])

    def test_two_filter_loop_raises(self, matcher: FilterMatcher) -> None:
        doc = self._cyclic_doc()
        with pytest.raises(CyclicFilterError) as exc_info:
            matcher.matches(_conversation(), doc.get("a"), doc.get, NOW)
        assert exc_info.value.path == ["a", "b", "a"]

    def test_self_reference_raises(self, matcher: FilterMatcher) -> None:
        me = _filter("me", is_combination_filter=True, subfilters=[{"filter_id": "me"}])
        doc = TenantFilters(filters=[me])
        with pytest.raises(CyclicFilterError):
            matcher.check_references(me, doc.get)

    def test_check_references_detects_loop_without_conversations(
        self, matcher: FilterMatcher
    ) -> None:
        doc = self._cyclic_doc()
        with pytest.raises(CyclicFilterError):
            matcher.check_references(doc.get("b"), doc.get)


class TestSegmentsToDelete:
    """Tests for segment (message) selection."""

    def _detail(self, *contents) -> ConversationDetail:
        return ConversationDetail(
            session_id="session_1",
            messages=[
                Message(fingerprint=f"fp{i}", content=content, type="text")
                for i, content in enumerate(contents)
            ],
        )

    def test_include_patterns_select_messages(self, matcher: FilterMatcher) -> None:
        flt = FilterCriteria(include_segments=["password"])
        detail = self._detail("My PASSWORD is 123", "thanks", "new password: abc")
        assert matcher.segments_to_delete(detail, flt) == ["fp0", "fp2"]

    def test_exclude_pattern_protects_message(self, matcher: FilterMatcher) -> None:
        flt = FilterCriteria(include_segments=["password"], exclude_segments=["keep"])
        detail = self._detail("password reset, keep this", "password 123")
        assert matcher.segments_to_delete(detail, flt) == ["fp1"]

    def test_non_text_content_never_matches(self, matcher: FilterMatcher) -> None:
        flt = FilterCriteria(include_segments=["password"])
        detail = self._detail({"url": "https://files/password.txt"}, None)
        assert matcher.segments_to_delete(detail, flt) == []

    def test_no_include_patterns_selects_nothing(self, matcher: FilterMatcher) -> None:
        assert matcher.segments_to_delete(self._detail("anything"), FilterCriteria()) == []
