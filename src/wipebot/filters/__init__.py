"""Filter definitions, matching engine, registry and store interface.

Usage:
    from wipebot.filters import FilterMatcher, FilterRegistry, InMemoryFilterStore

    registry = FilterRegistry(InMemoryFilterStore())
    flt = await registry.create_filter("website-id", {"name": "Old chats", "closed_only": True})
    FilterMatcher().matches(conversation, flt)
"""

from wipebot.filters.matching import FilterMatcher
from wipebot.filters.models import (
    ALL_PLATFORMS,
    FilterCriteria,
    FilterDefinition,
    FilterGroup,
    Subfilter,
    TenantFilters,
)
from wipebot.filters.registry import FILTER_COLORS, FilterRegistry
from wipebot.filters.store import FilterStore, InMemoryFilterStore

__all__ = [
    "ALL_PLATFORMS",
    "FILTER_COLORS",
    "FilterCriteria",
    "FilterDefinition",
    "FilterGroup",
    "FilterMatcher",
    "FilterRegistry",
    "FilterStore",
    "InMemoryFilterStore",
    "Subfilter",
    "TenantFilters",
]
