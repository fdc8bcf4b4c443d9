"""Pydantic models for filters, groups and the per-tenant filter document.

A tenant's filters and groups are stored together as one TenantFilters
document. The same models validate REST input, so bad shapes are rejected
before anything reaches the store.

Usage:
    from wipebot.filters.models import FilterDefinition, TenantFilters

    doc = TenantFilters.model_validate(raw_json)
    flt = doc.find("Old chats")
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

import regex
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Sentinel in `platforms` meaning "every platform"
ALL_PLATFORMS = "all"

# Accepted auto_time values: 00:00 through 23:59
AUTO_TIME_PATTERN = regex.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

KeywordMatchType = Literal["any", "all"]
EmailDomainMatchType = Literal["include", "exclude"]
OperatorMatchType = Literal["any", "all", "none"]
CombinationOperation = Literal["AND", "OR"]


def utc_now() -> datetime:
    return datetime.now(UTC)


class FilterCriteria(BaseModel):
    """Matching criteria shared by stored filters and inline subfilters.

    Numeric thresholds are stored as given; defaults for unset thresholds
    are applied once, when a filter is created, not during evaluation.
    """

    model_config = ConfigDict(extra="ignore")

    # Base criteria
    max_days: int | None = Field(default=None, ge=1, description="Minimum age in days")
    closed_only: bool = Field(default=False, description="Only match closed conversations")
    platforms: list[str] = Field(
        default_factory=lambda: [ALL_PLATFORMS],
        description="Allowed conversation origins, or ['all']",
    )
    include_segments: list[str] = Field(
        default_factory=list,
        description="Message substrings marking a segment for deletion",
    )
    exclude_segments: list[str] = Field(
        default_factory=list,
        description="Message substrings protecting a segment from deletion",
    )
    delete_segments_only: bool = Field(
        default=False,
        description="Delete matching messages instead of whole conversations",
    )

    # Extended criteria, each behind its own switch
    inactivity_enabled: bool = False
    inactivity_days: int | None = Field(default=None, ge=1)
    keyword_enabled: bool = False
    keywords: list[str] = Field(default_factory=list)
    keyword_match_type: KeywordMatchType = "any"
    user_attributes_enabled: bool = False
    email_domains: list[str] = Field(default_factory=list)
    email_domain_match_type: EmailDomainMatchType = "include"
    tags_enabled: bool = False
    include_tags: list[str] = Field(default_factory=list)
    exclude_tags: list[str] = Field(default_factory=list)
    operators_enabled: bool = False
    operators: list[str] = Field(default_factory=list)
    operator_match_type: OperatorMatchType = "any"

    # Combination mode
    is_combination_filter: bool = False
    combination_operation: CombinationOperation = "AND"
    subfilters: list[Subfilter] = Field(default_factory=list)

    @field_validator("combination_operation", mode="before")
    @classmethod
    def normalize_operation(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("subfilters", mode="before")
    @classmethod
    def validate_subfilters(cls, v: Any) -> Any:
        """Each subfilter must be a non-empty mapping."""
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("subfilters must be a list")
        for index, item in enumerate(v):
            if isinstance(item, BaseModel):
                continue
            if not isinstance(item, dict) or not item:
                raise ValueError(f"subfilter {index} must be a non-empty object")
        return v


class Subfilter(FilterCriteria):
    """One operand of a combination filter.

    When `filter_id` is set the subfilter is a reference to another filter
    of the same tenant and its inline criteria are ignored.
    """

    filter_id: str | None = None


FilterCriteria.model_rebuild()
Subfilter.model_rebuild()


class FilterDefinition(FilterCriteria):
    """A stored, named filter owned by one tenant."""

    id: str
    name: str
    group: str | None = None
    color: str | None = None
    auto_enabled: bool = False
    auto_time: str = "03:00"
    active: bool = True
    created: datetime = Field(default_factory=utc_now)
    updated: datetime = Field(default_factory=utc_now)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Filter name cannot be empty")
        return v

    @field_validator("auto_time")
    @classmethod
    def validate_auto_time(cls, v: str) -> str:
        """Ensure auto_time is HH:MM on a 24-hour clock."""
        if not AUTO_TIME_PATTERN.match(v, timeout=1):
            raise ValueError(f"auto_time must be in HH:MM format (00:00-23:59), got '{v}'")
        return v

    @property
    def auto_hour_minute(self) -> tuple[int, int]:
        hour, minute = self.auto_time.split(":")
        return int(hour), int(minute)


class FilterGroup(BaseModel):
    """Named label used to organize filters in the UI."""

    id: str
    name: str
    created: datetime = Field(default_factory=utc_now)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Group name cannot be empty")
        return v


class TenantFilters(BaseModel):
    """All filters and groups of one tenant, persisted as a single document."""

    filters: list[FilterDefinition] = Field(default_factory=list)
    groups: list[FilterGroup] = Field(default_factory=list)

    def get(self, filter_id: str) -> FilterDefinition | None:
        for flt in self.filters:
            if flt.id == filter_id:
                return flt
        return None

    def find(self, name_or_id: str) -> FilterDefinition | None:
        """Look up a filter by id, falling back to a case-insensitive name match."""
        by_id = self.get(name_or_id)
        if by_id is not None:
            return by_id
        wanted = name_or_id.strip().lower()
        for flt in self.filters:
            if flt.name.lower() == wanted:
                return flt
        return None

    def get_group(self, group_id: str) -> FilterGroup | None:
        for group in self.groups:
            if group.id == group_id:
                return group
        return None
