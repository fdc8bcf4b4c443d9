"""Filter and group CRUD per tenant.

Every mutation is a whole-document read-modify-write against the
FilterStore: load the tenant's TenantFilters, change it, save it back.
Concurrent writers for the same tenant race and the last write wins.

Usage:
    from wipebot.filters.registry import FilterRegistry

    registry = FilterRegistry(store)
    flt = await registry.create_filter("website-id", {"name": "Old chats"})
    await registry.update_filter("website-id", flt.id, {"max_days": 60})
"""

from __future__ import annotations

import random
import uuid
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from wipebot.config import format_validation_errors
from wipebot.core.errors import NotFoundError, ValidationError
from wipebot.core.logging import get_logger
from wipebot.filters.models import (
    FilterDefinition,
    FilterGroup,
    Subfilter,
    TenantFilters,
    utc_now,
)
from wipebot.filters.store import FilterStore

logger = get_logger(__name__)

DEFAULT_MAX_FILTERS = 30
DEFAULT_MAX_DAYS = 30
DEFAULT_INACTIVITY_DAYS = 14

FILTER_COLORS = [
    "#3498db", "#2ecc71", "#e74c3c", "#f39c12", "#9b59b6",
    "#1abc9c", "#d35400", "#34495e", "#16a085", "#27ae60",
    "#2980b9", "#8e44ad", "#f1c40f", "#e67e22", "#0984e3",
    "#6c5ce7", "#fdcb6e", "#00cec9", "#55efc4", "#fab1a0",
]  # fmt: skip

# Fields a caller may never set directly
_PROTECTED_FIELDS = ("id", "created", "updated")


def _is_unset(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _refers_to(sub: Subfilter, flt: FilterDefinition) -> bool:
    """True if a subfilter references `flt` by id or by name."""
    if not sub.filter_id:
        return False
    return sub.filter_id == flt.id or sub.filter_id.strip().lower() == flt.name.lower()


def _build_filter(data: dict[str, Any]) -> FilterDefinition:
    try:
        return FilterDefinition.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid filter:\n{format_validation_errors(e)}") from e


class FilterRegistry:
    """CRUD operations for filters and groups, scoped by tenant.

    Attributes:
        store: Persistence backend for tenant documents
        max_filters: Upper bound on filters per tenant
    """

    def __init__(self, store: FilterStore, max_filters: int = DEFAULT_MAX_FILTERS):
        self.store = store
        self.max_filters = max_filters

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load(self, tenant: str) -> TenantFilters:
        return await self.store.load_filters(tenant)

    async def list_tenants(self) -> list[str]:
        return await self.store.list_tenants()

    async def list_filters(self, tenant: str) -> list[FilterDefinition]:
        return (await self.load(tenant)).filters

    async def list_active_filters(self, tenant: str) -> list[FilterDefinition]:
        return [f for f in await self.list_filters(tenant) if f.active]

    async def list_groups(self, tenant: str) -> list[FilterGroup]:
        return (await self.load(tenant)).groups

    async def find_filter(self, tenant: str, name_or_id: str) -> FilterDefinition | None:
        """Look up by id, then by case-insensitive name. Returns None if absent."""
        return (await self.load(tenant)).find(name_or_id)

    async def get_filter(self, tenant: str, filter_id: str) -> FilterDefinition:
        """Like find_filter, but raises NotFoundError when absent."""
        flt = await self.find_filter(tenant, filter_id)
        if flt is None:
            raise NotFoundError(f"Filter '{filter_id}' not found for tenant {tenant}")
        return flt

    # ------------------------------------------------------------------
    # Filter mutations
    # ------------------------------------------------------------------

    def _check_name_free(self, doc: TenantFilters, name: str, exclude_id: str | None = None) -> None:
        wanted = name.strip().lower()
        for flt in doc.filters:
            if flt.name.lower() == wanted and flt.id != exclude_id:
                raise ValidationError(f"A filter named '{name.strip()}' already exists (duplicate name)")

    def _check_capacity(self, doc: TenantFilters) -> None:
        if len(doc.filters) >= self.max_filters:
            raise ValidationError(
                f"Filter limit exceeded: a tenant can have at most {self.max_filters} filters. "
                "Delete an unused filter first."
            )

    async def create_filter(self, tenant: str, data: dict[str, Any]) -> FilterDefinition:
        """Create a filter from user input.

        Unset max_days and inactivity_days default to 30 and 14; a missing
        color is picked from FILTER_COLORS.

        Raises:
            ValidationError: Blank or duplicate name, limit reached, bad field values
        """
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Filter name is required")

        doc = await self.load(tenant)
        self._check_name_free(doc, name)
        self._check_capacity(doc)

        fields = {k: v for k, v in data.items() if k not in _PROTECTED_FIELDS}
        if _is_unset(fields.get("max_days")):
            fields["max_days"] = DEFAULT_MAX_DAYS
        if _is_unset(fields.get("inactivity_days")):
            fields["inactivity_days"] = DEFAULT_INACTIVITY_DAYS
        if _is_unset(fields.get("color")):
            fields["color"] = random.choice(FILTER_COLORS)

        now = utc_now()
        flt = _build_filter({**fields, "id": str(uuid.uuid4()), "created": now, "updated": now})

        doc.filters.append(flt)
        await self.store.save_filters(tenant, doc)

        logger.info("Filter created", tenant=tenant, filter_id=flt.id, name=flt.name)
        return flt

    async def update_filter(self, tenant: str, filter_id: str, data: dict[str, Any]) -> FilterDefinition:
        """Merge `data` over an existing filter and persist it.

        Raises:
            NotFoundError: Unknown filter id
            ValidationError: Rename collision or bad field values
        """
        doc = await self.load(tenant)
        existing = doc.get(filter_id)
        if existing is None:
            raise NotFoundError(f"Filter '{filter_id}' not found for tenant {tenant}")

        changes = {k: v for k, v in data.items() if k not in _PROTECTED_FIELDS}
        if "name" in changes and isinstance(changes["name"], str):
            self._check_name_free(doc, changes["name"], exclude_id=filter_id)

        merged = {**existing.model_dump(), **changes, "updated": utc_now()}
        updated = _build_filter(merged)

        doc.filters[doc.filters.index(existing)] = updated
        await self.store.save_filters(tenant, doc)

        logger.info(
            "Filter updated", tenant=tenant, filter_id=filter_id, fields=sorted(changes)
        )
        return updated

    async def delete_filter(self, tenant: str, filter_id: str) -> None:
        """Delete a filter and strip references to it from combination filters.

        Raises:
            NotFoundError: Unknown filter id
        """
        doc = await self.load(tenant)
        existing = doc.get(filter_id)
        if existing is None:
            raise NotFoundError(f"Filter '{filter_id}' not found for tenant {tenant}")

        doc.filters.remove(existing)
        stripped = 0
        for flt in doc.filters:
            kept = [sub for sub in flt.subfilters if not _refers_to(sub, existing)]
            if len(kept) != len(flt.subfilters):
                stripped += len(flt.subfilters) - len(kept)
                flt.subfilters = kept

        await self.store.save_filters(tenant, doc)
        logger.info(
            "Filter deleted",
            tenant=tenant,
            filter_id=filter_id,
            name=existing.name,
            references_removed=stripped,
        )

    async def clone_filter(self, tenant: str, filter_id: str, new_name: str) -> FilterDefinition:
        """Copy a filter under a new name.

        Subfilter references are kept pointing at the same filters.

        Raises:
            NotFoundError: Unknown source filter
            ValidationError: Blank or duplicate name, limit reached
        """
        if not isinstance(new_name, str) or not new_name.strip():
            raise ValidationError("A name for the cloned filter is required")

        doc = await self.load(tenant)
        self._check_capacity(doc)
        self._check_name_free(doc, new_name)

        source = doc.get(filter_id)
        if source is None:
            raise NotFoundError(f"Filter '{filter_id}' not found for tenant {tenant}")

        now = utc_now()
        clone = source.model_copy(
            deep=True,
            update={"id": str(uuid.uuid4()), "name": new_name.strip(), "created": now, "updated": now},
        )
        doc.filters.append(clone)
        await self.store.save_filters(tenant, doc)

        logger.info(
            "Filter cloned", tenant=tenant, source_id=filter_id, filter_id=clone.id, name=clone.name
        )
        return clone

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def create_group(self, tenant: str, name: str) -> FilterGroup:
        """Raises ValidationError on a blank or duplicate group name."""
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Group name is required")

        doc = await self.load(tenant)
        wanted = name.strip().lower()
        if any(group.name.lower() == wanted for group in doc.groups):
            raise ValidationError(f"A group named '{name.strip()}' already exists (duplicate name)")

        group = FilterGroup(id=str(uuid.uuid4()), name=name.strip())
        doc.groups.append(group)
        await self.store.save_filters(tenant, doc)

        logger.info("Group created", tenant=tenant, group_id=group.id, name=group.name)
        return group

    async def delete_group(self, tenant: str, group_id: str) -> None:
        """Delete a group; member filters are kept and lose their group.

        Raises:
            NotFoundError: Unknown group id
        """
        doc = await self.load(tenant)
        group = doc.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Group '{group_id}' not found for tenant {tenant}")

        doc.groups.remove(group)
        now = utc_now()
        ungrouped = 0
        for flt in doc.filters:
            if flt.group == group_id:
                flt.group = None
                flt.updated = now
                ungrouped += 1

        await self.store.save_filters(tenant, doc)
        logger.info("Group deleted", tenant=tenant, group_id=group_id, filters_ungrouped=ungrouped)

    # ------------------------------------------------------------------
    # Tenant lifecycle
    # ------------------------------------------------------------------

    async def remove_tenant(self, tenant: str) -> None:
        """Drop every filter and group of a tenant (plugin disconnect).

        Raises:
            NotFoundError: If the tenant has no stored data
        """
        if not await self.store.delete_filters(tenant):
            raise NotFoundError(f"No stored data for tenant {tenant}")
        logger.info("Tenant data removed", tenant=tenant)
