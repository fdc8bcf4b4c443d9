"""Persistence interface for per-tenant filter documents.

The registry reads a tenant's whole TenantFilters document, mutates it and
writes it back. DatabaseStore implements this over SQLite; the in-memory
variant below backs tests and embedded use.
"""

from __future__ import annotations

from typing import Any, Protocol

from wipebot.filters.models import TenantFilters


class FilterStore(Protocol):
    async def load_filters(self, tenant: str) -> TenantFilters: ...

    async def save_filters(self, tenant: str, data: TenantFilters) -> None: ...

    async def delete_filters(self, tenant: str) -> bool: ...

    async def list_tenants(self) -> list[str]: ...


class InMemoryFilterStore:
    """FilterStore kept in a dict.

    Documents are stored as JSON-compatible dicts so callers never share
    model instances with the store, the same as with the SQLite store.
    """

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}

    async def load_filters(self, tenant: str) -> TenantFilters:
        raw = self._documents.get(tenant)
        if raw is None:
            return TenantFilters()
        return TenantFilters.model_validate(raw)

    async def save_filters(self, tenant: str, data: TenantFilters) -> None:
        self._documents[tenant] = data.model_dump(mode="json")

    async def delete_filters(self, tenant: str) -> bool:
        return self._documents.pop(tenant, None) is not None

    async def list_tenants(self) -> list[str]:
        return sorted(self._documents)
