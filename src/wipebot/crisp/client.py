"""Async HTTP client for the Crisp REST API (plugin tier).

This client translates HTTP responses into WipeBot exceptions and typed
models. It deliberately performs no retries: the caller wraps each call in
RateLimitedExecutor, which owns the retry policy.

Status mapping:
- 429 -> RateLimited (with the Retry-After hint, if sent)
- 401 -> AuthTransient
- 404 -> NotFoundError
- any other status >= 400, timeouts and connection errors -> UpstreamFailure

Usage:
    from wipebot.crisp.client import CrispClient

    async with CrispClient(identifier, key) as client:
        page = await client.list_page("website-id", page_number=1, page_size=50)
"""

from __future__ import annotations

from typing import Any

import httpx

from wipebot.core.errors import (
    AuthTransient,
    NotFoundError,
    RateLimited,
    UpstreamFailure,
    ValidationError,
)
from wipebot.core.logging import get_logger
from wipebot.crisp.models import Conversation, ConversationDetail
from wipebot.crisp.source import CONVERSATION_STATUSES

logger = get_logger(__name__)

CRISP_BASE_URL = "https://api.crisp.chat/v1"
DEFAULT_TIMEOUT = 10.0  # seconds

# Platform that every website has, whether or not a plugin is installed
DEFAULT_PLATFORM = "webchat"


class CrispClient:
    """Crisp REST API client implementing the ConversationSource interface.

    Attributes:
        base_url: Crisp API base URL
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        identifier: str,
        key: str,
        base_url: str = CRISP_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the Crisp client.

        Args:
            identifier: Plugin token identifier
            key: Plugin token key
            base_url: Crisp API base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            auth=httpx.BasicAuth(identifier, key),
            headers={"X-Crisp-Tier": "plugin", "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

        logger.debug("CrispClient initialized", base_url=self.base_url, timeout=timeout)

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> CrispClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _raise_for_status(self, response: httpx.Response, method: str, endpoint: str) -> None:
        """Translate an error response into the matching WipeBot exception.

        Raises:
            RateLimited: For 429
            AuthTransient: For 401
            NotFoundError: For 404
            UpstreamFailure: For any other status >= 400
        """
        if response.status_code < 400:
            return

        try:
            error_data = response.json()
            if isinstance(error_data, dict):
                reason = error_data.get("reason") or error_data.get("message") or response.text
            else:
                reason = response.text
        except ValueError:
            reason = response.text or f"HTTP {response.status_code}"

        logger.warning(
            "Crisp API error",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
            reason=str(reason)[:200],
        )

        if response.status_code == 429:
            raise RateLimited(
                f"Crisp rate limit exceeded (429) for {endpoint}",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if response.status_code == 401:
            raise AuthTransient(f"Crisp rejected credentials (401) for {endpoint}: {reason}")
        if response.status_code == 404:
            raise NotFoundError(f"Crisp resource not found (404): {endpoint}")
        raise UpstreamFailure(
            f"Crisp API error ({response.status_code}) for {endpoint}: {reason}",
            status_code=response.status_code,
        )

    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make one HTTP request to the Crisp API.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            endpoint: API path relative to the base URL
            params: URL query parameters
            json: JSON body for POST/PATCH requests

        Returns:
            Parsed JSON response (empty dict for bodiless responses)

        Raises:
            RateLimited, AuthTransient, NotFoundError, UpstreamFailure
        """
        logger.debug("Crisp API request", method=method, endpoint=endpoint)

        try:
            response = await self._http.request(method, endpoint, params=params, json=json)
        except httpx.TimeoutException:
            raise UpstreamFailure(
                f"Request to {endpoint} timed out after {self.timeout}s. "
                "The Crisp API may be experiencing issues."
            ) from None
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Connection to Crisp failed for {endpoint}: {e}") from e

        self._raise_for_status(response, method, endpoint)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamFailure(
                f"Crisp returned a non-JSON body for {endpoint}",
                status_code=response.status_code,
            ) from e
        if not isinstance(body, dict):
            raise UpstreamFailure(
                f"Crisp returned an unexpected response shape for {endpoint}: "
                f"expected an object, got {type(body).__name__}",
                status_code=response.status_code,
            )
        return body

    # ------------------------------------------------------------------
    # ConversationSource
    # ------------------------------------------------------------------

    async def list_page(
        self,
        tenant: str,
        page_number: int,
        page_size: int,
        status: str | None = None,
    ) -> list[Conversation]:
        """Fetch one page of conversations (page numbers start at 1)."""
        params: dict[str, Any] = {"page_number": page_number, "page_size": page_size}
        if status:
            params["filter_status"] = status
        body = await self.request("GET", f"/website/{tenant}/conversations", params=params)
        items = body.get("data") or []
        if not isinstance(items, list):
            raise UpstreamFailure(
                f"Crisp returned an unexpected conversation list for website {tenant}: "
                f"expected a list, got {type(items).__name__}"
            )
        return [Conversation.from_api(item) for item in items if isinstance(item, dict)]

    async def get_detail(self, tenant: str, session_id: str) -> ConversationDetail:
        body = await self.request("GET", f"/website/{tenant}/conversation/{session_id}")
        data = body.get("data")
        return ConversationDetail.from_api(session_id, data if isinstance(data, dict) else {})

    async def delete_conversation(self, tenant: str, session_id: str) -> None:
        await self.request("DELETE", f"/website/{tenant}/conversation/{session_id}")
        logger.info("Conversation deleted", tenant=tenant, session_id=session_id)

    async def delete_message(self, tenant: str, session_id: str, fingerprint: str) -> None:
        await self.request(
            "DELETE", f"/website/{tenant}/conversation/{session_id}/message/{fingerprint}"
        )
        logger.debug(
            "Message deleted", tenant=tenant, session_id=session_id, fingerprint=fingerprint
        )

    async def patch_status(self, tenant: str, session_id: str, status: str) -> None:
        """Change a conversation's state.

        Raises:
            ValidationError: If status is not one of CONVERSATION_STATUSES
                (no request is made)
        """
        if status not in CONVERSATION_STATUSES:
            raise ValidationError(
                f"Invalid conversation status '{status}'. "
                f"Allowed values: {', '.join(CONVERSATION_STATUSES)}"
            )
        await self.request(
            "PATCH", f"/website/{tenant}/conversation/{session_id}/meta", json={"status": status}
        )

    async def send_message(self, tenant: str, session_id: str, content: str) -> None:
        await self.request(
            "POST",
            f"/website/{tenant}/conversation/{session_id}/message",
            json={"type": "text", "from": "operator", "origin": "plugin", "content": content},
        )

    # ------------------------------------------------------------------
    # Website info
    # ------------------------------------------------------------------

    async def list_plugins(self, tenant: str) -> list[dict[str, Any]]:
        body = await self.request("GET", f"/website/{tenant}/plugins/list")
        data = body.get("data") or []
        return [p for p in data if isinstance(p, dict)]

    async def list_mailboxes(self, tenant: str) -> list[dict[str, Any]]:
        """List the mailboxes configured for a website."""
        body = await self.request("GET", f"/website/{tenant}/mailboxes")
        data = body.get("data") or []
        return [m for m in data if isinstance(m, dict)] if isinstance(data, list) else []

    async def list_platforms(self, tenant: str) -> list[dict[str, str]]:
        """List the platforms conversations can originate from.

        Derived from the website's `plugin:<name>` plugins; webchat is
        always included.

        Returns:
            List of {"id": ..., "name": ...} dicts
        """
        platforms: list[dict[str, str]] = []
        for plugin in await self.list_plugins(tenant):
            plugin_id = str(plugin.get("id", ""))
            if not plugin_id.startswith("plugin:"):
                continue
            platform_id = plugin_id.removeprefix("plugin:")
            platforms.append({"id": platform_id, "name": platform_id.capitalize()})

        if not any(p["id"] == DEFAULT_PLATFORM for p in platforms):
            platforms.append({"id": DEFAULT_PLATFORM, "name": "Webchat"})
        return platforms


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
