"""Pytest fixtures and configuration for WipeBot tests.

Provides common fixtures for configuration, conversations, filter
registries, and a mocked conversation source.
"""

import os
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Generator
from unittest.mock import AsyncMock

import pytest

from wipebot.config import reset_config
from wipebot.config_schema import AppConfig
from wipebot.core.retry import RateLimitedExecutor
from wipebot.crisp.models import Conversation
from wipebot.engine.cleanup import CleanupOrchestrator
from wipebot.filters.registry import FilterRegistry
from wipebot.filters.store import InMemoryFilterStore


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1
mode: live

crisp:
  identifier: "test-identifier"
  key: "test-key"

cleanup:
  page_size: 50
  page_delay_seconds: 0
  delete_delay_seconds: 0

scheduler:
  enabled: false
  timezone: "Europe/Berlin"
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "mode": "live",
        "crisp": {"identifier": "test-identifier", "key": "test-key"},
        "cleanup": {"page_size": 50, "page_delay_seconds": 0, "delete_delay_seconds": 0},
        "scheduler": {"enabled": False, "timezone": "Europe/Berlin"},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the WIPEBOT_CONFIG_PATH environment variable."""
    old_value = os.environ.get("WIPEBOT_CONFIG_PATH")
    os.environ["WIPEBOT_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["WIPEBOT_CONFIG_PATH"]
    else:
        os.environ["WIPEBOT_CONFIG_PATH"] = old_value


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


def make_conversation(
    session_id: str = "session_1",
    age_days: float = 60,
    status: str = "closed",
    origin: str | None = "chat",
    email: str | None = None,
    tags: list[str] | None = None,
    operators: list[str] | None = None,
    preview: str | None = "Hello there",
    now: datetime | None = None,
) -> Conversation:
    """Build a Conversation whose last activity is `age_days` before `now`."""
    updated = (now or datetime.now(UTC)) - timedelta(days=age_days)
    return Conversation(
        session_id=session_id,
        status=status,
        created=updated - timedelta(hours=1),
        updated=updated,
        origin=origin,
        email=email,
        tags=tags or [],
        operators=operators or [],
        preview=preview,
    )


@pytest.fixture
def conversation_factory() -> Callable[..., Conversation]:
    return make_conversation


@pytest.fixture
def filter_store() -> InMemoryFilterStore:
    return InMemoryFilterStore()


@pytest.fixture
def registry(filter_store: InMemoryFilterStore) -> FilterRegistry:
    return FilterRegistry(filter_store)


@pytest.fixture
def instant_executor() -> RateLimitedExecutor:
    """Executor with the default retry counts and no waiting."""
    return RateLimitedExecutor(base_delay=0, auth_delay=0)


@pytest.fixture
def mock_source() -> AsyncMock:
    """ConversationSource double returning no conversations by default."""
    source = AsyncMock()
    source.list_page.return_value = []
    return source


@pytest.fixture
def serve_pages(mock_source: AsyncMock) -> Callable[[list[Conversation]], None]:
    """Make `mock_source.list_page` page through a list of conversations."""

    def _serve(conversations: list[Conversation]) -> None:
        async def list_page(tenant, page_number, size, status=None):
            start = (page_number - 1) * size
            return conversations[start : start + size]

        mock_source.list_page.side_effect = list_page

    return _serve


@pytest.fixture
def orchestrator(
    mock_source: AsyncMock,
    registry: FilterRegistry,
    instant_executor: RateLimitedExecutor,
) -> CleanupOrchestrator:
    return CleanupOrchestrator(
        source=mock_source,
        registry=registry,
        executor=instant_executor,
        page_delay=0,
        delete_delay=0,
    )
