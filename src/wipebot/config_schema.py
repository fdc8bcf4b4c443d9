"""Pydantic configuration schema for WipeBot.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup.

Usage:
    from wipebot.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

# Upper bound the Crisp API accepts for page_size
MAX_PAGE_SIZE = 100


class OperatingMode(StrEnum):
    """Whether cleanup runs touch the chat platform.

    LIVE performs deletions. DEBUG reads normally but suppresses every
    mutating call and counts it as successful.
    """

    LIVE = "live"
    DEBUG = "debug"


class CrispConfig(BaseModel):
    """Crisp REST API access (plugin tier)."""

    base_url: str = Field(
        default="https://api.crisp.chat/v1",
        description="Crisp REST API base URL",
    )
    identifier: str = Field(default="", description="Plugin token identifier")
    key: str = Field(default="", description="Plugin token key")
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Per-request timeout",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class CleanupConfig(BaseModel):
    """Pagination and throttling for cleanup runs."""

    page_size: int = Field(
        default=MAX_PAGE_SIZE,
        ge=1,
        description=f"Conversations per list request (capped at {MAX_PAGE_SIZE})",
    )
    page_delay_seconds: float = Field(
        default=0.3,
        ge=0,
        le=60,
        description="Pause between list requests",
    )
    delete_delay_seconds: float = Field(
        default=0.1,
        ge=0,
        le=60,
        description="Pause between delete requests",
    )

    @property
    def effective_page_size(self) -> int:
        return min(self.page_size, MAX_PAGE_SIZE)


class RetryConfig(BaseModel):
    """Retry policy for rate-limit and auth-transient failures."""

    max_retries: int = Field(default=5, ge=0, le=20, description="Rate-limit retries")
    base_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        le=60,
        description="First rate-limit backoff delay; doubles per retry",
    )
    auth_retries: int = Field(default=3, ge=0, le=10, description="Auth-transient retries")
    auth_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        le=60,
        description="Fixed delay between auth-transient retries",
    )


class RegistryConfig(BaseModel):
    """Filter registry limits."""

    max_filters_per_tenant: int = Field(default=30, ge=1, le=1000)


class SchedulerConfig(BaseModel):
    """Automatic daily cleanup runs."""

    enabled: bool = Field(default=True, description="Schedule filters with auto_enabled")
    timezone: str = Field(default="UTC", description="IANA timezone for auto_time values")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Invalid timezone '{v}'. Use IANA format like 'Europe/Berlin'") from e
        return v


class DatabaseConfig(BaseModel):
    """SQLite storage."""

    path: str = Field(default="data/wipebot.db", description="SQLite database file")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure database path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Database path cannot be empty")
        if ".." in v:
            raise ValueError("Database path cannot contain '..' (path traversal)")
        return v


class AppConfig(BaseModel):
    """Root configuration model."""

    schema_version: int = Field(default=CURRENT_SCHEMA_VERSION, ge=1)
    mode: OperatingMode = Field(
        default=OperatingMode.LIVE,
        description="'live' deletes for real, 'debug' only logs what would be deleted",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    crisp: CrispConfig = Field(default_factory=CrispConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        if isinstance(v, str):
            return v.upper()
        return v
