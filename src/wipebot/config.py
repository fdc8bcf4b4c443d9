"""Configuration loader.

This module provides configuration loading from YAML with validation
against the Pydantic schema and a process-wide cached instance.

Usage:
    from wipebot.config import get_config

    # Get current config (singleton)
    config = get_config()
    page_size = config.cleanup.effective_page_size
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from wipebot.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from wipebot.core.errors import ConfigLoadError, ConfigValidationError
from wipebot.core.logging import get_logger

logger = get_logger(__name__)

# Default config path - can be overridden via environment variable
DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV = "WIPEBOT_CONFIG_PATH"

# Secrets may come from the environment (or .env) instead of config.yaml
CREDENTIAL_ENV = {
    "identifier": "WIPEBOT_CRISP_IDENTIFIER",
    "key": "WIPEBOT_CRISP_KEY",
}

# Global state for the config singleton
_config_lock = threading.Lock()
_current_config: AppConfig | None = None


def _get_config_path() -> Path:
    """Get the config file path from environment or default."""
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into actionable messages.

    Shared by config loading and filter input validation.

    Args:
        error: Pydantic ValidationError

    Returns:
        Formatted error message with one line per field error
    """
    messages = []
    for err in error.errors():
        # Build field path (e.g., "cleanup.page_size" or "subfilters.0.max_days")
        field_path = ".".join(str(loc) for loc in err["loc"]) or "(root)"
        msg = err["msg"]
        err_type = err["type"]

        # Make messages actionable
        if err_type == "missing":
            messages.append(f"  - Missing required field '{field_path}'")
        elif err_type == "string_type":
            messages.append(f"  - Field '{field_path}' must be a string")
        elif err_type in ("int_type", "int_parsing"):
            messages.append(f"  - Field '{field_path}' must be an integer")
        elif err_type in ("bool_type", "bool_parsing"):
            messages.append(f"  - Field '{field_path}' must be true or false")
        else:
            messages.append(f"  - Field '{field_path}': {msg}")

    return "\n".join(messages)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse YAML file.

    Args:
        path: Path to YAML file

    Returns:
        Parsed YAML as dictionary

    Raises:
        ConfigLoadError: If file not found or YAML parse error
    """
    if not path.exists():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Create it by copying config/config.yaml.example to {path}"
        )

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            if data is None:
                return {}
            if not isinstance(data, dict):
                raise ConfigLoadError(
                    f"Configuration file must be a YAML mapping, got {type(data).__name__}"
                )
            return data
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay Crisp credentials from environment variables, when set."""
    overrides = {
        field: os.environ[env_name]
        for field, env_name in CREDENTIAL_ENV.items()
        if os.environ.get(env_name)
    }
    if not overrides:
        return data
    crisp = data.get("crisp") or {}
    if not isinstance(crisp, dict):
        return data
    return {**data, "crisp": {**crisp, **overrides}}


def _validate_config(data: dict[str, Any], path: Path) -> AppConfig:
    """Validate config data against Pydantic schema.

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        error_details = format_validation_errors(e)
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{error_details}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Please upgrade WipeBot or downgrade the config."
        )

    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate configuration from YAML file.

    Always reads from disk. For cached access use get_config().

    Args:
        path: Optional path to config file. If not provided, uses
              WIPEBOT_CONFIG_PATH env var or default.

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    config_path = path or _get_config_path()

    logger.debug("Loading configuration", path=str(config_path))

    data = _apply_env_overrides(_load_yaml(config_path))
    config = _validate_config(data, config_path)

    logger.info(
        "Configuration loaded successfully",
        path=str(config_path),
        schema_version=config.schema_version,
        mode=config.mode.value,
    )

    return config


def get_config() -> AppConfig:
    """Get the current configuration singleton.

    On first call, loads configuration from disk. Subsequent calls return
    the cached config.

    Thread-safe: the APScheduler executor and the uvicorn event loop may
    both ask for it.

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    global _current_config

    with _config_lock:
        if _current_config is None:
            _current_config = load_config(_get_config_path())
        return _current_config


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file without loading it into the singleton.

    Useful for CLI validation commands and testing.

    Args:
        path: Path to config file. If not provided, uses default.

    Returns:
        Tuple of (is_valid, message)
    """
    config_path = path or _get_config_path()

    try:
        config = load_config(config_path)
        credentials = "set" if config.crisp.identifier and config.crisp.key else "missing"
        return (
            True,
            f"Configuration valid (schema version {config.schema_version})\n"
            f"  - mode: {config.mode.value}\n"
            f"  - Crisp credentials: {credentials}\n"
            f"  - page size: {config.cleanup.effective_page_size}\n"
            f"  - max filters per tenant: {config.registry.max_filters_per_tenant}\n"
            f"  - database: {config.database.path}",
        )
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")


def reset_config() -> None:
    """Reset the config singleton. Primarily for testing."""
    global _current_config
    with _config_lock:
        _current_config = None
