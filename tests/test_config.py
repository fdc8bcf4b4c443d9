"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from wipebot.config import (
    CREDENTIAL_ENV,
    get_config,
    load_config,
    reset_config,
    validate_config_file,
)
from wipebot.config_schema import MAX_PAGE_SIZE, AppConfig, OperatingMode
from wipebot.core.errors import ConfigLoadError, ConfigValidationError


@pytest.fixture(autouse=True)
def clear_credential_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep credentials from the developer's shell out of these tests."""
    for env_name in CREDENTIAL_ENV.values():
        monkeypatch.delenv(env_name, raising=False)


class TestLoadConfig:
    """Tests for load_config."""

    def test_loads_valid_file(self, config_file: Path) -> None:
        config = load_config(config_file)

        assert config.mode is OperatingMode.LIVE
        assert config.crisp.identifier == "test-identifier"
        assert config.cleanup.page_size == 50
        assert config.scheduler.enabled is False
        assert config.scheduler.timezone == "Europe/Berlin"

    def test_defaults_for_missing_sections(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("schema_version: 1\n")

        config = load_config(path)

        assert config.mode is OperatingMode.LIVE
        assert config.cleanup.page_size == MAX_PAGE_SIZE
        assert config.retry.max_retries == 5
        assert config.retry.auth_retries == 3
        assert config.registry.max_filters_per_tenant == 30
        assert config.database.path == "data/wipebot.db"

    def test_empty_file_uses_defaults(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("")
        assert load_config(path) == AppConfig()

    def test_missing_file(self, temp_config_dir: Path) -> None:
        with pytest.raises(ConfigLoadError, match="not found"):
            load_config(temp_config_dir / "missing.yaml")

    def test_invalid_yaml(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("mode: [unclosed\n")
        with pytest.raises(ConfigLoadError, match="Failed to parse YAML"):
            load_config(path)

    def test_non_mapping_yaml(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigLoadError, match="mapping"):
            load_config(path)

    @pytest.mark.parametrize(
        ("yaml_text", "field"),
        [
            ("mode: production\n", "mode"),
            ("cleanup:\n  page_size: 0\n", "cleanup.page_size"),
            ("scheduler:\n  timezone: Mars/Olympus\n", "scheduler.timezone"),
            ("crisp:\n  base_url: ftp://crisp\n", "crisp.base_url"),
            ("database:\n  path: ../outside.db\n", "database.path"),
        ],
    )
    def test_validation_errors_name_the_field(
        self, temp_config_dir: Path, yaml_text: str, field: str
    ) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text(yaml_text)

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)
        assert f"'{field}'" in str(exc_info.value)

    def test_newer_schema_version_rejected(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("schema_version: 99\n")
        with pytest.raises(ConfigValidationError, match="newer than"):
            load_config(path)

    def test_log_level_normalized(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("log_level: debug\n")
        assert load_config(path).log_level == "DEBUG"


class TestEnvironment:
    """Tests for environment variable handling."""

    def test_config_path_from_env(self, set_config_env: None) -> None:
        assert load_config().crisp.key == "test-key"

    def test_credentials_from_env(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("WIPEBOT_CRISP_IDENTIFIER", "env-identifier")
        monkeypatch.setenv("WIPEBOT_CRISP_KEY", "env-key")

        config = load_config(config_file)

        assert config.crisp.identifier == "env-identifier"
        assert config.crisp.key == "env-key"

    def test_empty_env_value_ignored(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("WIPEBOT_CRISP_KEY", "")
        assert load_config(config_file).crisp.key == "test-key"

    def test_credentials_without_crisp_section(
        self, temp_config_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("mode: debug\n")
        monkeypatch.setenv("WIPEBOT_CRISP_KEY", "env-key")

        config = load_config(path)

        assert config.mode is OperatingMode.DEBUG
        assert config.crisp.key == "env-key"


class TestSingleton:
    """Tests for get_config caching."""

    def test_get_config_is_cached(self, set_config_env: None) -> None:
        assert get_config() is get_config()

    def test_reset_config_reloads(self, set_config_env: None) -> None:
        first = get_config()
        reset_config()
        assert get_config() is not first


class TestValidateConfigFile:
    """Tests for validate_config_file."""

    def test_valid(self, config_file: Path) -> None:
        valid, message = validate_config_file(config_file)
        assert valid
        assert "Crisp credentials: set" in message
        assert "page size: 50" in message

    def test_invalid(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("mode: production\n")
        valid, message = validate_config_file(path)
        assert not valid
        assert message.startswith("Validation error")

    def test_missing(self, temp_config_dir: Path) -> None:
        valid, message = validate_config_file(temp_config_dir / "missing.yaml")
        assert not valid
        assert message.startswith("Load error")


class TestSchema:
    """Tests for schema helpers."""

    def test_page_size_capped(self) -> None:
        config = AppConfig(cleanup={"page_size": 500})
        assert config.cleanup.page_size == 500
        assert config.cleanup.effective_page_size == MAX_PAGE_SIZE
