"""Tests for the command-line interface."""

import asyncio
from pathlib import Path

import pytest
from click.testing import CliRunner

from wipebot.cli import cli
from wipebot.db.store import DatabaseStore
from wipebot.filters.registry import FilterRegistry


@pytest.fixture
def cli_config(temp_config_dir: Path, data_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Config file pointing at a temporary database, exported via the environment."""
    db_path = data_dir / "cli.db"
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(
        "crisp:\n"
        "  identifier: test-identifier\n"
        "  key: test-key\n"
        "scheduler:\n"
        "  enabled: false\n"
        "database:\n"
        f"  path: {db_path}\n"
    )
    monkeypatch.setenv("WIPEBOT_CONFIG_PATH", str(config_path))
    return db_path


class TestValidateConfig:
    """Tests for the validate-config command."""

    def test_valid_config(self, config_file: Path) -> None:
        result = CliRunner().invoke(cli, ["validate-config", "-c", str(config_file)])
        assert result.exit_code == 0
        assert "Configuration valid" in result.output

    def test_invalid_config(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "bad.yaml"
        path.write_text("mode: production\n")

        result = CliRunner().invoke(cli, ["validate-config", "-c", str(path)])

        assert result.exit_code == 1
        assert "Validation error" in result.output


class TestFiltersCommand:
    """Tests for the filters command."""

    def test_no_filters(self, cli_config: Path) -> None:
        result = CliRunner().invoke(cli, ["filters", "W1"])
        assert result.exit_code == 0
        assert "No filters" in result.output

    def test_lists_stored_filters(self, cli_config: Path) -> None:
        async def seed() -> None:
            store = DatabaseStore(cli_config)
            await store.initialize()
            await FilterRegistry(store).create_filter("W1", {"name": "old", "closed_only": True})

        asyncio.run(seed())

        result = CliRunner().invoke(cli, ["filters", "W1"])

        assert result.exit_code == 0
        assert "old" in result.output
        assert "closed" in result.output

    def test_missing_config_exits(
        self, temp_config_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("WIPEBOT_CONFIG_PATH", str(temp_config_dir / "missing.yaml"))
        result = CliRunner().invoke(cli, ["filters", "W1"])
        assert result.exit_code == 1
        assert "Config error" in result.output


class TestRunCommand:
    """Tests for the run command."""

    def test_declined_confirmation_aborts(self, cli_config: Path) -> None:
        result = CliRunner().invoke(cli, ["run", "W1", "old"], input="n\n")
        assert result.exit_code == 1
        assert "Aborted" in result.output
