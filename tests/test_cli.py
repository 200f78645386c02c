"""Tests for CLI commands - configure, login, status, sync, backup."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from fieldsync.client.api import HTTPClient
from fieldsync.client.cli import cli
from fieldsync.core.errors import AuthenticationError

USER = {"id": 7, "username": "nurse"}


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_dir(tmp_path: Path) -> Iterator[Path]:
    """Point the CLI at a temporary config directory."""
    config = tmp_path / ".fieldsync"
    with patch("fieldsync.client.cli.config.get_config_dir", return_value=config):
        yield config


@pytest.fixture
def server(config_dir: Path) -> Iterator[dict[str, MagicMock]]:
    """Configure a server and fake its HTTP endpoints."""
    config_dir.mkdir()
    (config_dir / "config.json").write_text(json.dumps({"server_url": "http://test"}))
    with (
        patch.object(HTTPClient, "health_check", return_value=True) as health_check,
        patch.object(HTTPClient, "login", return_value=(USER, "tok")) as login,
        patch.object(HTTPClient, "logout") as logout,
        patch.object(HTTPClient, "list_records", return_value=[]) as list_records,
    ):
        yield {
            "health_check": health_check,
            "login": login,
            "logout": logout,
            "list_records": list_records,
        }


def log_in(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["login", "-u", "nurse", "-p", "secret"])
    assert result.exit_code == 0, result.output


class TestConfigureCommand:
    """Tests for 'fieldsync configure' command."""

    def test_configure_saves_server(self, runner: CliRunner, config_dir: Path) -> None:
        """Should write the server URL to the config file."""
        result = runner.invoke(cli, ["configure", "--server", "https://idec.example.org/"])

        assert result.exit_code == 0
        config = json.loads((config_dir / "config.json").read_text())
        assert config["server_url"] == "https://idec.example.org"
        assert config["verify_ssl"] is True

    def test_configure_insecure_and_timeout(self, runner: CliRunner, config_dir: Path) -> None:
        """Should store the timeout and SSL flag."""
        result = runner.invoke(
            cli, ["configure", "--server", "http://localhost:3000", "--timeout", "5", "--insecure"]
        )

        assert result.exit_code == 0
        config = json.loads((config_dir / "config.json").read_text())
        assert config["timeout"] == 5.0
        assert config["verify_ssl"] is False

    def test_configure_rejects_bad_url(self, runner: CliRunner, config_dir: Path) -> None:
        """Should refuse URLs without an http scheme."""
        result = runner.invoke(cli, ["configure", "--server", "ftp://example.org"])

        assert result.exit_code == 1
        assert "must start with http" in result.output

    def test_commands_require_configuration(self, runner: CliRunner, config_dir: Path) -> None:
        """Commands fail cleanly before configure."""
        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 1
        assert "No server configured" in result.output


class TestSessionCommands:
    """Tests for login, logout and status."""

    def test_login(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Should log in and download all collections."""
        result = runner.invoke(cli, ["login", "-u", "nurse", "-p", "secret"])

        assert result.exit_code == 0
        assert "Logged in as nurse" in result.output
        assert "(offline)" not in result.output
        server["login"].assert_called_once_with("nurse", "secret")
        assert server["list_records"].call_count == 4

    def test_login_prompts(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Should prompt for missing credentials."""
        result = runner.invoke(cli, ["login"], input="nurse\nsecret\n")

        assert result.exit_code == 0
        assert "Logged in as nurse" in result.output

    def test_login_wrong_password(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Should report refused credentials."""
        server["login"].side_effect = AuthenticationError("Invalid credentials", 401)

        result = runner.invoke(cli, ["login", "-u", "nurse", "-p", "wrong"])

        assert result.exit_code == 1
        assert "Invalid username or password" in result.output

    def test_offline_login(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Offline, a previous session for the same user is reused."""
        log_in(runner)
        server["health_check"].return_value = False

        result = runner.invoke(cli, ["login", "-u", "nurse", "-p", "secret"])

        assert result.exit_code == 0
        assert "Logged in as nurse (offline)" in result.output

    def test_offline_login_without_session(
        self, runner: CliRunner, server: dict[str, MagicMock]
    ) -> None:
        """Offline, a first login is impossible."""
        server["health_check"].return_value = False

        result = runner.invoke(cli, ["login", "-u", "nurse", "-p", "secret"])

        assert result.exit_code == 1
        assert "unreachable" in result.output

    def test_logout(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Should end the session."""
        log_in(runner)

        result = runner.invoke(cli, ["logout"])

        assert result.exit_code == 0
        assert "Logged out." in result.output
        server["logout"].assert_called_once_with("tok")

    def test_logout_not_logged_in(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Should say so when there is no session."""
        result = runner.invoke(cli, ["logout"])

        assert result.exit_code == 0
        assert "Not logged in." in result.output

    def test_status(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Should show server, user and pending work."""
        log_in(runner)

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "http://test" in result.output
        assert "Reachable:     yes" in result.output
        assert "User:          nurse" in result.output
        assert "Last sync:     never" not in result.output
        assert "Pending:       0" in result.output


class TestSyncCommand:
    """Tests for 'fieldsync sync' command."""

    def test_sync(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Should refresh and push."""
        log_in(runner)
        server["list_records"].return_value = [{"id": 1, "district": "Gulu"}]

        result = runner.invoke(cli, ["sync"])

        assert result.exit_code == 0, result.output
        assert "Downloaded 4 records." in result.output
        assert "Pushed 0 changes (0 failed, 0 deferred)." in result.output

    def test_sync_requires_login(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Should fail without a session."""
        result = runner.invoke(cli, ["sync"])

        assert result.exit_code == 1
        assert "login required" in result.output

    def test_sync_offline(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Should fail when the server is unreachable."""
        log_in(runner)
        server["health_check"].return_value = False

        result = runner.invoke(cli, ["sync"])

        assert result.exit_code == 1
        assert "unreachable" in result.output


class TestBackupCommands:
    """Tests for 'fieldsync backup' commands."""

    def test_list_empty(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Should say when there are no backups."""
        result = runner.invoke(cli, ["backup", "list"])

        assert result.exit_code == 0
        assert "No backups." in result.output

    def test_create_list_delete(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Should create, list and delete a backup."""
        result = runner.invoke(cli, ["backup", "create"])
        assert result.exit_code == 0
        backup_id = result.output.split()[2]

        result = runner.invoke(cli, ["backup", "list"])
        assert backup_id in result.output
        assert "gzip" in result.output

        result = runner.invoke(cli, ["backup", "delete", backup_id])
        assert result.exit_code == 0
        assert f"Deleted backup {backup_id}" in result.output

        result = runner.invoke(cli, ["backup", "delete", backup_id])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_restore(self, runner: CliRunner, server: dict[str, MagicMock]) -> None:
        """Restoring a backup brings back the session it captured."""
        log_in(runner)
        backup_id = runner.invoke(cli, ["backup", "create"]).output.split()[2]
        runner.invoke(cli, ["logout"])

        result = runner.invoke(cli, ["backup", "restore", backup_id, "--yes"])
        assert result.exit_code == 0
        assert f"Restored backup {backup_id}" in result.output

        result = runner.invoke(cli, ["status"])
        assert "User:          nurse" in result.output

    def test_restore_needs_confirmation(
        self, runner: CliRunner, server: dict[str, MagicMock]
    ) -> None:
        """Declining the prompt leaves the store alone."""
        log_in(runner)
        backup_id = runner.invoke(cli, ["backup", "create"]).output.split()[2]
        runner.invoke(cli, ["logout"])

        result = runner.invoke(cli, ["backup", "restore", backup_id], input="n\n")
        assert result.exit_code == 0
        assert "Restored" not in result.output

        result = runner.invoke(cli, ["status"])
        assert "not logged in" in result.output

    def test_export_import(
        self, runner: CliRunner, server: dict[str, MagicMock], tmp_path: Path
    ) -> None:
        """An exported backup can be imported again after deletion."""
        backup_id = runner.invoke(cli, ["backup", "create"]).output.split()[2]
        exported = tmp_path / "backup.json"

        result = runner.invoke(cli, ["backup", "export", backup_id, str(exported)])
        assert result.exit_code == 0
        assert json.loads(exported.read_text())["metadata"]["timestamp"] == int(backup_id)

        runner.invoke(cli, ["backup", "delete", backup_id])
        result = runner.invoke(cli, ["backup", "import", str(exported)])
        assert result.exit_code == 0
        assert f"Imported backup {backup_id}" in result.output

    def test_import_invalid_file(
        self, runner: CliRunner, server: dict[str, MagicMock], tmp_path: Path
    ) -> None:
        """Should reject files that are not backups."""
        bogus = tmp_path / "bogus.json"
        bogus.write_text("{}")

        result = runner.invoke(cli, ["backup", "import", str(bogus)])

        assert result.exit_code == 1
        assert "Invalid backup file format" in result.output
