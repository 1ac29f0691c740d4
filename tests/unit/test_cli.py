"""Tests for the click-based CLI."""

import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import httplib2
import pytest
from click.testing import CliRunner
from googleapiclient.errors import HttpError

from chat_migrator.cli.commands import cli, handle_exception
from chat_migrator.cli.migrate_cmd import run_migration
from chat_migrator.exceptions import (
    ConfigError,
    MigrationAbortedError,
    MigratorError,
    SlackApiError,
    WorkItemFailedError,
)
from chat_migrator.types import ClassifiedError, ErrorKind
from chat_migrator.utils.api import DIRECTORY_SCOPES


def _make_http_error(status, reason="error"):
    resp = httplib2.Response({"status": status})
    resp.reason = reason
    return HttpError(resp, b"error body")


@pytest.fixture()
def config_file(tmp_path):
    """An empty config file with output under tmp_path."""
    path = tmp_path / "config.yaml"
    path.write_text(f"output_dir: {tmp_path / 'logs'}\n")
    return path


@pytest.fixture(autouse=True)
def _quiet_logger():
    """Keep commands from attaching console handlers to CliRunner streams."""
    with patch("chat_migrator.cli.config_cmd.setup_logger"), patch(
        "chat_migrator.cli.export_cmd.setup_logger"
    ), patch("chat_migrator.cli.import_cmd.setup_logger"), patch(
        "chat_migrator.cli.transform_cmd.setup_logger"
    ), patch("chat_migrator.cli.migrate_cmd.setup_logger"):
        yield


class TestCLIGroup:
    """Tests for the CLI group structure."""

    def test_cli_has_all_subcommands(self):
        expected = {"limits", "init-config", "export", "transform", "import", "migrate"}
        assert set(cli.commands.keys()) == expected

    def test_version_flag(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "chat-migrator" in result.output

    def test_help_output(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for name in ["limits", "init-config", "export", "transform", "import", "migrate"]:
            assert name in result.output

    def test_no_subcommand_prints_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, [])
        assert result.exit_code == 0
        assert "export" in result.output

    def test_short_help_flag(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["-h"])
        assert result.exit_code == 0
        assert "import" in result.output


# ---------------------------------------------------------------------------
# Config commands
# ---------------------------------------------------------------------------


class TestLimitsCommand:
    """Tests for the limits subcommand."""

    def test_json_output_for_export_profile(self, config_file):
        runner = CliRunner()
        result = runner.invoke(
            cli, ["limits", "--profile", "export", "--config", str(config_file), "--json"]
        )

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["profile"] == "export"
        assert data["max_concurrent_operations"] == 5
        assert data["tiers"]["google-chat"]["capacity"] == 100
        assert data["tiers"]["google-chat"]["refill_rate"] == 45

    def test_table_reflects_config_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("rate_limits:\n  slack:\n    capacity: 9\n")

        runner = CliRunner()
        result = runner.invoke(cli, ["limits", "--config", str(path)])

        assert result.exit_code == 0
        assert "Profile: import" in result.output
        slack_row = next(
            line for line in result.output.splitlines() if line.startswith("slack ")
        )
        assert slack_row.split()[1] == "9"

    def test_invalid_config_exits_nonzero(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("rate_limits:\n  teams:\n    capacity: 1\n")

        runner = CliRunner()
        with patch("chat_migrator.cli.config_cmd.handle_exception") as mock_handle:
            result = runner.invoke(cli, ["limits", "--config", str(path)])

        assert result.exit_code == 1
        assert isinstance(mock_handle.call_args.args[0], ConfigError)

    def test_rejects_unknown_profile(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["limits", "--profile", "migrate"])
        assert result.exit_code != 0


class TestInitConfigCommand:
    def test_writes_config(self, tmp_path):
        path = tmp_path / "config.yaml"

        runner = CliRunner()
        result = runner.invoke(cli, ["init-config", str(path)])

        assert result.exit_code == 0
        assert path.exists()
        assert "Wrote default configuration" in result.output

    def test_refuses_to_overwrite(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("keep: me\n")

        runner = CliRunner()
        result = runner.invoke(cli, ["init-config", str(path)])

        assert result.exit_code == 1
        assert path.read_text() == "keep: me\n"


# ---------------------------------------------------------------------------
# Run commands
# ---------------------------------------------------------------------------


class TestExportCommand:
    """Tests for the export subcommand."""

    def test_help_shows_all_options(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["export", "--help"])
        assert result.exit_code == 0
        for opt in [
            "--creds_path",
            "--workspace_admin",
            "--export_path",
            "--space",
            "--skip_user_lookup",
            "--config",
            "--verbose",
            "--json_logs",
        ]:
            assert opt in result.output

    def test_missing_required_options(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["export"])
        assert result.exit_code != 0
        assert "Missing option" in result.output or "Error" in result.output

    @patch("chat_migrator.cli.export_cmd.export_workspace", new_callable=AsyncMock)
    @patch("chat_migrator.cli.export_cmd.DirectoryAdapter")
    @patch("chat_migrator.cli.export_cmd.ChatAdapter")
    @patch("chat_migrator.cli.export_cmd.get_gcp_service")
    def test_runs_export_with_export_profile(
        self,
        mock_service,
        mock_adapter_cls,
        mock_directory_cls,
        mock_export,
        config_file,
        tmp_path,
    ):
        mock_export.return_value = {"spaces/AAA": 3}

        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "export",
                "--creds_path",
                "creds.json",
                "--workspace_admin",
                "admin@example.com",
                "--export_path",
                str(tmp_path / "out"),
                "--space",
                "spaces/AAA",
                "--config",
                str(config_file),
            ],
        )

        assert result.exit_code == 0, result.output
        mock_service.assert_any_call("creds.json", "admin@example.com", "chat", "v1")
        mock_service.assert_any_call(
            "creds.json", "admin@example.com", "admin", "directory_v1", DIRECTORY_SCOPES
        )
        coordinator, adapter, directory, export_path, spaces = mock_export.call_args.args
        assert coordinator.profile.name == "export"
        assert coordinator.governor.max_concurrent == 5
        assert adapter is mock_adapter_cls.return_value
        assert directory is mock_directory_cls.return_value
        assert export_path == str(tmp_path / "out")
        assert spaces == ["spaces/AAA"]

    @patch("chat_migrator.cli.export_cmd.handle_exception")
    @patch("chat_migrator.cli.export_cmd.export_workspace", new_callable=AsyncMock)
    @patch("chat_migrator.cli.export_cmd.ChatAdapter")
    @patch("chat_migrator.cli.export_cmd.get_gcp_service")
    def test_failure_exits_nonzero(
        self, mock_service, mock_adapter_cls, mock_export, mock_handle, config_file
    ):
        error = MigratorError("boom")
        mock_export.side_effect = error

        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "export",
                "--creds_path",
                "creds.json",
                "--workspace_admin",
                "admin@example.com",
                "--config",
                str(config_file),
            ],
        )

        assert result.exit_code == 1
        mock_handle.assert_called_once_with(error)


    @patch("chat_migrator.cli.export_cmd.export_workspace", new_callable=AsyncMock)
    @patch("chat_migrator.cli.export_cmd.ChatAdapter")
    @patch("chat_migrator.cli.export_cmd.get_gcp_service")
    def test_skip_user_lookup_builds_no_directory_service(
        self, mock_service, mock_adapter_cls, mock_export, config_file
    ):
        mock_export.return_value = {}

        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "export",
                "--creds_path",
                "creds.json",
                "--workspace_admin",
                "admin@example.com",
                "--skip_user_lookup",
                "--config",
                str(config_file),
            ],
        )

        assert result.exit_code == 0, result.output
        mock_service.assert_called_once_with("creds.json", "admin@example.com", "chat", "v1")
        assert mock_export.call_args.args[2] is None

class TestImportCommand:
    """Tests for the import subcommand."""

    def test_missing_token(self, import_file, monkeypatch):
        monkeypatch.delenv("SLACK_BOT_TOKEN", raising=False)

        runner = CliRunner()
        result = runner.invoke(cli, ["import", "--import_file", str(import_file)])

        assert result.exit_code != 0
        assert "slack_token" in result.output

    @patch("chat_migrator.cli.import_cmd.import_channels", new_callable=AsyncMock)
    @patch("chat_migrator.cli.import_cmd.SlackWebClient")
    def test_token_from_environment(
        self, mock_client_cls, mock_import, import_file, config_file
    ):
        mock_import.return_value = []

        runner = CliRunner()
        result = runner.invoke(
            cli,
            ["import", "--import_file", str(import_file), "--config", str(config_file)],
            env={"SLACK_BOT_TOKEN": "xoxb-env"},
        )

        assert result.exit_code == 0, result.output
        mock_client_cls.assert_called_once_with("xoxb-env")

    @patch("chat_migrator.cli.import_cmd.import_channels", new_callable=AsyncMock)
    @patch("chat_migrator.cli.import_cmd.SlackWebClient")
    def test_runs_import_with_import_profile(
        self, mock_client_cls, mock_import, import_file, config_file
    ):
        mock_import.return_value = [
            {
                "channel": "general",
                "messages_posted": 3,
                "messages_failed": 0,
                "threads_started": 1,
                "files_uploaded": 0,
                "reactions_added": 1,
            }
        ]

        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "import",
                "--import_file",
                str(import_file),
                "--slack_token",
                "xoxb-test",
                "--channel",
                "C0123ABC",
                "--config",
                str(config_file),
            ],
        )

        assert result.exit_code == 0, result.output
        coordinator, client, channels, target = mock_import.call_args.args
        assert coordinator.profile.name == "import"
        assert coordinator.governor.max_concurrent == 1
        assert client is mock_client_cls.return_value
        assert channels[0]["name"] == "general"
        assert target == "C0123ABC"

    @patch("chat_migrator.cli.import_cmd.handle_exception")
    def test_bad_import_file_exits_nonzero(self, mock_handle, tmp_path, config_file):
        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "import",
                "--import_file",
                str(tmp_path / "missing.json"),
                "--slack_token",
                "xoxb-test",
                "--config",
                str(config_file),
            ],
        )

        assert result.exit_code == 1
        assert isinstance(mock_handle.call_args.args[0], MigratorError)


@pytest.fixture()
def export_dir(tmp_path):
    """An export directory with one space and a users.json."""
    path = tmp_path / "export"
    path.mkdir()
    (path / "AAA.json").write_text(
        json.dumps(
            {
                "space": {"name": "spaces/AAA", "displayName": "Team Chat"},
                "memberships": [],
                "messages": [
                    {
                        "name": "spaces/AAA/messages/1",
                        "sender": {"name": "users/1"},
                        "text": "hi",
                        "thread": {"name": "spaces/AAA/threads/T1"},
                    }
                ],
            }
        )
    )
    (path / "users.json").write_text(json.dumps({"users/1": "Alice Smith"}))
    return path


class TestTransformCommand:
    """Tests for the transform subcommand."""

    def test_writes_import_file(self, export_dir, tmp_path, config_file):
        out = tmp_path / "import.json"

        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "transform",
                "--export_path",
                str(export_dir),
                "--import_file",
                str(out),
                "--config",
                str(config_file),
            ],
        )

        assert result.exit_code == 0, result.output
        channels = json.loads(out.read_text())["channels"]
        assert channels[0]["name"] == "team-chat"
        assert channels[0]["messages"][0]["display_name"] == "Alice Smith"

    def test_dry_run_writes_nothing(self, export_dir, tmp_path, config_file):
        out = tmp_path / "import.json"

        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "transform",
                "--export_path",
                str(export_dir),
                "--import_file",
                str(out),
                "--dry_run",
                "--config",
                str(config_file),
            ],
        )

        assert result.exit_code == 0, result.output
        assert not out.exists()

    @patch("chat_migrator.cli.transform_cmd.handle_exception")
    def test_missing_export_dir_exits_nonzero(self, mock_handle, tmp_path, config_file):
        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "transform",
                "--export_path",
                str(tmp_path / "missing"),
                "--config",
                str(config_file),
            ],
        )

        assert result.exit_code == 1
        assert isinstance(mock_handle.call_args.args[0], MigratorError)


class TestMigrateCommand:
    """Tests for the migrate subcommand."""

    def _args(self, config_file, tmp_path, *extra):
        return [
            "migrate",
            "--creds_path",
            "creds.json",
            "--workspace_admin",
            "admin@example.com",
            "--data_dir",
            str(tmp_path / "data"),
            "--config",
            str(config_file),
            *extra,
        ]

    @patch("chat_migrator.cli.migrate_cmd.handle_exception")
    def test_requires_slack_token_without_dry_run(
        self, mock_handle, config_file, tmp_path, monkeypatch
    ):
        monkeypatch.delenv("SLACK_BOT_TOKEN", raising=False)

        runner = CliRunner()
        result = runner.invoke(cli, self._args(config_file, tmp_path))

        assert result.exit_code == 1
        assert isinstance(mock_handle.call_args.args[0], ConfigError)

    @patch("chat_migrator.cli.migrate_cmd.run_migration", new_callable=AsyncMock)
    @patch("chat_migrator.cli.migrate_cmd.SlackWebClient")
    @patch("chat_migrator.cli.migrate_cmd.DirectoryAdapter")
    @patch("chat_migrator.cli.migrate_cmd.ChatAdapter")
    @patch("chat_migrator.cli.migrate_cmd.get_gcp_service")
    def test_each_stage_gets_its_profile_and_one_log(
        self,
        mock_service,
        mock_adapter_cls,
        mock_directory_cls,
        mock_client_cls,
        mock_run,
        config_file,
        tmp_path,
    ):
        mock_run.return_value = ({}, [])

        runner = CliRunner()
        result = runner.invoke(
            cli,
            self._args(config_file, tmp_path, "--slack_token", "xoxb-test", "--space", "spaces/A"),
        )

        assert result.exit_code == 0, result.output
        export_co, import_co, adapter, directory, client, data_dir, spaces = (
            mock_run.call_args.args
        )
        assert export_co.profile.name == "export"
        assert import_co.profile.name == "import"
        assert export_co.run_log is import_co.run_log
        assert adapter is mock_adapter_cls.return_value
        assert directory is mock_directory_cls.return_value
        assert client is mock_client_cls.return_value
        mock_client_cls.assert_called_once_with("xoxb-test")
        assert data_dir == str(tmp_path / "data")
        assert spaces == ["spaces/A"]

    @patch("chat_migrator.cli.migrate_cmd.run_migration", new_callable=AsyncMock)
    @patch("chat_migrator.cli.migrate_cmd.SlackWebClient")
    @patch("chat_migrator.cli.migrate_cmd.ChatAdapter")
    @patch("chat_migrator.cli.migrate_cmd.get_gcp_service")
    def test_dry_run_has_no_slack_client(
        self, mock_service, mock_adapter_cls, mock_client_cls, mock_run, config_file, tmp_path
    ):
        mock_run.return_value = ({}, [])

        runner = CliRunner()
        result = runner.invoke(
            cli, self._args(config_file, tmp_path, "--dry_run", "--skip_user_lookup")
        )

        assert result.exit_code == 0, result.output
        mock_client_cls.assert_not_called()
        args = mock_run.call_args.args
        assert args[3] is None
        assert args[4] is None


class TestRunMigration:
    """Tests for the staged run_migration() coroutine."""

    @pytest.fixture()
    def adapter(self):
        mock = MagicMock(name="chat_adapter")
        mock.get_space.side_effect = lambda name: {"name": name, "displayName": "Team"}
        mock.list_memberships.return_value = {"memberships": []}
        mock.list_messages.return_value = {
            "messages": [{"name": "spaces/AAA/messages/1", "sender": {"name": "users/1"}}]
        }
        return mock

    def test_dry_run_stops_after_transform(self, make_coordinator, adapter, tmp_path):
        export_co = make_coordinator()
        import_co = make_coordinator()

        stats, summaries = asyncio.run(
            run_migration(
                export_co, import_co, adapter, None, None, str(tmp_path), ["spaces/AAA"]
            )
        )

        assert stats["channels"] == 1
        assert stats["messages"] == 1
        assert summaries == []
        assert (tmp_path / "export" / "AAA.json").exists()
        assert not (tmp_path / "import.json").exists()

    @patch("chat_migrator.cli.migrate_cmd.import_channels", new_callable=AsyncMock)
    def test_imports_transformed_channels(
        self, mock_import, make_coordinator, adapter, tmp_path
    ):
        import_co = make_coordinator()
        client = MagicMock(name="slack_client")
        mock_import.return_value = ["summary"]

        stats, summaries = asyncio.run(
            run_migration(
                make_coordinator(), import_co, adapter, None, client, str(tmp_path),
                ["spaces/AAA"],
            )
        )

        assert summaries == ["summary"]
        coordinator, passed_client, channels = mock_import.call_args.args
        assert coordinator is import_co
        assert passed_client is client
        assert [c["name"] for c in channels] == ["team"]
        assert json.loads((tmp_path / "import.json").read_text())["channels"] == channels


# ---------------------------------------------------------------------------
# handle_exception
# ---------------------------------------------------------------------------


def _failure(original, reason):
    return WorkItemFailedError(
        "slack-special", 1, original, ClassifiedError(kind=ErrorKind.PERMANENT, reason=reason)
    )


class TestHandleException:
    """Tests for handle_exception()."""

    @patch("chat_migrator.cli.common.log_with_context")
    def test_handles_migrator_error(self, mock_log):
        handle_exception(MigratorError("test error"))
        mock_log.assert_called_once_with(logging.ERROR, "test error")

    @patch("chat_migrator.cli.common.log_with_context")
    def test_handles_config_error(self, mock_log):
        handle_exception(ConfigError("bad config"))
        mock_log.assert_called_once_with(logging.ERROR, "bad config")

    @patch("chat_migrator.cli.common.log_with_context")
    def test_handles_migration_aborted_error(self, mock_log):
        handle_exception(MigrationAbortedError("aborted"))
        mock_log.assert_called_once_with(logging.ERROR, "aborted")

    @patch("chat_migrator.cli.common.log_with_context")
    def test_handles_authentication_failure(self, mock_log):
        original = SlackApiError("invalid_auth", method="chat.postMessage", code="invalid_auth")
        handle_exception(_failure(original, "auth"))

        assert mock_log.call_count == 2
        assert "Authentication failed" in mock_log.call_args_list[0].args[1]

    @patch("chat_migrator.cli.common.handle_http_error")
    def test_unwraps_google_http_error(self, mock_http):
        original = _make_http_error(404, "Not Found")
        handle_exception(_failure(original, "http_4xx"))
        mock_http.assert_called_once_with(original)

    @patch("chat_migrator.cli.common.log_with_context")
    def test_handles_forbidden_http_error(self, mock_log):
        handle_exception(_make_http_error(403, "Forbidden"))
        assert "Permission denied" in mock_log.call_args_list[0].args[1]

    @patch("chat_migrator.cli.common.log_with_context")
    def test_handles_file_not_found(self, mock_log):
        handle_exception(FileNotFoundError("missing.json"))
        assert mock_log.call_count == 2
        assert "missing.json" in str(mock_log.call_args_list[0])

    @patch("chat_migrator.cli.common.log_with_context")
    def test_handles_keyboard_interrupt(self, mock_log):
        handle_exception(KeyboardInterrupt())
        assert mock_log.call_args_list[0].args[0] == logging.WARNING

    @patch("chat_migrator.cli.common.log_with_context")
    def test_handles_generic_exception(self, mock_log):
        handle_exception(RuntimeError("unexpected"))
        mock_log.assert_called_once_with(
            logging.ERROR, "Migration failed: unexpected", exc_info=True
        )
