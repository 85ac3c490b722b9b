"""
Tests for the CLI module.

Tests the command-line interface using Click's testing utilities. The
engine is the in-memory one from conftest, wired in place of build_engine.
"""

from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner
from conftest import make_task

from gtask_sync import __version__
from gtask_sync.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_engine(engine):
    with patch("gtask_sync.cli.main.build_engine", return_value=engine), patch(
        "gtask_sync.cli.main.setup_logging"
    ):
        yield engine


def invoke(runner, tmp_path, *args, input=None):
    return runner.invoke(cli, ["--config-dir", str(tmp_path), *args], input=input)


class TestCliGroup:
    """Tests for the main CLI group."""

    def test_cli_help(self, runner):
        """Test that CLI shows help."""
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Incremental sync of local tasks to Google Tasks" in result.output

    def test_cli_version(self, runner):
        """Test that CLI shows version."""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_broken_config_warns(self, runner, tmp_path, cli_engine):
        """Test that an invalid config file falls back to defaults."""
        (tmp_path / "config.yaml").write_text("concurrency: nope\n")
        result = invoke(runner, tmp_path, "status")
        assert result.exit_code == 0
        assert "Warning: Configuration error" in result.output


class TestStatusCommand:
    """Tests for the status command."""

    def test_no_accounts(self, runner, tmp_path, cli_engine):
        """Test status without any account."""
        result = invoke(runner, tmp_path, "status")
        assert result.exit_code == 0
        assert "No accounts configured." in result.output

    def test_not_connected(self, runner, tmp_path, cli_engine):
        """Test status of an unknown account."""
        result = invoke(runner, tmp_path, "status", "--account", "work")
        assert result.exit_code == 0
        assert "Not connected" in result.output
        assert "gtask-sync auth --account work" in result.output

    def test_connected_with_pending(self, runner, tmp_path, cli_engine):
        """Test the pending counts for a connected account."""
        cli_engine.connect_account("work")
        cli_engine.task_store.put(make_task("t1"))

        result = invoke(runner, tmp_path, "status", "--account", "work")

        assert result.exit_code == 0
        assert "Connected" in result.output
        assert "Tasks: 1 eligible, 0 synced, 1 pending" in result.output
        assert "calls used today" in result.output


class TestSyncCommand:
    """Tests for the sync command."""

    def test_requires_account(self, runner, tmp_path, cli_engine):
        """Test that sync needs an account from option or config."""
        result = invoke(runner, tmp_path, "sync")
        assert result.exit_code == 1
        assert "No account given" in result.output

    def test_not_connected(self, runner, tmp_path, cli_engine):
        """Test the hint for an unconnected account."""
        result = invoke(runner, tmp_path, "sync", "--account", "work")
        assert result.exit_code == 1
        assert "Connect it first" in result.output

    def test_sync_pushes_tasks(self, runner, tmp_path, cli_engine, fake_api):
        """Test a successful run."""
        state = cli_engine.connect_account("work")
        cli_engine.task_store.put(make_task("t1", "Call client"))

        result = invoke(runner, tmp_path, "sync", "--account", "work")

        assert result.exit_code == 0, result.output
        assert "Synced: 1 new" in result.output
        titles = [t["title"] for t in fake_api.tasks[state.remote_list_id].values()]
        assert titles == ["Call client"]

    def test_accounts_from_config(self, runner, tmp_path, cli_engine):
        """Test that configured accounts are synced when none is given."""
        (tmp_path / "config.yaml").write_text("accounts: [work]\n")
        cli_engine.connect_account("work")

        result = invoke(runner, tmp_path, "sync")

        assert result.exit_code == 0, result.output
        assert "Syncing work..." in result.output
        assert "All tasks up to date" in result.output

    def test_sync_task_unknown(self, runner, tmp_path, cli_engine):
        """Test syncing a task that does not exist."""
        cli_engine.connect_account("work")
        result = invoke(runner, tmp_path, "sync-task", "--account", "work", "missing")
        assert result.exit_code == 1
        assert "Task missing not found" in result.output

    def test_sync_task(self, runner, tmp_path, cli_engine):
        """Test pushing a single task."""
        cli_engine.connect_account("work")
        cli_engine.task_store.put(make_task("t1"))

        result = invoke(runner, tmp_path, "sync-task", "--account", "work", "t1")

        assert result.exit_code == 0, result.output
        assert "Task created" in result.output


class TestMaintenanceCommands:
    """Tests for pull, sweep, cleanup and reset."""

    def test_pull(self, runner, tmp_path, cli_engine, fake_api, database):
        """Test that remote completions are reported."""
        state = cli_engine.connect_account("work")
        cli_engine.task_store.put(make_task("t1"))
        cli_engine.start_sync("work")
        remote_id = database.load_account_state("work").id_map["t1"]
        fake_api.tasks[state.remote_list_id][remote_id]["status"] = "completed"

        result = invoke(runner, tmp_path, "pull", "--account", "work")

        assert result.exit_code == 0, result.output
        assert "work: 1 completed locally" in result.output
        assert cli_engine.task_store.tasks["t1"].completed

    def test_sweep_waits_for_result(self, runner, tmp_path, cli_engine, fake_api):
        """Test a sweep that deletes one duplicate."""
        state = cli_engine.connect_account("work")
        fake_api.add_task(state.remote_list_id, "Call", updated="2024-06-01T09:00:00Z")
        fake_api.add_task(state.remote_list_id, "Call", updated="2024-06-01T10:00:00Z")

        result = invoke(runner, tmp_path, "sweep", "--account", "work")

        assert result.exit_code == 0, result.output
        assert "Duplicate groups: 1, deleted 1/1, errors 0" in result.output
        assert len(fake_api.tasks[state.remote_list_id]) == 1

    def test_cleanup(self, runner, tmp_path, cli_engine):
        """Test the orphan cleanup report."""
        cli_engine.connect_account("work")
        result = invoke(runner, tmp_path, "cleanup", "--account", "work")
        assert result.exit_code == 0, result.output
        assert "work: 0 orphaned tasks deleted, 0 errors" in result.output

    def test_reset_requires_confirmation(self, runner, tmp_path, cli_engine):
        """Test that reset aborts without confirmation."""
        cli_engine.connect_account("work")
        result = invoke(runner, tmp_path, "reset", "--account", "work", input="n\n")
        assert result.exit_code == 1
        assert "Sync state has been reset." not in result.output

    def test_reset(self, runner, tmp_path, cli_engine, database):
        """Test that reset clears tracking."""
        state = cli_engine.connect_account("work")
        cli_engine.task_store.put(make_task("t1"))
        cli_engine.start_sync("work")
        assert state.remote_list_id

        result = invoke(runner, tmp_path, "reset", "--account", "work", "--yes")

        assert result.exit_code == 0, result.output
        assert database.load_account_state("work").id_map == {}


class TestAuthCommands:
    """Tests for auth and disconnect."""

    @patch("gtask_sync.cli.main.GoogleAuth")
    def test_auth_connects(self, mock_auth_class, runner, tmp_path, cli_engine):
        """Test that auth authenticates and connects the account."""
        result = invoke(runner, tmp_path, "auth", "--account", "work")

        assert result.exit_code == 0, result.output
        assert "Connected work!" in result.output
        mock_auth_class.return_value.authenticate.assert_called_once_with(
            "work", force_reauth=False
        )
        assert cli_engine.get_sync_status("work")["connected"]

    @patch("gtask_sync.cli.main.GoogleAuth")
    def test_auth_missing_client_secrets(self, mock_auth_class, runner, tmp_path, cli_engine):
        """Test the setup instructions when credentials.json is missing."""
        mock_auth_class.return_value.authenticate.side_effect = FileNotFoundError(
            "OAuth client secrets not found"
        )

        result = invoke(runner, tmp_path, "auth", "--account", "work")

        assert result.exit_code == 1
        assert "enable the Google Tasks API" in result.output

    @patch("gtask_sync.cli.main.GoogleAuth")
    def test_disconnect(self, mock_auth_class, runner, tmp_path, cli_engine):
        """Test that disconnect forgets state and token."""
        cli_engine.connect_account("work")

        result = invoke(runner, tmp_path, "disconnect", "--account", "work", "--yes")

        assert result.exit_code == 0, result.output
        mock_auth_class.return_value.clear_credentials.assert_called_once_with("work")
        assert not cli_engine.get_sync_status("work")["connected"]


class TestDaemonCommands:
    """Tests for the daemon command group."""

    def test_daemon_status_stopped(self, runner, tmp_path, cli_engine):
        """Test status when no daemon runs."""
        result = invoke(runner, tmp_path, "daemon", "status")
        assert result.exit_code == 0
        assert "Stopped" in result.output

    def test_daemon_stop_without_daemon(self, runner, tmp_path, cli_engine):
        """Test stop when no daemon runs."""
        result = invoke(runner, tmp_path, "daemon", "stop")
        assert result.exit_code == 0
        assert "No daemon is currently running." in result.output

    def test_daemon_start_needs_accounts(self, runner, tmp_path, cli_engine):
        """Test that the daemon refuses to start without accounts."""
        result = invoke(runner, tmp_path, "daemon", "start")
        assert result.exit_code == 1
        assert "No accounts configured" in result.output

    def test_daemon_start_invalid_interval(self, runner, tmp_path, cli_engine):
        """Test interval validation."""
        result = invoke(runner, tmp_path, "daemon", "start", "--interval", "soon")
        assert result.exit_code == 1
        assert "Invalid interval format" in result.output

    @patch("gtask_sync.daemon.DaemonScheduler")
    def test_daemon_start_registers_jobs(self, mock_scheduler_class, runner, tmp_path, cli_engine):
        """Test the jobs registered per configured account."""
        (tmp_path / "config.yaml").write_text("accounts: [work, home]\n")
        scheduler = mock_scheduler_class.return_value
        scheduler.stats = MagicMock(cycles=0, jobs={})

        result = invoke(runner, tmp_path, "daemon", "start", "--sync", "-i", "5m")

        assert result.exit_code == 0, result.output
        names = [c.args[0] for c in scheduler.add_job.call_args_list]
        assert names == ["pull:work", "sync:work", "pull:home", "sync:home", "purge-locks"]
        assert mock_scheduler_class.call_args.kwargs["interval"] == 300
        scheduler.run.assert_called_once()
