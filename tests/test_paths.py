"""Tests for path utilities."""

import os
from pathlib import Path
from unittest.mock import patch

from gtask_sync.utils.paths import (
    CONFIG_DIR_ENV_VAR,
    DEFAULT_CONFIG_DIR,
    database_path,
    pid_file_path,
    resolve_config_dir,
    tasks_file_path,
)


class TestDefaultConfigDir:
    """Test DEFAULT_CONFIG_DIR constant."""

    def test_default_config_dir_is_in_home(self):
        """Default config dir should be in user's home directory."""
        assert Path.home() / ".gtask-sync" == DEFAULT_CONFIG_DIR


class TestResolveConfigDir:
    """Test resolve_config_dir function."""

    def test_explicit_path_string(self, tmp_path):
        """Explicit path string should be used."""
        assert resolve_config_dir(str(tmp_path)) == tmp_path.resolve()

    def test_explicit_path_wins_over_env(self, tmp_path):
        """Explicit path should take priority over the environment."""
        with patch.dict(os.environ, {CONFIG_DIR_ENV_VAR: "/somewhere/else"}):
            assert resolve_config_dir(tmp_path) == tmp_path.resolve()

    def test_env_var(self, tmp_path):
        """Environment variable should be used when no path is given."""
        with patch.dict(os.environ, {CONFIG_DIR_ENV_VAR: str(tmp_path)}):
            assert resolve_config_dir() == tmp_path.resolve()

    def test_default(self):
        """Default should be used when nothing is set."""
        env = {k: v for k, v in os.environ.items() if k != CONFIG_DIR_ENV_VAR}
        with patch.dict(os.environ, env, clear=True):
            assert resolve_config_dir() == DEFAULT_CONFIG_DIR.resolve()


class TestFilePaths:
    """Test the derived file locations."""

    def test_database_and_pid(self, tmp_path):
        """Files should live inside the config dir."""
        assert database_path(tmp_path) == tmp_path / "sync.db"
        assert pid_file_path(tmp_path) == tmp_path / "daemon.pid"

    def test_tasks_file_default_and_override(self, tmp_path):
        """An explicit task file should replace the default."""
        assert tasks_file_path(tmp_path) == tmp_path / "tasks.json"
        assert tasks_file_path(tmp_path, "/data/tasks.json") == Path("/data/tasks.json")
