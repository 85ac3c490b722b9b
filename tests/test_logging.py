"""
Tests for the logging configuration module.

Tests the centralized logging configuration functionality.
"""

import io
import logging
import os
from datetime import datetime
from unittest.mock import patch

import pytest

from gtask_sync.utils.logging import (
    CONSOLE_FORMAT,
    ROOT_LOGGER_NAME,
    AccountLoggerAdapter,
    ColoredFormatter,
    cleanup_old_logs,
    daily_log_file,
    disable_logging,
    enable_logging,
    get_log_file_path,
    get_log_level_from_env,
    get_logger,
    set_log_level,
    setup_logging,
)


@pytest.fixture(autouse=True)
def reset_root_logger():
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.disabled = False
    logger.propagate = True


class TestLogLevelFromEnv:
    """Tests for get_log_level_from_env."""

    def test_default_is_info(self):
        """Test the default level."""
        with patch.dict(os.environ, {}, clear=True):
            assert get_log_level_from_env() == logging.INFO

    def test_level_name(self):
        """Test reading an explicit level."""
        with patch.dict(os.environ, {"GTASK_SYNC_LOG_LEVEL": "warning"}, clear=True):
            assert get_log_level_from_env() == logging.WARNING

    def test_debug_flag_wins(self):
        """Test that the debug switch overrides the level."""
        env = {"GTASK_SYNC_LOG_LEVEL": "ERROR", "GTASK_SYNC_DEBUG": "true"}
        with patch.dict(os.environ, env, clear=True):
            assert get_log_level_from_env() == logging.DEBUG

    def test_unknown_level_falls_back(self):
        """Test that garbage falls back to INFO."""
        with patch.dict(os.environ, {"GTASK_SYNC_LOG_LEVEL": "LOUD"}, clear=True):
            assert get_log_level_from_env() == logging.INFO


class TestLogFilePath:
    """Tests for log file resolution."""

    def test_daily_file_name(self, tmp_path):
        """Test the per-day file name."""
        path = daily_log_file(tmp_path, datetime(2024, 6, 1, 10, 0))
        assert path == tmp_path / "gtask_sync_20240601.log"

    def test_env_override(self, tmp_path):
        """Test an explicit log file from the environment."""
        target = tmp_path / "custom.log"
        with patch.dict(os.environ, {"GTASK_SYNC_LOG_FILE": str(target)}):
            assert get_log_file_path(tmp_path) == target

    def test_env_disables(self, tmp_path):
        """Test switching file logs off."""
        with patch.dict(os.environ, {"GTASK_SYNC_LOG_FILE": "none"}):
            assert get_log_file_path(tmp_path) is None

    def test_no_dir_no_file(self):
        """Test that no directory means no file."""
        env = {k: v for k, v in os.environ.items() if k != "GTASK_SYNC_LOG_FILE"}
        with patch.dict(os.environ, env, clear=True):
            assert get_log_file_path(None) is None


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_console_only(self):
        """Test a console-only configuration."""
        logger = setup_logging(level=logging.WARNING, enable_file_logging=False)

        assert logger.name == ROOT_LOGGER_NAME
        assert len(logger.handlers) == 1
        assert logger.handlers[0].level == logging.WARNING
        assert logger.handlers[0].formatter._fmt == CONSOLE_FORMAT

    def test_verbose_forces_debug(self):
        """Test that verbose sets the console to DEBUG."""
        logger = setup_logging(level=logging.ERROR, verbose=True, enable_file_logging=False)
        assert logger.handlers[0].level == logging.DEBUG

    def test_file_handler_writes(self, tmp_path):
        """Test that messages reach the log file."""
        log_file = tmp_path / "logs" / "run.log"
        logger = setup_logging(level=logging.ERROR, log_file=log_file)

        get_logger("sync.engine").info("hello file")
        for handler in logger.handlers:
            handler.flush()

        assert "hello file" in log_file.read_text()

    def test_repeated_setup_does_not_duplicate_handlers(self):
        """Test that setup can be called more than once."""
        setup_logging(enable_file_logging=False)
        logger = setup_logging(enable_file_logging=False)
        assert len(logger.handlers) == 1

    def test_set_log_level(self, tmp_path):
        """Test that only console handlers change level."""
        logger = setup_logging(level=logging.INFO, log_file=tmp_path / "x.log")
        set_log_level(logging.ERROR)
        levels = {type(h): h.level for h in logger.handlers}
        assert levels[logging.StreamHandler] == logging.ERROR
        assert levels[logging.FileHandler] == logging.DEBUG

    def test_disable_and_enable(self):
        """Test toggling the package logger."""
        disable_logging()
        assert logging.getLogger(ROOT_LOGGER_NAME).disabled
        enable_logging()
        assert not logging.getLogger(ROOT_LOGGER_NAME).disabled


class TestFormattersAndAdapters:
    """Tests for ColoredFormatter and AccountLoggerAdapter."""

    def test_no_colors_without_tty(self):
        """Test that colors are disabled for non-terminals."""
        formatter = ColoredFormatter("%(levelname)s", stream=io.StringIO())
        record = logging.makeLogRecord({"levelname": "INFO", "msg": "x"})
        assert formatter.use_colors is False
        assert formatter.format(record) == "INFO"

    def test_account_prefix(self):
        """Test that account adapters prefix messages."""
        adapter = get_logger("sync.engine", account_id="work")
        assert isinstance(adapter, AccountLoggerAdapter)
        msg, _ = adapter.process("Sync started", {})
        assert msg == "[work] Sync started"

    def test_get_logger_namespaces(self):
        """Test that loggers land under the package root."""
        assert get_logger("something").name == "gtask_sync.something"
        assert get_logger("gtask_sync.api").name == "gtask_sync.api"


class TestCleanupOldLogs:
    """Tests for cleanup_old_logs."""

    def test_keeps_newest(self, tmp_path):
        """Test that only the newest files survive."""
        for day in range(1, 6):
            path = tmp_path / f"gtask_sync_2024060{day}.log"
            path.write_text("x")
            os.utime(path, (day * 1000, day * 1000))
        (tmp_path / "other.log").write_text("keep")

        assert cleanup_old_logs(tmp_path, keep_count=2) == 3
        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "gtask_sync_20240604.log",
            "gtask_sync_20240605.log",
            "other.log",
        ]

    def test_missing_dir(self, tmp_path):
        """Test that a missing directory is a no-op."""
        assert cleanup_old_logs(tmp_path / "nope") == 0
