"""
Logging configuration module for gtask_sync.

Provides centralized logging configuration with support for:
- Console and file logging (one file per day in the log directory)
- Log levels from GTASK_SYNC_LOG_LEVEL / GTASK_SYNC_DEBUG
- Per-account prefixes so concurrent sync runs stay readable
- Colored console output when the terminal supports it
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, MutableMapping

ROOT_LOGGER_NAME = "gtask_sync"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"

VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] - %(message)s"
)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_PREFIX = "gtask_sync_"

ENV_LOG_LEVEL = "GTASK_SYNC_LOG_LEVEL"
ENV_DEBUG = "GTASK_SYNC_DEBUG"
ENV_LOG_FILE = "GTASK_SYNC_LOG_FILE"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """
    Formatter that wraps the level name in ANSI colors.

    Colors are dropped automatically when stderr is not a terminal, when
    NO_COLOR is set or when TERM is "dumb".
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        use_colors: bool = True,
        stream: Any = None,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._supports_color(stream or sys.stderr)

    @staticmethod
    def _supports_color(stream: Any) -> bool:
        if not hasattr(stream, "isatty") or not stream.isatty():
            return False
        if os.environ.get("NO_COLOR"):
            return False
        return os.environ.get("TERM", "") != "dumb"

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname)
        if self.use_colors and color:
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


class AccountLoggerAdapter(logging.LoggerAdapter):
    """
    Prefix every message with the account it concerns.

    Usage:
        log = AccountLoggerAdapter(logger, "work")
        log.info("Sync started")   # -> "[work] Sync started"
    """

    def __init__(self, logger: logging.Logger, account_id: str):
        super().__init__(logger, {"account_id": account_id})

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['account_id']}] {msg}", kwargs


def get_log_level_from_env() -> int:
    """
    Get the logging level from environment variables.

    GTASK_SYNC_DEBUG wins over GTASK_SYNC_LOG_LEVEL; unknown level names
    fall back to INFO.
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG
    return _LEVELS.get(os.environ.get(ENV_LOG_LEVEL, "INFO").upper(), logging.INFO)


def daily_log_file(log_dir: Path, now: datetime | None = None) -> Path:
    """Return the log file for the given day inside ``log_dir``."""
    stamp = (now or datetime.now()).strftime("%Y%m%d")
    return log_dir / f"{LOG_FILE_PREFIX}{stamp}.log"


def get_log_file_path(log_dir: Path | None = None) -> Path | None:
    """
    Resolve where file logs go.

    Returns:
        The explicit GTASK_SYNC_LOG_FILE path, the daily file inside
        ``log_dir``, or None when file logging is disabled or no
        directory is known
    """
    log_file = os.environ.get(ENV_LOG_FILE)
    if log_file is not None:
        if log_file.lower() in ("none", "disabled", ""):
            return None
        return Path(log_file).expanduser()
    if log_dir is None:
        return None
    return daily_log_file(log_dir)


def setup_logging(
    level: int | None = None,
    verbose: bool = False,
    log_dir: Path | None = None,
    log_file: Path | None = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the ``gtask_sync`` logger hierarchy.

    Args:
        level: Console log level; taken from the environment when None
        verbose: Force DEBUG and use the detailed format on the console
        log_dir: Directory for daily log files
        log_file: Explicit log file, overrides log_dir
        enable_file_logging: Set False to log to the console only
        use_colors: Allow colored console output

    Returns:
        The configured ``gtask_sync`` logger

    Example:
        setup_logging(verbose=True, log_dir=config_dir / "logs")
    """
    if level is None:
        level = get_log_level_from_env()
    if verbose:
        level = logging.DEBUG

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    console_format = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    if use_colors:
        console_handler.setFormatter(ColoredFormatter(console_format, DATE_FORMAT))
    else:
        console_handler.setFormatter(logging.Formatter(console_format, DATE_FORMAT))
    logger.addHandler(console_handler)

    if enable_file_logging:
        file_path = log_file or get_log_file_path(log_dir)
        if file_path:
            try:
                file_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(file_path, encoding="utf-8")
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(
                    logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT)
                )
                logger.addHandler(file_handler)
                logger.debug(f"Log file: {file_path}")
            except OSError as e:
                logger.warning(f"Could not create log file {file_path}: {e}")

    return logger


def cleanup_old_logs(log_dir: Path, keep_count: int = 10) -> int:
    """
    Delete all but the ``keep_count`` newest daily log files.

    Returns:
        Number of files deleted (0 when ``keep_count`` is not positive)
    """
    if keep_count <= 0 or not log_dir.exists():
        return 0

    logs = sorted(
        log_dir.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    deleted = 0
    for old_log in logs[keep_count:]:
        try:
            old_log.unlink()
            deleted += 1
        except OSError as e:
            logging.getLogger(__name__).debug(f"Could not delete {old_log}: {e}")
    return deleted


def get_logger(name: str, account_id: str | None = None) -> Any:
    """
    Get a logger inside the ``gtask_sync`` hierarchy.

    Args:
        name: Module name (typically __name__)
        account_id: When given, wrap the logger so messages carry the account

    Returns:
        A ``logging.Logger`` or an ``AccountLoggerAdapter``
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    logger = logging.getLogger(name)
    if account_id:
        return AccountLoggerAdapter(logger, account_id)
    return logger


def set_log_level(level: int) -> None:
    """Change the console log level at runtime; file handlers stay at DEBUG."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)


def disable_logging() -> None:
    logging.getLogger(ROOT_LOGGER_NAME).disabled = True


def enable_logging() -> None:
    logging.getLogger(ROOT_LOGGER_NAME).disabled = False


__all__ = [
    "setup_logging",
    "get_logger",
    "set_log_level",
    "disable_logging",
    "enable_logging",
    "cleanup_old_logs",
    "daily_log_file",
    "ColoredFormatter",
    "AccountLoggerAdapter",
    "get_log_level_from_env",
    "get_log_file_path",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
]
