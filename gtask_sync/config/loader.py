"""
Configuration loader module for gtask-sync.

Provides YAML-based configuration file loading with support for:
- Loading configuration from the config directory or a custom path
- Graceful handling of missing configuration files
- Type and range validation of known keys
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from gtask_sync.utils.paths import resolve_config_dir

DEFAULT_CONFIG_FILE = "config.yaml"

logger = logging.getLogger(__name__)

# Known keys and their accepted types
VALID_KEYS: dict[str, type[Any] | tuple[type[Any], ...]] = {
    # Remote list
    "task_list_title": str,
    # Executor
    "concurrency": int,
    "max_retries": int,
    "base_backoff_ms": int,
    "max_backoff_ms": int,
    "checkpoint_interval": int,
    "run_deadline_seconds": (int, float),
    # Quota
    "daily_quota_limit": int,
    "quota_safety_margin": int,
    # Locks and background jobs
    "lock_timeout_seconds": (int, float),
    "job_retention_seconds": (int, float),
    "dedup_concurrency": int,
    # Local records
    "tasks_file": str,
    "accounts": list,
    # Daemon
    "daemon_interval": (str, int),
    "daemon_sync": bool,
    # Logging
    "log_dir": str,
    "log_retention_count": int,
}

POSITIVE_KEYS = [
    "concurrency",
    "max_retries",
    "base_backoff_ms",
    "max_backoff_ms",
    "checkpoint_interval",
    "run_deadline_seconds",
    "daily_quota_limit",
    "lock_timeout_seconds",
    "dedup_concurrency",
]

NON_NEGATIVE_KEYS = [
    "quota_safety_margin",
    "job_retention_seconds",
    "log_retention_count",
]


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def _type_name(expected: type[Any] | tuple[type[Any], ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def validate_config(config: dict[str, Any]) -> None:
    """
    Validate types and ranges of known keys; unknown keys are ignored.

    Raises:
        ConfigError: If a value has the wrong type or is out of range
    """
    if not isinstance(config, dict):
        raise ConfigError(
            f"Configuration must be a dictionary, got {type(config).__name__}"
        )

    for key, value in config.items():
        expected = VALID_KEYS.get(key)
        if expected is None:
            continue
        # bool is an int subclass; reject it for numeric keys
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"Invalid type for '{key}': expected {_type_name(expected)}, "
                "got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"Invalid type for '{key}': expected {_type_name(expected)}, "
                f"got {type(value).__name__}"
            )

    for key in POSITIVE_KEYS:
        if key in config and config[key] <= 0:
            raise ConfigError(f"{key} must be > 0, got {config[key]}")

    for key in NON_NEGATIVE_KEYS:
        if key in config and config[key] < 0:
            raise ConfigError(f"{key} must be >= 0, got {config[key]}")

    if (
        "base_backoff_ms" in config
        and "max_backoff_ms" in config
        and config["max_backoff_ms"] < config["base_backoff_ms"]
    ):
        raise ConfigError("max_backoff_ms must be >= base_backoff_ms")

    for account in config.get("accounts", []):
        if not isinstance(account, str) or not account:
            raise ConfigError(f"accounts entries must be strings, got {account!r}")


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load the configuration file from the config directory.

        Returns:
            The configuration, or an empty dict if the file doesn't exist

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(config).__name__}"
            )

        logger.debug(f"Loaded configuration from {path}")
        return config

    def validate(self, config: dict[str, Any]) -> None:
        validate_config(config)

    def load_and_validate(self) -> dict[str, Any]:
        config = self.load()
        if config:
            self.validate(config)
        return config
