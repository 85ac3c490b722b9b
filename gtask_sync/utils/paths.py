"""
Filesystem locations used by gtask-sync.

Everything lives under one configuration directory: OAuth client secrets,
per-account tokens, the SQLite state database, the YAML config and (by
default) the JSON task file.
"""

from __future__ import annotations

import os
from pathlib import Path

DEFAULT_CONFIG_DIR = Path.home() / ".gtask-sync"

CONFIG_DIR_ENV_VAR = "GTASK_SYNC_CONFIG_DIR"

DATABASE_FILE_NAME = "sync.db"
TASKS_FILE_NAME = "tasks.json"
PID_FILE_NAME = "daemon.pid"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter
        2. GTASK_SYNC_CONFIG_DIR environment variable
        3. ~/.gtask-sync
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def database_path(config_dir: Path) -> Path:
    """Path of the sync state database inside a config directory."""
    return config_dir / DATABASE_FILE_NAME


def tasks_file_path(config_dir: Path, override: str | None = None) -> Path:
    """Path of the JSON task file, honouring an explicit override."""
    if override:
        return Path(override).expanduser()
    return config_dir / TASKS_FILE_NAME


def pid_file_path(config_dir: Path) -> Path:
    """Path of the daemon PID file inside a config directory."""
    return config_dir / PID_FILE_NAME
