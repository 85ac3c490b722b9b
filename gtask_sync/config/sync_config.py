"""
Typed engine settings.

SyncSettings turns the loose YAML dictionary into the values the engine
needs, with defaults for everything. Example config.yaml::

    task_list_title: "Task Sync"
    concurrency: 5
    max_retries: 3
    base_backoff_ms: 1000
    checkpoint_interval: 10
    run_deadline_seconds: 240
    daily_quota_limit: 50000
    accounts: [work]
    daemon_interval: 15m
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any

from gtask_sync.config.loader import ConfigError, ConfigLoader, validate_config
from gtask_sync.sync.executor import ExecutorConfig

logger = logging.getLogger(__name__)

DEFAULT_TASK_LIST_TITLE = "Task Sync"


@dataclass
class SyncSettings:
    """
    Engine tuning knobs.

    Attributes:
        task_list_title: Title of the remote list created on connect
        concurrency: Upsert workers per sync run
        max_retries: Attempts per API call when rate limited
        base_backoff_ms: First backoff delay
        max_backoff_ms: Cap on a single backoff delay
        checkpoint_interval: Completions between state checkpoints
        run_deadline_seconds: Wall-clock budget of one sync run
        daily_quota_limit: API calls allowed per UTC day
        quota_safety_margin: Calls kept in reserve before a run starts
        lock_timeout_seconds: Lifetime of a task lock
        job_retention_seconds: How long finished sweep status stays pollable
        dedup_concurrency: Delete workers of the duplicate sweep
    """

    task_list_title: str = DEFAULT_TASK_LIST_TITLE
    concurrency: int = 5
    max_retries: int = 3
    base_backoff_ms: int = 1000
    max_backoff_ms: int = 32000
    checkpoint_interval: int = 10
    run_deadline_seconds: float = 240.0
    daily_quota_limit: int = 50_000
    quota_safety_margin: int = 10
    lock_timeout_seconds: float = 30.0
    job_retention_seconds: float = 300.0
    dedup_concurrency: int = 3
    tasks_file: str | None = None
    accounts: list[str] = field(default_factory=list)
    daemon_interval: str | int = "15m"
    daemon_sync: bool = False
    log_dir: str | None = None
    log_retention_count: int = 10

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SyncSettings:
        """
        Build settings from a configuration dictionary.

        Unknown keys are ignored so the same file can carry CLI options.

        Raises:
            ConfigError: If a known key has an invalid value
        """
        if not data:
            return cls()
        validate_config(data)
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        if "accounts" in values:
            values["accounts"] = list(values["accounts"])
        return cls(**values)

    @classmethod
    def load(cls, loader: ConfigLoader | None = None) -> SyncSettings:
        """Load and validate the YAML file, then build settings."""
        loader = loader or ConfigLoader()
        try:
            return cls.from_dict(loader.load_and_validate())
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def executor_config(self) -> ExecutorConfig:
        return ExecutorConfig(
            concurrency=self.concurrency,
            max_retries=self.max_retries,
            base_backoff_ms=self.base_backoff_ms,
            max_backoff_ms=self.max_backoff_ms,
        )
