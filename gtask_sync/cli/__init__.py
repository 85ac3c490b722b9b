"""CLI package for gtask_sync."""

from gtask_sync.cli.formatters import (
    format_quota,
    show_account_status,
    show_sweep_status,
    show_sync_summary,
)
from gtask_sync.cli.main import build_engine, cli
from gtask_sync.utils import DEFAULT_CONFIG_DIR

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "build_engine",
    "cli",
    "format_quota",
    "show_account_status",
    "show_sweep_status",
    "show_sync_summary",
]
