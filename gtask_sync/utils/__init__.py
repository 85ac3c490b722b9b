"""
gtask_sync.utils - Utility module

Common utilities including logging configuration, paths and date handling.
"""

from gtask_sync.utils.dates import parse_due_date
from gtask_sync.utils.paths import DEFAULT_CONFIG_DIR, resolve_config_dir

__all__ = ["parse_due_date", "resolve_config_dir", "DEFAULT_CONFIG_DIR"]
