"""
gtask_sync.config - Configuration management module

Contains configuration loading, validation, and engine settings.
"""

from gtask_sync.config.loader import ConfigError, ConfigLoader, validate_config
from gtask_sync.config.sync_config import SyncSettings

__all__ = ["ConfigLoader", "ConfigError", "SyncSettings", "validate_config"]
