"""
Configuration management for SideBackup.

This module handles loading, validating, and saving configuration settings.
"""

from sidebackup.config.settings import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_CONFIG_FILE,
    ConfigurationError,
    IdentityConfig,
    LayoutConfig,
    RestoreConfig,
    Settings,
    SnapshotConfig,
    get_config_path,
    load_config,
    save_config,
)

__all__ = [
    "Settings",
    "IdentityConfig",
    "LayoutConfig",
    "SnapshotConfig",
    "RestoreConfig",
    "load_config",
    "save_config",
    "get_config_path",
    "ConfigurationError",
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_FILE",
]
