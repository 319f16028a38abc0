"""
Configuration settings management for SideBackup.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.sidebackup/config.yaml by default, with the
path overridable via the SIDEBACKUP_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".sidebackup"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"


@dataclass
class IdentityConfig:
    """Identifying strings recorded in every snapshot manifest."""

    name: str = ""
    team: str = ""
    bundle: str = ""
    # Application group identifier -> container directory
    group_containers: dict[str, str] = field(default_factory=dict)


@dataclass
class LayoutConfig:
    """Names of the category directories below the root."""

    documents: str = "Documents"
    library: str = "Library"
    scratch: str = "tmp"
    staging: str = ".sidebackup"


@dataclass
class SnapshotConfig:
    """Snapshot settings."""

    exclude: list[str] = field(default_factory=list)
    workers: int = 3


@dataclass
class RestoreConfig:
    """Restore settings."""

    overwrite: bool = True


@dataclass
class Settings:
    """
    Complete SideBackup configuration settings.

    Attributes:
        root: Container root holding the Documents, Library and scratch
            directories. Empty until configured.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        identity: Strings recorded in snapshot manifests.
        layout: Category and staging directory names.
        snapshot: Snapshot settings.
        restore: Restore settings.
    """

    root: str = ""
    log_level: str = "INFO"

    identity: IdentityConfig = field(default_factory=IdentityConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    restore: RestoreConfig = field(default_factory=RestoreConfig)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from SIDEBACKUP_CONFIG environment variable if set,
    otherwise returns the default path (~/.sidebackup/config.yaml).
    """
    env_path = os.environ.get("SIDEBACKUP_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses SIDEBACKUP_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    general = data.get("sidebackup") or {}

    if "root" in general:
        settings.root = str(general["root"])
    if "log_level" in general:
        settings.log_level = str(general["log_level"]).upper()

    identity = data.get("identity") or {}
    if "name" in identity:
        settings.identity.name = str(identity["name"])
    if "team" in identity:
        settings.identity.team = str(identity["team"])
    if "bundle" in identity:
        settings.identity.bundle = str(identity["bundle"])
    if "group_containers" in identity:
        containers = identity["group_containers"] or {}
        if not isinstance(containers, dict):
            raise ConfigurationError("identity.group_containers must be a mapping")
        settings.identity.group_containers = {str(k): str(v) for k, v in containers.items()}

    layout = data.get("layout") or {}
    for key in ("documents", "library", "scratch", "staging"):
        if key in layout:
            setattr(settings.layout, key, str(layout[key]))

    snapshot = data.get("snapshot") or {}
    if "exclude" in snapshot:
        exclude = snapshot["exclude"] or []
        if isinstance(exclude, str):
            exclude = [exclude]
        settings.snapshot.exclude = [str(item) for item in exclude]
    if "workers" in snapshot:
        try:
            settings.snapshot.workers = int(snapshot["workers"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid snapshot.workers: {snapshot['workers']}") from e

    restore = data.get("restore") or {}
    if "overwrite" in restore:
        settings.restore.overwrite = bool(restore["overwrite"])

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "SIDEBACKUP_ROOT": ("root", str),
        "SIDEBACKUP_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "SIDEBACKUP_NAME": ("identity.name", str),
        "SIDEBACKUP_TEAM": ("identity.team", str),
        "SIDEBACKUP_BUNDLE": ("identity.bundle", str),
        "SIDEBACKUP_EXCLUDE": (
            "snapshot.exclude",
            lambda x: [item.strip() for item in x.split(",") if item.strip()],
        ),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested_attr(settings, attr_path, converter(value))

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    from sidebackup.backup.classifier import TreeLayout

    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if settings.snapshot.workers < 1:
        raise ConfigurationError("snapshot.workers must be at least 1")

    # Raises ConfigurationError for empty, overlapping or nested names
    TreeLayout.from_config(settings.layout)


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "sidebackup": {
            "root": settings.root,
            "log_level": settings.log_level,
        },
        "identity": {
            "name": settings.identity.name,
            "team": settings.identity.team,
            "bundle": settings.identity.bundle,
            "group_containers": dict(settings.identity.group_containers),
        },
        "layout": {
            "documents": settings.layout.documents,
            "library": settings.layout.library,
            "scratch": settings.layout.scratch,
            "staging": settings.layout.staging,
        },
        "snapshot": {
            "exclude": list(settings.snapshot.exclude),
            "workers": settings.snapshot.workers,
        },
        "restore": {
            "overwrite": settings.restore.overwrite,
        },
    }
