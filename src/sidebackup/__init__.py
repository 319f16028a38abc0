"""
SideBackup - snapshot and restore of a sandboxed application's container

SideBackup packages the private on-disk state of an application, its
Documents, its Library and its scratch area, into one portable tar archive
and can restore such an archive onto a live container.

Key Features:
    - Plain tar framing, no compression, single pass read and write
    - One inner archive per category plus a JSON manifest
    - Atomic per-file writes on restore
    - Staging artifacts are always cleaned up and never re-archived
    - Operations on one container are serialized
"""

__version__ = "0.1.0"

from sidebackup.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
