"""
Snapshot and restore of an application container.

This module classifies a container root into its Documents, Library and
scratch subtrees, packages each into a tar archive, nests the three plus a
manifest into one outer archive, and restores such archives onto a root.

Usage:
    from sidebackup.backup import ContainerManager

    manager = ContainerManager(root)

    # Create a snapshot
    result = await manager.snapshot()

    # Restore it
    await manager.restore(result.path)

    # Read the manifest only
    manifest = manager.inspect(result.path)
"""

from sidebackup.backup.builder import (
    BackupError,
    CategoryStats,
    SnapshotBuilder,
    SnapshotResult,
)
from sidebackup.backup.classifier import (
    RESTORE_ORDER,
    Category,
    TreeLayout,
    classify,
    enumerate_tree,
    is_archivable,
)
from sidebackup.backup.manager import ContainerManager, PurgeResult
from sidebackup.backup.manifest import (
    MANIFEST_FILE,
    MANIFEST_FORMAT_VERSION,
    ManifestError,
    SnapshotManifest,
    build_manifest,
)
from sidebackup.backup.restore import RestoreEngine, RestoreError, RestoreResult

__all__ = [
    # Facade
    "ContainerManager",
    "PurgeResult",
    # Snapshot
    "SnapshotBuilder",
    "SnapshotResult",
    "CategoryStats",
    "BackupError",
    # Restore
    "RestoreEngine",
    "RestoreResult",
    "RestoreError",
    # Classification
    "Category",
    "TreeLayout",
    "RESTORE_ORDER",
    "classify",
    "enumerate_tree",
    "is_archivable",
    # Manifest
    "SnapshotManifest",
    "ManifestError",
    "MANIFEST_FILE",
    "MANIFEST_FORMAT_VERSION",
    "build_manifest",
]
