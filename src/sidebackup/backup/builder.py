"""
Snapshot builder.

Produces one self-contained outer archive from a container root:

    <outer>.tar
        manifest.json     # SnapshotManifest
        doc.tar           # Documents/...
        lib.tar           # Library/...
        tmp.tar           # tmp/...

The three category archives are written in parallel into the staging
directory. The outer archive is written only after all three have
finished, then moved to its destination in one rename. The staging
directory is removed whether the build succeeds or fails, and a failed
build never leaves a file at the destination.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from sidebackup.archive import (
    ArchiveEntry,
    ArchiveWriter,
    EntryKind,
    UnsupportedEntryError,
)
from sidebackup.backup.classifier import (
    RESTORE_ORDER,
    Category,
    TreeLayout,
    classify,
    enumerate_tree,
)
from sidebackup.backup.manifest import (
    MANIFEST_FILE,
    SnapshotManifest,
    build_manifest,
    compute_file_checksum,
)
from sidebackup.backup.staging import publish, remove_directory, reset_directory
from sidebackup.identity import IdentityProvider, StaticIdentityProvider

logger = logging.getLogger(__name__)

OUTER_STAGING_NAME = "outer.tar"


class BackupError(Exception):
    """Error during snapshot creation. `stage` names the failing step."""

    def __init__(self, message: str, stage: str) -> None:
        super().__init__(message)
        self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


@dataclass
class CategoryStats:
    """What went into one category archive."""

    entries: int = 0
    payload_bytes: int = 0
    skipped: list[str] = field(default_factory=list)


@dataclass
class SnapshotResult:
    """Result of a successful snapshot."""

    path: Path
    manifest: SnapshotManifest
    size_bytes: int
    categories: dict[Category, CategoryStats] = field(default_factory=dict)

    @property
    def entry_count(self) -> int:
        return sum(stats.entries for stats in self.categories.values())

    @property
    def skipped(self) -> list[str]:
        return [name for stats in self.categories.values() for name in stats.skipped]


class SnapshotBuilder:
    """
    Builds outer snapshot archives for one container root.

    The builder is not thread-safe; ContainerManager serializes access.
    """

    def __init__(
        self,
        root: Path,
        layout: TreeLayout | None = None,
        identity: IdentityProvider | None = None,
        exclude: Iterable[str] = (),
        workers: int = 3,
    ) -> None:
        """
        Initialize the builder.

        Args:
            root: Container root directory.
            layout: Category directory names (default layout if None).
            identity: Source of manifest identity strings.
            exclude: Extra substrings excluded from snapshots, on top of
                the staging artifacts which are always excluded.
            workers: Threads used to write category archives.
        """
        self.root = Path(root)
        self.layout = layout or TreeLayout()
        self.identity = identity or StaticIdentityProvider()
        self.extra_exclude = tuple(exclude)
        self.workers = max(1, workers)

    @property
    def exclusions(self) -> set[str]:
        """Substrings that keep staging artifacts out of every snapshot."""
        return {self.layout.staging_prefix, *self.extra_exclude}

    def classify(self) -> dict[Category, set[Path]]:
        """Enumerate the root and partition archivable paths by category."""
        return classify(enumerate_tree(self.root, self.exclusions), self.root, self.layout)

    def build(self, destination: Path | None = None) -> SnapshotResult:
        """
        Create a snapshot archive.

        Returns only once the outer archive is completely written.

        Args:
            destination: Where to place the outer archive
                (default: <root>/<scratch>/<staging>.tar).

        Returns:
            SnapshotResult describing the archive.

        Raises:
            BackupError: If any stage fails. The staging directory is
                removed and nothing is published at destination.
        """
        destination = Path(destination) if destination else self.layout.default_output(self.root)
        if destination.is_dir():
            raise BackupError(f"Destination is a directory: {destination}", stage="prepare")

        staging = self.layout.staging_dir(self.root)
        if staging == destination or staging in destination.parents:
            raise BackupError(f"Destination is inside the staging directory: {destination}", stage="prepare")
        try:
            try:
                reset_directory(staging)
            except OSError as e:
                raise BackupError(f"Cannot create staging directory {staging}: {e}", stage="prepare") from e

            try:
                groups = self.classify()
            except OSError as e:
                raise BackupError(f"Cannot enumerate {self.root}: {e}", stage="classify") from e

            categories = self._write_category_archives(groups, staging)

            archives = {}
            try:
                for category in RESTORE_ORDER:
                    archive_path = staging / category.archive_name
                    archives[category.archive_name] = {
                        "sha256": compute_file_checksum(archive_path),
                        "size": archive_path.stat().st_size,
                        "entries": categories[category].entries,
                    }
            except OSError as e:
                raise BackupError(f"Cannot checksum category archives: {e}", stage="manifest") from e

            manifest = build_manifest(
                self.identity,
                total_size=sum(stats.payload_bytes for stats in categories.values()),
                archives=archives,
            )

            outer = staging / OUTER_STAGING_NAME
            try:
                self._write_outer_archive(outer, manifest, staging)
                destination.parent.mkdir(parents=True, exist_ok=True)
                publish(outer, destination)
            except Exception as e:
                raise BackupError(f"Failed to write snapshot archive: {e}", stage="outer") from e

            size_bytes = destination.stat().st_size
            logger.info(f"Snapshot created: {destination} ({size_bytes:,} bytes)")

            return SnapshotResult(
                path=destination,
                manifest=manifest,
                size_bytes=size_bytes,
                categories=categories,
            )
        finally:
            remove_directory(staging)

    def _write_category_archives(
        self,
        groups: dict[Category, set[Path]],
        staging: Path,
    ) -> dict[Category, CategoryStats]:
        workers = min(self.workers, len(RESTORE_ORDER))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sidebackup-archive") as executor:
            futures = {
                category: executor.submit(
                    self._write_category_archive,
                    groups.get(category, set()),
                    staging / category.archive_name,
                )
                for category in RESTORE_ORDER
            }
        # Leaving the executor joins every task

        results = {}
        for category, future in futures.items():
            try:
                results[category] = future.result()
            except Exception as e:
                raise BackupError(
                    f"Failed to write {category.archive_name}: {e}",
                    stage=f"archive:{category.value}",
                ) from e
            logger.info(
                f"Archived {category.value}: {results[category].entries} entries, "
                f"{results[category].payload_bytes:,} bytes"
            )
        return results

    def _write_category_archive(self, paths: set[Path], archive_path: Path) -> CategoryStats:
        stats = CategoryStats()
        ordered = sorted(paths, key=lambda p: p.relative_to(self.root).parts)

        with open(archive_path, "wb") as f:
            writer = ArchiveWriter(f)
            for path in ordered:
                relative = path.relative_to(self.root).as_posix()
                try:
                    entry = ArchiveEntry.from_path(path, self.root)
                except UnsupportedEntryError as e:
                    logger.warning(f"Skipping entry: {e}")
                    stats.skipped.append(relative)
                    continue
                except OSError as e:
                    logger.warning(f"Skipping unreadable {relative}: {e}")
                    stats.skipped.append(relative)
                    continue

                writer.append(entry)
                stats.entries += 1
                stats.payload_bytes += entry.size
            writer.finalize()

        return stats

    def _write_outer_archive(self, outer: Path, manifest: SnapshotManifest, staging: Path) -> None:
        created = int(manifest.created_at.timestamp())
        with open(outer, "wb") as f:
            writer = ArchiveWriter(f)
            writer.append(
                ArchiveEntry(
                    MANIFEST_FILE,
                    EntryKind.FILE,
                    0o644,
                    created,
                    payload=manifest.to_json(),
                )
            )
            for category in RESTORE_ORDER:
                writer.append_file(category.archive_name, staging / category.archive_name, 0o644, created)
            writer.finalize()
            f.flush()
            os.fsync(f.fileno())
