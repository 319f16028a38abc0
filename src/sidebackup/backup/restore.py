"""
Restore engine.

Reconstructs a container root from an outer snapshot archive:

    1. copy the archive into the staging directory
    2. unpack the outer archive there (manifest + three inner archives)
    3. verify every inner archive against the manifest checksums
    4. unpack the inner archives onto the root: documents, library, scratch
    5. remove the staging directory

Failure Semantics:
    Files are written atomically, so no file is ever left half-written.
    There is no whole-tree rollback: if the library archive is corrupt, the
    documents already restored stay restored and RestoreError names the
    archive and the last entry that was read.

    Entries that cannot be applied (permission denied, unsafe names) are
    logged and listed in RestoreResult.skipped rather than aborting.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from sidebackup.archive import (
    ArchiveEntry,
    ArchiveReader,
    CorruptArchiveError,
    EntryKind,
    UnsafeEntryError,
)
from sidebackup.backup.classifier import RESTORE_ORDER, Category, TreeLayout
from sidebackup.backup.manifest import (
    MANIFEST_FILE,
    ManifestError,
    SnapshotManifest,
    compute_file_checksum,
)
from sidebackup.backup.staging import remove_directory, reset_directory

logger = logging.getLogger(__name__)

INCOMING_NAME = "incoming.tar"


class RestoreError(Exception):
    """Error during restore. Carries the stage, inner archive and entry involved."""

    def __init__(
        self,
        message: str,
        stage: str,
        archive: str | None = None,
        entry: str | None = None,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.archive = archive
        self.entry = entry

    def __str__(self) -> str:
        context = []
        if self.archive:
            context.append(f"archive={self.archive}")
        if self.entry:
            context.append(f"entry={self.entry}")
        suffix = f" ({', '.join(context)})" if context else ""
        return f"[{self.stage}] {super().__str__()}{suffix}"


@dataclass
class RestoreResult:
    """Result of a completed restore."""

    manifest: SnapshotManifest
    applied: dict[Category, int] = field(default_factory=dict)
    kept: int = 0
    skipped: list[str] = field(default_factory=list)

    @property
    def entries_applied(self) -> int:
        return sum(self.applied.values())


class RestoreEngine:
    """
    Unpacks snapshot archives onto one container root.

    The engine is not thread-safe; ContainerManager serializes access.
    """

    def __init__(
        self,
        root: Path,
        layout: TreeLayout | None = None,
        overwrite: bool = True,
    ) -> None:
        """
        Initialize the engine.

        Args:
            root: Container root the snapshot is restored onto.
            layout: Category directory names (default layout if None).
            overwrite: Replace objects already present in the live tree.
        """
        self.root = Path(root)
        self.layout = layout or TreeLayout()
        self.overwrite = overwrite

    def inspect(self, archive_path: Path) -> SnapshotManifest:
        """
        Read the manifest of an outer archive without unpacking it.

        Raises:
            ManifestError: If the archive has no valid manifest.
            CorruptArchiveError: If the archive framing is malformed.
            OSError: If the archive cannot be read.
        """
        found: list[ArchiveEntry] = []

        def _take_manifest(entry: ArchiveEntry) -> bool:
            if entry.name == MANIFEST_FILE and entry.kind is EntryKind.FILE:
                found.append(entry)
                return True
            return False

        with open(archive_path, "rb") as f:
            ArchiveReader(f).process(_take_manifest)

        if not found:
            raise ManifestError(f"No {MANIFEST_FILE} in {archive_path}")
        return SnapshotManifest.from_json(found[0].payload or b"")

    def restore(self, archive_path: Path) -> RestoreResult:
        """
        Restore a snapshot onto the root.

        Args:
            archive_path: Outer snapshot archive.

        Returns:
            RestoreResult with per-category counts and skipped entries.

        Raises:
            RestoreError: If any stage fails. The staging directory is
                removed; categories restored before the failure remain.
        """
        archive_path = Path(archive_path)
        staging = self.layout.staging_dir(self.root)

        if not archive_path.is_file():
            raise RestoreError(f"Snapshot not found: {archive_path}", stage="copy")
        if staging.resolve() in archive_path.resolve().parents:
            raise RestoreError(f"Snapshot is inside the staging directory: {archive_path}", stage="copy")

        try:
            incoming = staging / INCOMING_NAME
            try:
                reset_directory(staging)
                shutil.copyfile(archive_path, incoming)
            except OSError as e:
                raise RestoreError(f"Cannot copy snapshot into staging: {e}", stage="copy") from e

            manifest = self._unpack_outer(incoming, staging)
            self._verify(manifest, staging)

            result = RestoreResult(manifest=manifest)
            for category in RESTORE_ORDER:
                self._unpack_inner(category, staging / category.archive_name, result)

            logger.info(
                f"Restore completed: {result.entries_applied} entries applied, "
                f"{len(result.skipped)} skipped, {result.kept} kept"
            )
            return result
        finally:
            remove_directory(staging)

    def _unpack_outer(self, incoming: Path, staging: Path) -> SnapshotManifest:
        inner_names = {category.archive_name for category in Category}
        manifest: SnapshotManifest | None = None
        last: str | None = None

        try:
            with open(incoming, "rb") as f:
                for entry in ArchiveReader(f):
                    last = entry.name
                    if entry.kind is not EntryKind.FILE:
                        logger.warning(f"Ignoring unexpected snapshot member: {entry.name}")
                    elif entry.name == MANIFEST_FILE:
                        manifest = SnapshotManifest.from_json(entry.payload or b"")
                    elif entry.name in inner_names:
                        entry.apply(staging)
                    else:
                        logger.warning(f"Ignoring unexpected snapshot member: {entry.name}")
        except ManifestError as e:
            raise RestoreError(str(e), stage="manifest", entry=MANIFEST_FILE) from e
        except CorruptArchiveError as e:
            raise RestoreError(f"Snapshot archive is corrupt: {e}", stage="outer", entry=last) from e
        except OSError as e:
            raise RestoreError(f"Cannot unpack snapshot: {e}", stage="outer", entry=last) from e

        if manifest is None:
            raise RestoreError(f"Snapshot has no {MANIFEST_FILE}", stage="manifest")

        logger.info(
            f"Snapshot of {manifest.name or 'unnamed app'} taken {manifest.created_at.isoformat()} "
            f"({manifest.total_size:,} bytes)"
        )
        return manifest

    def _verify(self, manifest: SnapshotManifest, staging: Path) -> None:
        for category in RESTORE_ORDER:
            name = category.archive_name
            path = staging / name
            if not path.is_file():
                raise RestoreError("Inner archive missing from snapshot", stage="verify", archive=name)

            expected = (manifest.archives.get(name) or {}).get("sha256")
            if not expected:
                logger.debug(f"No checksum recorded for {name}")
                continue
            actual = compute_file_checksum(path)
            if actual != expected:
                raise RestoreError(
                    f"Checksum mismatch: expected {expected[:16]}..., got {actual[:16]}...",
                    stage="verify",
                    archive=name,
                )

    def _unpack_inner(self, category: Category, archive_path: Path, result: RestoreResult) -> None:
        name = category.archive_name
        directories: list[ArchiveEntry] = []
        applied = 0
        last: str | None = None

        try:
            with open(archive_path, "rb") as f:
                for entry in ArchiveReader(f):
                    last = entry.name
                    try:
                        written = entry.apply(
                            self.root,
                            overwrite=self.overwrite,
                            defer_directory_attributes=True,
                        )
                    except (OSError, UnsafeEntryError) as e:
                        logger.warning(f"Skipping {entry.name} from {name}: {e}")
                        result.skipped.append(entry.name)
                        continue

                    if not written:
                        result.kept += 1
                        continue
                    applied += 1
                    if entry.kind is EntryKind.DIRECTORY:
                        directories.append(entry)
        except CorruptArchiveError as e:
            raise RestoreError(f"Inner archive is corrupt: {e}", stage="unpack", archive=name, entry=last) from e
        except OSError as e:
            raise RestoreError(f"Cannot read inner archive: {e}", stage="unpack", archive=name, entry=last) from e

        # Deepest first, after their contents, so writes don't reset mtimes
        for entry in sorted(directories, key=lambda e: e.name.count("/"), reverse=True):
            try:
                path = entry.destination(self.root)
                if path.is_symlink():
                    raise UnsafeEntryError(f"Directory was replaced by a symbolic link: {entry.name}")
                entry.apply_attributes(path)
            except (OSError, UnsafeEntryError) as e:
                logger.warning(f"Could not restore attributes of {entry.name}: {e}")

        result.applied[category] = applied
        logger.info(f"Restored {category.value}: {applied} entries from {name}")
