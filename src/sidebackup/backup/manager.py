"""
Container manager.

ContainerManager is the single owner of one container root. It exposes the
operations a front end needs (snapshot, restore, classify, purge, inspect)
and serializes every operation that touches the root behind one lock, so a
classification scan never races the writes of a restore.

Long-running operations are coroutines that run the blocking work in a
worker thread. They cannot be cancelled once started: cancelling the
awaiting task abandons the result but the operation still runs to
completion, including cleanup of its staging directory.

Usage:
    manager = ContainerManager.from_settings(load_config())

    result = await manager.snapshot()
    await manager.restore(result.path)
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from sidebackup.backup.builder import SnapshotBuilder, SnapshotResult
from sidebackup.backup.classifier import RESTORE_ORDER, Category, TreeLayout
from sidebackup.backup.manifest import SnapshotManifest
from sidebackup.backup.restore import RestoreEngine, RestoreResult
from sidebackup.config.settings import Settings
from sidebackup.identity import IdentityProvider, StaticIdentityProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PurgeResult:
    """Result of a purge."""

    removed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class ContainerManager:
    """
    Serialized access to one container root.

    All operations share one threading.Lock, so they are serialized whether
    they are called from several threads or several event loops.
    """

    def __init__(
        self,
        root: Path,
        layout: TreeLayout | None = None,
        identity: IdentityProvider | None = None,
        exclude: Iterable[str] = (),
        workers: int = 3,
        overwrite: bool = True,
    ) -> None:
        """
        Initialize the manager.

        Args:
            root: Container root directory.
            layout: Category directory names (default layout if None).
            identity: Source of manifest identity strings.
            exclude: Extra substrings excluded from snapshots.
            workers: Threads used to write category archives.
            overwrite: Default overwrite policy for restores.
        """
        self.root = Path(root)
        self.layout = layout or TreeLayout()
        self.identity = identity or StaticIdentityProvider()
        self.overwrite = overwrite
        self._builder = SnapshotBuilder(
            self.root,
            layout=self.layout,
            identity=self.identity,
            exclude=exclude,
            workers=workers,
        )
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        identity: IdentityProvider | None = None,
    ) -> ContainerManager:
        """Create a manager from loaded configuration."""
        return cls(
            Path(settings.root).expanduser(),
            layout=TreeLayout.from_config(settings.layout),
            identity=identity or StaticIdentityProvider.from_config(settings.identity),
            exclude=settings.snapshot.exclude,
            workers=settings.snapshot.workers,
            overwrite=settings.restore.overwrite,
        )

    @property
    def exclusions(self) -> set[str]:
        return self._builder.exclusions

    def classify(self) -> dict[Category, set[Path]]:
        """Enumerate the root and partition archivable paths by category."""
        with self._lock:
            return self._builder.classify()

    def inspect(self, archive_path: Path) -> SnapshotManifest:
        """Read the manifest of a snapshot archive."""
        return RestoreEngine(self.root, self.layout).inspect(Path(archive_path))

    async def snapshot(self, destination: Path | None = None) -> SnapshotResult:
        """
        Create a snapshot of the root.

        The returned path refers to a complete archive.

        Raises:
            BackupError: If the snapshot fails.
        """
        return await self._run(self._builder.build, destination)

    async def restore(self, archive_path: Path, overwrite: bool | None = None) -> RestoreResult:
        """
        Restore a snapshot onto the root.

        Raises:
            RestoreError: If the restore fails.
        """
        engine = RestoreEngine(
            self.root,
            self.layout,
            overwrite=self.overwrite if overwrite is None else overwrite,
        )
        return await self._run(engine.restore, Path(archive_path))

    async def purge(self) -> PurgeResult:
        """
        Delete the contents of the three category directories.

        The category directories themselves, the root and everything
        outside the categories are left in place. There is no confirmation
        step; callers must gate this.
        """
        return await self._run(self._purge)

    async def _run(self, func: Callable[..., T], *args) -> T:
        return await asyncio.to_thread(self._locked, func, *args)

    def _locked(self, func: Callable[..., T], *args) -> T:
        with self._lock:
            return func(*args)

    def _purge(self) -> PurgeResult:
        result = PurgeResult()
        for category in RESTORE_ORDER:
            directory = self.root / self.layout.directory(category)
            if not directory.is_dir() or directory.is_symlink():
                continue
            try:
                children = sorted(directory.iterdir())
            except OSError as e:
                logger.warning(f"Cannot list {directory}: {e}")
                result.failed.append(self.layout.directory(category))
                continue

            for child in children:
                relative = child.relative_to(self.root).as_posix()
                try:
                    if child.is_dir() and not child.is_symlink():
                        shutil.rmtree(child)
                    else:
                        os.unlink(child)
                except OSError as e:
                    logger.warning(f"Could not remove {relative}: {e}")
                    result.failed.append(relative)
                    continue
                result.removed.append(relative)

        logger.info(f"Purged {len(result.removed)} items from {self.root}")
        return result
