"""
In-memory representation of a single archive member.

An ArchiveEntry is a plain value: a name relative to the archive root, a
kind, optional attributes and either a payload (regular files) or a link
target (symbolic links). It knows how to capture itself from a live path
and how to materialize itself below a destination root.

Attribute Restoration:
    Only the attributes that are present are applied. An entry without
    permissions keeps whatever mode the filesystem assigns, and an entry
    without a timestamp keeps the time of the write.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath

from sidebackup.archive.errors import UnsafeEntryError, UnsupportedEntryError

logger = logging.getLogger(__name__)


class EntryKind(Enum):
    """Filesystem object kinds that can be archived."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


@dataclass(frozen=True)
class ArchiveEntry:
    """
    One archived filesystem object.

    Attributes:
        name: Forward-slash separated path relative to the archive root.
        kind: File, directory or symbolic link.
        permissions: POSIX mode bits, or None to leave permissions alone.
        modified_at: Modification time in whole seconds since the epoch,
            or None to leave the timestamp alone.
        link_target: Raw target of a symbolic link.
        payload: Contents of a regular file.
    """

    name: str
    kind: EntryKind
    permissions: int | None = None
    modified_at: int | None = None
    link_target: str | None = None
    payload: bytes | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Entry name must not be empty")
        if self.kind is EntryKind.FILE:
            if self.payload is None or self.link_target is not None:
                raise ValueError(f"File entry {self.name} needs a payload and no link target")
        elif self.kind is EntryKind.SYMLINK:
            if self.link_target is None or self.payload is not None:
                raise ValueError(f"Symlink entry {self.name} needs a link target and no payload")
        elif self.payload is not None or self.link_target is not None:
            raise ValueError(f"Directory entry {self.name} cannot carry a payload or link target")

    @property
    def size(self) -> int:
        """Payload size in bytes (0 for directories and symlinks)."""
        return len(self.payload) if self.payload is not None else 0

    @classmethod
    def from_path(cls, path: Path, root: Path) -> ArchiveEntry:
        """
        Capture a live filesystem object.

        Symbolic links are never followed: a link is archived as a link.

        Args:
            path: Object to capture. Must be below root.
            root: Directory the entry name is made relative to.

        Returns:
            ArchiveEntry describing the object.

        Raises:
            OSError: If the object disappears or cannot be read.
            UnsupportedEntryError: If the object is a FIFO, socket or device.
            ValueError: If path is not below root.
        """
        path = Path(path)
        name = path.relative_to(root).as_posix()
        st = os.lstat(path)
        mode = st.st_mode
        modified_at = int(st.st_mtime)

        if stat.S_ISDIR(mode):
            return cls(name, EntryKind.DIRECTORY, stat.S_IMODE(mode), modified_at)
        if stat.S_ISLNK(mode):
            # Link permissions cannot be set on most platforms
            return cls(
                name,
                EntryKind.SYMLINK,
                None,
                modified_at,
                link_target=os.readlink(path),
            )
        if stat.S_ISREG(mode):
            with open(path, "rb") as f:
                payload = f.read()
            return cls(name, EntryKind.FILE, stat.S_IMODE(mode), modified_at, payload=payload)

        raise UnsupportedEntryError(f"Unsupported file type for {name} (mode {mode:o})")

    def destination(self, root: Path) -> Path:
        """
        Resolve the entry name below root.

        Existing directories between root and the entry must not be
        symbolic links.

        Raises:
            UnsafeEntryError: If the name is absolute, walks out of root or
                passes through a symbolic link below root.
        """
        relative = PurePosixPath(self.name)
        if relative.is_absolute() or ".." in relative.parts:
            raise UnsafeEntryError(f"Refusing to write entry outside destination: {self.name}")
        parts = [p for p in relative.parts if p not in ("", ".")]
        if not parts:
            raise UnsafeEntryError(f"Entry name does not name a path: {self.name!r}")

        parent = Path(root)
        for part in parts[:-1]:
            parent = parent / part
            if parent.is_symlink():
                raise UnsafeEntryError(
                    f"Refusing to write {self.name} through symbolic link {parent}"
                )
        return Path(root, *parts)

    def apply(
        self,
        root: Path,
        overwrite: bool = True,
        defer_directory_attributes: bool = False,
    ) -> bool:
        """
        Materialize the entry below root.

        Regular files are written to a temporary file in the destination
        directory and renamed into place, so a reader never observes a
        half-written file.

        Args:
            root: Destination root directory.
            overwrite: Replace objects already present at the destination.
            defer_directory_attributes: Skip attribute restoration for
                directories; the caller applies them once the directory's
                contents have been written.

        Returns:
            True if the entry was written, False if an existing object was
            kept because overwrite is disabled.

        Raises:
            OSError: If the object cannot be created.
            UnsafeEntryError: If the name escapes root.
        """
        target = self.destination(root)

        if self.kind is EntryKind.DIRECTORY:
            if os.path.lexists(target) and (target.is_symlink() or not target.is_dir()):
                if not overwrite:
                    return False
                _remove_path(target)
            target.mkdir(parents=True, exist_ok=True)
            if not defer_directory_attributes:
                self.apply_attributes(target)
            return True

        target.parent.mkdir(parents=True, exist_ok=True)

        if os.path.lexists(target):
            if not overwrite:
                logger.debug(f"Keeping existing {target}")
                return False
            # A regular file is replaced atomically by the rename below
            if not (self.kind is EntryKind.FILE and target.is_file() and not target.is_symlink()):
                _remove_path(target)

        if self.kind is EntryKind.FILE:
            _write_atomic(target, self.payload or b"")
        else:
            os.symlink(self.link_target, target)

        self.apply_attributes(target)
        return True

    def apply_attributes(self, path: Path) -> None:
        """Apply the permissions and timestamp that are present."""
        if self.kind is EntryKind.SYMLINK:
            if self.modified_at is not None and os.utime in os.supports_follow_symlinks:
                os.utime(path, (self.modified_at, self.modified_at), follow_symlinks=False)
            return

        if self.permissions is not None:
            os.chmod(path, self.permissions)
        if self.modified_at is not None:
            os.utime(path, (self.modified_at, self.modified_at))


def _remove_path(path: Path) -> None:
    """Remove a file, symlink or directory tree."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _write_atomic(path: Path, data: bytes) -> None:
    """
    Write data to path via temp file + rename.

    The temp file is created with mode 0666 less the umask, as a plain
    open() would.
    """
    temp_path = path.parent / f".{path.name}.{os.urandom(4).hex()}"
    temp_fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o666)
    try:
        with os.fdopen(temp_fd, "wb") as f:
            f.write(data)
        os.replace(temp_path, path)
    except Exception:
        # Clean up temp file on error
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
