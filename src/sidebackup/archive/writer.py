"""
Streaming tar writer.

Serializes ArchiveEntry values onto an open binary stream using plain tar
framing: one 512-byte header per entry, file payloads padded with NULs to
the next block boundary, and two zero blocks marking the end of the
archive. Headers are produced by the standard library's tarfile in GNU
format, so names and link targets longer than 100 bytes are carried in
``././@LongLink`` records.

Absent Attributes:
    A missing timestamp is written as mtime 0. A missing mode is written
    as a pax extended header carrying the ``SIDEBACKUP.nomode`` record,
    with the kind's default mode in the header itself for other readers.

Usage:
    with open(path, "wb") as f:
        writer = ArchiveWriter(f)
        for entry in entries:
            writer.append(entry)
        writer.finalize()

A writer that raised while appending has produced an invalid archive. The
caller owns the destination and must delete it.
"""

from __future__ import annotations

import logging
import os
import tarfile
from pathlib import Path
from typing import BinaryIO

from sidebackup.archive.entry import ArchiveEntry, EntryKind
from sidebackup.archive.errors import InvalidStateError

logger = logging.getLogger(__name__)

BLOCK_SIZE = tarfile.BLOCKSIZE
END_OF_ARCHIVE = tarfile.NUL * BLOCK_SIZE * 2

# Pax record marking an entry written without permissions
NO_MODE_RECORD = "SIDEBACKUP.nomode"

# Header modes written when an entry carries no permissions
DEFAULT_MODES = {
    EntryKind.FILE: 0o644,
    EntryKind.DIRECTORY: 0o755,
    EntryKind.SYMLINK: 0o777,
}

_TAR_TYPES = {
    EntryKind.FILE: tarfile.REGTYPE,
    EntryKind.DIRECTORY: tarfile.DIRTYPE,
    EntryKind.SYMLINK: tarfile.SYMTYPE,
}

COPY_CHUNK_SIZE = 1024 * 1024


def padding_for(size: int) -> int:
    """Number of NUL bytes needed to round size up to a block boundary."""
    remainder = size % BLOCK_SIZE
    return BLOCK_SIZE - remainder if remainder else 0


class ArchiveWriter:
    """
    Append-only tar writer over a binary stream.

    The writer never closes the stream; it only writes to it. finalize()
    must be called exactly once, after the last entry.
    """

    def __init__(self, stream: BinaryIO, encoding: str = tarfile.ENCODING) -> None:
        """
        Initialize the writer.

        Args:
            stream: Writable binary stream positioned where the archive starts.
            encoding: Encoding used for names in headers.
        """
        self._stream = stream
        self._encoding = encoding
        self._finalized = False
        self.entries_written = 0
        self.bytes_written = 0

    @property
    def finalized(self) -> bool:
        return self._finalized

    def __enter__(self) -> ArchiveWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None and not self._finalized:
            self.finalize()

    def append(self, entry: ArchiveEntry) -> None:
        """
        Write one entry.

        Raises:
            InvalidStateError: If the archive has already been finalized.
            OSError: If the stream cannot be written.
        """
        self._check_open()
        info = self._header_for(entry.name, entry.kind, entry.permissions, entry.modified_at)
        if entry.kind is EntryKind.FILE:
            info.size = entry.size
        elif entry.kind is EntryKind.SYMLINK:
            info.linkname = entry.link_target or ""

        self._write(self._encode_header(info))
        if entry.kind is EntryKind.FILE:
            self._write(entry.payload or b"")
            self._write(tarfile.NUL * padding_for(entry.size))
        self.entries_written += 1

    def append_file(
        self,
        name: str,
        path: Path,
        permissions: int | None = None,
        modified_at: int | None = None,
    ) -> int:
        """
        Write a regular file from disk without loading it into memory.

        Args:
            name: Entry name inside the archive.
            path: File to copy.
            permissions: Mode bits to record (default: the file's own).
            modified_at: Timestamp to record (default: the file's own).

        Returns:
            Number of payload bytes written.

        Raises:
            InvalidStateError: If the archive has already been finalized.
            OSError: If the file cannot be read or changes size while copied.
        """
        self._check_open()
        with open(path, "rb") as source:
            st = os.fstat(source.fileno())
            info = self._header_for(
                name,
                EntryKind.FILE,
                permissions if permissions is not None else st.st_mode & 0o7777,
                modified_at if modified_at is not None else int(st.st_mtime),
            )
            info.size = st.st_size
            self._write(self._encode_header(info))

            copied = 0
            while copied < st.st_size:
                chunk = source.read(min(COPY_CHUNK_SIZE, st.st_size - copied))
                if not chunk:
                    break
                self._write(chunk)
                copied += len(chunk)

        if copied != st.st_size:
            raise OSError(f"{path} changed size while being archived ({copied} of {st.st_size} bytes)")

        self._write(tarfile.NUL * padding_for(copied))
        self.entries_written += 1
        return copied

    def finalize(self) -> None:
        """
        Write the end-of-archive marker.

        Raises:
            InvalidStateError: If called more than once.
        """
        self._check_open()
        self._write(END_OF_ARCHIVE)
        self._stream.flush()
        self._finalized = True
        logger.debug(f"Archive finalized: {self.entries_written} entries, {self.bytes_written:,} bytes")

    def _check_open(self) -> None:
        if self._finalized:
            raise InvalidStateError("Archive has already been finalized")

    def _header_for(
        self,
        name: str,
        kind: EntryKind,
        permissions: int | None,
        modified_at: int | None,
    ) -> tarfile.TarInfo:
        info = tarfile.TarInfo(name)
        info.type = _TAR_TYPES[kind]
        if permissions is None:
            info.mode = DEFAULT_MODES[kind]
            info.pax_headers = {NO_MODE_RECORD: "1"}
        else:
            info.mode = permissions
        info.mtime = modified_at if modified_at is not None else 0
        return info

    def _encode_header(self, info: tarfile.TarInfo) -> bytes:
        # Pax format is only needed to carry vendor records
        tar_format = tarfile.PAX_FORMAT if info.pax_headers else tarfile.GNU_FORMAT
        return info.tobuf(tar_format, self._encoding, "surrogateescape")

    def _write(self, data: bytes) -> None:
        if data:
            self._stream.write(data)
            self.bytes_written += len(data)
