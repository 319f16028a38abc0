"""
Plain tar archive codec.

This module provides a streaming writer and reader for tar framing
(512-byte headers, block-padded payloads, two zero blocks at the end)
and the ArchiveEntry value they exchange.

Usage:
    from sidebackup.archive import ArchiveReader, ArchiveWriter

    with open("out.tar", "wb") as f:
        writer = ArchiveWriter(f)
        writer.append(entry)
        writer.finalize()

    with open("out.tar", "rb") as f:
        for entry in ArchiveReader(f):
            entry.apply(destination)
"""

from sidebackup.archive.entry import ArchiveEntry, EntryKind
from sidebackup.archive.errors import (
    ArchiveError,
    CorruptArchiveError,
    InvalidStateError,
    UnsafeEntryError,
    UnsupportedEntryError,
)
from sidebackup.archive.reader import ArchiveReader
from sidebackup.archive.writer import BLOCK_SIZE, ArchiveWriter

__all__ = [
    # Model
    "ArchiveEntry",
    "EntryKind",
    # Codec
    "ArchiveReader",
    "ArchiveWriter",
    "BLOCK_SIZE",
    # Errors
    "ArchiveError",
    "CorruptArchiveError",
    "InvalidStateError",
    "UnsafeEntryError",
    "UnsupportedEntryError",
]
