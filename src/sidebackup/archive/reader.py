"""
Streaming tar reader.

Decodes a tar byte stream into ArchiveEntry values one header at a time.
The reader is forward-only: it never seeks, holds at most one payload in
memory, and cannot be restarted. It performs no filesystem side effects.

Framing Rules:
    - A zero block, or a clean end of stream on a header boundary, ends
      the archive. Archives missing their trailing padding are accepted.
    - A bad checksum, a short header block or a short payload raises
      CorruptArchiveError. The reader does not try to resynchronize; every
      later call raises InvalidStateError.
    - Hard links, devices and FIFOs are decoded and skipped with a warning.
    - GNU long name/link records and pax extended headers are honoured.
      An entry whose pax header carries SIDEBACKUP.nomode decodes
      without permissions.
"""

from __future__ import annotations

import logging
import tarfile
from collections.abc import Callable, Iterator
from typing import BinaryIO

from sidebackup.archive.entry import ArchiveEntry, EntryKind
from sidebackup.archive.errors import CorruptArchiveError, InvalidStateError
from sidebackup.archive.writer import BLOCK_SIZE, NO_MODE_RECORD, padding_for

logger = logging.getLogger(__name__)

_FILE_TYPES = {tarfile.REGTYPE, tarfile.AREGTYPE, tarfile.CONTTYPE}
_SKIPPED_TYPES = {
    tarfile.LNKTYPE: "hard link",
    tarfile.CHRTYPE: "character device",
    tarfile.BLKTYPE: "block device",
    tarfile.FIFOTYPE: "fifo",
    tarfile.GNUTYPE_SPARSE: "sparse file",
}


class ArchiveReader:
    """
    Pull-based tar decoder.

    Usage:
        reader = ArchiveReader(stream)
        for entry in reader:
            ...

        # or, with early termination
        reader.process(lambda entry: entry.name == "manifest.json")
    """

    def __init__(self, stream: BinaryIO, encoding: str = tarfile.ENCODING) -> None:
        self._stream = stream
        self._encoding = encoding
        self._offset = 0
        self._finished = False
        self._failed = False
        self.entries_read = 0

    @property
    def finished(self) -> bool:
        return self._finished

    def __iter__(self) -> Iterator[ArchiveEntry]:
        while True:
            entry = self.next_entry()
            if entry is None:
                return
            yield entry

    def process(self, callback: Callable[[ArchiveEntry], bool]) -> int:
        """
        Feed entries to callback until it returns True or the archive ends.

        Args:
            callback: Called once per entry; returning True stops iteration.

        Returns:
            Number of entries passed to callback.
        """
        seen = 0
        while True:
            entry = self.next_entry()
            if entry is None:
                return seen
            seen += 1
            if callback(entry):
                return seen

    def next_entry(self) -> ArchiveEntry | None:
        """
        Decode the next entry.

        Returns:
            The next ArchiveEntry, or None once the end of the archive is reached.

        Raises:
            CorruptArchiveError: If the framing is malformed or truncated.
            InvalidStateError: If a previous call failed.
        """
        if self._failed:
            raise InvalidStateError("Reader stopped after a corrupt archive error")
        if self._finished:
            return None

        try:
            return self._decode_next()
        except CorruptArchiveError:
            self._failed = True
            raise

    def _decode_next(self) -> ArchiveEntry | None:
        long_name: str | None = None
        long_link: str | None = None
        pax: dict[str, str] = {}

        while True:
            header_offset = self._offset
            block = self._read_exact(BLOCK_SIZE)
            if not block or block.count(tarfile.NUL) == BLOCK_SIZE:
                if long_name is not None or long_link is not None or pax:
                    raise CorruptArchiveError(
                        f"Archive ends after an extended header at offset {header_offset}"
                    )
                self._finished = True
                return None
            if len(block) < BLOCK_SIZE:
                raise CorruptArchiveError(
                    f"Truncated header at offset {header_offset} ({len(block)} bytes)"
                )

            try:
                info = tarfile.TarInfo.frombuf(block, self._encoding, "surrogateescape")
            except tarfile.HeaderError as e:
                raise CorruptArchiveError(f"Malformed header at offset {header_offset}: {e}") from e

            if info.type == tarfile.GNUTYPE_LONGNAME:
                long_name = self._decode_string(self._read_payload(info.size, info.name))
                continue
            if info.type == tarfile.GNUTYPE_LONGLINK:
                long_link = self._decode_string(self._read_payload(info.size, info.name))
                continue
            if info.type == tarfile.XHDTYPE:
                pax.update(self._parse_pax(self._read_payload(info.size, info.name), header_offset))
                continue
            if info.type == tarfile.XGLTYPE:
                self._read_payload(info.size, info.name)
                continue

            name = pax.get("path") or long_name or info.name
            name = name.rstrip("/") if len(name) > 1 else name
            if not name:
                raise CorruptArchiveError(f"Header at offset {header_offset} has an empty name")
            mtime = self._pax_mtime(pax, info.mtime)
            mode = None if pax.get(NO_MODE_RECORD) == "1" else info.mode & 0o7777

            if info.type in _FILE_TYPES:
                payload = self._read_payload(info.size, name)
                entry = ArchiveEntry(
                    name, EntryKind.FILE, mode, mtime, payload=payload
                )
            elif info.type == tarfile.DIRTYPE:
                self._read_payload(info.size, name)
                entry = ArchiveEntry(name, EntryKind.DIRECTORY, mode, mtime)
            elif info.type == tarfile.SYMTYPE:
                target = pax.get("linkpath") or long_link or info.linkname
                entry = ArchiveEntry(
                    name, EntryKind.SYMLINK, mode, mtime, link_target=target
                )
            else:
                kind = _SKIPPED_TYPES.get(info.type, f"type {info.type!r}")
                logger.warning(f"Skipping entry of unsupported kind ({kind}): {name}")
                self._read_payload(info.size, name)
                long_name = long_link = None
                pax = {}
                continue

            self.entries_read += 1
            return entry

    def _read_exact(self, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        data = b"".join(chunks)
        self._offset += len(data)
        return data

    def _read_payload(self, size: int, name: str) -> bytes:
        data = self._read_exact(size)
        if len(data) != size:
            raise CorruptArchiveError(
                f"Truncated payload for {name}: expected {size} bytes, got {len(data)}"
            )
        padding = padding_for(size)
        if padding and len(self._read_exact(padding)) != padding:
            raise CorruptArchiveError(f"Truncated block padding after {name}")
        return data

    def _decode_string(self, data: bytes) -> str:
        return data.split(tarfile.NUL, 1)[0].decode(self._encoding, "surrogateescape")

    def _parse_pax(self, data: bytes, offset: int) -> dict[str, str]:
        """Parse '<length> <key>=<value>\\n' records."""
        records: dict[str, str] = {}
        pos = 0
        while pos < len(data) and data[pos:pos + 1] != tarfile.NUL:
            space = data.find(b" ", pos)
            if space < 0:
                raise CorruptArchiveError(f"Malformed pax header at offset {offset}")
            try:
                length = int(data[pos:space])
            except ValueError as e:
                raise CorruptArchiveError(f"Malformed pax header at offset {offset}") from e
            record = data[space + 1:pos + length - 1]
            if length <= 0 or b"=" not in record:
                raise CorruptArchiveError(f"Malformed pax record at offset {offset}")
            key, value = record.split(b"=", 1)
            records[key.decode("utf-8", "surrogateescape")] = value.decode(
                "utf-8", "surrogateescape"
            )
            pos += length
        return records

    @staticmethod
    def _pax_mtime(pax: dict[str, str], header_mtime: int) -> int | None:
        mtime = header_mtime
        if "mtime" in pax:
            try:
                mtime = int(float(pax["mtime"]))
            except ValueError:
                logger.warning(f"Ignoring invalid pax mtime: {pax['mtime']}")
        # A zero timestamp is how absent times are written
        return int(mtime) or None
