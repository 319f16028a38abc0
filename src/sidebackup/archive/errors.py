"""
Exceptions raised by the tar archive codec.

Filesystem failures are not wrapped: they surface as the standard
library's OSError so callers can tell a broken disk from a broken archive.
"""


class ArchiveError(Exception):
    """Base exception for archive codec errors."""

    pass


class CorruptArchiveError(ArchiveError):
    """Raised when tar framing cannot be decoded (bad checksum, truncation)."""

    pass


class InvalidStateError(ArchiveError):
    """Raised when a writer or reader is used after it has been closed off."""

    pass


class UnsupportedEntryError(ArchiveError):
    """Raised for filesystem objects that are not files, directories or symlinks."""

    pass


class UnsafeEntryError(ArchiveError):
    """Raised when an entry name would resolve outside its destination root."""

    pass
