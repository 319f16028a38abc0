"""
Snapshot manifest.

The manifest is stored as ``manifest.json`` inside the outer archive. It
identifies the application the snapshot was taken from, records when it
was taken and how much payload it holds, and lists a SHA-256 checksum for
each inner archive so a restore can refuse a damaged snapshot before
touching the live tree.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sidebackup.identity import IdentityProvider

MANIFEST_FILE = "manifest.json"

# Bump when the manifest or archive layout changes incompatibly
MANIFEST_FORMAT_VERSION = 0


class ManifestError(Exception):
    """Raised when a manifest is missing, unreadable or from a newer format."""

    pass


@dataclass(frozen=True)
class SnapshotManifest:
    """
    Metadata captured once per snapshot.

    Attributes:
        name: Display name of the application.
        team: Team identifier of the application, or empty.
        bundle: Bundle identifier of the application.
        created_at: When the snapshot was taken (UTC).
        total_size: Sum of payload bytes of every packaged entry.
        format_version: Manifest format, see MANIFEST_FORMAT_VERSION.
        archives: Inner archive name -> {"sha256", "size", "entries"}.
    """

    name: str
    team: str
    bundle: str
    created_at: datetime
    total_size: int
    format_version: int = MANIFEST_FORMAT_VERSION
    archives: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert manifest to dictionary."""
        return {
            "format_version": self.format_version,
            "name": self.name,
            "team": self.team,
            "bundle": self.bundle,
            "created_at": self.created_at.isoformat(),
            "total_size": self.total_size,
            "archives": {name: dict(info) for name, info in self.archives.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SnapshotManifest:
        """
        Create manifest from dictionary.

        Raises:
            ManifestError: If the format version is missing, invalid or newer
                than this release understands, or a field has the wrong type.
        """
        version = data.get("format_version")
        if isinstance(version, bool) or not isinstance(version, int) or version < 0:
            raise ManifestError(f"Manifest has no valid format_version: {version!r}")
        if version > MANIFEST_FORMAT_VERSION:
            raise ManifestError(
                f"Manifest format {version} is newer than supported "
                f"format {MANIFEST_FORMAT_VERSION}"
            )

        try:
            created_at = datetime.fromisoformat(data.get("created_at", ""))
        except (TypeError, ValueError) as e:
            raise ManifestError(f"Invalid created_at: {data.get('created_at')!r}") from e
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)

        archives = data.get("archives") or {}
        if not isinstance(archives, dict):
            raise ManifestError("Manifest archives must be a mapping")
        for archive_name, details in archives.items():
            if not isinstance(details, dict):
                raise ManifestError(f"Manifest entry for {archive_name} must be a mapping")
            checksum = details.get("sha256")
            if checksum is not None and not isinstance(checksum, str):
                raise ManifestError(f"Manifest sha256 for {archive_name} must be a string")

        try:
            total_size = int(data.get("total_size", 0))
        except (TypeError, ValueError) as e:
            raise ManifestError(f"Invalid total_size: {data.get('total_size')!r}") from e

        return cls(
            name=str(data.get("name", "")),
            team=str(data.get("team", "")),
            bundle=str(data.get("bundle", "")),
            created_at=created_at,
            total_size=total_size,
            format_version=version,
            archives=archives,
        )

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> SnapshotManifest:
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ManifestError(f"Manifest is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ManifestError("Manifest must be a JSON object")
        return cls.from_dict(data)


def build_manifest(
    identity: IdentityProvider,
    total_size: int,
    archives: dict[str, dict[str, Any]],
    created_at: datetime | None = None,
) -> SnapshotManifest:
    """
    Construct the manifest for a new snapshot.

    Args:
        identity: Source of the name, team and bundle strings.
        total_size: Payload bytes packaged across all categories.
        archives: Per inner archive checksum, size and entry count.
        created_at: Snapshot time (default: now).
    """
    return SnapshotManifest(
        name=identity.display_name(),
        team=identity.team_id() or "",
        bundle=identity.bundle_id(),
        created_at=created_at or datetime.now(UTC),
        total_size=total_size,
        archives=archives,
    )


def compute_file_checksum(path: Path) -> str:
    """Compute SHA-256 checksum of a file."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(8192):
            hasher.update(chunk)
    return hasher.hexdigest()
