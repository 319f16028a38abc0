"""
Identity of the application whose container is backed up.

The platform knows the application's display name, bundle and team
identifiers and where its shared group containers live. SideBackup never
queries the platform itself: it receives an IdentityProvider and only uses
it to fill in the snapshot manifest and for diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from sidebackup.config.settings import IdentityConfig


class IdentityProvider(Protocol):
    """Narrow view of the platform's application identity."""

    def display_name(self) -> str: ...

    def bundle_id(self) -> str: ...

    def team_id(self) -> str | None: ...

    def group_container(self, identifier: str) -> Path | None: ...


@dataclass
class StaticIdentityProvider:
    """IdentityProvider backed by fixed values, usually from configuration."""

    name: str = ""
    bundle: str = ""
    team: str | None = None
    group_containers: dict[str, Path] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: IdentityConfig) -> StaticIdentityProvider:
        return cls(
            name=config.name,
            bundle=config.bundle,
            team=config.team or None,
            group_containers={k: Path(v) for k, v in config.group_containers.items()},
        )

    def display_name(self) -> str:
        return self.name

    def bundle_id(self) -> str:
        return self.bundle

    def team_id(self) -> str | None:
        return self.team

    def group_container(self, identifier: str) -> Path | None:
        return self.group_containers.get(identifier)
