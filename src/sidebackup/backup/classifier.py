"""
Tree enumeration and category classification.

A container root holds three backed-up subtrees:

    <root>/
        Documents/      # persistent user documents
        Library/        # support data, preferences, caches
        tmp/            # scratch area (also hosts the staging directory)

Every archivable object below root is assigned to exactly one category by
its root-relative path prefix. Objects outside the three subtrees are never
snapshotted.

Archivability:
    An object is archivable when the current process can read it, write it
    and delete it (its parent directory is writable). That is the minimum
    needed to capture it now and overwrite it on a later restore. Objects
    that fail the check are skipped silently: a snapshot is best effort.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath

from sidebackup.config.settings import ConfigurationError, LayoutConfig

logger = logging.getLogger(__name__)


class Category(Enum):
    """Backed-up subtrees, in restore order."""

    DOCUMENTS = "documents"
    LIBRARY = "library"
    SCRATCH = "scratch"

    @property
    def archive_name(self) -> str:
        """Name of the inner archive holding this category."""
        return _ARCHIVE_NAMES[self]


_ARCHIVE_NAMES = {
    Category.DOCUMENTS: "doc.tar",
    Category.LIBRARY: "lib.tar",
    Category.SCRATCH: "tmp.tar",
}

# Fixed order inner archives are unpacked in
RESTORE_ORDER = (Category.DOCUMENTS, Category.LIBRARY, Category.SCRATCH)


@dataclass(frozen=True)
class TreeLayout:
    """
    Directory names of the three categories below the root.

    Category directories must be disjoint: equal or nested names would let
    one path match two categories, so they are rejected rather than
    resolved by precedence.
    """

    documents: str = "Documents"
    library: str = "Library"
    scratch: str = "tmp"
    staging: str = ".sidebackup"

    def __post_init__(self) -> None:
        dirs = {}
        for category in Category:
            raw = getattr(self, category.value)
            relative = PurePosixPath(raw)
            if not raw or raw.strip() in ("", ".") or relative.is_absolute() or ".." in relative.parts:
                raise ConfigurationError(
                    f"Invalid {category.value} directory: {raw!r}. "
                    "Must be a relative path below the root"
                )
            dirs[category] = relative

        categories = list(dirs)
        for i, first in enumerate(categories):
            for second in categories[i + 1:]:
                a, b = dirs[first], dirs[second]
                if a == b or a in b.parents or b in a.parents:
                    raise ConfigurationError(
                        f"Category directories overlap: {first.value}={a} and {second.value}={b}"
                    )

        if not self.staging or "/" in self.staging or self.staging in (".", ".."):
            raise ConfigurationError(f"Invalid staging name: {self.staging!r}")

    @classmethod
    def from_config(cls, config: LayoutConfig) -> TreeLayout:
        return cls(
            documents=config.documents,
            library=config.library,
            scratch=config.scratch,
            staging=config.staging,
        )

    def directory(self, category: Category) -> str:
        """Root-relative POSIX directory of a category."""
        return PurePosixPath(getattr(self, category.value)).as_posix()

    def category_of(self, relative_path: str) -> Category | None:
        """
        Return the category a root-relative path belongs to.

        The category directory itself does not belong to its category; only
        objects strictly below it do.
        """
        for category in Category:
            if relative_path.startswith(self.directory(category) + "/"):
                return category
        return None

    @property
    def staging_prefix(self) -> str:
        """Root-relative prefix shared by the staging directory and default output."""
        return f"{self.directory(Category.SCRATCH)}/{self.staging}"

    def staging_dir(self, root: Path) -> Path:
        return Path(root, self.staging_prefix)

    def default_output(self, root: Path) -> Path:
        return Path(root, f"{self.staging_prefix}.tar")


def is_archivable(path: Path) -> bool:
    """
    Check that path can be read, written and deleted by this process.

    Symbolic links are checked themselves, not their targets, where the
    platform allows it.
    """
    kwargs = {"follow_symlinks": False} if os.access in os.supports_follow_symlinks else {}
    if not os.access(path, os.R_OK | os.W_OK, **kwargs):
        return False

    parent = Path(path).parent
    # Deleting requires write and search permission on the parent
    return os.access(parent, os.W_OK | os.X_OK)


def enumerate_tree(root: Path, exclude: Iterable[str] = ()) -> set[Path]:
    """
    Walk root and collect archivable objects.

    Args:
        root: Directory to walk. Symbolic links are not followed.
        exclude: Substrings; any object whose root-relative POSIX path
            contains one of them is skipped.

    Returns:
        Set of absolute paths of files, directories and symlinks.
    """
    root = Path(root)
    patterns = tuple(p for p in exclude if p)
    found: set[Path] = set()

    def _on_error(error: OSError) -> None:
        logger.debug(f"Skipping unreadable directory: {error}")

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        current = Path(dirpath)
        pruned = []
        for name in dirnames + filenames:
            path = current / name
            relative = path.relative_to(root).as_posix()
            if any(pattern in relative for pattern in patterns):
                logger.debug(f"Excluded: {relative}")
                pruned.append(name)
                continue
            if not is_archivable(path):
                logger.debug(f"Not archivable: {relative}")
                pruned.append(name)
                continue
            found.add(path)

        # Nothing below an excluded or read-only directory is archivable
        dirnames[:] = [d for d in dirnames if d not in pruned]

    return found


def classify(paths: Iterable[Path], root: Path, layout: TreeLayout) -> dict[Category, set[Path]]:
    """
    Partition paths by category.

    Paths outside every category directory are dropped.

    Returns:
        Mapping with one (possibly empty) set per category.
    """
    root = Path(root)
    result: dict[Category, set[Path]] = {category: set() for category in Category}
    for path in paths:
        try:
            relative = Path(path).relative_to(root).as_posix()
        except ValueError:
            continue
        category = layout.category_of(relative)
        if category is not None:
            result[category].add(Path(path))
    return result
