"""
Staging directory helpers shared by snapshot and restore.

The staging directory is private to one operation: it is emptied when the
operation starts and removed when it ends, whatever the outcome.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def reset_directory(path: Path) -> None:
    """Create an empty directory, clearing leftovers of an interrupted run."""
    if os.path.lexists(path):
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    path.mkdir(parents=True)


def remove_directory(path: Path) -> None:
    """Best-effort removal; failures are logged, never raised."""
    try:
        if os.path.lexists(path):
            shutil.rmtree(path)
    except OSError as e:
        logger.warning(f"Could not remove staging directory {path}: {e}")


def publish(source: Path, destination: Path) -> None:
    """Move a finished file into place without exposing a partial file."""
    try:
        os.replace(source, destination)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    # Different filesystem: copy next to the destination, then rename
    partial = destination.with_name(f".{destination.name}.partial")
    try:
        shutil.copyfile(source, partial)
        os.replace(partial, destination)
    except Exception:
        if os.path.lexists(partial):
            os.unlink(partial)
        raise
