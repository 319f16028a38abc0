"""
Command-line interface for SideBackup.

Provides commands to snapshot a container root, restore a snapshot onto
it, inspect snapshots, show how the root is classified, and purge the
backed-up subtrees.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

from sidebackup import __version__
from sidebackup.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
)

# Set up logging
logger = logging.getLogger(__name__)

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_verbose(message: str, level: int = 1) -> None:
    """Print a verbose message only if verbosity is high enough."""
    if _verbose_level >= level and not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def format_size(size_bytes: int) -> str:
    return f"{size_bytes:,} bytes ({size_bytes / 1024 / 1024:.2f} MB)"


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for SideBackup CLI."""
    parser = argparse.ArgumentParser(
        prog="sidebackup",
        description="Snapshot and restore an application container",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"sidebackup {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.sidebackup/config.yaml)",
    )

    parser.add_argument(
        "--root",
        metavar="PATH",
        help="Container root directory (overrides the configured root)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show configuration and container information",
        description="Display version, configuration, layout and identity.",
    )
    info_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    info_parser.set_defaults(func=cmd_info)

    # snapshot command
    snapshot_parser = subparsers.add_parser(
        "snapshot",
        help="Create a snapshot of the container",
        description="Package Documents, Library and the scratch area into one archive.",
    )
    snapshot_parser.add_argument(
        "--output",
        "-o",
        metavar="PATH",
        help="Snapshot file to write (default: <root>/tmp/.sidebackup.tar)",
    )
    snapshot_parser.set_defaults(func=cmd_snapshot)

    # restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore a snapshot onto the container",
        description="Unpack a snapshot archive onto the container root.",
    )
    restore_parser.add_argument(
        "snapshot_file",
        metavar="FILE",
        help="Path to snapshot archive (.tar)",
    )
    restore_parser.add_argument(
        "--no-overwrite",
        action="store_true",
        dest="no_overwrite",
        help="Keep objects that already exist in the container",
    )
    restore_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompt",
    )
    restore_parser.set_defaults(func=cmd_restore)

    # inspect command
    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Show the manifest of a snapshot",
        description="Read a snapshot's manifest without unpacking it.",
    )
    inspect_parser.add_argument(
        "snapshot_file",
        metavar="FILE",
        help="Path to snapshot archive (.tar)",
    )
    inspect_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    inspect_parser.set_defaults(func=cmd_inspect)

    # classify command
    classify_parser = subparsers.add_parser(
        "classify",
        help="Show which files a snapshot would contain",
        description="List archivable paths of the container by category.",
    )
    classify_parser.add_argument(
        "--format",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table)",
    )
    classify_parser.set_defaults(func=cmd_classify)

    # purge command
    purge_parser = subparsers.add_parser(
        "purge",
        help="Delete the contents of Documents, Library and the scratch area",
        description="Remove everything below the three category directories.",
    )
    purge_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompt",
    )
    purge_parser.set_defaults(func=cmd_purge)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_settings(args: argparse.Namespace, require_root: bool = True) -> Settings:
    """
    Load configuration and apply command-line overrides.

    Raises:
        ConfigurationError: If the configuration is invalid or no usable
            root directory is configured.
    """
    config_path = Path(args.config) if args.config else None
    settings = load_config(config_path)

    if args.root:
        settings.root = args.root

    # -v and -q take precedence over the configured level
    if not args.verbose and not args.quiet:
        logging.getLogger().setLevel(settings.log_level)

    if require_root:
        if not settings.root:
            raise ConfigurationError(
                "No container root configured. Use --root or set sidebackup.root in the config file"
            )
        root = Path(settings.root).expanduser()
        if not root.is_dir():
            raise ConfigurationError(f"Container root is not a directory: {root}")

    return settings


def create_manager(settings: Settings):
    """Build a ContainerManager for the configured root."""
    from sidebackup.backup import ContainerManager

    return ContainerManager.from_settings(settings)


def confirm(prompt: str) -> bool:
    response = input(f"{prompt} [y/N]: ").strip().lower()
    return response in ("y", "yes")


def cmd_info(args: argparse.Namespace) -> int:
    """Show configuration and container information."""
    import platform as platform_module

    from sidebackup.backup import RESTORE_ORDER, TreeLayout
    from sidebackup.identity import StaticIdentityProvider

    settings = load_settings(args, require_root=False)
    layout = TreeLayout.from_config(settings.layout)
    identity = StaticIdentityProvider.from_config(settings.identity)

    info: dict[str, Any] = {
        "version": __version__,
        "python_version": platform_module.python_version(),
        "platform": platform_module.platform(),
        "config_file": str(Path(args.config) if args.config else get_config_path()),
        "root": settings.root,
        "layout": {category.value: layout.directory(category) for category in RESTORE_ORDER},
        "staging": layout.staging_prefix,
        "exclude": sorted({layout.staging_prefix, *settings.snapshot.exclude}),
        "identity": {
            "name": identity.display_name(),
            "team": identity.team_id(),
            "bundle": identity.bundle_id(),
        },
        "group_containers": {},
    }
    for group in sorted(identity.group_containers):
        container = identity.group_container(group)
        info["group_containers"][group] = str(container) if container else None

    if args.json:
        output(json.dumps(info, indent=2), force=True)
        return 0

    output("SideBackup Information")
    output("=" * 50)
    output()
    output(f"Version: {info['version']}")
    output(f"Python: {info['python_version']}")
    output(f"Platform: {info['platform']}")
    output(f"Config file: {info['config_file']}")
    output(f"Container root: {info['root'] or '(not configured)'}")
    output()
    output("Layout:")
    for name, directory in info["layout"].items():
        output(f"  {name}: {directory}/")
    output(f"  staging: {info['staging']}")
    output()
    output("Identity:")
    output(f"  Name: {info['identity']['name'] or '-'}")
    output(f"  Team: {info['identity']['team'] or '-'}")
    output(f"  Bundle: {info['identity']['bundle'] or '-'}")
    if info["group_containers"]:
        output()
        output("Group containers:")
        for group, container in info["group_containers"].items():
            output(f"  {group}: {container}")
    return 0


def cmd_snapshot(args: argparse.Namespace) -> int:
    """Create a snapshot of the container."""
    from sidebackup.backup import BackupError

    settings = load_settings(args)
    manager = create_manager(settings)

    output("SideBackup Snapshot")
    output("=" * 50)
    output()
    output(f"Container root: {manager.root}")
    output()

    destination = Path(args.output).expanduser() if args.output else None

    output("Creating snapshot...")
    try:
        result = asyncio.run(manager.snapshot(destination))
    except BackupError as e:
        output()
        output_error(f"Snapshot failed: {e}")
        return 1

    output()
    output("Snapshot created successfully!")
    output()
    output(f"  File: {result.path}")
    output(f"  Size: {format_size(result.size_bytes)}")
    output(f"  Payload: {format_size(result.manifest.total_size)}")
    for category, stats in result.categories.items():
        output(f"    - {category.value}: {stats.entries} entries")
    if result.skipped:
        output(f"  Skipped: {len(result.skipped)} unreadable or unsupported entries")
        for name in result.skipped:
            output_verbose(f"    {name}")
    output()
    output("To restore from this snapshot, run:")
    output(f"  sidebackup --root {manager.root} restore {result.path}")
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a snapshot onto the container."""
    from sidebackup.backup import ManifestError, RestoreError
    from sidebackup.archive import CorruptArchiveError

    snapshot_path = Path(args.snapshot_file).expanduser()
    if not snapshot_path.is_file():
        output_error(f"Error: Snapshot file not found: {snapshot_path}")
        return 1

    settings = load_settings(args)
    manager = create_manager(settings)

    output("SideBackup Restore")
    output("=" * 50)
    output()
    output(f"Snapshot file: {snapshot_path}")
    output(f"Container root: {manager.root}")
    output()

    try:
        manifest = manager.inspect(snapshot_path)
    except (ManifestError, CorruptArchiveError, OSError) as e:
        output_error(f"Cannot read snapshot: {e}")
        return 1

    _print_manifest(manifest)

    if not args.force:
        output("WARNING: This will overwrite files in the container.")
        output()
        if not confirm("Proceed with restore?"):
            output("Restore cancelled.")
            return 0

    output()
    output("Restoring...")
    try:
        result = asyncio.run(manager.restore(snapshot_path, overwrite=not args.no_overwrite))
    except RestoreError as e:
        output()
        output_error(f"Restore failed: {e}")
        output_error("The container may be partially restored.")
        return 1

    output()
    output("Restore completed successfully!")
    output()
    for category, count in result.applied.items():
        output(f"  {category.value}: {count} entries")
    if result.kept:
        output(f"  Kept existing: {result.kept}")
    if result.skipped:
        output(f"  Skipped: {len(result.skipped)} entries (see log)")
        for name in result.skipped:
            output_verbose(f"    {name}")
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    """Show the manifest of a snapshot."""
    from sidebackup.archive import CorruptArchiveError
    from sidebackup.backup import ManifestError, RestoreEngine

    snapshot_path = Path(args.snapshot_file).expanduser()
    if not snapshot_path.is_file():
        output_error(f"Error: Snapshot file not found: {snapshot_path}")
        return 1

    try:
        manifest = RestoreEngine(Path.cwd()).inspect(snapshot_path)
    except (ManifestError, CorruptArchiveError, OSError) as e:
        output_error(f"Cannot read snapshot: {e}")
        return 1

    if args.json:
        output(json.dumps(manifest.to_dict(), indent=2), force=True)
        return 0

    _print_manifest(manifest)
    return 0


def cmd_classify(args: argparse.Namespace) -> int:
    """List archivable paths by category."""
    settings = load_settings(args)
    manager = create_manager(settings)

    groups = manager.classify()
    listing = {
        category.value: sorted(path.relative_to(manager.root).as_posix() for path in paths)
        for category, paths in groups.items()
    }

    if args.format == "json":
        output(json.dumps(listing, indent=2), force=True)
        return 0

    output(f"Container root: {manager.root}")
    output(f"Excluded: {', '.join(sorted(manager.exclusions))}")
    output()
    output(f"{'Category':<12} {'Entries':>8}")
    output("-" * 21)
    for category, names in listing.items():
        output(f"{category:<12} {len(names):>8}")
    for category, names in listing.items():
        if names:
            output_verbose("")
            output_verbose(f"{category}:")
            for name in names:
                output_verbose(f"  {name}")
    return 0


def cmd_purge(args: argparse.Namespace) -> int:
    """Delete the contents of the category directories."""
    settings = load_settings(args)
    manager = create_manager(settings)

    output("SideBackup Purge")
    output("=" * 50)
    output()
    output(f"Container root: {manager.root}")
    output()

    if not args.force:
        output("This deletes everything in Documents, Library and the scratch area.")
        output("This action cannot be undone.")
        if not confirm("Proceed with purge?"):
            output("Purge cancelled.")
            return 0

    result = asyncio.run(manager.purge())

    output()
    output(f"  Removed: {len(result.removed)} items")
    if result.failed:
        output_error(f"Could not remove {len(result.failed)} items:")
        for name in result.failed:
            output_error(f"  {name}")
        return 1
    return 0


def _print_manifest(manifest) -> None:
    output("Snapshot information:")
    output(f"  Created: {manifest.created_at.isoformat()}")
    output(f"  Format version: {manifest.format_version}")
    if manifest.name:
        output(f"  Name: {manifest.name}")
    if manifest.team:
        output(f"  Team: {manifest.team}")
    if manifest.bundle:
        output(f"  Bundle: {manifest.bundle}")
    output(f"  Payload: {format_size(manifest.total_size)}")
    for name, info in manifest.archives.items():
        output(f"    - {name}: {info.get('entries', '?')} entries")
    output()


def main() -> NoReturn:
    """Main entry point for SideBackup CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
