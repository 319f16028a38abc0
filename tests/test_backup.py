"""
Tests for snapshot and restore.

Tests cover:
- SnapshotManifest serialization and version checks
- SnapshotBuilder archive layout, exclusions and failure cleanup
- RestoreEngine round trip, idempotence and overwrite policy
- Corrupt and tampered snapshots
"""

import hashlib
import io
import json
import os
import shutil
import stat
import tempfile
import unittest
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

from sidebackup.archive import (
    BLOCK_SIZE,
    ArchiveEntry,
    ArchiveReader,
    ArchiveWriter,
    EntryKind,
)
from sidebackup.backup import (
    MANIFEST_FILE,
    MANIFEST_FORMAT_VERSION,
    BackupError,
    Category,
    ManifestError,
    RestoreEngine,
    RestoreError,
    SnapshotBuilder,
    SnapshotManifest,
    TreeLayout,
    build_manifest,
    enumerate_tree,
)
from sidebackup.identity import StaticIdentityProvider

FIXED_TIME = 1700000000


def build_tree(root: Path) -> None:
    """Create a container tree with fixed modes and timestamps."""
    files = {
        "Documents/note.txt": (b"0123456789", 0o644),
        "Documents/projects/plan.md": (b"# Plan\n", 0o600),
        "Documents/projects/empty.txt": (b"", 0o644),
        "Library/Preferences/app.plist": (b"<plist/>" * 200, 0o644),
        "tmp/work/scratch.bin": (bytes(range(256)) * 3, 0o640),
    }
    for name, (payload, mode) in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        os.chmod(path, mode)
        os.utime(path, (FIXED_TIME, FIXED_TIME))

    (root / "Library" / "Caches").mkdir(parents=True)
    os.symlink("note.txt", root / "Documents" / "latest")
    (root / "Outside").mkdir()
    (root / "Outside" / "ignored.txt").write_text("not in any category")

    for name in ("Documents/projects", "Library/Caches", "Library/Preferences", "tmp/work"):
        os.utime(root / name, (FIXED_TIME - 60, FIXED_TIME - 60))


def tree_state(root: Path, layout: TreeLayout | None = None) -> dict:
    """Describe every object below the category directories."""
    layout = layout or TreeLayout()
    state = {}
    for path in enumerate_tree(root, {layout.staging_prefix}):
        relative = path.relative_to(root).as_posix()
        if layout.category_of(relative) is None:
            continue
        st = os.lstat(path)
        if stat.S_ISLNK(st.st_mode):
            state[relative] = ("symlink", os.readlink(path))
        elif stat.S_ISDIR(st.st_mode):
            state[relative] = ("directory", stat.S_IMODE(st.st_mode), int(st.st_mtime))
        else:
            state[relative] = (
                "file",
                path.read_bytes(),
                stat.S_IMODE(st.st_mode),
                int(st.st_mtime),
            )
    return state


def read_outer(path: Path) -> dict[str, bytes]:
    """Return the members of an outer archive by name."""
    with open(path, "rb") as f:
        return {entry.name: entry.payload for entry in ArchiveReader(f)}


def write_outer(path: Path, members: dict[str, bytes]) -> None:
    with open(path, "wb") as f:
        writer = ArchiveWriter(f)
        for name, payload in members.items():
            writer.append(ArchiveEntry(name, EntryKind.FILE, 0o644, FIXED_TIME, payload=payload))
        writer.finalize()


def rewrite_manifest(members: dict[str, bytes], **changes) -> None:
    data = json.loads(members[MANIFEST_FILE])
    data.update(changes)
    members[MANIFEST_FILE] = json.dumps(data).encode("utf-8")


def reseal(members: dict[str, bytes]) -> None:
    """Update manifest checksums to match the inner archives."""
    data = json.loads(members[MANIFEST_FILE])
    for name, info in data["archives"].items():
        info["sha256"] = hashlib.sha256(members[name]).hexdigest()
    members[MANIFEST_FILE] = json.dumps(data).encode("utf-8")


class TestSnapshotManifest(unittest.TestCase):
    """Tests for SnapshotManifest."""

    def make_manifest(self, **kwargs):
        values = {
            "name": "Notes",
            "team": "ABCDE12345",
            "bundle": "com.example.notes",
            "created_at": datetime(2024, 1, 15, 10, 30, tzinfo=UTC),
            "total_size": 1234,
            "archives": {"doc.tar": {"sha256": "abc", "size": 2048, "entries": 3}},
        }
        values.update(kwargs)
        return SnapshotManifest(**values)

    def test_to_dict(self):
        data = self.make_manifest().to_dict()

        self.assertEqual(data["format_version"], MANIFEST_FORMAT_VERSION)
        self.assertEqual(data["name"], "Notes")
        self.assertEqual(data["team"], "ABCDE12345")
        self.assertEqual(data["bundle"], "com.example.notes")
        self.assertEqual(data["created_at"], "2024-01-15T10:30:00+00:00")
        self.assertEqual(data["total_size"], 1234)
        self.assertEqual(data["archives"]["doc.tar"]["entries"], 3)

    def test_json_round_trip(self):
        manifest = self.make_manifest()

        self.assertEqual(SnapshotManifest.from_json(manifest.to_json()), manifest)

    def test_naive_timestamp_assumed_utc(self):
        manifest = SnapshotManifest.from_dict({
            "format_version": 0,
            "created_at": "2024-01-15T10:30:00",
        })

        self.assertEqual(manifest.created_at.tzinfo, UTC)
        self.assertEqual(manifest.name, "")
        self.assertEqual(manifest.total_size, 0)

    def test_future_version_rejected(self):
        """Test manifests from a newer format are refused."""
        data = self.make_manifest().to_dict()
        data["format_version"] = MANIFEST_FORMAT_VERSION + 1

        with self.assertRaises(ManifestError):
            SnapshotManifest.from_dict(data)

    def test_missing_version_rejected(self):
        data = self.make_manifest().to_dict()
        del data["format_version"]

        with self.assertRaises(ManifestError):
            SnapshotManifest.from_dict(data)

    def test_badly_typed_fields_rejected(self):
        for field, value in (
            ("total_size", "big"),
            ("total_size", [1]),
            ("archives", {"doc.tar": "x"}),
            ("archives", {"doc.tar": {"sha256": 42}}),
        ):
            with self.subTest(field=field, value=value):
                data = self.make_manifest().to_dict()
                data[field] = value

                with self.assertRaises(ManifestError):
                    SnapshotManifest.from_dict(data)

    def test_missing_checksum_accepted(self):
        data = self.make_manifest().to_dict()
        data["archives"]["doc.tar"]["sha256"] = None

        manifest = SnapshotManifest.from_dict(data)

        self.assertIsNone(manifest.archives["doc.tar"]["sha256"])

    def test_invalid_json(self):
        with self.assertRaises(ManifestError):
            SnapshotManifest.from_json(b"{not json")

    def test_non_object_json(self):
        with self.assertRaises(ManifestError):
            SnapshotManifest.from_json(b"[1, 2]")

    def test_build_manifest_uses_identity(self):
        identity = StaticIdentityProvider(name="Notes", bundle="com.example.notes")

        manifest = build_manifest(identity, total_size=10, archives={})

        self.assertEqual(manifest.name, "Notes")
        self.assertEqual(manifest.bundle, "com.example.notes")
        self.assertEqual(manifest.team, "")
        self.assertIsNotNone(manifest.created_at.tzinfo)


class BackupTestCase(unittest.TestCase):
    """Creates a source root, an empty target root and an output directory."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.root = self.temp_dir / "source"
        self.target = self.temp_dir / "target"
        self.output_dir = self.temp_dir / "out"
        for directory in (self.root, self.target, self.output_dir):
            directory.mkdir()
        build_tree(self.root)
        self.identity = StaticIdentityProvider(
            name="Notes", bundle="com.example.notes", team="ABCDE12345"
        )

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def snapshot(self, **kwargs) -> Path:
        builder = SnapshotBuilder(self.root, identity=self.identity, **kwargs)
        return builder.build(self.output_dir / "snapshot.tar").path


class TestSnapshotBuilder(BackupTestCase):
    """Tests for SnapshotBuilder."""

    def test_outer_archive_layout(self):
        """Test the outer archive holds the manifest and three inner archives."""
        path = self.snapshot()

        with open(path, "rb") as f:
            names = [entry.name for entry in ArchiveReader(f)]
        self.assertEqual(names, [MANIFEST_FILE, "doc.tar", "lib.tar", "tmp.tar"])

    def test_inner_archives_by_category(self):
        members = read_outer(self.snapshot())

        def names(archive):
            return {entry.name for entry in ArchiveReader(io.BytesIO(members[archive]))}

        self.assertEqual(
            names("doc.tar"),
            {
                "Documents/note.txt",
                "Documents/latest",
                "Documents/projects",
                "Documents/projects/plan.md",
                "Documents/projects/empty.txt",
            },
        )
        self.assertEqual(
            names("lib.tar"),
            {"Library/Caches", "Library/Preferences", "Library/Preferences/app.plist"},
        )
        self.assertEqual(names("tmp.tar"), {"tmp/work", "tmp/work/scratch.bin"})

    def test_parents_precede_children(self):
        members = read_outer(self.snapshot())

        names = [entry.name for entry in ArchiveReader(io.BytesIO(members["doc.tar"]))]

        self.assertLess(names.index("Documents/projects"), names.index("Documents/projects/plan.md"))

    def test_result_and_manifest(self):
        builder = SnapshotBuilder(self.root, identity=self.identity)
        result = builder.build(self.output_dir / "snapshot.tar")

        self.assertEqual(result.path, self.output_dir / "snapshot.tar")
        self.assertEqual(result.size_bytes, result.path.stat().st_size)
        self.assertEqual(result.size_bytes % BLOCK_SIZE, 0)
        self.assertEqual(result.entry_count, 10)
        self.assertEqual(result.categories[Category.DOCUMENTS].entries, 5)
        self.assertEqual(result.skipped, [])

        manifest = result.manifest
        self.assertEqual(manifest.name, "Notes")
        self.assertEqual(manifest.team, "ABCDE12345")
        self.assertEqual(manifest.bundle, "com.example.notes")
        self.assertEqual(manifest.total_size, 10 + 7 + 0 + 1600 + 768)

        members = read_outer(result.path)
        self.assertEqual(SnapshotManifest.from_json(members[MANIFEST_FILE]), manifest)
        for name in ("doc.tar", "lib.tar", "tmp.tar"):
            self.assertEqual(
                manifest.archives[name]["sha256"],
                hashlib.sha256(members[name]).hexdigest(),
            )
            self.assertEqual(manifest.archives[name]["size"], len(members[name]))

    def test_default_output_location(self):
        result = SnapshotBuilder(self.root).build()

        self.assertEqual(result.path, self.root / "tmp" / ".sidebackup.tar")
        self.assertTrue(result.path.is_file())

    def test_staging_removed_after_success(self):
        self.snapshot()

        self.assertFalse((self.root / "tmp" / ".sidebackup").exists())

    def test_prior_snapshot_excluded(self):
        """Test a snapshot never contains an earlier snapshot or its staging files."""
        builder = SnapshotBuilder(self.root)
        builder.build()
        # Leftovers of an interrupted run
        leftover = self.root / "tmp" / ".sidebackup"
        leftover.mkdir()
        (leftover / "doc.tar").write_bytes(b"stale")

        members = read_outer(builder.build().path)

        for archive in ("doc.tar", "lib.tar", "tmp.tar"):
            for entry in ArchiveReader(io.BytesIO(members[archive])):
                self.assertNotIn(".sidebackup", entry.name)

    def test_extra_exclusions(self):
        members = read_outer(self.snapshot(exclude=["Library/Preferences"]))

        names = {entry.name for entry in ArchiveReader(io.BytesIO(members["lib.tar"]))}

        self.assertEqual(names, {"Library/Caches"})

    def test_empty_root(self):
        """Test an empty root still produces three (empty) inner archives."""
        empty = self.temp_dir / "empty"
        empty.mkdir()

        result = SnapshotBuilder(empty).build(self.output_dir / "empty.tar")

        members = read_outer(result.path)
        self.assertEqual(set(members), {MANIFEST_FILE, "doc.tar", "lib.tar", "tmp.tar"})
        self.assertEqual(members["doc.tar"], b"\0" * BLOCK_SIZE * 2)
        self.assertEqual(result.manifest.total_size, 0)

    def test_single_worker(self):
        result = SnapshotBuilder(self.root, workers=1).build(self.output_dir / "one.tar")

        self.assertEqual(result.entry_count, 10)

    def test_destination_is_directory(self):
        with self.assertRaises(BackupError) as cm:
            SnapshotBuilder(self.root).build(self.output_dir)

        self.assertEqual(cm.exception.stage, "prepare")

    def test_destination_inside_staging(self):
        destination = self.root / "tmp" / ".sidebackup" / "x.tar"

        with self.assertRaises(BackupError) as cm:
            SnapshotBuilder(self.root).build(destination)

        self.assertEqual(cm.exception.stage, "prepare")

    def test_category_failure_cleans_up(self):
        """Test a failing category archive reports its stage and publishes nothing."""
        destination = self.output_dir / "snapshot.tar"

        with patch.object(
            SnapshotBuilder, "_write_category_archive", side_effect=OSError("disk full")
        ):
            with self.assertRaises(BackupError) as cm:
                SnapshotBuilder(self.root).build(destination)

        self.assertEqual(cm.exception.stage, "archive:documents")
        self.assertIn("[archive:documents]", str(cm.exception))
        self.assertFalse(destination.exists())
        self.assertFalse((self.root / "tmp" / ".sidebackup").exists())

    def test_outer_failure_cleans_up(self):
        destination = self.output_dir / "snapshot.tar"

        with patch.object(
            SnapshotBuilder, "_write_outer_archive", side_effect=OSError("disk full")
        ):
            with self.assertRaises(BackupError) as cm:
                SnapshotBuilder(self.root).build(destination)

        self.assertEqual(cm.exception.stage, "outer")
        self.assertFalse(destination.exists())
        self.assertFalse((self.root / "tmp" / ".sidebackup").exists())

    def test_existing_destination_replaced(self):
        destination = self.output_dir / "snapshot.tar"
        destination.write_bytes(b"old snapshot")

        SnapshotBuilder(self.root).build(destination)

        self.assertIn(MANIFEST_FILE, read_outer(destination))

    @unittest.skipIf(os.geteuid() == 0, "root bypasses permission checks")
    def test_unreadable_file_omitted(self):
        secret = self.root / "Documents" / "secret.txt"
        secret.write_text("secret")
        os.chmod(secret, 0o000)
        self.addCleanup(os.chmod, secret, 0o600)

        members = read_outer(self.snapshot())

        names = {entry.name for entry in ArchiveReader(io.BytesIO(members["doc.tar"]))}
        self.assertNotIn("Documents/secret.txt", names)


class TestRestoreEngine(BackupTestCase):
    """Tests for RestoreEngine."""

    def test_round_trip(self):
        """Test restoring onto an empty root reproduces the categorized tree."""
        expected = tree_state(self.root)
        path = self.snapshot()

        result = RestoreEngine(self.target).restore(path)

        self.assertEqual(tree_state(self.target), expected)
        self.assertEqual(result.entries_applied, 10)
        self.assertEqual(result.applied[Category.LIBRARY], 3)
        self.assertEqual(result.skipped, [])
        self.assertEqual(result.manifest.name, "Notes")

    def test_outside_objects_not_restored(self):
        RestoreEngine(self.target).restore(self.snapshot())

        self.assertFalse((self.target / "Outside").exists())

    def test_idempotent(self):
        """Test a second restore of the same snapshot changes nothing."""
        path = self.snapshot()
        engine = RestoreEngine(self.target)

        engine.restore(path)
        first = tree_state(self.target)
        engine.restore(path)

        self.assertEqual(tree_state(self.target), first)

    def test_restore_onto_source_overwrites(self):
        """Test restoring over modified files brings back the snapshot state."""
        expected = tree_state(self.root)
        path = self.snapshot()
        (self.root / "Documents" / "note.txt").write_text("edited")
        (self.root / "Documents" / "latest").unlink()
        (self.root / "Documents" / "latest").write_text("now a file")

        RestoreEngine(self.root).restore(path)

        self.assertEqual(tree_state(self.root), expected)

    def test_no_overwrite_keeps_existing(self):
        path = self.snapshot()
        existing = self.target / "Documents" / "note.txt"
        existing.parent.mkdir()
        existing.write_text("keep me")

        result = RestoreEngine(self.target, overwrite=False).restore(path)

        self.assertEqual(existing.read_text(), "keep me")
        self.assertEqual(result.kept, 1)
        self.assertTrue((self.target / "Documents" / "projects" / "plan.md").exists())

    def test_staging_removed_after_restore(self):
        RestoreEngine(self.target).restore(self.snapshot())

        self.assertEqual(os.listdir(self.target / "tmp"), ["work"])

    def test_snapshot_not_found(self):
        with self.assertRaises(RestoreError) as cm:
            RestoreEngine(self.target).restore(self.output_dir / "missing.tar")

        self.assertEqual(cm.exception.stage, "copy")

    def test_checksum_mismatch_aborts_before_unpack(self):
        """Test a tampered inner archive is refused before touching the root."""
        path = self.snapshot()
        members = read_outer(path)
        members["lib.tar"] = members["lib.tar"][:-BLOCK_SIZE * 2]
        write_outer(path, members)

        with self.assertRaises(RestoreError) as cm:
            RestoreEngine(self.target).restore(path)

        self.assertEqual(cm.exception.stage, "verify")
        self.assertEqual(cm.exception.archive, "lib.tar")
        self.assertFalse((self.target / "Documents").exists())
        self.assertFalse((self.target / "tmp" / ".sidebackup").exists())

    def test_corrupt_inner_archive(self):
        """Test a corrupt inner archive names the archive and last entry."""
        path = self.snapshot()
        members = read_outer(path)
        members["lib.tar"] = self._truncated_library_archive()
        reseal(members)
        write_outer(path, members)

        with self.assertRaises(RestoreError) as cm:
            RestoreEngine(self.target).restore(path)

        self.assertEqual(cm.exception.stage, "unpack")
        self.assertEqual(cm.exception.archive, "lib.tar")
        self.assertEqual(cm.exception.entry, "Library/ok")
        # Documents were applied before the failure and stay applied
        self.assertTrue((self.target / "Documents" / "note.txt").exists())
        self.assertTrue((self.target / "Library" / "ok").is_dir())
        self.assertFalse((self.target / "tmp" / "work").exists())

    def _truncated_library_archive(self) -> bytes:
        buffer = io.BytesIO()
        writer = ArchiveWriter(buffer)
        writer.append(ArchiveEntry("Library/ok", EntryKind.DIRECTORY, 0o755, FIXED_TIME))
        writer.append(ArchiveEntry("Library/big.bin", EntryKind.FILE, 0o644, FIXED_TIME, payload=b"x" * 4000))
        writer.finalize()
        return buffer.getvalue()[:BLOCK_SIZE * 3]

    def test_missing_inner_archive(self):
        path = self.snapshot()
        members = read_outer(path)
        del members["tmp.tar"]
        write_outer(path, members)

        with self.assertRaises(RestoreError) as cm:
            RestoreEngine(self.target).restore(path)

        self.assertEqual(cm.exception.stage, "verify")
        self.assertEqual(cm.exception.archive, "tmp.tar")

    def test_future_manifest_version(self):
        path = self.snapshot()
        members = read_outer(path)
        rewrite_manifest(members, format_version=MANIFEST_FORMAT_VERSION + 1)
        write_outer(path, members)

        with self.assertRaises(RestoreError) as cm:
            RestoreEngine(self.target).restore(path)

        self.assertEqual(cm.exception.stage, "manifest")
        with self.assertRaises(ManifestError):
            RestoreEngine(self.target).inspect(path)

    def test_malformed_manifest_fields(self):
        """Test badly typed manifest fields fail in the manifest stage."""
        for changes in (
            {"total_size": "big"},
            {"total_size": None},
            {"archives": {"doc.tar": "x"}},
            {"archives": {"doc.tar": {"sha256": 42}}},
        ):
            with self.subTest(changes=changes):
                path = self.snapshot()
                members = read_outer(path)
                rewrite_manifest(members, **changes)
                write_outer(path, members)

                with self.assertRaises(RestoreError) as cm:
                    RestoreEngine(self.target).restore(path)

                self.assertEqual(cm.exception.stage, "manifest")
                self.assertFalse((self.target / "Documents").exists())

    def test_missing_manifest(self):
        path = self.snapshot()
        members = read_outer(path)
        del members[MANIFEST_FILE]
        write_outer(path, members)

        with self.assertRaises(RestoreError) as cm:
            RestoreEngine(self.target).restore(path)

        self.assertEqual(cm.exception.stage, "manifest")

    def test_unsafe_entries_skipped(self):
        """Test entries escaping the root are skipped, not applied."""
        path = self.snapshot()
        members = read_outer(path)
        buffer = io.BytesIO()
        with ArchiveWriter(buffer) as writer:
            writer.append(ArchiveEntry("../escape.txt", EntryKind.FILE, 0o644, FIXED_TIME, payload=b"x"))
            writer.append(ArchiveEntry("Documents/safe.txt", EntryKind.FILE, 0o644, FIXED_TIME, payload=b"y"))
        members["doc.tar"] = buffer.getvalue()
        reseal(members)
        write_outer(path, members)

        result = RestoreEngine(self.target).restore(path)

        self.assertEqual(result.skipped, ["../escape.txt"])
        self.assertTrue((self.target / "Documents" / "safe.txt").exists())
        self.assertFalse((self.temp_dir / "escape.txt").exists())

    def test_writes_through_symlinks_skipped(self):
        """Test a symlink in the archive cannot redirect later entries."""
        elsewhere = self.temp_dir / "elsewhere"
        elsewhere.mkdir(mode=0o755)
        elsewhere_mode = stat.S_IMODE(os.stat(elsewhere).st_mode)
        path = self.snapshot()
        members = read_outer(path)
        buffer = io.BytesIO()
        with ArchiveWriter(buffer) as writer:
            writer.append(ArchiveEntry("Documents", EntryKind.DIRECTORY, 0o755, FIXED_TIME))
            writer.append(ArchiveEntry("Documents/evil", EntryKind.SYMLINK, None, FIXED_TIME, link_target=str(elsewhere)))
            writer.append(ArchiveEntry("Documents/evil/pwned.txt", EntryKind.FILE, 0o644, FIXED_TIME, payload=b"x"))
            writer.append(ArchiveEntry("Documents/evil/deeper/more.txt", EntryKind.FILE, 0o644, FIXED_TIME, payload=b"x"))
            writer.append(ArchiveEntry("Documents/evil/sub", EntryKind.DIRECTORY, 0o700, FIXED_TIME))
        members["doc.tar"] = buffer.getvalue()
        reseal(members)
        write_outer(path, members)

        result = RestoreEngine(self.target).restore(path)

        self.assertEqual(
            result.skipped,
            ["Documents/evil/pwned.txt", "Documents/evil/deeper/more.txt", "Documents/evil/sub"],
        )
        self.assertEqual(os.listdir(elsewhere), [])
        self.assertTrue((self.target / "Documents" / "evil").is_symlink())
        self.assertEqual(stat.S_IMODE(os.stat(elsewhere).st_mode), elsewhere_mode)

    def test_inspect(self):
        path = self.snapshot()

        manifest = RestoreEngine(self.target).inspect(path)

        self.assertEqual(manifest.name, "Notes")
        self.assertEqual(set(manifest.archives), {"doc.tar", "lib.tar", "tmp.tar"})
        self.assertFalse((self.target / "tmp").exists())


class TestSmallContainerScenario(unittest.TestCase):
    """One file, one empty directory and one empty file across the categories."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.root = self.temp_dir / "root"
        self.restored = self.temp_dir / "restored"
        self.restored.mkdir()

        note = self.root / "Documents" / "note.txt"
        note.parent.mkdir(parents=True)
        note.write_bytes(b"ten bytes!")
        os.chmod(note, 0o644)
        cache = self.root / "Library" / "cache"
        cache.mkdir(parents=True)
        os.chmod(cache, 0o755)
        scratch = self.root / "tmp" / "scratch.bin"
        scratch.parent.mkdir()
        scratch.write_bytes(b"")

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_restore_reproduces_objects(self):
        result = SnapshotBuilder(self.root).build(self.temp_dir / "snapshot.tar")

        RestoreEngine(self.restored).restore(result.path)

        found = {
            p.relative_to(self.restored).as_posix()
            for p in self.restored.rglob("*")
        }
        self.assertEqual(
            found,
            {
                "Documents",
                "Documents/note.txt",
                "Library",
                "Library/cache",
                "tmp",
                "tmp/scratch.bin",
            },
        )

        note = self.restored / "Documents" / "note.txt"
        self.assertEqual(note.read_bytes(), b"ten bytes!")
        self.assertEqual(stat.S_IMODE(note.stat().st_mode), 0o644)

        cache = self.restored / "Library" / "cache"
        self.assertTrue(cache.is_dir())
        self.assertEqual(list(cache.iterdir()), [])
        self.assertEqual(stat.S_IMODE(cache.stat().st_mode), 0o755)

        scratch = self.restored / "tmp" / "scratch.bin"
        self.assertTrue(scratch.is_file())
        self.assertEqual(scratch.stat().st_size, 0)
        self.assertEqual(result.manifest.total_size, 10)


if __name__ == "__main__":
    unittest.main()
