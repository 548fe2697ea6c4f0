# Copyright Red Hat
#
# tests/fsdiff/test_fsdiffer.py - SnapshotDiffer tests.
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
import tempfile
import fcntl
import os
from unittest.mock import MagicMock, patch

from snapdelta import (
    SnapdeltaBusyError,
    SnapdeltaParseError,
    SnapdeltaPathError,
    SnapdeltaSystemError,
)
from snapdelta.fsdiff.engine import DiffEngine, FsDiffResults
from snapdelta.fsdiff.fingerprint import FingerprintGenerator
from snapdelta.fsdiff.fsdiffer import LOCK_FILE_NAME, SnapshotDiffer, compare_files
from snapdelta.fsdiff.options import DiffOptions
from snapdelta.fsdiff.store import SnapshotStore
from snapdelta.fsdiff.treewalk import TreeWalker

from .._util import write_file


class TestSnapshotDiffer(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.scan_root = os.path.join(self._tmp.name, "root")
        self.store_dir = os.path.join(self._tmp.name, "store")
        os.mkdir(self.scan_root)
        os.mkdir(self.store_dir)
        self.options = DiffOptions(quiet=True)

    def tearDown(self):
        self._tmp.cleanup()

    def _differ(self, options=None):
        return SnapshotDiffer(self.scan_root, self.store_dir, options or self.options)

    def test_SnapshotDiffer(self):
        differ = self._differ()
        self.assertIsInstance(differ.tree_walker, TreeWalker)
        self.assertIsInstance(differ.diff_engine, DiffEngine)
        self.assertIsInstance(differ.fingerprinter, FingerprintGenerator)
        self.assertIsInstance(differ.store, SnapshotStore)
        self.assertEqual(differ.store.directory, self.store_dir)

    def test_first_run_all_added(self):
        write_file(self.scan_root, "a.txt", "a")
        write_file(self.scan_root, "sub/b.txt", "b")
        results = self._differ().run()
        self.assertIsInstance(results, FsDiffResults)
        self.assertEqual([r.rel_path for r in results.added], ["a.txt", "sub/b.txt"])
        self.assertEqual(results.deleted, [])
        self.assertTrue(os.path.exists(os.path.join(self.store_dir, "snapshot.csv")))

    def test_second_run_no_changes(self):
        write_file(self.scan_root, "a.txt", "a")
        self._differ().run()
        results = self._differ().run()
        self.assertEqual(results.total_changes, 0)

    def test_rename_between_runs(self):
        write_file(self.scan_root, "a.txt", "payload")
        write_file(self.scan_root, "keep.txt", "keep")
        self._differ().run()
        os.rename(
            os.path.join(self.scan_root, "a.txt"), os.path.join(self.scan_root, "b.txt")
        )
        results = self._differ().run()
        self.assertEqual(
            [(r.moved_from, r.moved_to) for r in results.renamed], [("a.txt", "b.txt")]
        )
        self.assertEqual(results.added, [])
        self.assertEqual(results.deleted, [])
        self.assertEqual(results.modified, [])

    def test_modify_and_delete_between_runs(self):
        write_file(self.scan_root, "mod.txt", "one")
        write_file(self.scan_root, "gone.txt", "gone")
        self._differ().run()
        write_file(self.scan_root, "mod.txt", "two!")
        os.unlink(os.path.join(self.scan_root, "gone.txt"))
        results = self._differ().run()
        self.assertEqual([r.rel_path for r in results.modified], ["mod.txt"])
        self.assertEqual([r.rel_path for r in results.deleted], ["gone.txt"])

    def test_report_called_before_save(self):
        write_file(self.scan_root, "a.txt", "a")
        differ = self._differ()
        seen = []

        def report(results):
            seen.append(results.total_changes)
            self.assertFalse(differ.store.exists())

        results = differ.run(report=report)
        self.assertEqual(seen, [1])
        self.assertEqual(results.total_changes, 1)
        self.assertTrue(differ.store.exists())

    def test_report_failure_does_not_rotate(self):
        write_file(self.scan_root, "a.txt", "a")
        self._differ().run()
        store_path = os.path.join(self.store_dir, "snapshot.csv")
        with open(store_path, "rb") as f:
            before = f.read()

        write_file(self.scan_root, "b.txt", "b")
        report = MagicMock(side_effect=RuntimeError("mail server down"))
        with self.assertRaises(RuntimeError):
            self._differ().run(report=report)

        with open(store_path, "rb") as f:
            self.assertEqual(f.read(), before)
        # The next run still sees the change
        results = self._differ().run()
        self.assertEqual([r.rel_path for r in results.added], ["b.txt"])

    def test_no_save(self):
        write_file(self.scan_root, "a.txt", "a")
        differ = self._differ()
        differ.run(save=False)
        self.assertFalse(differ.store.exists())

    def test_save_failure_raises(self):
        write_file(self.scan_root, "a.txt", "a")
        differ = self._differ()
        with patch.object(
            differ.store, "save", side_effect=SnapdeltaSystemError("write failed")
        ):
            with self.assertRaises(SnapdeltaSystemError):
                differ.run()

    def test_missing_scan_root(self):
        differ = SnapshotDiffer(
            os.path.join(self._tmp.name, "nope"), self.store_dir, self.options
        )
        with self.assertRaises(SnapdeltaPathError):
            differ.run()

    def test_missing_store_dir(self):
        differ = SnapshotDiffer(
            self.scan_root, os.path.join(self._tmp.name, "nope"), self.options
        )
        with self.assertRaises(SnapdeltaPathError):
            differ.run()

    def test_store_is_scan_root(self):
        differ = SnapshotDiffer(self.scan_root, self.scan_root, self.options)
        with self.assertRaises(SnapdeltaPathError):
            differ.run()

    def test_store_inside_scan_root_not_scanned(self):
        store_dir = os.path.join(self.scan_root, ".snapdelta")
        os.mkdir(store_dir)
        write_file(self.scan_root, "a.txt", "a")
        differ = SnapshotDiffer(self.scan_root, store_dir, self.options)
        differ.run()
        results = SnapshotDiffer(self.scan_root, store_dir, self.options).run()
        self.assertEqual(results.total_changes, 0)

    def test_lock_busy(self):
        lockfile = os.path.join(self.store_dir, LOCK_FILE_NAME)
        fd = os.open(lockfile, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            with self.assertRaises(SnapdeltaBusyError):
                self._differ().run()
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
        # Lock released: the run now succeeds
        self._differ().run()

    def test_lock_released_after_failure(self):
        write_file(self.scan_root, "a.txt", "a")
        with self.assertRaises(RuntimeError):
            self._differ().run(report=MagicMock(side_effect=RuntimeError("boom")))
        self._differ().run()

    def test_corrupt_store_raises(self):
        with open(os.path.join(self.store_dir, "snapshot.csv"), "w", encoding="utf8") as f:
            f.write("RelPath,SizeBytes,LastWriteUtc,Fingerprint\nbad,row\n")
        with self.assertRaises(SnapdeltaParseError):
            self._differ().run()

    def test_non_utf8_name_does_not_block_runs(self):
        write_file(self.scan_root, "a.txt", "a")
        write_file(self.scan_root, os.fsdecode(b"bad\xff.txt"), "b")
        with self.assertLogs("snapdelta.fsdiff.treewalk", level="WARNING"):
            results = self._differ().run()
        self.assertEqual([r.rel_path for r in results.added], ["a.txt"])
        self.assertTrue(self._differ().store.exists())
        with self.assertLogs("snapdelta.fsdiff.treewalk", level="WARNING"):
            results = self._differ().run()
        self.assertEqual(results.total_changes, 0)

    def test_parallel_workers(self):
        for i in range(12):
            write_file(self.scan_root, f"f{i:02}", f"data {i}")
        results = self._differ(DiffOptions(quiet=True, workers=3)).run()
        self.assertEqual(len(results.added), 12)


class TestCompareFiles(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def test_compare_files(self):
        from ._util import make_record

        old = SnapshotStore(self.dir, name="old").save(
            [make_record("a", content="X"), make_record("b", content="B")]
        )
        new = SnapshotStore(self.dir, name="new", compression="xz").save(
            [make_record("c", content="X"), make_record("b", content="B2")]
        )
        results = compare_files(old, new)
        self.assertEqual([(r.moved_from, r.moved_to) for r in results.renamed], [("a", "c")])
        self.assertEqual([r.rel_path for r in results.modified], ["b"])

    def test_compare_missing_file(self):
        with self.assertRaises(SnapdeltaPathError):
            compare_files(os.path.join(self.dir, "x.csv"), os.path.join(self.dir, "y.csv"))

    def test_compare_not_snapshot(self):
        path = os.path.join(self.dir, "junk.csv")
        with open(path, "w", encoding="utf8") as f:
            f.write("hello,world\n")
        with self.assertRaises(SnapdeltaParseError):
            compare_files(path, path)
