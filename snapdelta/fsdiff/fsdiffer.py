# Copyright Red Hat
#
# snapdelta/fsdiff/fsdiffer.py - Snapshot delta top-level differ
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Top-level fsdiff interface.
"""
from typing import Callable, Optional
from os.path import join
import logging
import fcntl
import os

from snapdelta import (
    SnapdeltaBusyError,
    SnapdeltaParseError,
    SnapdeltaPathError,
    SnapdeltaSystemError,
)
from snapdelta.progress import ProgressFactory

from .engine import DiffEngine, FsDiffResults
from .fingerprint import FingerprintGenerator
from .options import DiffOptions
from .snapshot import Snapshot
from .store import SnapshotStore, _check_store_dir, read_snapshot
from .treewalk import TreeWalker

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Name of the lock file created in the snapshot store directory
LOCK_FILE_NAME = ".snapdelta.lock"

#: Type of the optional report callback passed to ``SnapshotDiffer.run()``
ReportCallback = Callable[[FsDiffResults], None]


def _lock_store(store_dir: str) -> int:
    """
    Lock the snapshot store in ``store_dir``.

    :returns: A file descriptor open on the lock file.
    """

    def cleanup():
        try:
            os.close(fd)
        except OSError as err:
            _log_debug("Exception closing lock fd %d: %s", fd, err)

    lockfile = join(store_dir, LOCK_FILE_NAME)
    _log_debug("Locking snapshot store via %s", lockfile)

    try:
        fd = os.open(lockfile, os.O_RDWR | os.O_CREAT | os.O_CLOEXEC, 0o600)
    except OSError as err:
        raise SnapdeltaSystemError(
            f"Failed to create snapshot store lockfile {lockfile}: {err}"
        ) from err

    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError as err:
        cleanup()
        raise SnapdeltaBusyError(
            f"Snapshot store already locked at '{lockfile}': {err}"
        ) from err
    except OSError as err:  # pragma: no cover
        cleanup()
        raise SnapdeltaSystemError(
            f"Failed to take exclusive lock on snapshot store lockfile {lockfile}: {err}"
        ) from err

    try:
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode("utf8"))
    except OSError:  # pragma: no cover
        pass

    return fd


def _unlock_store(store_dir: str, fd: int):
    """
    Unlock the snapshot store using the open file descriptor ``fd``.

    :param fd: The open locking file descriptor.
    """
    lockfile = join(store_dir, LOCK_FILE_NAME)
    _log_debug("Unlocking snapshot store (%s)", lockfile)
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
    except OSError as err:
        raise SnapdeltaSystemError(
            f"Failed to release exclusive lock on snapshot store lockfile {lockfile}: {err}"
        ) from err
    finally:
        try:
            os.close(fd)
        except OSError:  # pragma: no cover
            pass


class SnapshotDiffer:
    """
    Top-level interface for snapshotting a tree and comparing it with the
    snapshot stored by the previous run.
    """

    def __init__(
        self,
        scan_root: str,
        store_dir: str,
        options: Optional[DiffOptions] = None,
    ):
        """
        Initialise a new ``SnapshotDiffer``.

        :param scan_root: The directory tree to snapshot.
        :type scan_root: ``str``
        :param store_dir: The directory holding the stored snapshot.
        :type store_dir: ``str``
        :param options: Options to control this ``SnapshotDiffer`` instance.
        :type options: ``DiffOptions``
        """
        options = options or DiffOptions()
        self.scan_root: str = scan_root
        self.store_dir: str = store_dir
        self.options: DiffOptions = options
        self.store: SnapshotStore = SnapshotStore(
            store_dir, name=options.snapshot_name, compression=options.compression
        )
        self.tree_walker: TreeWalker = TreeWalker(options)
        self.fingerprinter: FingerprintGenerator = FingerprintGenerator(
            threshold=options.hash_threshold, hash_algorithm=options.hash_algorithm
        )
        self.diff_engine: DiffEngine = DiffEngine()

    def __repr__(self) -> str:
        return (
            f"SnapshotDiffer({self.scan_root!r}, {self.store_dir!r}, "
            f"options={self.options!r})"
        )

    def _check_preconditions(self):
        """
        Verify that the scan root and snapshot store are usable before any
        work is done.
        """
        if not os.path.isdir(self.scan_root):
            raise SnapdeltaPathError(
                f"Scan root '{self.scan_root}' does not exist or is not a directory"
            )
        _check_store_dir(self.store_dir)
        store_real = os.path.realpath(self.store_dir)
        root_real = os.path.realpath(self.scan_root)
        if store_real == root_real:
            raise SnapdeltaPathError(
                f"Snapshot store '{self.store_dir}' cannot be the scan root"
            )

    def snapshot(self) -> Snapshot:
        """
        Walk and fingerprint the scan root.

        :returns: A new ``Snapshot`` of the scan root.
        :rtype: ``Snapshot``
        """
        root = os.path.abspath(self.scan_root)
        entries = self.tree_walker.walk(root)
        store_real = os.path.realpath(self.store_dir)
        if store_real.startswith(os.path.realpath(root) + os.sep):
            entries = [
                entry
                for entry in entries
                if not os.path.realpath(entry.path).startswith(store_real + os.sep)
            ]
        progress = ProgressFactory.get_progress(
            "Fingerprinting files", quiet=self.options.quiet
        )
        return self.fingerprinter.fingerprint_entries(
            root, entries, workers=self.options.workers, progress=progress
        )

    def run(
        self, report: Optional[ReportCallback] = None, save: bool = True
    ) -> FsDiffResults:
        """
        Snapshot the scan root, compare it with the stored snapshot and
        replace the stored snapshot with the new one.

        If ``report`` is given it is called with the results before the new
        snapshot is saved. If it raises, the stored snapshot is left
        unchanged and the exception propagates.

        :param report: An optional callable receiving the diff results.
        :type report: ``Optional[Callable[[FsDiffResults], None]]``
        :param save: Save the new snapshot after a successful report.
        :type save: ``bool``
        :returns: The diff results for this run.
        :rtype: ``FsDiffResults``
        :raises: ``SnapdeltaPathError`` if the scan root or store directory is
                 unusable, ``SnapdeltaBusyError`` if another run holds the
                 store lock, ``SnapdeltaParseError`` if the stored snapshot is
                 corrupt or ``SnapdeltaSystemError`` if the new snapshot
                 cannot be saved.
        """
        self._check_preconditions()
        fd = _lock_store(self.store_dir)
        try:
            previous = self.store.load()
            new = self.snapshot()
            results = self.diff_engine.compute_diff(previous, new, self.options)
            if report is not None:
                report(results)
            if save:
                save_progress = ProgressFactory.get_progress(
                    "Saving snapshot", quiet=self.options.quiet
                )
                self.store.save(new.records(), progress=save_progress)
            else:
                _log_info("Not saving snapshot for %s", self.scan_root)
            return results
        finally:
            _unlock_store(self.store_dir, fd)


def compare_files(
    old_path: str, new_path: str, options: Optional[DiffOptions] = None
) -> FsDiffResults:
    """
    Compare two stored snapshot files.

    :param old_path: Path to the older snapshot file.
    :type old_path: ``str``
    :param new_path: Path to the newer snapshot file.
    :type new_path: ``str``
    :param options: Options to apply to the comparison.
    :type options: ``Optional[DiffOptions]``
    :returns: The diff results.
    :rtype: ``FsDiffResults``
    """
    snapshots = []
    for path in (old_path, new_path):
        if not os.path.isfile(path):
            raise SnapdeltaPathError(f"Snapshot file '{path}' does not exist")
        snapshot = read_snapshot(path)
        if snapshot is None:
            raise SnapdeltaParseError(f"'{path}' is not a snapshot file")
        snapshots.append(snapshot)
    return DiffEngine().compute_diff(snapshots[0], snapshots[1], options)


__all__ = [
    "LOCK_FILE_NAME",
    "SnapshotDiffer",
    "compare_files",
]
