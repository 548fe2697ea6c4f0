# Copyright Red Hat
#
# snapdelta/fsdiff/__init__.py - Snapshot delta fsdiff package
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
File system snapshot and diff support.
"""
from .difftypes import DiffType, FingerprintKind
from .engine import DiffEngine, FsDiffResults, ModifiedRecord, diff_snapshots
from .fingerprint import FingerprintGenerator, ScanEntry
from .fsdiffer import SnapshotDiffer, compare_files
from .options import DiffOptions
from .renames import RenamedRecord, resolve_renames
from .snapshot import FileRecord, Fingerprint, Snapshot
from .store import SnapshotStore, read_snapshot
from .treewalk import TreeWalker

__all__ = [
    "DiffType",
    "FingerprintKind",
    "DiffEngine",
    "FsDiffResults",
    "ModifiedRecord",
    "diff_snapshots",
    "FingerprintGenerator",
    "ScanEntry",
    "SnapshotDiffer",
    "compare_files",
    "DiffOptions",
    "RenamedRecord",
    "resolve_renames",
    "FileRecord",
    "Fingerprint",
    "Snapshot",
    "SnapshotStore",
    "read_snapshot",
    "TreeWalker",
]
