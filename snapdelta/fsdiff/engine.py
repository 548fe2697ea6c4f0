# Copyright Red Hat
#
# snapdelta/fsdiff/engine.py - Snapshot delta diff engine
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Snapshot diff engine
"""
from typing import Any, ClassVar, Dict, List, NamedTuple, Optional
from datetime import datetime
from math import floor
import logging
import json

from snapdelta import SNAPDELTA_SUBSYSTEM_DIFF, size_fmt

from .difftypes import DiffType
from .options import DiffOptions
from .renames import RenamedRecord, resolve_renames
from .snapshot import FileRecord, Fingerprint, Snapshot, format_timestamp

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_diff(msg, *args, **kwargs):
    """A wrapper for diff subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": SNAPDELTA_SUBSYSTEM_DIFF}, **kwargs)


class ModifiedRecord(NamedTuple):
    """
    A path present in both snapshots with a differing fingerprint.
    """

    rel_path: str
    old_fingerprint: Fingerprint
    new_fingerprint: Fingerprint
    old_size: int
    new_size: int
    old_mtime: datetime
    new_mtime: datetime

    @classmethod
    def from_records(cls, old: FileRecord, new: FileRecord) -> "ModifiedRecord":
        """
        Build a ``ModifiedRecord`` from the two sides of a modification.
        """
        return cls(
            old.rel_path,
            old.fingerprint,
            new.fingerprint,
            old.size,
            new.size,
            old.mtime,
            new.mtime,
        )

    @property
    def size_delta(self) -> int:
        """
        The change in size in bytes.
        """
        return self.new_size - self.old_size

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this ``ModifiedRecord`` into a dictionary suitable for
        encoding as JSON.

        :returns: A dictionary mapping this instance's keys to values.
        :rtype: ``Dict[str, Any]``
        """
        return {
            "path": self.rel_path,
            "old_fingerprint": str(self.old_fingerprint),
            "new_fingerprint": str(self.new_fingerprint),
            "old_size": self.old_size,
            "new_size": self.new_size,
            "size_delta": self.size_delta,
            "old_mtime": format_timestamp(self.old_mtime),
            "new_mtime": format_timestamp(self.new_mtime),
        }


class RawDiff(NamedTuple):
    """
    Added, modified and deleted records before rename resolution.
    """

    added: List[FileRecord]
    modified: List[ModifiedRecord]
    deleted: List[FileRecord]


def diff_snapshots(previous: Snapshot, new: Snapshot) -> RawDiff:
    """
    Compare ``previous`` with ``new``.

    A path only in ``new`` is added, a path only in ``previous`` is deleted
    and a path in both with a differing fingerprint is modified. Paths in
    both with equal fingerprints are unchanged and reported nowhere. All
    lists are in ascending path order.

    :param previous: The snapshot from the last successful run.
    :type previous: ``Snapshot``
    :param new: The snapshot from this run.
    :type new: ``Snapshot``
    :returns: The raw differences.
    :rtype: ``RawDiff``
    """
    added: List[FileRecord] = []
    modified: List[ModifiedRecord] = []
    deleted: List[FileRecord] = []

    for path, new_record in new.items():
        old_record = previous.get(path)
        if old_record is None:
            added.append(new_record)
        elif old_record.fingerprint != new_record.fingerprint:
            modified.append(ModifiedRecord.from_records(old_record, new_record))

    for path, old_record in previous.items():
        if path not in new:
            deleted.append(old_record)

    return RawDiff(
        added=sorted(added, key=lambda r: r.rel_path),
        modified=sorted(modified, key=lambda r: r.rel_path),
        deleted=sorted(deleted, key=lambda r: r.rel_path),
    )


class FsDiffResults:
    """Container for snapshot diff results with formatting methods."""

    #: Constant for the names of the string diff formats
    DIFF_FORMATS: ClassVar[List[str]] = [
        "summary",
        "paths",
        "full",
        "json",
    ]

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        added: List[FileRecord],
        modified: List[ModifiedRecord],
        deleted: List[FileRecord],
        renamed: List[RenamedRecord],
        options: DiffOptions,
        timestamp: int,
    ):
        self.added = list(added)
        self.modified = list(modified)
        self.deleted = list(deleted)
        self.renamed = list(renamed)
        self.options = options
        self.timestamp = timestamp

    def __repr__(self) -> str:
        """
        Return a machine-readable representation of this instance.

        :returns: ``FsDiffResults`` constructor style string.
        :rtype: ``str``
        """
        return f"FsDiffResults([...], {self.options!r}, {self.timestamp})"

    def __len__(self):
        """
        Implement len(self).
        """
        return self.total_changes

    def __bool__(self):
        return self.total_changes > 0

    @property
    def total_changes(self) -> int:
        """
        Return the total number of changes in this ``FsDiffResults``
        instance.

        :returns: Count of changes.
        :rtype: ``int``
        """
        return (
            len(self.added) + len(self.modified) + len(self.deleted) + len(self.renamed)
        )

    def counts(self) -> Dict[str, int]:
        """
        Return the number of changes of each ``DiffType``.

        :returns: A dictionary mapping diff type names to counts.
        :rtype: ``Dict[str, int]``
        """
        return {
            DiffType.ADDED.value: len(self.added),
            DiffType.MODIFIED.value: len(self.modified),
            DiffType.DELETED.value: len(self.deleted),
            DiffType.RENAMED.value: len(self.renamed),
        }

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this ``FsDiffResults`` into a dictionary suitable for encoding
        as JSON.

        :returns: A dictionary mapping this instance's keys to values.
        :rtype: ``Dict[str, Any]``
        """
        return {
            "timestamp": self.timestamp,
            "counts": self.counts(),
            DiffType.ADDED.value: [r.to_dict() for r in self.added],
            DiffType.MODIFIED.value: [r.to_dict() for r in self.modified],
            DiffType.DELETED.value: [r.to_dict() for r in self.deleted],
            DiffType.RENAMED.value: [r.to_dict() for r in self.renamed],
        }

    # Output formats
    def paths(self) -> List[str]:
        """
        Return a list of changed paths, prefixed by a one character change
        code: ``A`` (added), ``M`` (modified), ``D`` (deleted) or ``R``
        (renamed, shown as ``old -> new``).

        :returns: Path list.
        :rtype: ``List[str]``
        """
        lines = [(r.rel_path, f"A {r.rel_path}") for r in self.added]
        lines += [(r.rel_path, f"M {r.rel_path}") for r in self.modified]
        lines += [(r.rel_path, f"D {r.rel_path}") for r in self.deleted]
        lines += [
            (r.moved_from, f"R {r.moved_from} -> {r.moved_to}") for r in self.renamed
        ]
        return [line for _, line in sorted(lines)]

    def full(self) -> str:
        """
        Return a string describing every change in this instance.

        :returns: String description of snapshot changes.
        :rtype: ``str``
        """
        out = []
        for record in self.added:
            out.append(
                f"Path: {record.rel_path}\n"
                f"  diff_type: {DiffType.ADDED.value}\n"
                f"  size: {record.size}\n"
                f"  mtime: {format_timestamp(record.mtime)}\n"
                f"  fingerprint: {record.fingerprint}"
            )
        for record in self.modified:
            out.append(
                f"Path: {record.rel_path}\n"
                f"  diff_type: {DiffType.MODIFIED.value}\n"
                f"  size_old: {record.old_size}\n"
                f"  size_new: {record.new_size}\n"
                f"  size_delta: {record.size_delta}\n"
                f"  mtime_old: {format_timestamp(record.old_mtime)}\n"
                f"  mtime_new: {format_timestamp(record.new_mtime)}\n"
                f"  fingerprint_old: {record.old_fingerprint}\n"
                f"  fingerprint_new: {record.new_fingerprint}"
            )
        for record in self.deleted:
            out.append(
                f"Path: {record.rel_path}\n"
                f"  diff_type: {DiffType.DELETED.value}\n"
                f"  size: {record.size}\n"
                f"  mtime: {format_timestamp(record.mtime)}\n"
                f"  fingerprint: {record.fingerprint}"
            )
        for record in self.renamed:
            out.append(
                f"Path: {record.moved_to}\n"
                f"  diff_type: {DiffType.RENAMED.value}\n"
                f"  moved_from: {record.moved_from}\n"
                f"  moved_to: {record.moved_to}\n"
                f"  fingerprint: {record.fingerprint}\n"
                f"  content_match: {record.content_match}"
            )
        return "\n\n".join(out)

    def json(self, pretty: bool = False) -> str:
        """
        Return a JSON representation of this instance.

        :param pretty: Indent JSON to be human readable.
        :type pretty: ``bool``
        :returns: JSON string description of snapshot changes.
        :rtype: ``str``
        """
        return json.dumps(self.to_dict(), indent=4 if pretty else None)

    def summary(self) -> str:
        """
        Return a summary of this ``FsDiffResults`` instance.

        :returns: A string summarizing this instance.
        :rtype: ``str``
        """
        size_delta = sum(r.size_delta for r in self.modified)
        sign = "-" if size_delta < 0 else "+"
        return (
            f"Total changes:     {self.total_changes}\n"
            f"  Paths added:     {len(self.added)}\n"
            f"  Paths modified:  {len(self.modified)} "
            f"({sign}{size_fmt(abs(size_delta))})\n"
            f"  Paths deleted:   {len(self.deleted)}\n"
            f"  Paths renamed:   {len(self.renamed)}"
        )

    def format(self, output_format: str) -> str:
        """
        Render this instance in the named output format.

        :param output_format: One of ``DIFF_FORMATS``.
        :type output_format: ``str``
        :returns: The rendered results.
        :rtype: ``str``
        """
        if output_format not in self.DIFF_FORMATS:
            raise ValueError(f"Unknown diff format: {output_format}")
        if output_format == "paths":
            return "\n".join(self.paths())
        if output_format == "json":
            return self.json(pretty=True)
        if output_format == "full":
            return self.full()
        return self.summary()


class DiffEngine:
    """
    Core class for generating snapshot comparisons.
    """

    def compute_diff(
        self,
        previous: Snapshot,
        new: Snapshot,
        options: Optional[DiffOptions] = None,
    ) -> FsDiffResults:
        """
        Compare two snapshots and resolve renames.

        :param previous: The snapshot from the last successful run.
        :type previous: ``Snapshot``
        :param new: The snapshot from this run.
        :type new: ``Snapshot``
        :param options: Options to apply to the diff generation.
        :type options: ``DiffOptions``
        :returns: An ``FsDiffResults`` instance.
        :rtype: ``FsDiffResults``
        """
        if options is None:
            options = DiffOptions()

        start_time = datetime.now()
        timestamp = floor(start_time.timestamp())

        if not previous:
            _log_info("No previous snapshot: treating all %d paths as added", len(new))

        _log_debug_diff(
            "Starting compute_diff with %d previous and %d new paths",
            len(previous),
            len(new),
        )

        raw = diff_snapshots(previous, new)
        _log_debug_diff(
            "Raw differences: added=%d, modified=%d, deleted=%d",
            len(raw.added),
            len(raw.modified),
            len(raw.deleted),
        )

        resolved = resolve_renames(
            raw.added, raw.deleted, include_metadata=options.metadata_renames
        )
        end_time = datetime.now()

        results = FsDiffResults(
            resolved.added,
            raw.modified,
            resolved.deleted,
            resolved.renamed,
            options,
            timestamp,
        )
        _log_info(
            "Found %d differences in %s", results.total_changes, end_time - start_time
        )
        return results


__all__ = [
    "DiffEngine",
    "FsDiffResults",
    "ModifiedRecord",
    "RawDiff",
    "diff_snapshots",
]
