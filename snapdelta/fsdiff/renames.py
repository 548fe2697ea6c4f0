# Copyright Red Hat
#
# snapdelta/fsdiff/renames.py - Snapshot delta rename resolver
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Rename detection by fingerprint collision.

A deleted path and an added path that share a fingerprint are reported as a
single rename. When several deleted or added paths share one fingerprint
they are paired positionally in ascending path order, up to the size of the
smaller group. Which of several candidates is paired with which is a best
effort approximation: fingerprints carry no file identity, so the pairing is
not guaranteed to match the rename that actually happened. Callers must
treat the choice among equal candidates as unspecified.
"""
from collections import defaultdict
from typing import Any, Dict, List, NamedTuple, Sequence
import logging

from snapdelta import SNAPDELTA_SUBSYSTEM_DIFF

from .snapshot import FileRecord, Fingerprint

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_diff(msg, *args, **kwargs):
    """A wrapper for diff subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": SNAPDELTA_SUBSYSTEM_DIFF}, **kwargs)


class RenamedRecord(NamedTuple):
    """
    A deleted/added pair reclassified as a rename.
    """

    #: Relative path in the previous snapshot
    moved_from: str
    #: Relative path in the new snapshot
    moved_to: str
    #: The shared fingerprint
    fingerprint: Fingerprint

    @property
    def content_match(self) -> bool:
        """
        ``True`` if the pair matched on a content digest rather than on a
        metadata fallback fingerprint.
        """
        return self.fingerprint.is_content

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this ``RenamedRecord`` into a dictionary suitable for encoding
        as JSON.

        :returns: A dictionary mapping this instance's keys to values.
        :rtype: ``Dict[str, Any]``
        """
        return {
            "moved_from": self.moved_from,
            "moved_to": self.moved_to,
            "fingerprint": str(self.fingerprint),
            "content_match": self.content_match,
        }


class ResolvedRenames(NamedTuple):
    """
    The final added, deleted and renamed lists after rename resolution.
    """

    added: List[FileRecord]
    deleted: List[FileRecord]
    renamed: List[RenamedRecord]


def _group_by_fingerprint(
    records: Sequence[FileRecord],
) -> Dict[Fingerprint, List[FileRecord]]:
    """
    Group ``records`` by fingerprint, each group in ascending path order.
    """
    groups = defaultdict(list)
    for record in sorted(records, key=lambda r: r.rel_path):
        groups[record.fingerprint].append(record)
    return groups


def resolve_renames(
    added: Sequence[FileRecord],
    deleted: Sequence[FileRecord],
    include_metadata: bool = True,
) -> ResolvedRenames:
    """
    Pair deleted and added records sharing a fingerprint as renames.

    The inputs are not modified. Every path in the result appears in at most
    one of the returned added list, deleted list, or one side of a rename.

    :param added: Records present only in the new snapshot.
    :type added: ``Sequence[FileRecord]``
    :param deleted: Records present only in the previous snapshot.
    :type deleted: ``Sequence[FileRecord]``
    :param include_metadata: Also pair metadata fallback fingerprints.
    :type include_metadata: ``bool``
    :returns: The residual added and deleted records and the renames, each
              sorted by path.
    :rtype: ``ResolvedRenames``
    """
    added_groups = _group_by_fingerprint(added)
    deleted_groups = _group_by_fingerprint(deleted)

    renamed: List[RenamedRecord] = []
    paired_added = set()
    paired_deleted = set()

    for fingerprint, from_group in deleted_groups.items():
        if not include_metadata and not fingerprint.is_content:
            continue
        to_group = added_groups.get(fingerprint)
        if not to_group:
            continue
        if len(from_group) > 1 or len(to_group) > 1:
            _log_debug_diff(
                "Ambiguous rename candidates for %s: %d deleted, %d added "
                "(pairing in path order)",
                fingerprint,
                len(from_group),
                len(to_group),
            )
        for old, new in zip(from_group, to_group):
            _log_debug_diff("Detected rename '%s' -> '%s'", old.rel_path, new.rel_path)
            renamed.append(RenamedRecord(old.rel_path, new.rel_path, fingerprint))
            paired_deleted.add(old.rel_path)
            paired_added.add(new.rel_path)

    return ResolvedRenames(
        added=sorted(
            (r for r in added if r.rel_path not in paired_added),
            key=lambda r: r.rel_path,
        ),
        deleted=sorted(
            (r for r in deleted if r.rel_path not in paired_deleted),
            key=lambda r: r.rel_path,
        ),
        renamed=sorted(renamed, key=lambda r: (r.moved_from, r.moved_to)),
    )


__all__ = [
    "RenamedRecord",
    "ResolvedRenames",
    "resolve_renames",
]
