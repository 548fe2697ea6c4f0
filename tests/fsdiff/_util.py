# Copyright Red Hat
#
# tests/fsdiff/_util.py - Snapshot delta engine test utilities.
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
from datetime import datetime, timezone
from hashlib import sha256

from snapdelta.fsdiff.snapshot import FileRecord, Fingerprint, Snapshot

_DEFAULT_MTIME = datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)


def make_fingerprint(content=None, size=None, mtime=_DEFAULT_MTIME):
    """
    Return a content fingerprint for ``content``, or a metadata fingerprint
    for ``size`` and ``mtime`` if ``content`` is ``None``.
    """
    if content is not None:
        if isinstance(content, str):
            content = content.encode("utf8")
        return Fingerprint.content(sha256(content).hexdigest())
    return Fingerprint.metadata(size, mtime)


def make_record(
    rel_path,
    content="",
    size=None,
    mtime=_DEFAULT_MTIME,
    metadata=False,
):
    """
    Factory to create FileRecord objects without touching disk.
    """
    if size is None:
        size = len(content)
    if metadata:
        fingerprint = make_fingerprint(size=size, mtime=mtime)
    else:
        fingerprint = make_fingerprint(content=content)
    return FileRecord(rel_path, size, mtime, fingerprint)


def make_snapshot(*records):
    """
    Build a ``Snapshot`` from ``records``.
    """
    return Snapshot(records)
