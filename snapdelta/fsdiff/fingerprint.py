# Copyright Red Hat
#
# snapdelta/fsdiff/fingerprint.py - Snapshot delta fingerprint generator
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Per-file fingerprint generation.

Files no larger than the hash threshold are fingerprinted by a digest of
their complete content. Larger files, and files whose content cannot be read,
fall back to a metadata fingerprint built from the exact size and the UTC
modification time. Fingerprinting never fails because a file is unreadable.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from hashlib import md5, sha1, sha256, sha512
from typing import Iterable, List, NamedTuple, Optional
from datetime import datetime
from pathlib import Path
import logging
import os

from snapdelta import DEFAULT_HASH_THRESHOLD, SNAPDELTA_SUBSYSTEM_FINGERPRINT
from snapdelta.progress import ProgressBase, NullProgress

from .snapshot import FileRecord, Fingerprint, Snapshot

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_fingerprint(msg, *args, **kwargs):
    """A wrapper for fingerprint subsystem debug logs."""
    _log.debug(
        msg, *args, extra={"subsystem": SNAPDELTA_SUBSYSTEM_FINGERPRINT}, **kwargs
    )


_HASH_TYPES = {
    "md5": md5,
    "sha1": sha1,
    "sha256": sha256,
    "sha512": sha512,
}

#: Names of the supported content hash algorithms
HASH_ALGORITHMS = tuple(_HASH_TYPES.keys())

#: Read size for content hashing
_CHUNK_SIZE = 65536


class ScanEntry(NamedTuple):
    """
    One raw file entry produced by tree traversal.
    """

    #: Absolute path to the file
    path: str
    #: File size in bytes
    size: int
    #: Last modification time (UTC)
    mtime: datetime


def relative_path(root: str, path: str) -> str:
    """
    Return ``path`` relative to ``root`` using POSIX separators.

    :param root: The scan root.
    :type root: ``str``
    :param path: An absolute path below ``root``.
    :type path: ``str``
    :returns: The relative path string.
    :rtype: ``str``
    """
    return Path(os.path.relpath(path, root)).as_posix()


class FingerprintGenerator:
    """
    Turns file metadata (and, conditionally, content) into ``FileRecord``
    objects.
    """

    def __init__(
        self,
        threshold: int = DEFAULT_HASH_THRESHOLD,
        hash_algorithm: str = "sha256",
    ):
        """
        Initialise a new ``FingerprintGenerator``.

        :param threshold: The largest file size, in bytes, that is content
                          hashed.
        :type threshold: ``int``
        :param hash_algorithm: The name of the content hash algorithm.
        :type hash_algorithm: ``str``
        """
        if threshold < 0:
            raise ValueError(f"Invalid hash threshold: {threshold}")
        if hash_algorithm not in _HASH_TYPES:
            raise ValueError(f"Unknown hash algorithm: {hash_algorithm}")
        self.threshold: int = threshold
        self.hash_algorithm: str = hash_algorithm
        self.hasher = _HASH_TYPES[hash_algorithm]

    def _calculate_content_hash(self, file_path: str) -> str:
        """
        Calculate a content hash for ``file_path``.

        :param file_path: The path to the file to hash.
        :type file_path: ``str``
        :returns: The hex digest of the file content.
        :rtype: ``str``
        """
        hasher = self.hasher()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    def fingerprint_file(self, path: str, size: int, mtime: datetime) -> Fingerprint:
        """
        Compute the fingerprint for one file.

        :param path: The absolute path of the file.
        :type path: ``str``
        :param size: The file size in bytes.
        :type size: ``int``
        :param mtime: The UTC last modification time.
        :type mtime: ``datetime``
        :returns: A content fingerprint, or a metadata fingerprint if the
                  file exceeds the threshold or cannot be read.
        :rtype: ``Fingerprint``
        """
        if size > self.threshold:
            _log_debug_fingerprint(
                "Using metadata fingerprint for '%s' (%d > %d bytes)",
                path,
                size,
                self.threshold,
            )
            return Fingerprint.metadata(size, mtime)
        try:
            return Fingerprint.content(self._calculate_content_hash(path))
        except OSError as err:
            _log_warn(
                "Could not read '%s' (%s): using metadata fingerprint", path, err
            )
            return Fingerprint.metadata(size, mtime)

    def make_record(self, root: str, entry: ScanEntry) -> FileRecord:
        """
        Build the ``FileRecord`` for ``entry`` below scan root ``root``.

        :param root: The scan root.
        :type root: ``str``
        :param entry: The raw file entry.
        :type entry: ``ScanEntry``
        :returns: A new ``FileRecord``.
        :rtype: ``FileRecord``
        """
        fingerprint = self.fingerprint_file(entry.path, entry.size, entry.mtime)
        rel_path = relative_path(root, entry.path)
        _log_debug_fingerprint("Fingerprinted '%s': %s", rel_path, fingerprint)
        return FileRecord(rel_path, entry.size, entry.mtime, fingerprint)

    def fingerprint_entries(
        self,
        root: str,
        entries: Iterable[ScanEntry],
        workers: int = 1,
        progress: Optional[ProgressBase] = None,
    ) -> Snapshot:
        """
        Fingerprint every entry in ``entries`` and return a new ``Snapshot``.

        With ``workers`` greater than one, fingerprints are computed by a
        bounded thread pool. The resulting snapshot is ordered by relative
        path whatever order the workers complete in.

        :param root: The scan root that ``entries`` were found below.
        :type root: ``str``
        :param entries: The raw file entries to fingerprint.
        :type entries: ``Iterable[ScanEntry]``
        :param workers: The maximum number of concurrent workers.
        :type workers: ``int``
        :param progress: An optional progress indicator.
        :type progress: ``Optional[ProgressBase]``
        :returns: The new snapshot.
        :rtype: ``Snapshot``
        """
        entries = list(entries)
        if not entries:
            return Snapshot()

        progress = progress or NullProgress(register=False)
        start_time = datetime.now()
        records: List[FileRecord] = []

        progress.start(len(entries))
        try:
            if workers <= 1:
                for i, entry in enumerate(entries):
                    progress.progress(i, f"Fingerprinting '{entry.path}'")
                    records.append(self.make_record(root, entry))
            else:
                _log_debug_fingerprint(
                    "Fingerprinting %d files with %d workers", len(entries), workers
                )
                with ThreadPoolExecutor(max_workers=workers) as executor:
                    futures = [
                        executor.submit(self.make_record, root, entry)
                        for entry in entries
                    ]
                    for i, future in enumerate(as_completed(futures)):
                        record = future.result()
                        progress.progress(i, f"Fingerprinted '{record.rel_path}'")
                        records.append(record)
        except KeyboardInterrupt:
            progress.cancel("Quit!")
            raise
        except SystemExit:
            progress.cancel("Exiting.")
            raise

        end_time = datetime.now()
        progress.end(f"Fingerprinted {len(records)} files in {end_time - start_time}")
        return Snapshot(records)


__all__ = [
    "HASH_ALGORITHMS",
    "FingerprintGenerator",
    "ScanEntry",
    "relative_path",
]
