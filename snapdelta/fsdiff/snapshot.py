# Copyright Red Hat
#
# snapdelta/fsdiff/snapshot.py - Snapshot delta snapshot model
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Snapshot data model: fingerprints, per-file records and immutable snapshots.

A ``Snapshot`` is a mapping from relative path to ``FileRecord``. Whatever
order records are supplied in, a snapshot always iterates, lists and
serializes its records in ascending relative path order.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional
import logging
import re

from snapdelta import SnapdeltaDuplicatePathError, SnapdeltaParseError

from .difftypes import FingerprintKind

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Prefix for metadata fallback fingerprints
META_PREFIX = "META:"

#: Hex digest lengths of the supported content hash algorithms
_DIGEST_LENGTHS = (32, 40, 64, 128)

_HEX_DIGEST_RE = re.compile(r"[0-9a-fA-F]+")

#: Serialized timestamp format: ISO-8601 UTC with microseconds
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_timestamp(value: datetime) -> str:
    """
    Format ``value`` as a fixed width ISO-8601 UTC timestamp string.

    Naive datetimes are assumed to already be in UTC.

    :param value: The timestamp to format.
    :type value: ``datetime``
    :returns: A string of the form ``YYYY-MM-DDTHH:MM:SS.ffffffZ``.
    :rtype: ``str``
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """
    Parse a timestamp string written by ``format_timestamp()``.

    :param value: The string to parse.
    :type value: ``str``
    :returns: An aware UTC ``datetime``.
    :rtype: ``datetime``
    :raises: ``SnapdeltaParseError`` if ``value`` is malformed.
    """
    try:
        parsed = datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError as err:
        raise SnapdeltaParseError(f"Malformed timestamp '{value}': {err}") from err
    return parsed.replace(tzinfo=timezone.utc)


def timestamp_from_ns(mtime_ns: int) -> datetime:
    """
    Convert an ``st_mtime_ns`` value into an aware UTC ``datetime``.

    :param mtime_ns: Nanoseconds since the UNIX epoch.
    :type mtime_ns: ``int``
    :returns: The corresponding UTC ``datetime`` (microsecond precision).
    :rtype: ``datetime``
    """
    seconds, nanos = divmod(mtime_ns, 10**9)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(
        microsecond=nanos // 1000
    )


@dataclass(frozen=True)
class Fingerprint:
    """
    A file fingerprint carrying its provenance.

    ``CONTENT`` fingerprints are hex digests of the complete file data.
    ``METADATA`` fingerprints are ``META:<bytes>:<timestamp>`` tags that only
    reflect size and modification time: two distinct files with the same size
    and mtime share a metadata fingerprint.
    """

    kind: FingerprintKind
    value: str

    def __str__(self) -> str:
        return self.value

    @property
    def is_content(self) -> bool:
        """
        ``True`` if this fingerprint is a content digest.
        """
        return self.kind == FingerprintKind.CONTENT

    @classmethod
    def content(cls, digest: str) -> "Fingerprint":
        """
        Return a content fingerprint for hex ``digest``.
        """
        return cls(FingerprintKind.CONTENT, digest.lower())

    @classmethod
    def metadata(cls, size: int, mtime: datetime) -> "Fingerprint":
        """
        Return a metadata fallback fingerprint for ``size`` and ``mtime``.

        :param size: The file size in bytes.
        :type size: ``int``
        :param mtime: The file modification time.
        :type mtime: ``datetime``
        :returns: A new ``METADATA`` fingerprint.
        :rtype: ``Fingerprint``
        """
        return cls(
            FingerprintKind.METADATA,
            f"{META_PREFIX}{size}:{format_timestamp(mtime)}",
        )

    @classmethod
    def parse(cls, text: str) -> "Fingerprint":
        """
        Recover a ``Fingerprint`` from its serialized form.

        :param text: A hex digest or a ``META:`` tag.
        :type text: ``str``
        :returns: The parsed fingerprint.
        :rtype: ``Fingerprint``
        :raises: ``SnapdeltaParseError`` if ``text`` is neither form.
        """
        if text.startswith(META_PREFIX):
            size, sep, stamp = text[len(META_PREFIX) :].partition(":")
            if not sep or not size.isdigit():
                raise SnapdeltaParseError(f"Malformed metadata fingerprint: '{text}'")
            parse_timestamp(stamp)
            return cls(FingerprintKind.METADATA, text)
        if len(text) not in _DIGEST_LENGTHS or not _HEX_DIGEST_RE.fullmatch(text):
            raise SnapdeltaParseError(f"Malformed fingerprint: '{text}'")
        return cls(FingerprintKind.CONTENT, text.lower())


@dataclass(frozen=True)
class FileRecord:
    """
    The fingerprint record for one file in a snapshot.
    """

    #: Path relative to the scan root (POSIX separators)
    rel_path: str
    #: File size in bytes
    size: int
    #: Last modification time (UTC)
    mtime: datetime
    #: Content or metadata fingerprint
    fingerprint: Fingerprint

    def __str__(self) -> str:
        return (
            f"{self.rel_path} size={self.size} "
            f"mtime={format_timestamp(self.mtime)} fingerprint={self.fingerprint}"
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this ``FileRecord`` into a dictionary suitable for encoding
        as JSON.

        :returns: A dictionary mapping this instance's keys to values.
        :rtype: ``Dict[str, Any]``
        """
        return {
            "path": self.rel_path,
            "size": self.size,
            "mtime": format_timestamp(self.mtime),
            "fingerprint": str(self.fingerprint),
            "fingerprint_kind": self.fingerprint.kind.value,
        }


class Snapshot(Mapping[str, FileRecord]):
    """
    An immutable, path ordered collection of ``FileRecord`` objects.
    """

    def __init__(self, records: Optional[Iterable[FileRecord]] = None):
        """
        Initialise a new ``Snapshot`` from ``records``.

        :param records: The file records making up this snapshot.
        :type records: ``Optional[Iterable[FileRecord]]``
        :raises: ``SnapdeltaDuplicatePathError`` if two records share a
                 relative path.
        """
        by_path: Dict[str, FileRecord] = {}
        for record in records or ():
            if record.rel_path in by_path:
                raise SnapdeltaDuplicatePathError(
                    f"Duplicate path in snapshot: '{record.rel_path}'"
                )
            by_path[record.rel_path] = record
        self._records: Dict[str, FileRecord] = {
            path: by_path[path] for path in sorted(by_path)
        }

    def __repr__(self) -> str:
        return f"Snapshot([...{len(self)} records])"

    def __getitem__(self, rel_path: str) -> FileRecord:
        return self._records[rel_path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> List[FileRecord]:
        """
        Return the records in this snapshot in ascending path order.

        :returns: A list of ``FileRecord`` objects.
        :rtype: ``List[FileRecord]``
        """
        return list(self._records.values())
