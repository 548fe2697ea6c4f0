# Copyright Red Hat
#
# snapdelta/fsdiff/store.py - Snapshot delta snapshot store
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Snapshot persistence.

A stored snapshot is a UTF-8 CSV table with the header row
``RelPath,SizeBytes,LastWriteUtc,Fingerprint`` and one row per file in
ascending ``RelPath`` order. The table may optionally be zstd or xz
compressed. Saving replaces the stored snapshot atomically: until a new
snapshot has been completely written and synced the previous one remains in
place and is what the next run loads.
"""
from typing import Dict, Iterable, List, Optional, Tuple
from stat import S_ISDIR, S_ISLNK
from datetime import datetime
import tempfile
import logging
import lzma
import csv
import io
import os

import zstandard as zstd

from snapdelta import (
    SNAPDELTA_SUBSYSTEM_STORE,
    SnapdeltaDuplicatePathError,
    SnapdeltaParseError,
    SnapdeltaPathError,
    SnapdeltaSystemError,
)
from snapdelta.progress import ProgressBase, NullProgress

from .options import COMPRESSION_TYPES, DEFAULT_SNAPSHOT_NAME
from .snapshot import (
    FileRecord,
    Fingerprint,
    Snapshot,
    format_timestamp,
    parse_timestamp,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_store(msg, *args, **kwargs):
    """A wrapper for store subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": SNAPDELTA_SUBSYSTEM_STORE}, **kwargs)


#: Stored snapshot header row
SNAPSHOT_HEADER: Tuple[str, ...] = ("RelPath", "SizeBytes", "LastWriteUtc", "Fingerprint")

#: Stored snapshot file mode
_SNAPSHOT_FILE_MODE: int = 0o644

#: File name extensions for each compression type
_COMPRESSION_EXTENSIONS: Dict[str, str] = {
    "none": "csv",
    "zstd": "csv.zst",
    "xz": "csv.xz",
}

#: Errors raised by the decompressors
_DECOMPRESS_ERRORS = (zstd.ZstdError, lzma.LZMAError, EOFError)


def _compression_for_path(path: str) -> str:
    """
    Return the compression type implied by the extension of ``path``.

    :param path: A snapshot file path.
    :type path: ``str``
    :returns: One of ``COMPRESSION_TYPES``.
    :rtype: ``str``
    """
    if path.endswith("." + _COMPRESSION_EXTENSIONS["zstd"]):
        return "zstd"
    if path.endswith("." + _COMPRESSION_EXTENSIONS["xz"]):
        return "xz"
    return "none"


def _compress(data: bytes, compression: str) -> bytes:
    if compression == "zstd":
        return zstd.ZstdCompressor().compress(data)
    if compression == "xz":
        return lzma.compress(data, format=lzma.FORMAT_XZ)
    return data


def _decompress(data: bytes, compression: str) -> bytes:
    if compression == "zstd":
        dobj = zstd.ZstdDecompressor().decompressobj()
        text = dobj.decompress(data)
        if not dobj.eof:
            raise EOFError("Compressed data ended before the end of the frame")
        return text
    if compression == "xz":
        return lzma.decompress(data, format=lzma.FORMAT_XZ)
    return data


def encode_snapshot(records: Iterable[FileRecord]) -> str:
    """
    Serialize ``records`` as a path sorted CSV table.

    :param records: The records to encode.
    :type records: ``Iterable[FileRecord]``
    :returns: The CSV text including the header row.
    :rtype: ``str``
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(SNAPSHOT_HEADER)
    for record in sorted(records, key=lambda r: r.rel_path):
        writer.writerow(
            (
                record.rel_path,
                record.size,
                format_timestamp(record.mtime),
                str(record.fingerprint),
            )
        )
    return buf.getvalue()


def decode_snapshot(text: str, name: str = "<snapshot>") -> Optional[Snapshot]:
    """
    Parse CSV snapshot text produced by ``encode_snapshot()``.

    :param text: The CSV text.
    :type text: ``str``
    :param name: A name for ``text`` to use in messages.
    :type name: ``str``
    :returns: The decoded snapshot, or ``None`` if the header row does not
              match the current format.
    :rtype: ``Optional[Snapshot]``
    :raises: ``SnapdeltaParseError`` if a data row is malformed.
    """
    reader = csv.reader(io.StringIO(text, newline=""))
    header = next(reader, None)
    if header is None or tuple(header) != SNAPSHOT_HEADER:
        _log_warn(
            "Snapshot %s has an unrecognised header (%s): ignoring it",
            name,
            ",".join(header or []),
        )
        return None

    records: List[FileRecord] = []
    for row in reader:
        if not row:
            continue
        if len(row) != len(SNAPSHOT_HEADER):
            raise SnapdeltaParseError(
                f"Malformed row at line {reader.line_num} of {name}: "
                f"expected {len(SNAPSHOT_HEADER)} fields, found {len(row)}"
            )
        rel_path, size_str, mtime_str, fingerprint_str = row
        try:
            size = int(size_str)
        except ValueError as err:
            raise SnapdeltaParseError(
                f"Malformed size at line {reader.line_num} of {name}: '{size_str}'"
            ) from err
        if size < 0 or not rel_path:
            raise SnapdeltaParseError(f"Malformed row at line {reader.line_num} of {name}")
        try:
            records.append(
                FileRecord(
                    rel_path,
                    size,
                    parse_timestamp(mtime_str),
                    Fingerprint.parse(fingerprint_str),
                )
            )
        except SnapdeltaParseError as err:
            raise SnapdeltaParseError(
                f"Malformed row at line {reader.line_num} of {name}: {err}"
            ) from err

    try:
        return Snapshot(records)
    except SnapdeltaDuplicatePathError as err:
        raise SnapdeltaParseError(f"Corrupt snapshot {name}: {err}") from err


def read_snapshot(path: str) -> Optional[Snapshot]:
    """
    Read the stored snapshot at ``path``, decompressing as indicated by the
    file name extension.

    :param path: The snapshot file path.
    :type path: ``str``
    :returns: The snapshot or ``None`` if the header is not recognised.
    :rtype: ``Optional[Snapshot]``
    """
    compression = _compression_for_path(path)
    try:
        with open(path, "rb") as fp:
            data = fp.read()
    except OSError as err:
        raise SnapdeltaSystemError(f"Failed to read snapshot {path}: {err}") from err

    try:
        text = _decompress(data, compression).decode("utf8")
    except (*_DECOMPRESS_ERRORS, UnicodeDecodeError) as err:
        raise SnapdeltaParseError(f"Failed to decode snapshot {path}: {err}") from err

    return decode_snapshot(text, name=path)


def _check_store_dir(dirpath: str) -> str:
    """
    Check that the snapshot store directory exists and is a real directory.

    :param dirpath: Path to the directory
    :type dirpath: ``str``
    :returns: The directory path
    :rtype: ``str``
    """
    try:
        st = os.lstat(dirpath)
    except FileNotFoundError as err:
        raise SnapdeltaPathError(
            f"Snapshot store directory {dirpath} does not exist"
        ) from err
    except OSError as err:
        raise SnapdeltaPathError(
            f"Failed to stat snapshot store directory {dirpath}: {err}"
        ) from err
    if S_ISLNK(st.st_mode):
        raise SnapdeltaPathError(
            f"Snapshot store directory {dirpath} is a symlink (not secure)"
        )
    if not S_ISDIR(st.st_mode):
        raise SnapdeltaPathError(
            f"Snapshot store {dirpath} exists but is not a directory"
        )
    return dirpath


class SnapshotStore:
    """
    Loads and saves the most recent successfully committed snapshot.
    """

    def __init__(
        self,
        directory: str,
        name: str = DEFAULT_SNAPSHOT_NAME,
        compression: str = "none",
    ):
        """
        Initialise a new ``SnapshotStore``.

        :param directory: The directory holding the stored snapshot.
        :type directory: ``str``
        :param name: The snapshot file base name.
        :type name: ``str``
        :param compression: The compression type used when saving.
        :type compression: ``str``
        """
        if compression not in COMPRESSION_TYPES:
            raise ValueError(f"Unknown compression type: {compression}")
        self.directory: str = directory
        self.name: str = name
        self.compression: str = compression

    def __repr__(self) -> str:
        return (
            f"SnapshotStore({self.directory!r}, name={self.name!r}, "
            f"compression={self.compression!r})"
        )

    @property
    def path(self) -> str:
        """
        The path that ``save()`` writes to.
        """
        return self._path_for(self.compression)

    def _path_for(self, compression: str) -> str:
        return os.path.join(
            self.directory, f"{self.name}.{_COMPRESSION_EXTENSIONS[compression]}"
        )

    def _candidates(self) -> List[str]:
        """
        Return stored snapshot paths in load preference order: the configured
        compression first, then any other variant.
        """
        order = [self.compression] + [
            comp for comp in COMPRESSION_TYPES if comp != self.compression
        ]
        return [self._path_for(comp) for comp in order]

    def exists(self) -> bool:
        """
        ``True`` if a stored snapshot is present.
        """
        return any(os.path.exists(path) for path in self._candidates())

    def load(self) -> Snapshot:
        """
        Load the stored snapshot.

        Returns an empty ``Snapshot`` if no snapshot has been stored yet, or
        if the stored snapshot uses an unrecognised format.

        :returns: The previous snapshot.
        :rtype: ``Snapshot``
        """
        _check_store_dir(self.directory)
        for path in self._candidates():
            if not os.path.exists(path):
                continue
            _log_debug_store("Loading snapshot from %s", path)
            start_time = datetime.now()
            snapshot = read_snapshot(path)
            if snapshot is None:
                return Snapshot()
            end_time = datetime.now()
            _log_info(
                "Loaded %d records from %s in %s",
                len(snapshot),
                path,
                end_time - start_time,
            )
            return snapshot

        _log_info("No stored snapshot in %s: starting from empty", self.directory)
        return Snapshot()

    def save(
        self,
        records: Iterable[FileRecord],
        progress: Optional[ProgressBase] = None,
    ) -> str:
        """
        Atomically replace the stored snapshot with ``records``.

        :param records: The records to store.
        :type records: ``Iterable[FileRecord]``
        :param progress: An optional progress indicator.
        :type progress: ``Optional[ProgressBase]``
        :returns: The path of the saved snapshot.
        :rtype: ``str``
        :raises: ``SnapdeltaSystemError`` if the snapshot could not be written.
                 The previously stored snapshot is left in place.
        """
        _check_store_dir(self.directory)
        records = list(records)
        progress = progress or NullProgress(register=False)
        snapshot_path = self.path
        start_time = datetime.now()

        try:
            text = encode_snapshot(records).encode("utf8")
        except UnicodeEncodeError as err:
            raise SnapdeltaSystemError(
                f"Cannot encode snapshot for '{snapshot_path}': {err}"
            ) from err
        data = _compress(text, self.compression)

        progress.start(len(data) or 1)
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=self.directory, prefix=".tmp_", suffix=f".{self.name}"
            )
        except OSError as err:
            progress.cancel("Error.")
            raise SnapdeltaSystemError(
                f"Filesystem error creating temporary file for '{snapshot_path}': {err}"
            ) from err

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fdatasync(f.fileno())
            os.chmod(tmp_path, _SNAPSHOT_FILE_MODE)
            os.rename(tmp_path, snapshot_path)

            # Ensure directory metadata is written to disk
            dir_fd = os.open(self.directory, os.O_DIRECTORY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        except OSError as err:
            _log_error("Error saving snapshot %s: %s", snapshot_path, err)
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            except OSError as err2:
                _log_error("Error unlinking temporary file %s: %s", tmp_path, err2)
            progress.cancel("Error.")
            raise SnapdeltaSystemError(
                f"Filesystem error writing snapshot '{snapshot_path}': {err}"
            ) from err

        for stale in self._candidates()[1:]:
            if os.path.exists(stale):
                _log_info("Removing stale snapshot %s", stale)
                try:
                    os.unlink(stale)
                except OSError as err:
                    _log_warn("Error removing stale snapshot %s: %s", stale, err)

        end_time = datetime.now()
        progress.end(
            f"Saved {len(records)} records to {snapshot_path} in {end_time - start_time}"
        )
        _log_debug_store("Saved %d records to %s", len(records), snapshot_path)
        return snapshot_path


__all__ = [
    "SNAPSHOT_HEADER",
    "SnapshotStore",
    "decode_snapshot",
    "encode_snapshot",
    "read_snapshot",
]
