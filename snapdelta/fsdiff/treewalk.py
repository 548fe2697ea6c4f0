# Copyright Red Hat
#
# snapdelta/fsdiff/treewalk.py - Snapshot delta tree walk
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Tree walking support: produces the raw file entries that are fingerprinted
into a snapshot.
"""
from typing import List, Tuple
from fnmatch import fnmatch
from datetime import datetime
import logging
import stat
import os

from snapdelta import SNAPDELTA_SUBSYSTEM_FINGERPRINT, SnapdeltaPathError

from .fingerprint import ScanEntry, relative_path
from .options import DiffOptions
from .snapshot import timestamp_from_ns

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


def _valid_name(name: str) -> bool:
    """
    Return ``True`` if ``name`` can be stored in a UTF-8 snapshot. Names that
    are not valid UTF-8 on disk are decoded with surrogate escapes.
    """
    try:
        name.encode("utf8")
    except UnicodeEncodeError:
        return False
    return True


class TreeWalker:
    """
    Simple file system tree walker.

    Only regular files are reported. Symbolic links are neither followed nor
    reported.
    """

    def __init__(self, options: DiffOptions):
        """
        Initialise a new ``TreeWalker`` object.

        :param options: Options to control this ``TreeWalker`` instance.
        :type options: ``DiffOptions``
        """
        self.options: DiffOptions = options
        self.exclude_patterns: Tuple[str, ...] = options.exclude_patterns

    def _excluded(self, rel_path: str) -> bool:
        """
        Return ``True`` if ``rel_path`` matches an exclusion pattern.

        :param rel_path: The path relative to the scan root.
        :type rel_path: ``str``
        :rtype: ``bool``
        """
        return any(fnmatch(rel_path, pat) for pat in self.exclude_patterns)

    def walk(self, root: str) -> List[ScanEntry]:
        """
        Walk the tree below ``root`` and return its regular files.

        :param root: The scan root.
        :type root: ``str``
        :returns: A list of ``ScanEntry`` tuples in path order.
        :rtype: ``List[ScanEntry]``
        :raises: ``SnapdeltaPathError`` if ``root`` is not a directory.
        """
        if not os.path.isdir(root):
            raise SnapdeltaPathError(f"Scan root '{root}' is not a directory")

        root = os.path.abspath(root)
        _log_info("Gathering paths to scan from %s", root)

        def _onerror(err: OSError):
            _log_warn("Error walking '%s': %s", err.filename, err)

        start_time = datetime.now()
        entries: List[ScanEntry] = []
        excluded = 0
        invalid = 0

        def _check_name(dirpath: str, name: str) -> bool:
            nonlocal invalid
            if _valid_name(name):
                return True
            _log_warn(
                "Skipping path with non-UTF-8 name: %r",
                os.fsencode(os.path.join(dirpath, name)),
            )
            invalid += 1
            return False

        for dirpath, dirnames, filenames in os.walk(root, onerror=_onerror):
            kept = []
            for name in sorted(dirnames):
                if not _check_name(dirpath, name):
                    continue
                if self._excluded(relative_path(root, os.path.join(dirpath, name))):
                    excluded += 1
                    continue
                kept.append(name)
            dirnames[:] = kept

            for name in sorted(filenames):
                if not _check_name(dirpath, name):
                    continue
                pathname = os.path.join(dirpath, name)
                if self._excluded(relative_path(root, pathname)):
                    excluded += 1
                    continue
                try:
                    path_stat = os.lstat(pathname)
                except FileNotFoundError:
                    _log_debug_fingerprint("Path '%s' vanished during scan", pathname)
                    continue
                except OSError as err:
                    _log_warn("Could not stat '%s': %s", pathname, err)
                    continue

                if not stat.S_ISREG(path_stat.st_mode):
                    continue

                entries.append(
                    ScanEntry(
                        pathname,
                        path_stat.st_size,
                        timestamp_from_ns(path_stat.st_mtime_ns),
                    )
                )

        entries.sort(key=lambda entry: entry.path)
        end_time = datetime.now()
        _log_info(
            "Scanned %d files in %s (excluded %d, skipped %d invalid names)",
            len(entries),
            end_time - start_time,
            excluded,
            invalid,
        )
        return entries


__all__ = [
    "TreeWalker",
]
