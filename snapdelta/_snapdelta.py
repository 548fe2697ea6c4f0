# Copyright Red Hat
#
# snapdelta/_snapdelta.py - Snapshot delta global definitions
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Global definitions for the top-level snapdelta package.
"""
from typing import Optional, TextIO, TYPE_CHECKING
import logging
import weakref
import math
import sys
import re

if TYPE_CHECKING:
    from .progress import ProgressBase

_log = logging.getLogger("snapdelta")

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# Snapdelta debugging subsystem mask (legacy interface)
SNAPDELTA_DEBUG_FINGERPRINT = 1
SNAPDELTA_DEBUG_DIFF = 2
SNAPDELTA_DEBUG_STORE = 4
SNAPDELTA_DEBUG_COMMAND = 8
SNAPDELTA_DEBUG_ALL = (
    SNAPDELTA_DEBUG_FINGERPRINT
    | SNAPDELTA_DEBUG_DIFF
    | SNAPDELTA_DEBUG_STORE
    | SNAPDELTA_DEBUG_COMMAND
)

# Snapdelta debugging subsystem names
SNAPDELTA_SUBSYSTEM_FINGERPRINT = "snapdelta.fingerprint"
SNAPDELTA_SUBSYSTEM_DIFF = "snapdelta.diff"
SNAPDELTA_SUBSYSTEM_STORE = "snapdelta.store"
SNAPDELTA_SUBSYSTEM_COMMAND = "snapdelta.command"

_DEBUG_MASK_TO_SUBSYSTEM = {
    SNAPDELTA_DEBUG_FINGERPRINT: SNAPDELTA_SUBSYSTEM_FINGERPRINT,
    SNAPDELTA_DEBUG_DIFF: SNAPDELTA_SUBSYSTEM_DIFF,
    SNAPDELTA_DEBUG_STORE: SNAPDELTA_SUBSYSTEM_STORE,
    SNAPDELTA_DEBUG_COMMAND: SNAPDELTA_SUBSYSTEM_COMMAND,
}

_debug_subsystems = set()

# Registry of active progress instances: uses a WeakSet so we don't prevent
# garbage collection.
_active_progress: weakref.WeakSet = weakref.WeakSet()

#: Default content hashing threshold: 10MiB
DEFAULT_HASH_THRESHOLD = 10 * 2**20

_SIZE_RE = re.compile(r"^(?P<size>[0-9]+)(?P<units>([KMGTPEZkmgtpez]i{,1})?[Bb]{,1})$")

#: All suffixes are expressed in powers of two.
_SIZE_SUFFIXES = {
    "B": 1,
    "K": 2**10,
    "M": 2**20,
    "G": 2**30,
    "T": 2**40,
    "P": 2**50,
    "E": 2**60,
    "Z": 2**70,
}


class SubsystemFilter(logging.Filter):
    """
    Filters DEBUG records based on a set of enabled subsystem names.

    Non-DEBUG records or DEBUG records without a 'subsystem' attribute
    are always passed through.
    """

    def __init__(self, name=""):
        super().__init__(name)
        self.enabled_subsystems = set(_debug_subsystems)

    def filter(self, record):
        # Always pass non-DEBUG messages.
        if record.levelno != logging.DEBUG:
            return True

        # Always pass DEBUG messages that aren't for a specific subsystem.
        if not hasattr(record, "subsystem"):
            return True

        return record.subsystem in self.enabled_subsystems

    def set_debug_subsystems(self, subsystems):
        """Sets the collection of subsystems to allow."""
        self.enabled_subsystems = set(subsystems)


def get_debug_mask():
    """
    Return the current debug mask for the ``snapdelta`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    enabled_subsystems = set(_debug_subsystems)
    snapdelta_log = logging.getLogger("snapdelta")
    for handler in snapdelta_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                enabled_subsystems.update(f.enabled_subsystems)

    mask_map = {v: k for k, v in _DEBUG_MASK_TO_SUBSYSTEM.items()}
    mask = 0
    for subsystem_name in enabled_subsystems:
        mask |= mask_map.get(subsystem_name, 0)
    return mask


def set_debug_mask(mask):
    """
    Set the debug mask for the ``snapdelta`` package.

    :param mask: the logical OR of the ``SNAPDELTA_DEBUG_*``
                 values to log.
    :rtype: None
    """
    # pylint: disable=global-statement
    global _debug_subsystems
    if mask < 0 or mask > SNAPDELTA_DEBUG_ALL:
        raise ValueError(f"Invalid snapdelta debug mask: {mask}")

    enabled_subsystems = [
        subsystem_name
        for flag, subsystem_name in _DEBUG_MASK_TO_SUBSYSTEM.items()
        if mask & flag
    ]

    snapdelta_log = logging.getLogger("snapdelta")
    for handler in snapdelta_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                f.set_debug_subsystems(enabled_subsystems)

    _debug_subsystems = set(enabled_subsystems)


def register_progress(progress: "ProgressBase"):
    """Register a progress instance for log coordination."""
    _active_progress.add(progress)
    progress.registered = True


def unregister_progress(progress: "ProgressBase"):
    """Unregister a progress instance."""
    _active_progress.discard(progress)
    progress.registered = False


def notify_log_output(stream: TextIO):
    """
    Notify progress instances that log output occurred on stream.

    Called by ProgressAwareHandler after emitting a record.

    :param stream: The stream that received output.
    :type stream: ``TextIO``
    """
    if stream not in (sys.stdout, sys.stderr):
        return
    for progress in list(_active_progress):
        if hasattr(progress, "reset_position"):
            progress.reset_position()


class ProgressAwareHandler(logging.StreamHandler):
    """
    A logging handler that coordinates with active Progress instances.

    After emitting a log record, notifies any Progress instances writing
    to the same stream so they can start a fresh line.
    """

    def __init__(self, stream: Optional[TextIO] = None, **kwargs):
        super().__init__(stream=stream or sys.stderr, **kwargs)

    def emit(self, record):
        try:
            msg = self.format(record)
            self.stream.write(msg + "\n")
            self.stream.flush()
            notify_log_output(self.stream)
        except Exception:  # pylint: disable=broad-exception-caught
            self.handleError(record)


#
# Snapdelta exception types
#


class SnapdeltaError(Exception):
    """
    Base class for snapshot delta errors.
    """


class SnapdeltaSystemError(SnapdeltaError):
    """
    An error when calling the operating system.
    """


class SnapdeltaPathError(SnapdeltaError):
    """
    An invalid path was supplied, for example a scan root that does not
    exist or a snapshot store location that is not a directory.
    """


class SnapdeltaParseError(SnapdeltaError):
    """
    An error parsing a stored snapshot or configuration value.
    """


class SnapdeltaBusyError(SnapdeltaError):
    """
    A resource needed by the current run is already in use: for e.g.
    another run holds the lock on the snapshot store.
    """


class SnapdeltaDuplicatePathError(SnapdeltaError):
    """
    The same relative path was supplied more than once for one snapshot.
    """


class SnapdeltaArgumentError(SnapdeltaError):
    """
    An invalid argument was passed to a snapdelta API call.
    """


def size_fmt(value):
    """
    Format a size in bytes as a human readable string.

    :param value: The integer value to format.
    :returns: A human readable string reflecting value.
    """
    suffixes = ["B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB", "ZiB"]
    if value == 0:
        return "0B"
    magnitude = math.floor(math.log(abs(value), 1024))
    val = value / math.pow(1024, magnitude)
    if magnitude > 7:
        return f"{val:.1f}YiB"
    return f"{val:3.1f}{suffixes[magnitude]}"


def parse_size_with_units(value):
    """
    Parse a size string with optional unit suffix and return a value in bytes,

    :param size: The size string to parse.
    :returns: an integer size in bytes.
    :raises: ``SnapdeltaParseError`` if the string could not be parsed as a
             valid size value.
    """
    match = _SIZE_RE.search(value.strip())
    if match is None:
        raise SnapdeltaParseError(f"Malformed size expression: '{value}'")
    (size, unit) = (match.group("size"), match.group("units").upper())
    size_bytes = int(size) * _SIZE_SUFFIXES[unit[0] if unit else "B"]
    return size_bytes


__all__ = [
    "DEFAULT_HASH_THRESHOLD",
    "SNAPDELTA_DEBUG_FINGERPRINT",
    "SNAPDELTA_DEBUG_DIFF",
    "SNAPDELTA_DEBUG_STORE",
    "SNAPDELTA_DEBUG_COMMAND",
    "SNAPDELTA_DEBUG_ALL",
    # Debug logging - subsystem name interface
    "SubsystemFilter",
    "SNAPDELTA_SUBSYSTEM_FINGERPRINT",
    "SNAPDELTA_SUBSYSTEM_DIFF",
    "SNAPDELTA_SUBSYSTEM_STORE",
    "SNAPDELTA_SUBSYSTEM_COMMAND",
    # Debug logging - legacy interface
    "set_debug_mask",
    "get_debug_mask",
    # Progress log callbacks
    "register_progress",
    "unregister_progress",
    "notify_log_output",
    "ProgressAwareHandler",
    "SnapdeltaError",
    "SnapdeltaSystemError",
    "SnapdeltaPathError",
    "SnapdeltaParseError",
    "SnapdeltaBusyError",
    "SnapdeltaDuplicatePathError",
    "SnapdeltaArgumentError",
    "size_fmt",
    "parse_size_with_units",
]
