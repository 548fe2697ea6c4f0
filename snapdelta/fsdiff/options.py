# Copyright Red Hat
#
# snapdelta/fsdiff/options.py - Snapshot delta diff options
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Snapshot diff options.
"""
from dataclasses import dataclass, field, fields, replace
from typing import Optional, Tuple, Union, TYPE_CHECKING
from argparse import Namespace
import logging

from snapdelta import DEFAULT_HASH_THRESHOLD, SnapdeltaArgumentError

from .fingerprint import HASH_ALGORITHMS

if TYPE_CHECKING:
    from snapdelta.config import SnapdeltaConfig

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Supported snapshot store compression types
COMPRESSION_TYPES: Tuple[str, ...] = ("none", "zstd", "xz")

#: Default number of fingerprint worker threads
DEFAULT_WORKERS = 4

#: Default snapshot file base name
DEFAULT_SNAPSHOT_NAME = "snapshot"


@dataclass(frozen=True)
class DiffOptions:
    """
    Snapshot generation and comparison options.
    """

    #: Maximum file size for generating content hashes
    hash_threshold: int = DEFAULT_HASH_THRESHOLD
    #: Content hash algorithm
    hash_algorithm: str = "sha256"
    #: Number of concurrent fingerprint workers
    workers: int = DEFAULT_WORKERS
    #: File patterns to exclude (glob notation, relative to the scan root)
    exclude_patterns: Tuple[str, ...] = field(default_factory=tuple)
    #: Pair metadata fallback fingerprints as renames
    metadata_renames: bool = True
    #: Snapshot store compression type
    compression: str = "none"
    #: Snapshot file base name within the store directory
    snapshot_name: str = DEFAULT_SNAPSHOT_NAME
    #: Do not output progress or status updates
    quiet: bool = False

    def __post_init__(self):
        if self.hash_threshold < 0:
            raise SnapdeltaArgumentError(
                f"Invalid hash threshold: {self.hash_threshold}"
            )
        if self.hash_algorithm not in HASH_ALGORITHMS:
            raise SnapdeltaArgumentError(
                f"Unknown hash algorithm: {self.hash_algorithm}"
            )
        if self.workers < 1:
            raise SnapdeltaArgumentError(f"Invalid worker count: {self.workers}")
        if self.compression not in COMPRESSION_TYPES:
            raise SnapdeltaArgumentError(
                f"Unknown compression type: {self.compression}"
            )
        if not self.snapshot_name or "/" in self.snapshot_name:
            raise SnapdeltaArgumentError(
                f"Invalid snapshot name: '{self.snapshot_name}'"
            )

    def __str__(self):
        """
        Return a human readable string representation of this
        ``DiffOptions`` instance.

        :returns: A human readable string.
        :rtype: ``str``
        """
        items = [
            (key, val) if not isinstance(val, tuple) else (key, " ".join(val))
            for key, val in self.__dict__.items()
        ]
        return "\n".join(f"{key}={val}" for key, val in items)

    @classmethod
    def from_config(cls, config: "SnapdeltaConfig") -> "DiffOptions":
        """
        Initialise DiffOptions from a ``SnapdeltaConfig``.

        :param config: The loaded configuration.
        :type config: ``SnapdeltaConfig``
        :returns: A new ``DiffOptions`` instance
        :rtype: ``DiffOptions``
        """
        return cls(
            hash_threshold=config.hash_threshold,
            hash_algorithm=config.hash_algorithm,
            workers=config.workers,
            exclude_patterns=tuple(config.exclude_patterns),
            metadata_renames=config.metadata_renames,
            compression=config.compression,
            snapshot_name=config.snapshot_name,
        )

    @classmethod
    def from_cmd_args(
        cls, cmd_args: Namespace, base: Optional["DiffOptions"] = None
    ) -> "DiffOptions":
        """
        Initialise DiffOptions from command line arguments.

        Values present in ``cmd_args`` and not ``None`` override the values
        in ``base`` (or the defaults if ``base`` is not given). Exclusion
        patterns given on the command line extend those in ``base``.

        :param cmd_args: The command line selection arguments.
        :type cmd_args: ``Namespace``
        :param base: Optional options to use as a starting point.
        :type base: ``Optional[DiffOptions]``
        :returns: A new ``DiffOptions`` instance
        :rtype: ``DiffOptions``
        """
        base = base or cls()

        def get_value(name: str) -> Union[bool, int, str, Tuple[str, ...], None]:
            """
            Get a value from ``cmd_args``, converting lists to tuples.

            :param name: The name of the argument.
            :type name: ``str``
            :returns: The argument converted to a tuple if appropriate.
            :rtype: ``Union[bool, int, str, Tuple[str, ...], None]``
            """
            attr = getattr(cmd_args, name)
            if isinstance(attr, list):
                return tuple(attr)
            return attr

        field_names = {f.name for f in fields(cls)}
        kwargs = {
            name: get_value(name)
            for name in field_names
            if hasattr(cmd_args, name) and getattr(cmd_args, name) is not None
        }
        if "exclude_patterns" in kwargs:
            kwargs["exclude_patterns"] = (
                base.exclude_patterns + kwargs["exclude_patterns"]
            )
        options = replace(base, **kwargs)
        _log_debug("Initialised DiffOptions from arguments: %s", repr(options))
        return options
