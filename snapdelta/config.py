# Copyright Red Hat
#
# snapdelta/config.py - Snapshot delta configuration
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Configuration file support.
"""
from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, field
from os.path import exists
from typing import List
import logging

from snapdelta import (
    DEFAULT_HASH_THRESHOLD,
    SnapdeltaParseError,
    parse_size_with_units,
)
from snapdelta.fsdiff.fingerprint import HASH_ALGORITHMS
from snapdelta.fsdiff.options import (
    COMPRESSION_TYPES,
    DEFAULT_SNAPSHOT_NAME,
    DEFAULT_WORKERS,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Default configuration file path
DEFAULT_CONFIG_FILE = "/etc/snapdelta/snapdelta.conf"

_SNAPDELTA_CFG_GLOBAL = "Global"
_SNAPDELTA_CFG_HASH_THRESHOLD = "HashThreshold"
_SNAPDELTA_CFG_HASH_ALGORITHM = "HashAlgorithm"
_SNAPDELTA_CFG_WORKERS = "Workers"
_SNAPDELTA_CFG_COMPRESSION = "Compression"
_SNAPDELTA_CFG_SNAPSHOT_NAME = "SnapshotName"
_SNAPDELTA_CFG_EXCLUDE_PATTERNS = "ExcludePatterns"
_SNAPDELTA_CFG_METADATA_RENAMES = "MetadataRenames"


def _parse_bool(key: str, value: str) -> bool:
    value = value.strip().lower()
    if value in ("yes", "true", "on", "1"):
        return True
    if value in ("no", "false", "off", "0"):
        return False
    raise SnapdeltaParseError(f"Invalid boolean value for {key}: '{value}'")


def _parse_choice(key: str, value: str, choices) -> str:
    value = value.strip().lower()
    if value not in choices:
        raise SnapdeltaParseError(
            f"Invalid value for {key}: '{value}' (expected one of {', '.join(choices)})"
        )
    return value


@dataclass
class SnapdeltaConfig:
    """
    Snapshot delta configuration.
    """

    hash_threshold: int = DEFAULT_HASH_THRESHOLD
    hash_algorithm: str = "sha256"
    workers: int = DEFAULT_WORKERS
    compression: str = "none"
    snapshot_name: str = DEFAULT_SNAPSHOT_NAME
    exclude_patterns: List[str] = field(default_factory=list)
    metadata_renames: bool = True

    # pylint: disable=too-many-branches
    @classmethod
    def from_file(cls, config_file: str = DEFAULT_CONFIG_FILE) -> "SnapdeltaConfig":
        """
        Load ``SnapdeltaConfig`` from an INI-style configuration file located
        at ``config_file``.

        :param config_file: path to snapdelta.conf
        :type config_file: ``str``.
        :returns: A ``SnapdeltaConfig`` instance initialised from
                  ``config_file``.
        :rtype: ``SnapdeltaConfig``
        :raises: ``SnapdeltaParseError`` if the file contains invalid values.
        """
        config = SnapdeltaConfig()

        if not exists(config_file):
            _log_debug("No configuration file at '%s': using defaults", config_file)
            return config

        _log_debug("Loading configuration from '%s'", config_file)
        cfg = ConfigParser()
        # Keys are case sensitive
        cfg.optionxform = str
        try:
            cfg.read([config_file])
        except ConfigParserError as err:
            raise SnapdeltaParseError(
                f"Error parsing configuration file '{config_file}': {err}"
            ) from err

        if not cfg.has_section(_SNAPDELTA_CFG_GLOBAL):
            return config

        section = cfg[_SNAPDELTA_CFG_GLOBAL]
        if _SNAPDELTA_CFG_HASH_THRESHOLD in section:
            config.hash_threshold = parse_size_with_units(
                section[_SNAPDELTA_CFG_HASH_THRESHOLD]
            )
        if _SNAPDELTA_CFG_HASH_ALGORITHM in section:
            config.hash_algorithm = _parse_choice(
                _SNAPDELTA_CFG_HASH_ALGORITHM,
                section[_SNAPDELTA_CFG_HASH_ALGORITHM],
                HASH_ALGORITHMS,
            )
        if _SNAPDELTA_CFG_WORKERS in section:
            value = section[_SNAPDELTA_CFG_WORKERS]
            try:
                config.workers = int(value)
            except ValueError as err:
                raise SnapdeltaParseError(
                    f"Invalid value for {_SNAPDELTA_CFG_WORKERS}: '{value}'"
                ) from err
            if config.workers < 1:
                raise SnapdeltaParseError(
                    f"Invalid value for {_SNAPDELTA_CFG_WORKERS}: '{value}'"
                )
        if _SNAPDELTA_CFG_COMPRESSION in section:
            config.compression = _parse_choice(
                _SNAPDELTA_CFG_COMPRESSION,
                section[_SNAPDELTA_CFG_COMPRESSION],
                COMPRESSION_TYPES,
            )
        if _SNAPDELTA_CFG_SNAPSHOT_NAME in section:
            name = section[_SNAPDELTA_CFG_SNAPSHOT_NAME].strip()
            if not name or "/" in name:
                raise SnapdeltaParseError(
                    f"Invalid value for {_SNAPDELTA_CFG_SNAPSHOT_NAME}: '{name}'"
                )
            config.snapshot_name = name
        if _SNAPDELTA_CFG_EXCLUDE_PATTERNS in section:
            patterns = section[_SNAPDELTA_CFG_EXCLUDE_PATTERNS]
            config.exclude_patterns = [
                pat.strip() for pat in patterns.split(",") if pat.strip()
            ]
        if _SNAPDELTA_CFG_METADATA_RENAMES in section:
            config.metadata_renames = _parse_bool(
                _SNAPDELTA_CFG_METADATA_RENAMES,
                section[_SNAPDELTA_CFG_METADATA_RENAMES],
            )

        _log_debug("Loaded configuration: %s", config)
        return config


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "SnapdeltaConfig",
]
