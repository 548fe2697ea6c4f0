# Copyright Red Hat
#
# snapdelta/fsdiff/difftypes.py - Snapshot delta diff types
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Snapshot diff types
"""
from enum import Enum


class DiffType(Enum):
    """
    Enum for different difference types.
    """

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class FingerprintKind(Enum):
    """
    Enum for the provenance of a file fingerprint.
    """

    #: A cryptographic digest of the complete file content.
    CONTENT = "content"
    #: A tag derived from file size and modification time only.
    METADATA = "metadata"
