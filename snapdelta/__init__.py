# Copyright Red Hat
#
# snapdelta/__init__.py - Snapshot delta package initialisation
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Snapdelta top-level package.
"""
from ._snapdelta import *  # noqa: F401, F403
from ._snapdelta import __all__  # noqa: F401

__version__ = "0.1.0"
