# Copyright Red Hat
#
# tests/fsdiff/__init__.py - Snapshot delta fsdiff test package
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
