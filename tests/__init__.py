# Copyright Red Hat
#
# tests/__init__.py - Snapshot delta test package
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
import logging
import os
import time

log = logging.getLogger()
log.setLevel(logging.DEBUG)
formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
file_handler = logging.FileHandler("test.log")
file_handler.setFormatter(formatter)
console_handler = logging.StreamHandler()
console_handler.setFormatter(formatter)
log.addHandler(file_handler)
log.addHandler(console_handler)

os.environ["TZ"] = "UTC"
time.tzset()


class MockArgs(object):
    debug = None
    verbose = 0
    version = False
    config = "/nonexistent/snapdelta.conf"
    json = False
    output_format = None
    hash_threshold = None
    workers = None
    exclude_patterns = None
    compression = None
    save = True
    quiet = True
