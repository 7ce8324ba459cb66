"""Tasklock constants: directory layout, file naming, and timing defaults."""

from __future__ import annotations

import re

DEFAULT_STATE_DIR = ".tasklock"
LOCKS_DIRECTORY = "locks"
CONFIG_FILENAME = "config.yaml"
LOG_RELATIVE_PATH = ("logs", "tasklock.log")

LOCK_FILE_PREFIX = "issue-"
LOCK_FILE_SUFFIX = ".lock"
LOCK_FILE_PATTERN = re.compile(r"^issue-(?P<issue>[1-9]\d*)\.lock$")

# Two hours without a heartbeat marks a lock as abandoned.
DEFAULT_LOCK_TIMEOUT_MINUTES = 120
HEARTBEAT_INTERVAL_SECONDS = 30

STATUS_PREVIEW_LIMIT = 5

UNLOCK_ACTIONS = ("list", "unlock", "cleanup")
UNLOCK_OUTCOMES = (
    "listed",
    "released",
    "not_locked",
    "override_required",
    "unreadable",
    "release_failed",
    "nothing_to_release",
    "active_only",
)
