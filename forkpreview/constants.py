"""Shared constants for forkpreview."""

from __future__ import annotations

# Provider limit on sandbox/app names (DNS label length).
MAX_APP_NAME_LENGTH = 63
APP_NAME_HASH_LENGTH = 8
DEFAULT_APP_NAME_PREFIX = "preview"

# Progress floor per workflow step.
STEP_PROGRESS = {
    "initialize": 5,
    "fork_start": 10,
    "fork_complete": 25,
    "branch_create": 35,
    "branch_ready": 45,
    "deploy_start": 50,
    "deploy_submitted": 60,
    "polling": 60,
    "deployed": 100,
}
POLLING_PROGRESS_CEILING = 95

# Substrings that mark a chunk of dev-server output as an error signal.
ERROR_SIGNAL_PATTERN = r"error|err!|fatal"

# Directory the bring-up clones into, relative to the working directory.
CLONE_DIRECTORY = "repo"

# Environment variable that carries the VCS token into the clone step.
VCS_TOKEN_ENV = "FORKPREVIEW_VCS_TOKEN"
