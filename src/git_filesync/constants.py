import os
from pathlib import Path

"""Global constants and path definitions for git-filesync.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the git conventions shared by the reconciler, the
initializer and the sync executor.
"""

# --- Identity ---
APP_NAME = "git-filesync"
"""str: The human-readable application name."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-filesync"
"""Path: The directory for runtime state data (logs, PID file)."""

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: Holds the process ID of the running daemon."""

# --- Configuration Paths ---
_XDG_CONFIG = os.environ.get("XDG_CONFIG_HOME")
_BASE_CONFIG = Path(_XDG_CONFIG) if _XDG_CONFIG else Path.home() / ".config"

CONFIG_DIR: Path = _BASE_CONFIG / "git-filesync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = Path(
    os.environ.get("GIT_FILESYNC_CONFIG") or CONFIG_DIR / "tasks.toml"
)
"""Path: The task configuration file. Overridable with GIT_FILESYNC_CONFIG."""

# --- Git Conventions ---
REMOTE_NAME = "origin"
"""str: The remote every task directory is linked to."""

DEFAULT_BRANCH = "master"
"""str: The branch pulled from and pushed to when a task does not name one."""

IGNORE_FILE = ".gitignore"
"""str: The ignore-rule file managed inside each task directory."""

ATTRIBUTES_FILE = ".gitattributes"
"""str: The attributes file `git lfs track` writes its rules to."""

MISSING_REMOTE_REF_MARKER = "couldn't find remote ref"
"""str: Pull output indicating the remote branch does not exist yet (empty remote)."""

REMOTE_EXISTS_MARKER = "already exists"
"""str: `git remote add` output when the remote is already registered."""

LFS_ALREADY_TRACKED_MARKERS = ("already supported", "already tracked")
"""tuple[str, ...]: `git lfs track` output marking a repeat declaration."""

# --- Commit Messages ---
IGNORE_COMMIT_MESSAGE = "Update ignore rules"
LFS_COMMIT_MESSAGE = "Update LFS tracking rules"
INIT_COMMIT_PREFIX = "Initial sync"
SYNC_COMMIT_PREFIX = "Auto-sync"

# --- Scheduler ---
DEFAULT_MAX_WORKERS = 4
"""int: Size of the worker pool shared by all task firings."""

SHUTDOWN_POLL_SECONDS = 1.0
"""float: Interval at which a pending shutdown re-checks for running firings."""
