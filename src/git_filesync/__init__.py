"""git-filesync: Cron-scheduled synchronization of local directories with git remotes.

This package provides the command-line interface, the scheduling daemon, and the
operational logic that initializes task directories, reconciles their ignore and
LFS rules, and commits and pushes local changes on each firing.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    exceptions,
    git_wrapper,
    ops,
    rules,
    scheduler,
    system,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "exceptions",
    "git_wrapper",
    "ops",
    "rules",
    "scheduler",
    "system",
]
