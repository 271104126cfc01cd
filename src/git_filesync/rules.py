"""Reconciliation of ignore rules and LFS tracking rules.

Both rule sets are compared as sets against what the task asks for, so
reordering patterns never causes a commit. A commit (and push) only happens
when the on-disk rules actually change.
"""

import logging
from collections.abc import Iterable

from .config import TaskDefinition
from .constants import (
    APP_NAME,
    ATTRIBUTES_FILE,
    IGNORE_COMMIT_MESSAGE,
    IGNORE_FILE,
    LFS_COMMIT_MESSAGE,
)
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


def read_ignore_rules(repo: GitRepo) -> set[str]:
    """Returns the patterns currently in the ignore file (empty if absent)."""
    lines = repo.read_lines(IGNORE_FILE) or []
    return {line.strip() for line in lines if line.strip()}


def render_ignore_rules(patterns: Iterable[str]) -> str:
    """Renders the ignore file contents for a pattern set."""
    ordered = sorted(set(patterns))
    return "".join(f"{p}\n" for p in ordered)


def _publish(repo: GitRepo, path: str, message: str, branch: str) -> bool:
    """Commits and pushes `path` if staging it produced a difference."""
    if not repo.has_staged_changes(path):
        return False
    repo.commit(message, paths=[path])
    repo.push(branch)
    return True


def reconcile_ignore(
    repo: GitRepo, patterns: Iterable[str], branch: str, publish: bool = True
) -> bool:
    """Brings the ignore file in line with the desired pattern set.

    An empty desired set still rewrites a stale file to empty; an absent file
    with an empty desired set is left alone.

    Args:
        repo (GitRepo): The task repository.
        patterns (Iterable[str]): The desired ignore patterns.
        branch (str): The branch to push a rule commit to.
        publish (bool, optional):   Commit and push the change. When False the
                                    file is only rewritten and staged.
                                    Defaults to True.

    Returns:
        bool: True if a rule commit was created.
    """
    desired = set(patterns)
    current = read_ignore_rules(repo)
    if current == desired:
        logger.debug(f"{repo.path.name}: ignore rules up to date.")
        return False

    logger.info(
        f"{repo.path.name}: rewriting {IGNORE_FILE} "
        f"(+{len(desired - current)} / -{len(current - desired)} patterns)."
    )
    (repo.path / IGNORE_FILE).write_text(
        render_ignore_rules(desired), encoding="utf-8", errors="surrogateescape"
    )
    repo.add(IGNORE_FILE)

    if not publish:
        return False
    return _publish(repo, IGNORE_FILE, IGNORE_COMMIT_MESSAGE, branch)


def reconcile_lfs(
    repo: GitRepo, patterns: Iterable[str], branch: str, publish: bool = True
) -> bool:
    """Declares every desired LFS pattern, committing only genuine additions.

    Rules are never removed: a pattern dropped from the task stays tracked and
    is reported in the log.

    Args:
        repo (GitRepo): The task repository.
        patterns (Iterable[str]): The desired LFS patterns.
        branch (str): The branch to push a rule commit to.
        publish (bool, optional):   Commit and push the change. When False the
                                    attributes file is only staged.
                                    Defaults to True.

    Returns:
        bool: True if a rule commit was created.
    """
    desired = set(patterns)

    stale = repo.lfs_rules() - desired
    if stale:
        logger.warning(
            f"{repo.path.name}: LFS patterns no longer configured stay tracked: "
            f"{', '.join(sorted(stale))}"
        )

    if not desired:
        return False

    repo.lfs_install()
    added = [p for p in sorted(desired) if repo.lfs_track(p)]
    if not added:
        logger.debug(f"{repo.path.name}: LFS rules up to date.")
        return False

    logger.info(f"{repo.path.name}: now tracking in LFS: {', '.join(added)}")
    repo.add(ATTRIBUTES_FILE)

    if not publish:
        return False
    return _publish(repo, ATTRIBUTES_FILE, LFS_COMMIT_MESSAGE, branch)


def reconcile(repo: GitRepo, task: TaskDefinition, publish: bool = True) -> bool:
    """Runs ignore and LFS reconciliation for a task.

    Returns:
        bool: True if either step created a commit.
    """
    ignore_committed = reconcile_ignore(
        repo, task.ignore_patterns, task.branch, publish=publish
    )
    lfs_committed = reconcile_lfs(repo, task.lfs_patterns, task.branch, publish=publish)
    return ignore_committed or lfs_committed
