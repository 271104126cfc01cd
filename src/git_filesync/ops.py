import datetime
import logging
from dataclasses import dataclass
from enum import Enum

from . import rules
from .config import TaskDefinition
from .constants import APP_NAME, INIT_COMMIT_PREFIX, SYNC_COMMIT_PREFIX
from .exceptions import CommandFailure, InitializationError
from .git_wrapper import GitRepo, GitRunner, is_missing_remote_ref
from .system import Notifier

logger = logging.getLogger(APP_NAME)


class SyncOutcome(str, Enum):
    SYNCED = "synced"
    NO_CHANGES = "no_changes"
    FAILED = "failed"


class ErrorKind(str, Enum):
    MISSING_REPOSITORY = "missing_repository"
    PULL_FAILED = "pull_failed"
    RECONCILE_FAILED = "reconcile_failed"
    STATUS_FAILED = "status_failed"
    COMMIT_FAILED = "commit_failed"
    PUSH_FAILED = "push_failed"


@dataclass(frozen=True)
class SyncReport:
    """The result of one firing.

    Attributes:
        task_name (str): The task that fired.
        outcome (SyncOutcome): What happened.
        error_kind (ErrorKind | None): Which step failed, for FAILED reports.
        message (str): Human-readable detail.
        rules_committed (bool): Whether rule reconciliation created a commit.
    """

    task_name: str
    outcome: SyncOutcome
    error_kind: ErrorKind | None = None
    message: str = ""
    rules_committed: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is not SyncOutcome.FAILED


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _describe(error: Exception) -> str:
    if isinstance(error, CommandFailure):
        detail = (error.stderr or error.stdout).strip()
        return detail.splitlines()[-1] if detail else str(error)
    return str(error)


def initialize_task(
    task: TaskDefinition,
    runner: GitRunner | None = None,
    notifier: Notifier | None = None,
) -> bool:
    """Makes a task directory a tracked, remote-linked repository.

    Does nothing if the directory already passes the repository probe.
    Otherwise:
    1. Initializes the repository and registers the remote.
    2. Pulls the task branch. An empty remote counts as nothing to merge.
    3. Writes the ignore and LFS rules (staged, not committed separately).
    4. Stages everything and, if anything is staged, commits once and pushes
       with upstream tracking.

    Every step tolerates being repeated after an interrupted attempt.

    Args:
        task (TaskDefinition): The task to initialize.
        runner (GitRunner | None, optional): The command gateway.
        notifier (Notifier | None, optional): Receives milestone and failure
                                              notifications.

    Returns:
        bool: True if the directory was initialized, False if it already was.

    Raises:
        InitializationError: If any step fails. The caller is expected to abort
                             startup.
    """
    repo = GitRepo(task.local_path, runner)
    if repo.probe():
        logger.debug(f"{task.name}: repository present, skipping initialization.")
        return False

    logger.info(f"INIT {task.name}: preparing {task.local_path}")
    try:
        committed = _initialize(repo, task)
    except (CommandFailure, OSError, UnicodeError) as e:
        error = InitializationError(task.name, _describe(e))
        logger.error(f"INIT FAILED {error}")
        if notifier:
            notifier.notify("Initialization Failed", str(error))
        raise error from e
    except InitializationError as e:
        logger.error(f"INIT FAILED {e}")
        if notifier:
            notifier.notify("Initialization Failed", str(e))
        raise

    detail = "initial commit pushed" if committed else "nothing to commit"
    logger.info(f"INIT {task.name}: done ({detail}).")
    if notifier:
        notifier.notify("Repository Initialized", f"{task.name}: {detail}.")
    return True


def _initialize(repo: GitRepo, task: TaskDefinition) -> bool:
    repo.init(task.branch)
    repo.add_remote(task.remote_url)

    res = repo.pull(task.branch, fail_fast=False)
    if not res.ok:
        if not is_missing_remote_ref(res.output):
            detail = (res.stderr or res.stdout).strip() or f"exit code {res.returncode}"
            raise InitializationError(task.name, f"pull failed: {detail}")
        logger.info(f"INIT {task.name}: remote is empty, nothing to merge.")

    rules.reconcile(repo, task, publish=False)

    repo.add()
    if not repo.has_staged_changes():
        return False

    repo.commit(f"{INIT_COMMIT_PREFIX} {_timestamp()}")
    repo.push(task.branch, set_upstream=True)
    return True


def _failed(task: TaskDefinition, kind: ErrorKind, error: Exception | str) -> SyncReport:
    message = error if isinstance(error, str) else _describe(error)
    return SyncReport(task.name, SyncOutcome.FAILED, kind, message)


def sync_task(task: TaskDefinition, runner: GitRunner | None = None) -> SyncReport:
    """Runs one firing for a task.

    Steps:
    1. Verifies the repository still exists (never re-initializes it).
    2. Pulls the task branch; conflicts and network errors end the firing.
    3. Reconciles ignore and LFS rules.
    4. Commits and pushes local changes, if there are any.

    No step raises. Failures come back as a FAILED report naming the step.

    Args:
        task (TaskDefinition): The task to sync.
        runner (GitRunner | None, optional): The command gateway.

    Returns:
        SyncReport: The outcome of the firing.
    """
    repo = GitRepo(task.local_path, runner)

    if not repo.probe():
        return _failed(
            task,
            ErrorKind.MISSING_REPOSITORY,
            f"{task.local_path} is missing or no longer a git repository.",
        )

    try:
        repo.pull(task.branch)
    except CommandFailure as e:
        if not is_missing_remote_ref(e.output):
            return _failed(task, ErrorKind.PULL_FAILED, e)
        logger.debug(f"{task.name}: remote branch does not exist yet.")

    try:
        rules_committed = rules.reconcile(repo, task)
    except (CommandFailure, OSError, UnicodeError) as e:
        return _failed(task, ErrorKind.RECONCILE_FAILED, e)

    try:
        changes = repo.status_porcelain()
    except CommandFailure as e:
        return _failed(task, ErrorKind.STATUS_FAILED, e)

    # An empty remote has no branch to track until the first push creates it.
    first_push = not repo.has_remote_branch(task.branch)

    if not changes:
        # Recover commits left behind by an earlier failed push.
        ahead = repo.commits_ahead(task.branch)
        if ahead:
            try:
                repo.push(task.branch, set_upstream=first_push)
            except CommandFailure as e:
                return _failed(task, ErrorKind.PUSH_FAILED, e)
            return SyncReport(
                task.name,
                SyncOutcome.SYNCED,
                message=f"pushed {ahead} pending commit(s)",
                rules_committed=rules_committed,
            )
        if rules_committed:
            return SyncReport(
                task.name,
                SyncOutcome.SYNCED,
                message="rules updated",
                rules_committed=True,
            )
        return SyncReport(task.name, SyncOutcome.NO_CHANGES)

    try:
        repo.add()
        repo.commit(f"{SYNC_COMMIT_PREFIX} {_timestamp()}")
    except CommandFailure as e:
        return _failed(task, ErrorKind.COMMIT_FAILED, e)

    try:
        repo.push(task.branch, set_upstream=first_push)
    except CommandFailure as e:
        return _failed(task, ErrorKind.PUSH_FAILED, e)

    return SyncReport(
        task.name,
        SyncOutcome.SYNCED,
        message=f"{len(changes)} path(s) committed",
        rules_committed=rules_committed,
    )


def report_outcome(
    report: SyncReport, task: TaskDefinition, notifier: Notifier | None = None
) -> None:
    """Logs a firing's report and sends the notifications it calls for.

    Args:
        report (SyncReport): The firing's result.
        task (TaskDefinition): The task that fired.
        notifier (Notifier | None, optional): Receives the notification.
    """
    if report.outcome is SyncOutcome.FAILED:
        kind = report.error_kind.value if report.error_kind else "error"
        logger.error(f"FAILED {task.name} [{kind}]: {report.message}")
        if notifier:
            notifier.notify("Sync Failed", f"{task.name}: {report.message}")
    elif report.outcome is SyncOutcome.NO_CHANGES:
        logger.info(f"UP TO DATE {task.name}")
    else:
        logger.info(f"SUCCESS {task.name}: {report.message}")
        if notifier and task.notify_on_success:
            notifier.notify("Sync Complete", f"{task.name}: {report.message}")
