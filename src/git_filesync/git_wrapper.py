import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .constants import (
    APP_NAME,
    ATTRIBUTES_FILE,
    LFS_ALREADY_TRACKED_MARKERS,
    MISSING_REMOTE_REF_MARKER,
    REMOTE_EXISTS_MARKER,
    REMOTE_NAME,
)
from .exceptions import CommandFailure

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class CommandResult:
    """The captured outcome of a single git invocation.

    Attributes:
        returncode (int): The process exit code (127 if git could not be spawned).
        stdout (str): Captured standard output.
        stderr (str): Captured standard error.
    """

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Both captured streams joined, for pattern matching."""
        return f"{self.stdout}\n{self.stderr}"


class GitRunner:
    """Runs the external `git` executable.

    This is the only place in the package that spawns processes. Everything
    above it talks to `run`, so tests substitute a scripted runner instead of a
    real git binary.

    Attributes:
        executable (str): The git executable name or path.
        env (dict[str, str] | None): Environment passed to every invocation.
    """

    def __init__(self, executable: str = "git", interactive: bool = False):
        """Initializes the runner.

        Args:
            executable (str, optional): The git executable. Defaults to "git".
            interactive (bool, optional):   Whether git may prompt for credentials.
                                            Background runs must never block on
                                            a prompt. Defaults to False.
        """
        self.executable = executable
        self.env: dict[str, str] | None = None
        if not interactive:
            env = os.environ.copy()
            env.setdefault("GIT_TERMINAL_PROMPT", "0")
            env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
            self.env = env

    def run(
        self, working_dir: Path, args: list[str], fail_fast: bool = True
    ) -> CommandResult:
        """Executes git with the given arguments inside `working_dir`.

        Both output streams are read to completion before the exit code is
        inspected. No retries are attempted.

        Args:
            working_dir (Path): The directory to run git in.
            args (list[str]): Arguments following the executable name.
            fail_fast (bool, optional): Raise on a nonzero exit. Defaults to True.

        Returns:
            CommandResult: The exit code and captured output.

        Raises:
            CommandFailure: If `fail_fast` is set and git exits nonzero.
        """
        logger.debug(f"git {' '.join(args)} (in {working_dir})")
        try:
            proc = subprocess.run(
                [self.executable, *args],
                cwd=working_dir,
                capture_output=True,
                text=True,
                env=self.env,
            )
            result = CommandResult(proc.returncode, proc.stdout, proc.stderr)
        except OSError as e:
            # Missing executable or missing working directory.
            result = CommandResult(127, "", str(e))

        if fail_fast and not result.ok:
            raise CommandFailure(args, result.returncode, result.stdout, result.stderr)
        return result


def is_missing_remote_ref(output: str) -> bool:
    """Checks whether pull output reports that the remote branch does not exist.

    This is what git prints when pulling from a freshly created, empty remote.
    """
    return MISSING_REMOTE_REF_MARKER in output.lower()


def is_already_tracked(output: str) -> bool:
    """Checks whether `git lfs track` output reports a repeat declaration."""
    lowered = output.lower()
    return any(marker in lowered for marker in LFS_ALREADY_TRACKED_MARKERS)


class GitRepo:
    """A task directory seen through the git command line.

    Unlike a typical repository wrapper this class accepts directories that are
    not repositories yet, since the initializer needs to create them. Nothing
    about the repository is cached; each query goes back to git.

    Attributes:
        path (Path): The task directory.
        runner (GitRunner): The gateway used for every command.
        remote (str): The remote name pulled from and pushed to.
    """

    def __init__(
        self, path: Path, runner: GitRunner | None = None, remote: str = REMOTE_NAME
    ):
        self.path = path
        self.runner = runner or GitRunner()
        self.remote = remote

    def _run(self, args: list[str], fail_fast: bool = True) -> CommandResult:
        return self.runner.run(self.path, args, fail_fast=fail_fast)

    def probe(self) -> bool:
        """Checks whether the directory is a usable repository of its own.

        Requires a `.git` entry directly inside the directory (so a folder
        nested in some other repository does not count) and a successful
        status query.

        Returns:
            bool: True if the repository is healthy.
        """
        if not self.path.is_dir() or not (self.path / ".git").exists():
            return False
        return self._run(["status", "--porcelain"], fail_fast=False).ok

    def init(self, branch: str) -> None:
        """Initializes a repository whose first branch is `branch`.

        Safe to repeat on an existing repository; git then ignores the branch.
        """
        self._run(["init", "-b", branch])

    def add_remote(self, url: str) -> None:
        """Registers the remote, repointing it if it is already registered.

        Args:
            url (str): The remote repository URL.

        Raises:
            CommandFailure: If git rejects the remote for any other reason.
        """
        res = self._run(["remote", "add", self.remote, url], fail_fast=False)
        if res.ok:
            return
        if REMOTE_EXISTS_MARKER not in res.output.lower():
            raise CommandFailure(
                ["remote", "add", self.remote, url], res.returncode, res.stdout, res.stderr
            )
        logger.debug(f"Remote '{self.remote}' already registered in {self.path}.")
        self._run(["remote", "set-url", self.remote, url])

    def pull(self, branch: str, fail_fast: bool = True) -> CommandResult:
        """Pulls `branch` from the remote into the current branch."""
        return self._run(["pull", self.remote, branch], fail_fast=fail_fast)

    def add(self, pathspec: str = ".") -> None:
        """Stages `pathspec` (everything by default)."""
        self._run(["add", pathspec])

    def has_staged_changes(self, path: str | None = None) -> bool:
        """Checks whether the index differs from HEAD.

        Args:
            path (str | None, optional): Restrict the check to one path.

        Returns:
            bool: True if something is staged.

        Raises:
            CommandFailure: If git fails for a reason other than a difference.
        """
        cmd = ["diff", "--cached", "--quiet"]
        if path:
            cmd.extend(["--", path])
        res = self._run(cmd, fail_fast=False)
        if res.returncode in (0, 1):
            return res.returncode == 1
        raise CommandFailure(cmd, res.returncode, res.stdout, res.stderr)

    def status_porcelain(self) -> list[str]:
        """Returns the porcelain (machine-readable) status lines of the working tree."""
        output = self._run(["status", "--porcelain"]).stdout.strip()
        return output.splitlines() if output else []

    def commit(self, message: str, paths: list[str] | None = None) -> None:
        """Creates a new commit with the provided message.

        Args:
            message (str): The commit message.
            paths (list[str] | None, optional): Commit only these paths instead of
                                                the whole index. Defaults to None.
        """
        cmd = ["commit", "-m", message]
        if paths:
            cmd.extend(["--", *paths])
        self._run(cmd)

    def has_remote_branch(self, branch: str) -> bool:
        """Checks whether the remote-tracking ref for `branch` exists locally.

        It is missing until the branch has been pulled from or pushed to the
        remote at least once.
        """
        res = self._run(
            ["rev-parse", "--verify", "--quiet", f"refs/remotes/{self.remote}/{branch}"],
            fail_fast=False,
        )
        return res.ok

    def commits_ahead(self, branch: str) -> int:
        """Counts local commits the remote branch does not have yet.

        If the remote branch is unknown (an empty remote), every commit on HEAD
        is unpublished.

        Returns:
            int: The count, or 0 if there is nothing to count.
        """
        if self.has_remote_branch(branch):
            revisions = f"{self.remote}/{branch}..HEAD"
        else:
            revisions = "HEAD"
        res = self._run(["rev-list", "--count", revisions], fail_fast=False)
        if not res.ok:
            # No commits yet.
            logger.debug(f"rev-list failed for {revisions}: {res.stderr.strip()}")
            return 0
        try:
            return int(res.stdout.strip() or 0)
        except ValueError:
            return 0

    def push(self, branch: str, set_upstream: bool = False) -> None:
        """Pushes `branch` to the remote.

        Args:
            branch (str): The branch to push.
            set_upstream (bool, optional):  Record the remote branch as upstream
                                            (`-u`). Defaults to False.
        """
        cmd = ["push"]
        if set_upstream:
            cmd.append("-u")
        cmd.extend([self.remote, branch])
        self._run(cmd)

    def lfs_install(self) -> None:
        """Installs the LFS hooks into the repository."""
        self._run(["lfs", "install"])

    def lfs_track(self, pattern: str) -> bool:
        """Declares an LFS tracking rule.

        Args:
            pattern (str): The path pattern to store in LFS.

        Returns:
            bool: True if the rule was newly added, False if it already existed.
        """
        res = self._run(["lfs", "track", pattern])
        return not is_already_tracked(res.output)

    def read_lines(self, name: str) -> list[str] | None:
        """Reads a file at the repository root.

        Returns:
            list[str] | None: The file's lines, or None if the file is absent.
            Bytes that are not UTF-8 are kept as surrogate escapes.
        """
        file_path = self.path / name
        if not file_path.exists():
            return None
        text = file_path.read_text(encoding="utf-8", errors="surrogateescape")
        return text.splitlines()

    def lfs_rules(self) -> set[str]:
        """Returns the patterns `.gitattributes` currently routes through LFS."""
        patterns = set()
        for line in self.read_lines(ATTRIBUTES_FILE) or []:
            parts = line.split()
            if len(parts) > 1 and "filter=lfs" in parts[1:]:
                patterns.add(parts[0])
        return patterns
