"""Exceptions for git-filesync."""


class FileSyncError(Exception):
    """Base class for all git-filesync errors."""


class ConfigError(FileSyncError):
    """Raised when the task configuration is missing, malformed or invalid.

    Configuration errors are fatal at load time: no task is scheduled until
    the operator fixes the file.
    """


class InitializationError(FileSyncError):
    """Raised when a task directory cannot be brought to a synced state.

    Any initialization error aborts startup for the whole process, so a task
    is never left half-initialized without the operator knowing.
    """

    def __init__(self, task_name: str, message: str):
        super().__init__(f"{task_name}: {message}")
        self.task_name = task_name


class CommandFailure(FileSyncError):
    """Raised when a git command exits nonzero and the caller asked to fail fast.

    Attributes:
        args_list (list[str]): The git arguments that were run.
        returncode (int): The exit code.
        stdout (str): Captured standard output.
        stderr (str): Captured standard error.
    """

    def __init__(self, args: list[str], returncode: int, stdout: str, stderr: str):
        detail = (stderr or stdout).strip()
        super().__init__(
            f"git {' '.join(args)} exited with {returncode}"
            + (f": {detail}" if detail else "")
        )
        self.args_list = list(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def output(self) -> str:
        """Both captured streams joined, for pattern matching."""
        return f"{self.stdout}\n{self.stderr}"
