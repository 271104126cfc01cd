import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from apscheduler.triggers.cron import CronTrigger
from apscheduler.util import astimezone

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_BRANCH,
    DEFAULT_MAX_WORKERS,
)
from .exceptions import ConfigError

logger = logging.getLogger(APP_NAME)

_CRON_FIELDS = ("second", "minute", "hour", "day", "month", "day_of_week", "year")
_CRONTAB_FIELDS = ("minute", "hour", "day", "month", "day_of_week")

_WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _weekday_names(field: str, sunday: int) -> str:
    """Rewrites a numeric day-of-week field as weekday names.

    The trigger numbers Monday 0, while crontab numbers Sunday 0 (or 7) and
    six or seven field expressions number Sunday 1. Names mean the same thing
    everywhere, so numbers are resolved here against `sunday`.

    Args:
        field (str): The day-of-week field, e.g. `1-5`, `0,6` or `*/2`.
        sunday (int): The number Sunday has in the source syntax.

    Returns:
        str: A comma-separated list of weekday names, or the field unchanged
             if it holds no numbers.

    Raises:
        ValueError: If a value is out of range or malformed.
    """
    if not any(c.isdigit() for c in field):
        return field

    def number(token: str) -> int:
        token = token.lower()
        if token.isdigit():
            value = int(token)
            if not sunday <= value <= 7:
                raise ValueError(f"day of week {value} is out of range")
            return value
        if token in _WEEKDAYS:
            return sunday + (_WEEKDAYS.index(token) + 1) % 7
        raise ValueError(f"invalid day of week '{token}'")

    days: set[int] = set()
    for part in field.split(","):
        span, _, step = part.partition("/")
        if span == "*":
            first, last = sunday, sunday + 6
        elif "-" in span:
            start, end = span.split("-", 1)
            first, last = number(start), number(end)
        else:
            first = number(span)
            last = sunday + 6 if step else first
        if first > last:
            raise ValueError(f"day of week range '{span}' runs backwards")
        if step and (not step.isdigit() or int(step) < 1):
            raise ValueError(f"invalid day of week step '{step}'")
        for value in range(first, last + 1, int(step or 1)):
            days.add((value - sunday - 1) % 7)

    return ",".join(_WEEKDAYS[d] for d in sorted(days))


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_cron(expression: str, timezone: str | None = None) -> CronTrigger:
    """Builds a cron trigger from a five, six or seven field expression.

    Five fields are standard crontab syntax (minute first). Six and seven
    fields put seconds first, the seventh being the year. The `?` placeholder
    is read as `*`. Day-of-week numbers follow the source syntax: Sunday is 0
    (or 7) in five-field expressions and 1 in six or seven field ones.

    Args:
        expression (str): The cron expression.
        timezone (str | None): Zone the schedule is evaluated in. Defaults to local.

    Returns:
        CronTrigger: The trigger.

    Raises:
        ValueError: If the expression has the wrong field count or a bad value.
    """
    fields = expression.replace("?", "*").split()
    if len(fields) == 5:
        values = dict(zip(_CRONTAB_FIELDS, fields))
        values["day_of_week"] = _weekday_names(values["day_of_week"], sunday=0)
        return CronTrigger(timezone=timezone, **values)
    if len(fields) in (6, 7):
        values = dict(zip(_CRON_FIELDS, fields))
        values["day_of_week"] = _weekday_names(values["day_of_week"], sunday=1)
        return CronTrigger(timezone=timezone, **values)
    raise ValueError(
        f"Invalid cron expression '{expression}': expected 5, 6 or 7 fields, "
        f"got {len(fields)}"
    )


def _check_timezone(value: Any) -> str:
    """Returns `value` if the scheduler can resolve it as a time zone."""
    try:
        astimezone(value)
    except Exception as e:
        raise ValueError(f"Unknown time zone {value!r}") from e
    return value


def validate_path(raw: str) -> Path:
    """Checks that a task path is an absolute path to an existing directory.

    Returns:
        Path: The resolved directory path.

    Raises:
        ValueError: Describing what is wrong with the path.
    """
    if not raw:
        raise ValueError("path is empty")
    if "\0" in raw:
        raise ValueError("path contains illegal characters")
    path = Path(raw).expanduser()
    if not path.is_absolute():
        raise ValueError("path must be absolute")
    if path.exists() and not path.is_dir():
        raise ValueError("path is not a directory")
    if not path.is_dir():
        raise ValueError("directory does not exist")
    return path.resolve()


@dataclass(frozen=True)
class TaskDefinition:
    """One directory-to-remote synchronization unit.

    Attributes:
        name (str): Unique task identifier.
        local_path (Path): Absolute path of the synchronized directory.
        remote_url (str): URL of the remote repository.
        cron_expression (str): When the task fires.
        ignore_patterns (frozenset[str]): Desired contents of the ignore file.
        lfs_patterns (frozenset[str]): Patterns to store in LFS.
        notify_on_success (bool): Whether successful syncs raise a notification.
        branch (str): The branch pulled from and pushed to.
    """

    name: str
    local_path: Path
    remote_url: str
    cron_expression: str
    ignore_patterns: frozenset[str] = frozenset()
    lfs_patterns: frozenset[str] = frozenset()
    notify_on_success: bool = False
    branch: str = DEFAULT_BRANCH


@dataclass
class Settings:
    """Process-wide settings.

    Attributes:
        max_workers (int): Size of the worker pool shared by all firings.
        max_log_size (int): Max bytes for log files before rotation.
        timezone (str | None): Zone cron schedules are evaluated in.
    """

    max_workers: int = DEFAULT_MAX_WORKERS
    max_log_size: int = 5 * 1024 * 1024
    timezone: str | None = None


# Maps configuration keys to TaskDefinition fields.
_TASK_KEYS = {
    "name": "name",
    "path": "local_path",
    "repo": "remote_url",
    "cron": "cron_expression",
    "ignore": "ignore_patterns",
    "lfs": "lfs_patterns",
    "notify_when_success": "notify_on_success",
    "branch": "branch",
}
_REQUIRED_KEYS = ("name", "path", "repo", "cron")


@dataclass
class AppConfig:
    """Loaded configuration: settings plus the validated task list.

    Attributes:
        settings (Settings): Process-wide settings.
        tasks (list[TaskDefinition]): Tasks in file order.
        path (Path | None): The file the configuration was read from.
    """

    settings: Settings = field(default_factory=Settings)
    tasks: list[TaskDefinition] = field(default_factory=list)
    path: Path | None = None

    @classmethod
    def load(cls, path: Path | None = None) -> "AppConfig":
        """Reads and validates the configuration file.

        Args:
            path (Path | None): The file to read. Defaults to CONFIG_FILE.

        Returns:
            AppConfig: The validated configuration.

        Raises:
            ConfigError: If the file is missing, unparsable or describes an
                         invalid task set.
        """
        path = path or CONFIG_FILE
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Config syntax error in {path}: {e}") from e

        return cls.from_dict(data, path=path)

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: Path | None = None) -> "AppConfig":
        """Validates already-parsed configuration data.

        Raises:
            ConfigError: If the task set is empty or any task is invalid.
        """
        instance = cls(path=path)
        if "settings" in data:
            instance.settings = instance._update_settings(data["settings"])

        tables = data.get("tasks") or []
        if not isinstance(tables, list) or not tables:
            raise ConfigError(f"No tasks configured in {path or 'configuration'}.")

        names: set[str] = set()
        for index, table in enumerate(tables):
            task = instance._parse_task(index, table)
            if task.name in names:
                raise ConfigError(f"Duplicate task name '{task.name}'.")
            names.add(task.name)
            instance.tasks.append(task)

        return instance

    def get_task(self, name: str) -> TaskDefinition:
        """Looks up a task by name.

        Raises:
            KeyError: If no task has that name.
        """
        for task in self.tasks:
            if task.name == name:
                return task
        raise KeyError(name)

    def _update_settings(self, updates: dict) -> Settings:
        """Updates the settings, warning on invalid keys and parsing human-readable formats."""
        valid_keys = self.settings.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [settings]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue
            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k == "max_workers":
                    if not isinstance(v, int) or v < 1:
                        raise ValueError(f"Expected a positive integer, got {v!r}")
                    filtered_updates[k] = v
                elif k == "timezone":
                    filtered_updates[k] = _check_timezone(v)
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [settings].{k}: {e}. Falling back to default."
                )

        return replace(self.settings, **filtered_updates)

    def _parse_task(self, index: int, table: Any) -> TaskDefinition:
        """Turns one `[[tasks]]` table into a validated TaskDefinition."""
        if not isinstance(table, dict):
            raise ConfigError(f"Task #{index + 1} is not a table.")

        label = table.get("name") or f"#{index + 1}"

        invalid_keys = set(table.keys()) - set(_TASK_KEYS)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in task {label}: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        missing = [
            k for k in _REQUIRED_KEYS if not isinstance(table.get(k), str) or not table[k].strip()
        ]
        if missing:
            raise ConfigError(
                f"Task {label} is incomplete: missing {', '.join(missing)}."
            )

        name = table["name"].strip()

        try:
            local_path = validate_path(table["path"])
        except ValueError as e:
            raise ConfigError(f"Task {name} has an invalid path: {e}.") from e

        cron = table["cron"].strip()
        try:
            parse_cron(cron, self.settings.timezone)
        except ValueError as e:
            raise ConfigError(f"Task {name} has an invalid cron expression: {e}") from e

        return TaskDefinition(
            name=name,
            local_path=local_path,
            remote_url=table["repo"].strip(),
            cron_expression=cron,
            ignore_patterns=self._pattern_set(name, "ignore", table.get("ignore", [])),
            lfs_patterns=self._pattern_set(name, "lfs", table.get("lfs", [])),
            notify_on_success=bool(table.get("notify_when_success", False)),
            branch=str(table.get("branch") or DEFAULT_BRANCH),
        )

    @staticmethod
    def _pattern_set(task_name: str, key: str, value: Any) -> frozenset[str]:
        if not isinstance(value, list) or not all(isinstance(p, str) for p in value):
            raise ConfigError(f"Task {task_name}: '{key}' must be a list of strings.")
        return frozenset(p.strip() for p in value if p.strip())
