import argparse
import datetime
import logging
import os
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import daemon, ops
from .config import AppConfig, TaskDefinition, parse_cron
from .constants import APP_NAME, CONFIG_FILE, LOG_FILE
from .exceptions import ConfigError, InitializationError
from .git_wrapper import GitRepo, GitRunner
from .system import get_system

logger = logging.getLogger(APP_NAME)
console = Console()

CONFIG_TEMPLATE = """\
# git-filesync task configuration

[settings]
# max_workers = 4
# max_log_size = "5MB"
# timezone = "Europe/Berlin"

# [[tasks]]
# name = "docs"
# path = "/home/me/Documents"
# repo = "git@github.com:me/documents.git"
# cron = "*/15 * * * *"
# ignore = ["*.tmp", ".DS_Store"]
# lfs = ["*.psd"]
# notify_when_success = false
"""


def _load_config(path: Path | None) -> AppConfig:
    """Loads the configuration, exiting with a readable error on failure."""
    try:
        return AppConfig.load(path)
    except ConfigError as e:
        console.print(f"[bold red]Config Error:[/bold red] {e}")
        sys.exit(1)


def _next_run(task: TaskDefinition, timezone: str | None) -> str:
    """Formats the next time a task's cron expression fires."""
    trigger = parse_cron(task.cron_expression, timezone)
    now = datetime.datetime.now(trigger.timezone)
    next_time = trigger.get_next_fire_time(None, now)
    return next_time.strftime("%Y-%m-%d %H:%M:%S") if next_time else "Never"


def _repo_state(task: TaskDefinition) -> tuple[str, str]:
    """Describes a task directory's repository state as (text, style)."""
    if not task.local_path.exists():
        return "Missing", "bold red"
    repo = GitRepo(task.local_path)
    if not repo.probe():
        return "Not initialized", "yellow"
    try:
        pending = len(repo.status_porcelain())
    except Exception as e:
        logger.debug(f"Status failed for {task.local_path}: {e}")
        return "Error", "bold red"
    if pending:
        return f"{pending} pending", "cyan"
    return "Clean", "green"


def check_config(path: Path | None) -> None:
    """Validates the configuration and prints the task table."""
    config = _load_config(path)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Task", style="cyan")
    table.add_column("Path")
    table.add_column("Remote", style="dim")
    table.add_column("Cron")
    table.add_column("Next Run", justify="right")

    for task in config.tasks:
        display_path = str(task.local_path).replace(str(Path.home()), "~")
        table.add_row(
            task.name,
            display_path,
            task.remote_url,
            task.cron_expression,
            _next_run(task, config.settings.timezone),
        )

    console.print(table)
    console.print(
        f"[bold green]✔ Configuration valid:[/bold green] {len(config.tasks)} task(s) "
        f"in [cyan]{config.path}[/cyan]"
    )


def list_tasks(path: Path | None) -> None:
    """Lists configured tasks with the live state of their repositories."""
    config = _load_config(path)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Task", style="cyan")
    table.add_column("Path")
    table.add_column("Status")
    table.add_column("Ignore", justify="right", style="dim")
    table.add_column("LFS", justify="right", style="dim")

    for task in config.tasks:
        display_path = str(task.local_path).replace(str(Path.home()), "~")
        status_text, status_style = _repo_state(task)
        table.add_row(
            task.name,
            display_path,
            f"[{status_style}]{status_text}[/{status_style}]",
            str(len(task.ignore_patterns)),
            str(len(task.lfs_patterns)),
        )

    console.print(table)


def sync_now(name: str, path: Path | None, force: bool = False) -> None:
    """Runs one firing for a task in the foreground, initializing it first if needed.

    Refuses to run while the daemon is up, since a scheduled firing of the same
    task could then overlap this one. `force` skips that check.
    """
    config = _load_config(path)
    try:
        task = config.get_task(name)
    except KeyError:
        console.print(f"[bold red]Unknown task:[/bold red] {name}")
        sys.exit(1)

    pid = daemon.running_pid()
    if pid and not force:
        console.print(
            f"[bold yellow]Daemon is running (PID {pid}).[/bold yellow] "
            f"Its firings of {name} could overlap this one. Use --force to sync anyway."
        )
        sys.exit(1)

    daemon.setup_logging(interactive=True)
    runner = GitRunner(interactive=True)
    notifier = get_system()

    try:
        with console.status(f"[bold blue]Preparing {name}...", spinner="dots"):
            ops.initialize_task(task, runner, notifier)
    except InitializationError as e:
        console.print(f"[bold red]Initialization failed:[/bold red] {e}")
        sys.exit(1)

    with console.status(f"[bold blue]Syncing {name}...", spinner="dots"):
        report = ops.sync_task(task, runner)
    ops.report_outcome(report, task, notifier)

    if report.outcome is ops.SyncOutcome.FAILED:
        console.print(f"[bold red]SYNC FAILED {name}:[/bold red] {report.message}")
        sys.exit(1)
    elif report.outcome is ops.SyncOutcome.NO_CHANGES:
        console.print(f"[green]✔ {name}: already up to date.[/green]")
    else:
        console.print(f"[bold green]SUCCESS:[/bold green] {name}: {report.message}")


def open_config(path: Path | None) -> None:
    """Opens the configuration file in the system default editor."""
    target = path or CONFIG_FILE
    if not target.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(CONFIG_TEMPLATE)

    editor = os.environ.get("EDITOR")
    if not editor:
        if sys.platform == "darwin":
            editor = "open"
        else:
            editor = "nano"

    console.print(f"Opening [cyan]{target}[/cyan]...")

    try:
        subprocess.run([editor, str(target)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def tail_log() -> None:
    """Follows the daemon log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


def build_parser() -> argparse.ArgumentParser:
    """Builds the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Keep local directories in sync with git remotes on a cron schedule.",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help=f"Task configuration file (default: {CONFIG_FILE})",
    )

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Run the sync daemon in the foreground (default)")
    subparsers.add_parser("check", help="Validate the configuration")
    subparsers.add_parser("list", help="List tasks and repository state")

    sync_parser = subparsers.add_parser(
        "sync", help="Sync one task immediately (refused while the daemon runs)"
    )
    sync_parser.add_argument("name", help="Task name")
    sync_parser.add_argument(
        "--force",
        action="store_true",
        help="Sync even if the daemon is running; a scheduled firing may overlap",
    )

    subparsers.add_parser("config", help="Open the configuration file")
    subparsers.add_parser("log", help="Tail the daemon log file")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the git-filesync CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "check":
        check_config(args.config)
        return
    elif args.command == "list":
        list_tasks(args.config)
        return
    elif args.command == "sync":
        sync_now(args.name, args.config, force=args.force)
        return
    elif args.command == "config":
        open_config(args.config)
        return
    elif args.command == "log":
        tail_log()
        return

    # Default Action
    sys.exit(daemon.main(args.config))


if __name__ == "__main__":
    main()
