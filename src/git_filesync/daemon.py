import logging
import os
import signal
import sys
import threading
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType

from rich.console import Console

from .config import AppConfig
from .constants import APP_NAME, LOG_FILE, PID_FILE, SHUTDOWN_POLL_SECONDS
from .exceptions import ConfigError, InitializationError
from .scheduler import TaskScheduler
from .system import get_system

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

err_console = Console(stderr=True)


def setup_logging(
    interactive: bool, max_log_size: int = 5 * 1024 * 1024, log_file: Path = LOG_FILE
) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to stderr and
                            to a rotating log file.
        max_log_size (int, optional): Max bytes before the log file rotates.
        log_file (Path, optional): The log file path.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # Drop handlers from an earlier call so records are not duplicated.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def running_pid(pid_file: Path | None = None) -> int | None:
    """Returns the process ID of a live daemon, or None if none is running."""
    pid_file = pid_file or PID_FILE
    if not pid_file.exists():
        return None
    try:
        with open(pid_file) as f:
            pid = int(f.read().strip())
        os.kill(pid, 0)
    except (ValueError, OSError):
        return None
    return pid


def wait_until_idle(
    scheduler: TaskScheduler, poll_interval: float = SHUTDOWN_POLL_SECONDS
) -> None:
    """Blocks while any firing is still running.

    Args:
        scheduler (TaskScheduler): The scheduler to watch.
        poll_interval (float, optional): Seconds between checks.
    """
    announced = False
    while scheduler.has_running():
        if not announced:
            logger.info(
                f"Shutdown deferred: {scheduler.running_count} sync job(s) "
                "still running, waiting..."
            )
            announced = True
        time.sleep(poll_interval)


def main(config_path: Path | None = None) -> int:
    """Runs the sync daemon in the foreground until SIGINT or SIGTERM.

    Startup is fail-fast: a configuration or initialization error stops the
    process before any task is scheduled. On a shutdown signal the daemon waits
    for in-flight firings to finish before stopping the scheduler.

    Args:
        config_path (Path | None, optional): Configuration file to load.

    Returns:
        int: The process exit code.
    """
    try:
        config = AppConfig.load(config_path)
    except ConfigError as e:
        setup_logging(interactive=False)
        logger.error(f"CONFIG ERROR: {e}")
        err_console.print(f"[bold red]FATAL:[/bold red] {e}")
        return 1

    setup_logging(interactive=False, max_log_size=config.settings.max_log_size)

    notifier = get_system()
    scheduler = TaskScheduler(
        config.tasks,
        notifier=notifier,
        max_workers=config.settings.max_workers,
        timezone=config.settings.timezone,
    )

    try:
        scheduler.start()
    except InitializationError as e:
        err_console.print(f"[bold red]FATAL:[/bold red] Initialization failed: {e}")
        return 1

    try:
        PID_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(PID_FILE, "w") as f:
            f.write(str(os.getpid()))
    except OSError as e:
        logger.warning(f"Could not write PID file: {e}")

    notifier.notify(
        "Started", f"{APP_NAME} is scheduling {len(config.tasks)} task(s)."
    )

    stop_requested = threading.Event()

    def _request_stop(signum: int, _frame: FrameType | None) -> None:
        logger.info(f"Received signal {signum}, shutting down.")
        stop_requested.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    while not stop_requested.wait(SHUTDOWN_POLL_SECONDS):
        pass

    scheduler.pause()
    wait_until_idle(scheduler)
    scheduler.stop()
    PID_FILE.unlink(missing_ok=True)
    logger.info("Daemon exit.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
