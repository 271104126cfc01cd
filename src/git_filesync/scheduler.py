"""Per-task cron scheduling of sync firings.

A `TaskScheduler` owns the trigger engine, the registry of scheduled jobs and
the count of firings in progress. It never decides when the process may
exit: callers read `running_count` and choose whether to wait.
"""

import datetime
import logging
import threading
from collections.abc import Iterable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.job import Job
from apscheduler.schedulers.background import BackgroundScheduler

from .config import TaskDefinition, parse_cron
from .constants import APP_NAME, DEFAULT_MAX_WORKERS
from .git_wrapper import GitRunner
from .ops import initialize_task, report_outcome, sync_task
from .system import Notifier

logger = logging.getLogger(APP_NAME)


class TaskScheduler:
    """Schedules one recurring sync job per task.

    Attributes:
        tasks (list[TaskDefinition]): The tasks this scheduler owns.
        runner (GitRunner): The command gateway shared by all firings.
        notifier (Notifier | None): Receives initialization and sync notifications.
        max_workers (int): Size of the worker pool.
        timezone (str | None): Zone cron expressions are evaluated in.
    """

    def __init__(
        self,
        tasks: Iterable[TaskDefinition],
        runner: GitRunner | None = None,
        notifier: Notifier | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        timezone: str | None = None,
    ):
        self.tasks = list(tasks)
        self.runner = runner or GitRunner()
        self.notifier = notifier
        self.max_workers = max_workers
        self.timezone = timezone

        self._engine: BackgroundScheduler | None = None
        self._jobs: dict[str, Job] = {}
        self._running = 0
        self._accepting = True
        self._lock = threading.Lock()

    @property
    def running_count(self) -> int:
        """Number of firings currently executing."""
        with self._lock:
            return self._running

    def has_running(self) -> bool:
        return self.running_count > 0

    @property
    def is_started(self) -> bool:
        return self._engine is not None

    @property
    def jobs(self) -> dict[str, Job]:
        """Registered jobs keyed by task name."""
        with self._lock:
            return dict(self._jobs)

    def start(self) -> None:
        """Initializes every task, then starts the trigger engine.

        Initialization is all-or-nothing: the first task that cannot be
        initialized aborts startup before anything is scheduled.

        Raises:
            InitializationError: If a task directory cannot be initialized.
            RuntimeError: If the scheduler is already started.
        """
        if self._engine is not None:
            raise RuntimeError("Scheduler is already started.")

        for task in self.tasks:
            initialize_task(task, self.runner, self.notifier)

        engine = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(self.max_workers)},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": None},
            timezone=self.timezone,
        )
        with self._lock:
            self._accepting = True
        engine.start()
        self._engine = engine

        for task in self.tasks:
            self.register(task)
        logger.info(f"Scheduler started with {len(self.tasks)} task(s).")

    def register(self, task: TaskDefinition) -> Job:
        """Schedules a task's firings: once now, then on every cron boundary.

        Registering the same task name again replaces the existing job.

        Args:
            task (TaskDefinition): The task to schedule.

        Returns:
            Job: The scheduled job.

        Raises:
            RuntimeError: If the scheduler has not been started.
        """
        if self._engine is None:
            raise RuntimeError("Scheduler is not started.")

        trigger = parse_cron(task.cron_expression, self.timezone)
        job = self._engine.add_job(
            self._fire,
            trigger=trigger,
            args=[task],
            id=task.name,
            name=task.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.datetime.now(trigger.timezone),
        )
        with self._lock:
            self._jobs[task.name] = job

        logger.info(
            f"REGISTERED {task.name}: path {task.local_path}, "
            f"repo {task.remote_url}, cron '{task.cron_expression}'"
        )
        return job

    def _fire(self, task: TaskDefinition) -> None:
        """Job body: one sync firing. Never raises into the engine."""
        with self._lock:
            if not self._accepting:
                logger.info(f"SKIPPED {task.name}: scheduler is paused.")
                return
            self._running += 1
        try:
            logger.info(f"START {task.name}")
            report = sync_task(task, self.runner)
            report_outcome(report, task, self.notifier)
        except Exception as e:
            logger.exception(f"FIRING ERROR {task.name}")
            if self.notifier:
                self.notifier.notify("Sync Failed", f"{task.name}: {e}")
        finally:
            with self._lock:
                self._running -= 1

    def pause(self) -> None:
        """Stops new firings from starting; running ones continue.

        A firing already handed to the worker pool but not yet started is
        skipped, so once this returns `running_count` covers every firing
        that will still touch a repository.
        """
        with self._lock:
            self._accepting = False
        if self._engine is not None:
            self._engine.pause()

    def stop(self) -> None:
        """Shuts the trigger engine down without waiting for running firings."""
        if self._engine is None:
            return
        self._engine.shutdown(wait=False)
        self._engine = None
        with self._lock:
            self._jobs.clear()
        logger.info("Scheduler stopped.")
