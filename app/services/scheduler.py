"""
Scheduler service for recurring background tasks.

Wraps an APScheduler ``AsyncIOScheduler`` with named fixed-interval tasks.
A task never overlaps itself: a tick that fires while the previous run of
the same task is still in flight is skipped with a warning.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[Any] | Any]


@dataclass
class _ScheduledTask:
    name: str
    task: Task
    interval_seconds: int
    is_running: bool = False


class SchedulerService:
    """Service for managing named interval tasks."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self._scheduler = scheduler or AsyncIOScheduler(timezone=UTC)
        self._tasks: dict[str, _ScheduledTask] = {}

    def start(self) -> None:
        """Start the underlying scheduler."""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Scheduler started")

    def shutdown(self) -> None:
        """Stop every task and the underlying scheduler."""
        self.stop_all()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def schedule(
        self,
        name: str,
        task: Task,
        interval_seconds: int,
        run_immediately: bool = False,
    ) -> None:
        """
        Run ``task`` every ``interval_seconds``, replacing any task of the same name.

        Args:
            name: Unique task name.
            task: Callable, sync or async, taking no arguments.
            interval_seconds: Fixed period between ticks.
            run_immediately: Also fire once right away instead of waiting a period.
        """
        state = self._tasks.get(name)
        if state is not None:
            # Keep the running flag so an in-flight run still blocks the replacement
            state.task = task
            state.interval_seconds = interval_seconds
            logger.info("Replacing task %s", name)
        else:
            self._tasks[name] = _ScheduledTask(name=name, task=task, interval_seconds=interval_seconds)
        self.start()

        job_kwargs: dict[str, Any] = {}
        if run_immediately:
            job_kwargs["next_run_time"] = datetime.now(UTC)

        self._scheduler.add_job(
            self._execute,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=name,
            name=name,
            args=[name],
            replace_existing=True,
            coalesce=True,
            # The running flag decides whether to skip, not APScheduler
            max_instances=2,
            misfire_grace_time=interval_seconds,
            **job_kwargs,
        )
        logger.info("Scheduled task %s (every %s seconds)", name, interval_seconds)

    async def _execute(self, name: str) -> None:
        """Run one tick of a task unless its previous run is still in flight."""
        state = self._tasks.get(name)
        if state is None:
            return

        if state.is_running:
            logger.warning("Task %s is still running, skipping this execution", name)
            return

        state.is_running = True
        try:
            logger.debug("Executing task %s", name)
            result = state.task()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Error executing task %s: %s", name, e, exc_info=True)
        finally:
            state.is_running = False

    def stop_task(self, name: str) -> None:
        """Stop a task. Unknown names are ignored."""
        if self._tasks.pop(name, None) is None:
            return
        try:
            self._scheduler.remove_job(name)
        except JobLookupError:
            logger.debug("Job %s already removed", name)
        logger.info("Stopped task %s", name)

    def stop_all(self) -> None:
        """Stop every task."""
        for name in list(self._tasks):
            self.stop_task(name)

    def is_active(self, name: str) -> bool:
        return name in self._tasks

    def is_task_running(self, name: str) -> bool:
        state = self._tasks.get(name)
        return state.is_running if state else False

    def task_names(self) -> list[str]:
        return list(self._tasks)
