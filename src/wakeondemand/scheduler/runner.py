"""APScheduler-based control-thread scheduler for WakeOnDemand."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle for a delayed call. ``cancel()`` is idempotent."""

    def __init__(self, cancel_fn: Optional[Callable[[], None]] = None) -> None:
        self._cancel_fn = cancel_fn
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._cancel_fn:
            self._cancel_fn()


class TaskScheduler:
    """
    Single-threaded delayed-task queue.

    Everything scheduled through one instance runs on the same logical
    control thread, one call at a time. Components mutate their shared state
    only from calls made by the scheduler, so they need no locks.
    """

    def now(self) -> datetime:
        raise NotImplementedError

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> ScheduledTask:
        return self.call_later(0, fn, *args)

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> ScheduledTask:
        raise NotImplementedError

    def start(self) -> None:
        pass

    def stop(self, wait: bool = True) -> None:
        pass


class BackgroundTaskScheduler(TaskScheduler):
    """
    TaskScheduler backed by an APScheduler ``BackgroundScheduler``.

    The executor has a single worker, which is the control thread.

    Usage::

        scheduler = BackgroundTaskScheduler()
        scheduler.start()
        task = scheduler.call_later(2.0, tick)
        task.cancel()
        scheduler.stop()
    """

    def __init__(self) -> None:
        self._scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            timezone="UTC",
        )

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> ScheduledTask:
        run_date = self.now() + timedelta(seconds=max(0.0, delay))
        job = self._scheduler.add_job(
            func=self._run,
            trigger=DateTrigger(run_date=run_date, timezone="UTC"),
            args=[fn, args],
            misfire_grace_time=None,
        )
        return ScheduledTask(lambda: self._remove(job))

    @staticmethod
    def _run(fn: Callable[..., Any], args: tuple) -> None:
        try:
            fn(*args)
        except Exception as exc:
            logger.error("Scheduled task %s raised: %s", getattr(fn, "__name__", fn), exc)

    @staticmethod
    def _remove(job: Job) -> None:
        try:
            job.remove()
        except JobLookupError:
            # already ran
            pass

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def start(self) -> None:
        """Start the background scheduler."""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.debug("Control scheduler started")

    def stop(self, wait: bool = True) -> None:
        """Stop the background scheduler."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.debug("Control scheduler stopped")
