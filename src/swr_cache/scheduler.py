"""
Background work: detached one-shot refreshes and periodic loader jobs.

One-shot refreshes are plain asyncio tasks nobody awaits. Periodic loaders
run on an APScheduler AsyncIOScheduler bound to the running event loop.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Coroutine

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .errors import notify

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """
    Launches detached refreshes and hosts periodic loader jobs.

    Detached tasks are never joined, awaited or cancelled; the scheduler only
    holds a reference until they finish so the event loop does not drop them.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def pending(self) -> int:
        """Number of detached refreshes still running."""
        return len(self._tasks)

    def spawn(
        self,
        work: Coroutine[Any, Any, Any],
        label: str,
        on_error: Callable[[Exception], Any] | None = None,
    ) -> None:
        """Run ``work`` in the background. Failures go to the log and ``on_error``."""
        task = asyncio.get_running_loop().create_task(self._guard(work, label, on_error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard(
        self,
        work: Awaitable[Any],
        label: str,
        on_error: Callable[[Exception], Any] | None,
    ) -> None:
        try:
            await work
            logger.debug(f"Background refresh complete: {label}")
        except Exception as e:
            logger.error(f"Background refresh failed for {label}: {e}", exc_info=True)
            await notify(on_error, e)

    # ------------------------------------------------------------------
    # Periodic jobs
    # ------------------------------------------------------------------

    def get_scheduler(self) -> AsyncIOScheduler:
        """Get or create the APScheduler instance on the running loop."""
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        return self._scheduler

    def add_periodic(
        self,
        job_id: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        run_immediately: bool = True,
    ) -> None:
        """
        Run ``func`` every ``interval_seconds``. Must be called inside a running loop.

        Args:
            job_id: Unique job id; registering the same id replaces the job
            func: Coroutine function taking no arguments
            interval_seconds: Seconds between runs
            run_immediately: Fire the first run now instead of after one interval
        """
        scheduler = self.get_scheduler()
        kwargs: dict[str, Any] = {}
        if run_immediately:
            kwargs["next_run_time"] = datetime.now(timezone.utc)

        scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=job_id,
            replace_existing=True,
            **kwargs,
        )

        if not scheduler.running:
            scheduler.start()
            logger.info("Refresh scheduler started")

    def shutdown(self, wait: bool = False) -> None:
        """Stop periodic jobs. Detached refreshes are left to finish on their own."""
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Refresh scheduler stopped")
        self._scheduler = None
