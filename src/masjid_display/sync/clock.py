"""
Clock and timer abstractions used by the sync engine.

Channels never call time.time() or create threads themselves; they take a
clock and a scheduler so tests can drive them without real waits.

Production timers run on an APScheduler BackgroundScheduler:
- one interval job per channel
- max_instances=1 so a slow sync never overlaps its own next tick
- coalesce=True so missed ticks (e.g. after suspend) collapse into one
"""

import threading
import time
import uuid
from typing import Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from masjid_display.common.logger import setup_logger

logger = setup_logger(__name__)

# Worker threads for timer callbacks (one per channel is enough)
TIMER_WORKERS = 6


class SystemClock:
    """Wall-clock time in seconds."""

    def now(self) -> float:
        return time.time()


class IntervalScheduler:
    """
    Periodic timer service.

    schedule() returns an opaque handle; cancel() with that handle stops
    the timer. The first call to schedule() starts the background
    scheduler.
    """

    def __init__(self, max_workers: int = TIMER_WORKERS):
        self._lock = threading.Lock()
        self._scheduler = BackgroundScheduler(
            executors={'default': ThreadPoolExecutor(max_workers=max_workers)},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 30,
            },
            timezone='UTC',
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def schedule(
        self,
        interval: float,
        callback: Callable[[], None],
        name: Optional[str] = None,
    ) -> str:
        """
        Run `callback` every `interval` seconds (first run after one interval).

        Args:
            interval: Seconds between runs
            callback: Zero-argument callable
            name: Optional job name prefix for logs

        Returns:
            Handle to pass to cancel()
        """
        job_id = f"{name or 'timer'}-{uuid.uuid4().hex[:8]}"

        with self._lock:
            if not self._scheduler.running:
                self._scheduler.start()
                logger.info("Timer scheduler started")

            self._scheduler.add_job(
                callback,
                trigger='interval',
                seconds=interval,
                id=job_id,
                name=name or job_id,
                replace_existing=True,
            )

        logger.debug("Scheduled %s every %ss", job_id, interval)
        return job_id

    def cancel(self, handle: str) -> None:
        """Cancel a timer. Unknown or already-cancelled handles are ignored."""
        with self._lock:
            try:
                self._scheduler.remove_job(handle)
                logger.debug("Cancelled %s", handle)
            except JobLookupError:
                logger.debug("Timer %s already cancelled", handle)

    def shutdown(self, wait: bool = False) -> None:
        """Stop the background scheduler and drop all timers."""
        with self._lock:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=wait)
                logger.info("Timer scheduler stopped")
