"""APScheduler wrapper that ticks the dispatcher."""

import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from coralqueue.logging import get_logger

logger = get_logger(__name__, component="scheduler")

DISPATCH_JOB_ID = "notification-dispatch"
CLEANUP_JOB_ID = "notification-cleanup"
CLEANUP_INTERVAL_HOURS = 24


class SchedulerService:
    """
    Runs the dispatch tick (and optional cleanup) on a BackgroundScheduler.

    The main thread stays free to handle signals and coordinate shutdown.
    """

    def __init__(
        self,
        dispatch_callable: Callable[[], object],
        interval_seconds: int,
        cleanup_callable: Optional[Callable[[], object]] = None,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            dispatch_callable: Called every tick (normally Dispatcher.run_once)
            interval_seconds: Seconds between ticks
            cleanup_callable: Called daily when terminal-job cleanup is enabled
            shutdown_event: Set once the scheduler has stopped
        """
        self.dispatch_callable = dispatch_callable
        self.interval_seconds = interval_seconds
        self.cleanup_callable = cleanup_callable
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": interval_seconds,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """Register the jobs and start ticking; the first tick runs immediately."""
        if self.scheduler.running:
            logger.warning("Scheduler already running", extra={"event": "scheduler.already_running"})
            return

        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.dispatch_callable,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
            id=DISPATCH_JOB_ID,
            name="Notification dispatch",
            replace_existing=True,
            next_run_time=next_run,
        )

        if self.cleanup_callable is not None:
            self.scheduler.add_job(
                func=self.cleanup_callable,
                trigger=IntervalTrigger(hours=CLEANUP_INTERVAL_HOURS, timezone=timezone.utc),
                id=CLEANUP_JOB_ID,
                name="Notification cleanup",
                replace_existing=True,
            )

        self.scheduler.start()

        logger.info(
            f"Scheduler started with interval: {self.interval_seconds} seconds",
            extra={
                "event": "scheduler.started",
                "interval_seconds": self.interval_seconds,
                "cleanup_enabled": self.cleanup_callable is not None,
                "next_run_time": next_run.isoformat(),
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Stop the scheduler.

        Args:
            wait: If True, wait for a running tick to finish before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def trigger_now(self) -> None:
        """Run one dispatch tick synchronously in the calling thread."""
        logger.info("Triggering immediate dispatch", extra={"event": "scheduler.trigger_now"})
        self.dispatch_callable()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self) -> Optional[datetime]:
        job = self.scheduler.get_job(DISPATCH_JOB_ID)
        return job.next_run_time if job else None
