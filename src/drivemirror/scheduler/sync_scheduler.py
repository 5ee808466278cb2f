"""Periodic sync trigger."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..core import Reconciler, SyncOutcome, SyncResult
from ..utils.logging import get_logger

SYNC_JOB_ID = "drivemirror_sync"


class SchedulerError(Exception):
    """Raised when scheduler operations fail."""
    pass


class SyncScheduler:
    """Runs ``Reconciler.sync()`` on a fixed interval.

    The job never overlaps itself; a manual trigger that races a scheduled
    run is rejected by the reconciler and counted as busy.
    """

    def __init__(self, reconciler: Reconciler, interval_minutes: int = 5):
        """Initialize the scheduler.

        Args:
            reconciler: Reconciler to trigger
            interval_minutes: Minutes between runs; 0 disables the job
        """
        if interval_minutes < 0:
            raise SchedulerError("interval_minutes must not be negative")

        self.reconciler = reconciler
        self.interval_minutes = interval_minutes
        self.logger = get_logger(self.__class__.__name__)

        self.scheduler = AsyncIOScheduler(
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 300
            }
        )
        self.scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_missed, EVENT_JOB_MISSED)

        self.job_stats: Dict[str, Any] = {
            "run_count": 0,
            "success_count": 0,
            "error_count": 0,
            "busy_count": 0,
            "last_run": None,
            "last_result": None,
        }

    @property
    def is_running(self) -> bool:
        return self.scheduler.running

    @property
    def enabled(self) -> bool:
        return self.interval_minutes > 0

    async def start(self):
        """Start the scheduler; must be called from a running event loop."""
        if self.scheduler.running:
            self.logger.warning("Scheduler is already running")
            return

        try:
            if self.enabled:
                self.scheduler.add_job(
                    func=self.reconciler.sync,
                    trigger=IntervalTrigger(minutes=self.interval_minutes),
                    id=SYNC_JOB_ID,
                    name="Mirror local directory to Drive",
                    replace_existing=True
                )
            self.scheduler.start()
        except Exception as e:
            self.logger.error("Failed to start scheduler", error=str(e))
            raise SchedulerError(f"Failed to start scheduler: {e}")

        self.logger.info(
            "Sync scheduler started",
            interval_minutes=self.interval_minutes,
            next_run=self.next_run_time
        )

    async def stop(self, wait: bool = False):
        """Stop the scheduler."""
        if not self.scheduler.running:
            self.logger.warning("Scheduler is not running")
            return

        self.scheduler.shutdown(wait=wait)
        # Newer AsyncIOScheduler releases finish shutdown in a loop callback
        while self.scheduler.running:
            await asyncio.sleep(0)
        self.logger.info("Sync scheduler stopped")

    @property
    def next_run_time(self) -> Optional[datetime]:
        job = self.scheduler.get_job(SYNC_JOB_ID)
        # Pending jobs of a scheduler that has not started have no run time yet
        return getattr(job, "next_run_time", None) if job else None

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.job_stats)
        stats.update({
            "is_running": self.is_running,
            "interval_minutes": self.interval_minutes,
            "next_run": self.next_run_time.isoformat() if self.next_run_time else None,
        })
        return stats

    def _job_executed(self, event):
        """Handle job execution event."""
        stats = self.job_stats
        stats["last_run"] = datetime.now(timezone.utc).isoformat()
        stats["run_count"] += 1

        result = getattr(event, "retval", None)
        if not isinstance(result, SyncResult):
            return

        stats["last_result"] = result.to_dict()
        if result.success:
            stats["success_count"] += 1
        elif result.outcome == SyncOutcome.BUSY:
            stats["busy_count"] += 1
        else:
            stats["error_count"] += 1

    def _job_error(self, event):
        """Handle job error event."""
        self.job_stats["last_run"] = datetime.now(timezone.utc).isoformat()
        self.job_stats["run_count"] += 1
        self.job_stats["error_count"] += 1

        self.logger.error("Scheduled sync raised", job_id=event.job_id, error=str(event.exception))

    def _job_missed(self, event):
        """Handle job missed event."""
        self.logger.warning(
            "Scheduled sync missed",
            job_id=event.job_id,
            scheduled_run_time=event.scheduled_run_time
        )
