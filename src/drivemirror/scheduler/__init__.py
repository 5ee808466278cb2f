"""Scheduler package for periodic sync runs."""

from .sync_scheduler import SchedulerError, SyncScheduler, SYNC_JOB_ID

__all__ = [
    "SchedulerError",
    "SyncScheduler",
    "SYNC_JOB_ID"
]
