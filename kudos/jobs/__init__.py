"""Durable job queue, worker and maintenance scheduling."""

from kudos.jobs.models import (
    TERMINAL_STATUSES,
    Job,
    JobPriority,
    JobStatus,
    JobType,
    QueueStats,
)
from kudos.jobs.queue import JOB_COLLECTION, JobQueue
from kudos.jobs.worker import JobHandler, JobWorker, PeriodicScheduler, ScheduledJob

__all__ = [
    "JOB_COLLECTION",
    "TERMINAL_STATUSES",
    "Job",
    "JobHandler",
    "JobPriority",
    "JobQueue",
    "JobStatus",
    "JobType",
    "JobWorker",
    "PeriodicScheduler",
    "QueueStats",
    "ScheduledJob",
]
