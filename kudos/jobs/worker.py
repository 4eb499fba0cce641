"""Job worker loop and periodic maintenance scheduler."""

import asyncio
import socket
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any
from uuid import uuid4

from croniter import croniter

from kudos.clock import Clock, SystemClock
from kudos.config.models.jobs import ScheduleConfig
from kudos.errors import LeaseLostError, PermanentFailureError, ValidationError
from kudos.jobs.models import Job, JobPriority, JobType
from kudos.jobs.queue import JobQueue
from kudos.observability.logging import bind_request_context, clear_request_context, get_logger
from kudos.observability.metrics import JOB_LATENCY

logger = get_logger(__name__)

JobHandler = Callable[[Job], Awaitable[dict[str, Any] | None]]


class JobWorker:
    """Polls the queue and runs registered handlers.

    Each poll first reclaims expired leases, then claims and runs jobs
    until the queue is empty or max_jobs_per_poll is reached. A handler
    that raises fails the attempt; PermanentFailureError dead-letters the
    job straight away. Jobs with no registered handler fail like any
    other attempt and end up dead-lettered.
    """

    def __init__(
        self,
        queue: JobQueue,
        worker_id: str | None = None,
        poll_interval_seconds: float = 5.0,
        job_timeout_seconds: float = 120.0,
        max_jobs_per_poll: int = 10,
    ):
        """Initialize worker.

        Args:
            queue: Job queue to consume
            worker_id: Lease owner name (defaults to host name plus a random suffix)
            poll_interval_seconds: Sleep between polls
            job_timeout_seconds: Upper bound for one handler run
            max_jobs_per_poll: Jobs processed per poll before sleeping
        """
        self._queue = queue
        self.worker_id = worker_id or f"{socket.gethostname()}-{uuid4().hex[:8]}"
        self._poll_interval_seconds = poll_interval_seconds
        self._job_timeout_seconds = job_timeout_seconds
        self._max_jobs_per_poll = max_jobs_per_poll
        self._handlers: dict[str, JobHandler] = {}
        self._running = False
        self._poll_task: asyncio.Task | None = None

    def register_handler(self, job_type: JobType | str, handler: JobHandler) -> None:
        name = job_type.value if isinstance(job_type, JobType) else job_type
        self._handlers[name] = handler
        logger.debug("job_handler_registered", job_type=name)

    @property
    def handlers(self) -> list[str]:
        return sorted(self._handlers)

    async def start(self) -> None:
        """Start the polling loop in a background task."""
        if self._running:
            logger.warning("worker_already_running", worker_id=self.worker_id)
            return

        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(
            "worker_started",
            worker_id=self.worker_id,
            poll_interval_seconds=self._poll_interval_seconds,
            handlers=self.handlers,
        )

    async def stop(self) -> None:
        """Stop the polling loop."""
        if not self._running:
            return

        self._running = False
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        logger.info("worker_stopped", worker_id=self.worker_id)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("worker_poll_error", worker_id=self.worker_id, error=str(e))

            await asyncio.sleep(self._poll_interval_seconds)

    async def run_once(self) -> int:
        """Reclaim expired leases and process available jobs.

        Returns:
            Number of jobs processed
        """
        await self._queue.reclaim_expired_leases()

        processed = 0
        while processed < self._max_jobs_per_poll:
            job = await self._queue.dequeue_next(self.worker_id)
            if job is None:
                break
            await self.process(job)
            processed += 1
        return processed

    async def process(self, job: Job) -> Job | None:
        """Run the handler for a claimed job and record the outcome."""
        bind_request_context(job_id=job.id, job_type=job.job_type)
        start = time.perf_counter()
        try:
            handler = self._handlers.get(job.job_type)
            if handler is None:
                logger.error("job_handler_missing", job_id=job.id, job_type=job.job_type)
                return await self._queue.fail(
                    job.id, self.worker_id, f"No handler registered for {job.job_type}"
                )

            try:
                async with asyncio.timeout(self._job_timeout_seconds):
                    result = await handler(job)
            except PermanentFailureError as e:
                return await self._queue.fail(job.id, self.worker_id, e.message, retryable=False)
            except TimeoutError:
                return await self._queue.fail(
                    job.id,
                    self.worker_id,
                    f"Handler timed out after {self._job_timeout_seconds}s",
                )
            except Exception as e:
                logger.warning(
                    "job_handler_failed",
                    job_id=job.id,
                    job_type=job.job_type,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return await self._queue.fail(job.id, self.worker_id, f"{type(e).__name__}: {e}")

            return await self._queue.complete(job.id, self.worker_id, result)
        except LeaseLostError as e:
            logger.warning("job_lease_lost", job_id=job.id, worker_id=self.worker_id, error=e.message)
            return None
        finally:
            JOB_LATENCY.labels(job_type=job.job_type).observe(time.perf_counter() - start)
            clear_request_context()


class ScheduledJob:
    """A maintenance job enqueued whenever its cron expression fires."""

    def __init__(
        self,
        job_type: str,
        cron: str,
        payload: dict[str, Any] | None = None,
        priority: JobPriority = JobPriority.LOW,
    ) -> None:
        self.job_type = job_type
        self.cron = cron
        self.payload = payload or {}
        self.priority = priority

    @property
    def name(self) -> str:
        suffix = "-".join(str(value) for value in self.payload.values())
        return f"{self.job_type}-{suffix}" if suffix else self.job_type

    def next_run_after(self, moment: datetime) -> datetime:
        return croniter(self.cron, moment).get_next(datetime)


class PeriodicScheduler:
    """Enqueues maintenance jobs on calendar boundaries.

    The first tick only computes each entry's next fire time; later ticks
    enqueue entries whose fire time has passed and move it forward, so a
    fire time is never enqueued twice by the same scheduler. Job ids embed
    the fire time, which deduplicates runs across scheduler instances.
    """

    def __init__(
        self,
        queue: JobQueue,
        clock: Clock | None = None,
        poll_interval_seconds: float = 60.0,
    ) -> None:
        self._queue = queue
        self._clock = clock or SystemClock()
        self._poll_interval_seconds = poll_interval_seconds
        self._entries: list[ScheduledJob] = []
        self._next_runs: dict[str, datetime] = {}
        self._running = False
        self._poll_task: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls,
        queue: JobQueue,
        schedule: ScheduleConfig,
        clock: Clock | None = None,
    ) -> "PeriodicScheduler":
        scheduler = cls(queue, clock=clock)
        scheduler.add(JobType.IDEMPOTENCY_SWEEP, schedule.idempotency_sweep_cron)
        scheduler.add(JobType.RATE_LIMIT_SWEEP, schedule.rate_limit_sweep_cron)
        scheduler.add(JobType.QUOTA_RESET, schedule.quota_hourly_reset_cron, {"period": "hourly"})
        scheduler.add(JobType.QUOTA_RESET, schedule.quota_daily_reset_cron, {"period": "daily"})
        scheduler.add(
            JobType.QUOTA_RESET, schedule.quota_monthly_reset_cron, {"period": "monthly"}
        )
        scheduler.add(JobType.JOB_CLEANUP, schedule.job_cleanup_cron)
        return scheduler

    def add(
        self,
        job_type: JobType | str,
        cron: str,
        payload: dict[str, Any] | None = None,
        priority: JobPriority = JobPriority.LOW,
    ) -> None:
        """Schedule a job type on a cron expression; an empty expression disables it.

        Raises:
            ValidationError: If the expression does not parse
        """
        if not cron:
            return
        if not croniter.is_valid(cron):
            raise ValidationError(f"Invalid cron expression: {cron!r}", field="cron")
        name = job_type.value if isinstance(job_type, JobType) else job_type
        self._entries.append(ScheduledJob(name, cron, payload, priority))

    @property
    def entries(self) -> list[ScheduledJob]:
        return list(self._entries)

    def next_run(self, entry_name: str) -> datetime | None:
        return self._next_runs.get(entry_name)

    async def tick(self) -> list[str]:
        """Enqueue every entry whose fire time has passed.

        Returns:
            Ids of the jobs enqueued by this tick (existing ids when another
            scheduler already enqueued the same fire time)
        """
        now = self._clock.now()
        job_ids = []
        for entry in self._entries:
            due = self._next_runs.get(entry.name)
            if due is None:
                self._next_runs[entry.name] = entry.next_run_after(now)
                continue
            if now < due:
                continue

            job_id = await self._queue.enqueue(
                entry.job_type,
                entry.payload,
                priority=entry.priority,
                job_id=f"scheduled:{entry.name}:{int(due.timestamp())}",
            )
            job_ids.append(job_id)
            # Fire times missed while the process was down collapse into this run
            self._next_runs[entry.name] = entry.next_run_after(now)
        return job_ids

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info("periodic_scheduler_started", entries=[entry.name for entry in self._entries])

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        logger.info("periodic_scheduler_stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error("periodic_scheduler_error", error=str(e))

            await asyncio.sleep(self._poll_interval_seconds)
