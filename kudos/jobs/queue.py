"""Durable job queue on top of the document store.

Workers claim jobs with a version-checked write that stamps a lease, so
two workers can never own the same job. Failed attempts are retried with
exponential backoff until max_retries is used up, then the job is moved
to the dead letter state for manual inspection.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from kudos.audit.models import AuditEventCode
from kudos.audit.sink import AuditSink
from kudos.clock import Clock, SystemClock
from kudos.config.models.jobs import JobsConfig
from kudos.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    LeaseLostError,
    NotFoundError,
    ValidationError,
)
from kudos.jobs.models import Job, JobPriority, JobStatus, QueueStats
from kudos.observability.logging import get_logger
from kudos.observability.metrics import JOB_OUTCOMES, JOBS_ENQUEUED
from kudos.storage.atomic import compare_and_set
from kudos.storage.store import DocumentExistsError, DocumentNotFoundError, DocumentStore

logger = get_logger(__name__)

JOB_COLLECTION = "jobs"

_ELIGIBLE_STATUSES = (JobStatus.PENDING, JobStatus.RETRYING)


class JobQueue:
    """Priority job queue with leases, retries and a dead letter state."""

    def __init__(
        self,
        store: DocumentStore,
        config: JobsConfig | None = None,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        cas_max_attempts: int = 8,
    ) -> None:
        self._store = store
        self._config = config or JobsConfig()
        self._clock = clock or SystemClock()
        self._audit = audit
        self._cas_max_attempts = cas_max_attempts

    def backoff_seconds(self, retries: int) -> float:
        """Delay before attempt number `retries + 1`: base * 2^(retries-1), capped."""
        if retries <= 0:
            return 0.0
        delay = self._config.backoff_base_seconds * (2 ** (retries - 1))
        return min(delay, self._config.backoff_max_seconds)

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        priority: JobPriority = JobPriority.NORMAL,
        max_retries: int | None = None,
        delay_seconds: float = 0,
        job_id: str | None = None,
    ) -> str:
        """Add a job.

        Args:
            job_type: Handler name
            payload: JSON-serializable handler input
            priority: Higher priorities are dequeued first
            max_retries: Retry budget (defaults to jobs.default_max_retries)
            delay_seconds: Do not run before now + delay
            job_id: Fixed id; enqueueing an id that already exists is a no-op

        Returns:
            The job id
        """
        if not job_type:
            raise ValidationError("job_type is required", field="job_type")
        if max_retries is None:
            max_retries = self._config.default_max_retries
        if max_retries < 0:
            raise ValidationError("max_retries cannot be negative", field="max_retries")

        now = self._clock.now()
        job = Job(
            job_type=job_type,
            payload=payload or {},
            priority=JobPriority(priority),
            max_retries=max_retries,
            enqueued_at=now,
            available_at=now + timedelta(seconds=delay_seconds),
        )
        if job_id is not None:
            job.id = job_id

        try:
            await self._store.create(JOB_COLLECTION, job.id, job.model_dump(mode="json"))
        except DocumentExistsError:
            logger.debug("job_already_enqueued", job_id=job.id, job_type=job_type)
            return job.id

        JOBS_ENQUEUED.labels(job_type=job_type).inc()
        logger.info(
            "job_enqueued",
            job_id=job.id,
            job_type=job_type,
            priority=job.priority.name,
            max_retries=max_retries,
            delay_seconds=delay_seconds,
        )
        return job.id

    async def _eligible(self, now: datetime) -> list[tuple[Job, int]]:
        candidates = []
        for status in _ELIGIBLE_STATUSES:
            for document in await self._store.find(JOB_COLLECTION, {"status": status.value}):
                job = Job.model_validate(document.data)
                if job.available_at <= now:
                    candidates.append((job, document.version))
        candidates.sort(key=lambda item: (-item[0].priority, item[0].enqueued_at))
        return candidates[: self._config.dequeue_scan_limit]

    async def dequeue_next(self, worker_id: str) -> Job | None:
        """Claim the highest-priority eligible job.

        A claim that loses a race moves on to the next candidate.

        Returns:
            The claimed job in processing state, or None if nothing is eligible
        """
        now = self._clock.now()
        for job, version in await self._eligible(now):
            claimed = job.model_copy(
                update={
                    "status": JobStatus.PROCESSING,
                    "started_at": now,
                    "lease_owner": worker_id,
                    "lease_expires_at": now + timedelta(seconds=self._config.lease_seconds),
                }
            )
            try:
                await self._store.replace(
                    JOB_COLLECTION,
                    job.id,
                    claimed.model_dump(mode="json"),
                    expected_version=version,
                )
            except (ConcurrencyConflictError, DocumentNotFoundError):
                logger.debug("job_claim_lost", job_id=job.id, worker_id=worker_id)
                continue

            logger.info(
                "job_claimed",
                job_id=job.id,
                job_type=job.job_type,
                worker_id=worker_id,
                attempt=job.retries + 1,
            )
            return claimed
        return None

    async def get(self, job_id: str) -> Job | None:
        document = await self._store.get(JOB_COLLECTION, job_id)
        return Job.model_validate(document.data) if document else None

    def _check_owner(self, job: Job, worker_id: str | None) -> None:
        if job.status != JobStatus.PROCESSING or (
            worker_id is not None and job.lease_owner != worker_id
        ):
            raise LeaseLostError(
                f"Worker {worker_id} does not hold the lease on job {job.id}"
            )

    async def _update(self, job_id: str, mutate: Callable[[Job], Job]) -> Job:
        def guarded(current: dict[str, Any] | None) -> dict[str, Any] | None:
            if current is None:
                raise NotFoundError(f"Job {job_id} not found")
            updated = mutate(Job.model_validate(current))
            return updated.model_dump(mode="json") if updated is not None else None

        document = await compare_and_set(
            self._store,
            JOB_COLLECTION,
            job_id,
            guarded,
            max_attempts=self._cas_max_attempts,
        )
        return Job.model_validate(document.data)

    async def complete(
        self, job_id: str, worker_id: str, result: dict[str, Any] | None = None
    ) -> Job:
        """Mark a claimed job completed.

        Raises:
            LeaseLostError: If worker_id no longer owns the job
        """
        now = self._clock.now()

        def mutate(job: Job) -> Job:
            self._check_owner(job, worker_id)
            job.status = JobStatus.COMPLETED
            job.completed_at = now
            job.result = result
            job.lease_owner = None
            job.lease_expires_at = None
            return job

        job = await self._update(job_id, mutate)
        JOB_OUTCOMES.labels(job_type=job.job_type, outcome="completed").inc()
        logger.info("job_completed", job_id=job_id, job_type=job.job_type, worker_id=worker_id)
        return job

    def _apply_failure(self, job: Job, error: str, retryable: bool, now: datetime) -> Job:
        job.last_error = error
        job.lease_owner = None
        job.lease_expires_at = None
        if retryable and job.retries < job.max_retries:
            job.retries += 1
            job.status = JobStatus.RETRYING
            job.available_at = now + timedelta(seconds=self.backoff_seconds(job.retries))
        else:
            job.status = JobStatus.DEAD_LETTER
            job.completed_at = now
        return job

    async def fail(
        self,
        job_id: str,
        worker_id: str,
        error: str,
        retryable: bool = True,
    ) -> Job:
        """Record a failed attempt.

        The job is retried after a backoff while retries < max_retries,
        otherwise (or when retryable is False) it is dead-lettered.

        Raises:
            LeaseLostError: If worker_id no longer owns the job
        """
        now = self._clock.now()

        def mutate(job: Job) -> Job:
            self._check_owner(job, worker_id)
            return self._apply_failure(job, error, retryable, now)

        job = await self._update(job_id, mutate)
        await self._after_failure(job, worker_id)
        return job

    async def _after_failure(self, job: Job, worker_id: str | None) -> None:
        if job.status == JobStatus.RETRYING:
            JOB_OUTCOMES.labels(job_type=job.job_type, outcome="retrying").inc()
            logger.warning(
                "job_retry_scheduled",
                job_id=job.id,
                job_type=job.job_type,
                worker_id=worker_id,
                retries=job.retries,
                max_retries=job.max_retries,
                available_at=job.available_at.isoformat(),
                error=job.last_error,
            )
            return

        JOB_OUTCOMES.labels(job_type=job.job_type, outcome="dead_letter").inc()
        logger.error(
            "job_dead_lettered",
            job_id=job.id,
            job_type=job.job_type,
            worker_id=worker_id,
            retries=job.retries,
            error=job.last_error,
        )
        if self._audit is not None:
            await self._audit.emit(
                AuditEventCode.JOB_DEAD_LETTERED,
                target_id=job.id,
                metadata={
                    "job_type": job.job_type,
                    "retries": job.retries,
                    "error": job.last_error,
                },
            )

    async def reclaim_expired_leases(self) -> int:
        """Treat processing jobs whose lease ran out as failed attempts.

        Returns:
            Number of jobs reclaimed
        """
        now = self._clock.now()
        reclaimed = 0
        documents = await self._store.find(JOB_COLLECTION, {"status": JobStatus.PROCESSING.value})
        for document in documents:
            job = Job.model_validate(document.data)
            if job.lease_expires_at is None or job.lease_expires_at > now:
                continue
            owner = job.lease_owner
            failed = self._apply_failure(
                job, f"Lease held by {owner} expired", retryable=True, now=now
            )
            try:
                await self._store.replace(
                    JOB_COLLECTION,
                    job.id,
                    failed.model_dump(mode="json"),
                    expected_version=document.version,
                )
            except (ConcurrencyConflictError, DocumentNotFoundError):
                continue
            reclaimed += 1
            await self._after_failure(failed, owner)

        if reclaimed:
            logger.warning("job_leases_reclaimed", count=reclaimed)
        return reclaimed

    async def requeue_dead_letter(self, job_id: str) -> Job:
        """Return a dead-lettered job to pending with a fresh retry budget.

        Raises:
            InvalidTransitionError: If the job is not dead-lettered
        """
        now = self._clock.now()

        def mutate(job: Job) -> Job:
            if job.status != JobStatus.DEAD_LETTER:
                raise InvalidTransitionError(
                    "Only dead-lettered jobs can be requeued", current=job.status.value
                )
            job.status = JobStatus.PENDING
            job.retries = 0
            job.available_at = now
            job.completed_at = None
            job.started_at = None
            return job

        job = await self._update(job_id, mutate)
        logger.info("job_requeued", job_id=job_id, job_type=job.job_type)
        return job

    async def stats(self) -> QueueStats:
        stats = QueueStats()
        for document in await self._store.find(JOB_COLLECTION):
            status = document.data.get("status", "unknown")
            job_type = document.data.get("job_type", "unknown")
            stats.total += 1
            stats.by_status[status] = stats.by_status.get(status, 0) + 1
            stats.by_type[job_type] = stats.by_type.get(job_type, 0) + 1
        return stats

    async def list_jobs(self, status: JobStatus | None = None) -> list[Job]:
        filters = {"status": status.value} if status is not None else None
        jobs = [
            Job.model_validate(document.data)
            for document in await self._store.find(JOB_COLLECTION, filters)
        ]
        return sorted(jobs, key=lambda job: job.enqueued_at)

    async def cleanup(self, older_than_days: int | None = None) -> int:
        """Delete completed jobs that finished more than older_than_days ago.

        Returns:
            Number of jobs deleted
        """
        if older_than_days is None:
            older_than_days = self._config.completed_retention_days
        cutoff = self._clock.now() - timedelta(days=older_than_days)
        deleted = 0
        for document in await self._store.find(
            JOB_COLLECTION, {"status": JobStatus.COMPLETED.value}
        ):
            job = Job.model_validate(document.data)
            if job.completed_at is None or job.completed_at >= cutoff:
                continue
            try:
                if await self._store.delete(
                    JOB_COLLECTION, job.id, expected_version=document.version
                ):
                    deleted += 1
            except ConcurrencyConflictError:
                continue

        logger.info("job_cleanup_completed", deleted=deleted, older_than_days=older_than_days)
        return deleted
