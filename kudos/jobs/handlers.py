"""Built-in job handlers."""

from typing import Any

from kudos.errors import DependencyUnavailableError, PermanentFailureError
from kudos.idempotency.guard import IdempotencyGuard
from kudos.jobs.models import Job, JobType
from kudos.jobs.queue import JobQueue
from kudos.jobs.worker import JobWorker
from kudos.notifications.dispatcher import NotificationDispatcher
from kudos.notifications.models import DeliveryStatus, NotificationEvent, NotificationKind
from kudos.observability.logging import get_logger
from kudos.quota.manager import QuotaManager
from kudos.ratelimit.limiter import RateLimiter

logger = get_logger(__name__)


class BuiltinHandlers:
    """Handlers for notification fan-out and periodic maintenance."""

    def __init__(
        self,
        queue: JobQueue,
        dispatcher: NotificationDispatcher,
        idempotency: IdempotencyGuard,
        rate_limiter: RateLimiter,
        quotas: QuotaManager,
    ) -> None:
        self._queue = queue
        self._dispatcher = dispatcher
        self._idempotency = idempotency
        self._rate_limiter = rate_limiter
        self._quotas = quotas

    def register(self, worker: JobWorker) -> None:
        worker.register_handler(JobType.NOTIFY_RECIPIENT, self.notify_recipient)
        worker.register_handler(JobType.MANAGER_VERIFICATION, self.manager_verification)
        worker.register_handler(JobType.IDEMPOTENCY_SWEEP, self.idempotency_sweep)
        worker.register_handler(JobType.RATE_LIMIT_SWEEP, self.rate_limit_sweep)
        worker.register_handler(JobType.QUOTA_RESET, self.quota_reset)
        worker.register_handler(JobType.JOB_CLEANUP, self.job_cleanup)

    async def _fan_out(self, job: Job, kind: NotificationKind) -> dict[str, Any]:
        try:
            event = NotificationEvent.model_validate({**job.payload, "kind": kind})
        except ValueError as e:
            raise PermanentFailureError(f"Invalid notification payload: {e}", job_id=job.id) from e

        results = await self._dispatcher.notify(event)
        delivered = [r.channel for r in results if r.status == DeliveryStatus.DELIVERED]
        retryable = [
            r.channel
            for r in results
            if r.status in (DeliveryStatus.FAILED, DeliveryStatus.CIRCUIT_OPEN) and r.retry
        ]
        if retryable and not delivered:
            raise DependencyUnavailableError(
                f"Notification not delivered to {', '.join(retryable)}",
                dependency=retryable[0],
            )
        return {
            "delivered": delivered,
            "failed": [r.channel for r in results if r.status != DeliveryStatus.DELIVERED],
        }

    async def notify_recipient(self, job: Job) -> dict[str, Any]:
        return await self._fan_out(job, NotificationKind.RECOGNITION_RECEIVED)

    async def manager_verification(self, job: Job) -> dict[str, Any]:
        return await self._fan_out(job, NotificationKind.VERIFICATION_REQUESTED)

    async def idempotency_sweep(self, job: Job) -> dict[str, Any]:
        return {"deleted": await self._idempotency.sweep_expired()}

    async def rate_limit_sweep(self, job: Job) -> dict[str, Any]:
        return {"deleted": await self._rate_limiter.sweep_expired()}

    async def quota_reset(self, job: Job) -> dict[str, Any]:
        period = job.payload.get("period", "daily")
        if period not in ("hourly", "daily", "monthly"):
            raise PermanentFailureError(f"Unknown quota period: {period}", job_id=job.id)
        summary = await self._quotas.batch_reset(period)
        return summary.model_dump(mode="json")

    async def job_cleanup(self, job: Job) -> dict[str, Any]:
        older_than_days = job.payload.get("older_than_days")
        return {"deleted": await self._queue.cleanup(older_than_days)}
