"""Tests for the built-in job handlers."""

import httpx
import pytest

from kudos.audit.sink import AuditSink
from kudos.breaker.registry import CircuitBreakerRegistry
from kudos.config.models.admission import QuotaConfig, QuotaRule, RateLimitConfig
from kudos.config.models.jobs import ChannelConfig, JobsConfig, NotificationsConfig
from kudos.errors import DependencyUnavailableError, PermanentFailureError
from kudos.idempotency.guard import IdempotencyGuard
from kudos.jobs.handlers import BuiltinHandlers
from kudos.jobs.models import Job, JobStatus, JobType
from kudos.jobs.queue import JobQueue
from kudos.jobs.worker import JobWorker
from kudos.notifications.dispatcher import NotificationDispatcher
from kudos.quota.manager import QuotaManager
from kudos.ratelimit.limiter import RateLimiter
from kudos.storage.stores.inmemory import InMemoryDocumentStore
from tests.helpers.fake_clock import FakeClock

SLACK_URL = "https://hooks.slack.test/services/T000/B000/XXX"

EVENT_PAYLOAD = {
    "recognition_id": "rec-1",
    "organization_id": "org-1",
    "giver_id": "alice",
    "recipient_id": "bob",
    "weight": 2.0,
    "tags": ["teamwork"],
    "occurred_at": "2026-01-15T10:00:00+00:00",
}


class Harness:
    def __init__(
        self, store: InMemoryDocumentStore, clock: FakeClock, audit: AuditSink, slack_status: int
    ) -> None:
        self.queue = JobQueue(store, JobsConfig(), clock, audit)
        self.rate_limiter = RateLimiter(store, RateLimitConfig(), clock)
        self.quotas = QuotaManager(
            store,
            QuotaConfig(defaults={"exports_per_day": QuotaRule(ceiling=5, period="daily")}),
            clock,
        )
        self.idempotency = IdempotencyGuard(store, clock=clock)
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(slack_status))
        )
        self.dispatcher = NotificationDispatcher(
            NotificationsConfig(
                channels={"slack": ChannelConfig(enabled=True, webhook_url=SLACK_URL)}
            ),
            CircuitBreakerRegistry(clock=clock),
            client=client,
        )
        self.handlers = BuiltinHandlers(
            self.queue, self.dispatcher, self.idempotency, self.rate_limiter, self.quotas
        )

    def job(self, job_type: JobType, payload: dict, clock: FakeClock) -> Job:
        return Job(
            job_type=job_type.value,
            payload=payload,
            enqueued_at=clock.now(),
            available_at=clock.now(),
        )


@pytest.fixture
def harness(store: InMemoryDocumentStore, clock: FakeClock, audit: AuditSink) -> Harness:
    return Harness(store, clock, audit, slack_status=200)


class TestNotificationHandlers:
    @pytest.mark.asyncio
    async def test_notify_recipient(self, harness: Harness, clock: FakeClock) -> None:
        result = await harness.handlers.notify_recipient(
            harness.job(JobType.NOTIFY_RECIPIENT, EVENT_PAYLOAD, clock)
        )

        assert result == {"delivered": ["slack"], "failed": []}

    @pytest.mark.asyncio
    async def test_bad_payload_is_permanent(self, harness: Harness, clock: FakeClock) -> None:
        with pytest.raises(PermanentFailureError):
            await harness.handlers.manager_verification(
                harness.job(JobType.MANAGER_VERIFICATION, {"recognition_id": "rec-1"}, clock)
            )

    @pytest.mark.asyncio
    async def test_undelivered_notification_is_retried(
        self, store: InMemoryDocumentStore, clock: FakeClock, audit: AuditSink
    ) -> None:
        harness = Harness(store, clock, audit, slack_status=502)

        with pytest.raises(DependencyUnavailableError):
            await harness.handlers.notify_recipient(
                harness.job(JobType.NOTIFY_RECIPIENT, EVENT_PAYLOAD, clock)
            )


class TestMaintenanceHandlers:
    @pytest.mark.asyncio
    async def test_quota_reset(self, harness: Harness, clock: FakeClock) -> None:
        await harness.quotas.consume("org-1", "exports_per_day", amount=3)
        clock.advance(seconds=86400)

        result = await harness.handlers.quota_reset(
            harness.job(JobType.QUOTA_RESET, {"period": "daily"}, clock)
        )

        assert result["reset_count"] == 1
        assert (await harness.quotas.get_record("org-1", "exports_per_day")).used == 0

    @pytest.mark.asyncio
    async def test_quota_reset_rejects_unknown_period(
        self, harness: Harness, clock: FakeClock
    ) -> None:
        with pytest.raises(PermanentFailureError):
            await harness.handlers.quota_reset(
                harness.job(JobType.QUOTA_RESET, {"period": "yearly"}, clock)
            )

    @pytest.mark.asyncio
    async def test_rate_limit_sweep(self, harness: Harness, clock: FakeClock) -> None:
        await harness.rate_limiter.is_limited("user-1", 5, 60)
        clock.advance(seconds=120)

        result = await harness.handlers.rate_limit_sweep(
            harness.job(JobType.RATE_LIMIT_SWEEP, {}, clock)
        )

        assert result == {"deleted": 1}

    @pytest.mark.asyncio
    async def test_idempotency_sweep(self, harness: Harness, clock: FakeClock) -> None:
        result = await harness.handlers.idempotency_sweep(
            harness.job(JobType.IDEMPOTENCY_SWEEP, {}, clock)
        )

        assert result == {"deleted": 0}

    @pytest.mark.asyncio
    async def test_registered_on_worker(self, harness: Harness) -> None:
        worker = JobWorker(harness.queue, worker_id="w")
        harness.handlers.register(worker)

        assert worker.handlers == sorted(job_type.value for job_type in JobType)

        job_id = await harness.queue.enqueue(JobType.JOB_CLEANUP.value)
        await worker.run_once()
        assert (await harness.queue.get(job_id)).status == JobStatus.COMPLETED
