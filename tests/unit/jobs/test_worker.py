"""Tests for the job worker and the periodic scheduler."""

import asyncio
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError as PydanticValidationError

from kudos.config.models.jobs import JobsConfig, ScheduleConfig
from kudos.errors import PermanentFailureError, ValidationError
from kudos.jobs.models import Job, JobStatus, JobType
from kudos.jobs.queue import JobQueue
from kudos.jobs.worker import JobWorker, PeriodicScheduler
from kudos.storage.stores.inmemory import InMemoryDocumentStore
from tests.helpers.fake_clock import FakeClock


@pytest.fixture
def queue(store: InMemoryDocumentStore, clock: FakeClock) -> JobQueue:
    return JobQueue(store, JobsConfig(backoff_base_seconds=0), clock)


@pytest.fixture
def worker(queue: JobQueue) -> JobWorker:
    return JobWorker(queue, worker_id="worker-test", job_timeout_seconds=0.5, max_jobs_per_poll=3)


class TestJobWorker:
    @pytest.mark.asyncio
    async def test_successful_handler_completes_job(
        self, worker: JobWorker, queue: JobQueue
    ) -> None:
        seen: list[dict] = []

        async def handler(job: Job) -> dict:
            seen.append(job.payload)
            return {"ok": True}

        worker.register_handler("greet", handler)
        job_id = await queue.enqueue("greet", {"name": "bob"})

        assert await worker.run_once() == 1

        job = await queue.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"ok": True}
        assert seen == [{"name": "bob"}]

    @pytest.mark.asyncio
    async def test_failing_handler_retries_until_dead_letter(
        self, worker: JobWorker, queue: JobQueue
    ) -> None:
        async def handler(job: Job) -> None:
            raise RuntimeError("provider down")

        worker.register_handler("greet", handler)
        job_id = await queue.enqueue("greet", max_retries=1)

        await worker.run_once()
        job = await queue.get(job_id)
        assert job.status == JobStatus.DEAD_LETTER
        assert job.retries == 1
        assert job.last_error == "RuntimeError: provider down"

    @pytest.mark.asyncio
    async def test_permanent_failure_dead_letters(
        self, worker: JobWorker, queue: JobQueue
    ) -> None:
        async def handler(job: Job) -> None:
            raise PermanentFailureError("payload is garbage", job_id=job.id)

        worker.register_handler("greet", handler)
        job_id = await queue.enqueue("greet")

        await worker.run_once()

        job = await queue.get(job_id)
        assert job.status == JobStatus.DEAD_LETTER
        assert job.retries == 0
        assert job.last_error == "payload is garbage"

    @pytest.mark.asyncio
    async def test_handler_timeout(self, worker: JobWorker, queue: JobQueue) -> None:
        async def handler(job: Job) -> None:
            await asyncio.sleep(5)

        worker.register_handler("slow", handler)
        job_id = await queue.enqueue("slow", max_retries=0)

        await worker.run_once()

        job = await queue.get(job_id)
        assert job.status == JobStatus.DEAD_LETTER
        assert "timed out" in job.last_error

    @pytest.mark.asyncio
    async def test_missing_handler_fails_attempt(
        self, worker: JobWorker, queue: JobQueue
    ) -> None:
        job_id = await queue.enqueue("unknown", max_retries=0)

        await worker.run_once()

        job = await queue.get(job_id)
        assert job.status == JobStatus.DEAD_LETTER
        assert job.last_error == "No handler registered for unknown"

    @pytest.mark.asyncio
    async def test_run_once_respects_batch_size(
        self, worker: JobWorker, queue: JobQueue
    ) -> None:
        async def handler(job: Job) -> None:
            return None

        worker.register_handler("greet", handler)
        for _ in range(5):
            await queue.enqueue("greet")

        assert await worker.run_once() == 3
        assert await worker.run_once() == 2
        assert await worker.run_once() == 0

    @pytest.mark.asyncio
    async def test_start_and_stop(self, queue: JobQueue) -> None:
        worker = JobWorker(queue, poll_interval_seconds=0.01)
        done = asyncio.Event()

        async def handler(job: Job) -> None:
            done.set()

        worker.register_handler("greet", handler)
        await queue.enqueue("greet")

        await worker.start()
        await asyncio.wait_for(done.wait(), timeout=2)
        await worker.stop()

        assert worker.worker_id
        assert (await queue.stats()).by_status == {"completed": 1}


class TestPeriodicScheduler:
    def test_from_config_skips_disabled_entries(self, queue: JobQueue, clock: FakeClock) -> None:
        schedule = ScheduleConfig(quota_monthly_reset_cron="", job_cleanup_cron="")

        scheduler = PeriodicScheduler.from_config(queue, schedule, clock)

        assert [entry.name for entry in scheduler.entries] == [
            "idempotency_sweep",
            "rate_limit_sweep",
            "quota_reset-hourly",
            "quota_reset-daily",
        ]

    def test_invalid_cron_is_rejected(self, queue: JobQueue, clock: FakeClock) -> None:
        scheduler = PeriodicScheduler(queue, clock=clock)

        with pytest.raises(ValidationError):
            scheduler.add(JobType.RATE_LIMIT_SWEEP, "every hour")

    def test_schedule_config_rejects_invalid_cron(self) -> None:
        with pytest.raises(PydanticValidationError):
            ScheduleConfig(quota_daily_reset_cron="61 * * * *")

    @pytest.mark.asyncio
    async def test_first_tick_only_computes_next_run(
        self, queue: JobQueue, clock: FakeClock
    ) -> None:
        scheduler = PeriodicScheduler(queue, clock=clock)
        scheduler.add(JobType.RATE_LIMIT_SWEEP, "5 * * * *")

        assert await scheduler.tick() == []
        assert scheduler.next_run("rate_limit_sweep") == datetime(2026, 1, 15, 10, 5, tzinfo=UTC)
        assert (await queue.stats()).total == 0

    @pytest.mark.asyncio
    async def test_tick_enqueues_once_per_fire_time(
        self, queue: JobQueue, clock: FakeClock
    ) -> None:
        scheduler = PeriodicScheduler(queue, clock=clock)
        scheduler.add(JobType.RATE_LIMIT_SWEEP, "5 * * * *")
        await scheduler.tick()

        clock.set_time(datetime(2026, 1, 15, 10, 5, tzinfo=UTC))
        first = await scheduler.tick()
        clock.advance(seconds=60)
        second = await scheduler.tick()
        clock.set_time(datetime(2026, 1, 15, 11, 5, tzinfo=UTC))
        third = await scheduler.tick()

        assert len(first) == 1
        assert second == []
        assert len(third) == 1
        assert first != third
        assert (await queue.stats()).total == 2

    @pytest.mark.asyncio
    async def test_monthly_entry_fires_on_calendar_boundary(
        self, queue: JobQueue, clock: FakeClock
    ) -> None:
        scheduler = PeriodicScheduler(queue, clock=clock)
        scheduler.add(JobType.QUOTA_RESET, "0 0 1 * *", {"period": "monthly"})
        await scheduler.tick()

        clock.set_time(datetime(2026, 1, 31, 23, 59, tzinfo=UTC))
        early = await scheduler.tick()
        clock.set_time(datetime(2026, 2, 1, tzinfo=UTC))
        due = await scheduler.tick()

        boundary = int(datetime(2026, 2, 1, tzinfo=UTC).timestamp())
        assert early == []
        assert due == [f"scheduled:quota_reset-monthly:{boundary}"]
        assert scheduler.next_run("quota_reset-monthly") == datetime(2026, 3, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_missed_fire_times_collapse_into_one_run(
        self, queue: JobQueue, clock: FakeClock
    ) -> None:
        scheduler = PeriodicScheduler(queue, clock=clock)
        scheduler.add(JobType.IDEMPOTENCY_SWEEP, "0 * * * *")
        await scheduler.tick()

        clock.advance(seconds=5 * 3600 + 30)
        enqueued = await scheduler.tick()

        assert len(enqueued) == 1
        assert scheduler.next_run("idempotency_sweep") == datetime(2026, 1, 15, 16, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_two_schedulers_share_fire_times(
        self, queue: JobQueue, clock: FakeClock
    ) -> None:
        schedulers = [PeriodicScheduler(queue, clock=clock) for _ in range(2)]
        for scheduler in schedulers:
            scheduler.add(JobType.QUOTA_RESET, "0 0 * * *", {"period": "daily"})
            await scheduler.tick()

        clock.set_time(datetime(2026, 1, 16, 0, 1, tzinfo=UTC))
        ids = [await scheduler.tick() for scheduler in schedulers]

        assert ids[0] == ids[1]
        assert ids[0][0].startswith("scheduled:quota_reset-daily:")
        assert (await queue.stats()).total == 1
