"""End-to-end recognition flows across admission, storage, and jobs."""

import asyncio
from datetime import UTC, datetime

import pytest

from kudos.bootstrap import build_control_plane
from kudos.config.settings import Settings
from kudos.errors import RequestInProgressError
from kudos.jobs.models import JobStatus, JobType
from kudos.recognition.models import RECOGNITION_COLLECTION, CreateRecognitionCommand
from kudos.storage.stores.inmemory import InMemoryDocumentStore
from tests.helpers.fake_clock import FakeClock
from tests.helpers.stores import YieldingStore

pytestmark = pytest.mark.integration

REASON = "Paired with support to untangle a nasty billing escalation"


def command(token: str | None = "token-1") -> CreateRecognitionCommand:
    return CreateRecognitionCommand(
        giver_id="alice",
        organization_id="org-1",
        recipient_id="bob",
        reason=REASON,
        tags=["teamwork"],
        client_token=token,
    )


@pytest.fixture
def counting_store(store: InMemoryDocumentStore) -> YieldingStore:
    return YieldingStore(store)


@pytest.fixture
def plane(settings: Settings, clock: FakeClock, counting_store: YieldingStore):  # type: ignore[no-untyped-def]
    return build_control_plane(settings, clock=clock, store=counting_store)


async def test_replay_writes_nothing(plane, counting_store: YieldingStore) -> None:  # type: ignore[no-untyped-def]
    first = await plane.recognitions.create_recognition(command())
    writes_after_first = counting_store.writes

    second = await plane.recognitions.create_recognition(command())

    assert second.replayed is True
    assert second.model_dump() == first.model_dump()
    assert counting_store.writes == writes_after_first
    assert len(await counting_store.find(RECOGNITION_COLLECTION)) == 1
    record = await plane.quotas.get_record("org-1", "recognitions_per_day")
    assert record.used == 1


async def test_concurrent_duplicates_create_once(plane, counting_store: YieldingStore) -> None:  # type: ignore[no-untyped-def]
    outcomes = await asyncio.gather(
        *(plane.recognitions.create_recognition(command()) for _ in range(3)),
        return_exceptions=True,
    )

    created = [o for o in outcomes if not isinstance(o, BaseException)]
    in_progress = [o for o in outcomes if isinstance(o, RequestInProgressError)]
    assert len(created) + len(in_progress) == 3
    assert len([o for o in created if not o.replayed]) == 1
    assert len(await counting_store.find(RECOGNITION_COLLECTION)) == 1


async def test_token_replay_expires(plane, clock: FakeClock) -> None:  # type: ignore[no-untyped-def]
    first = await plane.recognitions.create_recognition(command())

    clock.advance(seconds=86400 + 1)
    second = await plane.recognitions.create_recognition(command())

    assert second.replayed is False
    assert second.recognition.id != first.recognition.id


async def test_notification_job_runs_through_worker(plane) -> None:  # type: ignore[no-untyped-def]
    result = await plane.recognitions.create_recognition(command(token=None))

    processed = await plane.worker.run_once()

    job = await plane.jobs.get(result.jobs[0])
    assert processed == 1
    assert job.job_type == JobType.NOTIFY_RECIPIENT.value
    assert job.status == JobStatus.COMPLETED
    assert job.result == {"delivered": [], "failed": []}


async def test_scheduled_maintenance(plane, clock: FakeClock) -> None:  # type: ignore[no-untyped-def]
    await plane.rate_limiter.check("alice", "recognition_daily")
    await plane.scheduler.tick()
    clock.set_time(datetime(2026, 2, 1, 4, tzinfo=UTC))

    await plane.scheduler.tick()
    await plane.worker.run_once()

    stats = await plane.jobs.stats()
    assert stats.by_status == {"completed": 6}
    assert await plane.rate_limiter.sweep_expired() == 0


async def test_monthly_usage_survives_mid_month_maintenance(plane, clock: FakeClock) -> None:  # type: ignore[no-untyped-def]
    await plane.recognitions.create_recognition(command(token=None))
    await plane.scheduler.tick()

    for day in range(1, 11):
        clock.set_time(datetime(2026, 1, 15 + day, 4, tzinfo=UTC))
        await plane.scheduler.tick()
        await plane.worker.run_once()
    await plane.jobs.enqueue(JobType.QUOTA_RESET.value, {"period": "monthly"})
    await plane.worker.run_once()

    monthly = await plane.quotas.get_record("org-1", "recognitions_per_month")
    assert monthly.used == 1
    assert plane.scheduler.next_run("quota_reset-monthly") == datetime(2026, 2, 1, tzinfo=UTC)
