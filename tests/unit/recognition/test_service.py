"""Tests for the create-recognition workflow."""

import asyncio
from typing import Any

import pytest

from kudos.abuse.detector import FLAG_COLLECTION
from kudos.audit.models import AuditEventCode
from kudos.bootstrap import ControlPlane, build_control_plane
from kudos.config.settings import Settings
from kudos.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    QuotaExceededError,
    RateLimitExceededError,
    RecognitionBlockedError,
    StoreUnavailableError,
    ValidationError,
)
from kudos.jobs.models import JobStatus, JobType
from kudos.recognition.models import (
    RECOGNITION_COLLECTION,
    CreateRecognitionCommand,
    RecognitionStatus,
)
from kudos.storage.stores.inmemory import InMemoryDocumentStore
from tests.helpers.fake_clock import FakeClock
from tests.helpers.stores import YieldingStore

HEAVY_REASON = (
    "She helped the onboarding squad untangle the billing migration and improved "
    "the runbook so that every new hire can follow it without asking for help."
)

REASONS = [
    "Paired with support to untangle a nasty billing escalation",
    "Rewrote the flaky integration suite so CI stays green",
    "Mentored two interns through their first production deploy",
    "Organized the offsite logistics for forty people",
]


def command(**overrides: Any) -> CreateRecognitionCommand:
    values: dict[str, Any] = {
        "giver_id": "alice",
        "organization_id": "org-1",
        "recipient_id": "bob",
        "reason": REASONS[0],
        "tags": ["teamwork"],
    }
    values.update(overrides)
    return CreateRecognitionCommand(**values)


def plane_with(
    clock: FakeClock, store: InMemoryDocumentStore, **settings: Any
) -> ControlPlane:
    return build_control_plane(
        Settings(jobs={"run_worker": False}, **settings), clock=clock, store=store
    )


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_and_persists(
        self, control_plane: ControlPlane, store: InMemoryDocumentStore
    ) -> None:
        result = await control_plane.recognitions.create_recognition(command())

        recognition = result.recognition
        assert recognition.weight == 1.0
        assert recognition.original_weight == 1.0
        assert recognition.status == RecognitionStatus.PENDING
        assert result.abuse.flagged is False
        assert result.replayed is False
        assert await store.get(RECOGNITION_COLLECTION, recognition.id) is not None

    @pytest.mark.asyncio
    async def test_consumes_quota_and_enqueues_notification(
        self, control_plane: ControlPlane
    ) -> None:
        result = await control_plane.recognitions.create_recognition(command())

        record = await control_plane.quotas.get_record("org-1", "recognitions_per_day")
        jobs = await control_plane.jobs.list_jobs(JobStatus.PENDING)
        assert record.used == 1
        assert [job.job_type for job in jobs] == [JobType.NOTIFY_RECIPIENT.value]
        assert result.jobs == [jobs[0].id]
        assert jobs[0].payload["recipient_id"] == "bob"

    @pytest.mark.asyncio
    async def test_heavy_recognition_requests_verification(
        self, control_plane: ControlPlane
    ) -> None:
        result = await control_plane.recognitions.create_recognition(
            command(reason=HEAVY_REASON, tags=["teamwork", "ops"], evidence_ids=["doc-1"])
        )

        jobs = await control_plane.jobs.list_jobs()
        assert result.recognition.weight == 2.0
        assert sorted(job.job_type for job in jobs) == [
            JobType.MANAGER_VERIFICATION.value,
            JobType.NOTIFY_RECIPIENT.value,
        ]

    @pytest.mark.asyncio
    async def test_trims_reason_and_tags(self, control_plane: ControlPlane) -> None:
        result = await control_plane.recognitions.create_recognition(
            command(reason=f"   {REASONS[1]}  ", tags=[" ops "])
        )

        assert result.recognition.reason == REASONS[1]
        assert result.recognition.tags == ["ops"]

    @pytest.mark.asyncio
    async def test_audits_creation(self, control_plane: ControlPlane) -> None:
        await control_plane.recognitions.create_recognition(command())

        events = await control_plane.audit.list_events(AuditEventCode.RECOGNITION_CREATED)
        assert len(events) == 1
        assert events[0].actor_id != "alice"


class TestValidation:
    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"recipient_id": "alice"}, "recipient_id"),
            ({"recipient_id": "  "}, "recipient_id"),
            ({"organization_id": ""}, "organization_id"),
            ({"reason": "too short"}, "reason"),
            ({"reason": "x" * 2001}, "reason"),
            ({"tags": []}, "tags"),
            ({"tags": ["a", "b", "c", "d"]}, "tags"),
            ({"tags": ["ok", " "]}, "tags"),
            ({"evidence_ids": [f"e{i}" for i in range(11)]}, "evidence_ids"),
        ],
    )
    @pytest.mark.asyncio
    async def test_rejects_bad_input(
        self, control_plane: ControlPlane, overrides: dict[str, Any], field: str
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await control_plane.recognitions.create_recognition(command(**overrides))

        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_failed_request_releases_token(
        self, control_plane: ControlPlane, store: InMemoryDocumentStore
    ) -> None:
        with pytest.raises(ValidationError):
            await control_plane.recognitions.create_recognition(
                command(reason="short", client_token="tok-1")
            )

        result = await control_plane.recognitions.create_recognition(
            command(client_token="tok-1")
        )

        assert result.replayed is False
        assert len(await store.find(RECOGNITION_COLLECTION)) == 1


class TestAdmission:
    @pytest.mark.asyncio
    async def test_rate_limit(self, clock: FakeClock, store: InMemoryDocumentStore) -> None:
        plane = plane_with(
            clock,
            store,
            rate_limits={
                "limits": {"recognition_daily": {"max_attempts": 2, "window_seconds": 86400}}
            },
        )
        for i in range(2):
            await plane.recognitions.create_recognition(
                command(recipient_id=f"peer-{i}", reason=REASONS[i])
            )

        with pytest.raises(RateLimitExceededError) as exc_info:
            await plane.recognitions.create_recognition(
                command(recipient_id="peer-9", reason=REASONS[2])
            )

        assert exc_info.value.retry_after == 14 * 3600
        assert len(await store.find(RECOGNITION_COLLECTION)) == 2

    @pytest.mark.asyncio
    async def test_quota(self, clock: FakeClock, store: InMemoryDocumentStore) -> None:
        plane = plane_with(
            clock,
            store,
            quotas={
                "defaults": {"recognitions_per_day": {"ceiling": 1, "period": "daily"}},
                "recognition_actions": ["recognitions_per_day"],
            },
        )
        await plane.recognitions.create_recognition(command())

        with pytest.raises(QuotaExceededError):
            await plane.recognitions.create_recognition(
                command(recipient_id="carol", reason=REASONS[1])
            )

    @pytest.mark.asyncio
    async def test_concurrent_creates_never_exceed_quota(
        self, clock: FakeClock, store: InMemoryDocumentStore
    ) -> None:
        racing_store = YieldingStore(store)
        plane = build_control_plane(
            Settings(
                jobs={"run_worker": False},
                quotas={
                    "defaults": {"recognitions_per_day": {"ceiling": 1, "period": "daily"}},
                    "recognition_actions": ["recognitions_per_day"],
                },
            ),
            clock=clock,
            store=racing_store,
        )

        outcomes = await asyncio.gather(
            *(
                plane.recognitions.create_recognition(
                    command(giver_id=f"giver-{i}", recipient_id=f"peer-{i}", reason=REASONS[i])
                )
                for i in range(3)
            ),
            return_exceptions=True,
        )

        created = [o for o in outcomes if not isinstance(o, BaseException)]
        rejected = [o for o in outcomes if isinstance(o, QuotaExceededError)]
        assert len(created) == 1
        assert len(rejected) == 2
        assert len(await store.find(RECOGNITION_COLLECTION)) == 1
        record = await plane.quotas.get_record("org-1", "recognitions_per_day")
        assert record.used == 1

    @pytest.mark.asyncio
    async def test_quota_rejection_writes_nothing_and_releases_token(
        self, clock: FakeClock, store: InMemoryDocumentStore
    ) -> None:
        plane = plane_with(
            clock,
            store,
            quotas={
                "defaults": {"recognitions_per_day": {"ceiling": 1, "period": "daily"}},
                "recognition_actions": ["recognitions_per_day"],
            },
        )
        await plane.quotas.consume("org-1", "recognitions_per_day")

        with pytest.raises(QuotaExceededError):
            await plane.recognitions.create_recognition(command(client_token="tok-q"))
        await plane.quotas.reset_quota("org-1", "recognitions_per_day")
        result = await plane.recognitions.create_recognition(command(client_token="tok-q"))

        assert result.replayed is False
        assert len(await store.find(RECOGNITION_COLLECTION)) == 1

    @pytest.mark.asyncio
    async def test_reciprocity_blocks_fourth(
        self, control_plane: ControlPlane, store: InMemoryDocumentStore
    ) -> None:
        for reason in REASONS[:3]:
            await control_plane.recognitions.create_recognition(command(reason=reason))

        with pytest.raises(RecognitionBlockedError) as exc_info:
            await control_plane.recognitions.create_recognition(command(reason=REASONS[3]))

        assert "RECIPROCITY_MEDIUM" in exc_info.value.reason_codes
        assert exc_info.value.retryable is False
        assert len(await store.find(RECOGNITION_COLLECTION)) == 3
        assert len(await store.find(FLAG_COLLECTION)) == 1
        blocked = await control_plane.audit.list_events(AuditEventCode.RECOGNITION_BLOCKED)
        assert len(blocked) == 1

    @pytest.mark.asyncio
    async def test_content_flag_reduces_weight(
        self, control_plane: ControlPlane, store: InMemoryDocumentStore
    ) -> None:
        result = await control_plane.recognitions.create_recognition(
            command(reason="Thanks for everything, truly")
        )

        assert result.abuse.flagged is True
        assert result.abuse.reason_codes == ["CONTENT_LOW"]
        assert result.recognition.weight == 0.9
        assert result.recognition.original_weight == 1.0
        assert result.recognition.abuse_flag_count == 1
        assert len(await store.find(FLAG_COLLECTION)) == 1


class TestWriteFailures:
    @pytest.mark.asyncio
    async def test_retry_replays_instead_of_creating_again(
        self,
        control_plane: ControlPlane,
        store: InMemoryDocumentStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def broken_enqueue(*args: Any, **kwargs: Any) -> str:
            raise RuntimeError("queue serializer crashed")

        monkeypatch.setattr(control_plane.jobs, "enqueue", broken_enqueue)

        with pytest.raises(RuntimeError):
            await control_plane.recognitions.create_recognition(command(client_token="tok-w"))
        retried = await control_plane.recognitions.create_recognition(
            command(client_token="tok-w")
        )

        stored = await store.find(RECOGNITION_COLLECTION)
        assert len(stored) == 1
        assert retried.replayed is True
        assert retried.recognition.id == stored[0].id
        assert retried.jobs == []
        record = await control_plane.quotas.get_record("org-1", "recognitions_per_day")
        assert record.used == 1

    @pytest.mark.asyncio
    async def test_quota_conflict_before_write_allows_one_retry(
        self,
        control_plane: ControlPlane,
        store: InMemoryDocumentStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        real_consume = control_plane.quotas.consume
        calls = {"count": 0}

        async def contended_consume(*args: Any, **kwargs: Any) -> Any:
            calls["count"] += 1
            if calls["count"] == 1:
                raise ConcurrencyConflictError("quota record kept changing")
            return await real_consume(*args, **kwargs)

        monkeypatch.setattr(control_plane.quotas, "consume", contended_consume)

        with pytest.raises(ConcurrencyConflictError):
            await control_plane.recognitions.create_recognition(command(client_token="tok-c"))
        assert await store.find(RECOGNITION_COLLECTION) == []
        retried = await control_plane.recognitions.create_recognition(
            command(client_token="tok-c")
        )
        replayed = await control_plane.recognitions.create_recognition(
            command(client_token="tok-c")
        )

        assert retried.replayed is False
        assert replayed.replayed is True
        assert len(await store.find(RECOGNITION_COLLECTION)) == 1

    @pytest.mark.asyncio
    async def test_failed_write_releases_token(
        self,
        control_plane: ControlPlane,
        store: InMemoryDocumentStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        real_create = store.create
        calls = {"recognitions": 0}

        async def failing_create(collection: str, *args: Any, **kwargs: Any) -> Any:
            if collection == RECOGNITION_COLLECTION and not calls["recognitions"]:
                calls["recognitions"] += 1
                raise StoreUnavailableError("primary down")
            return await real_create(collection, *args, **kwargs)

        monkeypatch.setattr(store, "create", failing_create)

        with pytest.raises(StoreUnavailableError):
            await control_plane.recognitions.create_recognition(command(client_token="tok-s"))
        result = await control_plane.recognitions.create_recognition(
            command(client_token="tok-s")
        )

        assert result.replayed is False
        assert len(await store.find(RECOGNITION_COLLECTION)) == 1


class TestVerification:
    @pytest.mark.asyncio
    async def test_manager_approves(self, control_plane: ControlPlane) -> None:
        created = await control_plane.recognitions.create_recognition(command())

        verified = await control_plane.recognitions.verify(created.recognition.id, "manager-1", True)

        assert verified.status == RecognitionStatus.VERIFIED
        with pytest.raises(InvalidTransitionError):
            await control_plane.recognitions.verify(created.recognition.id, "manager-1", False)

    @pytest.mark.asyncio
    async def test_giver_cannot_verify(self, control_plane: ControlPlane) -> None:
        created = await control_plane.recognitions.create_recognition(command())

        with pytest.raises(ValidationError):
            await control_plane.recognitions.verify(created.recognition.id, "alice", True)

    @pytest.mark.asyncio
    async def test_unknown_recognition(self, control_plane: ControlPlane) -> None:
        with pytest.raises(NotFoundError):
            await control_plane.recognitions.get_recognition("missing")
        with pytest.raises(NotFoundError):
            await control_plane.recognitions.verify("missing", "manager-1", True)
