"""Tests for InMemoryDocumentStore."""

import pytest

from kudos.errors import ConcurrencyConflictError
from kudos.storage.store import DocumentExistsError, DocumentNotFoundError
from kudos.storage.stores.inmemory import InMemoryDocumentStore
from tests.helpers.fake_clock import FakeClock


class TestConditionalWrites:
    """Create-if-absent and version-checked replace."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store: InMemoryDocumentStore) -> None:
        created = await store.create("things", "a", {"n": 1})

        assert created.version == 1
        fetched = await store.get("things", "a")
        assert fetched is not None
        assert fetched.data == {"n": 1}

    @pytest.mark.asyncio
    async def test_create_twice_raises(self, store: InMemoryDocumentStore) -> None:
        await store.create("things", "a", {"n": 1})
        with pytest.raises(DocumentExistsError):
            await store.create("things", "a", {"n": 2})

    @pytest.mark.asyncio
    async def test_replace_increments_version(self, store: InMemoryDocumentStore) -> None:
        await store.create("things", "a", {"n": 1})

        replaced = await store.replace("things", "a", {"n": 2}, expected_version=1)

        assert replaced.version == 2
        assert (await store.get("things", "a")).data == {"n": 2}

    @pytest.mark.asyncio
    async def test_stale_replace_conflicts(self, store: InMemoryDocumentStore) -> None:
        await store.create("things", "a", {"n": 1})
        await store.replace("things", "a", {"n": 2}, expected_version=1)

        with pytest.raises(ConcurrencyConflictError):
            await store.replace("things", "a", {"n": 3}, expected_version=1)

    @pytest.mark.asyncio
    async def test_replace_missing_raises(self, store: InMemoryDocumentStore) -> None:
        with pytest.raises(DocumentNotFoundError):
            await store.replace("things", "missing", {}, expected_version=1)

    @pytest.mark.asyncio
    async def test_returned_data_is_a_copy(self, store: InMemoryDocumentStore) -> None:
        payload = {"items": [1]}
        await store.create("things", "a", payload)
        payload["items"].append(2)

        fetched = await store.get("things", "a")
        fetched.data["items"].append(3)

        assert (await store.get("things", "a")).data == {"items": [1]}


class TestDeleteAndFind:
    """Delete semantics and equality filters."""

    @pytest.mark.asyncio
    async def test_delete_with_stale_version_conflicts(
        self, store: InMemoryDocumentStore
    ) -> None:
        await store.create("things", "a", {"n": 1})
        await store.replace("things", "a", {"n": 2}, expected_version=1)

        with pytest.raises(ConcurrencyConflictError):
            await store.delete("things", "a", expected_version=1)
        assert await store.delete("things", "a", expected_version=2) is True
        assert await store.delete("things", "a") is False

    @pytest.mark.asyncio
    async def test_find_filters_by_collection_and_fields(
        self, store: InMemoryDocumentStore
    ) -> None:
        await store.create("jobs", "1", {"status": "pending", "type": "x"})
        await store.create("jobs", "2", {"status": "completed", "type": "x"})
        await store.create("other", "3", {"status": "pending"})

        pending = await store.find("jobs", {"status": "pending"})
        everything = await store.find("jobs")
        limited = await store.find("jobs", limit=1)

        assert [doc.id for doc in pending] == ["1"]
        assert sorted(doc.id for doc in everything) == ["1", "2"]
        assert len(limited) == 1


class TestExpiry:
    """TTL handling driven by the injected clock."""

    @pytest.mark.asyncio
    async def test_expired_documents_are_absent(
        self, store: InMemoryDocumentStore, clock: FakeClock
    ) -> None:
        await store.create("things", "a", {"n": 1}, ttl_seconds=60)

        clock.advance(seconds=59)
        assert await store.get("things", "a") is not None

        clock.advance(seconds=1)
        assert await store.get("things", "a") is None
        assert await store.find("things") == []
        await store.create("things", "a", {"n": 2})

    @pytest.mark.asyncio
    async def test_replace_keeps_expiry_unless_given(
        self, store: InMemoryDocumentStore, clock: FakeClock
    ) -> None:
        created = await store.create("things", "a", {"n": 1}, ttl_seconds=60)

        kept = await store.replace("things", "a", {"n": 2}, expected_version=1)
        renewed = await store.replace(
            "things", "a", {"n": 3}, expected_version=2, ttl_seconds=120
        )

        assert kept.expires_at == created.expires_at
        assert (renewed.expires_at - clock.now()).total_seconds() == 120
