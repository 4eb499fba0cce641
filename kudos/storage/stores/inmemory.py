"""In-memory implementation of DocumentStore."""

import asyncio
import copy
from datetime import datetime, timedelta
from typing import Any

from kudos.clock import Clock, SystemClock
from kudos.errors import ConcurrencyConflictError
from kudos.storage.models import Document
from kudos.storage.store import (
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentStore,
    matches,
)


class InMemoryDocumentStore(DocumentStore):
    """In-memory implementation of DocumentStore for testing and development.

    A single asyncio.Lock makes every operation atomic within the event
    loop, which gives the same conditional-write guarantees as the Redis
    backend. Payloads are deep-copied in and out so callers never share
    mutable state with the store.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._documents: dict[tuple[str, str], Document] = {}
        self._lock = asyncio.Lock()

    def _expiry(self, ttl_seconds: float | None) -> datetime | None:
        if ttl_seconds is None:
            return None
        return self._clock.now() + timedelta(seconds=ttl_seconds)

    def _live(self, key: tuple[str, str]) -> Document | None:
        document = self._documents.get(key)
        if document is None:
            return None
        if document.expires_at is not None and document.expires_at <= self._clock.now():
            del self._documents[key]
            return None
        return document

    async def create(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        ttl_seconds: float | None = None,
    ) -> Document:
        async with self._lock:
            key = (collection, doc_id)
            if self._live(key) is not None:
                raise DocumentExistsError(collection, doc_id)
            document = Document(
                id=doc_id,
                collection=collection,
                data=copy.deepcopy(data),
                version=1,
                expires_at=self._expiry(ttl_seconds),
            )
            self._documents[key] = document
            return document.model_copy(deep=True)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        async with self._lock:
            document = self._live((collection, doc_id))
            return document.model_copy(deep=True) if document else None

    async def replace(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        expected_version: int,
        ttl_seconds: float | None = None,
    ) -> Document:
        async with self._lock:
            key = (collection, doc_id)
            current = self._live(key)
            if current is None:
                raise DocumentNotFoundError(collection, doc_id)
            if current.version != expected_version:
                raise ConcurrencyConflictError(
                    f"Version mismatch on {collection}/{doc_id}: "
                    f"expected {expected_version}, found {current.version}"
                )
            document = Document(
                id=doc_id,
                collection=collection,
                data=copy.deepcopy(data),
                version=current.version + 1,
                expires_at=(
                    self._expiry(ttl_seconds) if ttl_seconds is not None else current.expires_at
                ),
            )
            self._documents[key] = document
            return document.model_copy(deep=True)

    async def delete(
        self,
        collection: str,
        doc_id: str,
        expected_version: int | None = None,
    ) -> bool:
        async with self._lock:
            key = (collection, doc_id)
            current = self._live(key)
            if current is None:
                return False
            if expected_version is not None and current.version != expected_version:
                raise ConcurrencyConflictError(
                    f"Version mismatch deleting {collection}/{doc_id}"
                )
            del self._documents[key]
            return True

    async def find(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        async with self._lock:
            results = []
            for key in list(self._documents):
                if key[0] != collection:
                    continue
                document = self._live(key)
                if document is None or not matches(document.data, filters):
                    continue
                results.append(document.model_copy(deep=True))
                if limit is not None and len(results) >= limit:
                    break
            return results

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        """Remove all documents (test utility)."""
        self._documents.clear()
