"""Bounded compare-and-set loop over a DocumentStore."""

import copy
from collections.abc import Callable
from typing import Any

from kudos.errors import ConcurrencyConflictError
from kudos.observability.logging import get_logger
from kudos.observability.metrics import CAS_CONFLICTS
from kudos.storage.models import Document
from kudos.storage.store import DocumentExistsError, DocumentNotFoundError, DocumentStore

logger = get_logger(__name__)

Mutator = Callable[[dict[str, Any] | None], dict[str, Any] | None]


async def compare_and_set(
    store: DocumentStore,
    collection: str,
    doc_id: str,
    mutate: Mutator,
    *,
    ttl_seconds: float | None = None,
    max_attempts: int = 8,
) -> Document | None:
    """Read-modify-write a document under optimistic concurrency.

    `mutate` receives a copy of the current payload (None if absent) and
    returns the new payload, or None to leave the document untouched. It
    may raise to abort; the exception propagates unchanged. A lost race
    re-reads and calls `mutate` again, so it must be free of side effects
    other than recording its decision.

    Args:
        store: Document store
        collection: Collection name
        doc_id: Document identifier
        mutate: Pure function from current payload to new payload
        ttl_seconds: Lifetime for the written document
        max_attempts: Attempts before giving up

    Returns:
        The written document, or the unchanged current document when
        `mutate` returned None

    Raises:
        ConcurrencyConflictError: If every attempt lost a race
    """
    for attempt in range(1, max_attempts + 1):
        current = await store.get(collection, doc_id)
        new_data = mutate(copy.deepcopy(current.data) if current else None)
        if new_data is None:
            return current

        try:
            if current is None:
                return await store.create(collection, doc_id, new_data, ttl_seconds=ttl_seconds)
            return await store.replace(
                collection,
                doc_id,
                new_data,
                expected_version=current.version,
                ttl_seconds=ttl_seconds,
            )
        except (DocumentExistsError, DocumentNotFoundError, ConcurrencyConflictError):
            CAS_CONFLICTS.labels(collection=collection).inc()
            logger.debug(
                "cas_conflict",
                collection=collection,
                doc_id=doc_id,
                attempt=attempt,
            )

    logger.warning(
        "cas_attempts_exhausted",
        collection=collection,
        doc_id=doc_id,
        max_attempts=max_attempts,
    )
    raise ConcurrencyConflictError(
        f"Gave up updating {collection}/{doc_id} after {max_attempts} attempts"
    )
