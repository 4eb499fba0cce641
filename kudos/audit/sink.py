"""Audit sink that writes hashed events to the document store."""

import hashlib
from typing import Any

from kudos.audit.models import AuditEvent, AuditEventCode
from kudos.clock import Clock, SystemClock
from kudos.observability.logging import get_logger
from kudos.observability.metrics import AUDIT_EMIT_FAILURES
from kudos.storage.store import DocumentStore

logger = get_logger(__name__)

AUDIT_COLLECTION = "audit_events"


def hash_identifier(value: str | None) -> str | None:
    """Return the first 16 hex chars of the SHA-256 of an identifier."""
    if not value:
        return None
    return hashlib.sha256(value.encode()).hexdigest()[:16]


class AuditSink:
    """Fire-and-forget audit trail.

    emit() never raises: a failed write is logged and counted so the
    operation being audited is never affected by the audit trail.
    """

    def __init__(self, store: DocumentStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()

    async def emit(
        self,
        event_code: AuditEventCode | str,
        actor_id: str | None = None,
        target_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """Record an audit event.

        Returns:
            The stored event, or None if the write failed
        """
        code = event_code.value if isinstance(event_code, AuditEventCode) else event_code
        event = AuditEvent(
            event_code=code,
            actor_id_hash=hash_identifier(actor_id),
            target_id_hash=hash_identifier(target_id),
            metadata=metadata or {},
            timestamp=self._clock.now(),
        )
        try:
            await self._store.create(
                AUDIT_COLLECTION, event.id, event.model_dump(mode="json")
            )
        except Exception as e:
            AUDIT_EMIT_FAILURES.labels(event_code=code).inc()
            logger.warning(
                "audit_emit_failed",
                event_code=code,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        logger.debug("audit_event_emitted", event_code=code, event_id=event.id)
        return event

    async def list_events(
        self,
        event_code: AuditEventCode | str | None = None,
        limit: int | None = None,
    ) -> list[AuditEvent]:
        """Read back audit events, newest first."""
        filters = None
        if event_code is not None:
            code = event_code.value if isinstance(event_code, AuditEventCode) else event_code
            filters = {"event_code": code}
        documents = await self._store.find(AUDIT_COLLECTION, filters)
        events = sorted(
            (AuditEvent.model_validate(doc.data) for doc in documents),
            key=lambda e: e.timestamp,
            reverse=True,
        )
        return events[:limit] if limit is not None else events
