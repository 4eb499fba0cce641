"""Audit trail."""

from kudos.audit.models import AuditEvent, AuditEventCode
from kudos.audit.sink import AUDIT_COLLECTION, AuditSink, hash_identifier

__all__ = [
    "AUDIT_COLLECTION",
    "AuditEvent",
    "AuditEventCode",
    "AuditSink",
    "hash_identifier",
]
