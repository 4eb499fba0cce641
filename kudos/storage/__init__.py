"""Document storage abstraction and backends."""

from kudos.storage.atomic import compare_and_set
from kudos.storage.models import Document
from kudos.storage.store import DocumentExistsError, DocumentNotFoundError, DocumentStore
from kudos.storage.stores import InMemoryDocumentStore, RedisDocumentStore

__all__ = [
    "Document",
    "DocumentExistsError",
    "DocumentNotFoundError",
    "DocumentStore",
    "InMemoryDocumentStore",
    "RedisDocumentStore",
    "compare_and_set",
]
