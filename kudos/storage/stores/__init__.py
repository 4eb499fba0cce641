"""Document store backends."""

from kudos.storage.stores.inmemory import InMemoryDocumentStore
from kudos.storage.stores.redis import RedisDocumentStore

__all__ = [
    "InMemoryDocumentStore",
    "RedisDocumentStore",
]
