"""DocumentStore abstract interface.

The control plane depends on this contract rather than a specific store
product: conditional create, version-checked replace, delete, and
equality-filter queries over named collections.
"""

from abc import ABC, abstractmethod
from typing import Any

from kudos.storage.models import Document


class DocumentExistsError(Exception):
    """Raised by a conditional create when the id is already taken."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"Document {collection}/{doc_id} already exists")
        self.collection = collection
        self.doc_id = doc_id


class DocumentNotFoundError(Exception):
    """Raised when replacing or deleting a document that does not exist."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"Document {collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class DocumentStore(ABC):
    """Abstract interface for document storage.

    Expired documents (past their TTL) behave as if absent for every
    operation. Backend failures surface as StoreUnavailableError.
    """

    @abstractmethod
    async def create(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        ttl_seconds: float | None = None,
    ) -> Document:
        """Create a document only if the id is free.

        Args:
            collection: Collection name
            doc_id: Document identifier
            data: JSON-serializable payload
            ttl_seconds: Optional lifetime after which the document expires

        Returns:
            The stored document at version 1

        Raises:
            DocumentExistsError: If a live document already has this id
        """
        pass

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Get a document by id, or None if absent or expired."""
        pass

    @abstractmethod
    async def replace(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        expected_version: int,
        ttl_seconds: float | None = None,
    ) -> Document:
        """Replace a document's payload if its version still matches.

        Args:
            collection: Collection name
            doc_id: Document identifier
            data: New payload
            expected_version: Version the caller read
            ttl_seconds: New lifetime; None keeps the current expiry

        Returns:
            The stored document with version incremented

        Raises:
            DocumentNotFoundError: If the document does not exist
            ConcurrencyConflictError: If the version no longer matches
        """
        pass

    @abstractmethod
    async def delete(
        self,
        collection: str,
        doc_id: str,
        expected_version: int | None = None,
    ) -> bool:
        """Delete a document.

        Returns:
            True if a document was deleted, False if none existed

        Raises:
            ConcurrencyConflictError: If expected_version is given and stale
        """
        pass

    @abstractmethod
    async def find(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Find live documents whose top-level fields equal all filters."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backend is reachable."""
        pass


def matches(data: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """Equality-filter predicate shared by the backends."""
    if not filters:
        return True
    return all(data.get(field) == value for field, value in filters.items())
