"""Document store abstraction.

Cards, sessions and payments are kept as JSON documents grouped in
collections. The store only promises per-document atomic reads and writes;
anything spanning documents (for example the default-card flip) is a
sequence of independent writes.
"""

import copy
import secrets
import string
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

_ID_ALPHABET = string.ascii_letters + string.digits


class DocumentNotFound(Exception):
    """Raised when updating a document that does not exist."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class DocumentStore(ABC):
    """Async key/value store of JSON documents."""

    def new_id(self, collection: str) -> str:
        """Return a fresh 20-character document id."""
        return "".join(secrets.choice(_ID_ALPHABET) for _ in range(20))

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        """Create or replace a document."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """
        Merge fields into an existing document.

        Raises:
            DocumentNotFound: If the document does not exist
        """

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return documents whose top-level fields equal every filter value."""

    @abstractmethod
    async def batch_update(
        self, collection: str, updates: Mapping[str, Mapping[str, Any]]
    ) -> None:
        """Apply several updates; each document is written atomically on its own."""

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local store used for development and tests.

    Documents are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        self._collection(collection)[doc_id] = copy.deepcopy(dict(data))

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise DocumentNotFound(collection, doc_id)
        docs[doc_id].update(copy.deepcopy(dict(fields)))

    async def delete(self, collection: str, doc_id: str) -> None:
        self._collection(collection).pop(doc_id, None)

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        filters = filters or {}
        results = [
            copy.deepcopy(doc)
            for doc in self._collection(collection).values()
            if all(doc.get(key) == value for key, value in filters.items())
        ]
        return results[:limit] if limit is not None else results

    async def batch_update(
        self, collection: str, updates: Mapping[str, Mapping[str, Any]]
    ) -> None:
        for doc_id, fields in updates.items():
            await self.update(collection, doc_id, fields)
        logger.debug("batch_update_applied", collection=collection, count=len(updates))
