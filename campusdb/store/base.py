"""
Base protocol and helpers for the document store abstraction.

This module defines the DocumentStore protocol that all backends must
implement, the filter matching rules they share, and the store errors.

Invariants:
    - Every operation touches at most one document atomically, except
      find/count which are plain reads
    - update_one and increment are atomic read-modify-write operations
    - Documents carry a storage-internal "_id" distinct from business ids
    - A scalar filter value matches an array field that contains it

How to change safely:
    - Protocol changes require updating all implementations
    - Do not add multi-document atomic operations; the consistency layer
      is written for stores that do not have them
"""

from __future__ import annotations

import copy
from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import StorageConfig

Document = dict[str, Any]
Filter = dict[str, Any]

ID_FIELD = "_id"


class StoreError(Exception):
    """Base exception for document store operations."""

    pass


class StoreConnectionError(StoreError):
    """Store is not connected or the connection failed."""

    pass


class DuplicateKeyError(StoreError):
    """A write would violate a unique index."""

    def __init__(self, collection: str, field: str, value: Any) -> None:
        super().__init__(f"Duplicate key in {collection}.{field}: {value!r}")
        self.collection = collection
        self.field = field
        self.value = value


def matches(document: Document, filter: Filter) -> bool:
    """Check whether a document satisfies an equality filter.

    Each filter entry must match. A list-valued document field matches a
    scalar filter value when the list contains it, and matches a list
    filter value only on exact equality.
    """
    for key, expected in filter.items():
        if key not in document:
            if expected is None:
                continue
            return False
        actual = document[key]
        if isinstance(actual, list) and not isinstance(expected, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


def apply_changes(document: Document, changes: Document) -> Document:
    """Return a copy of document with set-field changes applied."""
    if ID_FIELD in changes:
        raise StoreError("The _id field cannot be changed")
    updated = copy.deepcopy(document)
    updated.update(copy.deepcopy(changes))
    return updated


def sort_documents(documents: list[Document], sort: str | None) -> list[Document]:
    """Sort documents ascending by a field; documents lacking it go last."""
    if sort is None:
        return documents
    return sorted(
        documents,
        key=lambda d: (d.get(sort) is None, d.get(sort)),
    )


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    Atomicity contract:
        - Single-document writes are atomic
        - update_one with the expected version in the filter is a
          compare-and-swap
        - increment is an atomic upsert-increment-fetch
        - There is no transaction spanning documents

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> doc_id = await store.insert_one("students", {"studentId": 1})
        >>> await store.find_one("students", {"studentId": 1})
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            StoreConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by the backend."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...

    @abstractmethod
    async def create_unique_index(self, collection: str, field: str) -> None:
        """Enforce uniqueness of a field within a collection.

        Raises:
            DuplicateKeyError: If existing documents already collide
        """
        ...

    @abstractmethod
    async def insert_one(self, collection: str, document: Document) -> str:
        """Insert a document and return its storage id.

        Raises:
            DuplicateKeyError: If a unique index would be violated
        """
        ...

    @abstractmethod
    async def find_one(self, collection: str, filter: Filter) -> Document | None:
        """Return the first matching document, or None."""
        ...

    @abstractmethod
    async def find(
        self,
        collection: str,
        filter: Filter | None = None,
        sort: str | None = None,
    ) -> list[Document]:
        """Return all matching documents, optionally sorted ascending by a field."""
        ...

    @abstractmethod
    async def count(self, collection: str, filter: Filter | None = None) -> int:
        """Count matching documents."""
        ...

    @abstractmethod
    async def replace_one(self, collection: str, filter: Filter, document: Document) -> bool:
        """Replace the first matching document, keeping its storage id.

        Returns:
            True if a document was replaced
        """
        ...

    @abstractmethod
    async def update_one(
        self, collection: str, filter: Filter, changes: Document
    ) -> Document | None:
        """Atomically set fields on the first matching document.

        Returns:
            The updated document, or None if nothing matched
        """
        ...

    @abstractmethod
    async def increment(
        self,
        collection: str,
        filter: Filter,
        field: str,
        amount: int = 1,
        base: int = 0,
    ) -> int:
        """Atomically increment a counter field and return the new value.

        When no document matches, one is created from the filter with
        the field set to base + amount.
        """
        ...

    @abstractmethod
    async def delete_one(self, collection: str, filter: Filter) -> bool:
        """Delete the first matching document.

        Returns:
            True if a document was deleted
        """
        ...


def create_document_store(config: StorageConfig) -> DocumentStore:
    """Factory function to create a document store from configuration.

    Args:
        config: Storage configuration

    Returns:
        Appropriate DocumentStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryDocumentStore
    from .sqlite import SqliteDocumentStore

    if config.backend == StoreBackend.MEMORY:
        return InMemoryDocumentStore()
    elif config.backend == StoreBackend.SQLITE:
        return SqliteDocumentStore(
            data_dir=config.data_dir,
            db_name=config.db_name,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported store backend: {config.backend}")
