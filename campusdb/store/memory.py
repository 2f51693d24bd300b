"""
In-memory document store implementation for testing.

This module provides a simple in-memory store for:
- Unit tests
- Integration tests
- Local development without a database file

Invariants:
    - All data is lost on process exit
    - Provides the same single-document atomicity as the SQLite backend
    - Documents are deep-copied on the way in and out, so callers never
      share mutable state with the store

How to change safely:
    - Keep interface compatible with the DocumentStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections import defaultdict
from typing import Any

from .base import (
    ID_FIELD,
    Document,
    DuplicateKeyError,
    Filter,
    StoreConnectionError,
    apply_changes,
    matches,
    sort_documents,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    Thread safety:
        Every operation runs under one asyncio lock, which makes each
        single-document read-modify-write atomic with respect to other
        coroutines.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> value = await store.increment("counters", {"name": "student"}, "value")
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = defaultdict(dict)
        self._unique: dict[str, set[str]] = defaultdict(set)
        self._failures: dict[str, list[tuple[int, Exception]]] = defaultdict(list)
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryDocumentStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._collections.clear()
        self._unique.clear()
        self._failures.clear()
        logger.debug("InMemoryDocumentStore closed")

    def _check_connected(self) -> None:
        if not self._connected:
            raise StoreConnectionError("Not connected")

    def _check_unique(
        self, collection: str, document: Document, exclude_id: str | None = None
    ) -> None:
        for field in self._unique.get(collection, ()):
            if field not in document:
                continue
            value = document[field]
            for doc_id, other in self._collections[collection].items():
                if doc_id != exclude_id and other.get(field) == value:
                    raise DuplicateKeyError(collection, field, value)

    def _maybe_fail(self, collection: str) -> None:
        pending = self._failures.get(collection)
        if not pending:
            return
        remaining, exc = pending[0]
        if remaining > 0:
            pending[0] = (remaining - 1, exc)
            return
        pending.pop(0)
        raise exc

    def _first_match(self, collection: str, filter: Filter) -> tuple[str, Document] | None:
        for doc_id, doc in self._collections[collection].items():
            if matches(doc, filter):
                return doc_id, doc
        return None

    async def create_unique_index(self, collection: str, field: str) -> None:
        """Enforce uniqueness of a field within a collection."""
        self._check_connected()
        async with self._lock:
            seen: set[Any] = set()
            for doc in self._collections[collection].values():
                if field in doc:
                    if doc[field] in seen:
                        raise DuplicateKeyError(collection, field, doc[field])
                    seen.add(doc[field])
            self._unique[collection].add(field)

    async def insert_one(self, collection: str, document: Document) -> str:
        """Insert a document and return its storage id."""
        self._check_connected()
        async with self._lock:
            self._maybe_fail(collection)
            self._check_unique(collection, document)
            doc_id = uuid.uuid4().hex
            stored = copy.deepcopy(document)
            stored[ID_FIELD] = doc_id
            self._collections[collection][doc_id] = stored
        return doc_id

    async def find_one(self, collection: str, filter: Filter) -> Document | None:
        """Return the first matching document, or None."""
        self._check_connected()
        async with self._lock:
            found = self._first_match(collection, filter)
            return copy.deepcopy(found[1]) if found else None

    async def find(
        self,
        collection: str,
        filter: Filter | None = None,
        sort: str | None = None,
    ) -> list[Document]:
        """Return all matching documents."""
        self._check_connected()
        async with self._lock:
            docs = [
                copy.deepcopy(doc)
                for doc in self._collections[collection].values()
                if matches(doc, filter or {})
            ]
        return sort_documents(docs, sort)

    async def count(self, collection: str, filter: Filter | None = None) -> int:
        """Count matching documents."""
        self._check_connected()
        async with self._lock:
            return sum(
                1 for doc in self._collections[collection].values() if matches(doc, filter or {})
            )

    async def replace_one(self, collection: str, filter: Filter, document: Document) -> bool:
        """Replace the first matching document, keeping its storage id."""
        self._check_connected()
        async with self._lock:
            self._maybe_fail(collection)
            found = self._first_match(collection, filter)
            if not found:
                return False
            doc_id, _ = found
            self._check_unique(collection, document, exclude_id=doc_id)
            stored = copy.deepcopy(document)
            stored[ID_FIELD] = doc_id
            self._collections[collection][doc_id] = stored
            return True

    async def update_one(
        self, collection: str, filter: Filter, changes: Document
    ) -> Document | None:
        """Atomically set fields on the first matching document."""
        self._check_connected()
        async with self._lock:
            self._maybe_fail(collection)
            found = self._first_match(collection, filter)
            if not found:
                return None
            doc_id, doc = found
            updated = apply_changes(doc, changes)
            self._check_unique(collection, updated, exclude_id=doc_id)
            self._collections[collection][doc_id] = updated
            return copy.deepcopy(updated)

    async def increment(
        self,
        collection: str,
        filter: Filter,
        field: str,
        amount: int = 1,
        base: int = 0,
    ) -> int:
        """Atomically increment a counter field, creating it on first use."""
        self._check_connected()
        async with self._lock:
            self._maybe_fail(collection)
            found = self._first_match(collection, filter)
            if found:
                doc_id, doc = found
                value = int(doc.get(field, base)) + amount
                doc[field] = value
            else:
                doc_id = uuid.uuid4().hex
                value = base + amount
                self._collections[collection][doc_id] = {
                    **copy.deepcopy(filter),
                    field: value,
                    ID_FIELD: doc_id,
                }
            return value

    async def delete_one(self, collection: str, filter: Filter) -> bool:
        """Delete the first matching document."""
        self._check_connected()
        async with self._lock:
            self._maybe_fail(collection)
            found = self._first_match(collection, filter)
            if not found:
                return False
            del self._collections[collection][found[0]]
            return True

    # Testing helpers

    def inject_failure(self, collection: str, exception: Exception, after: int = 0) -> None:
        """Make a future write to a collection raise (testing helper).

        Args:
            collection: Collection whose writes should fail
            exception: Exception to raise
            after: Number of successful writes to allow first
        """
        self._failures[collection].append((after, exception))

    def dump(self, collection: str) -> list[Document]:
        """Get copies of all documents in a collection (testing helper)."""
        return [copy.deepcopy(doc) for doc in self._collections[collection].values()]
