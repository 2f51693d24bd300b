"""
Document store abstraction for campusdb.

This module provides a pluggable store interface supporting:
- SQLite (single file, used by the server)
- In-memory (for testing)

The store offers single-document atomicity only. Everything the
consistency layer guarantees across documents is built on top of it.

Invariants:
    - Single-document writes are atomic
    - There is no multi-document transaction
    - Storage ids ("_id") are never used as business ids

How to change safely:
    - New backends must implement the DocumentStore protocol
    - Run the store test suite against every backend
"""

from .base import (
    DocumentStore,
    DuplicateKeyError,
    StoreConnectionError,
    StoreError,
    create_document_store,
    matches,
)
from .memory import InMemoryDocumentStore
from .sqlite import SqliteDocumentStore

__all__ = [
    # Protocol and errors
    "DocumentStore",
    "StoreError",
    "StoreConnectionError",
    "DuplicateKeyError",
    "matches",
    # Factory
    "create_document_store",
    # Implementations
    "InMemoryDocumentStore",
    "SqliteDocumentStore",
]
