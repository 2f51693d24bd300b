"""
SQLite-backed document store for campusdb.

Documents are stored as JSON bodies in a single table keyed by
(collection, doc_id). Filtering happens in Python over a collection's
rows, using the same matching rules as the in-memory backend.

Invariants:
    - One SQLite file per store
    - Every read-modify-write runs inside one BEGIN IMMEDIATE transaction,
      which is what makes update_one and increment atomic per document
    - Unique indexes are checked inside the same transaction as the write
    - Insertion order (rowid) is preserved across replace and update

How to change safely:
    - Schema migrations must be backward compatible
    - Never hold a transaction across more than one document write; the
      consistency layer assumes single-document atomicity only

Table schema:
    documents:
        - collection TEXT
        - doc_id TEXT (uuid4 hex)
        - body_json TEXT
        - PRIMARY KEY (collection, doc_id)

    unique_indexes:
        - collection TEXT
        - field TEXT
        - PRIMARY KEY (collection, field)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .base import (
    ID_FIELD,
    Document,
    DuplicateKeyError,
    Filter,
    StoreConnectionError,
    StoreError,
    apply_changes,
    matches,
    sort_documents,
)

logger = logging.getLogger(__name__)


class SqliteDocumentStore:
    """Document store persisted in a SQLite file.

    Thread safety:
        Each operation opens its own connection. SQLite serializes
        writers; BEGIN IMMEDIATE takes the write lock up front so a
        read-modify-write cannot interleave with another writer.

    Example:
        >>> store = SqliteDocumentStore("/var/lib/campusdb")
        >>> await store.connect()
        >>> await store.insert_one("students", {"studentId": 1, "lastName": "Li"})
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_name: str = "campus.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the SQLite database file
            db_name: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.db_name = db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._connected = False

    @property
    def db_path(self) -> Path:
        """Path to the database file."""
        return self.data_dir / self.db_name

    @property
    def is_connected(self) -> bool:
        """Whether connect() has completed."""
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Raises:
            StoreConnectionError: If the store is not connected
            StoreError: For SQLite failures inside the block
        """
        if not self._connected:
            raise StoreConnectionError("Not connected")
        conn = self._open()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"SQLite operation failed: {e}") from e
        finally:
            conn.close()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        if self.wal_mode:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                body_json TEXT NOT NULL DEFAULT '{}',
                PRIMARY KEY (collection, doc_id)
            );

            CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection);

            CREATE TABLE IF NOT EXISTS unique_indexes (
                collection TEXT NOT NULL,
                field TEXT NOT NULL,
                PRIMARY KEY (collection, field)
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def connect(self) -> None:
        """Create the database file and schema if they don't exist."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            conn = self._open()
        except (OSError, sqlite3.Error) as e:
            raise StoreConnectionError(f"Cannot open {self.db_path}: {e}") from e
        try:
            self._create_schema(conn)
        finally:
            conn.close()
        self._connected = True
        logger.info("Opened document store", extra={"path": str(self.db_path)})

    async def close(self) -> None:
        """Mark the store closed; connections are per-operation."""
        self._connected = False

    @staticmethod
    def _load(row: sqlite3.Row) -> Document:
        doc = json.loads(row["body_json"])
        doc[ID_FIELD] = row["doc_id"]
        return doc

    @staticmethod
    def _dump(document: Document) -> str:
        body = {k: v for k, v in document.items() if k != ID_FIELD}
        return json.dumps(body)

    def _scan(self, conn: sqlite3.Connection, collection: str) -> list[Document]:
        cursor = conn.execute(
            "SELECT doc_id, body_json FROM documents WHERE collection = ? ORDER BY rowid",
            (collection,),
        )
        return [self._load(row) for row in cursor.fetchall()]

    def _first_match(
        self, conn: sqlite3.Connection, collection: str, filter: Filter
    ) -> Document | None:
        for doc in self._scan(conn, collection):
            if matches(doc, filter):
                return doc
        return None

    def _check_unique(
        self,
        conn: sqlite3.Connection,
        collection: str,
        document: Document,
        exclude_id: str | None = None,
    ) -> None:
        cursor = conn.execute(
            "SELECT field FROM unique_indexes WHERE collection = ?", (collection,)
        )
        fields = [row["field"] for row in cursor.fetchall()]
        if not fields:
            return
        others = [d for d in self._scan(conn, collection) if d[ID_FIELD] != exclude_id]
        for field in fields:
            if field not in document:
                continue
            for other in others:
                if other.get(field) == document[field]:
                    raise DuplicateKeyError(collection, field, document[field])

    async def create_unique_index(self, collection: str, field: str) -> None:
        """Enforce uniqueness of a field within a collection."""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                seen = set()
                for doc in self._scan(conn, collection):
                    if field in doc:
                        if doc[field] in seen:
                            raise DuplicateKeyError(collection, field, doc[field])
                        seen.add(doc[field])
                conn.execute(
                    "INSERT OR IGNORE INTO unique_indexes (collection, field) VALUES (?, ?)",
                    (collection, field),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def insert_one(self, collection: str, document: Document) -> str:
        """Insert a document and return its storage id."""
        doc_id = uuid.uuid4().hex
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                self._check_unique(conn, collection, document)
                conn.execute(
                    "INSERT INTO documents (collection, doc_id, body_json) VALUES (?, ?, ?)",
                    (collection, doc_id, self._dump(document)),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug("Inserted document", extra={"collection": collection, "doc_id": doc_id})
        return doc_id

    async def find_one(self, collection: str, filter: Filter) -> Document | None:
        """Return the first matching document, or None."""
        with self._get_connection() as conn:
            return self._first_match(conn, collection, filter)

    async def find(
        self,
        collection: str,
        filter: Filter | None = None,
        sort: str | None = None,
    ) -> list[Document]:
        """Return all matching documents."""
        with self._get_connection() as conn:
            docs = [d for d in self._scan(conn, collection) if matches(d, filter or {})]
        return sort_documents(docs, sort)

    async def count(self, collection: str, filter: Filter | None = None) -> int:
        """Count matching documents."""
        if not filter:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT COUNT(*) FROM documents WHERE collection = ?", (collection,)
                )
                return cursor.fetchone()[0]
        return len(await self.find(collection, filter))

    async def replace_one(self, collection: str, filter: Filter, document: Document) -> bool:
        """Replace the first matching document, keeping its storage id."""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                existing = self._first_match(conn, collection, filter)
                if existing is None:
                    conn.execute("ROLLBACK")
                    return False
                doc_id = existing[ID_FIELD]
                self._check_unique(conn, collection, document, exclude_id=doc_id)
                conn.execute(
                    "UPDATE documents SET body_json = ? WHERE collection = ? AND doc_id = ?",
                    (self._dump(document), collection, doc_id),
                )
                conn.execute("COMMIT")
                return True
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def update_one(
        self, collection: str, filter: Filter, changes: Document
    ) -> Document | None:
        """Atomically set fields on the first matching document."""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                existing = self._first_match(conn, collection, filter)
                if existing is None:
                    conn.execute("ROLLBACK")
                    return None
                updated = apply_changes(existing, changes)
                self._check_unique(conn, collection, updated, exclude_id=existing[ID_FIELD])
                conn.execute(
                    "UPDATE documents SET body_json = ? WHERE collection = ? AND doc_id = ?",
                    (self._dump(updated), collection, existing[ID_FIELD]),
                )
                conn.execute("COMMIT")
                return updated
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def increment(
        self,
        collection: str,
        filter: Filter,
        field: str,
        amount: int = 1,
        base: int = 0,
    ) -> int:
        """Atomically increment a counter field, creating it on first use."""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                existing = self._first_match(conn, collection, filter)
                if existing is not None:
                    value = int(existing.get(field, base)) + amount
                    existing[field] = value
                    conn.execute(
                        "UPDATE documents SET body_json = ? WHERE collection = ? AND doc_id = ?",
                        (self._dump(existing), collection, existing[ID_FIELD]),
                    )
                else:
                    value = base + amount
                    conn.execute(
                        "INSERT INTO documents (collection, doc_id, body_json) VALUES (?, ?, ?)",
                        (collection, uuid.uuid4().hex, self._dump({**filter, field: value})),
                    )
                conn.execute("COMMIT")
                return value
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def delete_one(self, collection: str, filter: Filter) -> bool:
        """Delete the first matching document."""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                existing = self._first_match(conn, collection, filter)
                if existing is None:
                    conn.execute("ROLLBACK")
                    return False
                conn.execute(
                    "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                    (collection, existing[ID_FIELD]),
                )
                conn.execute("COMMIT")
                return True
            except Exception:
                conn.execute("ROLLBACK")
                raise
