"""SQLite index backend: one table per document kind."""

import json
import logging
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import fields
from pathlib import Path

from devlog_mcp.errors import IndexRebuildError
from devlog_mcp.indexer.models import (
    KIND_ORDER,
    RECORD_TYPES,
    SCHEMAS,
    DocumentKind,
    QueryResult,
    RebuildStats,
    Record,
    SearchHit,
    SearchResult,
)
from devlog_mcp.indexer.query import Filters, check_filters
from devlog_mcp.indexer.storage import (
    StorageAdapter,
    check_search_text,
    match_lines,
    resolve_scope,
    scan_documents,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"

SCHEMA_SQL = """
-- devlog index schema v1.0
-- This index is disposable: it regenerates from the document tree

PRAGMA journal_mode = WAL;

-- Session documents
CREATE TABLE IF NOT EXISTS sessions (
    id           TEXT PRIMARY KEY,
    file         TEXT NOT NULL UNIQUE,
    date         TEXT NOT NULL,
    status       TEXT NOT NULL,
    topics       TEXT NOT NULL DEFAULT '[]',
    title        TEXT,
    plan         TEXT,
    files        TEXT NOT NULL DEFAULT '[]',
    author       TEXT,
    content      TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    mtime        REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_date ON sessions(date DESC);
CREATE INDEX IF NOT EXISTS idx_sessions_status ON sessions(status);
CREATE INDEX IF NOT EXISTS idx_sessions_plan ON sessions(plan);

-- Plan documents
CREATE TABLE IF NOT EXISTS plans (
    id           TEXT PRIMARY KEY,
    file         TEXT NOT NULL UNIQUE,
    status       TEXT NOT NULL,
    author       TEXT NOT NULL,
    updated      TEXT NOT NULL,
    title        TEXT,
    topics       TEXT NOT NULL DEFAULT '[]',
    created      TEXT,
    started      TEXT,
    completed    TEXT,
    content      TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    mtime        REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_plans_status ON plans(status);
CREATE INDEX IF NOT EXISTS idx_plans_author ON plans(author);
CREATE INDEX IF NOT EXISTS idx_plans_updated ON plans(updated DESC);

-- Learned pattern documents
CREATE TABLE IF NOT EXISTS patterns (
    id           TEXT PRIMARY KEY,
    file         TEXT NOT NULL UNIQUE,
    title        TEXT NOT NULL,
    triggers     TEXT NOT NULL DEFAULT '[]',
    category     TEXT,
    author       TEXT,
    created      TEXT,
    content      TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    mtime        REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_patterns_category ON patterns(category);
CREATE INDEX IF NOT EXISTS idx_patterns_created ON patterns(created DESC);

-- Metadata table for index versioning and the build timestamp
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);

INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', '1.0');
"""

TABLES = {
    DocumentKind.SESSION: "sessions",
    DocumentKind.PLAN: "plans",
    DocumentKind.PATTERN: "patterns",
}


def _record_columns(kind: DocumentKind) -> list[str]:
    return [f.name for f in fields(RECORD_TYPES[kind])]


def _order_by(kind: DocumentKind) -> str:
    recency = SCHEMAS[kind].recency_field
    return f"ORDER BY COALESCE({recency}, '') DESC, id ASC"


def _fold(value: str | None) -> str | None:
    """Case folding for SQL matches; SQLite's own lower() only folds ASCII."""
    if value is None:
        return None
    return str(value).lower()


def _is_unusable(error: sqlite3.DatabaseError) -> bool:
    """True when the file itself is broken, as opposed to busy."""
    if isinstance(error, sqlite3.OperationalError):
        message = str(error).lower()
        return "locked" not in message and "busy" not in message
    return True


class SqliteStorage(StorageAdapter):
    """
    Index stored in an embedded SQLite database.

    Filters are pushed down to SQL predicates on indexed columns. A rebuild
    replaces every table's rows in one transaction, so a reader in another
    process sees either the old index or the new one, never a mix.

    Thread Safety:
        Each thread gets its own connection; writes are serialized by a lock.
    """

    backend_name = "embedded-db"
    index_filename = "context-index.db"

    def __init__(self, root: Path, index_path: Path | None = None):
        super().__init__(root, index_path)
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._initialized = False

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self.index_path.parent.mkdir(parents=True, exist_ok=True)
            self._local.conn = sqlite3.connect(str(self.index_path))
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.create_function("fold", 1, _fold, deterministic=True)
        return self._local.conn

    @contextmanager
    def _read_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for read operations."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    @contextmanager
    def _write_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for write operations with locking."""
        with self._write_lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def initialize(self) -> None:
        """Create the schema, dropping tables left by another schema version."""
        with self._write_cursor() as cursor:
            cursor.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            existing = {row["name"] for row in cursor.fetchall()}
            version = None
            if "meta" in existing:
                cursor.execute("SELECT value FROM meta WHERE key = 'schema_version'")
                row = cursor.fetchone()
                version = row["value"] if row else None
            if existing and version != SCHEMA_VERSION:
                logger.info("Index schema changed, dropping old tables")
                for table in [*TABLES.values(), "meta"]:
                    cursor.execute(f"DROP TABLE IF EXISTS {table}")
            cursor.executescript(SCHEMA_SQL)
        self._initialized = True

    def _ensure_initialized(self) -> None:
        """Ensure the database is initialized."""
        if not self._initialized:
            self.initialize()

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None

    def _discard(self) -> None:
        """Delete the index file and its WAL companions."""
        self.close()
        self._initialized = False
        for suffix in ("", "-wal", "-shm"):
            self.index_path.with_name(self.index_path.name + suffix).unlink(missing_ok=True)

    def _prepare(self) -> None:
        """Open and initialize the index, replacing a corrupt or foreign file."""
        try:
            self.initialize()
        except sqlite3.DatabaseError as e:
            if not _is_unusable(e):
                raise
            logger.warning("Replacing unusable index %s: %s", self.index_path, e)
            self._discard()
            self.initialize()

    def rebuild(self) -> RebuildStats:
        logger.info("Rebuilding SQLite index for %s", self.root)
        scan = scan_documents(self.root)
        stats = scan.stats

        try:
            self._prepare()
            with self._write_cursor() as cursor:
                for kind in KIND_ORDER:
                    table = TABLES[kind]
                    columns = _record_columns(kind)
                    list_fields = set(SCHEMAS[kind].list_fields)
                    all_columns = [*columns, "content", "content_hash", "mtime"]
                    placeholders = ", ".join("?" for _ in all_columns)

                    cursor.execute(f"DELETE FROM {table}")
                    cursor.executemany(
                        f"INSERT INTO {table} ({', '.join(all_columns)}) VALUES ({placeholders})",
                        [
                            (
                                *(
                                    json.dumps(getattr(doc.record, name))
                                    if name in list_fields
                                    else getattr(doc.record, name)
                                    for name in columns
                                ),
                                doc.body,
                                doc.content_hash,
                                doc.mtime,
                            )
                            for doc in scan.documents[kind]
                        ],
                    )
                cursor.execute(
                    "INSERT OR REPLACE INTO meta (key, value) VALUES ('built_at', ?)",
                    (repr(stats.built_at),),
                )
        except sqlite3.Error as e:
            raise IndexRebuildError(f"Cannot write index {self.index_path}: {e}") from e

        stats.duration = time.time() - stats.built_at
        logger.info(
            "SQLite index rebuilt: %d documents indexed, %d errors",
            stats.indexed,
            len(stats.errors),
        )
        return stats

    def last_built_at(self) -> float | None:
        if not self.index_path.exists():
            return None
        try:
            self._ensure_initialized()
            with self._read_cursor() as cursor:
                cursor.execute("SELECT value FROM meta WHERE key = 'built_at'")
                row = cursor.fetchone()
        except sqlite3.DatabaseError as e:
            logger.warning("Ignoring unreadable index %s: %s", self.index_path, e)
            return None
        return float(row["value"]) if row else None

    def _row_to_record(self, kind: DocumentKind, row: sqlite3.Row) -> Record:
        """Convert a database row to a typed record."""
        list_fields = set(SCHEMAS[kind].list_fields)
        values = {
            name: json.loads(row[name]) if name in list_fields else row[name]
            for name in _record_columns(kind)
        }
        return RECORD_TYPES[kind](**values)

    def query_documents(
        self, kind: DocumentKind | str, filters: Filters | None = None
    ) -> QueryResult:
        kind = DocumentKind.parse(kind)
        filters = check_filters(kind, filters)
        self._ensure_initialized()

        clauses, params = filters.sql_predicates()
        query = f"SELECT {', '.join(_record_columns(kind))} FROM {TABLES[kind]}"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " " + _order_by(kind)

        with self._read_cursor() as cursor:
            cursor.execute(query, params)
            records = [self._row_to_record(kind, row) for row in cursor.fetchall()]
        return QueryResult.from_records(records)

    def search(self, text: str, scope: str | DocumentKind | None = "all") -> SearchResult:
        text = check_search_text(text)
        kinds = resolve_scope(scope)
        self._ensure_initialized()

        hits: list[SearchHit] = []
        with self._read_cursor() as cursor:
            for kind in kinds:
                cursor.execute(
                    f"""SELECT {', '.join(_record_columns(kind))}, content
                    FROM {TABLES[kind]}
                    WHERE instr(fold(content), fold(?)) > 0
                    {_order_by(kind)}""",
                    (text,),
                )
                for row in cursor.fetchall():
                    record = self._row_to_record(kind, row)
                    hits.extend(match_lines(kind, record, row["content"], text))

        label = "all" if len(kinds) > 1 else kinds[0].value
        return SearchResult(query=text, scope=label, items=hits)
