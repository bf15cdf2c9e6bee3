"""Tests for the SQLite index backend."""

import json
import sqlite3
import threading
from pathlib import Path

import pytest

from devlog_mcp.indexer.database import SCHEMA_VERSION, SqliteStorage
from devlog_mcp.indexer.models import DocumentKind


@pytest.fixture
def db(doc_root: Path):
    """A rebuilt SQLite index over the sample tree."""
    storage = SqliteStorage(doc_root)
    storage.rebuild()
    yield storage
    storage.close()


def raw_rows(path: Path, sql: str) -> list[tuple]:
    conn = sqlite3.connect(str(path))
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()


class TestDatabaseInitialization:
    def test_default_location(self, doc_root: Path):
        storage = SqliteStorage(doc_root)
        assert storage.index_path == doc_root / "context-index.db"
        assert not storage.index_path.exists()

    def test_creates_parent_directories(self, doc_root: Path, tmp_path: Path):
        db_path = tmp_path / "nested" / "dir" / "index.db"
        storage = SqliteStorage(doc_root, db_path)
        storage.rebuild()
        assert db_path.exists()
        storage.close()

    def test_tables_and_meta(self, db: SqliteStorage):
        tables = {
            name
            for (name,) in raw_rows(db.index_path, "SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert {"sessions", "plans", "patterns", "meta"} <= tables

        meta = dict(raw_rows(db.index_path, "SELECT key, value FROM meta"))
        assert meta["schema_version"] == SCHEMA_VERSION
        assert float(meta["built_at"]) == db.last_built_at()

    def test_wal_mode(self, db: SqliteStorage):
        assert raw_rows(db.index_path, "PRAGMA journal_mode") == [("wal",)]

    def test_old_schema_is_dropped(self, doc_root: Path):
        path = doc_root / "context-index.db"
        conn = sqlite3.connect(str(path))
        conn.executescript(
            """
            CREATE TABLE meta (key TEXT PRIMARY KEY, value TEXT);
            INSERT INTO meta VALUES ('schema_version', '0.1');
            CREATE TABLE sessions (id TEXT, legacy TEXT);
            """
        )
        conn.commit()
        conn.close()

        storage = SqliteStorage(doc_root)
        storage.rebuild()
        columns = [row[1] for row in raw_rows(path, "PRAGMA table_info(sessions)")]
        storage.close()

        assert "legacy" not in columns
        assert "content_hash" in columns

    @pytest.mark.parametrize(
        "script",
        [
            "CREATE TABLE sessions (name TEXT);",
            "CREATE TABLE meta (k TEXT, v TEXT);",
        ],
    )
    def test_foreign_database_is_replaced(self, doc_root: Path, script: str):
        path = doc_root / "context-index.db"
        conn = sqlite3.connect(str(path))
        conn.executescript(script)
        conn.commit()
        conn.close()

        storage = SqliteStorage(doc_root)
        storage.rebuild()
        try:
            assert storage.query_documents(DocumentKind.SESSION).count == 3
        finally:
            storage.close()

    def test_unreadable_file_is_replaced_on_rebuild(self, doc_root: Path):
        (doc_root / "context-index.db").write_bytes(b"this is not a database" * 100)
        (doc_root / "context-index.db-wal").write_bytes(b"stale")

        storage = SqliteStorage(doc_root)
        stats = storage.rebuild()
        try:
            assert stats.indexed == 6
            assert storage.last_built_at() == pytest.approx(stats.built_at)
        finally:
            storage.close()


class TestStoredRows:
    def test_lists_are_json_arrays(self, db: SqliteStorage):
        rows = raw_rows(db.index_path, "SELECT topics, files FROM sessions WHERE id = '2026-01-05-session'")
        assert [json.loads(v) for v in rows[0]] == [["tdd", "parser"], ["src/parser.py"]]

    def test_body_and_hash_are_stored(self, db: SqliteStorage):
        rows = raw_rows(db.index_path, "SELECT content, content_hash, mtime FROM plans WHERE id = 'search-v2'")
        content, content_hash, mtime = rows[0]
        assert content == "# Search v2\n\nParser for the query language.\n"
        assert len(content_hash) == 64
        assert mtime > 0

    def test_rebuild_replaces_rows(self, db: SqliteStorage, doc_root: Path):
        (doc_root / "learned" / "yaml-quoting.md").unlink()
        db.rebuild()
        assert raw_rows(db.index_path, "SELECT COUNT(*) FROM patterns") == [(0,)]


class TestLastBuiltAt:
    def test_missing_file(self, doc_root: Path):
        assert SqliteStorage(doc_root).last_built_at() is None

    def test_unreadable_file_counts_as_missing(self, doc_root: Path):
        (doc_root / "context-index.db").write_bytes(b"this is not a database" * 100)
        storage = SqliteStorage(doc_root)
        assert storage.last_built_at() is None
        storage.close()


class TestThreads:
    def test_each_thread_gets_its_own_connection(self, db: SqliteStorage):
        results = []

        def worker():
            results.append(db.query_documents(DocumentKind.PLAN).count)
            db.close()

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == [2, 2, 2]

    def test_close_then_reuse(self, db: SqliteStorage):
        db.close()
        assert db.query_documents("session").count == 3
