"""
Indexer module for devlog-mcp.

This module keeps a derived, rebuildable index over the session, plan and
learned-pattern documents. The documents are the source of truth; the index
(a JSON file or an SQLite database) can be thrown away and rebuilt at any time.
"""

from devlog_mcp.indexer.auto_index import AutoIndexer, IndexState
from devlog_mcp.indexer.database import SqliteStorage
from devlog_mcp.indexer.factory import create_storage
from devlog_mcp.indexer.json_storage import JsonStorage
from devlog_mcp.indexer.models import (
    DocumentKind,
    PatternRecord,
    PlanRecord,
    QueryResult,
    RebuildStats,
    SearchHit,
    SearchResult,
    SessionRecord,
)
from devlog_mcp.indexer.mutations import CreateResult, DocumentStore, UpdateResult
from devlog_mcp.indexer.parser import parse_document, serialize_document
from devlog_mcp.indexer.query import (
    PatternFilters,
    PlanFilters,
    QueryEngine,
    SessionFilters,
    build_filters,
)
from devlog_mcp.indexer.storage import StorageAdapter
from devlog_mcp.indexer.walker import FileInfo, walk_documents

__all__ = [
    "AutoIndexer",
    "CreateResult",
    "DocumentKind",
    "DocumentStore",
    "FileInfo",
    "IndexState",
    "JsonStorage",
    "PatternFilters",
    "PatternRecord",
    "PlanFilters",
    "PlanRecord",
    "QueryEngine",
    "QueryResult",
    "RebuildStats",
    "SearchHit",
    "SearchResult",
    "SessionFilters",
    "SessionRecord",
    "SqliteStorage",
    "StorageAdapter",
    "UpdateResult",
    "build_filters",
    "create_storage",
    "parse_document",
    "serialize_document",
    "walk_documents",
]
