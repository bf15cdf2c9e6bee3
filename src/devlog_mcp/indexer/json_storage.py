"""Flat-file index backend: one JSON artifact at the document root."""

import json
import logging
import time
from typing import Any

from devlog_mcp.indexer.models import (
    KIND_ORDER,
    DocumentKind,
    QueryResult,
    RebuildStats,
    SearchHit,
    SearchResult,
    record_from_dict,
)
from devlog_mcp.indexer.query import Filters, filter_records
from devlog_mcp.indexer.storage import (
    StorageAdapter,
    atomic_write_text,
    check_search_text,
    match_lines,
    resolve_scope,
    scan_documents,
)

logger = logging.getLogger(__name__)

INDEX_VERSION = 1


class JsonStorage(StorageAdapter):
    """
    Index stored as a single JSON file.

    Layout of the artifact:
        {
          "version": 1,
          "built_at": <unix time the scan started>,
          "documents": {"session": [...], "plan": [...], "pattern": [...]},
          "bodies": {"<relative path>": "<body text>"},
          "errors": [{"path": ..., "error": ...}]
        }

    Records are stored already in query order. Queries load the file and
    filter linearly, which is fine for a few thousand documents.
    """

    backend_name = "json"
    index_filename = "context-index.json"

    def rebuild(self) -> RebuildStats:
        logger.info("Rebuilding JSON index for %s", self.root)
        scan = scan_documents(self.root)
        stats = scan.stats

        payload = {
            "version": INDEX_VERSION,
            "built_at": stats.built_at,
            "documents": {
                kind.value: [record.to_dict() for record in scan.records(kind)]
                for kind in KIND_ORDER
            },
            "bodies": {
                doc.record.file: doc.body for kind in KIND_ORDER for doc in scan.documents[kind]
            },
            "errors": stats.errors,
        }
        text = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
        # A crash mid-write must never leave a truncated index behind
        atomic_write_text(self.index_path, text)

        stats.duration = time.time() - stats.built_at
        logger.info(
            "JSON index rebuilt: %d documents indexed, %d errors",
            stats.indexed,
            len(stats.errors),
        )
        return stats

    def _load(self) -> dict[str, Any] | None:
        """Load the index file, or None if it is missing or unusable."""
        try:
            raw = self.index_path.read_bytes()
        except FileNotFoundError:
            return None

        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Ignoring corrupt index %s: %s", self.index_path, e)
            return None

        if not isinstance(data, dict) or data.get("version") != INDEX_VERSION:
            logger.warning("Ignoring index %s with unknown format", self.index_path)
            return None
        return data

    def last_built_at(self) -> float | None:
        data = self._load()
        if data is None or data.get("built_at") is None:
            return None
        return float(data["built_at"])

    def query_documents(
        self, kind: DocumentKind | str, filters: Filters | None = None
    ) -> QueryResult:
        kind = DocumentKind.parse(kind)
        data = self._load() or {}
        items = data.get("documents", {}).get(kind.value, [])
        records = [record_from_dict(kind, item) for item in items]
        return QueryResult.from_records(filter_records(kind, records, filters))

    def search(self, text: str, scope: str | DocumentKind | None = "all") -> SearchResult:
        text = check_search_text(text)
        kinds = resolve_scope(scope)
        data = self._load() or {}
        documents = data.get("documents", {})
        bodies = data.get("bodies", {})

        hits: list[SearchHit] = []
        for kind in kinds:
            for item in documents.get(kind.value, []):
                record = record_from_dict(kind, item)
                hits.extend(match_lines(kind, record, bodies.get(record.file, ""), text))

        label = "all" if len(kinds) > 1 else kinds[0].value
        return SearchResult(query=text, scope=label, items=hits)

    def close(self) -> None:
        # The file is opened and closed per call; nothing is held
        pass
