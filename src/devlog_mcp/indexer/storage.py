"""Storage adapter interface and the scan step shared by every backend."""

import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from devlog_mcp.errors import DocumentParseError, IndexRebuildError, ValidationError
from devlog_mcp.indexer.models import (
    KIND_ORDER,
    DocumentKind,
    QueryResult,
    RebuildStats,
    Record,
    SearchHit,
    SearchResult,
    sort_records,
)
from devlog_mcp.indexer.parser import extract_record, parse_document
from devlog_mcp.indexer.query import Filters
from devlog_mcp.indexer.walker import walk_documents

logger = logging.getLogger(__name__)


@dataclass
class IndexedDocument:
    """A successfully parsed document, ready to be stored."""

    record: Record
    body: str
    content_hash: str
    mtime: float


@dataclass
class ScanResult:
    """Everything a backend needs to replace its index state."""

    documents: dict[DocumentKind, list[IndexedDocument]] = field(
        default_factory=lambda: {kind: [] for kind in KIND_ORDER}
    )
    stats: RebuildStats = field(default_factory=RebuildStats)

    def records(self, kind: DocumentKind) -> list[Record]:
        return [doc.record for doc in self.documents[kind]]


def scan_documents(root: Path) -> ScanResult:
    """
    Scan the document root and parse every document.

    A document that fails to parse is skipped and recorded in
    `stats.errors`; the scan carries on. Documents of each kind come back in
    query order (recency descending, id ascending).

    Raises:
        IndexRebuildError: If the root or a kind directory cannot be read
    """
    if not root.is_dir():
        raise IndexRebuildError(f"Document root is not a readable directory: {root}")

    result = ScanResult()
    stats = result.stats
    stats.built_at = time.time()
    seen_ids: dict[tuple[DocumentKind, str], str] = {}

    try:
        for file_info in walk_documents(root):
            stats.scanned += 1
            try:
                text = file_info.path.read_bytes().decode("utf-8")
                header, body = parse_document(text, file_info.relative_path)
                record = extract_record(file_info.kind, header, body, file_info.relative_path)
            except (DocumentParseError, UnicodeDecodeError) as e:
                logger.warning("Skipping %s: %s", file_info.relative_path, e)
                stats.errors.append({"path": file_info.relative_path, "error": str(e)})
                continue

            key = (file_info.kind, record.id)
            if key in seen_ids:
                message = (
                    f"Duplicate {file_info.kind.value} id '{record.id}' "
                    f"(already defined in {seen_ids[key]})"
                )
                logger.warning("Skipping %s: %s", file_info.relative_path, message)
                stats.errors.append({"path": file_info.relative_path, "error": message})
                continue
            seen_ids[key] = file_info.relative_path

            result.documents[file_info.kind].append(
                IndexedDocument(
                    record=record,
                    body=body,
                    content_hash=file_info.content_hash,
                    mtime=file_info.mtime,
                )
            )
    except OSError as e:
        raise IndexRebuildError(f"Cannot scan document root {root}: {e}") from e

    for kind in KIND_ORDER:
        by_id = {doc.record.id: doc for doc in result.documents[kind]}
        ordered = sort_records(kind, [doc.record for doc in result.documents[kind]])
        result.documents[kind] = [by_id[r.id] for r in ordered]
        stats.counts[kind.value] = len(ordered)

    return result


def resolve_scope(scope: str | DocumentKind | None) -> tuple[DocumentKind, ...]:
    """Turn a search scope ("all", "sessions", "plan", ...) into kinds."""
    if scope is None or str(scope).strip().lower() == "all":
        return KIND_ORDER
    try:
        return (DocumentKind.parse(scope),)
    except ValidationError:
        raise ValidationError(
            f"Invalid scope: {scope}. Must be 'all' or one of: "
            f"{', '.join(k.value for k in KIND_ORDER)}",
            field="scope",
        ) from None


def check_search_text(text: str) -> str:
    if text is None or not str(text).strip():
        raise ValidationError("Search text must not be empty", field="query")
    return str(text)


def match_lines(kind: DocumentKind, record: Record, body: str, text: str) -> list[SearchHit]:
    """Case-insensitive substring match of `text` against each body line."""
    needle = text.lower()
    return [
        SearchHit(kind=kind.value, id=record.id, file=record.file, line=number, context=line.strip())
        for number, line in enumerate(body.split("\n"), start=1)
        if needle in line.lower()
    ]


def atomic_write_text(path: Path, content: str) -> None:
    """Write text to a temporary sibling file, then rename it over `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class StorageAdapter(ABC):
    """
    Contract every index backend satisfies.

    The document tree under `root` is the source of truth. A backend holds
    only derived state that `rebuild()` can regenerate at any time.
    """

    backend_name = ""
    index_filename = ""

    def __init__(self, root: Path, index_path: Path | None = None):
        """
        Args:
            root: Document root holding one folder per kind
            index_path: Index artifact location (defaults to a file in root)
        """
        self.root = Path(root)
        self._index_path = Path(index_path) if index_path else self.root / self.index_filename

    @property
    def index_path(self) -> Path:
        return self._index_path

    @abstractmethod
    def rebuild(self) -> RebuildStats:
        """Re-scan the document tree and fully replace the index."""

    @abstractmethod
    def query_documents(
        self, kind: DocumentKind | str, filters: Filters | None = None
    ) -> QueryResult:
        """Return metadata records of one kind, recency descending."""

    @abstractmethod
    def search(self, text: str, scope: str | DocumentKind | None = "all") -> SearchResult:
        """Substring search over document bodies."""

    @abstractmethod
    def last_built_at(self) -> float | None:
        """Build time of the current index, or None when there is none."""

    @abstractmethod
    def close(self) -> None:
        """Release file handles and connections."""

    def __enter__(self) -> "StorageAdapter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
