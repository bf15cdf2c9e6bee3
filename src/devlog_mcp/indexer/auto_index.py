"""Staleness detection and automatic rebuilds in front of a storage adapter."""

import logging
import threading
import time
from enum import Enum
from pathlib import Path

from devlog_mcp.indexer.models import DocumentKind, QueryResult, RebuildStats, SearchResult
from devlog_mcp.indexer.query import Filters
from devlog_mcp.indexer.storage import StorageAdapter
from devlog_mcp.indexer.walker import missing_kinds, newest_mtime

logger = logging.getLogger(__name__)

# Roughly the mtime granularity of common filesystems
DEFAULT_TOLERANCE = 0.01
DEFAULT_MAX_REBUILD_SECONDS = 2.0


class IndexState(str, Enum):
    """Freshness of the index relative to the document tree."""

    FRESH = "fresh"
    STALE = "stale"
    MISSING = "missing"


class AutoIndexer:
    """
    Wraps a storage adapter and rebuilds it whenever documents changed.

    The document tree is always the source of truth. Before each read the
    newest document mtime is compared with the index build time; a stale or
    missing index is rebuilt before the read proceeds.

    Thread Safety:
        Freshness checks and rebuilds are serialized by a lock, so a
        background sync and a request never rebuild at the same time within
        one process. Separate processes are not coordinated: the last
        rebuild wins, which is harmless because rebuilds are idempotent.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        root: Path | None = None,
        enabled: bool = True,
        tolerance: float = DEFAULT_TOLERANCE,
        max_rebuild_seconds: float = DEFAULT_MAX_REBUILD_SECONDS,
    ):
        """
        Args:
            storage: Backend holding the index
            root: Document root (defaults to the storage root)
            enabled: When False, reads never trigger a rebuild
            tolerance: Seconds an mtime may exceed the build time and still count as fresh
            max_rebuild_seconds: Rebuilds slower than this log a warning
        """
        self.storage = storage
        self.root = Path(root) if root is not None else storage.root
        self.enabled = enabled
        self.tolerance = tolerance
        self.max_rebuild_seconds = max_rebuild_seconds
        self.rebuild_count = 0
        self._lock = threading.RLock()

    def check_state(self) -> IndexState:
        """Compare the index build time with the newest document mtime."""
        built_at = self.storage.last_built_at()
        if built_at is None:
            logger.debug("Index %s is missing", self.storage.index_path)
            return IndexState.MISSING

        newest = newest_mtime(self.root)
        if newest > built_at + self.tolerance:
            logger.debug("Index is stale: newest mtime %.3f > built at %.3f", newest, built_at)
            return IndexState.STALE

        # The root's own mtime moves with every index write, so a removed
        # kind folder is detected by indexed records it no longer backs
        for kind in missing_kinds(self.root):
            if self.storage.query_documents(kind).count:
                logger.debug("Index is stale: %s folder was removed", kind.value)
                return IndexState.STALE
        return IndexState.FRESH

    def rebuild(self) -> RebuildStats:
        """
        Rebuild the index unconditionally.

        Raises:
            IndexRebuildError: If the document tree cannot be scanned or the
                index cannot be written
        """
        with self._lock:
            started = time.monotonic()
            stats = self.storage.rebuild()
            self.rebuild_count += 1

            elapsed = time.monotonic() - started
            if elapsed > self.max_rebuild_seconds:
                logger.warning(
                    "Index rebuild took %.2fs (limit %.2fs) for %d documents",
                    elapsed,
                    self.max_rebuild_seconds,
                    stats.scanned,
                )
            return stats

    def ensure_fresh(self, force: bool = False) -> bool:
        """
        Rebuild the index if it is stale or missing.

        Args:
            force: Rebuild even if the index looks fresh

        Returns:
            True if a rebuild happened.
        """
        with self._lock:
            if force:
                self.rebuild()
                return True
            if not self.enabled:
                return False

            state = self.check_state()
            if state is IndexState.FRESH:
                return False

            logger.info("Index is %s, rebuilding", state.value)
            self.rebuild()
            return True

    def query_documents(
        self, kind: DocumentKind | str, filters: Filters | None = None
    ) -> QueryResult:
        self.ensure_fresh()
        return self.storage.query_documents(kind, filters)

    def search(self, text: str, scope: str | DocumentKind | None = "all") -> SearchResult:
        self.ensure_fresh()
        return self.storage.search(text, scope)

    def close(self) -> None:
        self.storage.close()

    def __enter__(self) -> "AutoIndexer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
