"""Background freshness checks while the server is running.

Documents edited by hand (or by another process) make the index stale.
Requests already rebuild a stale index before reading, but with a sync
interval configured the server also catches up on its own, so the first
request after an edit does not pay for the rebuild.
"""

import logging
import threading
import time

from devlog_mcp.indexer import AutoIndexer

logger = logging.getLogger(__name__)


class SyncManager:
    """Calls `ensure_fresh()` on a daemon thread every `interval` seconds.

    The thread dies with the process; `stop()` ends it early.
    """

    def __init__(self, indexer: AutoIndexer, interval: float):
        """
        Args:
            indexer: Auto-indexer to keep fresh
            interval: Seconds between checks, must be > 0
        """
        if interval <= 0:
            raise ValueError(f"Sync interval must be positive, got {interval}")

        self._indexer = indexer
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self.checks = 0
        self.rebuilds = 0
        self.last_checked: float | None = None
        self.last_error: Exception | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("Sync thread already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="devlog-sync", daemon=True)
        self._thread.start()
        logger.info("Sync manager started (interval: %ss)", self._interval)

    def stop(self) -> None:
        """Signal the thread and wait for it (at most one interval)."""
        if not self.running:
            return

        self._stop_event.set()
        self._thread.join(timeout=self._interval + 1)
        if self._thread.is_alive():
            logger.warning("Sync thread did not stop cleanly")
        else:
            logger.info(
                "Sync manager stopped after %d checks (%d rebuilds)", self.checks, self.rebuilds
            )
        self._thread = None

    def check_once(self) -> bool:
        """
        Run one freshness check.

        Errors are logged and kept in `last_error`; the next check tries
        again. Requests still see the same error when they rebuild.

        Returns:
            True if the index was rebuilt.
        """
        self.checks += 1
        self.last_checked = time.time()
        try:
            rebuilt = self._indexer.ensure_fresh()
        except Exception as e:
            self.last_error = e
            logger.exception("Error during auto-sync")
            return False

        self.last_error = None
        if rebuilt:
            self.rebuilds += 1
            logger.info("Auto-sync: index rebuilt")
        else:
            logger.debug("Auto-sync: index is fresh")
        return rebuilt

    def _run(self) -> None:
        logger.debug("Sync loop started")
        # Wait first so that stop() right after start() returns at once
        while not self._stop_event.wait(timeout=self._interval):
            self.check_once()
        logger.debug("Sync loop stopped")
