from __future__ import annotations

import logging
import threading

from mdm_server.db import ServerDatabase
from mdm_server.directory import DirectoryClient, sync_directory_users
from mdm_server.telemetry import DIRECTORY_SYNC_RUNS

logger = logging.getLogger("mdm_server.scheduler")


class DirectorySyncScheduler:
    """Mirror the user directory once at start, then every ``interval_seconds``."""

    def __init__(self, db: ServerDatabase, client: DirectoryClient, interval_seconds: int) -> None:
        self.db = db
        self.client = client
        self.interval_seconds = max(1, interval_seconds)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="directory-sync", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def run_once(self) -> int | None:
        try:
            written = sync_directory_users(self.db, self.client)
        except Exception:
            DIRECTORY_SYNC_RUNS.labels(outcome="failure").inc()
            logger.exception("directory sync failed")
            return None
        DIRECTORY_SYNC_RUNS.labels(outcome="success").inc()
        logger.info("directory sync completed; %d records written", written)
        return written

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(timeout=self.interval_seconds)
