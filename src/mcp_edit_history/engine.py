"""History engine - read-only query facade plus capture start-up."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from .config import HistoryConfig
from .models import GroupSummary, Hunk, ScaffoldRecord
from .store import ChangeStore, StoreError
from .tracker import ChangeTracker
from .watcher import ChangeWatcher, EventSource

logger = logging.getLogger(__name__)


class HistoryEngine:
    """Owns the store for one project and answers history queries."""

    def __init__(self, config: HistoryConfig, store: Optional[ChangeStore] = None):
        """Open the project's store.

        Raises:
            SetupError: If the store cannot be created
        """
        self.config = config
        self.store = store or ChangeStore(config.get_db_path(), lock_timeout=config.lock_timeout)
        self.watcher: Optional[ChangeWatcher] = None
        self.capture_error: Optional[str] = None

    def close(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        self.store.close()

    def _normalize_path(self, file_path: str) -> str:
        """Map a caller-supplied path to the form the tracker records."""
        path = Path(file_path).expanduser()
        if not path.is_absolute():
            if self.watcher is not None and self.watcher.root is not None:
                base = self.watcher.root
            else:
                base = self.config.get_watch_root() or Path.cwd()
            path = base / path
        return str(path.resolve())

    # ========== Capture ==========

    def start_capture(self, source: Optional[EventSource] = None) -> Optional[ChangeWatcher]:
        """Start the background watcher that records changes into the store.

        Failures to find the project root or start notifications only disable
        capture; they are logged by the watcher and reported by ``status``.
        When another server already captures this project, this one stays
        query-only and returns None.
        """
        if self.watcher is not None:
            return self.watcher

        try:
            claimed = self.store.claim_capture()
        except StoreError as e:
            self.capture_error = str(e)
            logger.warning("File watcher disabled: %s", e)
            return None
        if not claimed:
            self.capture_error = "another process is already capturing this project"
            logger.warning(
                "Another process is recording changes to %s - serving queries only",
                self.store.db_path,
            )
            return None

        self.capture_error = None
        tracker = ChangeTracker(self.config, self.store)
        self.watcher = ChangeWatcher(self.config, tracker, source)
        self.watcher.start()
        return self.watcher

    def status(self) -> dict[str, Any]:
        """Report where history is stored and whether capture is active."""
        capture: dict[str, Any]
        if self.watcher is None:
            capture = {
                "running": False,
                "watching": False,
                "error": self.capture_error or "capture not started",
            }
        else:
            capture = self.watcher.status()
        return {
            "db_path": str(self.store.db_path),
            "project_slug": self.store.db_path.parent.name,
            "capture": capture,
        }

    # ========== File Changes ==========

    def get_file_changes(self, file_path: str, limit: Optional[int] = None) -> list[Hunk]:
        """Most recent hunks for a file, newest first (empty if none)."""
        if limit is None:
            limit = self.config.default_limit
        return self.store.query_by_path(self._normalize_path(file_path), limit)

    def list_recent_change_groups(self, limit: Optional[int] = None) -> list[GroupSummary]:
        """One summary per save event, newest first."""
        if limit is None:
            limit = self.config.default_limit
        return self.store.list_recent_groups(limit)

    def get_changes_by_change_id(self, change_id: str) -> list[Hunk]:
        """Every hunk of one save event, in hunk order."""
        return self.store.query_by_change_id(change_id)

    # ========== Scaffolds ==========

    def save_scaffold(self, description: str, content: str) -> int:
        if not description.strip():
            raise ValueError("description must not be empty")
        return self.store.save_scaffold(description, content)

    def list_scaffolds(self, query: Optional[str] = None, limit: int = 10) -> list[ScaffoldRecord]:
        """Search scaffolds by description, or list the most recent ones."""
        if query:
            return self.store.search_scaffolds(query, limit)
        return self.store.list_recent_scaffolds(limit)

    def get_scaffold(self, scaffold_id: int) -> Optional[ScaffoldRecord]:
        return self.store.get_scaffold(scaffold_id)
