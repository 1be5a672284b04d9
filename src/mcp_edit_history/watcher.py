"""Path watcher - background capture of file edits.

Filesystem notifications arrive in bursts (editors write, truncate, rename,
flush). They are coalesced into batches with at most one entry per path per
debounce window, then handed one path at a time to the ChangeTracker on a
single background thread.

This module provides:
1. ChangeDebouncer - fixed-window coalescing of reported paths
2. EventSource / WatchdogEventSource - subscribe(root) -> batches of paths
3. ChangeWatcher - the worker thread that seeds and drives the tracker
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import HistoryConfig
from .store import HistoryError
from .tracker import ChangeTracker

logger = logging.getLogger(__name__)

# Events that do not modify content (watchdog reports our own reads too)
IGNORED_EVENT_TYPES = {"opened", "closed_no_write"}


class CaptureUnavailable(HistoryError):
    """Raised when file notifications cannot be started for a root."""
    pass


class ChangeDebouncer:
    """Coalesce reported paths over a fixed window.

    The first path reported while idle arms a timer; every path reported
    before it fires joins the same batch. Duplicate paths are dropped and
    first-seen order is kept.
    """

    def __init__(self, window: float, callback: Callable[[list[Path]], Any]):
        """Initialize debouncer.

        Args:
            window: Seconds to collect paths before flushing
            callback: Called with each batch of paths
        """
        self.window = window
        self.callback = callback

        self._pending: dict[Path, None] = {}
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def add_change(self, path: Path) -> None:
        with self._lock:
            self._pending.setdefault(Path(path), None)
            if self._timer is None:
                self._timer = threading.Timer(self.window, self.flush)
                self._timer.daemon = True
                self._timer.start()

    def flush(self) -> None:
        """Hand pending paths to the callback now."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            paths = list(self._pending)
            self._pending.clear()

        if not paths:
            return
        try:
            self.callback(paths)
        except Exception:
            logger.exception("Error in debounce callback")

    def cancel(self) -> None:
        """Drop pending paths without flushing."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()

    def get_pending_count(self) -> int:
        with self._lock:
            return len(self._pending)


class EventSource(Protocol):
    """Source of coalesced path events for a directory tree."""

    def subscribe(self, root: Path) -> Iterator[list[Path]]:
        """Start observing ``root`` and return an iterator of path batches.

        Raises:
            CaptureUnavailable: If observation cannot start
        """
        ...

    def close(self) -> None:
        ...


class _DebouncedHandler(FileSystemEventHandler):
    """Forward watchdog file events to a debouncer."""

    def __init__(self, debouncer: ChangeDebouncer):
        super().__init__()
        self.debouncer = debouncer

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in IGNORED_EVENT_TYPES:
            return

        self.debouncer.add_change(Path(os.fsdecode(event.src_path)))

        # Save-by-rename: the destination is the file that now has new content
        dest_path = getattr(event, "dest_path", "")
        if dest_path:
            self.debouncer.add_change(Path(os.fsdecode(dest_path)))


class WatchdogEventSource:
    """Recursive OS notifications via watchdog, debounced."""

    def __init__(self, debounce_seconds: float = 0.5, poll_timeout: float = 0.5):
        self.debounce_seconds = debounce_seconds
        self.poll_timeout = poll_timeout

        self._observer: Optional[Any] = None
        self._debouncer: Optional[ChangeDebouncer] = None
        self._batches: queue.Queue[list[Path]] = queue.Queue()
        self._closed = threading.Event()

    def subscribe(self, root: Path) -> Iterator[list[Path]]:
        if not Path(root).is_dir():
            raise CaptureUnavailable(f"Watch root is not a directory: {root}")

        self._debouncer = ChangeDebouncer(self.debounce_seconds, self._batches.put)
        observer = Observer()
        try:
            observer.schedule(_DebouncedHandler(self._debouncer), str(root), recursive=True)
            observer.start()
        except OSError as e:
            raise CaptureUnavailable(f"Cannot watch {root}: {e}") from e

        self._observer = observer
        return self._iter_batches()

    def _iter_batches(self) -> Iterator[list[Path]]:
        while not self._closed.is_set():
            try:
                batch = self._batches.get(timeout=self.poll_timeout)
            except queue.Empty:
                continue
            yield batch

    def close(self) -> None:
        self._closed.set()
        if self._debouncer is not None:
            self._debouncer.cancel()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


class ChangeWatcher:
    """Background thread feeding filesystem changes to a ChangeTracker."""

    def __init__(
        self,
        config: HistoryConfig,
        tracker: ChangeTracker,
        source: Optional[EventSource] = None,
    ):
        """Initialize the watcher.

        Args:
            config: Watch configuration
            tracker: Tracker that diffs and persists changes
            source: Event source (default: watchdog with the configured debounce)
        """
        self.config = config
        self.tracker = tracker
        self.source = source or WatchdogEventSource(config.debounce_seconds)

        self.root: Optional[Path] = None
        self.error: Optional[str] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._watching = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_watching(self) -> bool:
        """True once notifications are flowing and the tree has been seeded."""
        return self._watching.is_set() and self.is_running

    def start(self) -> None:
        """Start the background watcher thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="edit-history-watcher", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background thread. Not needed in production; for tests."""
        self._stop_event.set()
        self.source.close()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._watching.clear()

    def wait_until_watching(self, timeout: float = 10.0) -> bool:
        return self._watching.wait(timeout)

    def _run(self) -> None:
        """Main watcher loop."""
        root = self.config.get_watch_root()
        if root is None:
            self.error = "could not detect project root"
            logger.warning("Could not detect project root - file watcher will not run")
            return
        self.root = root

        try:
            batches = self.source.subscribe(root)
        except CaptureUnavailable as e:
            self.error = str(e)
            logger.warning("File watcher disabled: %s", e)
            return

        self.tracker.seed(root)
        self._watching.set()
        logger.info("Watching %s for changes", root)

        for batch in batches:
            if self._stop_event.is_set():
                break
            try:
                self.handle_batch(batch)
            except Exception:
                # Keep watching; the next event for the path retries it
                logger.exception("Error processing file events")

    def handle_batch(self, paths: list[Path]) -> None:
        """Process one coalesced batch, in order."""
        for path in paths:
            path = Path(path)
            if not self.config.is_tracked(path, self.root):
                continue
            if path.exists():
                self.tracker.record_change(path)
            else:
                self.tracker.forget(path)

    def status(self) -> dict[str, Any]:
        """Get watcher status."""
        return {
            "running": self.is_running,
            "watching": self.is_watching,
            "root_path": str(self.root) if self.root is not None else None,
            "debounce_seconds": self.config.debounce_seconds,
            "tracked_files": self.tracker.tracked_count,
            "error": self.error,
        }
