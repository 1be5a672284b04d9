"""Shared pytest fixtures for mcp-edit-history tests."""

import queue
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mcp_edit_history.config import HistoryConfig
from mcp_edit_history.engine import HistoryEngine
from mcp_edit_history.models import Hunk
from mcp_edit_history.store import ChangeStore, StoreError


class ScriptedEventSource:
    """Event source driven by the test instead of the OS.

    ``push`` hands a batch to the watcher thread and blocks until the
    watcher has finished processing it.
    """

    def __init__(self):
        self.root = None
        self._queue = queue.Queue()

    def subscribe(self, root):
        self.root = root
        return self._iter_batches()

    def _iter_batches(self):
        while True:
            item = self._queue.get()
            if item is None:
                self._queue.task_done()
                return
            yield item
            self._queue.task_done()

    def push(self, *paths):
        self._queue.put([Path(p) for p in paths])
        self._queue.join()

    def close(self):
        self._queue.put(None)


class RecordingSink:
    """Hunk sink that keeps hunks in memory and can be told to fail."""

    def __init__(self, fail_at=None):
        self.hunks = []
        self.fail_at = fail_at  # Number of successful appends before failing
        self.attempts = 0

    def append(self, hunk):
        self.attempts += 1
        if self.fail_at is not None and len(self.hunks) >= self.fail_at:
            raise StoreError("disk full")
        self.hunks.append(hunk)
        return len(self.hunks)


def make_hunk(
    file_path="/project/src/app.py",
    change_id="change-1",
    hunk_index=0,
    changed_at=None,
    **overrides,
):
    """Build a Hunk with sensible defaults."""
    values = dict(
        file_path=file_path,
        change_id=change_id,
        hunk_index=hunk_index,
        old_start=1,
        old_count=1,
        new_start=1,
        new_count=1,
        before_lines="old",
        after_lines="new",
        changed_at=changed_at or datetime(2026, 1, 6, 12, 0, 0, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return Hunk(**values)


def at(minutes):
    """A fixed timestamp ``minutes`` after a base time."""
    return datetime(2026, 1, 6, 12, 0, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes)


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def data_dir():
    """Create a temporary application data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def config(temp_project, data_dir):
    """Create a test configuration."""
    return HistoryConfig(
        project_root=temp_project,
        data_dir=data_dir,
        debounce_seconds=0.05,
    )


@pytest.fixture
def store(data_dir):
    """Create a test store with proper cleanup."""
    s = ChangeStore(data_dir / "test-project" / "history.db")
    yield s
    s.close()


@pytest.fixture
def engine(config):
    """Create a test engine with proper cleanup."""
    eng = HistoryEngine(config)
    yield eng
    eng.close()


@pytest.fixture
def event_source():
    return ScriptedEventSource()
