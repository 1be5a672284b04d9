"""Change tracker - turns "this file changed" into persisted hunks.

Keeps the last committed content of every watched file in memory and diffs
each new version against it. The cached content only advances after every
hunk of the change has been written, so a failed write is recomputed on the
next event instead of being lost.

The tracker is owned by the watcher thread; nothing else mutates it.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Optional, Protocol

from .config import HistoryConfig
from .diffing import Differ, LineDiffer
from .models import Hunk, utc_now
from .store import StoreError

logger = logging.getLogger(__name__)


class HunkSink(Protocol):
    """The part of the store the tracker writes through."""

    def append(self, hunk: Hunk) -> int:
        ...


def read_source(path: Path) -> str:
    """Read a file exactly as stored on disk (no newline translation)."""
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


class ChangeTracker:
    """Holds a snapshot per watched path and records diffs against it."""

    def __init__(
        self,
        config: HistoryConfig,
        sink: HunkSink,
        differ: Optional[Differ] = None,
    ):
        """Initialize the tracker.

        Args:
            config: Watch configuration (extensions, ignore patterns)
            sink: Where hunks are persisted (normally the ChangeStore)
            differ: Line differ (default: difflib based)
        """
        self.config = config
        self.sink = sink
        self.differ = differ or LineDiffer()
        self._snapshots: dict[Path, str] = {}

    @property
    def tracked_count(self) -> int:
        return len(self._snapshots)

    def snapshot(self, path: Path) -> Optional[str]:
        """Cached content for ``path``, or None if it has never been seen."""
        return self._snapshots.get(Path(path).resolve())

    def seed(self, root: Path) -> int:
        """Walk ``root`` once and cache the content of every tracked file.

        Unreadable files are skipped; they will be diffed against empty text
        when they next change.

        Returns:
            Number of files seeded
        """
        root = Path(root).resolve()
        count = 0
        for dirpath, dirnames, filenames in os.walk(root):
            # Prune ignored directories in place
            dirnames[:] = sorted(
                d for d in dirnames if not self.config.is_ignored(Path(dirpath, d), root)
            )
            for name in sorted(filenames):
                path = Path(dirpath, name)
                if not self.config.is_tracked(path, root):
                    continue
                try:
                    self._snapshots[path] = read_source(path)
                except (OSError, UnicodeDecodeError):
                    continue
                count += 1

        logger.info("Seeded %d file snapshots under %s", count, root)
        return count

    def forget(self, path: Path) -> None:
        """Drop the snapshot of a deleted file."""
        self._snapshots.pop(Path(path).resolve(), None)

    def record_change(self, path: Path) -> Optional[str]:
        """Diff the current content of ``path`` against its snapshot and persist it.

        Args:
            path: File reported as changed

        Returns:
            The change id of the new change group, or None when nothing was
            recorded (unreadable file, no content change, or a failed write)
        """
        path = Path(path).resolve()

        try:
            content = read_source(path)
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read %s: %s", path, e)
            return None

        old = self._snapshots.get(path, "")
        if old == content:
            return None

        hunks = self.differ.diff(old, content)
        if not hunks:
            return None

        change_id = str(uuid.uuid4())
        changed_at = utc_now()
        file_path = str(path)

        for data in hunks:
            hunk = Hunk(
                file_path=file_path,
                change_id=change_id,
                hunk_index=data.index,
                old_start=data.old_start,
                old_count=data.old_count,
                new_start=data.new_start,
                new_count=data.new_count,
                before_lines=data.before_lines,
                after_lines=data.after_lines,
                changed_at=changed_at,
            )
            try:
                self.sink.append(hunk)
            except StoreError as e:
                logger.error(
                    "Failed to save change %s for %s at hunk %d of %d: %s",
                    change_id, file_path, data.index, len(hunks), e,
                )
                return None

        self._snapshots[path] = content
        logger.debug("Recorded change %s for %s (%d hunks)", change_id, file_path, len(hunks))
        return change_id
