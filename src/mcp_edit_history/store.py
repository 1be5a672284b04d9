"""SQLite change store - the durable, append-only record of file edits.

One database per project lives under the application data directory.
Hunks are only ever inserted; nothing updates or deletes them. A single
connection is shared by the capture thread and the query handlers, and each
statement runs under one lock so neither side waits longer than a statement.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional

import portalocker

from .models import (
    GroupSummary,
    Hunk,
    ScaffoldRecord,
    format_timestamp,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

INSERT_COLUMNS = (
    "file_path, change_id, hunk_index, old_start, old_count, "
    "new_start, new_count, before_lines, after_lines, changed_at"
)
HUNK_COLUMNS = "id, " + INSERT_COLUMNS


class HistoryError(Exception):
    """Base exception for edit history operations."""
    pass


class SetupError(HistoryError):
    """Raised when the store cannot be created; the service cannot start."""
    pass


class StoreError(HistoryError):
    """Raised when a statement against the store fails."""
    pass


def _check_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit!r}")
    return limit


def _row_to_hunk(row: sqlite3.Row) -> Hunk:
    return Hunk(
        id=row["id"],
        file_path=row["file_path"],
        change_id=row["change_id"],
        hunk_index=row["hunk_index"],
        old_start=row["old_start"],
        old_count=row["old_count"],
        new_start=row["new_start"],
        new_count=row["new_count"],
        before_lines=row["before_lines"],
        after_lines=row["after_lines"],
        changed_at=parse_timestamp(row["changed_at"]),
    )


def _row_to_scaffold(row: sqlite3.Row) -> ScaffoldRecord:
    return ScaffoldRecord(
        id=row["id"],
        description=row["description"],
        content=row["content"],
        created_at=parse_timestamp(row["created_at"]),
    )


class ChangeStore:
    """Append-only SQLite store for hunks and scaffolds."""

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path, lock_timeout: float = 10.0):
        """Open (creating if needed) the store at ``db_path``.

        Args:
            db_path: Path to the SQLite database file
            lock_timeout: Seconds a statement waits on a database another
                server process has locked

        Raises:
            SetupError: If the directory, connection, or schema cannot be created
        """
        self.db_path = db_path
        self._lock = threading.Lock()
        self._connection: Optional[sqlite3.Connection] = None
        self._capture_lock: Optional[portalocker.Lock] = None
        logger.debug("edit history db location: %s", db_path)

        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SetupError(f"Cannot create data directory {db_path.parent}: {e}") from e

        try:
            self._connection = sqlite3.connect(
                str(db_path),
                timeout=lock_timeout,
                check_same_thread=False,  # We use our own lock
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA journal_mode = WAL")
            self._init_schema(self._connection)
        except (sqlite3.Error, OSError) as e:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
            raise SetupError(f"Cannot initialize store at {db_path}: {e}") from e

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        """Create the schema. Safe to run on every start."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
            INSERT OR REPLACE INTO schema_version (version) VALUES (1);

            -- One row per hunk; hunks sharing change_id form one save event
            CREATE TABLE IF NOT EXISTS file_changes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                file_path TEXT NOT NULL,
                change_id TEXT NOT NULL,
                hunk_index INTEGER NOT NULL,
                old_start INTEGER NOT NULL,
                old_count INTEGER NOT NULL,
                new_start INTEGER NOT NULL,
                new_count INTEGER NOT NULL,
                before_lines TEXT NOT NULL,
                after_lines TEXT NOT NULL,
                changed_at TEXT NOT NULL       -- ISO 8601, UTC
            );

            CREATE INDEX IF NOT EXISTS idx_changes_path ON file_changes(file_path, changed_at);
            CREATE INDEX IF NOT EXISTS idx_changes_change_id ON file_changes(change_id);
            CREATE INDEX IF NOT EXISTS idx_changes_changed_at ON file_changes(changed_at);

            -- Saved implementation plans
            CREATE TABLE IF NOT EXISTS scaffolds (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                description TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
        """)
        conn.commit()

    def claim_capture(self) -> bool:
        """Become the only process that appends hunks to this database.

        Two servers started on the same working tree see the same saves, so
        without a single writer every edit would be recorded twice. The
        claim is an exclusive lock on a file next to the database, held
        until ``close`` (or process exit).

        Returns:
            True if this store holds the claim, False if another process does

        Raises:
            StoreError: If the lock file cannot be opened
        """
        if self._capture_lock is not None:
            return True

        lock_path = self.db_path.with_name(self.db_path.name + ".capture.lock")
        lock = portalocker.Lock(str(lock_path), mode="a", fail_when_locked=True)
        try:
            lock.acquire()
        except portalocker.LockException:
            return False
        except OSError as e:
            raise StoreError(f"Cannot open capture lock {lock_path}: {e}") from e

        self._capture_lock = lock
        return True

    def close(self) -> None:
        """Release the capture claim and close the database connection."""
        if self._capture_lock is not None:
            self._capture_lock.release()
            self._capture_lock = None

        with self._lock:
            if self._connection is not None:
                try:
                    self._connection.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                except sqlite3.Error:
                    pass  # Closing anyway
                self._connection.close()
                self._connection = None

    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StoreError("Store is closed")
        return self._connection

    # ========== Hunks ==========

    def append(self, hunk: Hunk) -> int:
        """Persist one hunk.

        Returns:
            The row id assigned to the hunk (monotonically increasing)

        Raises:
            StoreError: If the insert fails
        """
        with self._lock:
            try:
                conn = self._conn()
                cursor = conn.execute(f"""
                    INSERT INTO file_changes ({INSERT_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    hunk.file_path,
                    hunk.change_id,
                    hunk.hunk_index,
                    hunk.old_start,
                    hunk.old_count,
                    hunk.new_start,
                    hunk.new_count,
                    hunk.before_lines,
                    hunk.after_lines,
                    format_timestamp(hunk.changed_at),
                ))
                conn.commit()
                return cursor.lastrowid
            except sqlite3.Error as e:
                raise StoreError(f"Failed to save file change: {e}") from e

    def query_by_path(self, file_path: str, limit: int) -> list[Hunk]:
        """Most recent hunks recorded for ``file_path``, newest first."""
        _check_limit(limit)
        with self._lock:
            try:
                cursor = self._conn().execute(f"""
                    SELECT {HUNK_COLUMNS}
                    FROM file_changes
                    WHERE file_path = ?
                    ORDER BY changed_at DESC, id DESC
                    LIMIT ?
                """, (file_path, limit))
                rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to query changes for {file_path}: {e}") from e
        return [_row_to_hunk(row) for row in rows]

    def query_by_change_id(self, change_id: str) -> list[Hunk]:
        """All hunks of one change group, in hunk order."""
        with self._lock:
            try:
                cursor = self._conn().execute(f"""
                    SELECT {HUNK_COLUMNS}
                    FROM file_changes
                    WHERE change_id = ?
                    ORDER BY hunk_index ASC, id ASC
                """, (change_id,))
                rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to query change {change_id}: {e}") from e
        return [_row_to_hunk(row) for row in rows]

    def list_recent_groups(self, limit: int) -> list[GroupSummary]:
        """One summary row per change group, most recent first."""
        _check_limit(limit)
        with self._lock:
            try:
                cursor = self._conn().execute("""
                    SELECT change_id,
                           MIN(file_path) AS file_path,
                           MAX(changed_at) AS changed_at,
                           COUNT(*) AS hunk_count,
                           MAX(id) AS last_id
                    FROM file_changes
                    GROUP BY change_id
                    ORDER BY changed_at DESC, last_id DESC
                    LIMIT ?
                """, (limit,))
                rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to list recent changes: {e}") from e
        return [
            GroupSummary(
                change_id=row["change_id"],
                file_path=row["file_path"],
                changed_at=parse_timestamp(row["changed_at"]),
                hunk_count=row["hunk_count"],
            )
            for row in rows
        ]

    # ========== Scaffolds ==========

    def save_scaffold(self, description: str, content: str) -> int:
        """Persist a scaffold and return its id."""
        with self._lock:
            try:
                conn = self._conn()
                cursor = conn.execute("""
                    INSERT INTO scaffolds (description, content, created_at)
                    VALUES (?, ?, ?)
                """, (description, content, format_timestamp(utc_now())))
                conn.commit()
                return cursor.lastrowid
            except sqlite3.Error as e:
                raise StoreError(f"Failed to save scaffold: {e}") from e

    def search_scaffolds(self, query: str, limit: int = 10) -> list[ScaffoldRecord]:
        """Scaffolds whose description contains ``query``, newest first."""
        _check_limit(limit)
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._lock:
            try:
                cursor = self._conn().execute("""
                    SELECT id, description, content, created_at
                    FROM scaffolds
                    WHERE description LIKE ? ESCAPE '\\'
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?
                """, (f"%{escaped}%", limit))
                rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to search scaffolds: {e}") from e
        return [_row_to_scaffold(row) for row in rows]

    def get_scaffold(self, scaffold_id: int) -> Optional[ScaffoldRecord]:
        with self._lock:
            try:
                cursor = self._conn().execute("""
                    SELECT id, description, content, created_at
                    FROM scaffolds
                    WHERE id = ?
                """, (scaffold_id,))
                row = cursor.fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to get scaffold {scaffold_id}: {e}") from e
        return _row_to_scaffold(row) if row is not None else None

    def list_recent_scaffolds(self, limit: int = 10) -> list[ScaffoldRecord]:
        _check_limit(limit)
        with self._lock:
            try:
                cursor = self._conn().execute("""
                    SELECT id, description, content, created_at
                    FROM scaffolds
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?
                """, (limit,))
                rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to list scaffolds: {e}") from e
        return [_row_to_scaffold(row) for row in rows]
