"""Data models for recorded hunks, change groups, and scaffolds."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601 with timezone."""
    return dt.isoformat(timespec='milliseconds')


def parse_timestamp(s: str) -> datetime:
    """Parse ISO 8601 timestamp string."""
    return datetime.fromisoformat(s)


@dataclass(frozen=True)
class Hunk:
    """A contiguous block of changed lines from one save of one file.

    ``old_start``/``new_start`` are 1-based. For an empty span (pure insert
    or pure delete) the start is the position the span would occupy, so the
    span is always ``lines[start - 1:start - 1 + count]``.
    """
    file_path: str
    change_id: str
    hunk_index: int
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    before_lines: str
    after_lines: str
    changed_at: datetime
    id: int = 0  # Assigned by the store

    def header(self) -> str:
        """Unified-diff style range header."""
        return f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"

    def to_markdown(self) -> str:
        """Render hunk as markdown."""
        lines = [
            f"**ID {self.id}** `{self.file_path}` ({format_timestamp(self.changed_at)})",
            "",
            f"Change: {self.change_id} (hunk {self.hunk_index})",
            "",
            self.header(),
            "",
            "Before:",
            "```",
            self.before_lines,
            "```",
            "",
            "After:",
            "```",
            self.after_lines,
            "```",
        ]
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Convert hunk to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "file_path": self.file_path,
            "change_id": self.change_id,
            "hunk_index": self.hunk_index,
            "old_start": self.old_start,
            "old_count": self.old_count,
            "new_start": self.new_start,
            "new_count": self.new_count,
            "before_lines": self.before_lines,
            "after_lines": self.after_lines,
            "changed_at": format_timestamp(self.changed_at),
        }


@dataclass(frozen=True)
class GroupSummary:
    """One row per save event: the hunks sharing a change_id."""
    change_id: str
    file_path: str
    changed_at: datetime  # Latest timestamp in the group
    hunk_count: int

    def to_markdown(self) -> str:
        plural = "" if self.hunk_count == 1 else "s"
        return (
            f"**ID {self.change_id}** `{self.file_path}` "
            f"({format_timestamp(self.changed_at)}):\n\n{self.hunk_count} hunk{plural}"
        )

    def to_dict(self) -> dict:
        return {
            "change_id": self.change_id,
            "file_path": self.file_path,
            "changed_at": format_timestamp(self.changed_at),
            "hunk_count": self.hunk_count,
        }


@dataclass(frozen=True)
class ScaffoldRecord:
    """A saved implementation plan and the prompt that produced it."""
    id: int
    description: str
    content: str
    created_at: datetime

    def to_markdown(self) -> str:
        return f"**ID {self.id}**: {self.description}\n{self.content}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "content": self.content,
            "created_at": format_timestamp(self.created_at),
        }
