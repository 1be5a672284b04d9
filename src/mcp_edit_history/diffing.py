"""Line-level diff extraction into positioned hunks.

Only the changed lines are kept: equal lines bound a hunk but are never part
of it. Positions are 1-based; an empty span starts where it would be
inserted, so ``lines[start - 1:start - 1 + count]`` is the span in every case.
"""

from __future__ import annotations

import difflib
import re
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class HunkData:
    """A hunk before it is tied to a file, change group, and time."""
    index: int
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    before_lines: str
    after_lines: str


_LINE_RE = re.compile(r"[^\n]*\n|[^\n]+")


def split_lines(text: str) -> list[str]:
    """Split into lines ending in a newline, keeping the terminators."""
    return _LINE_RE.findall(text)


def strip_terminator(line: str) -> str:
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n"):
        return line[:-1]
    return line


class Differ(Protocol):
    """Anything that turns two text versions into ordered hunks."""

    def diff(self, old: str, new: str) -> list[HunkData]:
        ...


def extract_hunks(old: str, new: str) -> list[HunkData]:
    """Compute the hunks that turn ``old`` into ``new``.

    Args:
        old: Previous text (empty string for a file seen for the first time)
        new: Current text

    Returns:
        Hunks ordered by position and indexed from 0. Empty if the texts
        are identical.
    """
    if old == new:
        return []

    # Terminators are kept for matching so a changed line ending counts as a
    # change; stored text uses the bare lines. Only "\n" ends a line: form
    # feeds and Unicode separators inside source text are line content.
    old_lines = split_lines(old)
    new_lines = split_lines(new)
    old_bare = [strip_terminator(line) for line in old_lines]
    new_bare = [strip_terminator(line) for line in new_lines]

    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)

    spans: list[list[int]] = []
    run = None
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            if run is not None:
                spans.append(run)
                run = None
            continue
        if run is None:
            run = [i1, i2, j1, j2]
        else:
            run[1] = i2
            run[3] = j2
    if run is not None:
        spans.append(run)

    return [
        HunkData(
            index=index,
            old_start=i1 + 1,
            old_count=i2 - i1,
            new_start=j1 + 1,
            new_count=j2 - j1,
            before_lines="\n".join(old_bare[i1:i2]),
            after_lines="\n".join(new_bare[j1:j2]),
        )
        for index, (i1, i2, j1, j2) in enumerate(spans)
    ]


class LineDiffer:
    """Default ``Differ`` backed by difflib."""

    def diff(self, old: str, new: str) -> list[HunkData]:
        return extract_hunks(old, new)
