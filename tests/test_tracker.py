"""Tests for the change tracker."""

import logging

import pytest

from conftest import RecordingSink
from mcp_edit_history.diffing import extract_hunks
from mcp_edit_history.tracker import ChangeTracker


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def tracker(config, sink):
    return ChangeTracker(config, sink)


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)
    return path


class TestSeed:
    """Tests for the initial tree walk."""

    def test_seeds_tracked_files(self, tracker, temp_project):
        """Tracked files under the root get a snapshot."""
        app = write(temp_project / "src" / "app.py", "print('hi')\n")
        write(temp_project / "README.txt", "not source\n")

        count = tracker.seed(temp_project)

        assert count == 1
        assert tracker.snapshot(app) == "print('hi')\n"
        assert tracker.snapshot(temp_project / "README.txt") is None

    def test_skips_ignored_directories(self, tracker, temp_project):
        write(temp_project / "node_modules" / "lib.js", "x\n")
        write(temp_project / ".venv" / "site.py", "x\n")
        kept = write(temp_project / "lib.js", "y\n")

        assert tracker.seed(temp_project) == 1
        assert tracker.snapshot(kept) == "y\n"

    def test_skips_undecodable_files(self, tracker, temp_project):
        """Files that are not UTF-8 text are skipped silently."""
        (temp_project / "blob.py").write_bytes(b"\xff\xfe\x00binary")
        write(temp_project / "ok.py", "ok\n")

        assert tracker.seed(temp_project) == 1


class TestRecordChange:
    """Tests for diffing and persisting one file."""

    def test_first_sight_is_whole_file_insert(self, tracker, sink, temp_project):
        """A file without a snapshot is diffed against empty text."""
        path = write(temp_project / "new.py", "a\nb\n")

        change_id = tracker.record_change(path)

        assert change_id is not None
        assert len(sink.hunks) == 1
        hunk = sink.hunks[0]
        assert hunk.change_id == change_id
        assert hunk.file_path == str(path)
        assert (hunk.old_start, hunk.old_count) == (1, 0)
        assert (hunk.new_start, hunk.new_count) == (1, 2)
        assert hunk.after_lines == "a\nb"

    def test_records_edit_against_seeded_snapshot(self, tracker, sink, temp_project):
        path = write(temp_project / "app.py", "a\nb\nc\n")
        tracker.seed(temp_project)

        write(path, "a\nx\nc\n")
        tracker.record_change(path)

        [hunk] = sink.hunks
        assert (hunk.old_start, hunk.old_count, hunk.new_start, hunk.new_count) == (2, 1, 2, 1)
        assert hunk.before_lines == "b"
        assert hunk.after_lines == "x"
        assert tracker.snapshot(path) == "a\nx\nc\n"

    def test_unchanged_content_is_noop(self, tracker, sink, temp_project):
        """A notification without a content change mints nothing."""
        path = write(temp_project / "app.py", "same\n")
        tracker.seed(temp_project)

        assert tracker.record_change(path) is None
        assert sink.attempts == 0

    def test_group_shares_id_path_and_time(self, tracker, sink, temp_project):
        """All hunks of one change share change_id, file_path and changed_at."""
        lines = [f"line {i}\n" for i in range(1, 11)]
        path = write(temp_project / "app.py", "".join(lines))
        tracker.seed(temp_project)

        lines[1] = "two\n"
        lines[8] = "nine\n"
        write(path, "".join(lines))
        change_id = tracker.record_change(path)

        assert [h.hunk_index for h in sink.hunks] == [0, 1]
        assert {h.change_id for h in sink.hunks} == {change_id}
        assert {h.file_path for h in sink.hunks} == {str(path)}
        assert len({h.changed_at for h in sink.hunks}) == 1

    def test_each_change_gets_new_id(self, tracker, temp_project):
        path = write(temp_project / "app.py", "1\n")
        first = tracker.record_change(path)
        write(path, "2\n")
        second = tracker.record_change(path)

        assert first and second and first != second

    def test_crlf_content_compared_exactly(self, tracker, sink, temp_project):
        """Switching line endings is a change; reads do not translate newlines."""
        path = write(temp_project / "app.py", "a\nb\n")
        tracker.seed(temp_project)

        write(path, "a\r\nb\r\n")
        tracker.record_change(path)

        assert len(sink.hunks) == 1
        assert tracker.snapshot(path) == "a\r\nb\r\n"

    def test_read_failure_leaves_snapshot(self, tracker, sink, temp_project, caplog):
        """An unreadable file is logged and skipped."""
        path = write(temp_project / "app.py", "a\n")
        tracker.seed(temp_project)
        path.write_bytes(b"\xff\xfe not utf-8")

        with caplog.at_level(logging.ERROR, logger="mcp_edit_history.tracker"):
            assert tracker.record_change(path) is None

        assert tracker.snapshot(path) == "a\n"
        assert sink.hunks == []
        assert "Failed to read" in caplog.text

    def test_missing_file_is_skipped(self, tracker, temp_project):
        assert tracker.record_change(temp_project / "gone.py") is None


class TestPersistenceFailure:
    """The snapshot only advances after the whole group is stored."""

    def test_failed_write_keeps_baseline(self, config, temp_project, caplog):
        """A failed change is recomputed identically on the next event."""
        path = write(temp_project / "app.py", "a\nb\nc\n")
        failing = RecordingSink(fail_at=0)
        tracker = ChangeTracker(config, failing)
        tracker.seed(temp_project)

        write(path, "a\nx\nc\n")
        with caplog.at_level(logging.ERROR, logger="mcp_edit_history.tracker"):
            assert tracker.record_change(path) is None
        assert tracker.snapshot(path) == "a\nb\nc\n"
        assert "Failed to save change" in caplog.text

        failing.fail_at = None
        change_id = tracker.record_change(path)

        assert change_id is not None
        expected = extract_hunks("a\nb\nc\n", "a\nx\nc\n")
        assert [
            (h.hunk_index, h.old_start, h.old_count, h.new_start, h.new_count, h.before_lines, h.after_lines)
            for h in failing.hunks
        ] == [
            (e.index, e.old_start, e.old_count, e.new_start, e.new_count, e.before_lines, e.after_lines)
            for e in expected
        ]
        assert tracker.snapshot(path) == "a\nx\nc\n"

    def test_partial_group_abandons_remaining_hunks(self, config, temp_project):
        """A failure mid-group stops the group; earlier hunks stay written."""
        lines = [f"line {i}\n" for i in range(1, 11)]
        path = write(temp_project / "app.py", "".join(lines))
        sink = RecordingSink(fail_at=1)
        tracker = ChangeTracker(config, sink)
        tracker.seed(temp_project)

        lines[0] = "first\n"
        lines[5] = "sixth\n"
        lines[9] = "last\n"
        write(path, "".join(lines))

        assert tracker.record_change(path) is None
        assert len(sink.hunks) == 1
        assert sink.attempts == 2
        assert tracker.snapshot(path) != "".join(lines)


class TestForget:
    """Tests for deleted files."""

    def test_forget_drops_snapshot(self, tracker, temp_project):
        path = write(temp_project / "app.py", "a\n")
        tracker.seed(temp_project)

        path.unlink()
        tracker.forget(path)

        assert tracker.snapshot(path) is None
        assert tracker.tracked_count == 0

    def test_recreated_file_is_full_insert(self, tracker, sink, temp_project):
        path = write(temp_project / "app.py", "a\n")
        tracker.seed(temp_project)
        tracker.forget(path)

        write(path, "a\n")
        tracker.record_change(path)

        assert len(sink.hunks) == 1
        assert sink.hunks[0].old_count == 0
