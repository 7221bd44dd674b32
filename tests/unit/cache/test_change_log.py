"""Tests for the persistent change log."""

import logging

import pytest

from bob.cache.change_log import (
    COMPACTION_FLOOR,
    ChangeLog,
    ChangeLogError,
    LogEntry,
    LogParseError,
    ModifiedTime,
)

DIGEST = bytes.fromhex("a9993e364706816aba3e25717850c26c9cd0d89d")


class TestLogEntry:
    """Parsing and formatting single lines."""

    def test_round_trip_with_hash(self):
        entry = LogEntry("/src/main.c", ModifiedTime(1700000000, 123456789), DIGEST)
        line = entry.format()
        assert line == "/src/main.c 1700000000 123456789 a9993e364706816aba3e25717850c26c9cd0d89d"
        assert LogEntry.parse(line) == entry

    def test_round_trip_without_hash(self):
        entry = LogEntry("/src/classes", ModifiedTime(5, 0))
        assert entry.format() == "/src/classes 5 0"
        assert LogEntry.parse(entry.format()) == entry

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "/src/main.c",
            "/src/main.c 1",
            "/src/main.c 1 2 abcd extra",
            "/src/main.c one 2",
            "/src/main.c 1 2 not-hex",
            "/src/main.c  2",
        ],
    )
    def test_malformed_lines_raise(self, line):
        with pytest.raises(LogParseError):
            LogEntry.parse(line)

    def test_paths_with_whitespace_are_not_loggable(self):
        assert LogEntry("/src/main.c", ModifiedTime(1, 2)).is_loggable
        assert not LogEntry("/my src/main.c", ModifiedTime(1, 2)).is_loggable


class TestModifiedTime:
    """Splitting nanosecond timestamps."""

    def test_from_ns(self):
        assert ModifiedTime.from_ns(1_700_000_000_123_456_789) == ModifiedTime(1_700_000_000, 123_456_789)

    def test_of_path(self, tmp_path):
        path = tmp_path / "file.txt"
        path.write_text("x")
        assert ModifiedTime.of(path) == ModifiedTime.from_ns(path.stat().st_mtime_ns)


class TestChangeLog:
    """Opening, appending and reloading."""

    def test_open_creates_file_and_parent(self, tmp_path):
        path = tmp_path / "target" / "bob.log"
        with ChangeLog.open(path) as change_log:
            assert len(change_log) == 0
        assert path.exists()

    def test_entries_survive_reopen(self, tmp_path):
        path = tmp_path / "bob.log"
        entry = LogEntry("/src/a.c", ModifiedTime(1, 2), DIGEST)
        with ChangeLog.open(path) as change_log:
            change_log.add(entry)
        with ChangeLog.open(path) as change_log:
            assert change_log.get("/src/a.c") == entry

    def test_last_added_entry_wins(self, tmp_path):
        path = tmp_path / "bob.log"
        with ChangeLog.open(path) as change_log:
            change_log.add(LogEntry("/src/a.c", ModifiedTime(1, 0), DIGEST))
            change_log.add(LogEntry("/src/a.c", ModifiedTime(2, 0)))
            assert change_log.get("/src/a.c") == LogEntry("/src/a.c", ModifiedTime(2, 0))
        with ChangeLog.open(path) as change_log:
            assert change_log.get("/src/a.c") == LogEntry("/src/a.c", ModifiedTime(2, 0))
            assert change_log.stale_count == 1

    def test_unknown_path_returns_none(self, tmp_path):
        with ChangeLog.open(tmp_path / "bob.log") as change_log:
            assert change_log.get("/nope") is None

    def test_corrupted_log_is_truncated(self, tmp_path, caplog):
        path = tmp_path / "bob.log"
        path.write_text("/src/a.c 1 2\nthis is not a log line at all\n")
        with caplog.at_level(logging.INFO, logger="bob.cache.change_log"):
            with ChangeLog.open(path) as change_log:
                assert len(change_log) == 0
                assert change_log.get("/src/a.c") is None
        assert path.stat().st_size == 0
        assert any("corrupted" in record.message for record in caplog.records)

    def test_undecodable_log_is_truncated(self, tmp_path):
        path = tmp_path / "bob.log"
        path.write_bytes(b"/src/a.c 1 2\n\xff\xfe\xfd 1 2\n")
        with ChangeLog.open(path) as change_log:
            assert len(change_log) == 0
        assert path.stat().st_size == 0

    def test_usable_after_truncation(self, tmp_path):
        path = tmp_path / "bob.log"
        path.write_text("garbage\n")
        entry = LogEntry("/src/a.c", ModifiedTime(1, 2))
        with ChangeLog.open(path) as change_log:
            change_log.add(entry)
        assert path.read_text() == "/src/a.c 1 2\n"

    def test_whitespace_path_kept_in_memory_only(self, tmp_path, caplog):
        path = tmp_path / "bob.log"
        entry = LogEntry("/my src/a.c", ModifiedTime(1, 2))
        with caplog.at_level(logging.WARNING, logger="bob.cache.change_log"):
            with ChangeLog.open(path) as change_log:
                change_log.add(entry)
                assert change_log.get("/my src/a.c") == entry
        assert path.read_text() == ""
        assert caplog.records

    def test_add_after_close_raises(self, tmp_path):
        change_log = ChangeLog.open(tmp_path / "bob.log")
        change_log.close()
        with pytest.raises(ChangeLogError):
            change_log.add(LogEntry("/src/a.c", ModifiedTime(1, 2)))

    def test_load_after_close_raises(self, tmp_path):
        change_log = ChangeLog.open(tmp_path / "bob.log")
        change_log.close()
        with pytest.raises(ChangeLogError, match="closed"):
            change_log._load()

    def test_open_failure_raises_change_log_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(ChangeLogError):
            ChangeLog.open(blocker / "bob.log")


class TestCompaction:
    """Rewriting the log down to effective entries."""

    def test_compact_keeps_only_latest_entries(self, tmp_path):
        path = tmp_path / "bob.log"
        with ChangeLog.open(path) as change_log:
            for seconds in range(5):
                change_log.add(LogEntry("/src/a.c", ModifiedTime(seconds, 0)))
            change_log.add(LogEntry("/src/b.c", ModifiedTime(9, 0)))
            change_log.compact()
            assert change_log.stale_count == 0
            # Still appendable after the file was replaced
            change_log.add(LogEntry("/src/c.c", ModifiedTime(1, 1)))

        assert path.read_text().splitlines() == ["/src/a.c 4 0", "/src/b.c 9 0", "/src/c.c 1 1"]

    def test_compact_if_needed_below_floor(self, tmp_path):
        with ChangeLog.open(tmp_path / "bob.log") as change_log:
            for seconds in range(10):
                change_log.add(LogEntry("/src/a.c", ModifiedTime(seconds, 0)))
            assert not change_log.compact_if_needed()

    def test_compact_if_needed_when_stale_lines_dominate(self, tmp_path):
        path = tmp_path / "bob.log"
        with ChangeLog.open(path) as change_log:
            for seconds in range(COMPACTION_FLOOR + 2):
                change_log.add(LogEntry("/src/a.c", ModifiedTime(seconds, 0)))
            assert change_log.compact_if_needed()
        assert path.read_text() == f"/src/a.c {COMPACTION_FLOOR + 1} 0\n"
