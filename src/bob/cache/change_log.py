"""Persistent change log for incremental builds.

The change log remembers, per tracked input path, the modification time and
content hash observed when the input last took part in a successful build.
It is an append-only text file, one entry per line:

    <path> <mtime_secs> <mtime_nanos>[ <hex_sha1>]

Several lines may exist for the same path; the last one wins. Any line that
does not parse means the file can no longer be trusted, so it is truncated
and the build starts from an empty log (everything is rebuilt once).
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import IO, NamedTuple, Optional

logger = logging.getLogger(__name__)

# Compact once superseded lines outnumber live entries and exceed this floor.
COMPACTION_FLOOR = 256


class ChangeLogError(OSError):
    """Raised when the change log file cannot be opened or written."""

    pass


class LogParseError(ValueError):
    """Raised when a change log line is malformed."""

    pass


class ModifiedTime(NamedTuple):
    """File modification time split into whole seconds and nanoseconds."""

    seconds: int
    nanoseconds: int

    @classmethod
    def from_ns(cls, mtime_ns: int) -> ModifiedTime:
        return cls(mtime_ns // 1_000_000_000, mtime_ns % 1_000_000_000)

    @classmethod
    def of(cls, path: Path) -> ModifiedTime:
        """Read the modification time of a path.

        Raises:
            FileNotFoundError: If the path does not exist.
        """
        return cls.from_ns(path.stat().st_mtime_ns)


@dataclass(frozen=True)
class LogEntry:
    """One observation of a tracked input.

    Attributes:
        path: Absolute path of the input
        modified_time: Modification time when observed
        hash: SHA-1 digest of the contents, or None when content identity is
            irrelevant (directories, generated markers)
    """

    path: str
    modified_time: ModifiedTime
    hash: Optional[bytes] = None

    @classmethod
    def parse(cls, line: str) -> LogEntry:
        """Parse a single log line (without its trailing newline).

        Raises:
            LogParseError: If the line does not have exactly 3 or 4 fields,
                or a field has the wrong format.
        """
        fields = line.split(" ")
        if len(fields) not in (3, 4):
            raise LogParseError(f"Expected 3 or 4 fields, got {len(fields)}: {line!r}")
        path, secs, nanos = fields[0], fields[1], fields[2]
        if not all(fields):
            raise LogParseError(f"Empty field in {line!r}")
        try:
            modified_time = ModifiedTime(int(secs), int(nanos))
            digest = bytes.fromhex(fields[3]) if len(fields) == 4 else None
        except ValueError as e:
            raise LogParseError(f"Malformed field in {line!r}: {e}") from e
        return cls(path=path, modified_time=modified_time, hash=digest)

    def format(self) -> str:
        """Serialize to a log line (without trailing newline)."""
        line = f"{self.path} {self.modified_time.seconds} {self.modified_time.nanoseconds}"
        if self.hash is not None:
            line += f" {self.hash.hex()}"
        return line

    @property
    def is_loggable(self) -> bool:
        """Whether the path can be written to the space-separated format."""
        return bool(self.path) and not any(ch.isspace() for ch in self.path)


class ChangeLog:
    """Append-only store of LogEntry records backed by a text file.

    Thread-safe: workers may call get() while the executor appends; appends
    are serialized so each line reaches the file whole.

    Usage:
        with ChangeLog.open(target_dir / "bob.log") as change_log:
            entry = change_log.get("/abs/src/main.c")
            change_log.add(LogEntry("/abs/src/main.c", ModifiedTime(1, 2), digest))
    """

    def __init__(self, path: Path, handle: IO[str]) -> None:
        self.path = path
        self._handle: Optional[IO[str]] = handle
        self._entries: dict[str, LogEntry] = {}
        self._line_count = 0
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: Path) -> ChangeLog:
        """Open (creating if needed) the change log at path and load it.

        Raises:
            ChangeLogError: If the file cannot be opened or read.
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(path, "a+", encoding="utf-8", newline="\n")
        except OSError as e:
            raise ChangeLogError(f"Can't open change log {path}: {e}") from e

        change_log = cls(path, handle)
        try:
            change_log._load()
        except OSError as e:
            handle.close()
            raise ChangeLogError(f"Can't read change log {path}: {e}") from e
        return change_log

    def _load(self) -> None:
        if self._handle is None:
            raise ChangeLogError(f"Change log {self.path} is closed")
        self._handle.seek(0)
        try:
            contents = self._handle.read()
            entries = [LogEntry.parse(line) for line in contents.splitlines() if line]
        except (LogParseError, UnicodeDecodeError) as e:
            logger.info(f"Change log {self.path} is corrupted ({e}); starting with an empty log")
            self._handle.seek(0)
            self._handle.truncate(0)
            self._handle.flush()
            return

        for entry in entries:
            self._entries[entry.path] = entry
        self._line_count = len(entries)
        self._handle.seek(0, os.SEEK_END)
        logger.debug(f"Loaded {len(self._entries)} entries ({self._line_count} lines) from {self.path}")

    def get(self, path: str) -> Optional[LogEntry]:
        """Return the most recently added entry for path, if any."""
        with self._lock:
            return self._entries.get(path)

    def add(self, entry: LogEntry) -> None:
        """Append an entry durably, then make it visible to get().

        Paths that cannot be represented in the line format are remembered
        for this invocation only.

        Raises:
            ChangeLogError: If the log is closed or the write fails.
        """
        with self._lock:
            if self._handle is None:
                raise ChangeLogError(f"Change log {self.path} is closed")
            if entry.is_loggable:
                try:
                    self._handle.write(entry.format() + "\n")
                    self._handle.flush()
                    os.fsync(self._handle.fileno())
                except OSError as e:
                    raise ChangeLogError(f"Can't append to change log {self.path}: {e}") from e
                self._line_count += 1
            else:
                logger.warning(f"Not persisting change log entry for path with whitespace: {entry.path!r}")
            self._entries[entry.path] = entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def stale_count(self) -> int:
        """Number of persisted lines superseded by a later line."""
        with self._lock:
            return max(self._line_count - len(self._entries), 0)

    def compact(self) -> None:
        """Rewrite the file so it holds exactly one line per path.

        Uses an atomic temp-file + replace so an interrupted compaction leaves
        either the old or the new log, never a partial one.
        """
        with self._lock:
            if self._handle is None:
                raise ChangeLogError(f"Change log {self.path} is closed")
            live = [entry for entry in self._entries.values() if entry.is_loggable]
            temp_file = self.path.with_suffix(".tmp")
            try:
                with open(temp_file, "w", encoding="utf-8", newline="\n") as f:
                    f.writelines(entry.format() + "\n" for entry in live)
                    f.flush()
                    os.fsync(f.fileno())
                self._handle.close()
                self._handle = None
                temp_file.replace(self.path)
                self._handle = open(self.path, "a+", encoding="utf-8", newline="\n")
            except OSError as e:
                raise ChangeLogError(f"Can't compact change log {self.path}: {e}") from e
            self._line_count = len(live)
        logger.debug(f"Compacted {self.path} to {len(live)} entries")

    def compact_if_needed(self) -> bool:
        """Compact when superseded lines dominate the file.

        Returns:
            True if the log was compacted.
        """
        stale = self.stale_count
        if stale < COMPACTION_FLOOR or stale <= len(self):
            return False
        self.compact()
        return True

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None

    def __enter__(self) -> ChangeLog:
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()
