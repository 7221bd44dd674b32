"""Change detection: persistent change log and content hashing."""

from .change_log import ChangeLog, ChangeLogError, LogEntry, LogParseError, ModifiedTime
from .sha1 import Sha1, sha1, sha1_file

__all__ = [
    "ChangeLog",
    "ChangeLogError",
    "LogEntry",
    "LogParseError",
    "ModifiedTime",
    "Sha1",
    "sha1",
    "sha1_file",
]
