"""Filesystem helpers shared by graph construction, generators and the CLI."""

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

IGNORED_FILE_NAMES = frozenset({".DS_Store"})


def index_files(directory: Path) -> list[Path]:
    """List every file below a directory, recursively and in sorted order.

    Args:
        directory: Directory to walk

    Returns:
        Absolute file paths, sorted for deterministic ordering.

    Raises:
        FileNotFoundError: If the directory does not exist.
    """
    if not directory.is_dir():
        raise FileNotFoundError(f"Can't read directory: {directory}")
    files: list[Path] = []
    for root, dirs, names in os.walk(directory):
        dirs.sort()
        for name in sorted(names):
            if name in IGNORED_FILE_NAMES:
                continue
            files.append(Path(root, name).absolute())
    return files


def write_file_when_different(path: Path, contents: str) -> bool:
    """Write a text file unless it already holds exactly these contents.

    Leaving identical files untouched keeps their modification time, so
    downstream change detection does not see a spurious edit.

    Args:
        path: Destination file
        contents: Desired file contents

    Returns:
        True if the file was written, False if it was already up to date.
    """
    try:
        if path.read_text(encoding="utf-8") == contents:
            return False
    except FileNotFoundError:
        pass
    except UnicodeDecodeError:
        logger.debug(f"Replacing non-text file {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(contents, encoding="utf-8")
    return True


def directory_stats(directory: Path) -> tuple[int, int]:
    """Count files and total bytes below a directory.

    Returns:
        Tuple of (file count, total size in bytes); (0, 0) if missing.
    """
    count = 0
    size = 0
    if not directory.exists():
        return count, size
    for root, _dirs, names in os.walk(directory):
        for name in names:
            try:
                size += Path(root, name).stat().st_size
                count += 1
            except OSError:
                continue
    return count, size


def remove_dir(directory: Path) -> tuple[int, int]:
    """Remove a directory tree.

    Returns:
        Tuple of (files removed, bytes removed).
    """
    stats = directory_stats(directory)
    if directory.exists():
        shutil.rmtree(directory)
    return stats


def format_bytes(size: int) -> str:
    """Format a byte count for display (e.g. "1.5 MiB")."""
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"
