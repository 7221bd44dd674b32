"""
Timestamped console output for bob.

Every user-facing line is prefixed with the time elapsed since the program
started, in MM:SS.cc format, so slow units and slow toolchains are easy to
spot in a build transcript.

Example output:
    00:00.02 Resolving dependencies...
    00:00.03       3 unit(s)
    00:00.03 PROFILE=debug JOBS=8
    00:01.10 Finished debug build of 3 unit(s) in 1.08s (1 up to date)

Usage:
    from bob.output import log, log_detail

    log("Resolving dependencies...")
    log_detail("Artifact: target/debug/app-0.1.0/app")
"""

import sys
import threading
import time
from pathlib import Path
from types import TracebackType
from typing import Optional, TextIO

_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None
_verbose: bool = False
_print_lock = threading.Lock()


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the program timer.

    Called by the CLI at startup. If never called, the first log line
    initializes it.

    Args:
        output_stream: Optional output stream (defaults to the current sys.stdout)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def set_verbose(verbose: bool) -> None:
    """
    Set verbose mode.

    Args:
        verbose: If True, messages marked verbose_only are printed too.
    """
    global _verbose
    _verbose = verbose


def get_elapsed() -> float:
    """
    Get elapsed time since timer initialization.

    Returns:
        Elapsed time in seconds
    """
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """
    Format the current elapsed time as MM:SS.cc.

    Returns:
        Formatted timestamp string
    """
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str) -> None:
    # Worker threads report progress concurrently; keep lines whole.
    line = f"{format_timestamp()} {message}\n"
    stream = _output_stream if _output_stream is not None else sys.stdout
    with _print_lock:
        stream.write(line)
        stream.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """
    Log a message with timestamp.

    Args:
        message: Message to log
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(message)


def log_detail(message: str, indent: int = 6, verbose_only: bool = False) -> None:
    """
    Log an indented detail line.

    Args:
        message: Detail message
        indent: Number of spaces to indent (default 6)
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(f"{' ' * indent}{message}")


def log_artifact(path: Path, verbose_only: bool = False) -> None:
    """Log the location of a produced artifact."""
    log_detail(f"Artifact: {path}", verbose_only=verbose_only)


def log_build_complete(profile: str, build_time: float, rebuilt: int, total: int) -> None:
    """
    Log the build summary line.

    Args:
        profile: Profile name ("debug" or "release")
        build_time: Total build time in seconds
        rebuilt: Number of units that ran actions
        total: Number of units in the graph
    """
    fresh = total - rebuilt
    suffix = f" ({fresh} up to date)" if fresh else ""
    _print(f"Finished {profile} build of {total} unit(s) in {build_time:.2f}s{suffix}")


def log_error(message: str) -> None:
    """
    Log an error message.

    Args:
        message: Error message
    """
    _print(f"ERROR: {message}")


def log_warning(message: str) -> None:
    """
    Log a warning message.

    Args:
        message: Warning message
    """
    _print(f"WARNING: {message}")


def log_success(message: str) -> None:
    _print(message)


class TimedLogger:
    """
    Context manager that logs an operation and how long it took.

    Usage:
        with TimedLogger("Resolving dependencies") as timer:
            graph = BuildGraph.resolve(params)
            timer.detail(f"{len(graph)} units")
    """

    def __init__(self, operation: str, verbose_only: bool = False):
        """
        Initialize timed logger.

        Args:
            operation: Description of the operation
            verbose_only: If True, only print if verbose mode is enabled
        """
        self.operation = operation
        self.verbose_only = verbose_only
        self.start_time = 0.0

    def __enter__(self) -> "TimedLogger":
        self.start_time = time.time()
        log(f"{self.operation}...", self.verbose_only)
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        del exc_val, exc_tb  # Unused
        elapsed = time.time() - self.start_time
        if exc_type is None:
            log_detail(f"Done ({elapsed:.2f}s)", verbose_only=True)
        return None

    def detail(self, message: str) -> None:
        """Log a detail message within this operation."""
        log_detail(message, verbose_only=self.verbose_only)
