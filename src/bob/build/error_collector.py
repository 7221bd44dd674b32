"""
Error Collector - structured collection of toolchain failures.

Workers record failures here instead of printing them as they happen, so a
parallel build reports every failed unit once, together, after the last
running unit has finished.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

# Captured compiler output is trimmed to this many characters per error
MAX_OUTPUT_CHARS = 4000


@dataclass
class BuildError:
    """Failure of one unit."""

    unit: str
    phase: str  # rule or generator family, e.g. "native", "jvm", "prepare"
    error_message: str
    output: Optional[str] = None

    def format(self) -> str:
        """Format error as human-readable string.

        Returns:
            Formatted error message
        """
        lines = [f"[ERROR] {self.unit} ({self.phase}): {self.error_message}"]
        if self.output:
            output = self.output.rstrip()
            if len(output) > MAX_OUTPUT_CHARS:
                output = "... (truncated)\n" + output[-MAX_OUTPUT_CHARS:]
            lines.append(output)
        return "\n".join(lines)


class ErrorCollector:
    """Collects errors from concurrently building units."""

    def __init__(self, max_errors: int = 100):
        """Initialize error collector.

        Args:
            max_errors: Maximum number of errors to keep
        """
        self.errors: list[BuildError] = []
        self.lock = threading.Lock()
        self.max_errors = max_errors

    def add_error(self, error: BuildError) -> None:
        """Add error to collection.

        Args:
            error: Build error to add
        """
        with self.lock:
            if len(self.errors) >= self.max_errors:
                logging.warning(f"ErrorCollector full ({self.max_errors} errors), dropping oldest")
                self.errors.pop(0)
            self.errors.append(error)

        logging.debug(f"Added error for {error.unit} ({error.phase}): {error.error_message}")

    def get_errors(self) -> list[BuildError]:
        with self.lock:
            return self.errors.copy()

    def has_errors(self) -> bool:
        with self.lock:
            return bool(self.errors)

    def format_errors(self, max_errors: Optional[int] = None) -> str:
        """Format all errors as a human-readable report.

        Args:
            max_errors: Maximum number of errors to include (None = all)

        Returns:
            Formatted error report
        """
        with self.lock:
            if not self.errors:
                return "No errors"

            errors_to_show = self.errors if max_errors is None else self.errors[:max_errors]
            lines = [err.format() for err in errors_to_show]
            if max_errors and len(self.errors) > max_errors:
                lines.append(f"... and {len(self.errors) - max_errors} more errors")
            return "\n\n".join(lines)
