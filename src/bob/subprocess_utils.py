"""Subprocess helpers for toolchain invocations.

All external tools (compilers, ninja, pkg-config, jar, the javac compile
server) are started through these wrappers so platform defaults are applied
in one place:

- CREATE_NO_WINDOW on Windows (no console window per compiler call)
- stdin=DEVNULL unless the caller passes stdin explicitly (``bob run`` does,
  so the program under test keeps the terminal)
"""

import logging
import subprocess
import sys
from typing import Any

logger = logging.getLogger(__name__)


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        subprocess.CREATE_NO_WINDOW on Windows, 0 elsewhere.
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def _apply_platform_defaults(kwargs: dict[str, Any]) -> dict[str, Any]:
    default_flags = get_subprocess_creation_flags()
    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL
    return kwargs


def safe_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
    """Execute subprocess.run with platform defaults applied.

    Args:
        cmd: Command and arguments
        **kwargs: Additional arguments passed to subprocess.run. An explicit
            ``creationflags`` is OR'd with the platform default; an explicit
            ``stdin`` (including None) is used as-is.

    Returns:
        CompletedProcess result from subprocess.run
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    return subprocess.run(cmd, **_apply_platform_defaults(kwargs))


def safe_popen(cmd: list[str], **kwargs: Any) -> subprocess.Popen:
    """Execute subprocess.Popen with platform defaults applied.

    Used for long-lived helper processes such as the javac compile server.

    Args:
        cmd: Command and arguments
        **kwargs: Additional arguments passed to subprocess.Popen

    Returns:
        Popen process handle
    """
    logger.debug(f"Starting: {' '.join(cmd)}")
    return subprocess.Popen(cmd, **_apply_platform_defaults(kwargs))


def run_tool(cmd: list[str], **kwargs: Any) -> tuple[int, str]:
    """Run a toolchain command and capture its combined output.

    Args:
        cmd: Command and arguments
        **kwargs: Additional arguments passed to subprocess.run (e.g. cwd)

    Returns:
        Tuple of (exit code, combined stdout and stderr). A missing executable
        is reported as exit code 127 with a diagnostic instead of raising.
    """
    try:
        result = safe_run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            **kwargs,
        )
    except FileNotFoundError:
        return 127, f"{cmd[0]}: command not found"
    return result.returncode, result.stdout or ""
