"""
Path configuration.

Centralized file names and locations used by bob. The temporary directory
that hosts the javac compile server can be relocated with BOB_TMP_DIR so
that parallel test sessions do not share a server.

Layout:
- Manifest: <manifest_dir>/bob.toml
- Build root: <manifest_dir>/target (or --target-dir)
- Change log: <target_dir>/bob.log
- Compile server: <tmp>/.bob/javac (socket) and <tmp>/.bob/server/ (classes)
"""

import os
import tempfile
from pathlib import Path

MANIFEST_FILE = "bob.toml"
CHANGE_LOG_FILE = "bob.log"
DEFAULT_TARGET_DIR = "target"
ENV_FILE = ".env"
JAR_CACHE_DIR = "jar-cache"


def get_tmp_dir() -> Path:
    """Return the directory used for per-user runtime files.

    Returns:
        BOB_TMP_DIR when set, otherwise <system tmp>/.bob
    """
    override = os.environ.get("BOB_TMP_DIR")
    if override:
        return Path(override)
    return Path(tempfile.gettempdir()) / ".bob"


def get_javac_socket_path() -> Path:
    """Return the Unix socket path of the javac compile server."""
    return get_tmp_dir() / "javac"


def get_javac_server_dir() -> Path:
    """Return the directory holding the compiled compile server classes."""
    return get_tmp_dir() / "server"


def get_change_log_path(target_dir: Path) -> Path:
    """Return the change log location for a build root."""
    return target_dir / CHANGE_LOG_FILE
