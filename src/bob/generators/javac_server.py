"""Client for the persistent javac compile server.

The server (resources/JavacServer.java) keeps one warm JVM with the system
Java compiler loaded and listens on a Unix socket. It is compiled and started
lazily on the first Java compilation of a build and shuts itself down after
ten idle minutes, so later builds reuse it.

Wire format, one request per connection:
    request:  "javac <args...>\\n"   (arguments with spaces are double-quoted)
    response: "<exit code>\\n<compiler output>"
"""

import logging
import socket
import subprocess
import threading
import time
from importlib import resources
from pathlib import Path
from typing import Optional

from ..paths import get_javac_server_dir, get_javac_socket_path
from ..subprocess_utils import run_tool, safe_popen
from ..utils import write_file_when_different

logger = logging.getLogger(__name__)

SERVER_CLASS = "JavacServer"
STARTUP_TIMEOUT = 30.0
_POLL_INTERVAL = 0.05


class JavacServerError(RuntimeError):
    """Raised when the compile server can't be started or answers garbage."""

    pass


def format_command(args: list[str]) -> str:
    """Join a javac command line the way the server parses it.

    Raises:
        JavacServerError: If an argument can't be represented (quotes or newlines).
    """
    parts = ["javac"]
    for arg in args:
        if '"' in arg or "\n" in arg:
            raise JavacServerError(f"Argument can't be sent to the compile server: {arg!r}")
        parts.append(f'"{arg}"' if (" " in arg or not arg) else arg)
    return " ".join(parts)


def parse_response(data: bytes) -> tuple[int, str]:
    """Split a server response into (exit code, output).

    Raises:
        JavacServerError: If the first line is not an integer exit code.
    """
    text = data.decode("utf-8", errors="replace")
    code, _, output = text.partition("\n")
    try:
        return int(code.strip()), output
    except ValueError:
        raise JavacServerError(f"Malformed compile server response: {text[:200]!r}") from None


class JavacServerClient:
    """Talks to (and if needed starts) the compile server.

    Thread-safe: concurrent workers share one client; the server handles each
    connection on its own thread.
    """

    def __init__(
        self,
        socket_path: Optional[Path] = None,
        server_dir: Optional[Path] = None,
        startup_timeout: float = STARTUP_TIMEOUT,
    ) -> None:
        self.socket_path = socket_path if socket_path is not None else get_javac_socket_path()
        self.server_dir = server_dir if server_dir is not None else get_javac_server_dir()
        self.startup_timeout = startup_timeout
        self._lock = threading.Lock()

    def compile(self, args: list[str]) -> tuple[int, str]:
        """Compile with the given javac arguments.

        Returns:
            Tuple of (javac exit code, compiler output).

        Raises:
            JavacServerError: If the server can't be started or reached.
        """
        line = format_command(args)
        self.ensure_started()
        try:
            return self._request(line)
        except OSError as e:
            raise JavacServerError(f"Compile server at {self.socket_path} is unreachable: {e}") from e

    def ensure_started(self) -> None:
        with self._lock:
            if self.is_running():
                return
            self._start()

    def is_running(self) -> bool:
        """Whether a server accepts connections on the socket.

        A socket file nobody listens on (server killed) is removed.
        """
        if not self.socket_path.exists():
            return False
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                sock.connect(str(self.socket_path))
            return True
        except (ConnectionRefusedError, FileNotFoundError):
            logger.debug(f"Removing stale compile server socket {self.socket_path}")
            self.socket_path.unlink(missing_ok=True)
            return False

    def _compile_server(self) -> None:
        source = self.server_dir / f"{SERVER_CLASS}.java"
        contents = resources.files("bob.generators").joinpath(f"resources/{SERVER_CLASS}.java").read_text(encoding="utf-8")
        changed = write_file_when_different(source, contents)
        class_file = self.server_dir / f"{SERVER_CLASS}.class"
        if changed or not class_file.exists():
            code, output = run_tool(["javac", "-d", str(self.server_dir), str(source)])
            if code != 0:
                raise JavacServerError(f"Can't compile {source}:\n{output}")

    def _start(self) -> None:
        self.server_dir.mkdir(parents=True, exist_ok=True)
        self._compile_server()
        logger.info(f"Starting javac compile server at {self.socket_path}")
        try:
            process = safe_popen(
                ["java", "-cp", str(self.server_dir), SERVER_CLASS, str(self.socket_path)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except FileNotFoundError:
            raise JavacServerError("java: command not found") from None

        deadline = time.monotonic() + self.startup_timeout
        while time.monotonic() < deadline:
            if self.socket_path.exists():
                return
            if process.poll() is not None:
                raise JavacServerError(f"Compile server exited during startup with code {process.returncode}")
            time.sleep(_POLL_INTERVAL)
        raise JavacServerError(f"Compile server did not start within {self.startup_timeout:.0f}s")

    def _request(self, line: str) -> tuple[int, str]:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.connect(str(self.socket_path))
            sock.sendall((line + "\n").encode("utf-8"))
            sock.shutdown(socket.SHUT_WR)
            chunks = []
            while True:
                chunk = sock.recv(65536)
                if not chunk:
                    break
                chunks.append(chunk)
        return parse_response(b"".join(chunks))
