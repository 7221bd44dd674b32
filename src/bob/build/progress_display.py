"""Console progress for unit builds.

The executor reports every state change of every unit through a
ProgressCallback. BuildProgressDisplay renders those reports with rich:

    [1/3] libmath: up to date
    [2/3] libnet: compiled (4 actions, 0.8s)
    [3/3] app: FAILED native exited with code 1

On an interactive terminal (a TTY with NO_COLOR and CI unset) each line is
cut to the terminal width and a live footer lists the units still running.
Otherwise lines are printed in full with no live region, which keeps CI logs
readable.

Thread-safe: workers may report progress while the main loop renders.
"""

import os
import threading
import time
from typing import Any, Optional, Protocol, runtime_checkable

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from .scheduler import UnitState

_SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

_STATE_STYLES = {
    UnitState.UNCLEAN: "dim",
    UnitState.PLANNED: "dim",
    UnitState.RUNNING: "bold cyan",
    UnitState.SUCCEEDED: "green",
    UnitState.FAILED: "red bold",
}


@runtime_checkable
class ProgressCallback(Protocol):
    """Receives unit state changes from the executor."""

    def on_progress(self, unit_name: str, state: UnitState, completed: int, total: int, detail: str) -> None:
        """Called when a unit changes state.

        Args:
            unit_name: Package name of the unit.
            state: New state.
            completed: Units finished so far (including this one when terminal).
            total: Units in the build.
            detail: Human-readable status, e.g. "up to date" or a failure message.
        """
        ...


class NullCallback:
    """Discards progress updates; used by tests and non-interactive callers."""

    def on_progress(self, unit_name: str, state: UnitState, completed: int, total: int, detail: str) -> None:
        pass


def is_interactive(console: Console) -> bool:
    """Whether the console should get width-truncated lines and a live footer."""
    if os.environ.get("NO_COLOR") or os.environ.get("CI"):
        return False
    return console.is_terminal


def format_progress_line(completed: int, total: int, unit_name: str, detail: str) -> str:
    return f"[{completed}/{total}] {unit_name}: {detail}"


class BuildProgressDisplay:
    """Rich progress display implementing ProgressCallback.

    Args:
        console: Rich Console for rendering. If None, creates a new one.
        refresh_per_second: Live footer refresh rate.
        interactive: Force interactive mode on or off (detected when None).
    """

    def __init__(self, console: Optional[Console] = None, refresh_per_second: int = 10, interactive: Optional[bool] = None) -> None:
        self._console = console if console is not None else Console()
        self._refresh_per_second = refresh_per_second
        self._interactive = is_interactive(self._console) if interactive is None else interactive
        self._lock = threading.Lock()
        self._running: dict[str, float] = {}
        self._lines: list[str] = []
        self._live: Optional[Live] = None

    @property
    def interactive(self) -> bool:
        return self._interactive

    def on_progress(self, unit_name: str, state: UnitState, completed: int, total: int, detail: str) -> None:
        line = format_progress_line(completed, total, unit_name, detail)
        with self._lock:
            if state is UnitState.RUNNING:
                self._running[unit_name] = time.monotonic()
            elif state.is_terminal:
                self._running.pop(unit_name, None)
                self._lines.append(line)
            else:
                return

        if state.is_terminal:
            self._print_line(line, state)
        self.update()

    def _print_line(self, line: str, state: UnitState) -> None:
        text = Text(line, style=_STATE_STYLES[state])
        if self._interactive:
            text.truncate(self._console.width, overflow="ellipsis")
            self._console.print(text, no_wrap=True, soft_wrap=False)
        else:
            self._console.print(text, soft_wrap=True)

    def start(self) -> None:
        """Start the live footer (interactive consoles only)."""
        if not self._interactive:
            return
        self._live = Live(
            self._render_running(),
            console=self._console,
            refresh_per_second=self._refresh_per_second,
            transient=True,
        )
        self._live.start()

    def stop(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None

    def update(self) -> None:
        if self._live is not None:
            self._live.update(self._render_running())

    def _render_running(self) -> Group:
        table = Table(show_header=False, show_edge=False, box=None, padding=(0, 1), expand=False)
        table.add_column("Spinner", no_wrap=True)
        table.add_column("Unit", style="bold cyan", no_wrap=True)
        table.add_column("Elapsed", style="dim", no_wrap=True)

        now = time.monotonic()
        spinner = _SPINNER_FRAMES[int(now * 8) % len(_SPINNER_FRAMES)]
        with self._lock:
            running = sorted(self._running.items())
        for name, started in running:
            table.add_row(Text(spinner, style="magenta"), name, f"{now - started:.1f}s")
        return Group(table)

    def get_snapshot(self) -> dict[str, Any]:
        """Current state for tests: running unit names and printed lines."""
        with self._lock:
            return {"running": sorted(self._running), "lines": list(self._lines)}

    def __enter__(self) -> "BuildProgressDisplay":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()
