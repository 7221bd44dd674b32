"""Dependency scheduler for build units.

Tracks the state of every unit and hands out units whose dependencies have
all succeeded. State changes follow a fixed machine:

    UNCLEAN -> PLANNED -> RUNNING -> SUCCEEDED
                                  -> FAILED
    UNCLEAN / PLANNED -> FAILED      (blocked by a failed dependency, or cancelled)
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class UnitState(Enum):
    """Lifecycle state of a unit within one build."""

    UNCLEAN = "unclean"
    PLANNED = "planned"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UnitState.SUCCEEDED, UnitState.FAILED)


_TRANSITIONS: dict[UnitState, frozenset[UnitState]] = {
    UnitState.UNCLEAN: frozenset({UnitState.PLANNED, UnitState.FAILED}),
    UnitState.PLANNED: frozenset({UnitState.RUNNING, UnitState.FAILED}),
    UnitState.RUNNING: frozenset({UnitState.SUCCEEDED, UnitState.FAILED}),
    UnitState.SUCCEEDED: frozenset(),
    UnitState.FAILED: frozenset(),
}


class CyclicDependencyError(ValueError):
    """Raised when the scheduled units contain a dependency cycle."""

    pass


class InvalidTransitionError(RuntimeError):
    """Raised on a state change the machine does not allow."""

    pass


@dataclass
class UnitTask:
    """Scheduling record for one unit.

    Attributes:
        name: Unit (package) name
        dependencies: Names of units that must succeed first
        state: Current state
        error_message: Failure detail when FAILED
        start_time: Monotonic timestamp when the unit started running
        elapsed: Seconds spent running
    """

    name: str
    dependencies: list[str] = field(default_factory=list)
    state: UnitState = UnitState.UNCLEAN
    error_message: str = ""
    start_time: Optional[float] = None
    elapsed: float = 0.0


class UnitScheduler:
    """Schedules unit tasks based on their dependency DAG.

    Thread-safe: workers call mark_running() while the executor loop calls
    get_ready_tasks() and records results.

    Usage:
        scheduler = UnitScheduler()
        scheduler.add_task(UnitTask("libmath"))
        scheduler.add_task(UnitTask("app", dependencies=["libmath"]))
        scheduler.validate()

        while not scheduler.all_done():
            for task in scheduler.get_ready_tasks():   # now PLANNED
                pool.submit(build, task)
    """

    def __init__(self) -> None:
        self._tasks: dict[str, UnitTask] = {}
        self._lock = threading.Lock()

    def add_task(self, task: UnitTask) -> None:
        """Add a task to the scheduler.

        Raises:
            ValueError: If a task with the same name already exists.
        """
        with self._lock:
            if task.name in self._tasks:
                raise ValueError(f"Duplicate unit name: {task.name}")
            self._tasks[task.name] = task

    def validate(self) -> None:
        """Check that every dependency exists and that there are no cycles.

        Raises:
            ValueError: If a dependency references an unknown unit.
            CyclicDependencyError: If the dependency graph contains a cycle.
        """
        with self._lock:
            for task in self._tasks.values():
                for dep_name in task.dependencies:
                    if dep_name not in self._tasks:
                        raise ValueError(f"Unit '{task.name}' depends on unknown unit '{dep_name}'")
            self._detect_cycles()

    def _detect_cycles(self) -> None:
        """Iterative DFS with white/gray/black coloring."""
        WHITE, GRAY, BLACK = 0, 1, 2
        color: dict[str, int] = {name: WHITE for name in self._tasks}

        for start in self._tasks:
            if color[start] != WHITE:
                continue
            path: list[str] = [start]
            iterators = [iter(self._tasks[start].dependencies)]
            color[start] = GRAY
            while iterators:
                dep_name = next(iterators[-1], None)
                if dep_name is None:
                    color[path.pop()] = BLACK
                    iterators.pop()
                    continue
                if color[dep_name] == GRAY:
                    cycle = path[path.index(dep_name) :] + [dep_name]
                    raise CyclicDependencyError(f"Dependency cycle detected: {' -> '.join(cycle)}")
                if color[dep_name] == WHITE:
                    color[dep_name] = GRAY
                    path.append(dep_name)
                    iterators.append(iter(self._tasks[dep_name].dependencies))

    def get_ready_tasks(self) -> list[UnitTask]:
        """Move every UNCLEAN task whose dependencies all SUCCEEDED to PLANNED.

        Returns:
            The newly planned tasks, in registration order.
        """
        with self._lock:
            ready = []
            for task in self._tasks.values():
                if task.state is UnitState.UNCLEAN and self._deps_succeeded(task):
                    self._transition(task, UnitState.PLANNED)
                    ready.append(task)
            return ready

    def _deps_succeeded(self, task: UnitTask) -> bool:
        return all(self._tasks[dep].state is UnitState.SUCCEEDED for dep in task.dependencies)

    def _transition(self, task: UnitTask, state: UnitState) -> None:
        if state not in _TRANSITIONS[task.state]:
            raise InvalidTransitionError(f"Unit '{task.name}' can't go from {task.state.value} to {state.value}")
        task.state = state

    def mark_running(self, name: str) -> None:
        """PLANNED -> RUNNING. Called from the worker that picked the unit up."""
        with self._lock:
            task = self._get(name)
            self._transition(task, UnitState.RUNNING)
            task.start_time = time.monotonic()

    def mark_succeeded(self, name: str) -> None:
        with self._lock:
            task = self._get(name)
            self._transition(task, UnitState.SUCCEEDED)
            self._update_elapsed(task)

    def mark_failed(self, name: str, error: str) -> None:
        """Move a non-terminal task to FAILED with an error message."""
        with self._lock:
            task = self._get(name)
            self._transition(task, UnitState.FAILED)
            task.error_message = error
            self._update_elapsed(task)

    @staticmethod
    def _update_elapsed(task: UnitTask) -> None:
        if task.start_time is not None:
            task.elapsed = time.monotonic() - task.start_time

    def _get(self, name: str) -> UnitTask:
        if name not in self._tasks:
            raise KeyError(f"Unknown unit: {name}")
        return self._tasks[name]

    def get_task(self, name: str) -> UnitTask:
        """Get a task by name.

        Raises:
            KeyError: If the unit name doesn't exist.
        """
        with self._lock:
            return self._get(name)

    def get_blocked_tasks(self) -> list[tuple[UnitTask, str]]:
        """Return UNCLEAN tasks that can never run, with the failed dependency's name."""
        with self._lock:
            blocked = []
            for task in self._tasks.values():
                if task.state is not UnitState.UNCLEAN:
                    continue
                for dep_name in task.dependencies:
                    if self._tasks[dep_name].state is UnitState.FAILED:
                        blocked.append((task, dep_name))
                        break
            return blocked

    def all_done(self) -> bool:
        with self._lock:
            return all(t.state.is_terminal for t in self._tasks.values())

    def get_all_tasks(self) -> list[UnitTask]:
        with self._lock:
            return list(self._tasks.values())
