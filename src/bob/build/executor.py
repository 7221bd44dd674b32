"""Parallel unit executor.

Connects the UnitScheduler with a thread pool:

1. Units whose dependencies all succeeded are submitted to the pool
2. A worker decides whether its unit is dirty (change log entries for its
   sources, its manifest and the artifacts of its dependencies), plans the
   unit's actions and hands them to one generator per rule family
3. The main loop records results: change log entries for succeeded units,
   collected errors for failed ones
4. Units blocked by a failed dependency are failed without running
5. cancel() or Ctrl-C stops scheduling; running units finish, the rest fail

Only the main loop appends to the change log, and only for units that
succeeded, so an interrupted or failed unit is rebuilt next time.
"""

import logging
import shlex
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..cache.change_log import ChangeLog, ChangeLogError, LogEntry, ModifiedTime
from ..cache.sha1 import sha1_file
from ..generators import Generator, default_generators
from ..generators.messages import ActionSpec, GeneratorRequest
from ..manifest import DependencySource, PackageKind
from .build_profiles import KOTLINC_WARNING_FLAGS, get_compile_flags, get_javac_flags, get_link_flags
from .build_unit import BuildGraph, BuildUnit
from .error_collector import BuildError, ErrorCollector
from .progress_display import NullCallback, ProgressCallback
from .rules import Action, Rule, RuleFamily, expected_artifacts, plan_actions, primary_artifacts
from .scheduler import UnitScheduler, UnitState, UnitTask

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.02


class UnitBuildError(RuntimeError):
    """Raised inside a worker when a generator reports failure.

    Attributes:
        phase: Rule family (or "prepare") that failed
        output: Captured toolchain output
    """

    def __init__(self, message: str, phase: str, output: str = "") -> None:
        super().__init__(message)
        self.phase = phase
        self.output = output


@dataclass
class UnitResult:
    """Outcome of one unit.

    Attributes:
        name: Package name
        state: Final state (SUCCEEDED or FAILED)
        rebuilt: Whether actions ran for the unit
        actions_run: Number of actions realized by generators
        elapsed: Seconds spent in the worker
        error_message: Failure detail
        artifacts: Outputs of the unit (reused ones included when up to date)
        dirty_inputs: Inputs that caused the rebuild
        entries: Change log entries to append once the unit succeeded
    """

    name: str
    state: UnitState
    rebuilt: bool = False
    actions_run: int = 0
    elapsed: float = 0.0
    error_message: str = ""
    artifacts: list[Path] = field(default_factory=list)
    dirty_inputs: list[str] = field(default_factory=list)
    entries: list[LogEntry] = field(default_factory=list)


@dataclass
class BuildReport:
    """Result of Executor.run()."""

    results: dict[str, UnitResult]
    elapsed: float
    success: bool
    cancelled: bool = False

    @property
    def rebuilt(self) -> list[str]:
        return [name for name, result in self.results.items() if result.rebuilt and result.state is UnitState.SUCCEEDED]

    @property
    def failed(self) -> list[str]:
        return [name for name, result in self.results.items() if result.state is UnitState.FAILED]

    @property
    def actions_run(self) -> int:
        return sum(result.actions_run for result in self.results.values())


class Executor:
    """Builds every unit of a graph, dependencies first, in parallel.

    Args:
        graph: Resolved build unit graph.
        change_log: Open change log of the build root.
        generators: Generator per rule family (defaults to native + JVM).
        callback: Progress callback.
        error_collector: Collects toolchain failures for the final report.
    """

    def __init__(
        self,
        graph: BuildGraph,
        change_log: ChangeLog,
        generators: Optional[dict[RuleFamily, Generator]] = None,
        callback: Optional[ProgressCallback] = None,
        error_collector: Optional[ErrorCollector] = None,
    ) -> None:
        self.graph = graph
        self.params = graph.params
        self.change_log = change_log
        self.generators = generators if generators is not None else default_generators()
        self.callback: ProgressCallback = callback if callback is not None else NullCallback()
        self.error_collector = error_collector if error_collector is not None else ErrorCollector()
        self.platform = self.params.target_platform
        self._cancelled = False
        self._lock = threading.Lock()
        self._completed = 0
        self._rebuilt: set[str] = set()

    def run(self) -> BuildReport:
        """Build the graph.

        Returns:
            BuildReport with one result per unit.
        """
        start_time = time.monotonic()
        self._cancelled = False
        self._completed = 0
        self._rebuilt = set()

        scheduler = UnitScheduler()
        for unit in self.graph:
            scheduler.add_task(UnitTask(unit.name, dependencies=list(unit.dependencies)))
        scheduler.validate()

        results: dict[str, UnitResult] = {}
        active_futures: dict[Future[UnitResult], str] = {}
        cancelled = False

        with ThreadPoolExecutor(max_workers=self.params.jobs, thread_name_prefix="bob-unit") as pool:
            try:
                while not scheduler.all_done():
                    if self._is_cancelled():
                        cancelled = True
                        self._drain(active_futures, scheduler, results)
                        self._fail_remaining_tasks(scheduler, results, "Build cancelled")
                        break

                    self._fail_blocked_tasks(scheduler, results)

                    for task in scheduler.get_ready_tasks():
                        if self._is_cancelled():
                            break
                        unit = self.graph[task.name]
                        rebuilt_deps = [dep for dep in unit.dependencies if dep in self._rebuilt]
                        future = pool.submit(self._build_unit, unit, scheduler, rebuilt_deps)
                        active_futures[future] = task.name

                    self._process_completed_futures(active_futures, scheduler, results)
                    time.sleep(_POLL_INTERVAL)

            except KeyboardInterrupt:
                for future in active_futures:
                    future.cancel()
                self._fail_remaining_tasks(scheduler, results, "Interrupted by user")
                raise

        success = not cancelled and all(t.state is UnitState.SUCCEEDED for t in scheduler.get_all_tasks())
        ordered = {unit.name: results[unit.name] for unit in self.graph if unit.name in results}
        return BuildReport(results=ordered, elapsed=time.monotonic() - start_time, success=success, cancelled=cancelled)

    def cancel(self) -> None:
        """Request cancellation. Thread-safe."""
        with self._lock:
            self._cancelled = True

    def _is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    # ─── Main loop helpers ────────────────────────────────────────────────────

    def _process_completed_futures(
        self,
        active_futures: dict[Future[UnitResult], str],
        scheduler: UnitScheduler,
        results: dict[str, UnitResult],
    ) -> None:
        completed = [f for f in active_futures if f.done()]
        for future in completed:
            name = active_futures.pop(future)
            try:
                result = future.result()
            except KeyboardInterrupt:
                raise
            except UnitBuildError as e:
                self._record_failure(scheduler, results, name, str(e), e.phase, e.output)
                continue
            except Exception as e:
                logger.debug(f"Unit {name} raised", exc_info=True)
                self._record_failure(scheduler, results, name, f"{type(e).__name__}: {e}", "prepare")
                continue

            try:
                for entry in result.entries:
                    self.change_log.add(entry)
            except ChangeLogError as e:
                self._record_failure(scheduler, results, name, str(e), "change log")
                continue

            self.graph[name].artifacts = list(result.artifacts)
            if result.rebuilt:
                self._rebuilt.add(name)
            scheduler.mark_succeeded(name)
            task = scheduler.get_task(name)
            result.state = UnitState.SUCCEEDED
            result.elapsed = task.elapsed
            results[name] = result
            self._completed += 1

            if result.rebuilt:
                detail = f"compiled ({result.actions_run} actions, {task.elapsed:.1f}s)"
            else:
                detail = "up to date"
            self.callback.on_progress(name, UnitState.SUCCEEDED, self._completed, len(self.graph), detail)

    def _record_failure(
        self,
        scheduler: UnitScheduler,
        results: dict[str, UnitResult],
        name: str,
        message: str,
        phase: str,
        output: str = "",
    ) -> None:
        scheduler.mark_failed(name, message)
        task = scheduler.get_task(name)
        results[name] = UnitResult(name=name, state=UnitState.FAILED, elapsed=task.elapsed, error_message=message)
        self.error_collector.add_error(BuildError(name, phase, message, output or None))
        self._completed += 1
        self.callback.on_progress(name, UnitState.FAILED, self._completed, len(self.graph), f"FAILED {message}")

    def _fail_blocked_tasks(self, scheduler: UnitScheduler, results: dict[str, UnitResult]) -> None:
        """Fail every unit whose dependency failed; repeats until nothing is left blocked."""
        blocked = scheduler.get_blocked_tasks()
        while blocked:
            for task, failed_dep in blocked:
                message = f"Dependency '{failed_dep}' failed"
                scheduler.mark_failed(task.name, message)
                results[task.name] = UnitResult(name=task.name, state=UnitState.FAILED, error_message=message)
                self._completed += 1
                self.callback.on_progress(task.name, UnitState.FAILED, self._completed, len(self.graph), message)
            blocked = scheduler.get_blocked_tasks()

    def _drain(
        self,
        active_futures: dict[Future[UnitResult], str],
        scheduler: UnitScheduler,
        results: dict[str, UnitResult],
    ) -> None:
        """Wait for running units, recording their results."""
        for future in list(active_futures):
            if future.cancel():
                active_futures.pop(future)
        while active_futures:
            self._process_completed_futures(active_futures, scheduler, results)
            time.sleep(_POLL_INTERVAL)

    def _fail_remaining_tasks(self, scheduler: UnitScheduler, results: dict[str, UnitResult], reason: str) -> None:
        for task in scheduler.get_all_tasks():
            if not task.state.is_terminal:
                scheduler.mark_failed(task.name, reason)
                results[task.name] = UnitResult(name=task.name, state=UnitState.FAILED, error_message=reason)

    # ─── Worker ───────────────────────────────────────────────────────────────

    def _build_unit(self, unit: BuildUnit, scheduler: UnitScheduler, rebuilt_deps: list[str]) -> UnitResult:
        """Decide whether a unit is dirty and, if so, realize its actions.

        Runs in a worker thread. Never touches the change log except to read.

        Raises:
            UnitBuildError: If a generator reports failure.
            OSError: If inputs can't be read.
        """
        scheduler.mark_running(unit.name)
        self.callback.on_progress(unit.name, UnitState.RUNNING, self._completed, len(self.graph), "checking")

        actions = plan_actions(unit, self.platform)
        dirty_inputs, entries = self._check_inputs(unit)
        artifacts = self._unit_artifacts(unit, actions)
        missing = [str(p) for p in expected_artifacts(actions) if not p.exists()]

        reasons = list(dirty_inputs)
        reasons += [f"dependency {dep}" for dep in rebuilt_deps]
        reasons += [f"missing {p}" for p in missing]
        result = UnitResult(name=unit.name, state=UnitState.RUNNING, artifacts=artifacts, dirty_inputs=dirty_inputs, entries=entries)
        if not reasons:
            logger.debug(f"{unit.name} is up to date")
            return result

        logger.debug(f"{unit.name} is dirty: {', '.join(reasons[:5])}")
        result.rebuilt = True
        for family in RuleFamily:
            family_actions = [a for a in actions if a.family is family]
            if not family_actions:
                continue
            generator = self.generators.get(family)
            if generator is None:
                raise UnitBuildError(f"No generator for {family.value} actions", family.value)
            request = self._make_request(unit, family, family_actions)
            response = generator.generate(request)
            if not response.success:
                raise UnitBuildError(response.message, family.value, response.output)
            result.actions_run += response.actions_run
        return result

    def _tracked_inputs(self, unit: BuildUnit) -> list[tuple[str, Path, bool]]:
        """(log key, path, hashed) for every input of a unit.

        Sources and the manifest are logged under their own path and hashed.
        Artifacts of dependencies are logged under
        <out_dir>/deps/<dependency>/<artifact name>, so each dependent keeps its
        own record of what it was last built against; only their mtime is
        compared since bob alone rewrites them.
        """
        inputs = [(str(path), path, True) for path in [*unit.source_files, unit.manifest_path]]
        for name in self.graph.transitive_dependencies(unit.name):
            for artifact in self.graph[name].artifacts:
                key = unit.out_dir / "deps" / name / artifact.name
                inputs.append((str(key), artifact, False))
        return inputs

    def _check_inputs(self, unit: BuildUnit) -> tuple[list[str], list[LogEntry]]:
        """Compare a unit's tracked inputs against the change log.

        An input is dirty when it has no entry, or when its mtime or its
        content hash differs from the logged one.

        Returns:
            Tuple of (dirty input keys, entries to append after success).

        Raises:
            OSError: If an input is missing or can't be read.
        """
        dirty: list[str] = []
        entries: list[LogEntry] = []
        for key, path, hashed in self._tracked_inputs(unit):
            modified = ModifiedTime.of(path)
            digest = sha1_file(path) if hashed and not path.is_dir() else None
            logged = self.change_log.get(key)
            if logged is None or logged.modified_time != modified or logged.hash != digest:
                dirty.append(key)
                entries.append(LogEntry(key, modified, digest))
        return dirty, entries

    def _unit_artifacts(self, unit: BuildUnit, actions: list[Action]) -> list[Path]:
        if unit.kind is PackageKind.EXTERNAL_JAR:
            return unit.sources_with_suffix(".jar")
        return list(primary_artifacts(actions).values())

    # ─── Requests ─────────────────────────────────────────────────────────────

    def _dependency_units(self, unit: BuildUnit) -> list[BuildUnit]:
        return [self.graph[name] for name in self.graph.transitive_dependencies(unit.name)]

    def _make_request(self, unit: BuildUnit, family: RuleFamily, actions: list[Action]) -> GeneratorRequest:
        artifact = primary_artifacts(actions)[family]
        request = GeneratorRequest(
            unit_name=unit.name,
            version=unit.version,
            family=family.value,
            actions=[ActionSpec(a.rule.value, [str(p) for p in a.inputs], [str(p) for p in a.outputs]) for a in actions],
            source_files=[],
            out_dir=str(unit.out_dir),
            artifact=str(artifact),
            platform=self.platform,
            strip=self.params.profile_flags.strip,
            use_javac_server=self.params.use_javac_server,
            jobs=self.params.jobs,
            metadata={"kind": unit.kind.value},
        )
        if family is RuleFamily.NATIVE:
            self._fill_native(request, unit, actions)
        else:
            self._fill_jvm(request, unit)
        return request

    def _fill_native(self, request: GeneratorRequest, unit: BuildUnit, actions: list[Action]) -> None:
        build = unit.manifest.build
        deps = self._dependency_units(unit)

        cflags = ["-DTEST"] if unit.is_test else []
        cflags += shlex.split(build.cflags)
        ldflags: list[str] = []
        pkg_config: list[str] = []
        for owner in [unit, *deps]:
            for ext in owner.externals:
                if ext.source is DependencySource.LIBRARY and f"-l{ext.value}" not in ldflags:
                    ldflags.append(f"-l{ext.value}")
                elif ext.source is DependencySource.FRAMEWORK and ext.value not in ldflags:
                    ldflags += ["-framework", ext.value]
                elif ext.source is DependencySource.PKG_CONFIG and ext.value not in pkg_config:
                    pkg_config.append(ext.value)
        ldflags += shlex.split(build.ldflags)
        if unit.target:
            cflags.append(f"--target={unit.target}")
            ldflags.append(f"--target={unit.target}")

        request.source_files = [str(p) for a in actions for p in a.inputs if a.rule.suffixes]
        request.flags = {
            "cflags": get_compile_flags(unit.profile, cflags),
            "ldflags": get_link_flags(unit.profile, ldflags),
        }
        request.include_dirs = [str(d) for owner in [unit, *deps] for d in (owner.source_dir, owner.gen_dir)]
        request.link_inputs = [str(p) for dep in deps for p in dep.artifacts if p.suffix == ".a"]
        request.pkg_config = pkg_config

        if any(a.rule is Rule.BUNDLE for a in actions):
            bundle = unit.manifest.package.metadata.bundle
            assert bundle is not None
            request.metadata["bundle"] = {
                "name": unit.name,
                "identifier": unit.manifest.package.id,
                "version": unit.version,
                "copyright": bundle.copyright,
                "iconset": str(unit.manifest_dir / bundle.iconset) if bundle.iconset else None,
                "resources_dir": str(unit.manifest_dir / bundle.resources_dir),
            }

    def _fill_jvm(self, request: GeneratorRequest, unit: BuildUnit) -> None:
        build = unit.manifest.build
        classpath = dependency_classpath(self.graph, unit)

        request.source_files = [str(p) for p in unit.sources_with_suffix(*Rule.JAVA.suffixes, *Rule.KOTLIN.suffixes)]
        request.flags = {
            "javac_flags": get_javac_flags(unit.profile, shlex.split(build.javac_flags)),
            "kotlinc_flags": list(KOTLINC_WARNING_FLAGS) + shlex.split(build.kotlinc_flags),
        }
        request.classpath = classpath
        request.jars = [str(ext.path) for ext in unit.externals_of(DependencySource.JAR) if ext.path is not None]
        jar = unit.manifest.package.metadata.jar
        if jar is not None and jar.main_class:
            request.metadata["main_class"] = jar.main_class


def dependency_classpath(graph: BuildGraph, unit: BuildUnit) -> list[str]:
    """Class directories and jars of a unit's dependencies, then its manifest classpath.

    Dependency entries come from recorded artifacts, so this is only complete
    once the dependencies have been built (or found up to date).
    """
    classpath: list[str] = []
    for name in graph.transitive_dependencies(unit.name):
        dep = graph[name]
        classpath += [str(p) for p in dep.artifacts if p.suffix == ".jar" or p == dep.classes_dir]
    classpath += [str(unit.manifest_dir / entry) for entry in unit.manifest.build.classpath]
    return classpath
