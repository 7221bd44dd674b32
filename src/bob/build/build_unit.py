"""Build units and the build unit graph.

A BuildUnit is one package taking part in a build: its manifest, its indexed
sources, the names of the units it depends on and the external (prebuilt or
system) dependencies it links against.

BuildGraph.resolve walks path dependencies from the root manifest with an
explicit stack, so deep dependency chains never hit the recursion limit and a
cycle is reported with its full path before anything is compiled.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ..manifest import Dependency, DependencySource, Manifest, ManifestError, PackageKind
from ..paths import JAR_CACHE_DIR, MANIFEST_FILE
from ..utils import index_files
from .build_context import BuildParams
from .build_profiles import BuildProfile
from .rules import CX_SUFFIXES, OBJC_SUFFIXES
from .templates import generate_test_main, process_templates

logger = logging.getLogger(__name__)


class DependencyCycleError(ManifestError):
    """Raised when path dependencies form a cycle.

    Attributes:
        cycle: Package names along the cycle, first and last equal
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


@dataclass(frozen=True)
class ExternalReference:
    """A leaf dependency provided by the toolchain or a prebuilt file.

    Attributes:
        name: Dependency name from the manifest
        source: LIBRARY, PKG_CONFIG, FRAMEWORK or JAR
        value: Library, pkg-config, framework or Java package name
        path: Local archive path (jars only)
    """

    name: str
    source: DependencySource
    value: str
    path: Optional[Path] = None


@dataclass
class BuildUnit:
    """One package participating in a build.

    Attributes:
        name: Package name
        version: Package version
        kind: Package kind
        manifest: Manifest with the host platform override merged
        manifest_dir: Absolute directory containing bob.toml
        target_dir: Build root
        profile: Build profile
        target: Target triple, None for the host
        is_main: The unit the user asked to build
        is_test: Test build
        source_files: Absolute source paths (indexed plus generated)
        dependencies: Names of the units this one depends on directly
        externals: Leaf dependencies
        compile_excludes: Sources tracked for changes but not compiled
        artifacts: Outputs recorded by the executor after a successful build
    """

    name: str
    version: str
    kind: PackageKind
    manifest: Manifest
    manifest_dir: Path
    target_dir: Path
    profile: BuildProfile
    target: Optional[str] = None
    is_main: bool = False
    is_test: bool = False
    source_files: list[Path] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    externals: list[ExternalReference] = field(default_factory=list)
    compile_excludes: set[Path] = field(default_factory=set)
    artifacts: list[Path] = field(default_factory=list)

    @property
    def manifest_path(self) -> Path:
        return self.manifest_dir / MANIFEST_FILE

    @property
    def source_dir(self) -> Path:
        return self.manifest_dir / "src"

    @property
    def out_dir(self) -> Path:
        """<target_dir>/[<triple>/]<profile>[-test]/<name>-<version>"""
        base = self.target_dir / self.target if self.target else self.target_dir
        profile_dir = f"{self.profile}-test" if self.is_test else str(self.profile)
        return base / profile_dir / f"{self.name}-{self.version}"

    @property
    def gen_dir(self) -> Path:
        return self.out_dir / "src-gen"

    @property
    def classes_dir(self) -> Path:
        return self.out_dir / "classes"

    @property
    def suffixes(self) -> set[str]:
        return {p.suffix for p in self.source_files}

    def sources_with_suffix(self, *suffixes: str) -> list[Path]:
        return [p for p in self.source_files if p.suffix in suffixes]

    def externals_of(self, source: DependencySource) -> list[ExternalReference]:
        return [ext for ext in self.externals if ext.source is source]

    def add_external(self, reference: ExternalReference) -> None:
        if all((ext.source, ext.value) != (reference.source, reference.value) for ext in self.externals):
            self.externals.append(reference)


class _VisitState(Enum):
    IN_PROGRESS = "in_progress"
    DONE = "done"


@dataclass
class _Frame:
    unit: BuildUnit
    pending: Iterator[Dependency]


class BuildGraph:
    """Arena of build units keyed by package name, dependencies first.

    Usage:
        graph = BuildGraph.resolve(params)
        for unit in graph:                 # dependencies before dependents
            ...
        graph.transitive_dependencies("app")
    """

    def __init__(self, params: BuildParams, root: str, units: dict[str, BuildUnit]) -> None:
        self.params = params
        self.root = root
        self.units = units

    def __len__(self) -> int:
        return len(self.units)

    def __iter__(self) -> Iterator[BuildUnit]:
        return iter(self.units.values())

    def __getitem__(self, name: str) -> BuildUnit:
        return self.units[name]

    @property
    def root_unit(self) -> BuildUnit:
        return self.units[self.root]

    def transitive_dependencies(self, name: str) -> list[str]:
        """All units reachable from name, dependents before their dependencies.

        This is the order static archives must appear on a link line.
        """
        reachable: set[str] = set()
        frontier = list(self.units[name].dependencies)
        while frontier:
            current = frontier.pop()
            if current not in reachable:
                reachable.add(current)
                frontier.extend(self.units[current].dependencies)
        return [unit for unit in reversed(self.units) if unit in reachable]

    @classmethod
    def resolve(cls, params: BuildParams) -> BuildGraph:
        """Load the root manifest and every path dependency reachable from it.

        Raises:
            ManifestError: For unreadable or invalid manifests, missing source
                directories, binary path dependencies, duplicate package names
                or missing jars.
            DependencyCycleError: If path dependencies form a cycle.
        """
        root_dir = params.manifest_dir.resolve()
        root = _load_unit(params, root_dir, is_main=True)
        state: dict[Path, _VisitState] = {root_dir: _VisitState.IN_PROGRESS}
        by_dir: dict[Path, BuildUnit] = {root_dir: root}
        names: dict[str, Path] = {root.name: root_dir}
        units: dict[str, BuildUnit] = {}
        stack = [_Frame(root, _path_dependencies(root))]

        while stack:
            frame = stack[-1]
            dep = next(frame.pending, None)
            if dep is None:
                stack.pop()
                state[frame.unit.manifest_dir] = _VisitState.DONE
                units[frame.unit.name] = frame.unit
                continue

            dep_dir = (frame.unit.manifest_dir / dep.value).resolve()
            visit = state.get(dep_dir)
            if visit is _VisitState.IN_PROGRESS:
                start = next(i for i, f in enumerate(stack) if f.unit.manifest_dir == dep_dir)
                cycle = [f.unit.name for f in stack[start:]] + [stack[start].unit.name]
                raise DependencyCycleError(cycle)

            if visit is _VisitState.DONE:
                dep_unit = by_dir[dep_dir]
            else:
                dep_unit = _load_unit(params, dep_dir, is_main=False)
                if dep_unit.kind is PackageKind.BINARY:
                    raise ManifestError(f"Dependency '{dep.name}' of '{frame.unit.name}' is a binary package; only libraries can be depended on")
                if dep_unit.name in names:
                    raise ManifestError(f"Package name '{dep_unit.name}' is used by both {names[dep_unit.name]} and {dep_dir}")
                names[dep_unit.name] = dep_dir
                by_dir[dep_dir] = dep_unit
                state[dep_dir] = _VisitState.IN_PROGRESS
                stack.append(_Frame(dep_unit, _path_dependencies(dep_unit)))

            if dep_unit.name not in frame.unit.dependencies:
                frame.unit.dependencies.append(dep_unit.name)

        graph = cls(params, root.name, units)
        for unit in graph:
            try:
                process_templates(unit)
                if unit.is_test and unit.is_main:
                    generate_test_main(unit)
            except OSError as e:
                raise ManifestError(f"Can't generate sources for '{unit.name}': {e}") from e
        logger.debug(f"Resolved {len(graph)} unit(s): {', '.join(graph.units)}")
        return graph


def _path_dependencies(unit: BuildUnit) -> Iterator[Dependency]:
    return (dep for dep in unit.manifest.dependencies.values() if dep.source is DependencySource.PATH)


def _load_unit(params: BuildParams, manifest_dir: Path, is_main: bool) -> BuildUnit:
    manifest = Manifest.load(manifest_dir / MANIFEST_FILE).for_platform(params.platform)
    try:
        sources = index_files(manifest_dir / "src")
    except FileNotFoundError as e:
        raise ManifestError(f"Package '{manifest.package.name}': {e}") from None

    unit = BuildUnit(
        name=manifest.package.name,
        version=manifest.package.version,
        kind=manifest.package.kind,
        manifest=manifest,
        manifest_dir=manifest_dir,
        target_dir=params.target_dir,
        profile=params.profile,
        target=params.target or manifest.build.target,
        is_main=is_main,
        is_test=params.is_test,
        source_files=sources,
    )
    for dep in manifest.dependencies.values():
        if dep.source is not DependencySource.PATH:
            unit.add_external(_external_reference(params, manifest_dir, dep))
    _add_implicit_externals(unit, params)
    return unit


def _external_reference(params: BuildParams, manifest_dir: Path, dep: Dependency) -> ExternalReference:
    if dep.source is not DependencySource.JAR:
        return ExternalReference(name=dep.name, source=dep.source, value=dep.value)

    assert dep.jar is not None
    if dep.jar.path is not None:
        jar = (manifest_dir / dep.jar.path).resolve()
    else:
        jar = params.target_dir / JAR_CACHE_DIR / f"{dep.name}-{dep.jar.version}.jar"
    if not jar.is_file():
        raise ManifestError(
            f"Jar for dependency '{dep.name}' not found at {jar}; artifacts are not downloaded, "
            f"place the jar there or set 'path'"
        )
    return ExternalReference(name=dep.name, source=DependencySource.JAR, value=dep.jar.package, path=jar)


def _add_implicit_externals(unit: BuildUnit, params: BuildParams) -> None:
    suffixes = unit.suffixes
    if suffixes & OBJC_SUFFIXES:
        unit.add_external(ExternalReference("Foundation", DependencySource.FRAMEWORK, "Foundation"))
    if suffixes & CX_SUFFIXES:
        if params.target_platform == "darwin":
            unit.add_external(ExternalReference("System", DependencySource.LIBRARY, "System"))
        if unit.is_test and unit.is_main:
            unit.add_external(ExternalReference("cunit", DependencySource.PKG_CONFIG, "cunit"))
