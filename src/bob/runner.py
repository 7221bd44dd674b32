"""Running build artifacts.

``bob run`` executes the root unit's artifact, preferring the most packaged
form that was built:

    application bundle -> executable jar -> native executable -> main class

``bob test`` runs the generated CUnit executable for C-family units and
JUnit (org.junit.runner.JUnitCore) over every ``*Test`` class for JVM units.
JUnit itself must be on the classpath through a jar dependency.

The child inherits the terminal; its exit code becomes bob's exit code.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from .build.build_unit import BuildGraph, BuildUnit
from .build.executor import dependency_classpath
from .build.rules import JVM_SUFFIXES, Rule, bundle_path, executable_path, jar_path, plan_actions
from .generators.jvm import find_main_class
from .manifest import PackageKind
from .subprocess_utils import safe_run

logger = logging.getLogger(__name__)

JUNIT_RUNNER = "org.junit.runner.JUnitCore"
TEST_CLASS_SUFFIX = "Test"


class RunError(RuntimeError):
    """Raised when there is nothing to run."""

    pass


def class_name(unit: BuildUnit, source: Path) -> str:
    """Fully qualified class name of a JVM source, from its path below src/ or src-gen/."""
    for base in (unit.source_dir, unit.gen_dir):
        try:
            relative = source.relative_to(base)
            break
        except ValueError:
            continue
    else:
        relative = Path(source.name)
    return ".".join(relative.with_suffix("").parts)


def runtime_classpath(graph: BuildGraph, unit: BuildUnit) -> str:
    return os.pathsep.join([str(unit.classes_dir), *dependency_classpath(graph, unit)])


def artifact_command(graph: BuildGraph, platform: str) -> list[str]:
    """Command line that runs the root unit's artifact.

    Raises:
        RunError: If the root unit is not a binary or produced nothing runnable.
    """
    unit = graph.root_unit
    if unit.kind is not PackageKind.BINARY:
        raise RunError(f"Package '{unit.name}' is a {unit.kind}, only binaries can be run")

    rules = {action.rule for action in plan_actions(unit, platform)}
    if Rule.BUNDLE in rules:
        return [str(bundle_path(unit) / "Contents" / "MacOS" / unit.name)]
    if Rule.JAVA_JAR in rules:
        return ["java", "-jar", str(jar_path(unit))]
    if Rule.LD in rules:
        return [str(executable_path(unit, platform))]
    if rules & {Rule.JAVA, Rule.KOTLIN}:
        jar = unit.manifest.package.metadata.jar
        main_class: Optional[str] = jar.main_class if jar is not None else None
        main_class = main_class or find_main_class(unit.sources_with_suffix(*JVM_SUFFIXES))
        if not main_class:
            raise RunError(f"Can't find a main class in '{unit.name}'")
        return ["java", "-cp", runtime_classpath(graph, unit), main_class]
    raise RunError("No build artifact to run")


def tests_command(graph: BuildGraph, platform: str) -> list[str]:
    """Command line that runs the root unit's tests.

    Raises:
        RunError: If the unit has no test entry point.
    """
    unit = graph.root_unit
    rules = {action.rule for action in plan_actions(unit, platform)}
    if Rule.LD in rules and unit.kind is PackageKind.BINARY:
        return [str(executable_path(unit, platform))]
    if rules & {Rule.JAVA, Rule.KOTLIN}:
        test_classes = [class_name(unit, p) for p in unit.sources_with_suffix(*JVM_SUFFIXES) if p.stem.endswith(TEST_CLASS_SUFFIX)]
        if not test_classes:
            raise RunError(f"No *{TEST_CLASS_SUFFIX} classes in '{unit.name}'")
        return ["java", "-cp", runtime_classpath(graph, unit), JUNIT_RUNNER, *sorted(test_classes)]
    raise RunError("No test artifact to run")


def run_command(cmd: list[str], cwd: Optional[Path] = None) -> int:
    """Run a command attached to the terminal and return its exit code (127 when not found)."""
    logger.debug(f"Executing {' '.join(cmd)}")
    try:
        # Inherit stdin so interactive programs work
        return safe_run(cmd, cwd=str(cwd) if cwd else None, stdin=None).returncode
    except FileNotFoundError:
        logger.error(f"{cmd[0]}: command not found")
        return 127


def run_artifact(graph: BuildGraph, platform: str, args: Optional[list[str]] = None) -> int:
    """Run the root unit's artifact with extra arguments; returns its exit code."""
    return run_command(artifact_command(graph, platform) + list(args or []), cwd=graph.root_unit.manifest_dir)


def run_tests(graph: BuildGraph, platform: str) -> int:
    """Run the root unit's tests; returns the runner's exit code."""
    return run_command(tests_command(graph, platform), cwd=graph.root_unit.manifest_dir)
