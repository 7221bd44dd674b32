"""Rule registry and dispatch.

A Rule is a kind of build action. The set is closed: every Rule belongs to
exactly one toolchain family, and which rules a unit needs is a pure function
of its package kind, the source extensions it contains and the platform it
targets. No filesystem access happens here; plan_actions only derives paths.

Family ordering:
    native:  CX_VARS -> C / CPP / OBJC / OBJCPP -> LD -> BUNDLE
    jvm:     JAVA_VARS -> KOTLIN -> JAVA -> JAVA_JAR
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from ..manifest import PackageKind

if TYPE_CHECKING:
    from .build_unit import BuildUnit


class RuleFamily(Enum):
    """Toolchain family; each family is realized by one generator."""

    NATIVE = "native"
    JVM = "jvm"


class Rule(Enum):
    """Build action kinds."""

    CX_VARS = "cx_vars"
    C = "c"
    CPP = "cpp"
    OBJC = "objc"
    OBJCPP = "objcpp"
    LD = "ld"
    BUNDLE = "bundle"
    JAVA_VARS = "java_vars"
    KOTLIN = "kotlin"
    JAVA = "java"
    JAVA_JAR = "java_jar"

    @property
    def family(self) -> RuleFamily:
        return RULE_FAMILIES[self]

    @property
    def suffixes(self) -> tuple[str, ...]:
        """Source extensions compiled by this rule (empty for non-compile rules)."""
        return SOURCE_SUFFIXES.get(self, ())

    def __str__(self) -> str:
        return self.value


RULE_FAMILIES: dict[Rule, RuleFamily] = {
    Rule.CX_VARS: RuleFamily.NATIVE,
    Rule.C: RuleFamily.NATIVE,
    Rule.CPP: RuleFamily.NATIVE,
    Rule.OBJC: RuleFamily.NATIVE,
    Rule.OBJCPP: RuleFamily.NATIVE,
    Rule.LD: RuleFamily.NATIVE,
    Rule.BUNDLE: RuleFamily.NATIVE,
    Rule.JAVA_VARS: RuleFamily.JVM,
    Rule.KOTLIN: RuleFamily.JVM,
    Rule.JAVA: RuleFamily.JVM,
    Rule.JAVA_JAR: RuleFamily.JVM,
}

SOURCE_SUFFIXES: dict[Rule, tuple[str, ...]] = {
    Rule.C: (".c",),
    Rule.CPP: (".cpp", ".cc", ".cxx"),
    Rule.OBJC: (".m",),
    Rule.OBJCPP: (".mm",),
    Rule.KOTLIN: (".kt",),
    Rule.JAVA: (".java",),
}

NATIVE_COMPILE_RULES: tuple[Rule, ...] = (Rule.C, Rule.CPP, Rule.OBJC, Rule.OBJCPP)
JVM_COMPILE_RULES: tuple[Rule, ...] = (Rule.KOTLIN, Rule.JAVA)

CX_SUFFIXES: frozenset[str] = frozenset(s for r in NATIVE_COMPILE_RULES for s in SOURCE_SUFFIXES[r])
OBJC_SUFFIXES: frozenset[str] = frozenset(SOURCE_SUFFIXES[Rule.OBJC] + SOURCE_SUFFIXES[Rule.OBJCPP])
CXX_SUFFIXES: frozenset[str] = frozenset(SOURCE_SUFFIXES[Rule.CPP] + SOURCE_SUFFIXES[Rule.OBJCPP])
JVM_SUFFIXES: frozenset[str] = frozenset(s for r in JVM_COMPILE_RULES for s in SOURCE_SUFFIXES[r])

# Static ordering: within a family an action never runs before one listed earlier.
RULE_ORDER: tuple[Rule, ...] = (
    Rule.CX_VARS,
    Rule.C,
    Rule.CPP,
    Rule.OBJC,
    Rule.OBJCPP,
    Rule.LD,
    Rule.BUNDLE,
    Rule.JAVA_VARS,
    Rule.KOTLIN,
    Rule.JAVA,
    Rule.JAVA_JAR,
)


def must_precede(first: Rule, second: Rule) -> bool:
    """Whether actions of ``first`` must complete before actions of ``second`` start.

    Compile rules of one family are independent of each other; every other
    pair in the same family is ordered by RULE_ORDER. Rules of different
    families are never ordered.
    """
    if first.family is not second.family or first is second:
        return False
    compile_rules = NATIVE_COMPILE_RULES + JVM_COMPILE_RULES
    if first in NATIVE_COMPILE_RULES and second in NATIVE_COMPILE_RULES:
        return False
    if first in compile_rules and second in compile_rules:
        # Java compiles against Kotlin output
        return first is Rule.KOTLIN and second is Rule.JAVA
    return RULE_ORDER.index(first) < RULE_ORDER.index(second)


def is_apple_platform(platform: str) -> bool:
    return platform == "darwin"


def select_rules(
    kind: PackageKind,
    suffixes: Iterable[str],
    platform: str,
    has_bundle: bool = False,
    has_jar: bool = False,
    is_test: bool = False,
) -> list[Rule]:
    """Choose the rules a unit needs.

    Args:
        kind: Package kind
        suffixes: Source file extensions present (e.g. {".c", ".h"})
        platform: Target platform (sys.platform style: "darwin", "linux", "win32")
        has_bundle: Manifest declares bundle metadata
        has_jar: Manifest declares jar metadata
        is_test: Test build (no packaging rules)

    Returns:
        Rules in RULE_ORDER. Empty for prebuilt archives and units without
        compilable sources.
    """
    if kind is PackageKind.EXTERNAL_JAR:
        return []
    present = set(suffixes)
    rules: list[Rule] = []

    native = [rule for rule in NATIVE_COMPILE_RULES if present & set(rule.suffixes)]
    if native:
        rules.append(Rule.CX_VARS)
        rules.extend(native)
        rules.append(Rule.LD)
        if kind is PackageKind.BINARY and has_bundle and is_apple_platform(platform) and not is_test:
            rules.append(Rule.BUNDLE)

    jvm = [rule for rule in JVM_COMPILE_RULES if present & set(rule.suffixes)]
    if jvm:
        rules.append(Rule.JAVA_VARS)
        rules.extend(jvm)
        if kind is PackageKind.BINARY and has_jar and not is_test:
            rules.append(Rule.JAVA_JAR)

    return rules


@dataclass(frozen=True)
class Action:
    """One build step: a rule applied to inputs, producing outputs."""

    rule: Rule
    inputs: tuple[Path, ...] = ()
    outputs: tuple[Path, ...] = ()

    @property
    def family(self) -> RuleFamily:
        return self.rule.family


# ─── Artifact paths ───────────────────────────────────────────────────────────


def object_path(unit: BuildUnit, source: Path) -> Path:
    """Object file for a C-family source: <out_dir>/objects/<relative source>.o"""
    for base in (unit.source_dir, unit.gen_dir):
        try:
            relative = source.relative_to(base)
            break
        except ValueError:
            continue
    else:
        relative = Path(source.name)
    return unit.out_dir / "objects" / f"{relative}.o"


def executable_path(unit: BuildUnit, platform: str) -> Path:
    name = f"test_{unit.name}" if unit.is_test else unit.name
    if platform == "win32":
        name += ".exe"
    return unit.out_dir / name


def static_library_path(unit: BuildUnit) -> Path:
    return unit.out_dir / f"lib{unit.name}.a"


def jar_path(unit: BuildUnit) -> Path:
    return unit.out_dir / f"{unit.name}-{unit.version}.jar"


def bundle_path(unit: BuildUnit) -> Path:
    return unit.out_dir / f"{unit.name}.app"


def linked_output(unit: BuildUnit, platform: str) -> Path:
    """The LD output: an executable for binaries, a static archive for libraries."""
    if unit.kind is PackageKind.BINARY:
        return executable_path(unit, platform)
    return static_library_path(unit)


def plan_actions(unit: BuildUnit, platform: str) -> list[Action]:
    """Turn a unit into its ordered list of actions.

    Args:
        unit: The unit to plan
        platform: Target platform

    Returns:
        Actions in dispatch order; one compile action per C-family source,
        one compile action per JVM language.
    """
    metadata = unit.manifest.package.metadata
    sources = [p for p in unit.source_files if p not in unit.compile_excludes]
    rules = select_rules(
        unit.kind,
        {p.suffix for p in sources},
        platform,
        has_bundle=metadata.bundle is not None,
        has_jar=metadata.jar is not None,
        is_test=unit.is_test,
    )

    actions: list[Action] = []
    objects: list[Path] = []
    for rule in rules:
        if rule in (Rule.CX_VARS, Rule.JAVA_VARS):
            actions.append(Action(rule))
        elif rule in NATIVE_COMPILE_RULES:
            for source in sources:
                if source.suffix in rule.suffixes:
                    obj = object_path(unit, source)
                    objects.append(obj)
                    actions.append(Action(rule, (source,), (obj,)))
        elif rule is Rule.LD:
            actions.append(Action(rule, tuple(objects), (linked_output(unit, platform),)))
        elif rule is Rule.BUNDLE:
            actions.append(Action(rule, (executable_path(unit, platform),), (bundle_path(unit),)))
        elif rule in JVM_COMPILE_RULES:
            # kotlinc reads Java sources too, for mixed-language references
            inputs = [p for p in sources if p.suffix in (JVM_SUFFIXES if rule is Rule.KOTLIN else rule.suffixes)]
            actions.append(Action(rule, tuple(inputs), (unit.classes_dir,)))
        elif rule is Rule.JAVA_JAR:
            actions.append(Action(rule, (unit.classes_dir,), (jar_path(unit),)))
        else:
            raise ValueError(f"Unhandled rule: {rule}")
    return actions


def expected_artifacts(actions: list[Action]) -> list[Path]:
    """Every output the actions produce; a missing one makes the unit dirty."""
    outputs: list[Path] = []
    for action in actions:
        for output in action.outputs:
            if output not in outputs:
                outputs.append(output)
    return outputs


def primary_artifacts(actions: list[Action]) -> dict[RuleFamily, Path]:
    """The final output of each family (last action wins)."""
    artifacts: dict[RuleFamily, Path] = {}
    for action in actions:
        if action.outputs:
            artifacts[action.family] = action.outputs[-1]
    return artifacts
