"""
Typed messages exchanged between the executor and generators.

A generator receives everything it needs in one GeneratorRequest (no access
to the build graph) and answers with one GeneratorResponse. Generators talk
to the toolchains (ninja, compilers, the javac compile server); the executor
only sees these messages.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ActionSpec:
    """Plain-data form of one planned action.

    Attributes:
        rule: Rule value (e.g. "c", "ld", "java")
        inputs: Input paths
        outputs: Output paths
    """

    rule: str
    inputs: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)


@dataclass
class GeneratorRequest:
    """Executor → Generator: realize the actions of one unit for one toolchain family.

    Attributes:
        unit_name: Package name
        version: Package version
        family: Rule family value ("native" or "jvm")
        actions: Actions to realize, in order
        source_files: Sources handled by this family
        out_dir: Unit output directory
        artifact: Final artifact path expected from this family
        flags: Accumulated flags keyed by tool ("cflags", "ldflags", "javac_flags", "kotlinc_flags")
        include_dirs: Header search directories (own sources, generated sources, dependencies)
        link_inputs: Static archives of dependency units, dependents first
        classpath: Class directories and jars of dependencies
        pkg_config: pkg-config package names to expand into flags
        jars: Prebuilt jars to unpack into the classes directory
        platform: Target platform
        strip: Strip linked executables
        metadata: Packaging metadata (bundle identifier, main class, ...)
        use_javac_server: Compile Java through the persistent compile server
        jobs: Parallelism hint for the underlying tool (0 = tool default)
    """

    unit_name: str
    version: str
    family: str
    actions: list[ActionSpec]
    source_files: list[str]
    out_dir: str
    artifact: str
    flags: dict[str, list[str]] = field(default_factory=dict)
    include_dirs: list[str] = field(default_factory=list)
    link_inputs: list[str] = field(default_factory=list)
    classpath: list[str] = field(default_factory=list)
    pkg_config: list[str] = field(default_factory=list)
    jars: list[str] = field(default_factory=list)
    platform: str = ""
    strip: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    use_javac_server: bool = True
    jobs: int = 0


@dataclass
class GeneratorResponse:
    """Generator → Executor: outcome of a request.

    Attributes:
        unit_name: Package name
        family: Rule family value
        success: Whether every action succeeded
        artifact: Produced artifact path (None on failure)
        message: Short human-readable status
        output: Captured toolchain output
        actions_run: Number of actions realized
    """

    unit_name: str
    family: str
    success: bool
    artifact: Optional[str] = None
    message: str = ""
    output: str = ""
    actions_run: int = 0

    @classmethod
    def failure(cls, request: GeneratorRequest, message: str, output: str = "") -> "GeneratorResponse":
        return cls(unit_name=request.unit_name, family=request.family, success=False, message=message, output=output)
