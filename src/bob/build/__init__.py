"""Build graph, rule dispatch and parallel execution.

Import the executor from bob.build.executor; it pulls in the generators.
"""

from .build_context import BuildParams, resolve_jobs
from .build_profiles import BuildProfile
from .build_unit import BuildGraph, BuildUnit, DependencyCycleError

__all__ = [
    "BuildGraph",
    "BuildParams",
    "BuildProfile",
    "BuildUnit",
    "DependencyCycleError",
    "resolve_jobs",
]
