"""Build parameters.

BuildParams flows from the CLI into graph construction and the executor. It
holds only what the user chose on the command line (plus resolved profile
flags); everything else is derived from the manifests.
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..paths import DEFAULT_TARGET_DIR
from .build_profiles import BuildProfile, ProfileFlags, get_profile


def resolve_jobs(single_threaded: bool = False, jobs: Optional[int] = None) -> int:
    """Resolve the worker count.

    Args:
        single_threaded: Force one worker
        jobs: Explicit worker count

    Returns:
        1 when single-threaded, the explicit count when given, otherwise the
        number of CPUs.

    Raises:
        ValueError: If an explicit count is less than 1.
    """
    if single_threaded:
        return 1
    if jobs is not None:
        if jobs < 1:
            raise ValueError(f"Thread count must be at least 1, got {jobs}")
        return jobs
    return os.cpu_count() or 1


@dataclass(frozen=True)
class BuildParams:
    """Parameters for one build invocation.

    Attributes:
        manifest_dir: Absolute directory holding the root bob.toml
        target_dir: Absolute build root (change log, output directories)
        profile: Build profile enum value
        profile_flags: Pre-resolved profile flags
        target: Target triple for cross-compilation, None for the host
        jobs: Worker count
        verbose: Whether to enable verbose output
        is_test: Build the test entry points instead of the program
        use_javac_server: Compile Java through the persistent compile server
        platform: Host platform identifier (sys.platform)
    """

    manifest_dir: Path
    target_dir: Path
    profile: BuildProfile
    profile_flags: ProfileFlags
    target: Optional[str]
    jobs: int
    verbose: bool = False
    is_test: bool = False
    use_javac_server: bool = True
    platform: str = sys.platform

    @classmethod
    def create(
        cls,
        manifest_dir: Path,
        target_dir: Optional[Path] = None,
        profile: BuildProfile = BuildProfile.DEBUG,
        target: Optional[str] = None,
        jobs: Optional[int] = None,
        verbose: bool = False,
        is_test: bool = False,
        use_javac_server: bool = True,
        platform: str = sys.platform,
    ) -> "BuildParams":
        """Create BuildParams with absolute paths and resolved profile flags."""
        manifest_dir = manifest_dir.absolute()
        if target_dir is None:
            target_dir = manifest_dir / DEFAULT_TARGET_DIR
        elif not target_dir.is_absolute():
            target_dir = manifest_dir / target_dir
        return cls(
            manifest_dir=manifest_dir,
            target_dir=target_dir,
            profile=profile,
            profile_flags=get_profile(profile),
            target=target,
            jobs=jobs if jobs is not None else resolve_jobs(),
            verbose=verbose,
            is_test=is_test,
            use_javac_server=use_javac_server,
            platform=platform,
        )

    @property
    def target_platform(self) -> str:
        """Platform the artifacts are built for, derived from the triple when cross-compiling."""
        if self.target:
            if "apple" in self.target or "darwin" in self.target:
                return "darwin"
            if "windows" in self.target:
                return "win32"
            if "linux" in self.target:
                return "linux"
        return self.platform
