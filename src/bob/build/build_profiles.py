"""Build profile configuration.

Profiles declare every flag they contribute, per toolchain, so the rest of
the build never special-cases debug or release:

- native compile flags (optimization, debug info, DEBUG/RELEASE define)
- native link flags
- javac flags

Warning flags are shared by both profiles and always treat warnings as errors.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class BuildProfile(Enum):
    """Build profile enum for type-safe profile selection."""

    DEBUG = "debug"
    RELEASE = "release"

    def __str__(self) -> str:
        """Return the string value for directory names and display."""
        return self.value


@dataclass(frozen=True)
class ProfileFlags:
    """Flags a profile controls.

    Attributes:
        name: Profile identifier (matches BuildProfile enum value)
        description: Human-readable profile description
        compile_flags: C-family compilation flags
        link_flags: Linker flags
        javac_flags: Extra javac flags
        strip: Whether linked executables are stripped
    """

    name: str
    description: str
    compile_flags: tuple[str, ...]
    link_flags: tuple[str, ...]
    javac_flags: tuple[str, ...]
    strip: bool


WARNING_FLAGS: tuple[str, ...] = ("-Wall", "-Wextra", "-Wpedantic", "-Werror")
JAVAC_WARNING_FLAGS: tuple[str, ...] = ("-Xlint", "-Werror")
KOTLINC_WARNING_FLAGS: tuple[str, ...] = ("-Werror",)

PROFILES: dict[BuildProfile, ProfileFlags] = {
    BuildProfile.DEBUG: ProfileFlags(
        name="debug",
        description="Unoptimized build with debug info (default)",
        compile_flags=("-g", "-DDEBUG"),
        link_flags=("-g",),
        javac_flags=("-g",),
        strip=False,
    ),
    BuildProfile.RELEASE: ProfileFlags(
        name="release",
        description="Size-optimized, stripped build",
        compile_flags=("-Os", "-DRELEASE"),
        link_flags=("-Os",),
        javac_flags=(),
        strip=True,
    ),
}


def get_profile(profile: BuildProfile) -> ProfileFlags:
    """Get profile configuration by enum.

    Args:
        profile: BuildProfile enum value

    Returns:
        ProfileFlags for the requested profile
    """
    return PROFILES[profile]


def get_compile_flags(profile: BuildProfile, extra_flags: Optional[list[str]] = None) -> list[str]:
    """Get C-family compile flags: profile flags, warnings, then extra flags.

    Args:
        profile: BuildProfile enum value
        extra_flags: Manifest or dependency flags appended last so they can override

    Returns:
        Ordered compile flag list
    """
    return list(get_profile(profile).compile_flags) + list(WARNING_FLAGS) + list(extra_flags or [])


def get_link_flags(profile: BuildProfile, extra_flags: Optional[list[str]] = None) -> list[str]:
    return list(get_profile(profile).link_flags) + list(extra_flags or [])


def get_javac_flags(profile: BuildProfile, extra_flags: Optional[list[str]] = None) -> list[str]:
    return list(JAVAC_WARNING_FLAGS) + list(get_profile(profile).javac_flags) + list(extra_flags or [])


def format_profile_banner(profile: BuildProfile, target: Optional[str] = None, jobs: Optional[int] = None) -> str:
    """Format a build profile banner for display.

    Args:
        profile: BuildProfile enum value
        target: Target triple when cross-compiling
        jobs: Worker count

    Returns:
        Banner such as "PROFILE=release TARGET=aarch64-apple-darwin JOBS=8"
    """
    parts = [f"PROFILE={profile.value}"]
    if target:
        parts.append(f"TARGET={target}")
    if jobs:
        parts.append(f"JOBS={jobs}")
    return " ".join(parts)
