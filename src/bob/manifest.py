"""Project manifest model.

A project is described by a ``bob.toml`` file next to its ``src/`` directory:

    [package]
    name = "app"
    version = "0.1.0"
    kind = "binary"            # binary | library | external-jar

    [package.metadata.jar]
    main_class = "com.example.Main"

    [build]
    cflags = "-I/opt/include"
    ldflags = ""
    classpath = ["libs/extra.jar"]

    [build.linux]
    cflags = "-DLINUX"

    [dependencies]
    libmath = { path = "../libmath" }
    m = { library = "m" }
    sdl = { pkg_config = "sdl2" }
    cocoa = { framework = "Cocoa" }
    gson = { jar = { package = "com.google.gson", version = "2.10.1", path = "libs/gson.jar" } }
    junit = { maven = "junit:junit:4.13.2" }

Parsing is strict: a field of the wrong type raises ManifestError immediately
and a dependency must name exactly one sourcing method.
"""

import sys
import tomllib
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .paths import MANIFEST_FILE

MAVEN_CENTRAL = "https://repo1.maven.org/maven2"


class ManifestError(ValueError):
    """Raised when a manifest is missing, unreadable or invalid."""

    pass


class PackageKind(Enum):
    """What a package produces."""

    BINARY = "binary"
    LIBRARY = "library"
    EXTERNAL_JAR = "external-jar"

    def __str__(self) -> str:
        return self.value


class DependencySource(Enum):
    """How a dependency is sourced, in resolution order."""

    PATH = "path"
    LIBRARY = "library"
    PKG_CONFIG = "pkg_config"
    FRAMEWORK = "framework"
    JAR = "jar"


# Checked in this order; "maven" is shorthand for a jar artifact.
_SOURCE_KEYS: tuple[tuple[str, DependencySource], ...] = (
    ("path", DependencySource.PATH),
    ("library", DependencySource.LIBRARY),
    ("pkg_config", DependencySource.PKG_CONFIG),
    ("framework", DependencySource.FRAMEWORK),
    ("jar", DependencySource.JAR),
    ("maven", DependencySource.JAR),
)

_PLATFORM_SECTIONS = {"darwin": "macos", "linux": "linux", "win32": "windows"}


def _expect(table: dict[str, Any], key: str, expected: type, context: str, default: Any = None, required: bool = False) -> Any:
    """Fetch a typed field from a TOML table.

    Raises:
        ManifestError: If the field is missing (when required) or has the wrong type.
    """
    if key not in table:
        if required:
            raise ManifestError(f"Missing required field '{context}.{key}'")
        return default
    value = table[key]
    # TOML booleans are ints in Python; don't accept them where ints are expected
    if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
        raise ManifestError(f"Field '{context}.{key}' must be a {expected.__name__}, got {type(value).__name__}")
    return value


def _expect_str_list(table: dict[str, Any], key: str, context: str) -> tuple[str, ...]:
    values = _expect(table, key, list, context, default=[])
    for item in values:
        if not isinstance(item, str):
            raise ManifestError(f"Field '{context}.{key}' must be a list of strings")
    return tuple(values)


@dataclass(frozen=True)
class JarMetadata:
    """Executable jar packaging options.

    Attributes:
        main_class: Fully qualified main class; detected from sources when None
    """

    main_class: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JarMetadata":
        return cls(main_class=_expect(data, "main_class", str, "package.metadata.jar"))


@dataclass(frozen=True)
class BundleMetadata:
    """macOS application bundle options.

    Attributes:
        copyright: NSHumanReadableCopyright value
        iconset: Path (relative to the manifest) of an .iconset directory
        resources_dir: Directory (relative to the manifest) copied into Contents/Resources
        lipo: Build a universal binary
    """

    copyright: Optional[str] = None
    iconset: Optional[str] = None
    resources_dir: str = "res"
    lipo: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BundleMetadata":
        context = "package.metadata.bundle"
        return cls(
            copyright=_expect(data, "copyright", str, context),
            iconset=_expect(data, "iconset", str, context),
            resources_dir=_expect(data, "resources_dir", str, context, default="res"),
            lipo=_expect(data, "lipo", bool, context, default=False),
        )


@dataclass(frozen=True)
class AndroidMetadata:
    """Android SDK levels. Parsed for compatibility; APK packaging is not built."""

    min_sdk_version: int = 21
    target_sdk_version: int = 34

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AndroidMetadata":
        context = "package.metadata.android"
        return cls(
            min_sdk_version=_expect(data, "min_sdk_version", int, context, default=21),
            target_sdk_version=_expect(data, "target_sdk_version", int, context, default=34),
        )


@dataclass(frozen=True)
class PackageMetadata:
    jar: Optional[JarMetadata] = None
    bundle: Optional[BundleMetadata] = None
    android: Optional[AndroidMetadata] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PackageMetadata":
        context = "package.metadata"
        jar = _expect(data, "jar", dict, context)
        bundle = _expect(data, "bundle", dict, context)
        android = _expect(data, "android", dict, context)
        return cls(
            jar=JarMetadata.from_dict(jar) if jar is not None else None,
            bundle=BundleMetadata.from_dict(bundle) if bundle is not None else None,
            android=AndroidMetadata.from_dict(android) if android is not None else None,
        )


@dataclass(frozen=True)
class Package:
    """The [package] table.

    Attributes:
        name: Package name, unique within a build
        version: Version string, part of the output directory name
        id: Reverse-DNS identifier (bundle identifier), optional
        kind: What the package produces
        metadata: Packaging metadata
    """

    name: str
    version: str
    id: Optional[str] = None
    kind: PackageKind = PackageKind.BINARY
    metadata: PackageMetadata = field(default_factory=PackageMetadata)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Package":
        kind_value = _expect(data, "kind", str, "package", default=PackageKind.BINARY.value)
        try:
            kind = PackageKind(kind_value)
        except ValueError:
            choices = ", ".join(k.value for k in PackageKind)
            raise ManifestError(f"Field 'package.kind' must be one of {choices}, got '{kind_value}'") from None
        metadata = _expect(data, "metadata", dict, "package", default={})
        name = _expect(data, "name", str, "package", required=True)
        if not name or any(ch.isspace() or ch in "/\\" for ch in name):
            raise ManifestError(f"Invalid package name '{name}'")
        return cls(
            name=name,
            version=_expect(data, "version", str, "package", required=True),
            id=_expect(data, "id", str, "package"),
            kind=kind,
            metadata=PackageMetadata.from_dict(metadata),
        )


@dataclass(frozen=True)
class BuildConfig:
    """The [build] table, with optional per-platform overrides.

    Flag fields are shell-style strings, split when command lines are built.
    """

    cflags: str = ""
    ldflags: str = ""
    javac_flags: str = ""
    kotlinc_flags: str = ""
    classpath: tuple[str, ...] = ()
    target: Optional[str] = None
    platform_overrides: dict[str, "BuildConfig"] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], context: str = "build", nested: bool = False) -> "BuildConfig":
        overrides: dict[str, BuildConfig] = {}
        if not nested:
            for section in _PLATFORM_SECTIONS.values():
                table = _expect(data, section, dict, context)
                if table is not None:
                    overrides[section] = cls.from_dict(table, f"{context}.{section}", nested=True)
        return cls(
            cflags=_expect(data, "cflags", str, context, default=""),
            ldflags=_expect(data, "ldflags", str, context, default=""),
            javac_flags=_expect(data, "javac_flags", str, context, default=""),
            kotlinc_flags=_expect(data, "kotlinc_flags", str, context, default=""),
            classpath=_expect_str_list(data, "classpath", context),
            target=_expect(data, "target", str, context),
            platform_overrides=overrides,
        )

    def merged_with(self, other: "BuildConfig") -> "BuildConfig":
        """Append another config's flags to this one (other wins for target)."""

        def join(a: str, b: str) -> str:
            return f"{a} {b}".strip() if b else a

        return BuildConfig(
            cflags=join(self.cflags, other.cflags),
            ldflags=join(self.ldflags, other.ldflags),
            javac_flags=join(self.javac_flags, other.javac_flags),
            kotlinc_flags=join(self.kotlinc_flags, other.kotlinc_flags),
            classpath=self.classpath + other.classpath,
            target=other.target or self.target,
        )


@dataclass(frozen=True)
class JarArtifact:
    """A prebuilt JVM archive.

    Attributes:
        package: Java package (group) the archive provides, e.g. "com.google.gson"
        version: Artifact version
        path: Local path, relative to the declaring manifest
        url: Download location; only used to name the jar cache entry
    """

    package: str
    version: str
    path: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], context: str) -> "JarArtifact":
        artifact = cls(
            package=_expect(data, "package", str, context, required=True),
            version=_expect(data, "version", str, context, required=True),
            path=_expect(data, "path", str, context),
            url=_expect(data, "url", str, context),
        )
        if artifact.path is None and artifact.url is None:
            raise ManifestError(f"Jar dependency '{context}' needs a 'path' or 'url'")
        return artifact

    @classmethod
    def from_maven(cls, coordinate: str, context: str) -> "JarArtifact":
        """Build an artifact from a "group:artifact:version" coordinate."""
        parts = coordinate.split(":")
        if len(parts) != 3 or not all(parts):
            raise ManifestError(f"Field '{context}.maven' must be 'group:artifact:version', got '{coordinate}'")
        group, name, version = parts
        url = f"{MAVEN_CENTRAL}/{group.replace('.', '/')}/{name}/{version}/{name}-{version}.jar"
        return cls(package=group, version=version, url=url)


@dataclass(frozen=True)
class Dependency:
    """One entry of the [dependencies] table.

    Exactly one sourcing method is set; ``value`` holds the path, library,
    pkg-config or framework name, and ``jar`` holds the artifact for jars.
    """

    name: str
    source: DependencySource
    value: str = ""
    jar: Optional[JarArtifact] = None

    @classmethod
    def from_dict(cls, name: str, data: Any) -> "Dependency":
        context = f"dependencies.{name}"
        if not isinstance(data, dict):
            raise ManifestError(f"Field '{context}' must be a table, got {type(data).__name__}")

        present = [(key, source) for key, source in _SOURCE_KEYS if key in data]
        if not present:
            raise ManifestError(f"Dependency '{name}' must specify one of: path, library, pkg_config, framework, jar, maven")
        if len(present) > 1:
            keys = ", ".join(key for key, _ in present)
            raise ManifestError(f"Dependency '{name}' specifies multiple sources ({keys}); choose exactly one")

        key, source = present[0]
        unknown = set(data) - {key}
        if unknown:
            raise ManifestError(f"Dependency '{name}' has unknown fields: {', '.join(sorted(unknown))}")

        if key == "jar":
            return cls(name=name, source=source, jar=JarArtifact.from_dict(_expect(data, key, dict, context), f"{context}.jar"))
        if key == "maven":
            return cls(name=name, source=source, jar=JarArtifact.from_maven(_expect(data, key, str, context), context))
        return cls(name=name, source=source, value=_expect(data, key, str, context))


@dataclass(frozen=True)
class Manifest:
    """A parsed bob.toml."""

    package: Package
    build: BuildConfig = field(default_factory=BuildConfig)
    dependencies: dict[str, Dependency] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Manifest":
        """Build a manifest from a decoded TOML document.

        Raises:
            ManifestError: On the first missing or mistyped field.
        """
        package = _expect(data, "package", dict, "manifest", required=True)
        build = _expect(data, "build", dict, "manifest", default={})
        dependencies = _expect(data, "dependencies", dict, "manifest", default={})
        return cls(
            package=Package.from_dict(package),
            build=BuildConfig.from_dict(build),
            dependencies={name: Dependency.from_dict(name, dep) for name, dep in dependencies.items()},
        )

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        """Read and parse a manifest file (or the bob.toml inside a directory).

        Raises:
            ManifestError: If the file is missing, unreadable or invalid.
        """
        if path.is_dir():
            path = path / MANIFEST_FILE
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except FileNotFoundError:
            raise ManifestError(f"Can't find manifest: {path}") from None
        except OSError as e:
            raise ManifestError(f"Can't read manifest {path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ManifestError(f"Can't parse manifest {path}: {e}") from e
        try:
            return cls.from_dict(data)
        except ManifestError as e:
            raise ManifestError(f"{path}: {e}") from e

    def for_platform(self, platform: str = sys.platform) -> "Manifest":
        """Return a copy whose build config includes the host platform override."""
        section = _PLATFORM_SECTIONS.get(platform)
        override = self.build.platform_overrides.get(section) if section else None
        if override is None:
            return self
        return replace(self, build=self.build.merged_with(override))
