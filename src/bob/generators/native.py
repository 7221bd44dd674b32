"""Native (C, C++, Objective-C) generator.

Realizes native actions by writing a ninja build script into the unit's
output directory and running ninja on it. Ninja then provides per-object
incrementality (with compiler depfiles for header changes) inside a unit that
the executor has already found dirty.

Generated rules:
    cc / cxx / objc / objcxx   compile one source to one object
    link                       objects + dependency archives -> executable
    archive                    objects -> static library
    strip                      release executables
    copy / iconset             application bundle contents (macOS)
"""

import logging
import os
import plistlib
import shlex
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from ..build.rules import CXX_SUFFIXES, Rule
from ..subprocess_utils import run_tool
from ..utils import index_files, write_file_when_different
from .messages import GeneratorRequest, GeneratorResponse

logger = logging.getLogger(__name__)

NINJA_FILE = "build.ninja"

_COMPILE_RULES = {
    Rule.C.value: "cc",
    Rule.CPP.value: "cxx",
    Rule.OBJC.value: "objc",
    Rule.OBJCPP.value: "objcxx",
}


class PkgConfigError(RuntimeError):
    """Raised when pkg-config can't resolve a package."""

    pass


@dataclass(frozen=True)
class NativeToolchain:
    """Executables used for native builds.

    clang is the default on macOS and Windows, gcc elsewhere; CC, CXX, AR and
    STRIP override the defaults.
    """

    cc: str
    cxx: str
    ar: str
    strip: str

    @classmethod
    def detect(cls, platform: str, env: Optional[Mapping[str, str]] = None) -> "NativeToolchain":
        env = os.environ if env is None else env
        use_clang = platform in ("darwin", "win32")
        return cls(
            cc=env.get("CC") or ("clang" if use_clang else "gcc"),
            cxx=env.get("CXX") or ("clang++" if use_clang else "g++"),
            ar=env.get("AR") or ("llvm-ar" if platform == "win32" else "ar"),
            strip=env.get("STRIP") or ("llvm-strip" if platform == "win32" else "strip"),
        )


def ninja_escape_path(path: str) -> str:
    """Escape a path for use in a ninja build statement."""
    return path.replace("$", "$$").replace(" ", "$ ").replace(":", "$:")


def _command_line(args: list[str]) -> str:
    """Quote arguments for the host shell ninja runs commands through, then escape for ninja."""
    joined = subprocess.list2cmdline(args) if sys.platform == "win32" else shlex.join(args)
    return joined.replace("$", "$$")


def resolve_pkg_config(packages: list[str]) -> tuple[list[str], list[str]]:
    """Expand pkg-config packages into (cflags, libs).

    Raises:
        PkgConfigError: If pkg-config fails or is not installed.
    """
    if not packages:
        return [], []
    flags: list[list[str]] = []
    for option in ("--cflags", "--libs"):
        code, output = run_tool(["pkg-config", option, *packages])
        if code != 0:
            raise PkgConfigError(f"pkg-config {option} {' '.join(packages)} failed:\n{output}")
        flags.append(shlex.split(output))
    return flags[0], flags[1]


def render_info_plist(bundle: Mapping[str, Any]) -> str:
    """Render the Info.plist of an application bundle."""
    info: dict[str, Any] = {
        "CFBundleDevelopmentRegion": "en",
        "CFBundleExecutable": bundle["name"],
        "CFBundleIdentifier": bundle.get("identifier") or f"com.example.{bundle['name']}",
        "CFBundleInfoDictionaryVersion": "6.0",
        "CFBundleName": bundle["name"],
        "CFBundlePackageType": "APPL",
        "CFBundleShortVersionString": bundle["version"],
        "CFBundleVersion": bundle["version"],
        "LSMinimumSystemVersion": "11.0",
        "NSHighResolutionCapable": True,
    }
    if bundle.get("copyright"):
        info["NSHumanReadableCopyright"] = bundle["copyright"]
    if bundle.get("iconset"):
        info["CFBundleIconFile"] = "AppIcon"
    return plistlib.dumps(info).decode("utf-8")


class NinjaWriter:
    """Accumulates a ninja script."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def comment(self, text: str) -> None:
        self.lines.append(f"# {text}")

    def variable(self, name: str, value: str) -> None:
        self.lines.append(f"{name} = {value}")

    def rule(self, name: str, command: str, description: str, depfile: Optional[str] = None) -> None:
        self.lines.append(f"rule {name}")
        self.lines.append(f"  command = {command}")
        if depfile:
            self.lines.append(f"  depfile = {depfile}")
            self.lines.append("  deps = gcc")
        self.lines.append(f"  description = {description}")
        self.lines.append("")

    def build(self, outputs: list[str], rule: str, inputs: list[str], implicit: Optional[list[str]] = None) -> None:
        line = f"build {' '.join(ninja_escape_path(o) for o in outputs)}: {rule} {' '.join(ninja_escape_path(i) for i in inputs)}"
        if implicit:
            line += f" | {' '.join(ninja_escape_path(i) for i in implicit)}"
        self.lines.append(line.rstrip())

    def default(self, targets: list[str]) -> None:
        self.lines.append(f"default {' '.join(ninja_escape_path(t) for t in targets)}")

    def newline(self) -> None:
        self.lines.append("")

    def render(self) -> str:
        return "\n".join(self.lines) + "\n"


class NativeGenerator:
    """Generator for the native rule family.

    Args:
        ninja: ninja executable
        env: Environment used to pick the toolchain (defaults to os.environ)
    """

    def __init__(self, ninja: str = "ninja", env: Optional[Mapping[str, str]] = None) -> None:
        self.ninja = ninja
        self.env = env

    def generate(self, request: GeneratorRequest) -> GeneratorResponse:
        out_dir = Path(request.out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        try:
            pkg_cflags, pkg_libs = resolve_pkg_config(request.pkg_config)
            script = self.render(request, pkg_cflags, pkg_libs)
        except PkgConfigError as e:
            return GeneratorResponse.failure(request, "pkg-config failed", str(e))
        except OSError as e:
            return GeneratorResponse.failure(request, f"Can't prepare native build: {e}")

        ninja_file = out_dir / NINJA_FILE
        if write_file_when_different(ninja_file, script):
            logger.debug(f"Wrote {ninja_file}")

        cmd = [self.ninja, "-f", str(ninja_file)]
        if request.jobs:
            cmd += ["-j", str(request.jobs)]
        code, output = run_tool(cmd, cwd=str(out_dir))
        if code != 0:
            return GeneratorResponse.failure(request, f"ninja exited with code {code}", output)
        return GeneratorResponse(
            unit_name=request.unit_name,
            family=request.family,
            success=True,
            artifact=request.artifact,
            message="ok",
            output=output,
            actions_run=len(request.actions),
        )

    def render(self, request: GeneratorRequest, pkg_cflags: list[str], pkg_libs: list[str]) -> str:
        """Render the ninja script for a request.

        Raises:
            OSError: If bundle resources can't be read or Info.plist can't be written.
        """
        tools = NativeToolchain.detect(request.platform, self.env)
        cflags = list(request.flags.get("cflags", [])) + [f"-I{d}" for d in request.include_dirs] + pkg_cflags
        ldflags = list(request.flags.get("ldflags", [])) + pkg_libs

        w = NinjaWriter()
        w.comment(f"Generated by bob for {request.unit_name} v{request.version}, do not edit!")
        w.variable("ninja_required_version", "1.3")
        w.variable("cc", _command_line([tools.cc]))
        w.variable("cxx", _command_line([tools.cxx]))
        w.variable("cflags", _command_line(cflags))
        w.variable("ldflags", _command_line(ldflags))
        w.newline()

        depfile = "$out.d"
        w.rule("cc", "$cc -MD -MF $out.d $cflags --std=c11 -c $in -o $out", "cc $in", depfile)
        w.rule("cxx", "$cxx -MD -MF $out.d $cflags --std=c++17 -c $in -o $out", "cxx $in", depfile)
        w.rule("objc", "$cc -MD -MF $out.d -x objective-c $cflags -c $in -o $out", "objc $in", depfile)
        w.rule("objcxx", "$cxx -MD -MF $out.d -x objective-c++ $cflags --std=c++17 -c $in -o $out", "objcxx $in", depfile)
        w.rule("link", "$linker $in -o $out $ldflags", "link $out")
        w.rule("archive", f"{_command_line([tools.ar])} rcs $out $in", "ar $out")
        w.rule("strip", f"{_command_line([tools.strip])} $in -o $out", "strip $out")
        w.rule("copy", "cp -R $in $out", "copy $out")
        w.rule("iconset", "iconutil -c icns $in -o $out", "iconutil $out")

        objects: list[str] = []
        uses_cxx = False
        for action in request.actions:
            if action.rule in _COMPILE_RULES:
                w.build(action.outputs, _COMPILE_RULES[action.rule], action.inputs)
                objects.extend(action.outputs)
                uses_cxx = uses_cxx or any(Path(src).suffix in CXX_SUFFIXES for src in action.inputs)

        defaults: list[str] = []
        for action in request.actions:
            if action.rule == Rule.LD.value:
                output = action.outputs[0]
                if request.metadata.get("kind") == "library":
                    w.build([output], "archive", objects)
                else:
                    linker = tools.cxx if uses_cxx else tools.cc
                    linked = f"{output}-unstripped" if request.strip else output
                    w.build([linked], "link", objects + request.link_inputs)
                    w.lines.append(f"  linker = {_command_line([linker])}")
                    if request.strip:
                        w.build([output], "strip", [linked])
                defaults.append(output)
            elif action.rule == Rule.BUNDLE.value:
                defaults.extend(self._render_bundle(w, request, action.inputs[0], action.outputs[0]))

        w.newline()
        if defaults:
            w.default(defaults)
        return w.render()

    def _render_bundle(self, w: NinjaWriter, request: GeneratorRequest, executable: str, app: str) -> list[str]:
        bundle = request.metadata["bundle"]
        contents = Path(app) / "Contents"
        plist = Path(request.out_dir) / "Info.plist"
        write_file_when_different(plist, render_info_plist(bundle))

        outputs = [str(contents / "MacOS" / bundle["name"]), str(contents / "Info.plist")]
        w.build([outputs[0]], "copy", [executable])
        w.build([outputs[1]], "copy", [str(plist)])

        resources_dir = bundle.get("resources_dir")
        if resources_dir and Path(resources_dir).is_dir():
            for resource in index_files(Path(resources_dir)):
                dest = str(contents / "Resources" / resource.relative_to(resources_dir))
                w.build([dest], "copy", [str(resource)])
                outputs.append(dest)

        iconset = bundle.get("iconset")
        if iconset:
            icns = str(contents / "Resources" / "AppIcon.icns")
            w.build([icns], "iconset", [iconset], implicit=[str(p) for p in index_files(Path(iconset))])
            outputs.append(icns)
        return outputs
