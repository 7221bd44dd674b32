"""Tests for the native generator and its ninja script."""

import plistlib
from unittest.mock import patch

import pytest

from bob.generators.messages import ActionSpec, GeneratorRequest
from bob.generators.native import (
    NativeGenerator,
    NativeToolchain,
    NinjaWriter,
    PkgConfigError,
    ninja_escape_path,
    render_info_plist,
    resolve_pkg_config,
)

# ─── Helpers ──────────────────────────────────────────────────────────────────


def make_request(tmp_path, sources=("main.c",), kind="binary", **kwargs) -> GeneratorRequest:
    out_dir = tmp_path / "out"
    objects = [str(out_dir / "objects" / f"{s}.o") for s in sources]
    output = str(out_dir / ("libapp.a" if kind == "library" else "app"))
    actions = [ActionSpec("cx_vars")]
    for source, obj in zip(sources, objects):
        rule = "cpp" if source.endswith(".cpp") else "c"
        actions.append(ActionSpec(rule, [str(tmp_path / "src" / source)], [obj]))
    actions.append(ActionSpec("ld", objects, [output]))
    defaults = dict(
        unit_name="app",
        version="1.0",
        family="native",
        actions=actions,
        source_files=[str(tmp_path / "src" / s) for s in sources],
        out_dir=str(out_dir),
        artifact=output,
        flags={"cflags": ["-g", "-DDEBUG"], "ldflags": ["-lm"]},
        include_dirs=[str(tmp_path / "src")],
        platform="linux",
        metadata={"kind": kind},
    )
    defaults.update(kwargs)
    return GeneratorRequest(**defaults)


# ─── Tests ────────────────────────────────────────────────────────────────────


class TestToolchain:
    def test_gcc_on_linux(self):
        tools = NativeToolchain.detect("linux", env={})
        assert (tools.cc, tools.cxx, tools.ar, tools.strip) == ("gcc", "g++", "ar", "strip")

    def test_clang_on_darwin(self):
        assert NativeToolchain.detect("darwin", env={}).cc == "clang"

    def test_environment_overrides(self):
        tools = NativeToolchain.detect("linux", env={"CC": "cc-12", "CXX": "c++-12", "AR": "gcc-ar"})
        assert (tools.cc, tools.cxx, tools.ar) == ("cc-12", "c++-12", "gcc-ar")


class TestNinjaWriter:
    def test_escape(self):
        assert ninja_escape_path("C:/my dir/$x") == "C$:/my$ dir/$$x"

    def test_build_statement(self):
        w = NinjaWriter()
        w.rule("cc", "$cc -c $in -o $out", "cc $in", depfile="$out.d")
        w.build(["a.o"], "cc", ["a.c"], implicit=["a.h"])
        w.default(["a.o"])
        text = w.render()
        assert "rule cc\n  command = $cc -c $in -o $out\n  depfile = $out.d\n  deps = gcc\n" in text
        assert "build a.o: cc a.c | a.h\n" in text
        assert text.endswith("default a.o\n")


class TestRender:
    """Ninja script contents."""

    def test_binary_links_objects_and_archives(self, tmp_path):
        request = make_request(tmp_path, link_inputs=["/deps/libmath.a"])
        script = NativeGenerator(env={}).render(request, [], [])
        obj = tmp_path / "out" / "objects" / "main.c.o"
        assert f"build {ninja_escape_path(str(obj))}: cc {ninja_escape_path(str(tmp_path / 'src' / 'main.c'))}" in script
        assert f"build {ninja_escape_path(request.artifact)}: link {ninja_escape_path(str(obj))} /deps/libmath.a" in script
        assert "  linker = gcc" in script
        assert f"-I{tmp_path / 'src'}" in script

    def test_cxx_sources_link_with_cxx(self, tmp_path):
        script = NativeGenerator(env={}).render(make_request(tmp_path, sources=("main.c", "util.cpp")), [], [])
        assert "  linker = g++" in script
        assert ": cxx " in script

    def test_library_is_archived(self, tmp_path):
        script = NativeGenerator(env={}).render(make_request(tmp_path, kind="library"), [], [])
        assert ": archive " in script
        assert ": link " not in script

    def test_release_strips(self, tmp_path):
        request = make_request(tmp_path, strip=True)
        script = NativeGenerator(env={}).render(request, [], [])
        unstripped = ninja_escape_path(f"{request.artifact}-unstripped")
        assert ": link " in script
        assert f"build {ninja_escape_path(request.artifact)}: strip {unstripped}" in script

    def test_pkg_config_flags_appended(self, tmp_path):
        script = NativeGenerator(env={}).render(make_request(tmp_path), ["-I/usr/include/SDL2"], ["-lSDL2"])
        cflags = next(line for line in script.splitlines() if line.startswith("cflags = "))
        ldflags = next(line for line in script.splitlines() if line.startswith("ldflags = "))
        assert cflags.endswith("-I/usr/include/SDL2")
        assert ldflags == "ldflags = -lm -lSDL2"


class TestGenerate:
    def test_runs_ninja(self, tmp_path):
        request = make_request(tmp_path, jobs=4)
        with patch("bob.generators.native.run_tool", return_value=(0, "")) as run_tool:
            response = NativeGenerator(env={}).generate(request)

        assert response.success
        assert response.actions_run == 3
        ninja_file = tmp_path / "out" / "build.ninja"
        assert ninja_file.is_file()
        run_tool.assert_called_once_with(["ninja", "-f", str(ninja_file), "-j", "4"], cwd=str(tmp_path / "out"))

    def test_ninja_failure(self, tmp_path):
        with patch("bob.generators.native.run_tool", return_value=(1, "main.c:1: error")):
            response = NativeGenerator(env={}).generate(make_request(tmp_path))
        assert not response.success
        assert response.message == "ninja exited with code 1"
        assert response.output == "main.c:1: error"

    def test_pkg_config_failure(self, tmp_path):
        request = make_request(tmp_path, pkg_config=["nope"])
        with patch("bob.generators.native.run_tool", return_value=(1, "Package nope was not found")):
            response = NativeGenerator(env={}).generate(request)
        assert not response.success
        assert response.message == "pkg-config failed"
        assert "Package nope was not found" in response.output


class TestPkgConfig:
    def test_no_packages(self):
        assert resolve_pkg_config([]) == ([], [])

    def test_splits_output(self):
        outputs = iter([(0, "-I/usr/include/SDL2 -D_REENTRANT\n"), (0, "-lSDL2\n")])
        with patch("bob.generators.native.run_tool", side_effect=lambda cmd: next(outputs)) as run_tool:
            assert resolve_pkg_config(["sdl2"]) == (["-I/usr/include/SDL2", "-D_REENTRANT"], ["-lSDL2"])
        assert run_tool.call_args_list[0].args[0] == ["pkg-config", "--cflags", "sdl2"]

    def test_missing_tool(self):
        with patch("bob.generators.native.run_tool", return_value=(127, "pkg-config: command not found")):
            with pytest.raises(PkgConfigError):
                resolve_pkg_config(["sdl2"])


class TestInfoPlist:
    def test_fields(self):
        info = plistlib.loads(
            render_info_plist(
                {"name": "Viewer", "identifier": "org.example.viewer", "version": "2.1", "copyright": "(c) 2024", "iconset": "/x.iconset"}
            ).encode()
        )
        assert info["CFBundleExecutable"] == "Viewer"
        assert info["CFBundleIdentifier"] == "org.example.viewer"
        assert info["CFBundleShortVersionString"] == "2.1"
        assert info["NSHumanReadableCopyright"] == "(c) 2024"
        assert info["CFBundleIconFile"] == "AppIcon"

    def test_defaults(self):
        info = plistlib.loads(render_info_plist({"name": "Viewer", "version": "1"}).encode())
        assert info["CFBundleIdentifier"] == "com.example.Viewer"
        assert "NSHumanReadableCopyright" not in info
