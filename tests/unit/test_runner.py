"""Tests for running build artifacts and tests."""

import os
from unittest.mock import MagicMock, patch

import pytest

from bob.build.build_context import BuildParams
from bob.build.build_unit import BuildGraph
from bob.runner import JUNIT_RUNNER, RunError, artifact_command, class_name, run_artifact, run_command, tests_command


def resolve(path, platform="linux", **kwargs) -> BuildGraph:
    return BuildGraph.resolve(BuildParams.create(manifest_dir=path, jobs=1, platform=platform, **kwargs))


class TestArtifactCommand:
    """Which artifact `bob run` executes."""

    def test_native_executable(self, make_project):
        graph = resolve(make_project("app", sources={"main.c": ""}))
        assert artifact_command(graph, "linux") == [str(graph.root_unit.out_dir / "app")]

    def test_library_cannot_run(self, make_project):
        graph = resolve(make_project("lib", kind="library", sources={"lib.c": ""}))
        with pytest.raises(RunError, match="only binaries can be run"):
            artifact_command(graph, "linux")

    def test_nothing_built(self, make_project):
        graph = resolve(make_project("app", sources={"README.md": ""}))
        with pytest.raises(RunError, match="No build artifact"):
            artifact_command(graph, "linux")

    def test_executable_jar(self, make_project):
        app = make_project("app", sources={"Main.java": ""}, extra='[package.metadata.jar]\nmain_class = "Main"\n')
        graph = resolve(app)
        assert artifact_command(graph, "linux") == ["java", "-jar", str(graph.root_unit.out_dir / "app-0.1.0.jar")]

    def test_main_class_on_classpath(self, make_project):
        app = make_project(
            "app",
            sources={"com/example/App.java": "package com.example;\nclass App { public static void main(String[] a) {} }\n"},
        )
        graph = resolve(app)
        cmd = artifact_command(graph, "linux")
        assert cmd[:2] == ["java", "-cp"]
        assert cmd[2].split(os.pathsep)[0] == str(graph.root_unit.classes_dir)
        assert cmd[3] == "com.example.App"

    def test_missing_main_class(self, make_project):
        graph = resolve(make_project("app", sources={"Lib.java": "class Lib {}\n"}))
        with pytest.raises(RunError, match="main class"):
            artifact_command(graph, "linux")

    def test_bundle_preferred_on_darwin(self, make_project):
        app = make_project("app", sources={"main.m": ""}, extra="[package.metadata.bundle]\n")
        graph = resolve(app, platform="darwin")
        assert artifact_command(graph, "darwin") == [str(graph.root_unit.out_dir / "app.app" / "Contents" / "MacOS" / "app")]


class TestTestsCommand:
    def test_cunit_executable(self, make_project):
        graph = resolve(make_project("app", sources={"math.c": "void test_add(void) {}\n"}), is_test=True)
        assert tests_command(graph, "linux") == [str(graph.root_unit.out_dir / "test_app")]

    def test_junit_classes(self, make_project):
        app = make_project("app", sources={"com/x/MathTest.java": "", "com/x/Math.java": "", "com/x/AlgebraTest.kt": ""})
        graph = resolve(app, is_test=True)
        cmd = tests_command(graph, "linux")
        assert cmd[3:] == [JUNIT_RUNNER, "com.x.AlgebraTest", "com.x.MathTest"]

    def test_no_test_classes(self, make_project):
        graph = resolve(make_project("app", sources={"Main.java": ""}), is_test=True)
        with pytest.raises(RunError, match=r"No \*Test classes"):
            tests_command(graph, "linux")


class TestRunCommand:
    def test_class_name_from_generated_source(self, make_project):
        graph = resolve(make_project("app", sources={"Main.java": ""}))
        unit = graph.root_unit
        assert class_name(unit, unit.gen_dir / "org" / "Gen.java") == "org.Gen"

    def test_exit_code_propagates(self, make_project):
        graph = resolve(make_project("app", sources={"main.c": ""}))
        with patch("bob.runner.safe_run", return_value=MagicMock(returncode=3)) as safe_run:
            assert run_artifact(graph, "linux", ["--port", "8080"]) == 3
        cmd = safe_run.call_args.args[0]
        assert cmd[1:] == ["--port", "8080"]
        assert safe_run.call_args.kwargs["stdin"] is None
        assert safe_run.call_args.kwargs["cwd"] == str(graph.root_unit.manifest_dir)

    def test_missing_program(self, tmp_path):
        assert run_command([str(tmp_path / "does-not-exist")]) == 127
