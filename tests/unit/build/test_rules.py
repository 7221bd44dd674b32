"""Tests for rule selection, ordering and action planning."""

import pytest

from bob.build.build_context import BuildParams
from bob.build.build_unit import BuildGraph
from bob.build.rules import (
    RULE_ORDER,
    Rule,
    RuleFamily,
    expected_artifacts,
    must_precede,
    plan_actions,
    primary_artifacts,
    select_rules,
)
from bob.manifest import PackageKind


class TestSelectRules:
    """Rule selection from kind, extensions and platform."""

    def test_c_binary(self):
        assert select_rules(PackageKind.BINARY, {".c", ".h"}, "linux") == [Rule.CX_VARS, Rule.C, Rule.LD]

    def test_mixed_native_sources(self):
        rules = select_rules(PackageKind.LIBRARY, {".mm", ".c", ".cpp"}, "darwin")
        assert rules == [Rule.CX_VARS, Rule.C, Rule.CPP, Rule.OBJCPP, Rule.LD]

    def test_bundle_only_on_darwin_binaries(self):
        assert Rule.BUNDLE in select_rules(PackageKind.BINARY, {".m"}, "darwin", has_bundle=True)
        assert Rule.BUNDLE not in select_rules(PackageKind.BINARY, {".m"}, "linux", has_bundle=True)
        assert Rule.BUNDLE not in select_rules(PackageKind.LIBRARY, {".m"}, "darwin", has_bundle=True)
        assert Rule.BUNDLE not in select_rules(PackageKind.BINARY, {".m"}, "darwin", has_bundle=True, is_test=True)

    def test_kotlin_and_java(self):
        rules = select_rules(PackageKind.BINARY, {".kt", ".java"}, "linux", has_jar=True)
        assert rules == [Rule.JAVA_VARS, Rule.KOTLIN, Rule.JAVA, Rule.JAVA_JAR]

    def test_jar_requires_metadata(self):
        assert Rule.JAVA_JAR not in select_rules(PackageKind.BINARY, {".java"}, "linux")

    def test_external_jar_has_no_rules(self):
        assert select_rules(PackageKind.EXTERNAL_JAR, {".jar", ".java"}, "linux") == []

    def test_no_compilable_sources(self):
        assert select_rules(PackageKind.LIBRARY, {".h", ".txt"}, "linux") == []

    def test_rules_follow_static_order(self):
        rules = select_rules(PackageKind.BINARY, {".c", ".m", ".java", ".kt"}, "darwin", has_bundle=True, has_jar=True)
        assert rules == sorted(rules, key=RULE_ORDER.index)


class TestMustPrecede:
    def test_vars_before_compiles(self):
        assert must_precede(Rule.CX_VARS, Rule.C)
        assert must_precede(Rule.JAVA_VARS, Rule.KOTLIN)

    def test_compiles_before_link_and_packaging(self):
        assert must_precede(Rule.C, Rule.LD)
        assert must_precede(Rule.LD, Rule.BUNDLE)
        assert must_precede(Rule.JAVA, Rule.JAVA_JAR)

    def test_native_compiles_are_independent(self):
        assert not must_precede(Rule.C, Rule.CPP)
        assert not must_precede(Rule.CPP, Rule.C)

    def test_kotlin_before_java(self):
        assert must_precede(Rule.KOTLIN, Rule.JAVA)
        assert not must_precede(Rule.JAVA, Rule.KOTLIN)

    def test_families_are_unordered(self):
        assert not must_precede(Rule.LD, Rule.JAVA)
        assert not must_precede(Rule.JAVA_VARS, Rule.C)

    def test_every_rule_has_a_family(self):
        assert {rule.family for rule in Rule} == {RuleFamily.NATIVE, RuleFamily.JVM}


class TestPlanActions:
    """Actions and derived artifact paths."""

    def test_native_binary(self, make_project):
        app = make_project("app", sources={"main.c": "", "util/helpers.c": "", "util/helpers.h": ""})
        unit = BuildGraph.resolve(BuildParams.create(manifest_dir=app, jobs=1, platform="linux")).root_unit
        actions = plan_actions(unit, "linux")

        assert [a.rule for a in actions] == [Rule.CX_VARS, Rule.C, Rule.C, Rule.LD]
        objects = [a.outputs[0] for a in actions if a.rule is Rule.C]
        assert objects == [unit.out_dir / "objects" / "main.c.o", unit.out_dir / "objects" / "util" / "helpers.c.o"]
        assert actions[-1].inputs == tuple(objects)
        assert actions[-1].outputs == (unit.out_dir / "app",)

    def test_library_links_archive(self, make_project):
        lib = make_project("lib", kind="library", sources={"lib.c": ""})
        unit = BuildGraph.resolve(BuildParams.create(manifest_dir=lib, jobs=1, platform="linux")).root_unit
        artifacts = primary_artifacts(plan_actions(unit, "linux"))
        assert artifacts == {RuleFamily.NATIVE: unit.out_dir / "liblib.a"}

    def test_windows_executable_suffix(self, make_project):
        app = make_project("app", sources={"main.c": ""})
        unit = BuildGraph.resolve(BuildParams.create(manifest_dir=app, jobs=1, platform="win32")).root_unit
        assert plan_actions(unit, "win32")[-1].outputs == (unit.out_dir / "app.exe",)

    def test_jvm_binary_with_jar(self, make_project):
        app = make_project(
            "app",
            sources={"com/example/Main.java": "", "com/example/Util.kt": ""},
            extra="""
            [package.metadata.jar]
            main_class = "com.example.Main"
            """,
        )
        unit = BuildGraph.resolve(BuildParams.create(manifest_dir=app, jobs=1, platform="linux")).root_unit
        actions = plan_actions(unit, "linux")

        assert [a.rule for a in actions] == [Rule.JAVA_VARS, Rule.KOTLIN, Rule.JAVA, Rule.JAVA_JAR]
        kotlin, java = actions[1], actions[2]
        assert {p.suffix for p in kotlin.inputs} == {".kt", ".java"}
        assert {p.suffix for p in java.inputs} == {".java"}
        assert expected_artifacts(actions) == [unit.classes_dir, unit.out_dir / "app-0.1.0.jar"]

    def test_excluded_sources_are_not_compiled(self, make_project):
        app = make_project("app", sources={"main.c": "int main(void) { return 0; }\n", "lib.c": "void test_a(void) {}\n"})
        unit = BuildGraph.resolve(BuildParams.create(manifest_dir=app, jobs=1, platform="linux", is_test=True)).root_unit
        compiled = [a.inputs[0].name for a in plan_actions(unit, "linux") if a.rule is Rule.C]
        assert compiled == ["lib.c", "test_main.c"]

    @pytest.mark.parametrize("kind", ["library", "binary"])
    def test_headers_only_plans_nothing(self, make_project, kind):
        pkg = make_project("pkg", kind=kind, sources={"api.h": ""})
        unit = BuildGraph.resolve(BuildParams.create(manifest_dir=pkg, jobs=1, platform="linux")).root_unit
        assert plan_actions(unit, "linux") == []
