"""Tests for generator request and response messages."""

from bob.generators.messages import ActionSpec, GeneratorRequest, GeneratorResponse


def make_request() -> GeneratorRequest:
    return GeneratorRequest(
        unit_name="app",
        version="1.0",
        family="native",
        actions=[ActionSpec("cx_vars"), ActionSpec("c", ["/src/main.c"], ["/out/main.c.o"]), ActionSpec("ld", ["/out/main.c.o"], ["/out/app"])],
        source_files=["/src/main.c"],
        out_dir="/out",
        artifact="/out/app",
        flags={"cflags": ["-g"]},
        metadata={"kind": "binary"},
    )


class TestGeneratorRequest:
    def test_actions_in_order(self):
        request = make_request()
        assert [a.rule for a in request.actions] == ["cx_vars", "c", "ld"]
        assert request.actions[-1].outputs == ["/out/app"]

    def test_optional_fields_default(self):
        request = GeneratorRequest(unit_name="lib", version="1", family="jvm", actions=[], source_files=[], out_dir="/o", artifact="/o/classes")
        assert request.use_javac_server is True
        assert request.classpath == []
        assert request.jobs == 0


class TestGeneratorResponse:
    def test_failure(self):
        response = GeneratorResponse.failure(make_request(), "ninja exited with code 1", "error")
        assert not response.success
        assert (response.unit_name, response.family, response.output) == ("app", "native", "error")
        assert response.artifact is None
        assert response.actions_run == 0
