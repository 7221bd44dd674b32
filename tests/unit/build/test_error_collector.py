"""Tests for the build error collector."""

from bob.build.error_collector import MAX_OUTPUT_CHARS, BuildError, ErrorCollector


def make_error(unit="app", output=None) -> BuildError:
    return BuildError(unit=unit, phase="native", error_message="compile failed", output=output)


class TestErrorCollector:
    def test_empty(self):
        collector = ErrorCollector()
        assert not collector.has_errors()
        assert collector.format_errors() == "No errors"

    def test_format_includes_output(self):
        collector = ErrorCollector()
        collector.add_error(make_error(output="main.c:1: error: expected ';'\n"))
        assert collector.has_errors()
        text = collector.format_errors()
        assert text.startswith("[ERROR] app (native): compile failed")
        assert text.endswith("main.c:1: error: expected ';'")

    def test_long_output_is_truncated(self):
        error = make_error(output="x" * (MAX_OUTPUT_CHARS + 10))
        assert "... (truncated)" in error.format()

    def test_oldest_dropped_when_full(self):
        collector = ErrorCollector(max_errors=2)
        for unit in ("a", "b", "c"):
            collector.add_error(make_error(unit=unit))
        assert [e.unit for e in collector.get_errors()] == ["b", "c"]

    def test_format_limit(self):
        collector = ErrorCollector()
        collector.add_error(make_error(unit="a"))
        collector.add_error(make_error(unit="b"))
        text = collector.format_errors(max_errors=1)
        assert text.startswith("[ERROR] a (native)")
        assert text.endswith("... and 1 more errors")
