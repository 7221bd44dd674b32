"""Tests for timestamped console output."""

import re
from io import StringIO

import pytest

from bob import output


@pytest.fixture
def stream(monkeypatch):
    buffer = StringIO()
    monkeypatch.setattr(output, "_output_stream", buffer)
    monkeypatch.setattr(output, "_verbose", False)
    return buffer


def test_lines_are_timestamped(stream):
    output.log("Resolving dependencies...")
    assert re.fullmatch(r"\d{2}:\d{2}\.\d{2} Resolving dependencies\.\.\.\n", stream.getvalue())


def test_verbose_only_messages(stream):
    output.log_detail("hidden", verbose_only=True)
    assert stream.getvalue() == ""
    output.set_verbose(True)
    output.log_detail("shown", verbose_only=True)
    assert stream.getvalue().endswith("      shown\n")


def test_build_complete_summary(stream):
    output.log_build_complete("debug", 1.234, rebuilt=1, total=3)
    assert stream.getvalue().endswith("Finished debug build of 3 unit(s) in 1.23s (2 up to date)\n")


def test_errors_and_warnings(stream):
    output.log_error("boom")
    output.log_warning("careful")
    lines = stream.getvalue().splitlines()
    assert lines[0].endswith("ERROR: boom")
    assert lines[1].endswith("WARNING: careful")


def test_timed_logger(stream):
    with output.TimedLogger("Resolving dependencies") as timer:
        timer.detail("3 unit(s)")
    lines = stream.getvalue().splitlines()
    assert lines[0].endswith("Resolving dependencies...")
    assert lines[1].endswith("      3 unit(s)")
