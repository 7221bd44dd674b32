"""Pytest configuration and shared fixtures for bob tests.

Besides the project fixtures, this conftest restores stdout/stderr after each
test: tests that drive the CLI can leave the streams closed on Python 3.13,
which otherwise surfaces as "I/O operation on closed file" during teardown.
"""

import sys
import textwrap
import warnings
from pathlib import Path
from typing import Callable, Optional

import pytest

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test."""
    yield

    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.fixture(autouse=True)
def _isolated_tmp_dir(tmp_path, monkeypatch):
    """Keep compile server sockets and other temp state inside the test's tmp_path."""
    monkeypatch.setenv("BOB_TMP_DIR", str(tmp_path / ".bob-tmp"))


ProjectFactory = Callable[..., Path]


@pytest.fixture
def make_project(tmp_path) -> ProjectFactory:
    """Create a package directory with a bob.toml and src/ files.

    Usage:
        app = make_project("app", sources={"main.c": "int main(void) { return 0; }"},
                           dependencies='lib = { path = "../lib" }')
    """

    def factory(
        name: str,
        kind: str = "binary",
        sources: Optional[dict[str, str]] = None,
        dependencies: str = "",
        extra: str = "",
        root: Optional[Path] = None,
    ) -> Path:
        package_dir = (root or tmp_path) / name
        (package_dir / "src").mkdir(parents=True, exist_ok=True)
        manifest = textwrap.dedent(
            f"""\
            [package]
            name = "{name}"
            version = "0.1.0"
            kind = "{kind}"
            """
        )
        if extra:
            manifest += "\n" + textwrap.dedent(extra)
        if dependencies:
            manifest += "\n[dependencies]\n" + textwrap.dedent(dependencies)
        (package_dir / "bob.toml").write_text(manifest)
        for relative, contents in (sources or {}).items():
            path = package_dir / "src" / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(contents)
        return package_dir

    return factory
