"""Source pre-processing.

Two kinds of sources are generated before any rule runs, both into the
unit's ``src-gen`` directory and both written only when their contents change
(so an unchanged template never makes its unit dirty):

- ``*.in`` templates: ``@NAME@`` placeholders are replaced by the value of
  the NAME environment variable, or by nothing when it is unset.
- A CUnit ``test_main.c`` for test builds, registering every ``test_*``
  function found in the unit's C-family sources.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ..utils import write_file_when_different
from .rules import CX_SUFFIXES

if TYPE_CHECKING:
    from .build_unit import BuildUnit

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".in"
PLACEHOLDER_PATTERN = re.compile(r"@([A-Z0-9_]+)@")
TEST_FUNCTION_PATTERN = re.compile(r"void\s+(test_\w+)\s*\(")
MAIN_FUNCTION_PATTERN = re.compile(r"\bint\s+main\s*\(")
TEST_MAIN_FILE = "test_main.c"


def expand_template(text: str, env: Optional[Mapping[str, str]] = None) -> str:
    """Replace every @NAME@ placeholder with env[NAME] (empty when unset).

    Args:
        text: Template contents
        env: Variable source; defaults to os.environ

    Returns:
        Expanded contents
    """
    values = os.environ if env is None else env
    return PLACEHOLDER_PATTERN.sub(lambda match: values.get(match.group(1), ""), text)


def _generated_path(unit: BuildUnit, template: Path) -> Path:
    try:
        relative = template.relative_to(unit.source_dir)
    except ValueError:
        relative = Path(template.name)
    return unit.gen_dir / relative.parent / template.stem


def process_templates(unit: BuildUnit, env: Optional[Mapping[str, str]] = None) -> list[Path]:
    """Expand every template source of a unit and register the results.

    Generated files are appended to ``unit.source_files``; the templates stay
    in the list so editing one makes the unit dirty.

    Args:
        unit: Unit whose sources are scanned
        env: Variable source; defaults to os.environ

    Returns:
        Paths of the generated files.

    Raises:
        OSError: If a template cannot be read or its output cannot be written.
    """
    generated: list[Path] = []
    for template in [p for p in unit.source_files if p.suffix == TEMPLATE_SUFFIX]:
        dest = _generated_path(unit, template)
        contents = expand_template(template.read_text(encoding="utf-8"), env)
        if write_file_when_different(dest, contents):
            logger.debug(f"Generated {dest} from {template}")
        if dest not in unit.source_files:
            unit.source_files.append(dest)
        generated.append(dest)
    return generated


def find_test_functions(sources: list[Path]) -> dict[Path, list[str]]:
    """Map each C-family source to the test_* functions it defines, in order."""
    found: dict[Path, list[str]] = {}
    for source in sources:
        if source.suffix not in CX_SUFFIXES:
            continue
        names = TEST_FUNCTION_PATTERN.findall(source.read_text(encoding="utf-8", errors="replace"))
        if names:
            found[source] = list(dict.fromkeys(names))
    return found


def _suite_name(unit: BuildUnit, source: Path) -> str:
    try:
        relative = source.relative_to(unit.source_dir)
    except ValueError:
        relative = Path(source.name)
    return re.sub(r"\W", "_", str(relative.with_suffix(""))) + "_suite"


def render_test_main(unit: BuildUnit, tests: dict[Path, list[str]]) -> str:
    """Render a CUnit runner calling every discovered test function."""
    lines = [
        "// This file is generated by bob, do not edit!",
        "#include <stdint.h>",
        "#include <stdio.h>",
        "#include <CUnit/Basic.h>",
        "",
    ]
    for names in tests.values():
        lines.extend(f"extern void {name}(void);" for name in names)
    lines += ["", "int main(void) {", "    CU_initialize_registry();", ""]
    for source, names in tests.items():
        suite = _suite_name(unit, source)
        lines.append(f'    CU_pSuite {suite} = CU_add_suite("{source.name}", 0, 0);')
        lines.extend(f'    CU_add_test({suite}, "{name}", {name});' for name in names)
        lines.append("")
    lines += [
        "    CU_basic_set_mode(CU_BRM_VERBOSE);",
        "    CU_basic_run_tests();",
        "    unsigned int failures = CU_get_number_of_failures();",
        "    if (failures == 0) {",
        '        printf("All tests passed!\\n");',
        "    } else {",
        '        printf("%u tests failed!\\n", failures);',
        "    }",
        "    CU_cleanup_registry();",
        "    return failures == 0 ? CU_get_error() : 1;",
        "}",
        "",
    ]
    return "\n".join(lines)


def generate_test_main(unit: BuildUnit) -> Optional[Path]:
    """Generate the CUnit entry point for a test build of a unit.

    Sources defining their own ``main`` are excluded from compilation so the
    generated runner is the only entry point.

    Returns:
        Path of the generated file, or None if the unit has no C-family sources.
    """
    sources = [p for p in unit.source_files if p.suffix in CX_SUFFIXES]
    if not sources:
        return None
    for source in sources:
        if MAIN_FUNCTION_PATTERN.search(source.read_text(encoding="utf-8", errors="replace")):
            unit.compile_excludes.add(source)
    tests = find_test_functions([p for p in sources if p not in unit.compile_excludes])
    dest = unit.gen_dir / TEST_MAIN_FILE
    write_file_when_different(dest, render_test_main(unit, tests))
    if dest not in unit.source_files:
        unit.source_files.append(dest)
    logger.debug(f"Generated {dest} with {sum(len(n) for n in tests.values())} test(s)")
    return dest
