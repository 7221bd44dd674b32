"""JVM (Java, Kotlin) generator.

Realizes JVM actions in order:
    java_vars   reset the classes directory and unpack prebuilt jars into it
    kotlin      kotlinc over Kotlin and Java sources
    java        javac, through the compile server when available
    java_jar    jar cfe <jar> <main class> -C classes .
"""

import logging
import os
import re
import shutil
import zipfile
from pathlib import Path
from typing import Optional

from ..build.rules import Rule
from ..subprocess_utils import run_tool
from .javac_server import JavacServerClient, JavacServerError
from .messages import ActionSpec, GeneratorRequest, GeneratorResponse

logger = logging.getLogger(__name__)

JAVA_MAIN_PATTERN = re.compile(r"(public\s+)?static\s+void\s+main\s*\(")
KOTLIN_MAIN_PATTERN = re.compile(r"fun\s+main\s*\(")
PACKAGE_PATTERN = re.compile(r"^\s*package\s+([\w.]+)\s*;?", re.MULTILINE)


def find_main_class(sources: list[Path]) -> Optional[str]:
    """Find the fully qualified name of the first class with a main method.

    Kotlin top-level mains live in a generated <File>Kt class.
    """
    for source in sorted(sources):
        if source.suffix not in (".java", ".kt"):
            continue
        text = source.read_text(encoding="utf-8", errors="replace")
        pattern = JAVA_MAIN_PATTERN if source.suffix == ".java" else KOTLIN_MAIN_PATTERN
        if not pattern.search(text):
            continue
        class_name = source.stem if source.suffix == ".java" else f"{source.stem}Kt"
        package = PACKAGE_PATTERN.search(text)
        return f"{package.group(1)}.{class_name}" if package else class_name
    return None


def extract_jar(jar: Path, classes_dir: Path) -> int:
    """Unpack a jar's classes and resources (not its manifest) into classes_dir.

    Returns:
        Number of files extracted.
    """
    count = 0
    root = classes_dir.resolve()
    with zipfile.ZipFile(jar) as archive:
        for member in archive.infolist():
            if member.is_dir() or member.filename.upper().startswith("META-INF/"):
                continue
            dest = (classes_dir / member.filename).resolve()
            if root not in dest.parents:
                raise zipfile.BadZipFile(f"Unsafe path in {jar}: {member.filename}")
            dest.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(member) as src, open(dest, "wb") as out:
                shutil.copyfileobj(src, out)
            count += 1
    return count


class JvmGenerator:
    """Generator for the JVM rule family.

    Args:
        javac_server: Shared compile server client; created on first use if None.
    """

    def __init__(self, javac_server: Optional[JavacServerClient] = None) -> None:
        self._javac_server = javac_server

    @property
    def javac_server(self) -> JavacServerClient:
        if self._javac_server is None:
            self._javac_server = JavacServerClient()
        return self._javac_server

    def generate(self, request: GeneratorRequest) -> GeneratorResponse:
        classes_dir = Path(request.out_dir) / "classes"
        classpath = os.pathsep.join([str(classes_dir), *request.classpath])
        output_log: list[str] = []

        for action in request.actions:
            rule = Rule(action.rule)
            if rule is Rule.JAVA_VARS:
                try:
                    self._prepare_classes(request, classes_dir)
                except (OSError, zipfile.BadZipFile) as e:
                    return GeneratorResponse.failure(request, f"Can't prepare classes directory: {e}")
                continue

            if rule is Rule.KOTLIN:
                code, output = self._kotlinc(request, action, classes_dir, classpath)
            elif rule is Rule.JAVA:
                code, output = self._javac(request, action, classes_dir, classpath)
            elif rule is Rule.JAVA_JAR:
                code, output = self._jar(request, action, classes_dir)
            else:
                return GeneratorResponse.failure(request, f"Rule {rule} is not a JVM rule")

            if output:
                output_log.append(output)
            if code != 0:
                return GeneratorResponse.failure(request, f"{rule} exited with code {code}", "\n".join(output_log))

        return GeneratorResponse(
            unit_name=request.unit_name,
            family=request.family,
            success=True,
            artifact=request.artifact,
            message="ok",
            output="\n".join(output_log),
            actions_run=len(request.actions),
        )

    def _prepare_classes(self, request: GeneratorRequest, classes_dir: Path) -> None:
        # Unit is dirty: drop classes of deleted or renamed sources
        if classes_dir.exists():
            shutil.rmtree(classes_dir)
        classes_dir.mkdir(parents=True)
        for jar in request.jars:
            count = extract_jar(Path(jar), classes_dir)
            logger.debug(f"Extracted {count} files from {jar}")

    def _kotlinc(self, request: GeneratorRequest, action: ActionSpec, classes_dir: Path, classpath: str) -> tuple[int, str]:
        cmd = ["kotlinc", *request.flags.get("kotlinc_flags", []), "-cp", classpath, "-d", str(classes_dir), *action.inputs]
        return run_tool(cmd)

    def _javac(self, request: GeneratorRequest, action: ActionSpec, classes_dir: Path, classpath: str) -> tuple[int, str]:
        args = [*request.flags.get("javac_flags", []), "-cp", classpath, "-d", str(classes_dir), *action.inputs]
        if request.use_javac_server and os.name == "posix":
            try:
                return self.javac_server.compile(args)
            except JavacServerError as e:
                logger.warning(f"Compile server unavailable, falling back to javac: {e}")
        return run_tool(["javac", *args])

    def _jar(self, request: GeneratorRequest, action: ActionSpec, classes_dir: Path) -> tuple[int, str]:
        main_class = request.metadata.get("main_class") or find_main_class([Path(p) for p in request.source_files])
        if not main_class:
            return 1, f"No main class found for {request.unit_name}; set package.metadata.jar.main_class"
        jar = action.outputs[0]
        Path(jar).unlink(missing_ok=True)
        return run_tool(["jar", "cfe", jar, main_class, "-C", str(classes_dir), "."])
