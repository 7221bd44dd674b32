"""
Command-line interface for bob.

This module provides the `bob` CLI tool for building native and JVM projects.

Examples:
    bob                          # Build the project in the current directory
    bob build -C examples/app    # Build another project
    bob run -r -- --port 8080    # Release build, then run with arguments
    bob test -j 4                # Build and run tests with 4 workers
    bob clean                    # Remove the target directory
"""

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from . import __version__
from .build.build_context import BuildParams, resolve_jobs
from .build.build_profiles import BuildProfile, format_profile_banner
from .build.build_unit import BuildGraph
from .build.error_collector import ErrorCollector
from .build.executor import BuildReport, Executor
from .build.progress_display import BuildProgressDisplay
from .cache.change_log import ChangeLog, ChangeLogError
from .generators import default_generators
from .manifest import ManifestError
from .output import TimedLogger, init_timer, log, log_artifact, log_build_complete, log_error, log_success, log_warning, set_verbose
from .paths import ENV_FILE, get_change_log_path
from .runner import RunError, run_artifact, run_tests
from .utils import format_bytes, remove_dir

logger = logging.getLogger(__name__)

COMMAND_ALIASES: dict[str, str] = {
    "build": "build",
    "b": "build",
    "clean": "clean",
    "c": "clean",
    "rebuild": "rebuild",
    "rb": "rebuild",
    "run": "run",
    "r": "run",
    "test": "test",
    "t": "test",
    "help": "help",
    "h": "help",
    "version": "version",
    "v": "version",
}

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130  # Standard exit code for SIGINT


class BuildFailedError(RuntimeError):
    """Raised when one or more units failed to build."""

    def __init__(self, report: BuildReport) -> None:
        super().__init__(f"{len(report.failed)} unit(s) failed: {', '.join(report.failed)}")
        self.report = report


@dataclass
class CliArgs:
    """Parsed command-line arguments."""

    command: str
    manifest_dir: Path
    target_dir: Optional[Path] = None
    release: bool = False
    target: Optional[str] = None
    verbose: bool = False
    jobs: int = 1
    use_javac_server: bool = True
    artifact_args: list[str] = field(default_factory=list)

    def build_params(self, is_test: bool = False) -> BuildParams:
        return BuildParams.create(
            manifest_dir=self.manifest_dir,
            target_dir=self.target_dir,
            profile=BuildProfile.RELEASE if self.release else BuildProfile.DEBUG,
            target=self.target,
            jobs=self.jobs,
            verbose=self.verbose,
            is_test=is_test,
            use_javac_server=self.use_javac_server,
        )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bob",
        description="bob - incremental build orchestrator for C, C++, Objective-C, Java and Kotlin",
        epilog=(
            "Commands: build (b), clean (c), rebuild (rb), run (r), test (t), help (h), version (v). "
            "Arguments after -- are passed to the program started by run."
        ),
    )
    parser.add_argument("--version", action="version", version=f"bob {__version__}")
    parser.add_argument(
        "command",
        nargs="?",
        default="build",
        choices=list(COMMAND_ALIASES),
        metavar="command",
        help="Command to run (default: build)",
    )
    parser.add_argument(
        "-C",
        "--manifest-dir",
        type=Path,
        default=Path("."),
        help="Directory containing bob.toml (default: current directory)",
    )
    parser.add_argument(
        "-T",
        "--target-dir",
        type=Path,
        default=None,
        help="Build output directory (default: target, relative to the manifest directory)",
    )
    parser.add_argument("-r", "--release", action="store_true", help="Build with the release profile")
    parser.add_argument("--target", metavar="TRIPLE", help="Cross-compile for a target triple")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument("-s", "--single-threaded", action="store_true", help="Build one unit at a time")
    parser.add_argument("-j", "--threads", type=int, metavar="N", help="Number of worker threads (default: CPU count)")
    parser.add_argument("--disable-javac-server", action="store_true", help="Invoke javac directly instead of the compile server")
    return parser


def parse_args(argv: Optional[list[str]] = None) -> CliArgs:
    """Parse arguments; exits with status 2 on unknown commands or flags.

    Everything after the first "--" is kept verbatim for the program started by run.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    artifact_args: list[str] = []
    if "--" in argv:
        split = argv.index("--")
        argv, artifact_args = argv[:split], argv[split + 1 :]

    parser = create_parser()
    parsed = parser.parse_args(argv)
    command = COMMAND_ALIASES[parsed.command]
    if artifact_args and command != "run":
        parser.error(f"arguments after -- are only accepted by run: {' '.join(artifact_args)}")
    try:
        jobs = resolve_jobs(parsed.single_threaded, parsed.threads)
    except ValueError as e:
        parser.error(str(e))
    return CliArgs(
        command=command,
        manifest_dir=parsed.manifest_dir,
        target_dir=parsed.target_dir,
        release=parsed.release,
        target=parsed.target,
        verbose=parsed.verbose,
        jobs=jobs,
        use_javac_server=not parsed.disable_javac_server,
        artifact_args=artifact_args,
    )


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        force=True,
    )
    set_verbose(verbose)


def load_env_file(manifest_dir: Path) -> bool:
    """Load <manifest_dir>/.env into os.environ without overriding existing variables."""
    env_file = manifest_dir / ENV_FILE
    if not env_file.is_file():
        return False
    logger.debug(f"Loading environment from {env_file}")
    return load_dotenv(env_file, override=False)


# ─── Commands ─────────────────────────────────────────────────────────────────


def build_command(params: BuildParams) -> BuildGraph:
    """Resolve and build the project.

    Returns:
        The resolved graph, with artifacts recorded on its units.

    Raises:
        ManifestError: For invalid manifests or dependency cycles.
        ChangeLogError: If the change log can't be opened.
        BuildFailedError: If any unit failed.
    """
    start_time = time.time()
    load_env_file(params.manifest_dir)

    with TimedLogger("Resolving dependencies") as timer:
        graph = BuildGraph.resolve(params)
        timer.detail(f"{len(graph)} unit(s)")
    log(format_profile_banner(params.profile, params.target, params.jobs))

    error_collector = ErrorCollector()
    generators = default_generators()
    with ChangeLog.open(get_change_log_path(params.target_dir)) as change_log:
        with BuildProgressDisplay() as display:
            executor = Executor(graph, change_log, generators=generators, callback=display, error_collector=error_collector)
            report = executor.run()
        if change_log.compact_if_needed():
            logger.debug(f"Compacted {change_log.path}")

    if not report.success:
        if error_collector.has_errors():
            log_error(error_collector.format_errors())
        raise BuildFailedError(report)

    log_build_complete(str(params.profile), time.time() - start_time, len(report.rebuilt), len(graph))
    for artifact in graph.root_unit.artifacts:
        log_artifact(artifact)
    return graph


def clean_command(params: BuildParams) -> None:
    files, size = remove_dir(params.target_dir)
    log_success(f"Removed {files} file(s), {format_bytes(size)}")


def run_artifact_command(params: BuildParams, artifact_args: list[str]) -> int:
    graph = build_command(params)
    return run_artifact(graph, params.target_platform, artifact_args)


def run_tests_command(params: BuildParams) -> int:
    graph = build_command(params)
    return run_tests(graph, params.target_platform)


def execute(args: CliArgs) -> int:
    """Run a parsed command and map failures to an exit code."""
    if args.command == "help":
        create_parser().print_help()
        return EXIT_OK
    if args.command == "version":
        log_success(f"bob {__version__}")
        return EXIT_OK

    try:
        params = args.build_params(is_test=args.command == "test")
        if args.command == "clean":
            clean_command(params)
        elif args.command == "rebuild":
            clean_command(params)
            build_command(params)
        elif args.command == "run":
            return run_artifact_command(params, args.artifact_args)
        elif args.command == "test":
            return run_tests_command(params)
        else:
            build_command(params)
        return EXIT_OK

    except ManifestError as e:
        log_error(str(e))
        return EXIT_FAILURE
    except ChangeLogError as e:
        log_error(str(e))
        return EXIT_FAILURE
    except BuildFailedError as e:
        log_error(str(e))
        return EXIT_FAILURE
    except RunError as e:
        log_error(str(e))
        return EXIT_FAILURE
    except OSError as e:
        log_error(f"{type(e).__name__}: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        log_warning("Build interrupted")
        return EXIT_INTERRUPTED


def main(argv: Optional[list[str]] = None) -> None:
    """bob - incremental multi-language build orchestrator."""
    args = parse_args(argv)
    configure_logging(args.verbose)
    init_timer()
    sys.exit(execute(args))


if __name__ == "__main__":
    main()
