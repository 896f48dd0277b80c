"""
Command-line interface for layebuild.

This module provides the `layebuild` CLI, a thin switch from verbs to build
targets and test drivers. With no verb every target is built.
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from layebuild import __version__
from layebuild.build import BuildTargets, ConfigError, ProjectConfig, TargetError
from layebuild.build.targets import DRIVER_TARGET, BuildResult
from layebuild.output import init_timer, is_verbose, set_verbose
from layebuild.testing import ExecTestHarness, run_fchk

COMMANDS_HELP = """commands:
  build [layec]        build every target, or only the compiler driver
  run <args...>        build the driver and run it with <args>
  install <dir>        build the driver and install it to <dir>/bin
  fuzz                 build the fuzz harness and run it over the corpus
  test-exec            build the driver and run the execution tests
  test-fchk            run the file-check suite
  test-fchk-build      rebuild and run the file-check suite
  test                 run the execution tests and the file-check suite
"""


@dataclass
class CommandArgs:
    """Arguments shared by every command."""

    project_dir: Path
    no_asan: bool = False
    verbose: bool = False
    full_rebuild: bool = False


def _error(message: str) -> int:
    print(f"\033[1;31m✗ {message}\033[0m", file=sys.stderr)
    return 1


def _report_results(results: list[BuildResult]) -> int:
    failed = [r for r in results if not r.success]
    if failed:
        print()
        print("\033[1;31m✗ Build failed!\033[0m")
        print()
        print(failed[0].message)
        return 1
    total = sum(r.build_time for r in results)
    print()
    print("\033[1;32m✓ Build successful!\033[0m")
    print(f"Build time: {total:.2f}s")
    return 0


def build_command(targets: BuildTargets, args: CommandArgs, rest: list[str]) -> int:
    """Build all targets, or only the named one.

    Examples:
        layebuild build          # driver, test runner, fuzz harness
        layebuild build layec    # driver only
    """
    if not rest:
        return _report_results(targets.build_all(args.full_rebuild))
    if rest[0] == DRIVER_TARGET:
        return _report_results([targets.build_driver(args.full_rebuild)])
    return _error("Invalid project specified to build.")


def run_command(targets: BuildTargets, args: CommandArgs, rest: list[str]) -> int:
    result = targets.build_driver(args.full_rebuild)
    if not result.success:
        return _report_results([result])
    return targets.run_driver(rest)


def install_command(targets: BuildTargets, args: CommandArgs, rest: list[str]) -> int:
    if not rest:
        return _error("install command expects an install directory as its only argument.")
    result = targets.install(Path(rest[0]), args.full_rebuild)
    return _report_results([result])


def fuzz_command(targets: BuildTargets, args: CommandArgs, rest: list[str]) -> int:
    result = targets.build_fuzzer(args.full_rebuild)
    if not result.success:
        return _report_results([result])
    return targets.run_fuzzer()


def _run_exec_tests(targets: BuildTargets) -> int:
    report = ExecTestHarness(targets.config, targets.invoker).run()
    report.render()
    return 0 if report.success else 1


def exec_tests_command(targets: BuildTargets, args: CommandArgs, rest: list[str]) -> int:
    result = targets.build_driver(args.full_rebuild)
    if not result.success:
        return _report_results([result])
    return _run_exec_tests(targets)


def _fchk(targets: BuildTargets, args: CommandArgs, rebuild: bool) -> int:
    result = targets.build_driver(args.full_rebuild)
    if not result.success:
        return _report_results([result])
    return run_fchk(targets.config, rebuild=rebuild, invoker=targets.invoker)


def fchk_command(targets: BuildTargets, args: CommandArgs, rest: list[str]) -> int:
    return _fchk(targets, args, rebuild=False)


def fchk_build_command(targets: BuildTargets, args: CommandArgs, rest: list[str]) -> int:
    return _fchk(targets, args, rebuild=True)


def all_tests_command(targets: BuildTargets, args: CommandArgs, rest: list[str]) -> int:
    result = targets.build_driver(args.full_rebuild)
    if not result.success:
        return _report_results([result])
    exec_status = _run_exec_tests(targets)
    fchk_status = run_fchk(targets.config, rebuild=False, invoker=targets.invoker)
    return exec_status or fchk_status


COMMANDS: dict[str, Callable[[BuildTargets, CommandArgs, list[str]], int]] = {
    "build": build_command,
    "run": run_command,
    "install": install_command,
    "fuzz": fuzz_command,
    "test-exec": exec_tests_command,
    "test-fchk": fchk_command,
    "test-fchk-build": fchk_build_command,
    "test": all_tests_command,
}


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="layebuild",
        description="layebuild - incremental build and test orchestrator for the laye compiler",
        epilog=COMMANDS_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"layebuild {__version__}")
    parser.add_argument(
        "-C",
        "--project-dir",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    parser.add_argument("--no-asan", action="store_true", help="Build without AddressSanitizer")
    parser.add_argument("--rebuild", action="store_true", help="Recompile every object file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument("command", nargs="?", default=None, help="Command to run (default: build everything)")
    parser.add_argument("rest", nargs=argparse.REMAINDER, help=argparse.SUPPRESS)
    return parser


def run_cli(argv: Optional[list[str]] = None) -> int:
    """Parse argv, dispatch the command and return the process exit status."""
    parsed = create_parser().parse_args(argv)
    args = CommandArgs(
        project_dir=parsed.project_dir,
        no_asan=parsed.no_asan,
        verbose=parsed.verbose,
        full_rebuild=parsed.rebuild,
    )

    init_timer()
    set_verbose(args.verbose)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    command_name = parsed.command or "build"
    command = COMMANDS.get(command_name)
    if command is None:
        return _error(f"Unknown command: {command_name}")

    if not args.project_dir.is_dir():
        return _error(f"Error: Path is not a directory: {args.project_dir}")

    try:
        config = ProjectConfig.load(args.project_dir, no_asan=args.no_asan)
        return command(BuildTargets(config), args, list(parsed.rest))
    except (ConfigError, TargetError) as e:
        return _error(str(e))
    except KeyboardInterrupt:
        print()
        print("\033[1;33m✗ Interrupted\033[0m")
        return 130
    except Exception as e:
        print()
        print("\033[1;31m✗ Unexpected error\033[0m")
        print(f"{type(e).__name__}: {e}")
        if is_verbose():
            import traceback

            print()
            print("Traceback:")
            print(traceback.format_exc())
        return 1


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
