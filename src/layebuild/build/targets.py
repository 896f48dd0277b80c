"""
Build targets for a layebuild project.

Three named pipelines, each usable on its own:

- driver:      compile all units incrementally, link the compiler driver
- test-runner: compile and link the native test runner in one step
- fuzzer:      compile all units incrementally, compile the fuzzing entry
               point, link it with every unit except the program entry

build_all() runs them in that order and stops at the first failure. The
only state shared between targets is the filesystem.
"""

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from ..output import TimedLogger, log, log_detail, log_error
from ..subprocess_utils import ToolchainInvoker
from .build_profiles import FUZZER_LINK_FLAGS, format_profile_banner
from .compilation_scheduler import CompilationError, CompilationPass, CompilationScheduler
from .linker import LinkError, Linker
from .project_config import ProjectConfig

logger = logging.getLogger(__name__)

DRIVER_TARGET = "layec"
TEST_RUNNER_TARGET = "test-runner"
FUZZER_TARGET = "fuzzer"


class TargetError(Exception):
    """Raised when a target cannot be run or installed."""

    pass


@dataclass
class BuildResult:
    """Result of building one target."""

    target: str
    success: bool
    output_path: Optional[Path]
    build_time: float
    message: str
    compilation: Optional[CompilationPass] = None


class BuildTargets:
    """Builds, runs and installs the project's executables."""

    def __init__(self, config: ProjectConfig, invoker: Optional[ToolchainInvoker] = None):
        self.config = config
        self.invoker = invoker or ToolchainInvoker()
        self.scheduler = CompilationScheduler(config, self.invoker)
        self.linker = Linker(config, self.invoker)
        self._banner_shown = False

    def _show_banner(self) -> None:
        if not self._banner_shown:
            log(format_profile_banner(self.config.profile, " ".join(self.config.compiler)))
            log_detail(self.config.describe_profile(), verbose_only=True)
            self._banner_shown = True

    def build_driver(self, full_rebuild: bool = False) -> BuildResult:
        """Compile all units and link the driver executable."""
        self._show_banner()
        start_time = time.time()
        output_path = self.config.driver_path
        try:
            with TimedLogger("Compiling object files", phase=(1, 2)):
                compilation = self.scheduler.compile_all(full_rebuild)
            with TimedLogger(f"Linking {output_path.name}", phase=(2, 2)):
                linked = self.linker.link(self.config.object_paths(), output_path)
        except (CompilationError, LinkError) as e:
            return self._failure(DRIVER_TARGET, start_time, str(e))

        if not linked:
            return self._failure(DRIVER_TARGET, start_time, f"Linking {output_path} failed", compilation)
        return BuildResult(
            target=DRIVER_TARGET,
            success=True,
            output_path=output_path,
            build_time=time.time() - start_time,
            message=f"Built {output_path}",
            compilation=compilation,
        )

    def build_test_runner(self) -> BuildResult:
        """Compile and link the native test runner, independent of the object cache."""
        start_time = time.time()
        source = self.config.test_runner_source
        if source is None:
            log_detail("No test runner source configured, skipping", verbose_only=True)
            return BuildResult(TEST_RUNNER_TARGET, True, None, 0.0, "Test runner not configured")

        self._show_banner()
        output_path = self.config.test_runner_path
        try:
            with TimedLogger(f"Building {output_path.name}"):
                built = self.linker.compile_and_link(source, output_path)
        except LinkError as e:
            return self._failure(TEST_RUNNER_TARGET, start_time, str(e))

        if not built:
            return self._failure(TEST_RUNNER_TARGET, start_time, f"Building {output_path} failed")
        return BuildResult(TEST_RUNNER_TARGET, True, output_path, time.time() - start_time, f"Built {output_path}")

    def build_fuzzer(self, full_rebuild: bool = False) -> BuildResult:
        """Build the fuzz harness from the library units and the fuzzing entry point."""
        self._show_banner()
        start_time = time.time()
        output_path = self.config.fuzzer_path
        entry_object = self.config.to_object_path(self.config.fuzzer_source)
        try:
            with TimedLogger("Compiling object files", phase=(1, 3)):
                compilation = self.scheduler.compile_all(full_rebuild)
            with TimedLogger(f"Compiling {self.config.fuzzer_source.name}", phase=(2, 3)):
                compiled = self.linker.compile_object(self.config.fuzzer_source, entry_object)
            if not compiled:
                return self._failure(FUZZER_TARGET, start_time, f"Compiling {self.config.fuzzer_source} failed", compilation)

            objects = self.config.object_paths(self.config.library_sources) + [entry_object]
            with TimedLogger(f"Linking {output_path.name}", phase=(3, 3)):
                linked = self.linker.link(objects, output_path, FUZZER_LINK_FLAGS)
        except (CompilationError, LinkError) as e:
            return self._failure(FUZZER_TARGET, start_time, str(e))

        if not linked:
            return self._failure(FUZZER_TARGET, start_time, f"Linking {output_path} failed", compilation)
        return BuildResult(FUZZER_TARGET, True, output_path, time.time() - start_time, f"Built {output_path}", compilation)

    def build_all(self, full_rebuild: bool = False) -> list[BuildResult]:
        """Build driver, test runner and fuzz harness, stopping at the first failure.

        full_rebuild recompiles the shared object cache once, in the driver
        pass; the fuzz harness then reuses the fresh objects.
        """
        results: list[BuildResult] = []
        builds = (
            lambda: self.build_driver(full_rebuild),
            self.build_test_runner,
            self.build_fuzzer,
        )
        for build in builds:
            result = build()
            results.append(result)
            if not result.success:
                break
        return results

    def run_driver(self, args: Sequence[str]) -> int:
        """Run the built driver with args and return its exit status."""
        return self._run_executable(self.config.driver_path, list(args))

    def run_fuzzer(self) -> int:
        """Run the fuzz harness over the corpus directory."""
        return self._run_executable(self.config.fuzzer_path, [str(self.config.fuzz_corpus)])

    def install(self, prefix: Path, full_rebuild: bool = False) -> BuildResult:
        """Build the driver and copy it to <prefix>/bin.

        Raises:
            TargetError: If the install directories cannot be created
        """
        try:
            for directory in (prefix, prefix / "bin", prefix / "lib"):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TargetError(f"Cannot create install directory under {prefix}: {e}") from e

        result = self.build_driver(full_rebuild)
        if not result.success:
            return result

        destination = prefix / "bin" / self.config.driver_name
        try:
            shutil.copy2(self.config.driver_path, destination)
        except OSError as e:
            raise TargetError(f"Failed to install {self.config.driver_path} to {destination}: {e}") from e
        log(f"Installed {destination}")
        result.message = f"Installed {destination}"
        return result

    def _run_executable(self, path: Path, args: list[str]) -> int:
        if not path.exists():
            raise TargetError(f"Executable not found: {path}")
        try:
            return self.invoker.run_sync([str(path), *args], cwd=self.config.project_dir)
        except OSError as e:
            raise TargetError(f"Failed to run {path}: {e}") from e

    def _failure(
        self,
        target: str,
        start_time: float,
        message: str,
        compilation: Optional[CompilationPass] = None,
    ) -> BuildResult:
        log_error(message)
        return BuildResult(
            target=target,
            success=False,
            output_path=None,
            build_time=time.time() - start_time,
            message=message,
            compilation=compilation,
        )
