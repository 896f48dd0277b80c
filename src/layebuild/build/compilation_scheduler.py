"""
Compilation Scheduler - parallel, incremental compilation of source units.

One compiler process is launched per eligible source unit, immediately and
without a concurrency cap, in source-list order. The join phase then waits on
the handles in launch order. The first job that exits non-zero aborts the
pass: every job still in flight is terminated and reaped before
CompilationError is raised, so no compiler processes outlive the pass.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ..output import log, log_compile, log_detail
from ..subprocess_utils import ToolchainInvoker, format_command
from .project_config import ProjectConfig
from .staleness import check_unit, full_rebuild_reason

logger = logging.getLogger(__name__)

# Seconds between cancellation checks while blocked on a handle
JOIN_POLL_INTERVAL = 0.1


class CompilationError(Exception):
    """Raised when a compiler cannot be launched or exits non-zero."""

    def __init__(self, message: str, source_path: Optional[Path] = None, exit_code: Optional[int] = None):
        super().__init__(message)
        self.source_path = source_path
        self.exit_code = exit_code


class JobState(Enum):
    """State of a compilation job."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class CompilationJob:
    """One in-flight or finished compiler invocation."""

    index: int
    source_path: Path
    output_path: Path
    compiler_cmd: list[str]
    handle: Optional[subprocess.Popen] = None
    state: JobState = JobState.RUNNING
    result_code: Optional[int] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    def duration(self) -> Optional[float]:
        """Get job duration in seconds."""
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return None


@dataclass
class CompilationPass:
    """Record of one compilation pass.

    jobs maps every source-unit index to its job, or to None when the unit
    was up to date and skipped.
    """

    escalation_reason: Optional[str] = None
    jobs: dict[int, Optional[CompilationJob]] = field(default_factory=dict)

    @property
    def escalated(self) -> bool:
        return self.escalation_reason is not None

    @property
    def launched(self) -> list[int]:
        return [i for i, job in self.jobs.items() if job is not None]

    @property
    def skipped(self) -> list[int]:
        return [i for i, job in self.jobs.items() if job is None]

    def launched_jobs(self) -> list[CompilationJob]:
        """Launched jobs in launch order."""
        return [job for _, job in sorted(self.jobs.items()) if job is not None]


class CompilationScheduler:
    """Compiles a project's source units into object artifacts."""

    def __init__(self, config: ProjectConfig, invoker: Optional[ToolchainInvoker] = None):
        """
        Args:
            config: Project configuration
            invoker: Toolchain invoker (default: real subprocesses)
        """
        self.config = config
        self.invoker = invoker or ToolchainInvoker()
        self.cancel_event = threading.Event()

    def cancel(self) -> None:
        """Ask the running pass to stop; it drains its jobs and raises CompilationError."""
        self.cancel_event.set()

    def compile_command(self, source: Path) -> list[str]:
        return [
            *self.config.compiler,
            *self.config.compile_flags(),
            "-c",
            "-o",
            str(self.config.to_object_path(source)),
            str(source),
        ]

    def compile_all(self, full_rebuild: bool = False) -> CompilationPass:
        """Compile every stale source unit.

        Args:
            full_rebuild: Recompile every unit without staleness checks

        Returns:
            CompilationPass describing which units were launched and skipped

        Raises:
            CompilationError: If a compiler could not be launched, exited
                non-zero, or the pass was cancelled
        """
        self.cancel_event.clear()

        reason = full_rebuild_reason(self.config, full_rebuild)
        compilation = CompilationPass(escalation_reason=reason)
        if reason is not None:
            log(f"Rebuilding all {len(self.config.sources)} object files ({reason})")

        self.config.object_dir.mkdir(parents=True, exist_ok=True)

        for index, source in enumerate(self.config.sources):
            if reason is None and not check_unit(self.config, source).forces_rebuild:
                compilation.jobs[index] = None
                log_compile(source.name, skipped=True)
                continue

            job = CompilationJob(
                index=index,
                source_path=source,
                output_path=self.config.to_object_path(source),
                compiler_cmd=self.compile_command(source),
            )
            log_compile(source.name)
            try:
                job.start_time = time.time()
                job.handle = self.invoker.run_async(job.compiler_cmd, cwd=self.config.project_dir)
            except OSError as e:
                logger.error(f"Failed to launch: {format_command(job.compiler_cmd)}")
                self._drain(compilation)
                raise CompilationError(f"Failed to launch compiler for {source}: {e}", source_path=source) from e
            compilation.jobs[index] = job

        if compilation.launched:
            log("Waiting for object files to finish compiling...")
            self._join(compilation)
        else:
            log_detail("All object files are up to date", verbose_only=True)

        return compilation

    def _join(self, compilation: CompilationPass) -> None:
        """Wait on each launched job in launch order, failing fast."""
        try:
            for job in compilation.launched_jobs():
                code = self._wait_for(job)
                if code is None:
                    self._drain(compilation)
                    raise CompilationError("Compilation cancelled")

                job.result_code = code
                job.end_time = time.time()
                if code != 0:
                    job.state = JobState.FAILED
                    logger.debug(f"Job {job.index} ({job.source_path.name}) exited with {code}")
                    self.cancel_event.set()
                    self._drain(compilation)
                    raise CompilationError(
                        f"Compilation failed for {job.source_path} (exit code {code})",
                        source_path=job.source_path,
                        exit_code=code,
                    )

                job.state = JobState.COMPLETED
                duration = job.duration()
                if duration is not None:
                    logger.debug(f"Compiled {job.source_path.name} in {duration:.2f}s")
        except KeyboardInterrupt:
            self._drain(compilation)
            raise

    def _wait_for(self, job: CompilationJob) -> Optional[int]:
        """Block on one handle; None means the pass was cancelled meanwhile."""
        assert job.handle is not None
        while True:
            code = self.invoker.wait(job.handle, timeout=JOIN_POLL_INTERVAL)
            if code is not None:
                return code
            if self.cancel_event.is_set():
                return None

    def _drain(self, compilation: CompilationPass) -> None:
        """Terminate and reap every job that is still running."""
        running = [job for job in compilation.launched_jobs() if job.state is JobState.RUNNING and job.handle is not None]
        if not running:
            return
        logger.info(f"Cancelling {len(running)} in-flight compilation jobs")
        for job in running:
            self.invoker.terminate(job.handle)  # type: ignore[arg-type]
            job.state = JobState.CANCELLED
            job.end_time = time.time()
