"""
Centralized user-facing output for layebuild.

Every line is prefixed with the time elapsed since program launch in
MM:SS.cc format, so a slow toolchain step is visible at a glance:

    00:00.02 Checking object files in out/o...
    00:00.03 [compile] layec_ir.c
    00:00.03 Waiting for object files to finish compiling...
    00:01.87 [2/3] Linking out/layec...
    00:01.87 WARNING: Couldn't read header directory. Forcing rebuild

Usage:
    from layebuild.output import log, log_phase, log_detail, log_warning

    log("Building driver...")
    log_phase(1, 3, "Compiling object files...")
    log_detail("out/o/layec.c.o")
"""

import sys
import time
from types import TracebackType
from typing import Optional, TextIO

_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None
_verbose: bool = True


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the program timer.

    Called automatically on first use if the CLI did not call it.

    Args:
        output_stream: Stream to write to (defaults to sys.stdout at write time)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    _output_stream = output_stream


def set_verbose(verbose: bool) -> None:
    """Enable or disable lines logged with verbose_only=True."""
    global _verbose
    _verbose = verbose


def is_verbose() -> bool:
    return _verbose


def get_elapsed() -> float:
    """Seconds elapsed since init_timer()."""
    if _start_time is None:
        init_timer(_output_stream)
    return time.time() - _start_time  # type: ignore[operator]


def format_timestamp() -> str:
    """Format the elapsed time as MM:SS.cc."""
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _write(message: str) -> None:
    stream = _output_stream if _output_stream is not None else sys.stdout
    stream.write(f"{format_timestamp()} {message}\n")
    stream.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """
    Log a message with timestamp.

    Args:
        message: Message to log
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _write(message)


def log_phase(phase: int, total: int, message: str, verbose_only: bool = False) -> None:
    """Log a pipeline phase as "[N/M] message"."""
    if verbose_only and not _verbose:
        return
    _write(f"[{phase}/{total}] {message}")


def log_detail(message: str, indent: int = 6, verbose_only: bool = False) -> None:
    """Log an indented detail line."""
    if verbose_only and not _verbose:
        return
    _write(f"{' ' * indent}{message}")


def log_compile(source_name: str, skipped: bool = False) -> None:
    """
    Log one translation unit of a compilation pass.

    Launched units are always shown; skipped (up-to-date) units only in
    verbose mode.
    """
    if skipped:
        if _verbose:
            _write(f"      [fresh] {source_name}")
        return
    _write(f"      [compile] {source_name}")


def log_error(message: str) -> None:
    _write(f"ERROR: {message}")


def log_warning(message: str) -> None:
    _write(f"WARNING: {message}")


class TimedLogger:
    """
    Context manager that logs an operation and how long it took.

    Usage:
        with TimedLogger("Linking out/layec", phase=(2, 3)):
            linker.link(...)
    """

    def __init__(self, operation: str, phase: Optional[tuple[int, int]] = None, verbose_only: bool = False):
        self.operation = operation
        self.phase = phase
        self.verbose_only = verbose_only
        self.start_time = 0.0

    def __enter__(self) -> "TimedLogger":
        self.start_time = time.time()
        if self.phase:
            log_phase(self.phase[0], self.phase[1], f"{self.operation}...", self.verbose_only)
        else:
            log(f"{self.operation}...", self.verbose_only)
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        del exc_val, exc_tb  # Unused
        if exc_type is None:
            elapsed = time.time() - self.start_time
            log_detail(f"Done ({elapsed:.2f}s)", verbose_only=self.verbose_only)
        return None
