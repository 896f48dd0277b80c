"""Toolchain invocation primitives.

Every compiler, linker, driver and test-executable invocation goes through
ToolchainInvoker so that platform flags are applied consistently:

- stdin is redirected to DEVNULL (children never read the terminal)
- stdout/stderr are inherited from the controller
- CREATE_NO_WINDOW is set on Windows

The asynchronous variant returns the subprocess.Popen object itself; it is
the opaque handle a compilation pass owns until it has been waited on.
"""

import logging
import subprocess
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

import psutil

logger = logging.getLogger(__name__)

# Seconds to wait for SIGTERM before escalating to SIGKILL
TERMINATE_GRACE_PERIOD = 3.0


def get_subprocess_creation_flags() -> int:
    """Return CREATE_NO_WINDOW on Windows, 0 elsewhere."""
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def _apply_platform_defaults(kwargs: dict[str, Any]) -> dict[str, Any]:
    default_flags = get_subprocess_creation_flags()
    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL
    return kwargs


def format_command(args: Sequence[str], limit: int = 6) -> str:
    """Render a command for log output, truncated after `limit` arguments."""
    shown = " ".join(str(a) for a in args[:limit])
    if len(args) > limit:
        shown += f" ... ({len(args)} args)"
    return shown


class ToolchainInvoker:
    """Runs toolchain commands synchronously or as pollable handles.

    Launch failures (executable not found, permission denied) surface as
    OSError from run_sync/run_async; callers decide whether that is fatal.
    """

    def run_sync(self, args: Sequence[str], cwd: Optional[Path] = None) -> int:
        """Run a command to completion and return its exit status."""
        logger.debug(f"run_sync: {format_command(args)}")
        result = subprocess.run([str(a) for a in args], cwd=cwd, **_apply_platform_defaults({}))
        logger.debug(f"run_sync: exit status {result.returncode}")
        return result.returncode

    def run_async(self, args: Sequence[str], cwd: Optional[Path] = None) -> subprocess.Popen:
        """Start a command without waiting and return its handle."""
        handle = subprocess.Popen([str(a) for a in args], cwd=cwd, **_apply_platform_defaults({}))
        logger.debug(f"run_async: pid {handle.pid}: {format_command(args)}")
        return handle

    def wait(self, handle: subprocess.Popen, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for the handle's process and return its exit status.

        Returns None if timeout elapsed before the process exited; with no
        timeout this blocks until exit.
        """
        try:
            return handle.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def terminate(self, handle: subprocess.Popen) -> None:
        """Terminate a handle's whole process tree and reap it.

        Compiler drivers fork cc1/as/ld children, so killing only the root
        would leave them running. Children are terminated before the root.
        """
        if handle.poll() is not None:
            return

        try:
            children = psutil.Process(handle.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            children = []

        for proc in reversed(children):
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        # The root is our own child: signal and reap it through Popen so its
        # exit status is not stolen by psutil's waitpid.
        handle.terminate()

        _gone, alive = psutil.wait_procs(children, timeout=TERMINATE_GRACE_PERIOD)
        if alive:
            logger.warning(f"Force killing {len(alive)} child processes of pid {handle.pid}")
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

        try:
            handle.wait(timeout=TERMINATE_GRACE_PERIOD)
        except subprocess.TimeoutExpired:
            handle.kill()
            handle.wait()
        logger.debug(f"Terminated process tree of pid {handle.pid}")
