"""Pytest configuration and fixtures for layebuild tests.

This conftest addresses Python 3.13 compatibility issues with pytest's capture fixtures.
Python 3.13 changed how stdout/stderr are handled, causing "I/O operation on closed file"
errors during test teardown. This is a known issue: https://github.com/pytest-dev/pytest/issues/11439

It also provides a fake toolchain (FakeInvoker) so the scheduler, linker,
targets and harness can be exercised without a C compiler.
"""

import io
import itertools
import os
import sys
import warnings
from pathlib import Path
from typing import Callable, Optional, Sequence

import pytest

from layebuild.build.build_profiles import BuildProfile
from layebuild.build.project_config import ProjectConfig
from layebuild.output import init_timer, set_verbose

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)

# An mtime well in the past, so anything written during a test is newer
OLD_MTIME = 1_000_000_000


def _set_mtime(path: Path, seconds: float) -> None:
    """Set both atime and mtime of path."""
    ns = int(seconds * 1_000_000_000)
    os.utime(path, ns=(ns, ns))


class FakeHandle:
    """Stand-in for a subprocess.Popen returned by FakeInvoker.run_async."""

    _pids = itertools.count(1000)

    def __init__(self, args: list[str], exit_code: int, hangs: bool = False):
        self.pid = next(self._pids)
        self.args = args
        self.exit_code = exit_code
        self.hangs = hangs
        self.terminated = False

    def __repr__(self) -> str:
        return f"FakeHandle(pid={self.pid}, exit_code={self.exit_code})"


class FakeInvoker:
    """Records toolchain invocations instead of running them.

    A successful invocation that names an output with "-o" creates that file,
    which is what a real compiler or linker would leave behind.

    Attributes:
        fail_sources: File names whose compilation exits with status 1
        hang_sources: File names whose compilation never finishes on its own
        launch_errors: File names whose compiler cannot be launched (OSError)
        sync_handler: Optional callable deciding run_sync's exit status
        on_wait: Optional callback invoked on every wait() call
    """

    def __init__(self) -> None:
        self.fail_sources: set[str] = set()
        self.hang_sources: set[str] = set()
        self.launch_errors: set[str] = set()
        self.sync_handler: Optional[Callable[[list[str]], int]] = None
        self.on_wait: Optional[Callable[[FakeHandle], None]] = None
        self.async_calls: list[list[str]] = []
        self.sync_calls: list[list[str]] = []
        self.waited: list[FakeHandle] = []
        self.terminated: list[FakeHandle] = []

    @staticmethod
    def _input_name(args: list[str]) -> str:
        return Path(args[-1]).name

    @staticmethod
    def _create_output(args: list[str]) -> None:
        if "-o" in args:
            output = Path(args[args.index("-o") + 1])
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text("fake artifact\n")

    def run_sync(self, args: Sequence[str], cwd: Optional[Path] = None) -> int:
        args = [str(a) for a in args]
        self.sync_calls.append(args)
        code = self.sync_handler(args) if self.sync_handler is not None else 0
        if code == 0:
            self._create_output(args)
        return code

    def run_async(self, args: Sequence[str], cwd: Optional[Path] = None) -> FakeHandle:
        args = [str(a) for a in args]
        name = self._input_name(args)
        if name in self.launch_errors:
            raise FileNotFoundError(f"No such file or directory: '{args[0]}'")
        self.async_calls.append(args)
        handle = FakeHandle(args, 1 if name in self.fail_sources else 0, hangs=name in self.hang_sources)
        if handle.exit_code == 0 and not handle.hangs:
            self._create_output(args)
        return handle

    def wait(self, handle: FakeHandle, timeout: Optional[float] = None) -> Optional[int]:
        self.waited.append(handle)
        if self.on_wait is not None:
            self.on_wait(handle)
        if handle.hangs and not handle.terminated:
            return None
        return handle.exit_code

    def terminate(self, handle: FakeHandle) -> None:
        handle.terminated = True
        self.terminated.append(handle)

    def compiled_names(self) -> list[str]:
        """File names of the units compiled asynchronously, in launch order."""
        return [self._input_name(args) for args in self.async_calls]


@pytest.fixture(autouse=True)
def _quiet_output():
    """Send layebuild's timestamped output to a buffer and enable verbose lines."""
    buffer = io.StringIO()
    init_timer(buffer)
    set_verbose(True)
    yield buffer
    init_timer()


@pytest.fixture
def output_buffer(_quiet_output) -> io.StringIO:
    return _quiet_output


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A small project: two library units, an entry unit and two headers.

    All files carry an old mtime so that artifacts written later are newer.
    """
    root = tmp_path / "project"
    files = {
        "lib/alpha.c": "int alpha(void) { return 1; }\n",
        "lib/beta.c": "int beta(void) { return 2; }\n",
        "src/main.c": "int main(void) { return 0; }\n",
        "include/alpha.h": "int alpha(void);\n",
        "include/beta.h": "int beta(void);\n",
        "src/exec_test_runner.c": "int main(void) { return 0; }\n",
        "fuzz/parse_fuzzer.c": "int LLVMFuzzerTestOneInput(void) { return 0; }\n",
    }
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    for path in root.rglob("*"):
        _set_mtime(path, OLD_MTIME)
    return root


@pytest.fixture
def config(project_dir: Path) -> ProjectConfig:
    return ProjectConfig.create(
        project_dir,
        sources=("lib/alpha.c", "lib/beta.c", "src/main.c"),
        compiler=("cc",),
        cflags=("-std=c17", "-ggdb"),
        profile=BuildProfile.ASAN,
    )


@pytest.fixture
def invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test.

    This prevents "I/O operation on closed file" errors in Python 3.13
    when tests raise exceptions that close stdout/stderr.
    """
    yield

    # Restore if they were closed during the test
    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_call(item):  # noqa: ARG001
    """Wrap test execution to handle stdout/stderr closure gracefully."""
    yield

    # After test execution, ensure streams aren't closed
    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.hookimpl(hookwrapper=True, trylast=True)
def pytest_runtest_teardown(item):  # noqa: ARG001
    """Ensure streams are restored during teardown phase."""
    yield

    # Final restoration after teardown
    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.fixture
def set_mtime() -> Callable[[Path, float], None]:
    """Function setting a path's mtime (seconds since the epoch)."""
    return _set_mtime


@pytest.fixture
def old_mtime() -> int:
    return OLD_MTIME
