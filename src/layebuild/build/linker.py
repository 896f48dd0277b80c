"""Linker - the link/assemble stage.

Every invocation is synchronous and runs exactly one toolchain process:

- link(): object artifacts, in the given order, into one executable
- compile_object(): one source into one object artifact (no staleness check)
- compile_and_link(): one source straight to an executable, used for the
  test runner which does not share the driver's object cache
"""

import logging
from pathlib import Path
from typing import Optional, Sequence

from ..output import log_detail, log_error
from ..subprocess_utils import ToolchainInvoker, format_command
from .project_config import ProjectConfig

logger = logging.getLogger(__name__)


class LinkError(Exception):
    """Raised when the toolchain cannot be launched for a link step."""

    pass


class Linker:
    """Runs single link and compile steps for a project."""

    def __init__(self, config: ProjectConfig, invoker: Optional[ToolchainInvoker] = None):
        self.config = config
        self.invoker = invoker or ToolchainInvoker()

    def link_command(self, object_artifacts: Sequence[Path], output_path: Path, extra_flags: Sequence[str] = ()) -> list[str]:
        return [
            *self.config.compiler,
            *self.config.link_flags(tuple(extra_flags)),
            "-o",
            str(output_path),
            *(str(p) for p in object_artifacts),
        ]

    def link(self, object_artifacts: Sequence[Path], output_path: Path, extra_flags: Sequence[str] = ()) -> bool:
        """Link object artifacts into an executable.

        Args:
            object_artifacts: Objects in link order
            output_path: Executable to produce
            extra_flags: Target-specific link flags (e.g. the fuzzer runtime)

        Returns:
            True if the linker exited with status 0

        Raises:
            LinkError: If the linker could not be launched
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.link_command(object_artifacts, output_path, extra_flags)
        log_detail(f"Linking {len(object_artifacts)} objects -> {output_path.name}", verbose_only=True)
        return self._run(cmd, output_path)

    def compile_object(self, source: Path, output_path: Path) -> bool:
        """Compile one source to an object artifact."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = [*self.config.compiler, *self.config.compile_flags(), "-c", "-o", str(output_path), str(source)]
        return self._run(cmd, output_path)

    def compile_and_link(self, source: Path, output_path: Path, extra_flags: Sequence[str] = ()) -> bool:
        """Compile and link one source into an executable in a single step."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = [*self.config.compiler, *self.config.link_flags(tuple(extra_flags)), "-o", str(output_path), str(source)]
        return self._run(cmd, output_path)

    def _run(self, cmd: list[str], output_path: Path) -> bool:
        try:
            code = self.invoker.run_sync(cmd, cwd=self.config.project_dir)
        except OSError as e:
            raise LinkError(f"Failed to launch toolchain for {output_path.name}: {e}") from e

        if code != 0:
            log_error(f"{output_path.name}: toolchain exited with status {code}")
            logger.debug(f"Failed command: {format_command(cmd, limit=len(cmd))}")
            return False
        return True
