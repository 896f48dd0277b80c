"""Staleness detection for object artifacts.

A target is stale when it does not exist or when any dependency has a
modification time strictly newer than its own. When a path cannot be
stat'ed the verdict is UNKNOWN, which callers always treat as stale.

Two checks feed a compilation pass:

1. Header-set check (once per pass): every entry of the flat header
   directory against a representative object artifact. A stale or unknown
   result escalates the pass to a full rebuild.
2. Per-unit check: one source file against its own object artifact. An
   unknown result forces only that unit.

Nested directories inside the header directory are not descended into; the
directory entry's own mtime is compared instead.
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from ..output import log_warning
from .project_config import ProjectConfig

logger = logging.getLogger(__name__)


class StalenessVerdict(Enum):
    """Outcome of comparing a target against its dependencies."""

    STALE = "stale"
    FRESH = "fresh"
    UNKNOWN = "unknown"

    @property
    def forces_rebuild(self) -> bool:
        """UNKNOWN collapses to STALE: correctness over build speed."""
        return self is not StalenessVerdict.FRESH


def path_exists(path: Path) -> bool:
    return os.path.exists(path)


def list_dir(path: Path) -> list[str]:
    """Entry names of a directory, without recursion.

    Raises:
        OSError: If the directory cannot be read
    """
    return os.listdir(path)


def needs_rebuild(target: Path, dependencies: Iterable[Path]) -> StalenessVerdict:
    """Decide whether target must be rebuilt from dependencies.

    Args:
        target: Artifact produced from the dependencies
        dependencies: Files the artifact was built from

    Returns:
        STALE if the target is missing or older than any dependency,
        FRESH if it is at least as new as all of them,
        UNKNOWN if some path could not be stat'ed
    """
    try:
        target_mtime = os.stat(target).st_mtime_ns
    except FileNotFoundError:
        return StalenessVerdict.STALE
    except OSError as e:
        logger.debug(f"Cannot stat target {target}: {e}")
        return StalenessVerdict.UNKNOWN

    for dependency in dependencies:
        try:
            dependency_mtime = os.stat(dependency).st_mtime_ns
        except OSError as e:
            logger.debug(f"Cannot stat dependency {dependency}: {e}")
            return StalenessVerdict.UNKNOWN
        if dependency_mtime > target_mtime:
            logger.debug(f"{target} is older than {dependency}")
            return StalenessVerdict.STALE

    return StalenessVerdict.FRESH


def representative_object(config: ProjectConfig) -> Path:
    """The object artifact the header set is compared against.

    This is the oldest object artifact that exists: if any header is newer
    than it, at least one unit was compiled against an older header. Missing
    artifacts are left to the per-unit check. With no artifacts at all the
    first unit's artifact is returned, which is stale by non-existence.
    """
    oldest: Optional[Path] = None
    oldest_mtime = 0
    for object_path in config.object_paths():
        try:
            mtime = os.stat(object_path).st_mtime_ns
        except OSError:
            continue
        if oldest is None or mtime < oldest_mtime:
            oldest = object_path
            oldest_mtime = mtime
    if oldest is None:
        return config.to_object_path(config.sources[0])
    return oldest


def check_header_set(config: ProjectConfig) -> StalenessVerdict:
    """Compare every header directory entry against the representative object.

    An unreadable header directory yields UNKNOWN.
    """
    try:
        entries = list_dir(config.include_dir)
    except OSError as e:
        logger.debug(f"Cannot read header directory {config.include_dir}: {e}")
        log_warning("Couldn't read header directory. Forcing rebuild")
        return StalenessVerdict.UNKNOWN

    headers = [config.include_dir / entry for entry in entries]
    verdict = needs_rebuild(representative_object(config), headers)
    if verdict is StalenessVerdict.UNKNOWN:
        log_warning("Couldn't detect if headers changed. Forcing rebuild")
    return verdict


def check_unit(config: ProjectConfig, source: Path) -> StalenessVerdict:
    """Compare one source unit against its own object artifact."""
    verdict = needs_rebuild(config.to_object_path(source), [source])
    if verdict is StalenessVerdict.UNKNOWN:
        log_warning(f"Couldn't detect if file changed: {source}")
    return verdict


def full_rebuild_reason(config: ProjectConfig, requested: bool) -> Optional[str]:
    """Return why the whole pass must be rebuilt, or None for an incremental pass.

    The build directory check comes first: without it no artifact can exist,
    so no probing is done at all.
    """
    if requested:
        return "full rebuild requested"
    if not path_exists(config.build_dir):
        return f"build directory {config.build_dir} does not exist"

    verdict = check_header_set(config)
    if verdict is StalenessVerdict.STALE:
        return "header files changed"
    if verdict is StalenessVerdict.UNKNOWN:
        return "header staleness could not be determined"
    return None
