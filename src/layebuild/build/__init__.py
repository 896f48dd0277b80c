"""
Build system components for layebuild.

This package provides:
- Project configuration and build profiles
- Staleness detection for object files
- Parallel compilation scheduling
- Linking and the named build targets
"""

from .build_profiles import BuildProfile, ProfileFlags, get_profile
from .compilation_scheduler import CompilationError, CompilationPass, CompilationScheduler
from .linker import LinkError, Linker
from .project_config import ConfigError, ProjectConfig, to_object_path
from .staleness import StalenessVerdict, needs_rebuild
from .targets import BuildTargets, TargetError

__all__ = [
    "BuildProfile",
    "BuildTargets",
    "CompilationError",
    "CompilationPass",
    "CompilationScheduler",
    "ConfigError",
    "LinkError",
    "Linker",
    "ProfileFlags",
    "ProjectConfig",
    "StalenessVerdict",
    "TargetError",
    "get_profile",
    "needs_rebuild",
    "to_object_path",
]
