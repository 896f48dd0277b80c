"""Project Configuration - the immutable record every component receives.

This module defines:
- ProjectConfig: all paths, sources and flags of one project, built once at
  process start and passed explicitly to the scheduler, linker, targets and
  test harness
- to_object_path: the deterministic source-to-object naming function
- Loading of optional overrides from a `layebuild.ini` file

Example layebuild.ini:

    [project]
    compiler = clang
    profile = plain
    sources =
        lib/layec_shared.c
        lib/layec_context.c
        src/layec.c
    cflags = -std=c17 -ggdb
"""

import configparser
import logging
import os
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from .build_profiles import BuildProfile, get_profile, merge_compile_flags, merge_link_flags, parse_profile

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "layebuild.ini"
CONFIG_SECTION = "project"
OBJECT_SUFFIX = ".o"

# The entry point (main) must always be the last unit
DEFAULT_SOURCES: tuple[str, ...] = (
    "lib/layec_shared.c",
    "lib/layec_context.c",
    "lib/layec_depgraph.c",
    "lib/layec_ir.c",
    "lib/irpass/validate.c",
    "lib/layec_llvm.c",
    "lib/laye/laye_data.c",
    "lib/laye/laye_debug.c",
    "lib/laye/laye_parser.c",
    "lib/laye/laye_sema.c",
    "lib/laye/laye_irgen.c",
    "src/layec.c",
)

DEFAULT_CFLAGS: tuple[str, ...] = (
    "-std=c17",
    "-pedantic",
    "-pedantic-errors",
    "-ggdb",
    "-Werror=return-type",
    "-D__USE_POSIX",
    "-D_XOPEN_SOURCE=600",
)

# Compilers probed on PATH when neither CC nor the config names one
COMPILER_CANDIDATES: tuple[str, ...] = ("clang", "gcc", "cc")

_PATH_KEYS = ("build_dir", "include_dir", "test_runner_source", "fuzzer_source", "fuzz_corpus", "test_dir", "fchk_out_dir")
_STRING_KEYS = ("object_subdir", "driver_name", "test_runner_name", "fuzzer_name", "test_extension", "noexec_marker")


class ConfigError(Exception):
    """Raised when the project configuration is invalid or unreadable."""

    pass


def to_object_path(source: Path | str, object_dir: Path) -> Path:
    """Map a source unit to its object artifact.

    The directory part of the source is dropped and the object suffix is
    appended to the full file name, so "lib/laye/laye_ir.c" becomes
    "<object_dir>/laye_ir.c.o". Two units with the same file name in different
    directories collide; the project layout avoids that.
    """
    return object_dir / f"{Path(source).name}{OBJECT_SUFFIX}"


def detect_compiler(environ: Optional[Mapping[str, str]] = None) -> tuple[str, ...]:
    """Pick the C compiler command.

    Order: the CC environment variable, then the first of clang, gcc, cc found
    on PATH. Falls back to plain "cc" so the launch failure names a compiler.
    """
    env = os.environ if environ is None else environ
    cc = env.get("CC", "").strip()
    if cc:
        return tuple(shlex.split(cc))
    for candidate in COMPILER_CANDIDATES:
        if shutil.which(candidate):
            return (candidate,)
    return ("cc",)


@dataclass(frozen=True)
class ProjectConfig:
    """Complete configuration of one project.

    All paths are absolute (resolved against project_dir by create()). All
    fields are mandatory; create() supplies the defaults.

    Attributes:
        project_dir: Project root; subprocesses run with this working directory
        sources: Ordered translation units, the last one being the program entry
        compiler: Compiler command prefix (e.g. ("clang",) or ("ccache", "gcc"))
        cflags: Base compile flags before profile flags are applied
        profile: Sanitizer build profile
        build_dir: Build output directory
        object_subdir: Name of the object directory under build_dir
        include_dir: Flat header directory shared by all units
        driver_name: File name of the compiler driver executable
        test_runner_source: Native test runner source, or None when not built
        test_runner_name: File name of the test runner executable
        fuzzer_source: Fuzzing entry point source
        fuzzer_name: File name of the fuzz harness executable
        fuzz_corpus: Corpus directory passed to the fuzz harness
        test_dir: Directory holding execution tests
        test_extension: Extension an execution test must carry
        noexec_marker: Marker inserted before test_extension to opt a file out
        fchk_out_dir: Output directory owned by the external file-check suite
    """

    project_dir: Path
    sources: tuple[Path, ...]
    compiler: tuple[str, ...]
    cflags: tuple[str, ...]
    profile: BuildProfile
    build_dir: Path
    object_subdir: str
    include_dir: Path
    driver_name: str
    test_runner_source: Optional[Path]
    test_runner_name: str
    fuzzer_source: Path
    fuzzer_name: str
    fuzz_corpus: Path
    test_dir: Path
    test_extension: str
    noexec_marker: str
    fchk_out_dir: Path

    @classmethod
    def create(cls, project_dir: Path, **overrides: Any) -> "ProjectConfig":
        """Create a config with defaults, resolving relative paths against project_dir.

        Raises:
            ConfigError: If an override is unknown or the source list is empty
        """
        project_dir = Path(project_dir).resolve()
        values: dict[str, Any] = {
            "sources": DEFAULT_SOURCES,
            "compiler": None,
            "cflags": DEFAULT_CFLAGS,
            "profile": BuildProfile.ASAN,
            "build_dir": "out",
            "object_subdir": "o",
            "include_dir": "include",
            "driver_name": "layec",
            "test_runner_source": "src/exec_test_runner.c",
            "test_runner_name": "exec_test_runner",
            "fuzzer_source": "fuzz/parse_fuzzer.c",
            "fuzzer_name": "parse_fuzzer",
            "fuzz_corpus": "fuzz/corpus",
            "test_dir": "test/laye",
            "test_extension": ".laye",
            "noexec_marker": ".noexec",
            "fchk_out_dir": "test-out",
        }
        unknown = set(overrides) - set(values)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        values.update(overrides)

        if not values["sources"]:
            raise ConfigError("At least one source unit is required")

        def resolve(path: Path | str) -> Path:
            p = Path(path)
            return p if p.is_absolute() else project_dir / p

        runner_source = values["test_runner_source"]
        return cls(
            project_dir=project_dir,
            sources=tuple(resolve(s) for s in values["sources"]),
            compiler=tuple(values["compiler"]) if values["compiler"] else detect_compiler(),
            cflags=tuple(values["cflags"]),
            profile=values["profile"],
            build_dir=resolve(values["build_dir"]),
            object_subdir=values["object_subdir"],
            include_dir=resolve(values["include_dir"]),
            driver_name=values["driver_name"],
            test_runner_source=resolve(runner_source) if runner_source else None,
            test_runner_name=values["test_runner_name"],
            fuzzer_source=resolve(values["fuzzer_source"]),
            fuzzer_name=values["fuzzer_name"],
            fuzz_corpus=resolve(values["fuzz_corpus"]),
            test_dir=resolve(values["test_dir"]),
            test_extension=values["test_extension"],
            noexec_marker=values["noexec_marker"],
            fchk_out_dir=resolve(values["fchk_out_dir"]),
        )

    @classmethod
    def load(cls, project_dir: Path, no_asan: bool = False) -> "ProjectConfig":
        """Create the config for project_dir, applying layebuild.ini if present.

        Args:
            project_dir: Project root directory
            no_asan: Force the PLAIN profile regardless of the config file

        Raises:
            ConfigError: If the config file is malformed
        """
        ini_path = Path(project_dir) / CONFIG_FILE_NAME
        overrides = read_config_file(ini_path) if ini_path.exists() else {}
        if no_asan:
            overrides["profile"] = BuildProfile.PLAIN
        return cls.create(project_dir, **overrides)

    @property
    def object_dir(self) -> Path:
        return self.build_dir / self.object_subdir

    @property
    def driver_path(self) -> Path:
        return self.build_dir / self.driver_name

    @property
    def test_runner_path(self) -> Path:
        return self.build_dir / self.test_runner_name

    @property
    def fuzzer_path(self) -> Path:
        return self.build_dir / self.fuzzer_name

    @property
    def entry_source(self) -> Path:
        """The unit holding the program entry point (always the last one)."""
        return self.sources[-1]

    @property
    def library_sources(self) -> tuple[Path, ...]:
        """All units except the program entry, for auxiliary executables."""
        return self.sources[:-1]

    @property
    def noexec_extension(self) -> str:
        """Extension of opted-out tests, e.g. ".noexec.laye"."""
        return f"{self.noexec_marker}{self.test_extension}"

    def to_object_path(self, source: Path | str) -> Path:
        return to_object_path(source, self.object_dir)

    def object_paths(self, sources: Optional[tuple[Path, ...]] = None) -> list[Path]:
        """Object artifacts for the given units (default: all), in list order."""
        return [self.to_object_path(s) for s in (self.sources if sources is None else sources)]

    def compile_flags(self) -> list[str]:
        """Include path, base flags and profile flags for compilation."""
        return ["-I", str(self.include_dir)] + merge_compile_flags(self.cflags, self.profile)

    def link_flags(self, extra: tuple[str, ...] = ()) -> list[str]:
        """Base flags and profile flags for linking, plus target-specific extras."""
        return ["-I", str(self.include_dir)] + merge_link_flags(self.cflags, self.profile) + list(extra)

    def describe_profile(self) -> str:
        return get_profile(self.profile).description


def read_config_file(ini_path: Path) -> dict[str, Any]:
    """Parse the [project] section of a layebuild.ini into create() overrides.

    Raises:
        ConfigError: If the file cannot be parsed or has unknown keys
    """
    parser = configparser.ConfigParser(interpolation=None)
    try:
        with open(ini_path, "r", encoding="utf-8") as f:
            parser.read_file(f)
    except (OSError, configparser.Error) as e:
        raise ConfigError(f"Failed to read {ini_path}: {e}") from e

    if not parser.has_section(CONFIG_SECTION):
        raise ConfigError(f"{ini_path} has no [{CONFIG_SECTION}] section")

    overrides: dict[str, Any] = {}
    for key, raw in parser.items(CONFIG_SECTION):
        value = raw.strip()
        if key == "sources":
            overrides[key] = tuple(line.strip() for line in value.splitlines() if line.strip())
        elif key in ("compiler", "cflags"):
            try:
                overrides[key] = tuple(shlex.split(value))
            except ValueError as e:
                raise ConfigError(f"Invalid {key} in {ini_path}: {e}") from e
        elif key == "profile":
            try:
                overrides[key] = parse_profile(value)
            except ValueError as e:
                raise ConfigError(str(e)) from e
        elif key in _PATH_KEYS or key in _STRING_KEYS:
            overrides[key] = value
        else:
            raise ConfigError(f"Unknown key '{key}' in [{CONFIG_SECTION}] of {ini_path}")

    logger.debug(f"Loaded {len(overrides)} overrides from {ini_path}")
    return overrides
