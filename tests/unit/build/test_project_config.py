"""Tests for ProjectConfig and layebuild.ini loading."""

from pathlib import Path
from unittest.mock import patch

import pytest

from layebuild.build.build_profiles import BuildProfile
from layebuild.build.project_config import (
    CONFIG_FILE_NAME,
    DEFAULT_SOURCES,
    ConfigError,
    ProjectConfig,
    detect_compiler,
    read_config_file,
    to_object_path,
)


class TestToObjectPath:
    def test_drops_directory_and_appends_suffix(self):
        assert to_object_path("lib/laye/laye_ir.c", Path("out/o")) == Path("out/o/laye_ir.c.o")

    def test_entry_unit(self):
        assert to_object_path(Path("src/layec.c"), Path("out/o")) == Path("out/o/layec.c.o")

    def test_deterministic(self):
        assert to_object_path("a/b.c", Path("o")) == to_object_path("a/b.c", Path("o"))


class TestDetectCompiler:
    def test_cc_environment_variable(self):
        assert detect_compiler({"CC": "ccache gcc"}) == ("ccache", "gcc")

    def test_first_candidate_on_path(self):
        with patch("shutil.which", side_effect=lambda name: "/usr/bin/gcc" if name == "gcc" else None):
            assert detect_compiler({}) == ("gcc",)

    def test_fallback(self):
        with patch("shutil.which", return_value=None):
            assert detect_compiler({}) == ("cc",)


class TestCreate:
    def test_defaults(self, tmp_path):
        config = ProjectConfig.create(tmp_path, compiler=("clang",))
        root = tmp_path.resolve()

        assert config.project_dir == root
        assert len(config.sources) == len(DEFAULT_SOURCES)
        assert config.entry_source == root / "src" / "layec.c"
        assert config.object_dir == root / "out" / "o"
        assert config.driver_path == root / "out" / "layec"
        assert config.include_dir == root / "include"
        assert config.profile is BuildProfile.ASAN
        assert config.noexec_extension == ".noexec.laye"

    def test_library_sources_exclude_entry(self, config):
        assert config.library_sources == config.sources[:-1]
        assert config.entry_source not in config.library_sources

    def test_absolute_paths_kept(self, tmp_path):
        absolute = tmp_path / "elsewhere" / "build"
        config = ProjectConfig.create(tmp_path, compiler=("cc",), build_dir=absolute)
        assert config.build_dir == absolute

    def test_unknown_override(self, tmp_path):
        with pytest.raises(ConfigError, match="Unknown configuration keys"):
            ProjectConfig.create(tmp_path, compiler=("cc",), optimise=True)

    def test_empty_sources(self, tmp_path):
        with pytest.raises(ConfigError):
            ProjectConfig.create(tmp_path, compiler=("cc",), sources=())

    def test_compiler_detected_when_unset(self, tmp_path):
        with patch("layebuild.build.project_config.detect_compiler", return_value=("gcc",)):
            config = ProjectConfig.create(tmp_path)
        assert config.compiler == ("gcc",)

    def test_empty_test_runner_source_disables_runner(self, tmp_path):
        config = ProjectConfig.create(tmp_path, compiler=("cc",), test_runner_source="")
        assert config.test_runner_source is None

    def test_is_frozen(self, config):
        with pytest.raises(AttributeError):
            config.compiler = ("gcc",)  # type: ignore[misc]

    def test_object_paths_in_order(self, config):
        assert [p.name for p in config.object_paths()] == ["alpha.c.o", "beta.c.o", "main.c.o"]

    def test_compile_flags(self, config):
        flags = config.compile_flags()
        assert flags[:2] == ["-I", str(config.include_dir)]
        assert flags[-1] == "-fsanitize=address"

    def test_link_flags_extra_last(self, config):
        flags = config.link_flags(("-fsanitize=fuzzer",))
        assert flags[-1] == "-fsanitize=fuzzer"
        assert "-fsanitize=address" in flags


class TestLoad:
    def write_ini(self, project_dir: Path, body: str) -> Path:
        path = project_dir / CONFIG_FILE_NAME
        path.write_text(body)
        return path

    def test_without_ini(self, project_dir):
        with patch("layebuild.build.project_config.detect_compiler", return_value=("cc",)):
            config = ProjectConfig.load(project_dir)
        assert config.profile is BuildProfile.ASAN
        assert len(config.sources) == len(DEFAULT_SOURCES)

    def test_ini_overrides(self, project_dir):
        self.write_ini(
            project_dir,
            "[project]\n"
            "compiler = ccache clang\n"
            "profile = plain\n"
            "sources =\n"
            "    lib/alpha.c\n"
            "    src/main.c\n"
            "cflags = -std=c11 -O0\n"
            "build_dir = build\n",
        )
        config = ProjectConfig.load(project_dir)

        assert config.compiler == ("ccache", "clang")
        assert config.profile is BuildProfile.PLAIN
        assert [s.name for s in config.sources] == ["alpha.c", "main.c"]
        assert config.cflags == ("-std=c11", "-O0")
        assert config.build_dir == project_dir.resolve() / "build"

    def test_no_asan_wins_over_ini(self, project_dir):
        self.write_ini(project_dir, "[project]\ncompiler = cc\nprofile = asan\n")
        config = ProjectConfig.load(project_dir, no_asan=True)
        assert config.profile is BuildProfile.PLAIN

    def test_unknown_key(self, project_dir):
        path = self.write_ini(project_dir, "[project]\nwarp_speed = 9\n")
        with pytest.raises(ConfigError, match="warp_speed"):
            read_config_file(path)

    def test_missing_section(self, project_dir):
        path = self.write_ini(project_dir, "[build]\ncompiler = cc\n")
        with pytest.raises(ConfigError, match="no \\[project\\] section"):
            read_config_file(path)

    def test_invalid_profile(self, project_dir):
        path = self.write_ini(project_dir, "[project]\nprofile = tsan\n")
        with pytest.raises(ConfigError, match="Unknown build profile"):
            read_config_file(path)

    def test_malformed_file(self, project_dir):
        path = self.write_ini(project_dir, "compiler = cc\n")
        with pytest.raises(ConfigError, match="Failed to read"):
            read_config_file(path)
