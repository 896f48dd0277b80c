"""Build Profile Configuration.

Profiles declare the sanitizer flags they control explicitly as compile_flags
and link_flags. The rest of layebuild only uses profile.compile_flags and
profile.link_flags and never inspects what is in them.

    1. Flags matching a profile's controlled patterns are filtered out of the
       user-supplied cflags
    2. The profile's own flags are appended
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List


class BuildProfile(Enum):
    """Build profile enum for type-safe profile selection."""

    ASAN = "asan"
    PLAIN = "plain"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ProfileFlags:
    """Flags owned by one build profile.

    Attributes:
        name: Profile identifier (matches BuildProfile enum value)
        description: Human-readable profile description
        compile_flags: Flags appended to every compilation
        link_flags: Flags appended to every link
        controlled_patterns: Flag prefixes this profile controls (stripped from user flags)
    """

    name: str
    description: str
    compile_flags: tuple[str, ...]
    link_flags: tuple[str, ...]
    controlled_patterns: tuple[str, ...]


# Extra link flag for the fuzz harness; requires clang's libFuzzer runtime
FUZZER_LINK_FLAGS: tuple[str, ...] = ("-fsanitize=fuzzer",)

PROFILES: dict[BuildProfile, ProfileFlags] = {
    BuildProfile.ASAN: ProfileFlags(
        name="asan",
        description="Debug build with AddressSanitizer (default)",
        compile_flags=("-fsanitize=address",),
        link_flags=("-fsanitize=address",),
        controlled_patterns=("-fsanitize=address",),
    ),
    BuildProfile.PLAIN: ProfileFlags(
        name="plain",
        description="Debug build without sanitizers (--no-asan)",
        compile_flags=(),
        link_flags=(),
        controlled_patterns=("-fsanitize=address",),
    ),
}


def get_profile(profile: BuildProfile) -> ProfileFlags:
    return PROFILES[profile]


def parse_profile(name: str) -> BuildProfile:
    """Look up a profile by its string value.

    Raises:
        ValueError: If no profile has that name
    """
    try:
        return BuildProfile(name.strip().lower())
    except ValueError:
        available = ", ".join(p.value for p in BuildProfile)
        raise ValueError(f"Unknown build profile '{name}' (available: {available})") from None


def filter_controlled_flags(flags: Iterable[str], profile_flags: ProfileFlags) -> List[str]:
    """Remove flags that the profile controls."""
    return [f for f in flags if not any(f.startswith(p) for p in profile_flags.controlled_patterns)]


def merge_compile_flags(base_flags: Iterable[str], profile: BuildProfile) -> List[str]:
    """Filter profile-controlled flags from base_flags, then append the profile's compile flags."""
    profile_flags = get_profile(profile)
    return filter_controlled_flags(base_flags, profile_flags) + list(profile_flags.compile_flags)


def merge_link_flags(base_flags: Iterable[str], profile: BuildProfile) -> List[str]:
    """Filter profile-controlled flags from base_flags, then append the profile's link flags."""
    profile_flags = get_profile(profile)
    return filter_controlled_flags(base_flags, profile_flags) + list(profile_flags.link_flags)


def format_profile_banner(profile: BuildProfile, compiler: str | None = None) -> str:
    parts = [f"PROFILE={profile.value}"]
    if compiler:
        parts.append(f"COMPILER={compiler}")
    return " ".join(parts)
