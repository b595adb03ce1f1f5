"""Minimal semantic version parsing and ordering."""

import re
from typing import NamedTuple

SEMVER_PATTERN = re.compile(
    r"^v?(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z.-]+))?(?:\+([0-9A-Za-z.-]+))?$"
)


class SemVer(NamedTuple):
    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    build: str | None = None

    @property
    def core(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.build:
            text += f"+{self.build}"
        return text


def parse_version(version: str) -> SemVer | None:
    """Parse ``v?MAJOR.MINOR.PATCH[-pre][+build]``; None when it doesn't match."""
    if not isinstance(version, str):
        return None
    match = SEMVER_PATTERN.match(version.strip())
    if not match:
        return None
    major, minor, patch, prerelease, build = match.groups()
    return SemVer(int(major), int(minor), int(patch), prerelease, build)


def _prerelease_key(prerelease: str) -> tuple:
    # Numeric identifiers compare numerically and rank below alphanumeric ones
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in prerelease.split(".")
    )


def version_sort_key(version: str) -> tuple:
    """Sort key for version strings.

    Parseable versions follow semver precedence: (major, minor, patch),
    then a prerelease before its release, then the original text so ties
    are stable. Unparseable versions come after all parseable ones,
    ordered by string.
    """
    parsed = parse_version(version)
    if parsed is None:
        return (1, (0, 0, 0), True, (), version)
    if parsed.prerelease is None:
        return (0, parsed.core, True, (), version)
    return (0, parsed.core, False, _prerelease_key(parsed.prerelease), version)


def sort_versions(versions) -> list[str]:
    """Return version strings in ascending order."""
    return sorted(versions, key=version_sort_key)
