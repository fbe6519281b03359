from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re


class BumpType(str, Enum):
    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"


_VERSION_RE = re.compile(
    r"^v?(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\.(?P<patch>\d+))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)


class InvalidVersionError(ValueError):
    """Raised when a version string cannot be parsed."""


@dataclass(frozen=True)
class SemanticVersion:
    major: int
    minor: int
    patch: int
    pre_release: str | None = None

    def __str__(self) -> str:
        core = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre_release:
            return f"{core}-{self.pre_release}"
        return core

    @property
    def numeric_key(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)


def parse_version(value: str | None) -> SemanticVersion:
    """Parse ``1.2.3``, ``v1.2.3`` or ``1.2.3-rc.1``; missing parts default to 0."""
    raw = (value or "0.0.0").strip()
    match = _VERSION_RE.match(raw)
    if match is None:
        raise InvalidVersionError(f"invalid_version:{raw}")
    return SemanticVersion(
        major=int(match.group("major")),
        minor=int(match.group("minor") or 0),
        patch=int(match.group("patch") or 0),
        pre_release=match.group("pre"),
    )


def bump_version(current: str, bump_type: BumpType | str, pre_release: str | None = None) -> str:
    parsed = parse_version(current)
    bump = BumpType(bump_type)

    if bump == BumpType.MAJOR:
        bumped = SemanticVersion(parsed.major + 1, 0, 0)
    elif bump == BumpType.MINOR:
        bumped = SemanticVersion(parsed.major, parsed.minor + 1, 0)
    else:
        bumped = SemanticVersion(parsed.major, parsed.minor, parsed.patch + 1)

    label = (pre_release or "").strip()
    if label:
        return f"{bumped}-{label}"
    return str(bumped)


def numeric_key(version: str) -> tuple[int, int, int]:
    """Ordering key that ignores any pre-release suffix."""
    return parse_version(version).numeric_key


def _compare_identifiers(left: str, right: str) -> int:
    left_parts = left.split(".")
    right_parts = right.split(".")
    for left_part, right_part in zip(left_parts, right_parts):
        if left_part == right_part:
            continue
        left_numeric = left_part.isdigit()
        right_numeric = right_part.isdigit()
        if left_numeric and right_numeric:
            return -1 if int(left_part) < int(right_part) else 1
        if left_numeric:
            return -1
        if right_numeric:
            return 1
        return -1 if left_part < right_part else 1
    if len(left_parts) == len(right_parts):
        return 0
    return -1 if len(left_parts) < len(right_parts) else 1


def compare_versions(left: str, right: str) -> int:
    """Semver precedence: -1, 0 or 1."""
    left_parsed = parse_version(left)
    right_parsed = parse_version(right)
    if left_parsed.numeric_key != right_parsed.numeric_key:
        return -1 if left_parsed.numeric_key < right_parsed.numeric_key else 1
    if left_parsed.pre_release == right_parsed.pre_release:
        return 0
    # A pre-release sorts before the plain release it belongs to.
    if left_parsed.pre_release is None:
        return 1
    if right_parsed.pre_release is None:
        return -1
    return _compare_identifiers(left_parsed.pre_release, right_parsed.pre_release)
