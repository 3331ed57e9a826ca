"""Version parsing and ordering for hi-friend releases.

Versions are strict three-part dotted integers ("0.21.8"). Anything else,
including pre-release suffixes, is rejected rather than coerced.
"""

import re
from dataclasses import dataclass

# Compatibility thresholds
MINIMUM_SUPPORTED = "0.20.0"  # Oldest server with IDE support
NOTIFICATIONS_SINCE = "0.21.8"  # enableToggleButton / showErrorStatus exist
SECONDARY_FILE_CHANGES_SINCE = "0.30.1"  # Server reacts to .rbs changes

_VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)\.(\d+)", re.ASCII)


class MalformedVersionError(ValueError):
    """Version string is not MAJOR.MINOR.PATCH."""

    def __init__(self, text: str):
        self.text = text
        super().__init__(f"The format of version is invalid: {text!r}")


@dataclass(frozen=True, order=True)
class VersionTriple:
    """Parsed MAJOR.MINOR.PATCH, ordered lexicographically."""

    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, text: str) -> "VersionTriple":
        match = _VERSION_PATTERN.fullmatch(text)
        if not match:
            raise MalformedVersionError(text)
        return cls(*(int(part) for part in match.groups()))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def _compare_component(a: str, b: str) -> int:
    if a == b:
        return 0
    x, y = int(a), int(b)
    return (x > y) - (x < y)


def compare_versions(v1: str, v2: str) -> int:
    """Compare two version strings.

    Returns:
        0 if v1 == v2, 1 if v1 > v2, -1 if v1 < v2

    Raises:
        MalformedVersionError: If either string is not MAJOR.MINOR.PATCH
    """
    m1 = _VERSION_PATTERN.fullmatch(v1)
    if not m1:
        raise MalformedVersionError(v1)
    m2 = _VERSION_PATTERN.fullmatch(v2)
    if not m2:
        raise MalformedVersionError(v2)

    for a, b in zip(m1.groups(), m2.groups()):
        result = _compare_component(a, b)
        if result:
            return result
    return 0


def is_at_least(version: str, minimum: str) -> bool:
    """True if version >= minimum."""
    return compare_versions(version, minimum) >= 0
