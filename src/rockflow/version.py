"""Semantic version model with support for the legacy LuaRocks numbering."""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Optional, Tuple

from .exceptions import InvalidVersion

_NUMERIC_RE = re.compile(r"^[0-9]+$")


def _is_numeric(identifier: str) -> bool:
    return bool(_NUMERIC_RE.match(identifier))


def _split_prerelease(core: str) -> Tuple[str, Optional[str]]:
    """Separate the prerelease tag from the numeric core.

    A numeric suffix after the last ``-`` is a SemVer prerelease only when the
    core already has three segments; otherwise it is the legacy LuaRocks patch
    separator (``3.0-1`` means ``3.0.1``).
    """
    pos = core.rfind("-")
    if pos == -1:
        return core, None
    head, suffix = core[:pos], core[pos + 1:]
    if "." in suffix or not _is_numeric(suffix):
        return head, suffix
    if len(head.split(".")) >= 3:
        return head, suffix
    return f"{head}.{suffix}", None


def _parse_segment(text: str, segment: str, label: str) -> int:
    if not _is_numeric(segment):
        raise InvalidVersion(text, f"{label} component '{segment}' is not numeric")
    return int(segment)


def compare_prerelease(left: str, right: str) -> int:
    """Compare two prerelease tags identifier by identifier."""

    left_parts = left.split(".")
    right_parts = right.split(".")
    for a, b in zip(left_parts, right_parts):
        a_num, b_num = _is_numeric(a), _is_numeric(b)
        if a_num and b_num:
            a_val, b_val = int(a), int(b)
            if a_val != b_val:
                return -1 if a_val < b_val else 1
        elif a_num:
            return -1
        elif b_num:
            return 1
        elif a != b:
            return -1 if a < b else 1
    if len(left_parts) != len(right_parts):
        return -1 if len(left_parts) < len(right_parts) else 1
    return 0


@total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """Immutable, totally ordered version. Build metadata never affects ordering."""

    major: int
    minor: int = 0
    patch: int = 0
    prerelease: Optional[str] = None
    build_metadata: Optional[str] = None

    @classmethod
    def with_prerelease(cls, major: int, minor: int, patch: int, prerelease: str) -> "Version":
        return cls(major, minor, patch, prerelease=prerelease)

    @classmethod
    def parse(cls, text: str) -> "Version":
        raw = text.strip() if isinstance(text, str) else ""
        if not raw:
            raise InvalidVersion(str(text), "empty version string")

        core, plus, build = raw.partition("+")
        build_metadata: Optional[str] = None
        if plus:
            if not build:
                raise InvalidVersion(raw, "empty build metadata")
            build_metadata = build

        numeric, prerelease = _split_prerelease(core)
        if prerelease is not None and not prerelease:
            raise InvalidVersion(raw, "empty prerelease tag")

        parts = numeric.split(".")
        if len(parts) > 3:
            raise InvalidVersion(raw, "too many numeric components")
        major = _parse_segment(raw, parts[0], "major")
        minor = _parse_segment(raw, parts[1], "minor") if len(parts) > 1 else 0
        patch = _parse_segment(raw, parts[2], "patch") if len(parts) > 2 else 0
        return cls(major, minor, patch, prerelease=prerelease, build_metadata=build_metadata)

    @property
    def release(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def _compare(self, other: "Version") -> int:
        if self.release != other.release:
            return -1 if self.release < other.release else 1
        if self.prerelease == other.prerelease:
            return 0
        if self.prerelease is None:
            return 1
        if other.prerelease is None:
            return -1
        return compare_prerelease(self.prerelease, other.prerelease)

    def __lt__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, Version):
            return NotImplemented
        return self._compare(other) < 0

    def __eq__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, Version):
            return NotImplemented
        return self._compare(other) == 0

    def __hash__(self) -> int:  # type: ignore[override]
        pre_key = None
        if self.prerelease is not None:
            # "1" and "01" compare equal, so they must hash alike
            pre_key = tuple(int(part) if _is_numeric(part) else part for part in self.prerelease.split("."))
        return hash((self.major, self.minor, self.patch, pre_key))

    def __str__(self) -> str:  # type: ignore[override]
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease is not None:
            text += f"-{self.prerelease}"
        if self.build_metadata is not None:
            text += f"+{self.build_metadata}"
        return text


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0, or 1 comparing two version strings."""

    left = Version.parse(a)
    right = Version.parse(b)
    return left._compare(right)
