"""Version constraint grammar and satisfaction rules."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, NamedTuple, Optional, Sequence, Tuple

from .exceptions import InvalidConstraint, InvalidVersion
from .version import Version


class ConstraintKind(Enum):
    EXACT = "exact"
    COMPATIBLE = "compatible"
    PATCH = "patch"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_THAN = "less_than"
    ANY_PATCH = "any_patch"
    RANGE = "range"
    ANY_OF = "any_of"


@dataclass(frozen=True)
class VersionConstraint:
    """A predicate over versions.

    ``version`` holds the operand of the single-version kinds and the lower
    bound of a RANGE; ``upper`` is only set for RANGE and ``members`` only for
    ANY_OF.
    """

    kind: ConstraintKind
    version: Optional[Version] = None
    upper: Optional[Version] = None
    members: Tuple["VersionConstraint", ...] = ()

    def __post_init__(self) -> None:
        if self.kind is ConstraintKind.ANY_OF:
            if not self.members:
                raise ValueError("ANY_OF constraint needs at least one member")
            return
        if self.version is None:
            raise ValueError(f"{self.kind.value} constraint needs a version")
        if self.kind is ConstraintKind.RANGE and self.upper is None:
            raise ValueError("range constraint needs an upper bound")

    @classmethod
    def exact(cls, version: Version) -> "VersionConstraint":
        return cls(ConstraintKind.EXACT, version)

    @classmethod
    def compatible(cls, version: Version) -> "VersionConstraint":
        return cls(ConstraintKind.COMPATIBLE, version)

    @classmethod
    def patch(cls, version: Version) -> "VersionConstraint":
        return cls(ConstraintKind.PATCH, version)

    @classmethod
    def greater_or_equal(cls, version: Version) -> "VersionConstraint":
        return cls(ConstraintKind.GREATER_OR_EQUAL, version)

    @classmethod
    def less_than(cls, version: Version) -> "VersionConstraint":
        return cls(ConstraintKind.LESS_THAN, version)

    @classmethod
    def any_patch(cls, version: Version) -> "VersionConstraint":
        return cls(ConstraintKind.ANY_PATCH, version)

    @classmethod
    def range(cls, lower: Version, upper: Version) -> "VersionConstraint":
        return cls(ConstraintKind.RANGE, lower, upper=upper)

    @classmethod
    def any_of(cls, members: Sequence["VersionConstraint"]) -> "VersionConstraint":
        return cls(ConstraintKind.ANY_OF, members=tuple(members))

    def is_satisfied_by(self, candidate: Version) -> bool:
        return satisfies(candidate, self)

    def __str__(self) -> str:  # type: ignore[override]
        kind = self.kind
        if kind is ConstraintKind.EXACT:
            return str(self.version)
        if kind is ConstraintKind.COMPATIBLE:
            return f"^{self.version}"
        if kind is ConstraintKind.PATCH:
            return f"~{self.version}"
        if kind is ConstraintKind.GREATER_OR_EQUAL:
            return f">={self.version}"
        if kind is ConstraintKind.LESS_THAN:
            return f"<{self.version}"
        if kind is ConstraintKind.ANY_PATCH:
            return f"{self.version.major}.{self.version.minor}.x"
        if kind is ConstraintKind.RANGE:
            return f">={self.version}, <{self.upper}"
        if kind is ConstraintKind.ANY_OF:
            return " || ".join(str(member) for member in self.members)
        raise ValueError(f"Unsupported constraint kind: {kind}")


def _parse_operand(text: str, operand: str) -> Version:
    try:
        return Version.parse(operand)
    except InvalidVersion as exc:
        raise InvalidConstraint(text, exc) from exc


def parse_constraint(text: str) -> VersionConstraint:
    """Parse a single constraint such as ``^1.2.3``, ``>=2.0`` or ``1.4.x``."""

    expr = text.strip()
    if not expr:
        raise InvalidConstraint(text, reason="empty constraint")
    if expr.startswith("^"):
        return VersionConstraint.compatible(_parse_operand(text, expr[1:]))
    if expr.startswith("~"):
        return VersionConstraint.patch(_parse_operand(text, expr[1:]))
    if expr.startswith(">="):
        return VersionConstraint.greater_or_equal(_parse_operand(text, expr[2:]))
    if expr.startswith("<"):
        return VersionConstraint.less_than(_parse_operand(text, expr[1:]))
    if expr.endswith(".x"):
        return VersionConstraint.any_patch(_parse_operand(text, expr[:-2]))
    return VersionConstraint.exact(_parse_operand(text, expr))


def parse_compound_constraint(text: str) -> VersionConstraint:
    """Parse ``A || B`` alternatives and ``>=X, <Y`` ranges, falling back to a single constraint."""

    alternatives = text.split(" || ")
    if len(alternatives) > 1:
        return VersionConstraint.any_of([parse_compound_constraint(part) for part in alternatives])

    bounds = text.split(", ")
    if len(bounds) == 2:
        lower, upper = bounds[0].strip(), bounds[1].strip()
        if lower.startswith(">=") and upper.startswith("<") and not upper.startswith("<="):
            return VersionConstraint.range(_parse_operand(text, lower[2:]), _parse_operand(text, upper[1:]))
    return parse_constraint(text)


def satisfies(version: Version, constraint: VersionConstraint) -> bool:
    kind = constraint.kind
    if kind is ConstraintKind.ANY_OF:
        return any(satisfies(version, member) for member in constraint.members)

    base = constraint.version
    if kind is ConstraintKind.EXACT:
        return version == base
    if kind is ConstraintKind.COMPATIBLE:
        return version >= base and version.major == base.major and version < Version(base.major + 1, 0, 0)
    if kind is ConstraintKind.PATCH:
        return (
            version >= base
            and (version.major, version.minor) == (base.major, base.minor)
            and version < Version(base.major, base.minor + 1, 0)
        )
    if kind is ConstraintKind.GREATER_OR_EQUAL:
        return version >= base
    if kind is ConstraintKind.LESS_THAN:
        return version < base
    if kind is ConstraintKind.ANY_PATCH:
        return version.major == base.major and version.minor == base.minor
    if kind is ConstraintKind.RANGE:
        return base <= version < constraint.upper
    raise ValueError(f"Unsupported constraint kind: {kind}")


def satisfies_all(version: Version, constraints: Sequence[VersionConstraint]) -> bool:
    return all(satisfies(version, constraint) for constraint in constraints)


class VersionInterval(NamedTuple):
    """A contiguous set of versions; ``None`` bounds are unbounded."""

    lower: Optional[Version]
    lower_inclusive: bool
    upper: Optional[Version]
    upper_inclusive: bool

    def overlaps(self, other: "VersionInterval") -> bool:
        lower, lower_inclusive = _max_lower(self, other)
        upper, upper_inclusive = _min_upper(self, other)
        if lower is None or upper is None:
            return True
        if lower < upper:
            return True
        return lower == upper and lower_inclusive and upper_inclusive


def _max_lower(a: VersionInterval, b: VersionInterval) -> Tuple[Optional[Version], bool]:
    if a.lower is None:
        return b.lower, b.lower_inclusive
    if b.lower is None or a.lower > b.lower:
        return a.lower, a.lower_inclusive
    if b.lower > a.lower:
        return b.lower, b.lower_inclusive
    return a.lower, a.lower_inclusive and b.lower_inclusive


def _min_upper(a: VersionInterval, b: VersionInterval) -> Tuple[Optional[Version], bool]:
    if a.upper is None:
        return b.upper, b.upper_inclusive
    if b.upper is None or a.upper < b.upper:
        return a.upper, a.upper_inclusive
    if b.upper < a.upper:
        return b.upper, b.upper_inclusive
    return a.upper, a.upper_inclusive and b.upper_inclusive


def _floor(major: int, minor: int, patch: int) -> Version:
    # "0" is the lowest possible prerelease, so this precedes every version of major.minor.patch
    return Version(major, minor, patch, prerelease="0")


def constraint_intervals(constraint: VersionConstraint) -> List[VersionInterval]:
    """Describe the versions accepted by ``constraint`` as a union of intervals."""

    kind = constraint.kind
    if kind is ConstraintKind.ANY_OF:
        intervals: List[VersionInterval] = []
        for member in constraint.members:
            intervals.extend(constraint_intervals(member))
        return intervals

    base = constraint.version
    if kind is ConstraintKind.EXACT:
        return [VersionInterval(base, True, base, True)]
    if kind is ConstraintKind.COMPATIBLE:
        return [VersionInterval(base, True, _floor(base.major + 1, 0, 0), False)]
    if kind is ConstraintKind.PATCH:
        return [VersionInterval(base, True, _floor(base.major, base.minor + 1, 0), False)]
    if kind is ConstraintKind.GREATER_OR_EQUAL:
        return [VersionInterval(base, True, None, False)]
    if kind is ConstraintKind.LESS_THAN:
        return [VersionInterval(None, False, base, False)]
    if kind is ConstraintKind.ANY_PATCH:
        return [VersionInterval(_floor(base.major, base.minor, 0), True, _floor(base.major, base.minor + 1, 0), False)]
    if kind is ConstraintKind.RANGE:
        return [VersionInterval(base, True, constraint.upper, False)]
    raise ValueError(f"Unsupported constraint kind: {kind}")


def constraints_compatible(first: VersionConstraint, second: VersionConstraint) -> bool:
    """Return True when some version could satisfy both constraints."""

    return any(
        left.overlaps(right)
        for left in constraint_intervals(first)
        for right in constraint_intervals(second)
    )
