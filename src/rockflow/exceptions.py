"""Custom exceptions raised by the resolver."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


class RockflowError(Exception):
    """Base class for every error raised by rockflow."""


class InvalidVersion(RockflowError, ValueError):
    """Raised when a version string cannot be parsed."""

    def __init__(self, text: str, reason: str):
        self.text = text
        self.reason = reason
        super().__init__(f"Invalid version '{text}': {reason}")


class InvalidConstraint(RockflowError, ValueError):
    """Raised when a constraint string does not follow the grammar."""

    def __init__(self, text: str, cause: Optional[InvalidVersion] = None, reason: Optional[str] = None):
        self.text = text
        self.cause = cause
        detail = reason or (str(cause) if cause else "unrecognised constraint")
        super().__init__(f"Invalid constraint '{text}': {detail}")


class ClientError(RockflowError, RuntimeError):
    """Raised when the package registry cannot be reached or returns garbage."""


class RockspecError(ClientError):
    """Raised when a package descriptor is missing required fields."""


class PackageNotFound(RockflowError):
    def __init__(self, package: str):
        self.package = package
        super().__init__(f"Package '{package}' not found in dependency graph")


@dataclass(eq=False)
class ResolutionError(RockflowError):
    package: str
    message: str = ""

    def __str__(self) -> str:  # type: ignore[override]
        return f"{self.package}: {self.message}"


@dataclass(eq=False)
class UnresolvableDependency(ResolutionError):
    constraint: str = ""
    required_by: List[str] = field(default_factory=list)
    available: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.message:
            via = f" (required by {', '.join(self.required_by)})" if self.required_by else ""
            self.message = f"no version satisfies constraint '{self.constraint}'{via}"


@dataclass(eq=False)
class VersionConflict(ResolutionError):
    constraints: List[Tuple[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.message:
            listed = ", ".join(f"'{raw}' (required by {requester})" for requester, raw in self.constraints)
            self.message = f"no single version satisfies all constraints: {listed}"


@dataclass(eq=False)
class CircularDependency(ResolutionError):
    path: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Circular dependency detected: {' -> '.join(self.path)}"


class ManifestConflict(RockflowError):
    """Raised when a manifest declares one package under incompatible constraints."""

    def __init__(self, package: str, existing: str, proposed: str, section: str = "dependencies"):
        self.package = package
        self.existing = existing
        self.proposed = proposed
        self.section = section
        super().__init__(
            f"Conflict: '{package}' is declared in {section} as '{existing}', "
            f"which cannot be satisfied together with '{proposed}'"
        )


class LockfileCorrupt(RockflowError):
    """Raised when an existing lockfile cannot be read back."""


class ChecksumMismatch(RockflowError):
    def __init__(self, packages: List[str]):
        self.packages = list(packages)
        super().__init__(f"Checksum mismatch for: {', '.join(self.packages)}")


class ConfigError(RockflowError, ValueError):
    """Raised for invalid resolver configuration."""


class ManifestError(RockflowError, ValueError):
    """Raised for a malformed project manifest."""
