"""Dataclasses shared across resolver components."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .constraints import VersionConstraint
from .graph import DependencyGraph
from .version import Version


@dataclass
class PackageVersion:
    """One published version of a package as listed by the registry."""

    name: str
    version: str
    rockspec_url: str
    archive_url: str


@dataclass
class RegistryManifest:
    packages: Dict[str, List[PackageVersion]] = field(default_factory=dict)

    def versions_for(self, name: str) -> List[PackageVersion]:
        return list(self.packages.get(name, []))


@dataclass
class Rockspec:
    """Package descriptor: what a given version declares about itself."""

    package: str
    version: str
    dependencies: List[str] = field(default_factory=list)
    source_url: Optional[str] = None
    source_tag: Optional[str] = None
    build_type: Optional[str] = None
    description: Optional[str] = None
    homepage: Optional[str] = None
    license: Optional[str] = None
    lua_version: Optional[str] = None
    binary_urls: Dict[str, str] = field(default_factory=dict)


@dataclass
class Requirement:
    requester: str
    raw: str
    constraint: VersionConstraint


@dataclass
class ResolvedPackage:
    name: str
    version: Version
    registry_version: str
    rockspec_url: str
    archive_url: str
    dependencies: Dict[str, str] = field(default_factory=dict)
    source_url: Optional[str] = None
    build: Optional[str] = None


@dataclass
class Resolution:
    packages: Dict[str, ResolvedPackage]
    graph: DependencyGraph
    requirements: Dict[str, List[Requirement]] = field(default_factory=dict)
    roots: List[str] = field(default_factory=list)

    @property
    def versions(self) -> Dict[str, Version]:
        return {name: package.version for name, package in self.packages.items()}
