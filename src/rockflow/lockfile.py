"""Lockfile model and its YAML persistence."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .constants import LOCKFILE_FORMAT_VERSION
from .exceptions import InvalidVersion, LockfileCorrupt
from .version import Version

logger = logging.getLogger(__name__)

_REQUIRED_STRINGS = ("version", "source", "rockspec_url", "source_url", "checksum")


@dataclass
class LockedPackage:
    version: str
    source: str
    rockspec_url: str
    source_url: str
    checksum: str
    size: int
    dependencies: Dict[str, str] = field(default_factory=dict)
    build: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "source": self.source,
            "rockspec_url": self.rockspec_url,
            "source_url": self.source_url,
            "checksum": self.checksum,
            "size": self.size,
            "dependencies": dict(sorted(self.dependencies.items())),
            "build": self.build,
        }

    @classmethod
    def from_dict(cls, name: str, data: Any) -> "LockedPackage":
        if not isinstance(data, dict):
            raise LockfileCorrupt(f"Lockfile entry for '{name}' must be a mapping")
        for key in _REQUIRED_STRINGS:
            if not isinstance(data.get(key), str):
                raise LockfileCorrupt(f"Lockfile entry for '{name}' has no valid '{key}'")
        try:
            Version.parse(data["version"])
        except InvalidVersion as exc:
            raise LockfileCorrupt(f"Lockfile entry for '{name}': {exc}") from exc

        size = data.get("size")
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise LockfileCorrupt(f"Lockfile entry for '{name}' has an invalid size {size!r}")

        dependencies = data.get("dependencies") or {}
        if not isinstance(dependencies, dict) or not all(
            isinstance(key, str) and isinstance(value, str) for key, value in dependencies.items()
        ):
            raise LockfileCorrupt(f"Lockfile entry for '{name}' has a malformed dependency map")

        build = data.get("build")
        if build is not None and not isinstance(build, str):
            raise LockfileCorrupt(f"Lockfile entry for '{name}' has a non-string build type")

        return cls(
            version=data["version"],
            source=data["source"],
            rockspec_url=data["rockspec_url"],
            source_url=data["source_url"],
            checksum=data["checksum"],
            size=size,
            dependencies=dict(dependencies),
            build=build,
        )


@dataclass
class Lockfile:
    packages: Dict[str, LockedPackage] = field(default_factory=dict)
    format_version: int = LOCKFILE_FORMAT_VERSION

    def get(self, name: str) -> Optional[LockedPackage]:
        return self.packages.get(name)

    def validate(self) -> None:
        """Apply the load-time checks to an in-memory lockfile."""
        if self.format_version != LOCKFILE_FORMAT_VERSION or isinstance(self.format_version, bool):
            raise LockfileCorrupt(f"Unsupported lockfile format version {self.format_version!r}")
        for name, locked in self.packages.items():
            LockedPackage.from_dict(name, asdict(locked))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.format_version,
            "packages": {name: self.packages[name].to_dict() for name in sorted(self.packages)},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Lockfile":
        if not isinstance(data, dict):
            raise LockfileCorrupt("Lockfile root must be a mapping")
        format_version = data.get("version")
        if format_version != LOCKFILE_FORMAT_VERSION or isinstance(format_version, bool):
            raise LockfileCorrupt(f"Unsupported lockfile format version {format_version!r}")
        packages = data.get("packages") or {}
        if not isinstance(packages, dict):
            raise LockfileCorrupt("Lockfile 'packages' must be a mapping")
        return cls(
            packages={str(name): LockedPackage.from_dict(str(name), entry) for name, entry in packages.items()},
            format_version=format_version,
        )


def load_lockfile(path: Path) -> Lockfile:
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise LockfileCorrupt(f"{path} is not valid YAML: {exc}") from exc
    return Lockfile.from_dict(data)


def save_lockfile(lockfile: Lockfile, path: Path) -> None:
    text = yaml.safe_dump(lockfile.to_dict(), sort_keys=True, default_flow_style=False)
    Path(path).write_text(text, encoding="utf-8")
    logger.debug("Wrote %d locked packages to %s", len(lockfile.packages), path)
