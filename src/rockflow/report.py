"""Formatting helpers for presenting resolution results and lockfile changes."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .constants import MANIFEST_REQUESTERS
from .lockfile import Lockfile
from .models import Resolution
from .version import Version


@dataclass(frozen=True)
class LockfileChange:
    name: str
    old_version: Optional[str]
    new_version: Optional[str]

    @property
    def kind(self) -> str:
        if self.old_version is None:
            return "added"
        if self.new_version is None:
            return "removed"
        if Version.parse(self.new_version) > Version.parse(self.old_version):
            return "upgraded"
        return "downgraded"


def _requested_by(resolution: Resolution, name: str) -> List[str]:
    return sorted(
        {
            requirement.requester
            for requirement in resolution.requirements.get(name, [])
            if requirement.requester not in MANIFEST_REQUESTERS
        }
    )


def generate_text(resolution: Resolution) -> str:
    lines = [f"Resolved {len(resolution.packages)} packages:"]
    for name in sorted(resolution.packages):
        package = resolution.packages[name]
        extras: List[str] = []
        if name in resolution.roots:
            extras.append("direct")
        via = _requested_by(resolution, name)
        if via:
            extras.append(f"via {', '.join(via)}")
        meta = f" ({'; '.join(extras)})" if extras else ""
        lines.append(f"  - {name} {package.version}{meta}")
    return "\n".join(lines)


def generate_json(resolution: Resolution) -> str:
    payload = {
        "roots": list(resolution.roots),
        "packages": {
            name: {
                "version": str(package.version),
                "registry_version": package.registry_version,
                "rockspec_url": package.rockspec_url,
                "archive_url": package.archive_url,
                "source_url": package.source_url,
                "build": package.build,
                "dependencies": dict(package.dependencies),
                "required_by": [
                    {"requester": requirement.requester, "constraint": requirement.raw}
                    for requirement in resolution.requirements.get(name, [])
                ],
            }
            for name, package in sorted(resolution.packages.items())
        },
    }
    return json.dumps(payload, indent=2)


def diff_lockfiles(old: Optional[Lockfile], new: Lockfile) -> List[LockfileChange]:
    old_packages = old.packages if old else {}
    changes: List[LockfileChange] = []
    for name in sorted(set(old_packages) | set(new.packages)):
        before = old_packages.get(name)
        after = new.packages.get(name)
        if before and after and Version.parse(before.version) == Version.parse(after.version):
            continue
        changes.append(
            LockfileChange(
                name=name,
                old_version=before.version if before else None,
                new_version=after.version if after else None,
            )
        )
    return changes


def format_lockfile_diff(changes: Iterable[LockfileChange]) -> str:
    lines: List[str] = []
    for change in changes:
        kind = change.kind
        if kind == "added":
            lines.append(f"  + {change.name} {change.new_version}")
        elif kind == "removed":
            lines.append(f"  - {change.name} {change.old_version}")
        else:
            lines.append(f"  ~ {change.name} {change.old_version} -> {change.new_version} ({kind})")
    if not lines:
        return "No changes."
    return "\n".join(lines)
