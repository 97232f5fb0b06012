"""Manifest sanity checks and post-resolution audits."""
from __future__ import annotations

import logging
from typing import List

from .config import ProjectManifest
from .constraints import constraints_compatible, parse_compound_constraint, satisfies
from .exceptions import ManifestConflict, VersionConflict
from .models import Resolution

logger = logging.getLogger(__name__)


class ConflictChecker:
    def check_new_dependency(self, manifest: ProjectManifest, name: str, constraint: str) -> None:
        """Refuse to add ``name`` when an existing declaration can never agree with ``constraint``."""

        proposed = parse_compound_constraint(constraint)
        for section, declared in (
            ("dependencies", manifest.dependencies),
            ("dev_dependencies", manifest.dev_dependencies),
        ):
            existing = declared.get(name)
            if existing is None:
                continue
            if not constraints_compatible(parse_compound_constraint(existing), proposed):
                raise ManifestConflict(name, existing, constraint, section)
            logger.info("%s is already declared in %s as '%s'; '%s' is compatible", name, section, existing, constraint)

    def check_conflicts(self, manifest: ProjectManifest) -> None:
        parsed = {}
        for section, declared in (
            ("dependencies", manifest.dependencies),
            ("dev_dependencies", manifest.dev_dependencies),
        ):
            for name, constraint in declared.items():
                parsed[(section, name)] = parse_compound_constraint(constraint)

        for name in sorted(set(manifest.dependencies) & set(manifest.dev_dependencies)):
            if not constraints_compatible(parsed[("dependencies", name)], parsed[("dev_dependencies", name)]):
                raise ManifestConflict(
                    name,
                    manifest.dependencies[name],
                    manifest.dev_dependencies[name],
                    "dependencies",
                )

    def check_strict_conflicts(
        self,
        manifest: ProjectManifest,
        resolution: Resolution,
        include_dev: bool = True,
    ) -> List[str]:
        """Audit a finished resolution; returns phantom-dependency warnings.

        Packages required by several dependents with differing constraints must
        satisfy every one of them, and every graph node must satisfy the
        constraint it was created with. Violations raise VersionConflict.
        """
        for name in sorted(resolution.requirements):
            package = resolution.packages.get(name)
            requirements = resolution.requirements[name]
            if package is None or len({requirement.raw for requirement in requirements}) < 2:
                continue
            if not all(satisfies(package.version, requirement.constraint) for requirement in requirements):
                raise VersionConflict(
                    package=name,
                    constraints=[(requirement.requester, requirement.raw) for requirement in requirements],
                )

        for name in sorted(resolution.graph.node_names()):
            node = resolution.graph.get_node(name)
            if node is None or node.resolved_version is None:
                continue
            if not satisfies(node.resolved_version, node.constraint):
                raise VersionConflict(
                    package=name,
                    message=f"resolved version {node.resolved_version} does not satisfy '{node.constraint}'",
                )

        direct = manifest.declared_names(include_dev)
        warnings: List[str] = []
        for name in sorted(resolution.packages):
            if name in direct:
                continue
            requesters = sorted({requirement.requester for requirement in resolution.requirements.get(name, [])})
            warning = f"{name} is only required transitively (via {', '.join(requesters) or 'unknown'}); it is not declared in the manifest"
            logger.warning(warning)
            warnings.append(warning)
        return warnings
