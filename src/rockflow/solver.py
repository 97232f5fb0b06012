"""Dependency resolution engine."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .constants import DEFAULT_MAX_WORKERS, DEV_REQUESTER, MANIFEST_REQUESTERS, ROOT_REQUESTER, RUNTIME_PACKAGES
from .constraints import parse_compound_constraint, satisfies_all
from .exceptions import ConfigError, ResolutionError, UnresolvableDependency, VersionConflict
from .graph import DependencyGraph
from .models import PackageVersion, RegistryManifest, Requirement, Resolution, ResolvedPackage, Rockspec
from .parallel import map_bounded
from .registry import PackageClient, parse_dependency_entry, registry_candidates
from .version import Version

logger = logging.getLogger(__name__)

Candidate = Tuple[Version, PackageVersion]


class ResolutionStrategy(Enum):
    HIGHEST = "highest"
    LOWEST = "lowest"

    @classmethod
    def parse(cls, value: str) -> "ResolutionStrategy":
        try:
            return cls(value.lower())
        except ValueError as exc:
            raise ConfigError(f"Invalid resolution strategy '{value}'. Must be 'highest' or 'lowest'") from exc

    def pick(self, candidates: Sequence[Candidate]) -> Candidate:
        """Choose the winner from candidates sorted in ascending version order."""
        return candidates[-1] if self is ResolutionStrategy.HIGHEST else candidates[0]


@dataclass
class ResolutionState:
    manifest: RegistryManifest
    graph: DependencyGraph = field(default_factory=DependencyGraph)
    requirements: Dict[str, List[Requirement]] = field(default_factory=dict)
    selections: Dict[str, Candidate] = field(default_factory=dict)
    descriptors: Dict[str, Rockspec] = field(default_factory=dict)
    declared: Dict[str, Dict[str, str]] = field(default_factory=dict)
    candidates: Dict[str, List[Candidate]] = field(default_factory=dict)
    visited: Set[str] = field(default_factory=set)
    in_progress: Set[str] = field(default_factory=set)
    stale: Set[str] = field(default_factory=set)


class Resolver:
    """Pick one version per package for a set of requested constraints.

    Every call works on a fresh :class:`ResolutionState`; nothing is shared
    between calls except the client, so a failed resolution leaves no trace.
    """

    def __init__(
        self,
        client: PackageClient,
        strategy: ResolutionStrategy = ResolutionStrategy.HIGHEST,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        if max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {max_workers}")
        self.client = client
        self.strategy = strategy
        self.max_workers = max_workers

    # ------------------------------------------------------------------

    def resolve(self, requested: Mapping[str, str], dev_requested: Optional[Mapping[str, str]] = None) -> Dict[str, Version]:
        return self.resolve_packages(requested, dev_requested).versions

    def resolve_packages(
        self,
        requested: Mapping[str, str],
        dev_requested: Optional[Mapping[str, str]] = None,
    ) -> Resolution:
        """Resolve runtime and dev constraints together.

        A package named in both mappings gets one version that satisfies both
        declarations.
        """
        root_requirements: Dict[str, List[Requirement]] = {}
        for requester, table in ((ROOT_REQUESTER, requested), (DEV_REQUESTER, dev_requested or {})):
            for name in sorted(table):
                raw = table[name]
                root_requirements.setdefault(name, []).append(
                    Requirement(requester, raw, parse_compound_constraint(raw))
                )
        roots = sorted(root_requirements)

        state = ResolutionState(manifest=self.client.fetch_manifest())
        self._prefetch(root_requirements, state)
        for name in roots:
            self._resolve_package(name, root_requirements[name], state)

        self._prune(roots, state)
        state.graph.detect_circular_dependencies()
        resolution = self._build_resolution(roots, state)
        logger.info(
            "Resolved %d packages (%d requested) using the %s strategy",
            len(resolution.packages),
            len(roots),
            self.strategy.value,
        )
        return resolution

    # ------------------------------------------------------------------

    def _prefetch(self, root_requirements: Mapping[str, Sequence[Requirement]], state: ResolutionState) -> None:
        """Download descriptors of the top-level provisional winners concurrently."""

        pending: Dict[str, PackageVersion] = {}
        for name, requirements in root_requirements.items():
            try:
                _, entry = self._winner(name, requirements, state)
            except ResolutionError:
                # raised again, in order, by the sequential pass
                continue
            pending.setdefault(entry.rockspec_url, entry)
        if len(pending) < 2:
            return

        logger.debug("Prefetching %d descriptors with up to %d workers", len(pending), self.max_workers)
        for entry, rockspec in map_bounded(self._fetch_descriptor, list(pending.values()), self.max_workers):
            state.descriptors[entry.rockspec_url] = rockspec

    def _fetch_descriptor(self, entry: PackageVersion) -> Rockspec:
        return self.client.parse_rockspec(self.client.download_rockspec(entry.rockspec_url))

    def _descriptor(self, entry: PackageVersion, state: ResolutionState) -> Rockspec:
        rockspec = state.descriptors.get(entry.rockspec_url)
        if rockspec is None:
            rockspec = self._fetch_descriptor(entry)
            state.descriptors[entry.rockspec_url] = rockspec
        return rockspec

    # ------------------------------------------------------------------

    def _resolve_package(self, name: str, requirements: Sequence[Requirement], state: ResolutionState) -> None:
        state.requirements.setdefault(name, []).extend(requirements)
        for requirement in requirements:
            if requirement.requester not in MANIFEST_REQUESTERS:
                state.graph.add_dependency(requirement.requester, name)

        if name in state.visited:
            self._reconcile(name, state)
            return

        version, entry = self._winner(name, state.requirements[name], state)
        state.graph.add_node(name, requirements[0].constraint)
        logger.debug(
            "Selected %s %s for %s",
            name,
            version,
            ", ".join(f"'{requirement.raw}' (required by {requirement.requester})" for requirement in requirements),
        )
        self._settle(name, version, entry, state)

    def _settle(self, name: str, version: Version, entry: PackageVersion, state: ResolutionState) -> None:
        state.graph.set_resolved_version(name, version)
        state.selections[name] = (version, entry)
        state.visited.add(name)
        state.in_progress.add(name)

        rockspec = self._descriptor(entry, state)
        dependencies: List[Tuple[str, str]] = []
        for spec in rockspec.dependencies:
            dep_name, dep_raw = parse_dependency_entry(spec)
            if dep_name in RUNTIME_PACKAGES:
                continue
            dependencies.append((dep_name, dep_raw))

        declared: Dict[str, str] = {}
        for dep_name, dep_raw in dependencies:
            declared[dep_name] = f"{declared[dep_name]}, {dep_raw}" if dep_name in declared else dep_raw
        state.declared[name] = declared

        for dep_name, dep_raw in dependencies:
            self._resolve_package(dep_name, [Requirement(name, dep_raw, parse_compound_constraint(dep_raw))], state)
        state.in_progress.discard(name)

        if name in state.stale:
            # re-selected through a back-edge while its dependencies were being walked
            state.stale.discard(name)
            version, entry = state.selections[name]
            logger.debug("Re-settling %s at %s after a back-edge re-selection", name, version)
            self._detach_dependencies(name, state)
            self._settle(name, version, entry, state)

    def _reconcile(self, name: str, state: ResolutionState) -> None:
        """Re-check an already settled package against its grown requirement list."""

        current, _ = state.selections[name]
        requirements = state.requirements[name]
        if satisfies_all(current, [requirement.constraint for requirement in requirements]):
            return

        version, entry = self._winner(name, requirements, state)
        logger.debug("Re-selected %s: %s -> %s", name, current, version)
        if name in state.in_progress:
            state.graph.set_resolved_version(name, version)
            state.selections[name] = (version, entry)
            state.stale.add(name)
            return
        self._detach_dependencies(name, state)
        self._settle(name, version, entry, state)

    def _detach_dependencies(self, name: str, state: ResolutionState) -> None:
        """Withdraw every requirement ``name`` placed on its dependencies."""

        state.declared.pop(name, None)
        for dep in state.graph.clear_dependencies(name):
            remaining = [requirement for requirement in state.requirements.get(dep, []) if requirement.requester != name]
            state.requirements[dep] = remaining
            node = state.graph.get_node(dep)
            if remaining:
                if node is not None:
                    node.constraint = remaining[0].constraint
                continue
            if dep in state.in_progress or node is None:
                continue
            logger.debug("Dropping %s: no longer required after re-selecting %s", dep, name)
            self._detach_dependencies(dep, state)
            self._forget(dep, state)

    def _forget(self, name: str, state: ResolutionState) -> None:
        if name in state.graph:
            state.graph.remove_node(name)
        state.selections.pop(name, None)
        state.requirements.pop(name, None)
        state.declared.pop(name, None)
        state.visited.discard(name)
        state.stale.discard(name)

    # ------------------------------------------------------------------

    def _candidates(self, name: str, state: ResolutionState) -> List[Candidate]:
        cached = state.candidates.get(name)
        if cached is None:
            cached = registry_candidates(state.manifest.versions_for(name))
            state.candidates[name] = cached
        return cached

    def _winner(self, name: str, requirements: Sequence[Requirement], state: ResolutionState) -> Candidate:
        candidates = self._candidates(name, state)
        required_by = [requirement.requester for requirement in requirements]
        if not candidates:
            raw = requirements[-1].raw
            raise UnresolvableDependency(
                package=name,
                message=f"package not found in registry (constraint '{raw}', required by {', '.join(required_by)})",
                constraint=raw,
                required_by=required_by,
            )

        constraints = [requirement.constraint for requirement in requirements]
        matching = [candidate for candidate in candidates if satisfies_all(candidate[0], constraints)]
        if matching:
            return self.strategy.pick(matching)

        distinct = {requirement.raw for requirement in requirements}
        if len(distinct) > 1:
            raise VersionConflict(
                package=name,
                constraints=[(requirement.requester, requirement.raw) for requirement in requirements],
            )
        raise UnresolvableDependency(
            package=name,
            constraint=requirements[-1].raw,
            required_by=required_by,
            available=[str(version) for version, _ in candidates],
        )

    # ------------------------------------------------------------------

    def _prune(self, roots: Sequence[str], state: ResolutionState) -> None:
        reachable = state.graph.reachable_from(roots)
        for name in state.graph.node_names():
            if name not in reachable:
                logger.debug("Pruning unreachable package %s", name)
                self._forget(name, state)
        for name, requirements in state.requirements.items():
            state.requirements[name] = [
                requirement
                for requirement in requirements
                if requirement.requester in MANIFEST_REQUESTERS or requirement.requester in reachable
            ]

    def _build_resolution(self, roots: Sequence[str], state: ResolutionState) -> Resolution:
        packages: Dict[str, ResolvedPackage] = {}
        for name in sorted(state.graph.node_names()):
            version, entry = state.selections[name]
            rockspec = state.descriptors[entry.rockspec_url]
            packages[name] = ResolvedPackage(
                name=name,
                version=version,
                registry_version=entry.version,
                rockspec_url=entry.rockspec_url,
                archive_url=entry.archive_url,
                dependencies=dict(state.declared.get(name, {})),
                source_url=rockspec.source_url,
                build=rockspec.build_type,
            )
        requirements = {name: list(state.requirements.get(name, [])) for name in packages}
        return Resolution(packages=packages, graph=state.graph, requirements=requirements, roots=list(roots))
