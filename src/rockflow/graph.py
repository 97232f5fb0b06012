"""Dependency graph used for resolution bookkeeping and cycle detection."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from .constraints import VersionConstraint
from .exceptions import CircularDependency, PackageNotFound
from .version import Version


@dataclass
class DependencyNode:
    name: str
    constraint: VersionConstraint
    dependency_names: List[str] = field(default_factory=list)
    resolved_version: Optional[Version] = None


class _Mark(Enum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


class DependencyGraph:
    """Package name -> node mapping; edges are the nodes' ``dependency_names``.

    Not safe for concurrent mutation: a single task owns the graph while a
    resolution runs.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, DependencyNode] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def add_node(self, name: str, constraint: VersionConstraint) -> DependencyNode:
        node = self._nodes.get(name)
        if node is None:
            node = DependencyNode(name=name, constraint=constraint)
            self._nodes[name] = node
        return node

    def add_dependency(self, from_name: str, to_name: str) -> None:
        node = self._require(from_name)
        if to_name not in node.dependency_names:
            node.dependency_names.append(to_name)

    def set_resolved_version(self, name: str, version: Version) -> None:
        self._require(name).resolved_version = version

    def get_node(self, name: str) -> Optional[DependencyNode]:
        return self._nodes.get(name)

    def node_names(self) -> List[str]:
        return list(self._nodes)

    def clear_dependencies(self, name: str) -> List[str]:
        node = self._require(name)
        previous, node.dependency_names = node.dependency_names, []
        return previous

    def remove_node(self, name: str) -> None:
        self._require(name)
        del self._nodes[name]
        for node in self._nodes.values():
            if name in node.dependency_names:
                node.dependency_names.remove(name)

    def dependents_of(self, name: str) -> List[str]:
        return [node.name for node in self._nodes.values() if name in node.dependency_names]

    def reachable_from(self, roots: Iterable[str]) -> Set[str]:
        seen: Set[str] = set()
        stack = [root for root in roots if root in self._nodes]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            for dep in self._nodes[current].dependency_names:
                if dep in self._nodes and dep not in seen:
                    stack.append(dep)
        return seen

    def resolved_versions(self) -> Dict[str, Version]:
        return {
            name: node.resolved_version
            for name, node in self._nodes.items()
            if node.resolved_version is not None
        }

    # ------------------------------------------------------------------

    def detect_circular_dependencies(self) -> None:
        """Raise CircularDependency on the first back-edge found.

        Every node is tried as a DFS root so disconnected subgraphs are covered.
        """
        marks: Dict[str, _Mark] = {name: _Mark.UNVISITED for name in self._nodes}
        for name in sorted(self._nodes):
            if marks[name] is _Mark.UNVISITED:
                self._visit(name, marks, [])

    def _visit(self, name: str, marks: Dict[str, _Mark], path: List[str]) -> None:
        marks[name] = _Mark.IN_PROGRESS
        path.append(name)
        for dep in self._nodes[name].dependency_names:
            mark = marks.get(dep)
            if mark is None:
                # edge to a package outside the graph; nothing to traverse
                continue
            if mark is _Mark.IN_PROGRESS:
                cycle = path[path.index(dep):] + [dep]
                raise CircularDependency(package=dep, path=cycle)
            if mark is _Mark.UNVISITED:
                self._visit(dep, marks, path)
        path.pop()
        marks[name] = _Mark.DONE

    def _require(self, name: str) -> DependencyNode:
        node = self._nodes.get(name)
        if node is None:
            raise PackageNotFound(name)
        return node
