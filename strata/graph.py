"""Dependency graph for Strata.

Nodes are site-relative POSIX paths. An edge ``A -> B`` means A needs B: a
content file depends on every layout in its chain and on every data file it
consumed. The graph answers both directions, "what does A need" and "what
must be rebuilt when B changes".

The graph is persisted as plain adjacency data and merged into the live graph
on load, so edges may name paths that no longer exist.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path

from . import console
from .errors import CacheIOError

GRAPH_FILE_NAME = "graph.json"


class DependencyGraph:
    """Directed graph of content -> layout/data dependencies."""

    def __init__(self):
        self._nodes: set[str] = set()
        self._edges: dict[str, set[str]] = {}
        self._reverse: dict[str, set[str]] = {}

    def __contains__(self, node: str) -> bool:
        return node in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> set[str]:
        return set(self._nodes)

    def add_node(self, node: str) -> None:
        self._nodes.add(node)

    def add_dependency(self, node: str, dependency: str) -> None:
        """Record that ``node`` needs ``dependency``."""
        self.add_node(node)
        self.add_node(dependency)
        self._edges.setdefault(node, set()).add(dependency)
        self._reverse.setdefault(dependency, set()).add(node)

    def set_dependencies(self, node: str, dependencies: Iterable[str]) -> None:
        """Replace the outgoing edges of ``node``."""
        for old in self._edges.pop(node, set()):
            dependants = self._reverse.get(old)
            if dependants is not None:
                dependants.discard(node)
        self.add_node(node)
        for dependency in dependencies:
            self.add_dependency(node, dependency)

    def remove_node(self, node: str) -> None:
        self.set_dependencies(node, ())
        for dependant in self._reverse.pop(node, set()):
            self._edges.get(dependant, set()).discard(node)
        self._nodes.discard(node)

    def dependencies_of(self, node: str) -> set[str]:
        """Direct dependencies of ``node``; empty for unknown nodes."""
        return set(self._edges.get(node, ()))

    def dependants_of(self, node: str, transitive: bool = True) -> set[str]:
        """Nodes that would be invalidated if ``node`` changed.

        Args:
            node: A path, typically a layout or data file.
            transitive: Follow reverse edges past the direct dependants.

        Returns:
            Set of dependant paths, never including ``node`` itself.
        """
        direct = set(self._reverse.get(node, ()))
        if not transitive:
            return direct
        seen: set[str] = set()
        pending = list(direct)
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self._reverse.get(current, ()))
        seen.discard(node)
        return seen

    def to_dict(self) -> dict:
        return {
            "nodes": sorted(self._nodes),
            "edges": {node: sorted(deps) for node, deps in sorted(self._edges.items()) if deps},
        }

    def merge_dict(self, payload: dict) -> None:
        """Merge serialized adjacency data into this graph.

        Raises:
            CacheIOError: If the payload has the wrong shape.
        """
        nodes = payload.get("nodes", []) if isinstance(payload, dict) else None
        edges = payload.get("edges", {}) if isinstance(payload, dict) else None
        if not isinstance(nodes, list) or not isinstance(edges, dict):
            raise CacheIOError("Graph file must hold 'nodes' and 'edges'")
        for node in nodes:
            self.add_node(str(node))
        for node, deps in edges.items():
            if not isinstance(deps, list):
                raise CacheIOError(f"Graph edges for '{node}' must be a list")
            for dep in deps:
                self.add_dependency(str(node), str(dep))

    def load(self, cache_dir: Path) -> None:
        """Merge the persisted graph; a corrupt file is ignored with a warning."""
        path = cache_dir / GRAPH_FILE_NAME
        if not path.exists():
            return
        try:
            try:
                with open(path, encoding="utf-8") as f:
                    payload = json.load(f)
            except (OSError, ValueError) as exc:
                raise CacheIOError(f"Unable to read graph file: {exc}", path, exc) from exc
            staged = DependencyGraph()
            staged.merge_dict(payload)
        except CacheIOError as exc:
            console.warning(f"{exc.message}; starting with an empty dependency graph", path)
            return
        self.merge_dict(staged.to_dict())

    def save(self, cache_dir: Path) -> None:
        path = cache_dir / GRAPH_FILE_NAME
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as exc:
            console.warning(f"Unable to write graph file: {exc}", path)

    def clear(self) -> None:
        self._nodes.clear()
        self._edges.clear()
        self._reverse.clear()
