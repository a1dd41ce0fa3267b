"""Generic dependency graph with deterministic topological ordering.

Edges read "``frm`` depends on ``to``": ``to`` is ordered before ``frm``.
Two edge kinds exist. ``REQUIRES`` is a real build dependency; ``ORDERING``
only constrains the sequence (an integration target is released after its
own stable target) and callers that propagate failures skip it.

Ordering is a depth-first post-order walk over nodes in insertion order,
visiting each node's dependencies in the order they were added, so the same
inputs always produce the same order.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Generic, TypeVar

from .errors import CycleError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class EdgeKind(str, Enum):
    REQUIRES = "requires"
    ORDERING = "ordering"


class DependencyGraph(Generic[T]):
    def __init__(self) -> None:
        self._nodes: dict[str, T | None] = {}
        self._edges: dict[str, dict[str, EdgeKind]] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def add_node(self, key: str, payload: T | None = None) -> None:
        if key in self._nodes:
            if payload is not None:
                self._nodes[key] = payload
            return
        self._nodes[key] = payload
        self._edges[key] = {}

    def has_node(self, key: str) -> bool:
        return key in self._nodes

    def payload(self, key: str) -> T | None:
        return self._nodes[key]

    def nodes(self) -> list[str]:
        return list(self._nodes)

    def add_dependency(self, frm: str, to: str, kind: EdgeKind = EdgeKind.REQUIRES) -> bool:
        """Record that ``frm`` depends on ``to``.

        Returns ``False`` (and logs) when either node is unknown. Raises
        ``CycleError`` before mutating anything if the edge would close a cycle.
        An existing ``ORDERING`` edge is upgraded when the same pair is added
        again as ``REQUIRES``.
        """
        for key in (frm, to):
            if key not in self._nodes:
                logger.warning("Ignoring dependency %s -> %s: unknown node %s", frm, to, key)
                return False
        if frm == to:
            raise CycleError([frm, to])
        path = self._find_path(to, frm)
        if path is not None:
            raise CycleError([frm, *path])
        current = self._edges[frm].get(to)
        if current is None or kind is EdgeKind.REQUIRES:
            self._edges[frm][to] = kind
        return True

    def dependencies_of(self, key: str, kind: EdgeKind | None = None) -> list[str]:
        """Direct dependencies of ``key``, optionally restricted to one edge kind."""
        if key not in self._nodes:
            raise KeyError(key)
        return [dep for dep, k in self._edges[key].items() if kind is None or k is kind]

    def dependants_of(self, key: str) -> list[str]:
        if key not in self._nodes:
            raise KeyError(key)
        return [node for node, deps in self._edges.items() if key in deps]

    def edge_kind(self, frm: str, to: str) -> EdgeKind | None:
        return self._edges.get(frm, {}).get(to)

    def overall_order(self) -> list[str]:
        order: list[str] = []
        visited: set[str] = set()
        for root in self._nodes:
            if root in visited:
                continue
            visited.add(root)
            # iterative post-order to stay clear of the recursion limit on long chains
            stack: list[tuple[str, list[str]]] = [(root, list(self._edges[root]))]
            while stack:
                node, pending = stack[-1]
                if pending:
                    dep = pending.pop(0)
                    if dep not in visited:
                        visited.add(dep)
                        stack.append((dep, list(self._edges[dep])))
                    continue
                stack.pop()
                order.append(node)
        return order

    def _find_path(self, start: str, goal: str) -> list[str] | None:
        stack: list[tuple[str, list[str]]] = [(start, [start])]
        seen: set[str] = set()
        while stack:
            node, path = stack.pop()
            if node == goal:
                return path
            if node in seen:
                continue
            seen.add(node)
            for dep in self._edges[node]:
                stack.append((dep, [*path, dep]))
        return None


__all__ = ["DependencyGraph", "EdgeKind", "CycleError"]
