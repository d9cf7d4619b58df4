"""Directed "must complete before" graph over task ids.

The graph stores ids only; the owning session holds the tasks. Iteration is
always in natural id order so cycle detection and layering are reproducible.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from .utils import natural_key, sort_ids


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    kind: str
    weight: float = 1.0
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.source,
            "to": self.target,
            "kind": self.kind,
            "weight": self.weight,
            "reason": self.reason,
        }


class TaskGraph:
    """Adjacency-list DAG with forward and reverse edges."""

    def __init__(self, nodes: Iterable[str] = ()) -> None:
        self._nodes: list[str] = []
        self._out: dict[str, dict[str, Edge]] = {}
        self._in: dict[str, set[str]] = {}
        self._frozen = False
        for node in nodes:
            self.add_node(node)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("TaskGraph is read-only once planning completes")

    def add_node(self, node: str) -> None:
        self._check_mutable()
        if node in self._out:
            return
        self._nodes.append(node)
        self._out[node] = {}
        self._in[node] = set()

    def add_edge(self, source: str, target: str, kind: str = "explicit", weight: float = 1.0, reason: str = "") -> bool:
        """Add ``source -> target``. Returns False for self-loops, unknown nodes or duplicates."""
        self._check_mutable()
        if source == target or source not in self._out or target not in self._out:
            return False
        if target in self._out[source]:
            return False
        self._out[source][target] = Edge(source, target, kind, weight, reason)
        self._in[target].add(source)
        return True

    def remove_edge(self, source: str, target: str) -> Optional[Edge]:
        self._check_mutable()
        edge = self._out.get(source, {}).pop(target, None)
        if edge is not None:
            self._in[target].discard(source)
        return edge

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> list[str]:
        return list(self._nodes)

    def __contains__(self, node: object) -> bool:
        return node in self._out

    def __len__(self) -> int:
        return len(self._nodes)

    def has_edge(self, source: str, target: str) -> bool:
        return target in self._out.get(source, {})

    def linked(self, a: str, b: str) -> bool:
        return self.has_edge(a, b) or self.has_edge(b, a)

    def edge(self, source: str, target: str) -> Optional[Edge]:
        return self._out.get(source, {}).get(target)

    def edges(self) -> list[Edge]:
        result: list[Edge] = []
        for source in sort_ids(self._out):
            for target in sort_ids(self._out[source]):
                result.append(self._out[source][target])
        return result

    def successors(self, node: str) -> list[str]:
        return sort_ids(self._out.get(node, {}))

    def dependencies_of(self, node: str) -> set[str]:
        return set(self._in.get(node, set()))

    def out_degree(self, node: str) -> int:
        return len(self._out.get(node, {}))

    def in_degree(self, node: str) -> int:
        return len(self._in.get(node, set()))

    def reaches(self, source: str, target: str) -> bool:
        """True when a directed path leads from ``source`` to ``target``."""
        if source not in self._out or target not in self._out:
            return False
        seen = {source}
        queue = deque([source])
        while queue:
            node = queue.popleft()
            if node == target:
                return True
            for nxt in self._out[node]:
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
        return False

    def find_cycle(self) -> Optional[list[str]]:
        """Return one cycle as ``[a, b, ..., a]`` or None.

        Depth-first with an explicit recursion stack, visiting nodes and
        successors in natural id order.
        """
        # Track visit state: 0 = unvisited, 1 = on stack, 2 = done
        state = {node: 0 for node in self._nodes}

        for start in sort_ids(self._nodes):
            if state[start] != 0:
                continue
            stack: list[tuple[str, list[str]]] = [(start, self.successors(start))]
            path = [start]
            state[start] = 1
            while stack:
                node, pending = stack[-1]
                if not pending:
                    state[node] = 2
                    stack.pop()
                    path.pop()
                    continue
                nxt = pending.pop(0)
                if state[nxt] == 1:
                    return path[path.index(nxt):] + [nxt]
                if state[nxt] == 0:
                    state[nxt] = 1
                    path.append(nxt)
                    stack.append((nxt, self.successors(nxt)))
        return None

    def has_cycles(self) -> bool:
        return self.find_cycle() is not None

    def topological_order(self) -> list[str]:
        """Kahn's algorithm; ties resolved in natural id order.

        Raises:
            ValueError: If the graph has a cycle.
        """
        in_degree = {node: self.in_degree(node) for node in self._nodes}
        ready = sort_ids(n for n, d in in_degree.items() if d == 0)
        order: list[str] = []
        while ready:
            node = ready.pop(0)
            order.append(node)
            for nxt in self.successors(node):
                in_degree[nxt] -= 1
                if in_degree[nxt] == 0:
                    ready.append(nxt)
                    ready.sort(key=natural_key)
        if len(order) != len(self._nodes):
            raise ValueError("TaskGraph has a cycle")
        return order

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": sort_ids(self._nodes),
            "edges": [e.to_dict() for e in self.edges()],
        }
