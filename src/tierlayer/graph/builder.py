"""Dependency graph construction and cycle detection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator

import structlog

from tierlayer.core.errors import CycleError

logger = structlog.get_logger()


@dataclass(frozen=True, order=True)
class Edge:
    """Directed dependency: ``source`` consumes ``output`` produced by ``target``."""

    source: str
    target: str
    output: str

    def __str__(self) -> str:
        return f"{self.source} -> {self.target}.{self.output}"


@dataclass(frozen=True)
class Graph:
    """Immutable dependency graph over node ids."""

    nodes: tuple[str, ...]
    edges: frozenset[Edge]
    _deps: dict[str, tuple[str, ...]] = field(default_factory=dict, repr=False, compare=False)
    _dependents: dict[str, tuple[str, ...]] = field(default_factory=dict, repr=False, compare=False)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._deps

    def __iter__(self) -> Iterator[str]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def dependencies(self, node_id: str) -> tuple[str, ...]:
        """Direct dependencies of a node, sorted."""
        return self._deps[node_id]

    def dependents(self, node_id: str) -> tuple[str, ...]:
        """Nodes that directly depend on a node, sorted."""
        return self._dependents[node_id]

    def transitive_dependencies(self, node_id: str) -> set[str]:
        """Every node reachable by following dependencies from ``node_id``."""
        return self._reach(node_id, self._deps)

    def transitive_dependents(self, node_id: str) -> set[str]:
        """Every node that depends, directly or not, on ``node_id``."""
        return self._reach(node_id, self._dependents)

    def subgraph(self, node_ids: Iterable[str]) -> Graph:
        keep = set(node_ids)
        return build_graph(
            [n for n in self.nodes if n in keep],
            [e for e in self.edges if e.source in keep and e.target in keep],
        )

    def without_edges(self, removed: Iterable[tuple[str, str]]) -> Graph:
        """Copy of the graph without any edge between the given (source, target) pairs."""
        drop = set(removed)
        return build_graph(self.nodes, [e for e in self.edges if (e.source, e.target) not in drop])

    @staticmethod
    def _reach(start: str, adjacency: dict[str, tuple[str, ...]]) -> set[str]:
        seen: set[str] = set()
        stack = list(adjacency[start])
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(adjacency[current])
        return seen


def build_graph(node_ids: Iterable[str], edges: Iterable[Edge]) -> Graph:
    """Assemble nodes and edges into a Graph.

    Edges whose endpoints are unknown are dropped; the reference resolver
    reports those as errors before the graph is built.
    """
    nodes = tuple(dict.fromkeys(node_ids))
    known = set(nodes)
    kept = frozenset(e for e in edges if e.source in known and e.target in known)

    deps: dict[str, set[str]] = {n: set() for n in nodes}
    dependents: dict[str, set[str]] = {n: set() for n in nodes}
    for edge in kept:
        deps[edge.source].add(edge.target)
        dependents[edge.target].add(edge.source)

    return Graph(
        nodes=nodes,
        edges=kept,
        _deps={n: tuple(sorted(d)) for n, d in deps.items()},
        _dependents={n: tuple(sorted(d)) for n, d in dependents.items()},
    )


def find_cycles(graph: Graph) -> list[list[str]]:
    """
    Find dependency cycles with a depth-first traversal.

    Nodes are visited in sorted order and a recursion stack is kept; revisiting
    a node that is still on the stack records the chain from that node back to
    itself. Each cycle is reported once, whatever node it was entered from.

    Returns:
        Closed chains, e.g. ``[["a", "b", "a"]]`` where each node depends on the next
    """
    cycles: list[list[str]] = []
    seen_cycles: set[tuple[str, ...]] = set()
    done: set[str] = set()

    for root in sorted(graph.nodes):
        if root in done:
            continue

        stack: list[str] = [root]
        on_stack: set[str] = {root}
        iterators = [iter(graph.dependencies(root))]

        while iterators:
            dep = next(iterators[-1], None)
            if dep is None:
                finished = stack.pop()
                on_stack.discard(finished)
                done.add(finished)
                iterators.pop()
                continue

            if dep in on_stack:
                chain = stack[stack.index(dep) :] + [dep]
                key = _canonical(chain)
                if key not in seen_cycles:
                    seen_cycles.add(key)
                    cycles.append(chain)
                continue

            if dep in done:
                continue

            stack.append(dep)
            on_stack.add(dep)
            iterators.append(iter(graph.dependencies(dep)))

    return cycles


def check_acyclic(graph: Graph) -> None:
    """Raise CycleError for the first cycle found.

    Raises:
        CycleError: If the graph is not a DAG
    """
    cycles = find_cycles(graph)
    if cycles:
        logger.debug("cycle_detected", chain=" -> ".join(cycles[0]))
        raise CycleError(cycles[0])


def _canonical(chain: list[str]) -> tuple[str, ...]:
    """Rotation-independent key for a closed chain."""
    ring = chain[:-1]
    start = ring.index(min(ring))
    return tuple(ring[start:] + ring[:start])
