"""
Spanning-node validation.

A spanning node draws inputs from more than one tier, e.g. a role whose core
definition needs only tier-0 resources while an auxiliary policy also reads
tier-4 outputs. Such nodes are allowed, but an edge that makes anything in
their dependency set depend back on them closes a cycle through the node.
These checks name that back-edge instead of reporting a bare cycle.
"""

from __future__ import annotations

from collections import deque
from typing import Iterable, Mapping

from tierlayer.core.errors import CycleError, SpanningCycleError
from tierlayer.graph.builder import Edge, Graph, find_cycles
from tierlayer.graph.scheduler import assign_tiers


def spanning_nodes(graph: Graph, tiers: Mapping[str, int]) -> list[str]:
    """Nodes whose direct dependencies lie in more than one distinct tier."""
    return sorted(
        n for n in graph.nodes if len({tiers[d] for d in graph.dependencies(n)}) > 1
    )


def validate_spanning(graph: Graph, cycles: list[list[str]] | None = None) -> list[SpanningCycleError]:
    """
    Cycles that close back through a spanning node, named by their back-edge.

    ``cycles`` are the chains already found by ``find_cycles``; they are
    searched again when omitted. Cycles with no spanning node on them are
    left to the ordinary cycle check.
    """
    chains = find_cycles(graph) if cycles is None else cycles
    errors: list[SpanningCycleError] = []
    for chain in chains:
        error = classify_cycle(graph, chain)
        if isinstance(error, SpanningCycleError):
            errors.append(error)
    return errors


def check_new_edges(
    graph: Graph, tiers: Mapping[str, int], new_edges: Iterable[Edge]
) -> list[SpanningCycleError]:
    """
    Check edges about to be added to an already-tiered graph.

    ``graph`` and ``tiers`` describe the graph before the change. An edge
    ``Y -> S`` where ``S`` is spanning and ``Y`` is in ``S``'s transitive
    dependency set (or is ``S``) would close a cycle back through ``S``.
    """
    spanning = set(spanning_nodes(graph, tiers))
    errors: list[SpanningCycleError] = []
    reported: set[tuple[str, str]] = set()

    for edge in sorted(new_edges):
        back_edge = (edge.source, edge.target)
        if edge.target not in spanning or back_edge in reported:
            continue
        if edge.source == edge.target or edge.source in graph.transitive_dependencies(edge.target):
            reported.add(back_edge)
            errors.append(
                SpanningCycleError(
                    edge.target,
                    back_edge,
                    chain=_closed_chain(graph, edge.target, edge.source),
                )
            )
    return errors


def classify_cycle(graph: Graph, chain: list[str]) -> CycleError:
    """
    Turn a detected cycle into the most specific error.

    For every edge ``a -> b`` of the chain, drop it and re-tier the rest of
    the graph; if ``b`` is then a spanning node, ``a -> b`` is a candidate
    back-edge closing the cycle through it. When several edges qualify, the
    one whose spanning node lands in the latest tier wins: a back-edge leaves
    the spanning node's dependency set, which sits in earlier tiers.
    """
    candidates: list[tuple[int, str, str]] = []
    for a, b in zip(chain, chain[1:]):
        reduced = graph.without_edges([(a, b)])
        if find_cycles(reduced):
            continue
        tiers = assign_tiers(reduced)
        if b in spanning_nodes(reduced, tiers):
            candidates.append((tiers[b], a, b))

    if not candidates:
        return CycleError(chain)
    _, a, b = max(candidates, key=lambda c: (c[0], c[2], c[1]))
    return SpanningCycleError(b, (a, b), chain=chain)


def _closed_chain(graph: Graph, start: str, goal: str) -> list[str]:
    """Dependency path ``start -> ... -> goal`` closed back to ``start``."""
    if start == goal:
        return [start, start]

    parents: dict[str, str] = {}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for dep in graph.dependencies(current):
            if dep in parents or dep == start:
                continue
            parents[dep] = current
            if dep == goal:
                path = [goal]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                return list(reversed(path)) + [start]
            queue.append(dep)
    return [start, goal, start]
