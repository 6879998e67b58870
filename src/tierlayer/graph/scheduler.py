"""Phase scheduling: longest-path tier assignment."""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Mapping

from tierlayer.graph.builder import Graph, check_acyclic


def assign_tiers(graph: Graph) -> dict[str, int]:
    """
    Assign every node its execution tier.

    ``tier(n) = 1 + max(tier(d))`` over direct dependencies ``d``, or ``0``
    for nodes without dependencies. This is the smallest tier any valid
    ordering can give a node, so nothing is scheduled later than necessary.

    Raises:
        CycleError: If the graph is not acyclic
    """
    check_acyclic(graph)

    tiers: dict[str, int] = {}
    remaining = {n: len(graph.dependencies(n)) for n in graph.nodes}
    ready = sorted(n for n, count in remaining.items() if count == 0)
    for node_id in ready:
        tiers[node_id] = 0

    # Kahn's algorithm; a node's tier is final once all its dependencies are placed
    while ready:
        next_ready: list[str] = []
        for node_id in ready:
            for dependent in graph.dependents(node_id):
                tiers[dependent] = max(tiers.get(dependent, 0), tiers[node_id] + 1)
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    next_ready.append(dependent)
        ready = sorted(next_ready)

    return tiers


def group_by_tier(tiers: Mapping[str, int], only: Iterable[str] | None = None) -> list[list[str]]:
    """Group node ids by tier, lowest tier first, ids sorted within a tier.

    Tiers left empty by ``only`` are dropped; tier numbers are not renumbered
    on the nodes themselves.
    """
    selected = set(only) if only is not None else set(tiers)
    grouped: dict[int, list[str]] = defaultdict(list)
    for node_id, tier in tiers.items():
        if node_id in selected:
            grouped[tier].append(node_id)
    return [sorted(grouped[t]) for t in sorted(grouped)]


def execution_order(tiers: Mapping[str, int]) -> str:
    """Human-readable tier order, e.g. ``[a, b] -> [c] -> [d]``."""
    return " -> ".join(f"[{', '.join(group)}]" for group in group_by_tier(tiers))
