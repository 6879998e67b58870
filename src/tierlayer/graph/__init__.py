"""
Dependency graph: reference extraction, construction, cycle detection and
tier scheduling.
"""

from tierlayer.graph.builder import Edge, Graph, build_graph, check_acyclic, find_cycles
from tierlayer.graph.references import extract_edges, resolve_references, scan_node
from tierlayer.graph.scheduler import assign_tiers, execution_order, group_by_tier
from tierlayer.graph.spanning import (
    check_new_edges,
    classify_cycle,
    spanning_nodes,
    validate_spanning,
)

__all__ = [
    "Edge",
    "Graph",
    "build_graph",
    "check_acyclic",
    "find_cycles",
    "extract_edges",
    "resolve_references",
    "scan_node",
    "assign_tiers",
    "group_by_tier",
    "execution_order",
    "spanning_nodes",
    "validate_spanning",
    "check_new_edges",
    "classify_cycle",
]
