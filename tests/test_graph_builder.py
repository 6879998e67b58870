"""Tests for graph construction and cycle detection."""

import pytest

from tierlayer.core.errors import CycleError
from tierlayer.graph.builder import Edge, build_graph, check_acyclic, find_cycles


def _graph(deps):
    """Build a graph from ``{node: [dependencies]}``."""
    edges = [Edge(n, d, "out") for n, ds in deps.items() for d in ds]
    return build_graph(deps, edges)


def _is_cycle_in(chain, deps):
    return chain[0] == chain[-1] and all(b in deps[a] for a, b in zip(chain, chain[1:]))


class TestBuildGraph:
    """Graph assembly."""

    def test_dependencies_and_dependents(self):
        graph = _graph({"a": [], "b": ["a"], "c": ["a", "b"]})
        assert graph.dependencies("c") == ("a", "b")
        assert graph.dependents("a") == ("b", "c")

    def test_transitive_dependencies(self):
        graph = _graph({"a": [], "b": ["a"], "c": ["b"]})
        assert graph.transitive_dependencies("c") == {"a", "b"}
        assert graph.transitive_dependents("a") == {"b", "c"}

    def test_edges_to_unknown_nodes_are_dropped(self):
        graph = build_graph(["a"], [Edge("a", "ghost", "id")])
        assert graph.edges == frozenset()

    def test_subgraph(self):
        graph = _graph({"a": [], "b": ["a"], "c": ["b"]})
        sub = graph.subgraph(["a", "b"])
        assert sub.nodes == ("a", "b")
        assert len(sub.edges) == 1


class TestFindCycles:
    """Depth-first cycle detection."""

    def test_acyclic(self):
        assert find_cycles(_graph({"a": [], "b": ["a"], "c": ["a", "b"]})) == []

    def test_self_loop(self):
        assert find_cycles(_graph({"a": ["a"]})) == [["a", "a"]]

    @pytest.mark.parametrize(
        "deps",
        [
            {"a": ["b"], "b": ["a"]},
            {"a": ["b"], "b": ["c"], "c": ["a"]},
            {"x": [], "a": ["x", "b"], "b": ["c"], "c": ["a", "x"]},
        ],
    )
    def test_reported_chain_is_a_real_cycle(self, deps):
        cycles = find_cycles(_graph(deps))
        assert cycles
        for chain in cycles:
            assert _is_cycle_in(chain, deps)

    def test_each_cycle_reported_once(self):
        cycles = find_cycles(_graph({"a": ["b"], "b": ["c"], "c": ["a"]}))
        assert len(cycles) == 1

    def test_disjoint_cycles(self):
        cycles = find_cycles(_graph({"a": ["b"], "b": ["a"], "c": ["d"], "d": ["c"]}))
        assert len(cycles) == 2

    def test_check_acyclic_raises_with_chain(self):
        deps = {"a": ["b"], "b": ["c"], "c": ["a"]}
        with pytest.raises(CycleError) as exc_info:
            check_acyclic(_graph(deps))
        assert _is_cycle_in(exc_info.value.chain, deps)
        assert " -> " in exc_info.value.message
