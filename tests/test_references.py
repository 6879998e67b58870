"""Tests for reference extraction."""

import pytest

from tierlayer.core.errors import UnresolvedReferenceError
from tierlayer.declarations.loader import parse_document
from tierlayer.graph.builder import Edge
from tierlayer.graph.references import extract_edges, resolve_references


def _registry(*nodes):
    return parse_document({"nodes": list(nodes)})


class TestExtractEdges:
    """Edges implied by one node."""

    def test_direct_references(self):
        registry = _registry(
            {"id": "net", "outputs": ["id"]},
            {"id": "app", "inputs": {"network": "${net.id}"}},
        )
        assert extract_edges(registry.nodes["app"], registry) == {Edge("app", "net", "id")}

    def test_both_conditional_branches(self):
        registry = _registry(
            {"id": "primary", "outputs": ["id"]},
            {"id": "replica", "outputs": ["id"]},
            {
                "id": "app",
                "inputs": {
                    "db": {"if": "${var.ha}", "then": "${replica.id}", "else": "${primary.id}"}
                },
            },
        )
        edges = extract_edges(registry.nodes["app"], registry)
        assert {e.target for e in edges} == {"primary", "replica"}

    def test_fallback_candidates_and_tags(self):
        registry = _registry(
            {"id": "a", "outputs": ["name"]},
            {"id": "b", "outputs": ["name"]},
            {
                "id": "app",
                "inputs": {"name": {"first_of": ["${a.name}"], "default": "x"}},
                "tags": {"owner": "${b.name}"},
            },
        )
        edges = extract_edges(registry.nodes["app"], registry)
        assert {e.target for e in edges} == {"a", "b"}

    def test_policy_references_produce_edges(self):
        registry = _registry(
            {"id": "list", "outputs": ["names"]},
            {"id": "users", "for_each": "${list.names}"},
        )
        assert extract_edges(registry.nodes["users"], registry) == {
            Edge("users", "list", "names")
        }

    def test_unknown_node(self):
        registry = _registry({"id": "app", "inputs": {"network": "${net.id}"}})
        with pytest.raises(UnresolvedReferenceError, match="no such node"):
            extract_edges(registry.nodes["app"], registry)

    def test_unknown_output(self):
        registry = _registry(
            {"id": "net", "outputs": ["id"]},
            {"id": "app", "inputs": {"network": "${net.cidr}"}},
        )
        with pytest.raises(UnresolvedReferenceError, match="no such output"):
            extract_edges(registry.nodes["app"], registry)

    def test_unknown_variable(self):
        registry = _registry({"id": "app", "inputs": {"region": "${var.region}"}})
        with pytest.raises(UnresolvedReferenceError, match="variable"):
            extract_edges(registry.nodes["app"], registry, known_variables=set())

    def test_each_key_outside_keyed_set(self):
        registry = _registry({"id": "app", "inputs": {"name": "${each.key}"}})
        with pytest.raises(UnresolvedReferenceError, match="keyed-set"):
            extract_edges(registry.nodes["app"], registry)

    def test_each_secret_needs_secret_set(self):
        registry = _registry(
            {"id": "users", "for_each": ["a"], "inputs": {"password": "${each.secret}"}}
        )
        with pytest.raises(UnresolvedReferenceError, match="sensitive"):
            extract_edges(registry.nodes["users"], registry)


class TestResolveReferences:
    """Whole-registry scan."""

    def test_collects_every_error(self):
        registry = _registry(
            {"id": "a", "inputs": {"x": "${missing.id}"}},
            {"id": "b", "inputs": {"y": "${gone.id}"}},
        )
        edges, errors = resolve_references(registry)
        assert edges == set()
        assert sorted(e.node_id for e in errors) == ["a", "b"]
