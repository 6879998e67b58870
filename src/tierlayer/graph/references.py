"""
Reference resolution.

Scans a node's bindings and turns output references into typed edges. The
scan is conservative: references in both branches of a conditional and in
every fallback candidate produce edges, so the graph is the same whatever
values turn up at apply time.
"""

from __future__ import annotations

from typing import Container, Iterable

from tierlayer.core.errors import UnresolvedReferenceError
from tierlayer.declarations.bindings import EachKey, EachSecret, OutputRef, VariableRef, walk
from tierlayer.declarations.models import Node, PolicyKind, Registry
from tierlayer.graph.builder import Edge


def scan_node(
    node: Node,
    registry: Registry,
    known_variables: Container[str] | None = None,
) -> tuple[set[Edge], list[UnresolvedReferenceError]]:
    """Collect the edges implied by one node and every unresolved reference."""
    edges: set[Edge] = set()
    errors: list[UnresolvedReferenceError] = []
    keyed = node.policy.kind == PolicyKind.KEYED_SET

    for field, binding in node.bindings():
        for token in walk(binding):
            if isinstance(token, OutputRef):
                target = registry.get(token.node)
                if target is None:
                    errors.append(UnresolvedReferenceError(node.id, str(token), "no such node"))
                elif token.output not in target.outputs:
                    errors.append(
                        UnresolvedReferenceError(
                            node.id, str(token), f"node '{token.node}' declares no such output"
                        )
                    )
                else:
                    edges.add(Edge(source=node.id, target=token.node, output=token.output))

            elif isinstance(token, VariableRef):
                if known_variables is not None and token.name not in known_variables:
                    errors.append(
                        UnresolvedReferenceError(
                            node.id, str(token), "variable is neither declared nor supplied"
                        )
                    )

            elif isinstance(token, (EachKey, EachSecret)):
                if not keyed or field == "for_each":
                    errors.append(
                        UnresolvedReferenceError(
                            node.id, str(token), "only available inside keyed-set inputs"
                        )
                    )
                elif isinstance(token, EachSecret) and node.policy.sensitive is None:
                    errors.append(
                        UnresolvedReferenceError(
                            node.id, str(token), "requires a 'sensitive' secret set on the node"
                        )
                    )
                elif isinstance(token, EachSecret) and field.startswith("tags."):
                    errors.append(
                        UnresolvedReferenceError(
                            node.id, str(token), "secret values cannot be used in tags"
                        )
                    )

    return edges, errors


def extract_edges(
    node: Node,
    registry: Registry,
    known_variables: Container[str] | None = None,
) -> set[Edge]:
    """
    Produce the complete edge set implied by a node.

    Raises:
        UnresolvedReferenceError: For the first reference that does not resolve
    """
    edges, errors = scan_node(node, registry, known_variables)
    if errors:
        raise errors[0]
    return edges


def resolve_references(
    registry: Registry,
    known_variables: Container[str] | None = None,
    nodes: Iterable[Node] | None = None,
) -> tuple[set[Edge], list[UnresolvedReferenceError]]:
    """Scan every node (or the given subset) of a registry."""
    all_edges: set[Edge] = set()
    all_errors: list[UnresolvedReferenceError] = []
    for node in nodes if nodes is not None else registry:
        edges, errors = scan_node(node, registry, known_variables)
        all_edges |= edges
        all_errors.extend(errors)
    return all_edges, all_errors
