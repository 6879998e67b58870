"""
Node declarations.

Loads declaration documents (with per-environment overlays) into a Registry
of immutable nodes whose input bindings are typed tokens.
"""

from tierlayer.declarations.bindings import (
    Binding,
    Conditional,
    EachKey,
    EachSecret,
    EnvironmentRef,
    Equals,
    FallbackChain,
    ListOf,
    Literal,
    Lookup,
    MapOf,
    OutputRef,
    Template,
    VariableRef,
    parse_binding,
)
from tierlayer.declarations.loader import load_declarations, parse_document, parse_node
from tierlayer.declarations.models import (
    InstantiationPolicy,
    Node,
    PolicyKind,
    Registry,
    VariableDeclaration,
    merge_tags,
)

__all__ = [
    # Bindings
    "Binding",
    "Literal",
    "OutputRef",
    "VariableRef",
    "EnvironmentRef",
    "EachKey",
    "EachSecret",
    "Template",
    "ListOf",
    "MapOf",
    "Conditional",
    "FallbackChain",
    "Lookup",
    "Equals",
    "parse_binding",
    # Models
    "Node",
    "InstantiationPolicy",
    "PolicyKind",
    "Registry",
    "VariableDeclaration",
    "merge_tags",
    # Loading
    "load_declarations",
    "parse_document",
    "parse_node",
]
