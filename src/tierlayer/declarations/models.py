"""
Declaration models.

A Registry is the loaded set of node declarations. Nodes are immutable once
loaded; changing a node's bindings produces a new Registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from tierlayer.core.errors import TierLayerError
from tierlayer.declarations.bindings import Binding

_EMPTY: Mapping[str, Any] = MappingProxyType({})


class PolicyKind(StrEnum):
    """How many instances of a node exist."""

    ALWAYS_ONE = "always-one"
    CONDITIONAL_ONE = "conditional-one"
    KEYED_SET = "keyed-set"


@dataclass(frozen=True)
class InstantiationPolicy:
    """Instantiation policy of a node.

    Attributes:
        kind: always-one, conditional-one or keyed-set
        toggle: Boolean binding for conditional-one nodes
        keys: Key set binding for keyed-set nodes
        sensitive: Name of the secret set whose values feed each key
    """

    kind: PolicyKind = PolicyKind.ALWAYS_ONE
    toggle: Binding | None = None
    keys: Binding | None = None
    sensitive: str | None = None

    @classmethod
    def conditional(cls, toggle: Binding) -> InstantiationPolicy:
        return cls(kind=PolicyKind.CONDITIONAL_ONE, toggle=toggle)

    @classmethod
    def keyed(cls, keys: Binding, sensitive: str | None = None) -> InstantiationPolicy:
        return cls(kind=PolicyKind.KEYED_SET, keys=keys, sensitive=sensitive)

    def bindings(self) -> Iterator[tuple[str, Binding]]:
        if self.toggle is not None:
            yield "enabled", self.toggle
        if self.keys is not None:
            yield "for_each", self.keys


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT: Any = _NoDefault()


@dataclass(frozen=True)
class VariableDeclaration:
    """A declared variable with an optional default."""

    name: str
    default: Any = NO_DEFAULT
    sensitive: bool = False
    description: str = ""

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT


@dataclass(frozen=True)
class Node:
    """A single declared component."""

    id: str
    inputs: Mapping[str, Binding] = field(default_factory=lambda: _EMPTY)
    outputs: frozenset[str] = frozenset()
    policy: InstantiationPolicy = field(default_factory=InstantiationPolicy)
    type: str = "default"
    tags: Mapping[str, Binding] = field(default_factory=lambda: _EMPTY)

    def __post_init__(self) -> None:
        object.__setattr__(self, "inputs", MappingProxyType(dict(self.inputs)))
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))
        object.__setattr__(self, "outputs", frozenset(self.outputs))

    def bindings(self) -> Iterator[tuple[str, Binding]]:
        """Every binding of the node with the field it belongs to."""
        yield from self.inputs.items()
        yield from self.policy.bindings()
        for key, binding in self.tags.items():
            yield f"tags.{key}", binding

    def with_inputs(self, inputs: Mapping[str, Binding]) -> Node:
        return replace(self, inputs=inputs)


@dataclass
class Registry:
    """Loaded declaration set."""

    project: str = "default"
    nodes: dict[str, Node] = field(default_factory=dict)
    variables: dict[str, VariableDeclaration] = field(default_factory=dict)
    default_tags: Mapping[str, Binding] = field(default_factory=dict)
    errors: list[TierLayerError] = field(default_factory=list)
    source: Path | None = None

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, node_id: str) -> Node | None:
        return self.nodes.get(node_id)

    def with_node(self, node: Node) -> Registry:
        """Return a copy with one node replaced or added."""
        nodes = dict(self.nodes)
        nodes[node.id] = node
        return replace(self, nodes=nodes, errors=list(self.errors))


def merge_tags(defaults: Mapping[str, Any], overrides: Mapping[str, Any]) -> Mapping[str, Any]:
    """Merge default tags with node tags (node wins) into an immutable mapping."""
    merged = dict(defaults)
    merged.update(overrides)
    return MappingProxyType(dict(sorted(merged.items())))
