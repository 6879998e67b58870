"""
Declaration file loading.

Parses a YAML declaration document into a Registry. Structural problems
(duplicate ids, malformed bindings) are collected on ``Registry.errors`` so
that one validation pass can report all of them together.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml

from tierlayer.core.errors import (
    ConfigurationError,
    DuplicateNodeError,
    MalformedBindingError,
    TierLayerError,
)
from tierlayer.declarations.bindings import (
    NAME_PATTERN,
    NODE_ID_PATTERN,
    RESERVED_IDS,
    Binding,
    parse_binding,
)
from tierlayer.declarations.environments import apply_overlay
from tierlayer.declarations.models import (
    NO_DEFAULT,
    InstantiationPolicy,
    Node,
    Registry,
    VariableDeclaration,
)

logger = structlog.get_logger()

NODE_KEYS = frozenset({"id", "type", "inputs", "outputs", "enabled", "for_each", "sensitive", "tags"})
VARIABLE_KEYS = frozenset({"default", "sensitive", "description"})


def load_declarations(path: str | Path, environment: str | None = None) -> Registry:
    """
    Load a declaration file, merging the environment overlay if present.

    Args:
        path: Path to the declaration YAML file
        environment: Environment classification used to pick an overlay

    Returns:
        Registry with nodes, variables and any structural errors

    Raises:
        ConfigurationError: If the file is missing or not a YAML mapping
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Declaration file not found: {path}", {"path": str(path)})

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}", {"path": str(path)}) from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping", {"path": str(path)})

    data = apply_overlay(data, path, environment)
    registry = parse_document(data, source=path)
    logger.debug(
        "loaded_declarations",
        path=str(path),
        nodes=len(registry),
        errors=len(registry.errors),
    )
    return registry


def parse_document(data: dict[str, Any], source: Path | None = None) -> Registry:
    """Parse an already-loaded declaration document."""
    errors: list[TierLayerError] = []

    variables = _parse_variables(data.get("variables") or {}, errors)
    default_tags = _parse_tags(data.get("default_tags") or {}, None, errors)

    nodes: dict[str, Node] = {}
    raw_nodes = data.get("nodes") or []
    if not isinstance(raw_nodes, list):
        errors.append(MalformedBindingError("'nodes' must be a list of declarations"))
        raw_nodes = []

    for index, raw in enumerate(raw_nodes):
        try:
            node = parse_node(raw, index)
        except TierLayerError as e:
            errors.append(e)
            continue
        if node.id in nodes:
            errors.append(DuplicateNodeError(node.id))
            continue
        nodes[node.id] = node

    return Registry(
        project=str(data.get("project") or (source.stem if source else "default")),
        nodes=nodes,
        variables=variables,
        default_tags=default_tags,
        errors=errors,
        source=source,
    )


def parse_node(raw: Any, index: int = 0) -> Node:
    """Parse one node declaration.

    Raises:
        DuplicateNodeError: If the id is reserved
        MalformedBindingError: If the declaration is malformed
    """
    if not isinstance(raw, dict):
        raise MalformedBindingError(f"node #{index} must be a mapping")

    node_id = raw.get("id")
    if not isinstance(node_id, str) or not NODE_ID_PATTERN.match(node_id):
        raise MalformedBindingError(f"node #{index} has an invalid or missing id: {node_id!r}")
    if node_id in RESERVED_IDS:
        raise DuplicateNodeError(node_id, reason="uses a reserved name")

    unknown = set(raw) - NODE_KEYS
    if unknown:
        raise MalformedBindingError(f"unknown keys: {', '.join(sorted(unknown))}", node_id)

    raw_inputs = raw.get("inputs") or {}
    if not isinstance(raw_inputs, dict):
        raise MalformedBindingError("'inputs' must be a mapping", node_id)
    inputs: dict[str, Binding] = {}
    for name, value in raw_inputs.items():
        if not isinstance(name, str) or not NAME_PATTERN.match(name):
            raise MalformedBindingError(f"invalid input name {name!r}", node_id)
        inputs[name] = parse_binding(value, node_id=node_id, field=name)

    raw_outputs = raw.get("outputs") or []
    if not isinstance(raw_outputs, list):
        raise MalformedBindingError("'outputs' must be a list", node_id)
    for name in raw_outputs:
        if not isinstance(name, str) or not NAME_PATTERN.match(name):
            raise MalformedBindingError(f"invalid output name {name!r}", node_id)

    node_type = raw.get("type", "default")
    if not isinstance(node_type, str) or not node_type:
        raise MalformedBindingError("'type' must be a non-empty string", node_id)

    errors: list[TierLayerError] = []
    tags = _parse_tags(raw.get("tags") or {}, node_id, errors)
    if errors:
        raise errors[0]

    return Node(
        id=node_id,
        inputs=inputs,
        outputs=frozenset(raw_outputs),
        policy=_parse_policy(raw, node_id),
        type=node_type,
        tags=tags,
    )


def _parse_policy(raw: dict[str, Any], node_id: str) -> InstantiationPolicy:
    has_toggle = "enabled" in raw
    has_keys = "for_each" in raw
    sensitive = raw.get("sensitive")

    if has_toggle and has_keys:
        raise MalformedBindingError("'enabled' and 'for_each' are mutually exclusive", node_id)
    if sensitive is not None:
        if not has_keys:
            raise MalformedBindingError("'sensitive' requires 'for_each'", node_id)
        if not isinstance(sensitive, str) or not sensitive:
            raise MalformedBindingError("'sensitive' must name a secret set", node_id)

    if has_toggle:
        return InstantiationPolicy.conditional(
            parse_binding(raw["enabled"], node_id=node_id, field="enabled")
        )
    if has_keys:
        return InstantiationPolicy.keyed(
            parse_binding(raw["for_each"], node_id=node_id, field="for_each"),
            sensitive=sensitive,
        )
    return InstantiationPolicy()


def _parse_variables(raw: Any, errors: list[TierLayerError]) -> dict[str, VariableDeclaration]:
    if not isinstance(raw, dict):
        errors.append(MalformedBindingError("'variables' must be a mapping"))
        return {}

    variables: dict[str, VariableDeclaration] = {}
    for name, spec in raw.items():
        if not isinstance(name, str) or not NAME_PATTERN.match(name):
            errors.append(MalformedBindingError(f"invalid variable name {name!r}"))
            continue
        if isinstance(spec, dict) and set(spec) <= VARIABLE_KEYS:
            variables[name] = VariableDeclaration(
                name=name,
                default=spec.get("default", NO_DEFAULT),
                sensitive=bool(spec.get("sensitive", False)),
                description=str(spec.get("description", "")),
            )
        else:
            # Shorthand: `name: <default>`
            variables[name] = VariableDeclaration(name=name, default=spec)
    return variables


def _parse_tags(raw: Any, node_id: str | None, errors: list[TierLayerError]) -> dict[str, Binding]:
    if not isinstance(raw, dict):
        errors.append(MalformedBindingError("'tags' must be a mapping", node_id))
        return {}

    tags: dict[str, Binding] = {}
    for key, value in raw.items():
        try:
            tags[str(key)] = parse_binding(value, node_id=node_id, field=f"tags.{key}")
        except TierLayerError as e:
            errors.append(e)
    return tags
