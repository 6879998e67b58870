"""
Binding evaluation.

Turns binding tokens into ``Resolved`` values against a resolution context.
Evaluation is a pure function of the binding and the context: the variable
source is read-only, lookups are memoized per run, and produced outputs are
read-only mappings, so the same input always resolves the same way no matter
which node evaluates it.

Produced outputs are keyed by node id. An enabled node maps to its output
mapping, a keyed-set node maps each output name to a ``{key: value}`` mapping,
and a node with zero instances maps to the ``ABSENT`` marker. A node missing
from the mapping has not been applied yet, so references to it are unknown.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import SecretStr

from tierlayer.core.errors import (
    MalformedBindingError,
    RequiredInputMissingError,
    TierLayerError,
)
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
    walk,
)
from tierlayer.declarations.models import Node, merge_tags
from tierlayer.resolution.lookups import MemoizedLookups
from tierlayer.resolution.values import (
    ABSENT,
    UNKNOWN_PLACEHOLDER,
    Resolved,
    ValueState,
    coerce_bool,
    contains_secret,
    is_empty,
    stringify,
)
from tierlayer.resolution.variables import VariableSource

_EMPTY_OUTPUTS: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True)
class ResolutionContext:
    """Everything an evaluation may read.

    Attributes:
        variables: Caller-supplied variable values
        environment: Environment classification of the run (``${env}``)
        lookups: Per-run memoized inventory lookups
        outputs: Produced outputs by node id
        each_key: Key of the keyed-set instance being resolved
        each_secret: Secret value for that key, when the node is sensitive
    """

    variables: VariableSource = field(default_factory=VariableSource)
    environment: str = "development"
    lookups: MemoizedLookups = field(default_factory=MemoizedLookups)
    outputs: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_OUTPUTS)
    each_key: str | None = None
    each_secret: SecretStr | None = field(default=None, repr=False)

    def for_instance(self, key: str, secret: SecretStr | None = None) -> ResolutionContext:
        return replace(self, each_key=key, each_secret=secret)

    def with_outputs(self, outputs: Mapping[str, Any]) -> ResolutionContext:
        return replace(self, outputs=outputs)


class Evaluator:
    """Evaluates bindings for one node."""

    def __init__(self, context: ResolutionContext, node_id: str | None = None):
        self.context = context
        self.node_id = node_id

    def evaluate(self, binding: Binding, field: str | None = None) -> Resolved:
        if isinstance(binding, Literal):
            return Resolved.absent() if binding.value is None else Resolved.present(binding.value)
        if isinstance(binding, VariableRef):
            return self.context.variables.resolve(binding.name)
        if isinstance(binding, EnvironmentRef):
            env = self.context.environment
            return Resolved.present(env) if env else Resolved.absent()
        if isinstance(binding, EachKey):
            key = self.context.each_key
            return Resolved.unknown() if key is None else Resolved.present(key)
        if isinstance(binding, EachSecret):
            secret = self.context.each_secret
            return Resolved.unknown() if secret is None else Resolved.present(secret)
        if isinstance(binding, OutputRef):
            return self._output(binding)
        if isinstance(binding, Template):
            return self._template(binding, field)
        if isinstance(binding, ListOf):
            return self._collection([b for b in binding.items], field, as_map=None)
        if isinstance(binding, MapOf):
            return self._collection([b for _, b in binding.items], field, as_map=binding)
        if isinstance(binding, Conditional):
            return self._conditional(binding, field)
        if isinstance(binding, FallbackChain):
            return self._fallback(binding, field)
        if isinstance(binding, Lookup):
            return self._lookup(binding, field)
        if isinstance(binding, Equals):
            return self._equals(binding, field)
        raise TypeError(f"unsupported binding: {binding!r}")

    def _output(self, ref: OutputRef) -> Resolved:
        produced = self.context.outputs.get(ref.node)
        if produced is None:
            return Resolved.unknown()
        if produced is ABSENT:
            return Resolved.absent()
        value = produced.get(ref.output, None)
        if value is None:
            return Resolved.unknown()
        if value is ABSENT:
            return Resolved.absent()
        return Resolved.present(value)

    def _template(self, template: Template, field: str | None) -> Resolved:
        pieces: list[str] = []
        sensitive = False
        for part in template.parts:
            if isinstance(part, str):
                pieces.append(part)
                continue
            result = self.evaluate(part, field)
            if not result.is_present:
                return result
            if isinstance(result.value, SecretStr):
                sensitive = True
                pieces.append(result.value.get_secret_value())
            else:
                pieces.append(stringify(result.value))
        text = "".join(pieces)
        return Resolved.present(SecretStr(text) if sensitive else text)

    def _collection(self, items: list[Binding], field: str | None, as_map: MapOf | None) -> Resolved:
        values: list[Any] = []
        for item in items:
            result = self.evaluate(item, field)
            if result.is_error or result.is_unknown:
                return result
            values.append(result.value if result.is_present else None)
        if as_map is None:
            return Resolved.present(values)
        return Resolved.present({k: v for (k, _), v in zip(as_map.items, values)})

    def _conditional(self, conditional: Conditional, field: str | None) -> Resolved:
        condition = self.evaluate(conditional.condition, field)
        if condition.is_error or condition.is_unknown:
            return condition
        try:
            taken = condition.is_present and coerce_bool(_reveal(condition.value))
        except ValueError as e:
            return Resolved.failed(MalformedBindingError(f"condition {e}", self.node_id, field))
        return self.evaluate(conditional.when_true if taken else conditional.when_false, field)

    def _fallback(self, chain: FallbackChain, field: str | None) -> Resolved:
        for candidate in chain.candidates:
            result = self.evaluate(candidate, field)
            if result.is_error or result.is_unknown:
                return result
            if result.is_present and not is_empty(result.value):
                return result
        if chain.default is not None:
            return self.evaluate(chain.default, field)
        return Resolved.failed(RequiredInputMissingError(self.node_id or "?", field or "?"))

    def _lookup(self, lookup: Lookup, field: str | None) -> Resolved:
        query = self.evaluate(lookup.query, field)
        if not query.is_present:
            return query
        if any(v is None for v in query.value.values()):
            return Resolved.absent()
        try:
            value = self.context.lookups.lookup(lookup.kind, _reveal(query.value))
        except TierLayerError as e:
            return Resolved.failed(e)
        return Resolved.absent() if is_empty(value) else Resolved.present(value)

    def _equals(self, equals: Equals, field: str | None) -> Resolved:
        left = self.evaluate(equals.left, field)
        right = self.evaluate(equals.right, field)
        for side in (left, right):
            if side.is_error or side.is_unknown:
                return side
        return Resolved.present(_comparable(left) == _comparable(right))


def _reveal(value: Any) -> Any:
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    if isinstance(value, dict):
        return {k: _reveal(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_reveal(v) for v in value]
    return value


def _comparable(result: Resolved) -> Any:
    if not result.is_present:
        return None
    value = _reveal(result.value)
    if isinstance(value, (str, int, float, bool)):
        return stringify(value)
    return value


def _absence_allowed(binding: Binding) -> bool:
    """An input may end up absent only if it says so: a guarded reference or an explicit null."""
    for token in walk(binding):
        if isinstance(token, OutputRef) and token.guarded:
            return True
        if isinstance(token, Literal) and token.value is None:
            return True
    return False


def resolve_input_states(node: Node, context: ResolutionContext) -> dict[str, Resolved]:
    """Evaluate every input of a node without raising."""
    evaluator = Evaluator(context, node.id)
    return {name: evaluator.evaluate(binding, name) for name, binding in node.inputs.items()}


def concrete_value(node: Node, name: str, result: Resolved) -> Any:
    """
    Turn one resolved input into the value handed to the apply executor.

    Raises:
        TierLayerError: The evaluation error, or RequiredInputMissingError when
            the input has no value
    """
    if result.state == ValueState.PRESENT:
        return result.value
    if result.state == ValueState.ERROR:
        raise result.error  # type: ignore[misc]
    if result.state == ValueState.ABSENT and _absence_allowed(node.inputs[name]):
        return None
    raise RequiredInputMissingError(node.id, name)


def resolve_inputs(node: Node, context: ResolutionContext) -> dict[str, Any]:
    """
    Resolve every input of a node to a concrete value.

    Guarded references to absent outputs become ``None``.

    Raises:
        TierLayerError: For the first input that cannot be resolved
    """
    states = resolve_input_states(node, context)
    return {name: concrete_value(node, name, result) for name, result in states.items()}


def resolve_tags(
    node: Node, default_tags: Mapping[str, Binding], context: ResolutionContext
) -> Mapping[str, Any]:
    """Evaluate default and node tags, then merge them (node wins).

    Absent tags are dropped; tags that depend on unapplied outputs render as
    known-after-apply.
    """
    evaluator = Evaluator(context, node.id)

    def _evaluate(tags: Mapping[str, Binding]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for key, binding in tags.items():
            result = evaluator.evaluate(binding, f"tags.{key}")
            if result.is_error:
                raise result.error  # type: ignore[misc]
            if result.is_present:
                values[key] = result.value
            elif result.is_unknown:
                values[key] = UNKNOWN_PLACEHOLDER
        return values

    merged = merge_tags(_evaluate(default_tags), _evaluate(node.tags))
    if contains_secret(dict(merged)):
        raise MalformedBindingError("tags cannot carry sensitive values", node.id, "tags")
    return merged
