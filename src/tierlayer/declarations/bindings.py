"""Typed input bindings.

Raw declaration values are parsed once, at load time, into binding tokens.
Every later stage (reference extraction, evaluation, validation) works on
these tokens and never re-parses strings.

Token syntax inside strings:
- ``${node.output}``  - reference to another node's output
- ``${node.output?}`` - guarded reference; tolerates an absent output
- ``${var.name}``     - value from the variable source
- ``${env}``          - environment classification of the run
- ``${each.key}``     - key of the current keyed-set instance
- ``${each.secret}``  - secret value of the current keyed-set instance
- ``$${``             - a literal ``${``

Reserved mappings:
- ``{if: <cond>, then: <binding>, else: <binding>}``
- ``{first_of: [<binding>, ...], default: <binding>}``
- ``{lookup: <kind>, query: {...}}``
- ``{equals: [<binding>, <binding>]}``
- ``{ref: node.output, optional: true}``
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterator

from tierlayer.core.errors import MalformedBindingError

NODE_ID_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
RESERVED_IDS: frozenset[str] = frozenset({"var", "env", "each"})

_TOKEN_RE = re.compile(r"\$\$\{|\$\{([^{}]*)\}")

_CONDITIONAL_KEYS = frozenset({"if", "then", "else"})
_FALLBACK_KEYS = frozenset({"first_of", "default"})
_LOOKUP_KEYS = frozenset({"lookup", "query"})
_REF_KEYS = frozenset({"ref", "optional"})


class Binding:
    """Base class for all binding tokens."""

    def children(self) -> tuple[Binding, ...]:
        return ()


@dataclass(frozen=True)
class Literal(Binding):
    value: Any


@dataclass(frozen=True)
class OutputRef(Binding):
    node: str
    output: str
    guarded: bool = False

    def __str__(self) -> str:
        return f"{self.node}.{self.output}"


@dataclass(frozen=True)
class VariableRef(Binding):
    name: str

    def __str__(self) -> str:
        return f"var.{self.name}"


@dataclass(frozen=True)
class EnvironmentRef(Binding):
    def __str__(self) -> str:
        return "env"


@dataclass(frozen=True)
class EachKey(Binding):
    def __str__(self) -> str:
        return "each.key"


@dataclass(frozen=True)
class EachSecret(Binding):
    def __str__(self) -> str:
        return "each.secret"


@dataclass(frozen=True)
class Template(Binding):
    """String interpolation; parts are plain strings or bindings."""

    parts: tuple[str | Binding, ...]

    def children(self) -> tuple[Binding, ...]:
        return tuple(p for p in self.parts if isinstance(p, Binding))


@dataclass(frozen=True)
class ListOf(Binding):
    items: tuple[Binding, ...]

    def children(self) -> tuple[Binding, ...]:
        return self.items


@dataclass(frozen=True)
class MapOf(Binding):
    items: tuple[tuple[str, Binding], ...]

    def children(self) -> tuple[Binding, ...]:
        return tuple(b for _, b in self.items)


@dataclass(frozen=True)
class Conditional(Binding):
    condition: Binding
    when_true: Binding
    when_false: Binding

    def children(self) -> tuple[Binding, ...]:
        return (self.condition, self.when_true, self.when_false)


@dataclass(frozen=True)
class FallbackChain(Binding):
    """Ordered candidates; the first present, non-empty one wins."""

    candidates: tuple[Binding, ...]
    default: Binding | None = None

    def children(self) -> tuple[Binding, ...]:
        if self.default is None:
            return self.candidates
        return (*self.candidates, self.default)


@dataclass(frozen=True)
class Lookup(Binding):
    """Query against the external inventory, memoized per run."""

    kind: str
    query: MapOf

    def children(self) -> tuple[Binding, ...]:
        return (self.query,)


@dataclass(frozen=True)
class Equals(Binding):
    left: Binding
    right: Binding

    def children(self) -> tuple[Binding, ...]:
        return (self.left, self.right)


def walk(binding: Binding) -> Iterator[Binding]:
    """Yield the binding and every nested binding, depth first."""
    yield binding
    for child in binding.children():
        yield from walk(child)


def output_refs(binding: Binding) -> list[OutputRef]:
    """All node output references in a binding, in declaration order."""
    return [b for b in walk(binding) if isinstance(b, OutputRef)]


def is_static(binding: Binding) -> bool:
    """True when the binding can be evaluated before any node is applied."""
    return not any(isinstance(b, (OutputRef, EachKey, EachSecret)) for b in walk(binding))


def parse_binding(raw: Any, *, node_id: str | None = None, field: str | None = None) -> Binding:
    """Parse a raw YAML value into a binding token.

    Raises:
        MalformedBindingError: If a token or reserved mapping is invalid
    """
    if isinstance(raw, str):
        return _parse_string(raw, node_id, field)
    if isinstance(raw, list):
        items = tuple(parse_binding(item, node_id=node_id, field=field) for item in raw)
        if all(isinstance(i, Literal) for i in items):
            return Literal([i.value for i in items])  # type: ignore[attr-defined]
        return ListOf(items)
    if isinstance(raw, dict):
        return _parse_mapping(raw, node_id, field)
    return Literal(raw)


def _parse_string(text: str, node_id: str | None, field: str | None) -> Binding:
    parts: list[str | Binding] = []
    pos = 0
    for match in _TOKEN_RE.finditer(text):
        gap = text[pos : match.start()]
        if "${" in gap:
            raise MalformedBindingError(f"unterminated reference in '{text}'", node_id, field)
        if gap:
            parts.append(gap)
        if match.group(0) == "$${":
            parts.append("${")
        else:
            parts.append(_parse_token(match.group(1), node_id, field))
        pos = match.end()
    tail = text[pos:]
    if "${" in tail:
        raise MalformedBindingError(f"unterminated reference in '{text}'", node_id, field)
    if tail:
        parts.append(tail)

    merged: list[str | Binding] = []
    for part in parts:
        if isinstance(part, str) and merged and isinstance(merged[-1], str):
            merged[-1] = merged[-1] + part
        else:
            merged.append(part)

    if not any(isinstance(p, Binding) for p in merged):
        return Literal("".join(merged))  # type: ignore[arg-type]
    if len(merged) == 1:
        return merged[0]  # type: ignore[return-value]
    return Template(tuple(merged))


def _parse_token(inner: str, node_id: str | None, field: str | None) -> Binding:
    token = inner.strip()
    guarded = token.endswith("?")
    if guarded:
        token = token[:-1].rstrip()

    if token == "env":
        return EnvironmentRef()
    if token == "each.key":
        return EachKey()
    if token == "each.secret":
        return EachSecret()

    head, _, tail = token.partition(".")
    if head == "var":
        if not NAME_PATTERN.match(tail):
            raise MalformedBindingError(f"invalid variable reference '${{{inner}}}'", node_id, field)
        return VariableRef(tail)
    if head in RESERVED_IDS:
        raise MalformedBindingError(f"invalid reference '${{{inner}}}'", node_id, field)
    if not NODE_ID_PATTERN.match(head) or not NAME_PATTERN.match(tail):
        raise MalformedBindingError(f"invalid reference '${{{inner}}}'", node_id, field)
    return OutputRef(node=head, output=tail, guarded=guarded)


def _parse_mapping(raw: dict[str, Any], node_id: str | None, field: str | None) -> Binding:
    keys = frozenset(raw)

    if "if" in keys:
        if keys != _CONDITIONAL_KEYS:
            raise MalformedBindingError("conditional needs exactly 'if', 'then' and 'else'", node_id, field)
        return Conditional(
            condition=parse_binding(raw["if"], node_id=node_id, field=field),
            when_true=parse_binding(raw["then"], node_id=node_id, field=field),
            when_false=parse_binding(raw["else"], node_id=node_id, field=field),
        )

    if "first_of" in keys:
        if not keys <= _FALLBACK_KEYS:
            raise MalformedBindingError(
                f"unexpected keys in fallback chain: {', '.join(sorted(keys - _FALLBACK_KEYS))}",
                node_id,
                field,
            )
        candidates = raw["first_of"]
        if not isinstance(candidates, list) or not candidates:
            raise MalformedBindingError("'first_of' must be a non-empty list", node_id, field)
        default = (
            parse_binding(raw["default"], node_id=node_id, field=field) if "default" in keys else None
        )
        return FallbackChain(
            candidates=tuple(parse_binding(c, node_id=node_id, field=field) for c in candidates),
            default=default,
        )

    if "lookup" in keys:
        if not keys <= _LOOKUP_KEYS:
            raise MalformedBindingError("lookup accepts only 'lookup' and 'query'", node_id, field)
        kind = raw["lookup"]
        query = raw.get("query") or {}
        if not isinstance(kind, str) or not kind:
            raise MalformedBindingError("'lookup' must name an inventory kind", node_id, field)
        if not isinstance(query, dict):
            raise MalformedBindingError("lookup 'query' must be a mapping", node_id, field)
        return Lookup(
            kind=kind,
            query=MapOf(
                tuple(
                    (str(k), parse_binding(v, node_id=node_id, field=field))
                    for k, v in query.items()
                )
            ),
        )

    if "equals" in keys:
        operands = raw["equals"]
        if len(keys) != 1 or not isinstance(operands, list) or len(operands) != 2:
            raise MalformedBindingError("'equals' takes a list of exactly two values", node_id, field)
        return Equals(
            left=parse_binding(operands[0], node_id=node_id, field=field),
            right=parse_binding(operands[1], node_id=node_id, field=field),
        )

    if "ref" in keys:
        if not keys <= _REF_KEYS:
            raise MalformedBindingError("ref accepts only 'ref' and 'optional'", node_id, field)
        target = raw["ref"]
        if not isinstance(target, str):
            raise MalformedBindingError("'ref' must be a string", node_id, field)
        suffix = "?" if raw.get("optional") else ""
        return _parse_token(f"{target}{suffix}", node_id, field)

    items = tuple((str(k), parse_binding(v, node_id=node_id, field=field)) for k, v in raw.items())
    if all(isinstance(b, Literal) for _, b in items):
        return Literal({k: b.value for k, b in items})  # type: ignore[attr-defined]
    return MapOf(items)
