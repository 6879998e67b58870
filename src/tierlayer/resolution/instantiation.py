"""
Conditional instantiation.

Decides, once per run and before any dependent is resolved, how many
instances each node has: exactly one, zero or one behind a toggle, or one
per key of a key set. Toggles and key sets must be known before anything is
applied, so they may only use variables, the environment and lookups.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping

import structlog

from tierlayer.core.errors import (
    MalformedBindingError,
    RequiredInputMissingError,
    TierLayerError,
    UnguardedAbsentReferenceError,
)
from tierlayer.declarations.bindings import (
    Binding,
    Conditional,
    FallbackChain,
    OutputRef,
    is_static,
)
from tierlayer.declarations.models import Node, PolicyKind, Registry
from tierlayer.resolution.evaluator import Evaluator, ResolutionContext
from tierlayer.resolution.values import ABSENT, coerce_bool, contains_secret

logger = structlog.get_logger()


@dataclass(frozen=True)
class InstantiationDecision:
    """Resolved instantiation policy of one node for one run."""

    node_id: str
    kind: PolicyKind = PolicyKind.ALWAYS_ONE
    enabled: bool = True
    keys: tuple[str, ...] = ()

    @property
    def count(self) -> int:
        if not self.enabled:
            return 0
        if self.kind == PolicyKind.KEYED_SET:
            return len(self.keys)
        return 1

    @property
    def absent(self) -> bool:
        """True when the node's outputs resolve to the absent marker."""
        return self.kind == PolicyKind.CONDITIONAL_ONE and not self.enabled

    def describe(self) -> str:
        if self.kind == PolicyKind.CONDITIONAL_ONE:
            return "enabled" if self.enabled else "disabled (outputs absent)"
        if self.kind == PolicyKind.KEYED_SET:
            return f"keyed-set [{', '.join(self.keys)}]" if self.keys else "keyed-set (no keys)"
        return "always-one"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": str(self.kind), "count": self.count}
        if self.kind == PolicyKind.CONDITIONAL_ONE:
            data["enabled"] = self.enabled
        if self.kind == PolicyKind.KEYED_SET:
            data["keys"] = list(self.keys)
        return data


def decide(node: Node, context: ResolutionContext) -> InstantiationDecision:
    """
    Evaluate a node's instantiation policy.

    Raises:
        MalformedBindingError: If the toggle or key set is not known before
            apply, is sensitive, or has the wrong shape
        RequiredInputMissingError: If the toggle or key set resolves to absent
        LookupFailedError: If a lookup in the policy fails
    """
    policy = node.policy
    if policy.kind == PolicyKind.ALWAYS_ONE:
        return InstantiationDecision(node.id)

    field = "enabled" if policy.kind == PolicyKind.CONDITIONAL_ONE else "for_each"
    binding = policy.toggle if policy.kind == PolicyKind.CONDITIONAL_ONE else policy.keys
    if binding is None:
        raise MalformedBindingError(f"'{field}' has no binding", node.id, field)

    if not is_static(binding):
        raise MalformedBindingError("must be known before any node is applied", node.id, field)

    result = Evaluator(context, node.id).evaluate(binding, field)
    if result.is_error:
        raise result.error  # type: ignore[misc]
    if result.is_absent:
        raise RequiredInputMissingError(node.id, field)
    if result.is_unknown:
        raise MalformedBindingError("must be known before any node is applied", node.id, field)
    if contains_secret(result.value):
        raise MalformedBindingError("sensitive values cannot drive instantiation", node.id, field)

    if policy.kind == PolicyKind.CONDITIONAL_ONE:
        try:
            enabled = coerce_bool(result.value)
        except ValueError as e:
            raise MalformedBindingError(str(e), node.id, field) from e
        return InstantiationDecision(node.id, policy.kind, enabled=enabled)

    return InstantiationDecision(node.id, policy.kind, keys=_key_set(result.value, node.id))


def decide_all(
    registry: Registry, context: ResolutionContext
) -> tuple[dict[str, InstantiationDecision], list[TierLayerError]]:
    """Decide every node; failures are collected, not raised."""
    decisions: dict[str, InstantiationDecision] = {}
    errors: list[TierLayerError] = []
    for node in registry:
        try:
            decisions[node.id] = decide(node, context)
        except TierLayerError as e:
            errors.append(e)
    logger.debug(
        "instantiation_decided",
        nodes=len(decisions),
        disabled=sum(1 for d in decisions.values() if d.count == 0),
    )
    return decisions, errors


def absent_outputs(decisions: Mapping[str, InstantiationDecision]) -> dict[str, Any]:
    """Produced-output entries for every node that exists zero times as a toggle."""
    return {node_id: ABSENT for node_id, d in decisions.items() if d.absent}


def find_unguarded_absent_references(
    registry: Registry,
    decisions: Mapping[str, InstantiationDecision],
    context: ResolutionContext,
) -> list[UnguardedAbsentReferenceError]:
    """
    Report every enabled consumer that dereferences an absent output without a guard.

    A reference is guarded when it is marked optional (``?``), sits inside a
    fallback candidate, or lives in a conditional branch that the known
    condition never takes.
    """
    absent = {node_id for node_id, d in decisions.items() if d.absent}
    if not absent:
        return []

    context = context.with_outputs({**context.outputs, **absent_outputs(decisions)})
    errors: list[UnguardedAbsentReferenceError] = []
    for node in registry:
        decision = decisions.get(node.id)
        if decision is None or decision.count == 0:
            continue
        evaluator = Evaluator(context, node.id)
        for field, binding in node.bindings():
            for ref in _unguarded(binding, absent, evaluator, field):
                errors.append(UnguardedAbsentReferenceError(node.id, field, str(ref)))
    return errors


def _unguarded(
    binding: Binding, absent: set[str], evaluator: Evaluator, field: str
) -> Iterator[OutputRef]:
    if isinstance(binding, OutputRef):
        if binding.node in absent and not binding.guarded:
            yield binding
        return

    if isinstance(binding, FallbackChain):
        if binding.default is not None:
            yield from _unguarded(binding.default, absent, evaluator, field)
        return

    if isinstance(binding, Conditional):
        yield from _unguarded(binding.condition, absent, evaluator, field)
        condition = evaluator.evaluate(binding.condition, field)
        branches: tuple[Binding, ...] = (binding.when_true, binding.when_false)
        if condition.is_absent:
            branches = (binding.when_false,)
        elif condition.is_present:
            try:
                taken = coerce_bool(condition.value)
            except ValueError:
                pass
            else:
                branches = (binding.when_true if taken else binding.when_false,)
        for branch in branches:
            yield from _unguarded(branch, absent, evaluator, field)
        return

    for child in binding.children():
        yield from _unguarded(child, absent, evaluator, field)


def _key_set(value: Any, node_id: str) -> tuple[str, ...]:
    if isinstance(value, dict):
        items: list[Any] = list(value)
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
    else:
        raise MalformedBindingError(
            f"must be a list, set or mapping, got {type(value).__name__}", node_id, "for_each"
        )

    keys: set[str] = set()
    for item in items:
        if isinstance(item, bool) or not isinstance(item, (str, int)):
            raise MalformedBindingError(f"invalid key {item!r}", node_id, "for_each")
        key = str(item)
        if not key.strip():
            raise MalformedBindingError("keys cannot be blank", node_id, "for_each")
        keys.add(key)
    return tuple(sorted(keys))
