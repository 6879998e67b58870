"""
Validation pass.

Runs every structural check before anything is applied and collects all
errors together, so a single corrective pass can fix several problems. A
run that passes validation starts with a graph that is internally
consistent: references resolve, there are no cycles, every keyed secret has
a value and no consumer dereferences an absent output unguarded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

import structlog

from tierlayer.core.errors import ConfigurationError, CycleError, TierLayerError, ValidationFailed
from tierlayer.declarations.models import Node, PolicyKind, Registry
from tierlayer.graph.builder import Edge, Graph, build_graph, find_cycles
from tierlayer.graph.references import resolve_references
from tierlayer.graph.scheduler import assign_tiers
from tierlayer.graph.spanning import spanning_nodes, validate_spanning
from tierlayer.resolution.evaluator import ResolutionContext, concrete_value, resolve_input_states
from tierlayer.resolution.instantiation import (
    InstantiationDecision,
    absent_outputs,
    decide_all,
    find_unguarded_absent_references,
)
from tierlayer.resolution.secrets import SecretIsolator

logger = structlog.get_logger()


@dataclass
class CheckResult:
    """Outcome of one validation check."""

    name: str
    errors: list[TierLayerError] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors


@dataclass
class ValidationReport:
    """Everything the validation pass learned about a registry."""

    registry: Registry
    edges: set[Edge] = field(default_factory=set)
    graph: Graph | None = None
    tiers: dict[str, int] = field(default_factory=dict)
    decisions: dict[str, InstantiationDecision] = field(default_factory=dict)
    selected: list[str] = field(default_factory=list)
    spanning: list[str] = field(default_factory=list)
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def errors(self) -> list[TierLayerError]:
        return [e for check in self.checks for e in check.errors]

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """
        Raises:
            ValidationFailed: Carrying every collected error
        """
        if self.errors:
            raise ValidationFailed(self.errors)


def select_nodes(registry: Registry, graph: Graph, targets: Iterable[str] | None) -> list[str]:
    """Targets plus everything they transitively depend on.

    Raises:
        ConfigurationError: If a target is not a declared node
    """
    if not targets:
        return sorted(registry.nodes)
    unknown = sorted(t for t in targets if t not in registry)
    if unknown:
        raise ConfigurationError(f"Unknown target(s): {', '.join(unknown)}", {"targets": ",".join(unknown)})
    selected: set[str] = set()
    for target in targets:
        selected.add(target)
        selected |= graph.transitive_dependencies(target)
    return sorted(selected)


def validate_registry(
    registry: Registry,
    context: ResolutionContext,
    secrets: SecretIsolator,
    targets: Iterable[str] | None = None,
) -> ValidationReport:
    """Run every check and return the report; nothing is raised for check failures."""
    report = ValidationReport(registry=registry)

    report.checks.append(CheckResult("declarations", list(registry.errors)))

    edges, reference_errors = resolve_references(registry, context.variables.known_names)
    report.edges = edges
    report.checks.append(CheckResult("references", list(reference_errors)))

    graph = build_graph(registry.nodes, edges)
    report.graph = graph
    cycles = find_cycles(graph)
    spanning_errors = validate_spanning(graph, cycles)
    through_spanning = {tuple(e.chain) for e in spanning_errors}
    plain = [CycleError(chain) for chain in cycles if tuple(chain) not in through_spanning]
    report.checks.append(CheckResult("cycles", list(plain)))
    report.checks.append(CheckResult("spanning", list(spanning_errors)))

    if not cycles:
        report.tiers = assign_tiers(graph)
        report.spanning = spanning_nodes(graph, report.tiers)

    report.selected = select_nodes(registry, graph, targets)
    subset = Registry(
        project=registry.project,
        nodes={n: registry.nodes[n] for n in report.selected},
        variables=registry.variables,
        default_tags=registry.default_tags,
        source=registry.source,
    )

    decisions, decision_errors = decide_all(subset, context)
    report.decisions = decisions
    report.checks.append(CheckResult("instantiation", decision_errors))

    unguarded = find_unguarded_absent_references(subset, decisions, context)
    report.checks.append(CheckResult("absent references", list(unguarded)))

    keyed = {
        node_id: d.keys for node_id, d in decisions.items() if d.kind == PolicyKind.KEYED_SET
    }
    report.checks.append(CheckResult("secrets", list(secrets.verify_registry(subset, keyed))))

    broken = {e.node_id for e in reference_errors} | {e.node_id for e in unguarded}
    plan_context = context.with_outputs({**context.outputs, **absent_outputs(decisions)})
    input_errors: list[TierLayerError] = []
    for node in subset:
        decision = decisions.get(node.id)
        if decision is None or decision.count == 0 or node.id in broken:
            continue
        input_errors.extend(_check_inputs(node, decision, plan_context, secrets))
    report.checks.append(CheckResult("inputs", input_errors))

    logger.info(
        "validation_completed",
        project=registry.project,
        nodes=len(registry),
        selected=len(report.selected),
        errors=len(report.errors),
    )
    return report


def _check_inputs(
    node: Node,
    decision: InstantiationDecision,
    context: ResolutionContext,
    secrets: SecretIsolator,
) -> list[TierLayerError]:
    """Inputs that are already known to fail before anything is applied."""
    contexts = [context]
    if decision.kind == PolicyKind.KEYED_SET:
        sensitive = node.policy.sensitive
        contexts = [
            context.for_instance(
                key,
                secrets.secret_for(node.id, sensitive, key) if sensitive and key in secrets.keys(sensitive) else None,
            )
            for key in decision.keys
        ]

    errors: list[TierLayerError] = []
    seen: set[tuple[str, str]] = set()
    for instance_context in contexts:
        for name, result in resolve_input_states(node, instance_context).items():
            if result.is_unknown:
                continue
            try:
                concrete_value(node, name, result)
            except TierLayerError as e:
                if (name, type(e).__name__) in seen:
                    continue
                seen.add((name, type(e).__name__))
                errors.append(e)
    return errors
