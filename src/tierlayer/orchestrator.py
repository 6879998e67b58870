"""
Orchestrator for the validate / plan / apply workflow.

Wires a loaded registry to its external collaborators: the variable source,
the lookup provider, the secret sets and the apply executors.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping

import structlog

from tierlayer.declarations.bindings import Binding, parse_binding
from tierlayer.declarations.loader import load_declarations
from tierlayer.declarations.models import Registry
from tierlayer.graph.builder import build_graph, find_cycles
from tierlayer.graph.references import extract_edges
from tierlayer.graph.scheduler import assign_tiers
from tierlayer.graph.spanning import check_new_edges, classify_cycle
from tierlayer.orchestration.engine import ExecutionEngine
from tierlayer.orchestration.executors import EchoExecutor
from tierlayer.orchestration.plan_builder import PlanBuilder
from tierlayer.orchestration.registry import ExecutorRegistry
from tierlayer.orchestration.results import ApplyResult, Plan
from tierlayer.orchestration.validation import ValidationReport, validate_registry
from tierlayer.resolution.evaluator import ResolutionContext
from tierlayer.resolution.lookups import LookupProvider, MemoizedLookups
from tierlayer.resolution.secrets import SecretIsolator
from tierlayer.resolution.variables import VariableSource

logger = structlog.get_logger()


class Orchestrator:
    """Validates, plans and applies one registry."""

    def __init__(
        self,
        registry: Registry,
        *,
        variables: VariableSource | None = None,
        environment: str = "development",
        lookup_provider: LookupProvider | None = None,
        secret_sets: Mapping[str, Mapping[str, Any]] | None = None,
        executors: ExecutorRegistry | None = None,
        max_workers: int = 4,
    ):
        self.registry = registry
        self.variables = variables or VariableSource(declarations=registry.variables)
        self.environment = environment
        self.lookups = MemoizedLookups(lookup_provider)
        self.secrets = SecretIsolator(secret_sets)
        self.executors = executors or ExecutorRegistry(default=EchoExecutor())
        self.engine = ExecutionEngine(self.executors, max_workers=max_workers)

    @classmethod
    def from_file(cls, path: str | Path, environment: str = "development", **kwargs: Any) -> Orchestrator:
        """Load declarations (with the environment overlay) and build an orchestrator."""
        return cls(load_declarations(path, environment), environment=environment, **kwargs)

    @property
    def context(self) -> ResolutionContext:
        return ResolutionContext(
            variables=self.variables,
            environment=self.environment,
            lookups=self.lookups,
        )

    def validate(self, targets: Iterable[str] | None = None) -> ValidationReport:
        """Run every structural check; errors are on the report."""
        return validate_registry(self.registry, self.context, self.secrets, targets)

    def plan(
        self,
        targets: Iterable[str] | None = None,
        previous: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> Plan:
        """
        Validate and assemble the plan.

        Raises:
            ValidationFailed: With every structural error found
        """
        report = self.validate(targets)
        return PlanBuilder(self.context, self.secrets).build(report, previous)

    def apply(self, targets: Iterable[str] | None = None, plan: Plan | None = None) -> ApplyResult:
        """
        Apply tier by tier. Nothing is applied unless validation passes.

        Raises:
            ValidationFailed: With every structural error found
        """
        if plan is None:
            plan = self.plan(targets)
        logger.info("apply_started", project=plan.project, order=plan.execution_order)
        return self.engine.execute(plan, self.registry, self.context, self.secrets)

    def cancel(self) -> None:
        self.engine.cancel()

    def rebind(self, node_id: str, inputs: Mapping[str, Any]) -> dict[str, int]:
        """
        Replace a node's input bindings and recompute its edges.

        The registry is only updated when the new edges keep the graph valid.

        Args:
            node_id: Node to rebind
            inputs: Raw input values, parsed like declaration inputs

        Returns:
            The new tier assignment

        Raises:
            UnresolvedReferenceError: If a new reference does not resolve
            SpanningCycleError: If a new edge closes a cycle through a spanning node
            CycleError: If a new edge closes any other cycle
        """
        node = self.registry.nodes[node_id]
        parsed: dict[str, Binding] = {
            name: parse_binding(raw, node_id=node_id, field=name) for name, raw in inputs.items()
        }
        updated = self.registry.with_node(node.with_inputs(parsed))
        known = self.variables.known_names

        old_edges = set()
        for other in self.registry:
            old_edges |= extract_edges(other, self.registry, known)
        old_graph = build_graph(self.registry.nodes, old_edges)
        old_tiers = assign_tiers(old_graph)

        new_node_edges = extract_edges(updated.nodes[node_id], updated, known)
        errors = check_new_edges(old_graph, old_tiers, new_node_edges - old_edges)
        if errors:
            raise errors[0]

        graph = build_graph(
            updated.nodes, {e for e in old_edges if e.source != node_id} | new_node_edges
        )
        cycles = find_cycles(graph)
        if cycles:
            raise classify_cycle(graph, cycles[0])

        self.registry = updated
        tiers = assign_tiers(graph)
        logger.info("node_rebound", node=node_id, edges=len(new_node_edges))
        return tiers
