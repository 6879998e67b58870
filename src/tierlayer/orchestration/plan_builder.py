"""Plan assembly from a validated registry."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

import structlog

from tierlayer.core.errors import ConfigurationError
from tierlayer.declarations.models import PolicyKind
from tierlayer.orchestration.results import Action, InputChange, Plan, PlannedInstance, PlannedNode
from tierlayer.orchestration.validation import ValidationReport
from tierlayer.resolution.evaluator import ResolutionContext, resolve_input_states, resolve_tags
from tierlayer.resolution.instantiation import absent_outputs
from tierlayer.resolution.secrets import InstanceAddress, SecretIsolator, instances
from tierlayer.resolution.values import Resolved

logger = structlog.get_logger()


def load_previous_plan(path: str | Path) -> dict[str, dict[str, Any]]:
    """
    Rendered inputs by address from a plan written with ``plan --output json``.

    Raises:
        ConfigurationError: If the file is missing or not a plan document
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Previous plan not found: {path}", {"path": str(path)})
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Previous plan {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("nodes"), dict):
        raise ConfigurationError(f"{path} is not a plan document")

    previous: dict[str, dict[str, Any]] = {}
    for node in data["nodes"].values():
        for address, instance in (node.get("instances") or {}).items():
            previous[address] = dict(instance.get("inputs") or {})
    return previous


def diff_inputs(before: Mapping[str, Any], after: Mapping[str, Any]) -> list[InputChange]:
    """Changed inputs between two rendered input maps.

    Both sides are already redacted, so a changed secret value is invisible.
    """
    changes = []
    for name in sorted(set(before) | set(after)):
        old = before.get(name)
        new = after.get(name)
        if old != new:
            changes.append(InputChange(name, old, new))
    return changes


class PlanBuilder:
    """Builds an ordered plan from a validation report."""

    def __init__(self, context: ResolutionContext, secrets: SecretIsolator) -> None:
        self._context = context
        self._secrets = secrets

    def build(
        self,
        report: ValidationReport,
        previous: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> Plan:
        """
        Assemble the plan.

        Raises:
            ValidationFailed: If the report carries errors
        """
        report.raise_for_errors()
        registry = report.registry
        graph = report.graph
        if graph is None:
            raise ConfigurationError("Validation report carries no dependency graph")

        plan = Plan(
            project=registry.project,
            environment=self._context.environment,
            tiers={n: report.tiers[n] for n in report.selected},
        )
        context = self._context.with_outputs(
            {**self._context.outputs, **absent_outputs(report.decisions)}
        )

        for node_id in report.selected:
            node = registry.nodes[node_id]
            decision = report.decisions[node_id]
            planned = PlannedNode(
                node_id=node_id,
                tier=report.tiers[node_id],
                node_type=node.type,
                decision=decision,
                dependencies=graph.dependencies(node_id),
                tags=resolve_tags(node, registry.default_tags, context),
                spanning=node_id in report.spanning,
            )

            if decision.count:
                keyed = decision.kind == PolicyKind.KEYED_SET
                for address in instances(node_id, decision.keys if keyed else None):
                    instance_context = context
                    if address.key is not None:
                        secret = None
                        if node.policy.sensitive:
                            secret = self._secrets.secret_for(node.id, node.policy.sensitive, address.key)
                        instance_context = context.for_instance(address.key, secret)
                    planned.instances.append(
                        self._instance(address, resolve_input_states(node, instance_context), previous)
                    )
            plan.nodes[node_id] = planned

        if previous is not None:
            # a targeted plan only speaks for its own nodes
            full = len(report.selected) == len(registry.nodes)
            selected = set(report.selected)
            current = {str(i.address) for i in plan.instances}
            plan.removed = sorted(
                address
                for address in previous
                if address not in current and (full or _node_of(address) in selected)
            )

        plan.warnings.extend(
            f"Spanning node '{n}' draws inputs from tiers "
            f"{', '.join(str(t) for t in sorted({report.tiers[d] for d in graph.dependencies(n)}))}"
            for n in report.spanning
            if n in plan.nodes
        )

        logger.info(
            "plan_built",
            project=plan.project,
            nodes=len(plan.nodes),
            tiers=len(plan.tier_groups),
            **plan.action_counts(),
        )
        return plan

    @staticmethod
    def _instance(
        address: InstanceAddress,
        inputs: dict[str, Resolved],
        previous: Mapping[str, Mapping[str, Any]] | None,
    ) -> PlannedInstance:
        instance = PlannedInstance(address=address, action=Action.CREATE, inputs=inputs)
        if previous is None or str(address) not in previous:
            return instance
        instance.changes = diff_inputs(previous[str(address)], instance.rendered_inputs())
        instance.action = Action.UPDATE if instance.changes else Action.NO_OP
        return instance


def _node_of(address: str) -> str:
    return address.split("[", 1)[0]
