"""Result types for planning and tiered apply."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Mapping

from tierlayer.core.errors import ExitCode
from tierlayer.graph.scheduler import group_by_tier
from tierlayer.resolution.instantiation import InstantiationDecision
from tierlayer.resolution.secrets import InstanceAddress
from tierlayer.resolution.values import Resolved, render_value


class Action(StrEnum):
    """Planned change for one instance address."""

    CREATE = "create"
    UPDATE = "update"
    NO_OP = "no-op"
    DELETE = "delete"


class NodeStatus(StrEnum):
    """Apply status of a node or instance."""

    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"
    NOT_INSTANTIATED = "not-instantiated"


# Statuses that prevent dependents from running
UNSUCCESSFUL = frozenset({NodeStatus.FAILED, NodeStatus.BLOCKED, NodeStatus.SKIPPED})


@dataclass
class InputChange:
    """One input that differs from the previous plan, already redacted."""

    name: str
    before: Any
    after: Any

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "before": self.before, "after": self.after}


@dataclass
class PlannedInstance:
    """One instance of a node in the plan."""

    address: InstanceAddress
    action: Action
    inputs: dict[str, Resolved] = field(default_factory=dict)
    changes: list[InputChange] = field(default_factory=list)

    def rendered_inputs(self) -> dict[str, Any]:
        return {name: value.render() for name, value in sorted(self.inputs.items())}

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": str(self.action),
            "inputs": self.rendered_inputs(),
            "changes": [c.to_dict() for c in self.changes],
        }


@dataclass
class PlannedNode:
    """A node with its tier, decision and instances."""

    node_id: str
    tier: int
    node_type: str
    decision: InstantiationDecision
    dependencies: tuple[str, ...] = ()
    tags: Mapping[str, Any] = field(default_factory=dict)
    instances: list[PlannedInstance] = field(default_factory=list)
    spanning: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier,
            "type": self.node_type,
            "decision": self.decision.to_dict(),
            "depends_on": list(self.dependencies),
            "spanning": self.spanning,
            "tags": render_value(dict(self.tags)),
            "instances": {str(i.address): i.to_dict() for i in self.instances},
        }


@dataclass
class Plan:
    """Ordered, human-inspectable execution plan."""

    project: str
    environment: str
    tiers: dict[str, int] = field(default_factory=dict)
    nodes: dict[str, PlannedNode] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def tier_groups(self) -> list[list[str]]:
        """Planned node ids grouped by tier, lowest first."""
        return group_by_tier(self.tiers, only=self.nodes)

    @property
    def execution_order(self) -> str:
        return " -> ".join(f"[{', '.join(group)}]" for group in self.tier_groups)

    @property
    def instances(self) -> list[PlannedInstance]:
        return [i for group in self.tier_groups for n in group for i in self.nodes[n].instances]

    def action_counts(self) -> dict[str, int]:
        counts = Counter(str(i.action) for i in self.instances)
        if self.removed:
            counts[str(Action.DELETE)] = len(self.removed)
        return dict(counts)

    @property
    def has_changes(self) -> bool:
        return bool(self.removed) or any(i.action != Action.NO_OP for i in self.instances)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project,
            "environment": self.environment,
            "tiers": [
                {"tier": self.tiers[group[0]], "nodes": group} for group in self.tier_groups
            ],
            "nodes": {node_id: self.nodes[node_id].to_dict() for node_id in sorted(self.nodes)},
            "removed": list(self.removed),
            "summary": self.action_counts(),
            "warnings": list(self.warnings),
        }


@dataclass
class InstanceResult:
    """Outcome of applying one instance."""

    address: InstanceAddress
    status: NodeStatus
    outputs: Mapping[str, Any] = field(default_factory=dict)
    error: str | None = None
    duration_seconds: float = 0.0


@dataclass
class ApplyResult:
    """Result of a tiered apply."""

    project: str
    statuses: dict[str, NodeStatus] = field(default_factory=dict)
    instances: dict[str, InstanceResult] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    cancelled: bool = False

    def nodes_with(self, status: NodeStatus) -> list[str]:
        return sorted(n for n, s in self.statuses.items() if s == status)

    @property
    def success(self) -> bool:
        """Whether every planned node was applied or intentionally not instantiated."""
        return not self.cancelled and not any(s in UNSUCCESSFUL for s in self.statuses.values())

    @property
    def exit_code(self) -> ExitCode:
        if self.cancelled:
            return ExitCode.INTERRUPTED
        if self.nodes_with(NodeStatus.FAILED):
            return ExitCode.APPLY_ERROR
        if self.nodes_with(NodeStatus.BLOCKED) or self.nodes_with(NodeStatus.SKIPPED):
            return ExitCode.BLOCKED
        return ExitCode.SUCCESS

    def rendered_outputs(self) -> dict[str, Any]:
        """Outputs by node with secrets redacted and absence made explicit."""
        return {node_id: render_value(_plain(value)) for node_id, value in sorted(self.outputs.items())}


def _plain(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    return value


class ResultCollector:
    """Thread-safe aggregation of apply outcomes."""

    def __init__(self, project: str) -> None:
        self._result = ApplyResult(project=project)
        self._lock = threading.Lock()

    def record_instance(self, result: InstanceResult) -> None:
        with self._lock:
            self._result.instances[str(result.address)] = result
            if result.error:
                self._result.errors.append(f"{result.address}: {result.error}")

    def record_status(self, node_id: str, status: NodeStatus, error: str | None = None) -> None:
        with self._lock:
            self._result.statuses[node_id] = status
            if error:
                self._result.errors.append(f"{node_id}: {error}")

    def record_outputs(self, node_id: str, outputs: Any) -> None:
        with self._lock:
            if isinstance(outputs, Mapping):
                outputs = MappingProxyType(dict(outputs))
            self._result.outputs[node_id] = outputs

    def status(self, node_id: str) -> NodeStatus:
        with self._lock:
            return self._result.statuses.get(node_id, NodeStatus.PENDING)

    def mark_cancelled(self) -> None:
        with self._lock:
            self._result.cancelled = True

    def finalize(self, duration: float) -> ApplyResult:
        """Return the final result with duration set."""
        self._result.duration_seconds = duration
        return self._result
