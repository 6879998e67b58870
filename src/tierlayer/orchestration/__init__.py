"""Orchestration package: validation, plan assembly and tiered apply."""

from tierlayer.orchestration.engine import ExecutionEngine
from tierlayer.orchestration.executors import CommandExecutor, EchoExecutor
from tierlayer.orchestration.plan_builder import PlanBuilder, diff_inputs, load_previous_plan
from tierlayer.orchestration.registry import ApplyExecutor, ApplyRequest, ExecutorRegistry
from tierlayer.orchestration.results import (
    Action,
    ApplyResult,
    InputChange,
    InstanceResult,
    NodeStatus,
    Plan,
    PlannedInstance,
    PlannedNode,
    ResultCollector,
)
from tierlayer.orchestration.validation import (
    CheckResult,
    ValidationReport,
    select_nodes,
    validate_registry,
)

__all__ = [
    "Action",
    "ApplyExecutor",
    "ApplyRequest",
    "ApplyResult",
    "CheckResult",
    "CommandExecutor",
    "EchoExecutor",
    "ExecutionEngine",
    "ExecutorRegistry",
    "InputChange",
    "InstanceResult",
    "NodeStatus",
    "Plan",
    "PlanBuilder",
    "PlannedInstance",
    "PlannedNode",
    "ResultCollector",
    "ValidationReport",
    "diff_inputs",
    "load_previous_plan",
    "select_nodes",
    "validate_registry",
]
