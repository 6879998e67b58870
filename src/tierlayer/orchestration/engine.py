"""
Tiered apply engine.

Tiers run strictly in order; tier ``i + 1`` starts only after every node of
tier ``i`` has finished. Instances inside a tier are independent and run on a
thread pool. A node whose dependency failed, was blocked or was skipped is
blocked and never attempted. Cancelling marks every not-yet-started instance
skipped and lets in-flight ones finish. Apply failures are never retried.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from types import MappingProxyType
from typing import Any, Mapping

import structlog
from pydantic import SecretStr

from tierlayer.core.errors import ApplyError, TierLayerError
from tierlayer.declarations.models import Node, PolicyKind, Registry
from tierlayer.logging import bind_context
from tierlayer.orchestration.registry import ApplyRequest, ExecutorRegistry
from tierlayer.orchestration.results import (
    UNSUCCESSFUL,
    ApplyResult,
    InstanceResult,
    NodeStatus,
    Plan,
    PlannedNode,
    ResultCollector,
)
from tierlayer.resolution.evaluator import ResolutionContext, resolve_inputs, resolve_tags
from tierlayer.resolution.secrets import InstanceAddress, SecretIsolator
from tierlayer.resolution.values import ABSENT

logger = structlog.get_logger()


class ExecutionEngine:
    """Drives the apply executors tier by tier."""

    def __init__(self, executors: ExecutorRegistry, max_workers: int = 4) -> None:
        self._executors = executors
        self._max_workers = max(1, max_workers)
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Stop starting new instances; in-flight ones finish."""
        if not self._cancel.is_set():
            logger.warning("apply_cancel_requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def execute(
        self,
        plan: Plan,
        registry: Registry,
        context: ResolutionContext,
        secrets: SecretIsolator,
    ) -> ApplyResult:
        """Apply every planned node in tier order."""
        self._cancel.clear()
        start = time.monotonic()
        log = bind_context(project=plan.project, environment=plan.environment)
        collector = ResultCollector(plan.project)
        outputs: dict[str, Any] = dict(context.outputs)

        for node_id, planned in plan.nodes.items():
            if planned.decision.count == 0:
                node = registry.nodes[node_id]
                collector.record_status(node_id, NodeStatus.NOT_INSTANTIATED)
                outputs[node_id] = ABSENT if planned.decision.absent else _empty_keyed(node)
                collector.record_outputs(node_id, outputs[node_id])

        for group in plan.tier_groups:
            tier = plan.nodes[group[0]].tier
            runnable = [n for n in group if plan.nodes[n].decision.count]
            if not runnable:
                continue

            if self.cancelled:
                for node_id in runnable:
                    collector.record_status(node_id, NodeStatus.SKIPPED)
                continue

            log.info("tier_started", tier=tier, nodes=runnable)
            snapshot = MappingProxyType(dict(outputs))
            tier_context = context.with_outputs(snapshot)
            futures: dict[Future[InstanceResult], str] = {}

            with ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix=f"tier{tier}"
            ) as pool:
                for node_id in runnable:
                    planned = plan.nodes[node_id]
                    blockers = [d for d in planned.dependencies if collector.status(d) in UNSUCCESSFUL]
                    if blockers:
                        collector.record_status(
                            node_id, NodeStatus.BLOCKED, f"blocked by {', '.join(blockers)}"
                        )
                        log.warning("node_blocked", node=node_id, blocked_by=blockers)
                        continue

                    node = registry.nodes[node_id]
                    tags = resolve_tags(node, registry.default_tags, tier_context)
                    for instance in planned.instances:
                        future = pool.submit(
                            self._apply_instance,
                            node,
                            planned,
                            instance.address,
                            tier_context,
                            secrets,
                            tags,
                        )
                        futures[future] = node_id

                try:
                    wait(futures)
                except KeyboardInterrupt:
                    self.cancel()
                    collector.mark_cancelled()
                    wait(futures)

            by_node: dict[str, list[InstanceResult]] = {}
            for future, node_id in futures.items():
                result = future.result()
                collector.record_instance(result)
                by_node.setdefault(node_id, []).append(result)

            for node_id, results in sorted(by_node.items()):
                node = registry.nodes[node_id]
                status = _node_status(results)
                collector.record_status(node_id, status)
                if status == NodeStatus.APPLIED:
                    outputs[node_id] = _node_outputs(node, plan.nodes[node_id], results)
                    collector.record_outputs(node_id, outputs[node_id])

            log.info("tier_completed", tier=tier)

        if self.cancelled:
            collector.mark_cancelled()

        result = collector.finalize(time.monotonic() - start)
        log.info(
            "apply_completed",
            success=result.success,
            applied=len(result.nodes_with(NodeStatus.APPLIED)),
            failed=len(result.nodes_with(NodeStatus.FAILED)),
            blocked=len(result.nodes_with(NodeStatus.BLOCKED)),
            skipped=len(result.nodes_with(NodeStatus.SKIPPED)),
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    def _apply_instance(
        self,
        node: Node,
        planned: PlannedNode,
        address: InstanceAddress,
        context: ResolutionContext,
        secrets: SecretIsolator,
        tags: Mapping[str, Any],
    ) -> InstanceResult:
        if self.cancelled:
            return InstanceResult(address, NodeStatus.SKIPPED)

        start = time.monotonic()
        log = logger.bind(address=str(address), node_type=node.type)
        try:
            if address.key is not None:
                secret: SecretStr | None = None
                if node.policy.sensitive:
                    secret = secrets.secret_for(node.id, node.policy.sensitive, address.key)
                context = context.for_instance(address.key, secret)

            request = ApplyRequest(
                node_id=node.id,
                address=address,
                node_type=node.type,
                inputs=MappingProxyType(resolve_inputs(node, context)),
                decision=planned.decision,
                outputs=node.outputs,
                tags=tags,
            )
            produced = self._run_executor(request)
        except TierLayerError as e:
            log.error("node_failed", error_type=type(e).__name__, message=e.message)
            return InstanceResult(
                address, NodeStatus.FAILED, error=e.message, duration_seconds=time.monotonic() - start
            )

        log.info("node_applied", duration_seconds=round(time.monotonic() - start, 3))
        return InstanceResult(
            address, NodeStatus.APPLIED, outputs=produced, duration_seconds=time.monotonic() - start
        )

    def _run_executor(self, request: ApplyRequest) -> Mapping[str, Any]:
        address = str(request.address)
        executor = self._executors.get(request.node_type)
        try:
            produced = executor.apply(request)
        except TierLayerError:
            raise
        except Exception as e:
            raise ApplyError(address, f"{type(e).__name__}: {e}") from e

        if not isinstance(produced, Mapping):
            raise ApplyError(address, "executor must return a mapping of outputs")
        missing = sorted(request.outputs - set(produced))
        if missing:
            raise ApplyError(address, f"executor did not produce outputs: {', '.join(missing)}")
        return MappingProxyType({name: produced[name] for name in sorted(request.outputs)})


def _node_status(results: list[InstanceResult]) -> NodeStatus:
    statuses = {r.status for r in results}
    if NodeStatus.FAILED in statuses:
        return NodeStatus.FAILED
    if NodeStatus.SKIPPED in statuses:
        return NodeStatus.SKIPPED
    return NodeStatus.APPLIED


def _node_outputs(node: Node, planned: PlannedNode, results: list[InstanceResult]) -> Mapping[str, Any]:
    """Single instances expose their outputs; keyed sets expose ``{output: {key: value}}``."""
    if planned.decision.kind != PolicyKind.KEYED_SET:
        return results[0].outputs
    by_key = {r.address.key: r.outputs for r in results}
    return MappingProxyType(
        {
            name: MappingProxyType({key: by_key[key][name] for key in sorted(by_key)})  # type: ignore[index]
            for name in sorted(node.outputs)
        }
    )


def _empty_keyed(node: Node) -> Mapping[str, Any]:
    return MappingProxyType({name: MappingProxyType({}) for name in sorted(node.outputs)})
