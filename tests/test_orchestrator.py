"""Tests for the Orchestrator facade and incremental rebinding."""

import pytest

from tierlayer.core.errors import (
    CycleError,
    SpanningCycleError,
    UnresolvedReferenceError,
)
from tierlayer.declarations.loader import parse_document
from tierlayer.orchestration.executors import EchoExecutor
from tierlayer.orchestration.registry import ExecutorRegistry
from tierlayer.orchestrator import Orchestrator

SPANNING = {
    "nodes": [
        {"id": "X", "outputs": ["id"]},
        {"id": "P0", "outputs": ["id"]},
        {"id": "P1", "inputs": {"p": "${P0.id}"}, "outputs": ["id"]},
        {"id": "P2", "inputs": {"p": "${P1.id}"}, "outputs": ["id"]},
        {"id": "Y", "inputs": {"p": "${P2.id}"}, "outputs": ["id"]},
        {"id": "S", "inputs": {"x": "${X.id}", "y": "${Y.id}"}, "outputs": ["arn"]},
    ]
}


class TestFromFile:
    """Loading and running from a declaration file."""

    def test_plan_and_apply(self, diamond_yaml):
        orchestrator = Orchestrator.from_file(diamond_yaml, environment="staging")
        plan = orchestrator.plan()
        assert plan.environment == "staging"
        assert plan.execution_order == "[A, B] -> [C] -> [D]"
        result = orchestrator.apply(plan=plan)
        assert result.success
        assert result.outputs["C"]["id"] == "default:C:id"

    def test_validate_reports_tiers(self, diamond_yaml):
        report = Orchestrator.from_file(diamond_yaml).validate()
        assert report.ok
        assert report.tiers == {"A": 0, "B": 0, "C": 1, "D": 2}

    def test_type_specific_executor(self, write_yaml):
        path = write_yaml(
            """
            nodes:
              - id: net
                type: network
                outputs: [id]
              - id: app
                inputs:
                  network: ${net.id}
            """
        )
        network = EchoExecutor()
        fallback = EchoExecutor()
        executors = ExecutorRegistry(default=fallback)
        executors.register("network", network)
        Orchestrator.from_file(path, executors=executors).apply()
        assert network.applied == ["net"]
        assert fallback.applied == ["app"]


class TestRebind:
    """Changing a node's bindings after the registry is built."""

    def test_back_edge_through_spanning_node(self):
        orchestrator = Orchestrator(parse_document(SPANNING))
        with pytest.raises(SpanningCycleError) as exc_info:
            orchestrator.rebind("Y", {"p": "${P2.id}", "role": "${S.arn}"})
        assert exc_info.value.back_edge == ("Y", "S")
        assert exc_info.value.spanning_node == "S"
        # registry unchanged
        assert "role" not in orchestrator.registry.nodes["Y"].inputs

    def test_transitive_back_edge(self):
        orchestrator = Orchestrator(parse_document(SPANNING))
        with pytest.raises(SpanningCycleError) as exc_info:
            orchestrator.rebind("P1", {"p": "${P0.id}", "role": "${S.arn}"})
        assert exc_info.value.back_edge == ("P1", "S")

    def test_plain_cycle(self):
        document = {
            "nodes": [
                {"id": "a", "outputs": ["id"]},
                {"id": "b", "inputs": {"a": "${a.id}"}, "outputs": ["id"]},
                {"id": "c", "inputs": {"b": "${b.id}"}, "outputs": ["id"]},
            ]
        }
        orchestrator = Orchestrator(parse_document(document))
        with pytest.raises(CycleError) as exc_info:
            orchestrator.rebind("a", {"c": "${c.id}"})
        assert type(exc_info.value) is CycleError

    def test_unresolved_reference(self):
        orchestrator = Orchestrator(parse_document(SPANNING))
        with pytest.raises(UnresolvedReferenceError):
            orchestrator.rebind("S", {"z": "${Z.id}"})

    def test_valid_rebind_returns_new_tiers(self):
        orchestrator = Orchestrator(parse_document(SPANNING))
        tiers = orchestrator.rebind("S", {"x": "${X.id}"})
        assert tiers["S"] == 1
        assert dict(orchestrator.registry.nodes["S"].inputs).keys() == {"x"}
        assert orchestrator.validate().spanning == []
