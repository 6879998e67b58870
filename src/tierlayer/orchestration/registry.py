"""Apply executor protocol and registry for orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

from pydantic import SecretStr

from tierlayer.core.errors import ConfigurationError
from tierlayer.resolution.instantiation import InstantiationDecision
from tierlayer.resolution.secrets import InstanceAddress


@dataclass(frozen=True)
class ApplyRequest:
    """Everything an executor receives for one instance."""

    node_id: str
    address: InstanceAddress
    node_type: str
    inputs: Mapping[str, Any]
    decision: InstantiationDecision
    outputs: frozenset[str] = frozenset()
    tags: Mapping[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str | None:
        return self.address.key

    def revealed_inputs(self) -> dict[str, Any]:
        """Inputs with secret values revealed, for handing to the real resource."""
        return {name: _reveal(value) for name, value in self.inputs.items()}


def _reveal(value: Any) -> Any:
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    if isinstance(value, Mapping):
        return {k: _reveal(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_reveal(v) for v in value]
    return value


@runtime_checkable
class ApplyExecutor(Protocol):
    """Creates or updates the concrete resource behind one instance."""

    def apply(self, request: ApplyRequest) -> Mapping[str, Any]:
        """Apply the instance and return its produced outputs."""
        ...


class ExecutorRegistry:
    """In-memory registry of executors keyed by node type."""

    def __init__(self, default: ApplyExecutor | None = None) -> None:
        self._executors: dict[str, ApplyExecutor] = {}
        self._default = default

    def register(self, node_type: str, executor: ApplyExecutor) -> None:
        """Register an executor for a node type."""
        self._executors[node_type] = executor

    def get(self, node_type: str) -> ApplyExecutor:
        """
        Executor for a node type, falling back to the default.

        Raises:
            ConfigurationError: If no executor handles the type
        """
        executor = self._executors.get(node_type, self._default)
        if executor is None:
            raise ConfigurationError(
                f"No apply executor registered for node type '{node_type}'",
                {"node_type": node_type},
            )
        return executor

    def list(self) -> list[str]:
        """List all registered node types."""
        return list(self._executors.keys())
