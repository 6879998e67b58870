"""
Sensitive value isolation.

A keyed-set node may name a secret set. The node's key set ``K`` is public:
it drives addressing, plans and diffs. The secret set maps each key to a
value ``V[key]`` that only the instance for that key ever receives. Every
key must have a value before anything is applied.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterator, Mapping

import structlog
from pydantic import SecretStr

from tierlayer.core.errors import MissingSecretValueError
from tierlayer.declarations.models import Node, PolicyKind, Registry

logger = structlog.get_logger()


@dataclass(frozen=True, order=True)
class InstanceAddress:
    """Address of one instance: ``node`` or ``node["key"]``."""

    node_id: str
    key: str | None = None

    def __str__(self) -> str:
        if self.key is None:
            return self.node_id
        return f"{self.node_id}[{json.dumps(self.key)}]"


def instances(node_id: str, keys: tuple[str, ...] | None) -> list[InstanceAddress]:
    """Addresses for a node; ``keys`` is ``None`` for single-instance nodes."""
    if keys is None:
        return [InstanceAddress(node_id)]
    return [InstanceAddress(node_id, key) for key in keys]


class SecretIsolator:
    """Holds secret sets and hands each keyed instance only its own value."""

    def __init__(self, secret_sets: Mapping[str, Mapping[str, Any]] | None = None):
        self._sets: Mapping[str, Mapping[str, SecretStr]] = MappingProxyType(
            {
                name: MappingProxyType(
                    {str(k): v if isinstance(v, SecretStr) else SecretStr(str(v)) for k, v in values.items()}
                )
                for name, values in (secret_sets or {}).items()
            }
        )

    def keys(self, set_name: str) -> frozenset[str]:
        """Key names of a secret set; the values are never exposed here."""
        return frozenset(self._sets.get(set_name, {}))

    def verify(self, node_id: str, set_name: str, keys: tuple[str, ...] | list[str]) -> None:
        """
        Check that every key has a secret value.

        Raises:
            MissingSecretValueError: Naming every key without a value
        """
        available = self._sets.get(set_name, {})
        missing = [k for k in keys if k not in available]
        if missing:
            logger.warning(
                "secret_values_missing",
                node=node_id,
                secret_set=set_name,
                missing=sorted(missing),
            )
            raise MissingSecretValueError(node_id, set_name, missing)

    def verify_registry(
        self, registry: Registry, keys_by_node: Mapping[str, tuple[str, ...]]
    ) -> list[MissingSecretValueError]:
        """Verify every sensitive keyed-set node; errors are collected."""
        errors: list[MissingSecretValueError] = []
        for node in registry:
            if node.policy.kind != PolicyKind.KEYED_SET or node.policy.sensitive is None:
                continue
            if node.id not in keys_by_node:
                continue
            try:
                self.verify(node.id, node.policy.sensitive, keys_by_node[node.id])
            except MissingSecretValueError as e:
                errors.append(e)
        return errors

    def secret_for(self, node_id: str, set_name: str, key: str) -> SecretStr:
        """
        The value for one key.

        Raises:
            MissingSecretValueError: If the key has no value
        """
        try:
            return self._sets[set_name][key]
        except KeyError:
            raise MissingSecretValueError(node_id, set_name, [key]) from None

    def instance_secrets(
        self, node: Node, keys: tuple[str, ...]
    ) -> Iterator[tuple[InstanceAddress, SecretStr | None]]:
        """Pair each instance address of a keyed node with its own secret value."""
        set_name = node.policy.sensitive
        for address in instances(node.id, keys):
            if set_name is None:
                yield address, None
            else:
                yield address, self.secret_for(node.id, set_name, address.key)  # type: ignore[arg-type]
