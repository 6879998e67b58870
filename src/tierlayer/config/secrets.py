"""
Secret set sources.

A secret set maps key names to secret values. Sets are read from:
- Environment variables: ``TIERLAYER_SECRET_<set>__<key>=value``
- A secrets file (YAML): ``{<set>: {<key>: value}}``

Values are wrapped in ``SecretStr`` as soon as they are read and are never
logged.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Iterable, Mapping

import structlog
import yaml
from pydantic import SecretStr

from tierlayer.core.errors import ConfigurationError

logger = structlog.get_logger()

KEY_SEPARATOR = "__"


class SecretBackend(StrEnum):
    """Supported secret backends."""

    ENV = "env"
    FILE = "file"


@dataclass
class SecretConfig:
    """Configuration for secret set resolution."""

    backend: SecretBackend = SecretBackend.FILE
    fallback: list[SecretBackend] = field(
        default_factory=lambda: [SecretBackend.FILE, SecretBackend.ENV]
    )
    env_prefix: str = "TIERLAYER_SECRET_"
    secrets_file: Path | None = None


class BaseSecretBackend(ABC):
    """Base class for secret backends."""

    @abstractmethod
    def get_set(self, name: str) -> dict[str, str]:
        """Key/value pairs of one secret set; empty when unknown."""
        pass

    @abstractmethod
    def list_sets(self) -> list[str]:
        """Names of the secret sets this backend knows about."""
        pass


class EnvSecretBackend(BaseSecretBackend):
    """Environment variable secret backend."""

    def __init__(self, prefix: str = "TIERLAYER_SECRET_", environ: Mapping[str, str] | None = None):
        self.prefix = prefix
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def get_set(self, name: str) -> dict[str, str]:
        head = f"{self.prefix}{name}{KEY_SEPARATOR}"
        return {
            env_key[len(head) :]: value
            for env_key, value in self.environ.items()
            if env_key.startswith(head) and len(env_key) > len(head)
        }

    def list_sets(self) -> list[str]:
        names = set()
        for env_key in self.environ:
            if env_key.startswith(self.prefix) and KEY_SEPARATOR in env_key[len(self.prefix) :]:
                names.add(env_key[len(self.prefix) :].split(KEY_SEPARATOR, 1)[0])
        return sorted(names)


class FileSecretBackend(BaseSecretBackend):
    """File-based secret backend using a YAML secrets file."""

    def __init__(self, secrets_file: Path):
        self.secrets_file = secrets_file
        self._cache: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache

        if not self.secrets_file.exists():
            self._cache = {}
            return self._cache

        try:
            with open(self.secrets_file) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in secrets file {self.secrets_file}",
                {"path": str(self.secrets_file), "error_type": type(e).__name__},
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Secrets file {self.secrets_file} must map set names to key/value mappings"
            )
        self._cache = data
        return self._cache

    def get_set(self, name: str) -> dict[str, str]:
        values = self._load().get(name)
        if not isinstance(values, dict):
            return {}
        return {str(k): str(v) for k, v in values.items() if v is not None}

    def list_sets(self) -> list[str]:
        return sorted(k for k, v in self._load().items() if isinstance(v, dict))


class SecretResolver:
    """Resolves secret sets from multiple backends with fallback support.

    Per key, the first backend in priority order (primary, then fallbacks)
    that has a value wins.
    """

    def __init__(self, config: SecretConfig | None = None, environ: Mapping[str, str] | None = None):
        self.config = config or SecretConfig()
        self._backends: dict[SecretBackend, BaseSecretBackend] = {
            SecretBackend.ENV: EnvSecretBackend(self.config.env_prefix, environ),
        }
        if self.config.secrets_file is not None:
            self._backends[SecretBackend.FILE] = FileSecretBackend(self.config.secrets_file)

    def _ordered(self) -> list[BaseSecretBackend]:
        order = [self.config.backend, *self.config.fallback]
        return [self._backends[b] for b in dict.fromkeys(order) if b in self._backends]

    def resolve_set(self, name: str) -> dict[str, SecretStr]:
        values: dict[str, SecretStr] = {}
        for backend in reversed(self._ordered()):
            values.update({k: SecretStr(v) for k, v in backend.get_set(name).items()})
        logger.debug("secret_set_resolved", secret_set=name, keys=len(values))
        return values

    def resolve_sets(self, names: Iterable[str]) -> dict[str, dict[str, SecretStr]]:
        return {name: self.resolve_set(name) for name in sorted(set(names))}

    def list_sets(self) -> dict[str, list[str]]:
        """Secret set names by backend."""
        result = {}
        for name, backend in self._backends.items():
            sets = backend.list_sets()
            if sets:
                result[str(name)] = sets
        return result
