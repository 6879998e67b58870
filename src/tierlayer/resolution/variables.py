"""
Variable source.

Resolved configuration values supplied by the caller. Precedence, lowest
first:

1. Declared defaults
2. Variable files (in the order given)
3. ``TIERLAYER_VAR_<name>`` environment variables
4. ``--var name=value`` assignments

The source is immutable; the engine never writes to it.
"""

from __future__ import annotations

import os
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

import structlog
import yaml
from pydantic import SecretStr

from tierlayer.core.errors import ConfigurationError
from tierlayer.declarations.models import VariableDeclaration
from tierlayer.resolution.values import Resolved

logger = structlog.get_logger()

DEFAULT_ENV_PREFIX = "TIERLAYER_VAR_"


class VariableSource(Mapping[str, Any]):
    """Read-only view over resolved variable values."""

    def __init__(
        self,
        values: Mapping[str, Any] | None = None,
        declarations: Mapping[str, VariableDeclaration] | None = None,
    ):
        declarations = declarations or {}
        merged: dict[str, Any] = {
            name: decl.default for name, decl in declarations.items() if decl.has_default
        }
        merged.update(values or {})

        sensitive = {name for name, decl in declarations.items() if decl.sensitive}
        for name in sensitive & set(merged):
            value = merged[name]
            if value is not None and not isinstance(value, SecretStr):
                merged[name] = SecretStr(str(value))

        self._values = MappingProxyType(merged)
        self._declared = frozenset(declarations)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    @property
    def known_names(self) -> frozenset[str]:
        """Names that may be referenced: declared or supplied."""
        return self._declared | frozenset(self._values)

    def resolve(self, name: str) -> Resolved:
        value = self._values.get(name)
        if value is None:
            return Resolved.absent()
        return Resolved.present(value)

    @classmethod
    def from_sources(
        cls,
        declarations: Mapping[str, VariableDeclaration] | None = None,
        *,
        var_files: Iterable[str | Path] = (),
        environ: Mapping[str, str] | None = None,
        env_prefix: str = DEFAULT_ENV_PREFIX,
        assignments: Iterable[str] = (),
    ) -> VariableSource:
        """Build a source from every supported origin, in precedence order."""
        values: dict[str, Any] = {}
        for path in var_files:
            values.update(load_var_file(path))
        values.update(variables_from_environ(os.environ if environ is None else environ, env_prefix))
        values.update(parse_var_assignments(assignments))
        return cls(values, declarations)


def load_var_file(path: str | Path) -> dict[str, Any]:
    """Load a YAML (or JSON) variable file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Variable file not found: {path}", {"path": str(path)})

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in variable file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Variable file {path} must contain a mapping")

    logger.debug("loaded_var_file", path=str(path), count=len(data))
    return {str(k): v for k, v in data.items()}


def variables_from_environ(environ: Mapping[str, str], prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """Collect ``<prefix><name>`` environment variables."""
    return {
        key[len(prefix) :]: _parse_scalar(value)
        for key, value in environ.items()
        if key.startswith(prefix) and len(key) > len(prefix)
    }


def parse_var_assignments(assignments: Iterable[str]) -> dict[str, Any]:
    """Parse ``name=value`` pairs; values are read as YAML scalars or lists."""
    values: dict[str, Any] = {}
    for assignment in assignments:
        name, sep, raw = assignment.partition("=")
        if not sep or not name.strip():
            raise ConfigurationError(f"Invalid variable assignment '{assignment}', expected name=value")
        values[name.strip()] = _parse_scalar(raw)
    return values


def _parse_scalar(raw: str) -> Any:
    try:
        return yaml.safe_load(raw) if raw.strip() else raw
    except yaml.YAMLError:
        return raw
