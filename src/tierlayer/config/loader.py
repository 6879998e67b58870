"""
Project configuration file loading.

Search order:
1. Explicit path (--config flag)
2. .tierlayer/config.yaml (project root)
3. ~/.tierlayer/config.yaml (user home)
4. Default configuration
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from tierlayer.config.secrets import SecretBackend, SecretConfig

logger = structlog.get_logger()

DEFAULT_DECLARATIONS = "tierlayer.yaml"


def get_config_path(explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the configuration file to use.

    Returns:
        Path to config file or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        return None

    cwd_config = Path.cwd() / ".tierlayer" / "config.yaml"
    if cwd_config.exists():
        return cwd_config

    home_config = Path.home() / ".tierlayer" / "config.yaml"
    if home_config.exists():
        return home_config

    return None


@dataclass
class ProjectConfig:
    """Per-project defaults for CLI runs."""

    declarations: str = DEFAULT_DECLARATIONS
    environment: str | None = None
    var_files: list[str] = field(default_factory=list)
    max_workers: int | None = None
    executor_command: str | None = None
    inventory_file: str | None = None
    secrets: SecretConfig = field(default_factory=SecretConfig)

    @classmethod
    def default(cls) -> ProjectConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        secrets = data.get("secrets") or {}
        return cls(
            declarations=str(data.get("declarations", DEFAULT_DECLARATIONS)),
            environment=data.get("environment"),
            var_files=[str(p) for p in data.get("var_files") or []],
            max_workers=data.get("max_workers"),
            executor_command=data.get("executor_command"),
            inventory_file=data.get("inventory_file"),
            secrets=_parse_secrets_config(secrets),
        )


def _parse_secrets_config(data: dict[str, Any]) -> SecretConfig:
    """Parse secrets section of config."""
    try:
        backend = SecretBackend(data.get("backend", "file"))
    except ValueError:
        backend = SecretBackend.FILE

    fallback = []
    for fb in data.get("fallback", ["file", "env"]):
        try:
            fallback.append(SecretBackend(fb))
        except ValueError:
            logger.warning("unknown_secret_backend", backend=fb)

    secrets_file = data.get("secrets_file")
    return SecretConfig(
        backend=backend,
        fallback=fallback,
        env_prefix=data.get("env_prefix", "TIERLAYER_SECRET_"),
        secrets_file=Path(secrets_file) if secrets_file else None,
    )


def load_project_config(path: str | Path | None = None) -> ProjectConfig:
    """
    Load project configuration, falling back to defaults.

    Args:
        path: Optional explicit config file path
    """
    config_path = get_config_path(path)
    if config_path is None:
        return ProjectConfig.default()

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("failed_to_load_config", path=str(config_path), error=str(e))
        return ProjectConfig.default()

    if not isinstance(data, dict):
        logger.warning("invalid_config", path=str(config_path))
        return ProjectConfig.default()

    logger.debug("loaded_config", path=str(config_path))
    return ProjectConfig.from_dict(data)
