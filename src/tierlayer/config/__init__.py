"""
TierLayer Configuration System.

Provides:
- Pydantic-based settings (environment variables, .env files)
- Secret set resolution (env, secrets file)
- Per-project and user-level config files
"""

from tierlayer.config.loader import ProjectConfig, get_config_path, load_project_config
from tierlayer.config.secrets import (
    EnvSecretBackend,
    FileSecretBackend,
    SecretBackend,
    SecretConfig,
    SecretResolver,
)
from tierlayer.config.settings import Settings, get_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Project config
    "ProjectConfig",
    "get_config_path",
    "load_project_config",
    # Secrets
    "SecretBackend",
    "SecretConfig",
    "SecretResolver",
    "EnvSecretBackend",
    "FileSecretBackend",
]
