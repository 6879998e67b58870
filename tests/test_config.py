"""Tests for settings, project config and secret sources."""

from pathlib import Path

import pytest

from tierlayer.config.loader import ProjectConfig, get_config_path, load_project_config
from tierlayer.config.secrets import (
    EnvSecretBackend,
    FileSecretBackend,
    SecretBackend,
    SecretConfig,
    SecretResolver,
)
from tierlayer.config.settings import Settings, get_settings
from tierlayer.core.errors import ConfigurationError


class TestSettings:
    """Environment-driven settings."""

    def test_defaults(self):
        settings = Settings()
        assert settings.environment == "development"
        assert settings.max_workers == 4
        assert settings.executor_command is None

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("TIERLAYER_MAX_WORKERS", "8")
        monkeypatch.setenv("TIERLAYER_ENVIRONMENT", "prod")
        settings = get_settings()
        assert settings.max_workers == 8
        assert settings.environment == "prod"

    def test_cached(self):
        assert get_settings() is get_settings()


class TestSecretBackends:
    """Individual secret backends."""

    def test_env_backend(self):
        backend = EnvSecretBackend(
            environ={
                "TIERLAYER_SECRET_passwords__alice": "a",
                "TIERLAYER_SECRET_passwords__bob": "b",
                "TIERLAYER_SECRET_tokens__ci": "t",
                "TIERLAYER_SECRET_passwords__": "ignored",
                "UNRELATED": "x",
            }
        )
        assert backend.get_set("passwords") == {"alice": "a", "bob": "b"}
        assert backend.get_set("missing") == {}
        assert backend.list_sets() == ["passwords", "tokens"]

    def test_file_backend(self, write_yaml):
        path = write_yaml(
            """
            passwords:
              alice: 1234
              bob: null
            not_a_set: value
            """,
            name="secrets.yaml",
        )
        backend = FileSecretBackend(path)
        assert backend.get_set("passwords") == {"alice": "1234"}
        assert backend.get_set("not_a_set") == {}
        assert backend.list_sets() == ["passwords"]

    def test_missing_file_is_empty(self, tmp_path):
        assert FileSecretBackend(tmp_path / "none.yaml").get_set("passwords") == {}

    def test_invalid_file(self, write_yaml):
        path = write_yaml("- just\n- a list\n", name="secrets.yaml")
        with pytest.raises(ConfigurationError):
            FileSecretBackend(path).get_set("passwords")


class TestSecretResolver:
    """Per-key priority across backends."""

    @pytest.fixture
    def secrets_file(self, write_yaml):
        return write_yaml("passwords:\n  alice: from-file\n", name="secrets.yaml")

    ENVIRON = {
        "TIERLAYER_SECRET_passwords__alice": "from-env",
        "TIERLAYER_SECRET_passwords__bob": "env-only",
    }

    def test_file_wins_by_default(self, secrets_file):
        resolver = SecretResolver(SecretConfig(secrets_file=secrets_file), environ=self.ENVIRON)
        values = resolver.resolve_set("passwords")
        assert {k: v.get_secret_value() for k, v in values.items()} == {
            "alice": "from-file",
            "bob": "env-only",
        }

    def test_env_primary(self, secrets_file):
        config = SecretConfig(backend=SecretBackend.ENV, secrets_file=secrets_file)
        values = SecretResolver(config, environ=self.ENVIRON).resolve_set("passwords")
        assert values["alice"].get_secret_value() == "from-env"

    def test_values_are_masked(self):
        values = SecretResolver(environ=self.ENVIRON).resolve_sets(["passwords"])
        assert "env-only" not in repr(values)
        assert list(values) == ["passwords"]

    def test_list_sets(self, secrets_file):
        resolver = SecretResolver(SecretConfig(secrets_file=secrets_file), environ=self.ENVIRON)
        assert resolver.list_sets() == {"env": ["passwords"], "file": ["passwords"]}


class TestProjectConfig:
    """Project config discovery and parsing."""

    def test_defaults_when_absent(self):
        config = load_project_config()
        assert config == ProjectConfig.default()
        assert config.declarations == "tierlayer.yaml"

    def test_explicit_path(self, write_yaml):
        path = write_yaml(
            """
            declarations: infra/stack.yaml
            environment: staging
            var_files: [common.yaml]
            secrets:
              backend: env
              fallback: [env, vault]
              secrets_file: secrets.yaml
            """,
            name="custom.yaml",
        )
        config = load_project_config(path)
        assert config.declarations == "infra/stack.yaml"
        assert config.environment == "staging"
        assert config.var_files == ["common.yaml"]
        assert config.secrets.backend == SecretBackend.ENV
        assert config.secrets.fallback == [SecretBackend.ENV]
        assert config.secrets.secrets_file == Path("secrets.yaml")

    def test_missing_explicit_path(self, tmp_path):
        assert get_config_path(tmp_path / "nope.yaml") is None
        assert load_project_config(tmp_path / "nope.yaml") == ProjectConfig.default()

    def test_search_order(self, write_yaml, tmp_path):
        home = write_yaml("environment: home\n", name="home/.tierlayer/config.yaml")
        assert get_config_path() == home
        local = write_yaml("environment: local\n", name=".tierlayer/config.yaml")
        assert get_config_path() == local
        assert load_project_config().environment == "local"

    def test_bad_yaml_falls_back(self, write_yaml):
        path = write_yaml("environment: [unclosed\n", name="bad.yaml")
        assert load_project_config(path) == ProjectConfig.default()

    def test_unknown_backend_falls_back_to_file(self):
        config = ProjectConfig.from_dict({"secrets": {"backend": "vault"}})
        assert config.secrets.backend == SecretBackend.FILE
