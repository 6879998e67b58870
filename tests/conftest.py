"""Root test configuration."""

import logging
import os
import textwrap

import pytest
import structlog

from tierlayer.config.settings import get_settings


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep user config, .env files and TIERLAYER_* variables out of tests."""
    for key in list(os.environ):
        if key.startswith("TIERLAYER_"):
            monkeypatch.delenv(key, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def write_yaml(tmp_path):
    """Write dedented YAML text to a file under tmp_path and return its path."""

    def _write(text: str, name: str = "stack.yaml"):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text).lstrip())
        return path

    return _write


@pytest.fixture
def diamond_yaml(write_yaml):
    """A, B at tier 0; C depends on both; D depends on C."""
    return write_yaml(
        """
        project: diamond
        nodes:
          - id: A
            outputs: [id]
          - id: B
            outputs: [id]
          - id: C
            inputs:
              a: ${A.id}
              b: ${B.id}
            outputs: [id]
          - id: D
            inputs:
              c: ${C.id}
            outputs: [id]
        """
    )
