"""Tests for environment overlays."""

import pytest

from tierlayer.core.errors import ConfigurationError
from tierlayer.declarations.bindings import Literal
from tierlayer.declarations.environments import EnvironmentMerger, find_overlay
from tierlayer.declarations.loader import load_declarations

BASE = """
project: web
variables:
  size: 1
nodes:
  - id: app
    inputs:
      replicas: 1
      image: web:latest
"""


class TestFindOverlay:
    """Overlay file discovery."""

    def test_sibling_file(self, write_yaml):
        base = write_yaml(BASE)
        overlay = write_yaml("nodes: []\n", name="stack.prod.yaml")
        assert find_overlay(base, "prod") == overlay

    def test_environments_directory(self, write_yaml):
        base = write_yaml(BASE)
        overlay = write_yaml("nodes: []\n", name="environments/staging.yaml")
        assert find_overlay(base, "staging") == overlay

    def test_sibling_wins(self, write_yaml):
        base = write_yaml(BASE)
        sibling = write_yaml("nodes: []\n", name="stack.prod.yaml")
        write_yaml("nodes: []\n", name="environments/prod.yaml")
        assert find_overlay(base, "prod") == sibling

    def test_no_environment(self, write_yaml):
        assert find_overlay(write_yaml(BASE), None) is None


class TestEnvironmentMerger:
    """Overlay merge semantics."""

    def test_nodes_merge_by_id(self):
        base = {"nodes": [{"id": "app", "inputs": {"replicas": 1, "image": "x"}}]}
        overlay = {"nodes": [{"id": "app", "inputs": {"replicas": 3}}, {"id": "extra"}]}
        merged = EnvironmentMerger.merge(base, overlay)
        assert merged["nodes"][0]["inputs"] == {"replicas": 3, "image": "x"}
        assert merged["nodes"][1] == {"id": "extra"}

    def test_base_is_not_mutated(self):
        base = {"variables": {"size": 1}}
        EnvironmentMerger.merge(base, {"variables": {"size": 2}})
        assert base == {"variables": {"size": 1}}


class TestLoadWithOverlay:
    """Loading a declaration file with its environment overlay."""

    def test_overlay_applied(self, write_yaml):
        base = write_yaml(BASE)
        write_yaml(
            """
            nodes:
              - id: app
                inputs:
                  replicas: 5
            """,
            name="stack.prod.yaml",
        )
        registry = load_declarations(base, "prod")
        assert registry.nodes["app"].inputs["replicas"] == Literal(5)
        assert registry.nodes["app"].inputs["image"] == Literal("web:latest")

    def test_other_environment_untouched(self, write_yaml):
        base = write_yaml(BASE)
        write_yaml("nodes: [{id: app, inputs: {replicas: 5}}]\n", name="stack.prod.yaml")
        registry = load_declarations(base, "dev")
        assert registry.nodes["app"].inputs["replicas"] == Literal(1)

    def test_invalid_overlay(self, write_yaml):
        base = write_yaml(BASE)
        write_yaml("- not a mapping\n", name="stack.prod.yaml")
        with pytest.raises(ConfigurationError, match="Overlay"):
            load_declarations(base, "prod")
