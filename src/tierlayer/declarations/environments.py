"""Environment overlay merging.

An overlay document carries per-environment overrides for a declaration
file. Lookup order for environment ``prod`` and base file ``stack.yaml``:

1. ``stack.prod.yaml`` next to the base file
2. ``environments/prod.yaml`` next to the base file
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml

from tierlayer.core.errors import ConfigurationError

logger = structlog.get_logger()


def find_overlay(base_path: Path, environment: Optional[str]) -> Optional[Path]:
    """Find the overlay file for an environment, if any."""
    if not environment:
        return None

    candidates = [
        base_path.with_name(f"{base_path.stem}.{environment}{base_path.suffix or '.yaml'}"),
        base_path.parent / "environments" / f"{environment}.yaml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def load_overlay(path: Path) -> Dict[str, Any]:
    """Load an overlay document."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in overlay {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Overlay {path} must be a mapping")
    return data


class EnvironmentMerger:
    """Merges a base declaration document with an environment overlay."""

    @staticmethod
    def merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
        """Merge base document with overlay (overlay wins).

        Nodes are matched by ``id``; overlay nodes with new ids are appended.
        All other top-level keys are deep-merged.
        """
        result = deepcopy(base)

        for key, value in overlay.items():
            if key == "nodes":
                result["nodes"] = EnvironmentMerger._merge_nodes(result.get("nodes") or [], value or [])
            elif isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = EnvironmentMerger._merge_dict(result[key], value)
            else:
                result[key] = deepcopy(value)

        return result

    @staticmethod
    def _merge_dict(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = deepcopy(base)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = EnvironmentMerger._merge_dict(result[key], value)
            else:
                result[key] = deepcopy(value)

        return result

    @staticmethod
    def _merge_nodes(
        base_nodes: List[Dict[str, Any]], override_nodes: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        result = [deepcopy(n) for n in base_nodes]
        index = {
            n.get("id"): i for i, n in enumerate(result) if isinstance(n, dict) and n.get("id")
        }

        for override in override_nodes:
            node_id = override.get("id") if isinstance(override, dict) else None
            if node_id in index:
                i = index[node_id]
                result[i] = EnvironmentMerger._merge_dict(result[i], override)
            else:
                result.append(deepcopy(override))

        return result


def apply_overlay(base: Dict[str, Any], base_path: Path, environment: Optional[str]) -> Dict[str, Any]:
    """Merge the environment overlay for ``base_path`` into ``base`` if one exists."""
    overlay_path = find_overlay(base_path, environment)
    if overlay_path is None:
        return base

    logger.debug("applying_overlay", path=str(overlay_path), environment=environment)
    return EnvironmentMerger.merge(base, load_overlay(overlay_path))
