"""
External inventory lookups.

A lookup asks the inventory for one attribute of one record, e.g. "the id of
the network named ``main``". Results are memoized for the whole run so every
consumer sees the same value even if the inventory changes underneath.
"""

from __future__ import annotations

import fnmatch
import json
import threading
from pathlib import Path
from typing import Any, Mapping, Protocol

import structlog
import yaml

from tierlayer.core.errors import ConfigurationError, LookupFailedError, TierLayerError

logger = structlog.get_logger()

QUERY_KEYS = frozenset({"name", "id", "tags", "most_recent", "attribute"})


class LookupProvider(Protocol):
    """Answers inventory queries. ``None`` means nothing matched."""

    def lookup(self, kind: str, query: Mapping[str, Any]) -> Any | None:
        ...


class MemoizedLookups:
    """Per-run, thread-safe memo around a lookup provider.

    Failures are memoized too, so every consumer of a failing query sees the
    same error.
    """

    def __init__(self, provider: LookupProvider | None = None):
        self._provider = provider
        self._cache: dict[tuple[str, str], Any] = {}
        self._failures: dict[tuple[str, str], LookupFailedError] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._cache) + len(self._failures)

    def lookup(self, kind: str, query: Mapping[str, Any]) -> Any | None:
        key = (kind, json.dumps(dict(query), sort_keys=True, default=str))
        with self._lock:
            if key in self._cache:
                return self._cache[key]
            if key in self._failures:
                raise self._failures[key]

            try:
                result = self._query(kind, query)
            except LookupFailedError as e:
                self._failures[key] = e
                raise

            self._cache[key] = result
            return result

    def _query(self, kind: str, query: Mapping[str, Any]) -> Any | None:
        if self._provider is None:
            raise LookupFailedError(
                f"No lookup provider configured for '{kind}' lookup", {"kind": kind}
            )
        try:
            result = self._provider.lookup(kind, query)
        except LookupFailedError:
            raise
        except TierLayerError as e:
            raise LookupFailedError(e.message, {"kind": kind, **e.details}) from e
        except Exception as e:
            raise LookupFailedError(f"Lookup '{kind}' failed: {e}", {"kind": kind}) from e

        logger.debug("lookup_resolved", kind=kind, found=result is not None)
        return result


class InventoryLookupProvider:
    """
    Lookup provider backed by a static inventory document.

    The inventory maps a kind to a list of records::

        network:
          - {id: net-1, name: main, tags: {Name: main-vpc}, created: "2024-01-01"}

    Query keys:
        name: exact match on the record name
        id: explicit id; the record must exist
        tags: mapping of tag name to an ``fnmatch`` pattern
        most_recent: pick the newest ``created`` record when several match
        attribute: record field to return (default ``id``)
    """

    def __init__(self, inventory: Mapping[str, list[Mapping[str, Any]]]):
        self.inventory = inventory

    @classmethod
    def from_file(cls, path: str | Path) -> InventoryLookupProvider:
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Inventory file not found: {path}", {"path": str(path)})
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in inventory {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Inventory {path} must map kinds to record lists")
        return cls(data)

    def lookup(self, kind: str, query: Mapping[str, Any]) -> Any | None:
        unknown = set(query) - QUERY_KEYS
        if unknown:
            raise LookupFailedError(
                f"Unsupported query keys for '{kind}' lookup: {', '.join(sorted(unknown))}",
                {"kind": kind},
            )

        records = self.inventory.get(kind) or []
        matches = [r for r in records if self._matches(r, query)]
        if not matches:
            return None

        if len(matches) > 1:
            if not query.get("most_recent"):
                raise LookupFailedError(
                    f"Lookup '{kind}' matched {len(matches)} records; narrow the query "
                    "or set most_recent",
                    {"kind": kind, "matches": len(matches)},
                )
            matches.sort(key=lambda r: str(r.get("created", "")))

        return matches[-1].get(query.get("attribute", "id"))

    @staticmethod
    def _matches(record: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
        if "name" in query and record.get("name") != query["name"]:
            return False
        if "id" in query and record.get("id") != query["id"]:
            return False
        tags = record.get("tags") or {}
        for tag, pattern in (query.get("tags") or {}).items():
            value = tags.get(tag)
            if value is None or not fnmatch.fnmatchcase(str(value), str(pattern)):
                return False
        return True
