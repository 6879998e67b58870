"""Tests for inventory lookups."""

import threading
from unittest.mock import MagicMock

import pytest

from tierlayer.core.errors import ConfigurationError, LookupFailedError
from tierlayer.resolution.lookups import InventoryLookupProvider, MemoizedLookups

INVENTORY = {
    "network": [
        {"id": "net-1", "name": "main", "cidr": "10.0.0.0/16", "tags": {"Name": "main-vpc"}},
        {"id": "net-2", "name": "edge", "tags": {"Name": "edge-vpc"}},
    ],
    "image": [
        {"id": "img-1", "name": "base", "created": "2024-01-01", "tags": {"os": "linux"}},
        {"id": "img-2", "name": "base", "created": "2024-06-01", "tags": {"os": "linux"}},
    ],
}


class TestInventoryLookupProvider:
    """Static inventory queries."""

    def test_by_name(self):
        provider = InventoryLookupProvider(INVENTORY)
        assert provider.lookup("network", {"name": "main"}) == "net-1"

    def test_attribute(self):
        provider = InventoryLookupProvider(INVENTORY)
        assert provider.lookup("network", {"name": "main", "attribute": "cidr"}) == "10.0.0.0/16"

    def test_tag_pattern(self):
        provider = InventoryLookupProvider(INVENTORY)
        assert provider.lookup("network", {"tags": {"Name": "edge-*"}}) == "net-2"

    def test_no_match(self):
        assert InventoryLookupProvider(INVENTORY).lookup("network", {"name": "nope"}) is None

    def test_ambiguous_without_most_recent(self):
        with pytest.raises(LookupFailedError, match="matched 2 records"):
            InventoryLookupProvider(INVENTORY).lookup("image", {"name": "base"})

    def test_most_recent(self):
        provider = InventoryLookupProvider(INVENTORY)
        assert provider.lookup("image", {"name": "base", "most_recent": True}) == "img-2"

    def test_unknown_query_key(self):
        with pytest.raises(LookupFailedError, match="Unsupported"):
            InventoryLookupProvider(INVENTORY).lookup("network", {"owner": "me"})

    def test_from_file(self, write_yaml):
        path = write_yaml("network:\n  - {id: n, name: main}\n", name="inventory.yaml")
        assert InventoryLookupProvider.from_file(path).lookup("network", {"name": "main"}) == "n"

    def test_from_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            InventoryLookupProvider.from_file(tmp_path / "missing.yaml")


class TestMemoizedLookups:
    """Per-run memoization."""

    def test_same_query_hits_provider_once(self):
        provider = MagicMock()
        provider.lookup.return_value = "net-1"
        lookups = MemoizedLookups(provider)
        assert lookups.lookup("network", {"name": "main"}) == "net-1"
        provider.lookup.return_value = "net-changed"
        assert lookups.lookup("network", {"name": "main"}) == "net-1"
        assert provider.lookup.call_count == 1

    def test_failures_are_memoized(self):
        provider = MagicMock()
        provider.lookup.side_effect = RuntimeError("api down")
        lookups = MemoizedLookups(provider)
        with pytest.raises(LookupFailedError, match="api down"):
            lookups.lookup("network", {"name": "main"})
        with pytest.raises(LookupFailedError):
            lookups.lookup("network", {"name": "main"})
        assert provider.lookup.call_count == 1

    def test_no_provider(self):
        with pytest.raises(LookupFailedError, match="No lookup provider"):
            MemoizedLookups().lookup("network", {"name": "main"})

    def test_concurrent_consumers_see_same_value(self):
        calls = []

        class Provider:
            def lookup(self, kind, query):
                calls.append(kind)
                return f"value-{len(calls)}"

        lookups = MemoizedLookups(Provider())
        results = []

        def worker():
            results.append(lookups.lookup("network", {"name": "main"}))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert set(results) == {"value-1"}
        assert len(calls) == 1
