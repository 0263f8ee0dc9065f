"""
Unit tests for demo data seeding.
"""

import pytest

from usage_ledger.demo.seed_demo_data import DEMO_PERSONAS, seed_demo_events
from usage_ledger.storage.repository import JsonFileUsageStore, SqlUsageStore, StorageError


class TestSeedDemoEvents:
    """Test synthetic usage history."""

    def test_fresh_database_keeps_every_event(self, tmp_path):
        """Seeding a database whose table does not exist yet creates it first."""
        store = SqlUsageStore(database_url=f"sqlite:///{tmp_path / 'fresh.db'}")

        events = seed_demo_events(store, count=3, seed=1)

        assert len(events) == 3
        assert sorted(e.id for e in store.read_all()) == sorted(e.id for e in events)

    def test_file_store(self, tmp_path):
        store = JsonFileUsageStore(str(tmp_path / "usage.json"))

        events = seed_demo_events(store, count=5, seed=2)

        assert store.read_all() == events
        assert all(e.persona in DEMO_PERSONAS for e in events)

    def test_same_seed_same_shape(self, tmp_path):
        first = seed_demo_events(JsonFileUsageStore(str(tmp_path / "a.json")), count=4, seed=3)
        second = seed_demo_events(JsonFileUsageStore(str(tmp_path / "b.json")), count=4, seed=3)

        assert [e.total_tokens for e in first] == [e.total_tokens for e in second]

    def test_initialize_failure_raises(self, tmp_path):
        store = SqlUsageStore(database_url=f"sqlite:///{tmp_path / 'missing' / 'usage.db'}")

        with pytest.raises(StorageError):
            seed_demo_events(store, count=1)

    def test_invalid_arguments(self, tmp_path):
        store = JsonFileUsageStore(str(tmp_path / "usage.json"))
        with pytest.raises(ValueError, match="count must be > 0"):
            seed_demo_events(store, count=0)
        with pytest.raises(ValueError, match="days must be > 0"):
            seed_demo_events(store, days=0)
