"""
Tests for agent.baseline - JsonBaselineStore
Tests creation, per-category reads and updates, reset, stats, and corrupt files.
"""

from __future__ import annotations

import json

import pytest

from agent.baseline import JsonBaselineStore, read_json, write_json_atomic
from agent.errors import StoreError
from algorithm.models import Category
from conftest import make_item


class TestJsonBaselineStore:
    """Tests for JsonBaselineStore"""

    @pytest.fixture
    def store(self, tmp_path):
        """Store pointed at a file that doesn't exist yet"""
        return JsonBaselineStore(tmp_path / "data" / "baseline.json")

    def test_no_file_means_no_baseline(self, store):
        """Test that a fresh store reports no baseline"""
        assert not store.has_baseline()
        assert store.get_baseline() is None
        assert store.get_baseline(Category.LAUNCH_AGENTS) is None
        assert store.get_stats() is None

    def test_create_groups_by_category(self, store):
        """Test that create_baseline writes every item under its category"""
        store.create_baseline(
            [
                make_item("a"),
                make_item("b"),
                make_item("d", category=Category.LAUNCH_DAEMONS),
            ]
        )
        assert store.has_baseline()
        assert [it.identifier for it in store.get_baseline(Category.LAUNCH_AGENTS)] == ["a", "b"]
        assert [it.identifier for it in store.get_baseline(Category.LAUNCH_DAEMONS)] == ["d"]
        assert len(store.get_baseline()) == 3

    def test_missing_category_is_empty_not_none(self, store):
        """Test that a category never captured reads as an empty list once a baseline exists"""
        store.create_baseline([make_item("a")])
        assert store.get_baseline(Category.CRON_JOBS) == []

    def test_empty_baseline_still_exists(self, store):
        """Test that a baseline with zero items is still a baseline"""
        store.create_baseline([])
        assert store.has_baseline()
        assert store.get_baseline() == []

    def test_update_replaces_one_category(self, store):
        """Test that update_baseline leaves other categories alone"""
        store.create_baseline([make_item("a"), make_item("d", category=Category.LAUNCH_DAEMONS)])
        store.update_baseline([make_item("x"), make_item("y")], Category.LAUNCH_AGENTS)

        assert [it.identifier for it in store.get_baseline(Category.LAUNCH_AGENTS)] == ["x", "y"]
        assert [it.identifier for it in store.get_baseline(Category.LAUNCH_DAEMONS)] == ["d"]

    def test_update_without_baseline_creates_document(self, store):
        """Test that the first update starts a new document"""
        store.update_baseline([make_item("a")], Category.LAUNCH_AGENTS)
        assert store.has_baseline()
        assert store.get_stats().item_count == 1

    def test_reset_removes_file(self, store):
        """Test that reset clears the baseline and is idempotent"""
        store.create_baseline([make_item("a")])
        store.reset()
        assert not store.has_baseline()
        store.reset()  # nothing left to remove

    def test_stats(self, store):
        """Test item and category counts"""
        store.create_baseline([make_item("a"), make_item("d", category=Category.LAUNCH_DAEMONS)])
        stats = store.get_stats()

        assert stats.item_count == 2
        assert stats.category_counts == {"launch_agents": 1, "launch_daemons": 1}
        assert stats.created_at is not None
        assert stats.updated_at >= stats.created_at

    def test_file_layout(self, store):
        """Test the on-disk document shape"""
        store.create_baseline([make_item("a")])
        doc = json.loads(store.path.read_text(encoding="utf-8"))
        assert doc["version"] == 1
        assert set(doc) == {"version", "created_at", "updated_at", "categories"}
        assert doc["categories"]["launch_agents"][0]["identifier"] == "a"

    def test_corrupt_file_raises_store_error(self, store):
        """Test that broken JSON is reported, not treated as empty"""
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text("{broken", encoding="utf-8")
        with pytest.raises(StoreError):
            store.get_baseline()

    def test_wrong_layout_raises_store_error(self, store):
        """Test that a JSON file without categories is rejected"""
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text(json.dumps([1, 2, 3]), encoding="utf-8")
        with pytest.raises(StoreError):
            store.has_baseline()


class TestJsonHelpers:
    """Tests for write_json_atomic and read_json"""

    def test_write_then_read(self, tmp_path):
        """Test that the atomic writer creates parent dirs and leaves no temp files"""
        path = tmp_path / "nested" / "file.json"
        write_json_atomic(path, {"a": 1})

        assert read_json(path) == {"a": 1}
        assert [p.name for p in path.parent.iterdir()] == ["file.json"]

    def test_empty_file_reads_as_missing(self, tmp_path):
        """Test that a zero-length file is treated like no file"""
        path = tmp_path / "empty.json"
        path.write_text("  \n", encoding="utf-8")
        assert read_json(path) is None
        assert read_json(tmp_path / "missing.json") is None
