"""
Tests for the key-value stores and JSON helpers.
"""

from src.adaptive_trader.persistence import JsonFileStore, MemoryStore, load_json, save_json


class TestMemoryStore:

    def test_save_load_delete(self):
        store = MemoryStore()

        store.save("k", b"value")
        assert store.load("k") == b"value"

        store.delete("k")
        assert store.load("k") is None
        store.delete("k")

    def test_json_helpers(self):
        store = MemoryStore()

        assert save_json(store, "doc", {"a": [1, 2.5, None]})
        assert load_json(store, "doc") == {"a": [1, 2.5, None]}
        assert load_json(store, "missing") is None

    def test_unserializable_is_reported(self):
        store = MemoryStore()

        assert not save_json(store, "doc", {"a": object()})
        assert store.load("doc") is None


class TestJsonFileStore:

    def test_one_file_per_key(self, tmp_path):
        store = JsonFileStore(tmp_path / "state")

        save_json(store, "risk_metrics", {"total_trades": 3})

        assert (tmp_path / "state" / "risk_metrics.json").exists()
        assert not (tmp_path / "state" / "risk_metrics.tmp").exists()
        assert load_json(JsonFileStore(tmp_path / "state"), "risk_metrics") == {"total_trades": 3}

    def test_overwrite(self, tmp_path):
        store = JsonFileStore(tmp_path)

        save_json(store, "k", [1])
        save_json(store, "k", [2])

        assert load_json(store, "k") == [2]

    def test_corrupt_file_is_ignored(self, tmp_path):
        store = JsonFileStore(tmp_path)
        (tmp_path / "patterns.json").write_text("{not json")

        assert load_json(store, "patterns") is None

    def test_delete(self, tmp_path):
        store = JsonFileStore(tmp_path)
        save_json(store, "k", 1)

        store.delete("k")
        store.delete("k")

        assert store.load("k") is None
