"""Tests for cache.py -- key derivation, persistence, debounced flushing."""

import json
import threading
import time
from unittest.mock import patch

from audiobook_organizer.cache import (
    PATH_KEY_PREFIX,
    MetadataCache,
    make_key,
    path_key,
    query_key,
)
from audiobook_organizer.models import AudiobookMetadata


def _md(title="Dune", **kwargs) -> AudiobookMetadata:
    return AudiobookMetadata(title=title, authors=["Frank Herbert"], **kwargs)


class TestKeys:
    def test_normalized_text_gives_same_key(self):
        assert make_key("  Dune Frank Herbert ") == make_key("dune frank herbert")

    def test_different_text_differs(self):
        assert make_key("Dune") != make_key("Dune Messiah")

    def test_key_is_sha256_hex(self):
        assert len(make_key("x")) == 64

    def test_path_keys_are_namespaced(self):
        assert path_key("/lib/dune.mp3").startswith(PATH_KEY_PREFIX)
        assert path_key("dune") != query_key("dune")


class TestMetadataCache:
    def test_missing_file_starts_empty(self, tmp_path):
        cache = MetadataCache(tmp_path / "cache.json")
        assert len(cache) == 0

    def test_save_and_get(self, tmp_path):
        cache = MetadataCache(tmp_path / "cache.json")
        cache.save_for_query("Dune Frank Herbert", _md())
        assert cache.get_for_query("  dune frank herbert").title == "Dune"
        assert cache.has(query_key("Dune Frank Herbert"))

    def test_file_and_query_keys_independent(self, tmp_path):
        cache = MetadataCache(tmp_path / "cache.json")
        cache.save_for_file("/lib/dune.mp3", _md())
        assert cache.get_for_file("/lib/dune.mp3") is not None
        assert cache.get_for_query("/lib/dune.mp3") is None

    def test_flush_round_trip(self, tmp_path):
        path = tmp_path / "cache.json"
        cache = MetadataCache(path)
        cache.save_for_query("dune", _md(series="Dune", user_tags=["classic"]))
        cache.flush()

        data = json.loads(path.read_text())
        assert len(data) == 1
        entry = next(iter(data.values()))
        assert entry["title"] == "Dune"
        assert entry["userTags"] == ["classic"]

        reloaded = MetadataCache(path)
        assert reloaded.get_for_query("dune") == cache.get_for_query("dune")

    def test_thumbnail_survives_update_without_one(self, tmp_path):
        cache = MetadataCache(tmp_path / "cache.json")
        cache.save_for_query("dune", _md(thumbnail_url="https://img/dune.jpg"))
        cache.save_for_query("dune", _md(description="Spice"))
        entry = cache.get_for_query("dune")
        assert entry.thumbnail_url == "https://img/dune.jpg"
        assert entry.description == "Spice"

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        assert len(MetadataCache(path)) == 0

    def test_non_object_file_starts_empty(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("[1, 2, 3]")
        assert len(MetadataCache(path)) == 0

    def test_malformed_entries_skipped(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text(json.dumps({
            "good": {"title": "Dune", "authors": ["Frank Herbert"]},
            "bad": "not an object",
            "worse": {"title": "x", "ratingsCount": "many"},
            "bad_bookmark": {"title": "X", "bookmarks": [1]},
            "bad_notes": {"title": "X", "notes": {"content": "n"}},
        }))
        cache = MetadataCache(path)
        assert cache.keys() == ["good"]

    def test_debounced_flush_writes_once_quiet(self, tmp_path):
        path = tmp_path / "cache.json"
        cache = MetadataCache(path, save_delay=0.05)
        for i in range(5):
            cache.save_for_query(f"book {i}", _md(title=f"Book {i}"))
        assert not path.exists()

        deadline = time.monotonic() + 5
        while not path.exists() and time.monotonic() < deadline:
            time.sleep(0.02)
        assert len(json.loads(path.read_text())) == 5

    def test_flush_without_changes_writes_nothing(self, tmp_path):
        path = tmp_path / "cache.json"
        MetadataCache(path).flush()
        assert not path.exists()

    def test_remove(self, tmp_path):
        cache = MetadataCache(tmp_path / "cache.json")
        cache.save_for_query("dune", _md())
        cache.remove(query_key("dune"))
        assert not cache.has(query_key("dune"))

    def test_clear_deletes_file(self, tmp_path):
        path = tmp_path / "cache.json"
        cache = MetadataCache(path)
        cache.save_for_query("dune", _md())
        cache.flush()
        assert path.exists()

        cache.clear()
        assert not cache.has(query_key("dune"))
        assert not path.exists()
        assert len(MetadataCache(path)) == 0

    def test_clear_cancels_pending_write(self, tmp_path):
        path = tmp_path / "cache.json"
        cache = MetadataCache(path, save_delay=0.05)
        cache.save_for_query("dune", _md())
        cache.clear()
        time.sleep(0.15)
        assert not path.exists()

    def test_clear_during_write_leaves_no_file(self, tmp_path):
        path = tmp_path / "cache.json"
        cache = MetadataCache(path, save_delay=60)
        cache.save_for_query("dune", _md())
        real_write = cache._atomic_write

        def slow_write(payload):
            time.sleep(0.3)
            real_write(payload)

        with patch.object(cache, "_atomic_write", side_effect=slow_write):
            writer = threading.Thread(target=cache.flush)
            writer.start()
            time.sleep(0.1)
            cache.clear()
            writer.join()

        assert not cache.has(query_key("dune"))
        assert not path.exists()
        assert MetadataCache(path).keys() == []

    def test_close_flushes(self, tmp_path):
        path = tmp_path / "cache.json"
        cache = MetadataCache(path, save_delay=60)
        cache.save_for_query("dune", _md())
        cache.close()
        assert path.exists()
