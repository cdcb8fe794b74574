"""Tests for matcher.py -- cache-first resolution and the provider chain."""

import threading
import time
from pathlib import Path

from audiobook_organizer.cache import MetadataCache
from audiobook_organizer.concurrency import CancelToken
from audiobook_organizer.errors import ProviderError
from audiobook_organizer.matcher import MetadataMatcher, build_query
from audiobook_organizer.models import AudiobookCollection, AudiobookFile, AudiobookMetadata


class FakeProvider:
    def __init__(self, name, results=None, error=None, delay=0.0):
        self._name = name
        self.results = results or []
        self.error = error
        self.delay = delay
        self.queries = []
        self.api_key = ""
        self._lock = threading.Lock()

    @property
    def name(self):
        return self._name

    def update_api_key(self, api_key):
        self.api_key = api_key

    def search(self, query):
        with self._lock:
            self.queries.append(query)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.results)


def _file(name, directory="/lib/books") -> AudiobookFile:
    return AudiobookFile(path=Path(directory) / f"{name}.mp3", filename=name, extension=".mp3")


def _md(title, provider="") -> AudiobookMetadata:
    return AudiobookMetadata(title=title, authors=["Author"], provider=provider)


def _cache(tmp_path) -> MetadataCache:
    return MetadataCache(tmp_path / "cache.json", save_delay=60)


class TestBuildQuery:
    def test_from_filename(self):
        assert build_query(_file("Tolkien - The Hobbit")) == "The Hobbit Tolkien"

    def test_from_tags(self):
        f = _file("track01")
        f.file_metadata = AudiobookMetadata(title="The Hobbit (Unabridged)", authors=["J.R.R. Tolkien"])
        assert build_query(f) == "The Hobbit J.R.R. Tolkien"

    def test_title_override(self):
        assert build_query(_file("Book1 - Part 2"), title="Book1") == "Book1"


class TestResolve:
    def test_first_non_empty_provider_wins(self, tmp_path):
        a = FakeProvider("A")
        b = FakeProvider("B", results=[_md("From B", "B"), _md("Second", "B")])
        matcher = MetadataMatcher([a, b], _cache(tmp_path))

        result = matcher.match(_file("Dune"))

        assert result.matched
        assert result.metadata.title == "From B"
        assert result.source == "B"
        assert a.queries == ["Dune"]
        assert b.queries == ["Dune"]

    def test_failing_provider_falls_through(self, tmp_path):
        a = FakeProvider("A", error=ProviderError("A", "HTTP 500", 500))
        b = FakeProvider("B", results=[_md("From B")])
        matcher = MetadataMatcher([a, b], _cache(tmp_path))

        assert matcher.match(_file("Dune")).metadata.title == "From B"

    def test_later_providers_not_called_after_match(self, tmp_path):
        a = FakeProvider("A", results=[_md("From A")])
        b = FakeProvider("B", results=[_md("From B")])
        MetadataMatcher([a, b], _cache(tmp_path)).match(_file("Dune"))
        assert b.queries == []

    def test_no_providers_is_no_match(self, tmp_path):
        result = MetadataMatcher([], _cache(tmp_path)).match(_file("Dune"))
        assert not result.matched
        assert result.source == "none"

    def test_all_fail_is_no_match(self, tmp_path):
        a = FakeProvider("A", error=RuntimeError("boom"))
        result = MetadataMatcher([a], _cache(tmp_path)).match(_file("Dune"))
        assert not result.matched

    def test_result_cached_under_query_and_path(self, tmp_path):
        cache = _cache(tmp_path)
        a = FakeProvider("A", results=[_md("Dune")])
        f = _file("Dune")
        MetadataMatcher([a], cache).match(f)

        assert cache.get_for_query("dune").title == "Dune"
        assert cache.get_for_file(f.path).title == "Dune"

    def test_cache_hit_skips_providers(self, tmp_path):
        cache = _cache(tmp_path)
        cache.save_for_query("Dune", _md("Cached"))
        a = FakeProvider("A", results=[_md("Fresh")])
        f = _file("Dune")

        result = MetadataMatcher([a], cache).match(f)

        assert result.metadata.title == "Cached"
        assert result.source == "cache-query"
        assert result.from_cache
        assert a.queries == []
        assert cache.get_for_file(f.path).title == "Cached"

    def test_path_hit_checked_first(self, tmp_path):
        cache = _cache(tmp_path)
        f = _file("Dune")
        cache.save_for_file(f.path, _md("By Path"))
        cache.save_for_query("Dune", _md("By Query"))

        result = MetadataMatcher([], cache).match(f)

        assert result.metadata.title == "By Path"
        assert result.source == "cache-path"

    def test_collection_caches_every_member(self, tmp_path):
        cache = _cache(tmp_path)
        files = [_file("Book1"), _file("Book1 - Part 2")]
        collection = AudiobookCollection.from_files(files, "Book1")
        a = FakeProvider("A", results=[_md("Book One")])

        result = MetadataMatcher([a], cache).match(collection)

        assert a.queries == ["Book1"]
        assert result.metadata.title == "Book One"
        for f in files:
            assert cache.get_for_file(f.path).title == "Book One"

    def test_identical_concurrent_queries_hit_provider_once(self, tmp_path):
        a = FakeProvider("A", results=[_md("Dune")], delay=0.05)
        matcher = MetadataMatcher([a], _cache(tmp_path))
        works = [_file("Dune", "/lib/one"), _file("Dune", "/lib/two")]

        batch = matcher.match_many(works, max_workers=2)

        assert batch.matched == 2
        assert a.queries == ["Dune"]

    def test_query_locks_released_after_use(self, tmp_path):
        a = FakeProvider("A", results=[_md("Found")], delay=0.01)
        matcher = MetadataMatcher([a], _cache(tmp_path))
        works = [_file(f"Book {i}", f"/lib/{i}") for i in range(6)] + [_file("Dune", "/lib/x")] * 2

        matcher.match_many(works, max_workers=3)
        unmatched = MetadataMatcher([], _cache(tmp_path))
        assert not unmatched.match_file(_file("Nothing")).matched

        assert matcher._key_locks == {}
        assert unmatched._key_locks == {}


class TestMatchMany:
    def test_counts_and_order(self, tmp_path):
        a = FakeProvider("A", results=[_md("Hit")])
        empty = FakeProvider("Empty")
        matcher = MetadataMatcher([a], _cache(tmp_path))
        works = [_file(f"Book {c}") for c in "ABC"]
        seen = []

        batch = matcher.match_many(works, max_workers=2, on_result=lambda w, r: seen.append(w))

        assert batch.total == 3
        assert batch.matched == 3
        assert [r.query for r in batch.results] == ["Book A", "Book B", "Book C"]
        assert len(seen) == 3

        batch = MetadataMatcher([empty], _cache(tmp_path / "other")).match_many(works)
        assert batch.unmatched == 3

    def test_empty_batch(self, tmp_path):
        batch = MetadataMatcher([], _cache(tmp_path)).match_many([])
        assert batch.total == 0
        assert batch.results == []

    def test_cancel_before_start(self, tmp_path):
        a = FakeProvider("A", results=[_md("Hit")])
        token = CancelToken()
        token.cancel()

        batch = MetadataMatcher([a], _cache(tmp_path)).match_many(
            [_file("One"), _file("Two")], cancel=token,
        )

        assert batch.cancelled
        assert batch.results == []
        assert a.queries == []

    def test_cancel_mid_batch_keeps_finished(self, tmp_path):
        a = FakeProvider("A", results=[_md("Hit")])
        token = CancelToken()
        works = [_file(f"Book {i}") for i in range(5)]

        def _stop_after_first(work, result):
            token.cancel()

        batch = MetadataMatcher([a], _cache(tmp_path)).match_many(
            works, max_workers=1, cancel=token, on_result=_stop_after_first,
        )

        assert batch.cancelled
        assert batch.matched == 1
        assert len(batch.results) == 1


class TestManualSearch:
    def test_pools_and_ranks_every_provider(self, tmp_path):
        cache = _cache(tmp_path)
        a = FakeProvider("A", results=[_md("Cookbook", "A")])
        b = FakeProvider("B", results=[_md("Project Hail Mary", "B")])
        matcher = MetadataMatcher([a, b], cache)

        results = matcher.search("Project Hail Mary")

        assert [r.title for r in results] == ["Project Hail Mary", "Cookbook"]
        assert len(cache) == 0

    def test_failing_provider_skipped(self, tmp_path):
        a = FakeProvider("A", error=ProviderError("A", "down"))
        b = FakeProvider("B", results=[_md("Dune")])
        assert [r.title for r in MetadataMatcher([a, b], _cache(tmp_path)).search("Dune")] == ["Dune"]

    def test_blank_query(self, tmp_path):
        a = FakeProvider("A", results=[_md("Dune")])
        assert MetadataMatcher([a], _cache(tmp_path)).search("  ") == []
        assert a.queries == []

    def test_search_covers(self, tmp_path):
        a = FakeProvider("A", results=[
            AudiobookMetadata(title="x", thumbnail_url="https://img/1"),
            AudiobookMetadata(title="y"),
        ])
        b = FakeProvider("B", results=[AudiobookMetadata(title="z", thumbnail_url="https://img/1")])
        assert MetadataMatcher([a, b], _cache(tmp_path)).search_covers("x") == ["https://img/1"]


class TestApiKeys:
    def test_update_api_key(self, tmp_path):
        a = FakeProvider("A")
        matcher = MetadataMatcher([a], _cache(tmp_path))
        assert matcher.update_api_key("A", "secret")
        assert a.api_key == "secret"
        assert not matcher.update_api_key("Missing", "x")
