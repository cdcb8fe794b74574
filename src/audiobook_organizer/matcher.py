"""Metadata resolution: cache first, then providers in priority order.

Automatic matching takes each provider's top candidate as-is; the first
provider that returns anything wins. Manual search pools candidates from
every provider and ranks them with rapidfuzz (see api.search).
"""

from __future__ import annotations

import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterator, Union

from loguru import logger

from .api.search import dedupe_candidates, rank_candidates
from .cache import query_key
from .models import (
    AudiobookCollection,
    AudiobookFile,
    AudiobookMetadata,
    BatchResult,
    MatchResult,
)
from .parser import clean_audiobook_title, generate_search_query, parse_filename

if TYPE_CHECKING:
    from .api.base import MetadataProvider
    from .cache import MetadataCache
    from .concurrency import CancelToken

log = logger.bind(stage="matcher")

Work = Union[AudiobookFile, AudiobookCollection]


def build_query(file: AudiobookFile, title: str | None = None) -> str:
    """Search text for a file: embedded tags, else filename heuristics.

    title overrides the filename, used for collections whose member
    filenames carry part numbers.
    """
    fm = file.file_metadata
    if title is None and fm is not None and fm.title and fm.authors:
        return f"{clean_audiobook_title(fm.title)} {fm.authors[0]}".strip()

    parsed = parse_filename(title if title is not None else file.filename, file.path)
    query = generate_search_query(parsed)
    if query:
        return clean_audiobook_title(query) or query
    return file.filename


class MetadataMatcher:
    """Resolves works to metadata through the cache and the provider chain."""

    def __init__(self, providers: list[MetadataProvider], cache: MetadataCache) -> None:
        self.providers = list(providers)
        self.cache = cache
        # query key -> [lock, callers holding or waiting on it]
        self._key_locks: dict[str, list] = {}
        self._key_locks_guard = threading.Lock()

    @contextmanager
    def _query_lock(self, query: str) -> Iterator[None]:
        """Serialize identical queries. The entry goes away with its last user."""
        key = query_key(query)
        with self._key_locks_guard:
            entry = self._key_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._key_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._key_locks[key]

    def provider(self, name: str) -> MetadataProvider | None:
        return next((p for p in self.providers if p.name == name), None)

    def update_api_key(self, provider_name: str, api_key: str) -> bool:
        """Hand a new key to one provider. False if no such provider."""
        p = self.provider(provider_name)
        if p is None:
            return False
        p.update_api_key(api_key)
        return True

    # -- Automatic matching --

    def match_file(self, file: AudiobookFile) -> MatchResult:
        return self._resolve(build_query(file), [file.path])

    def match_collection(self, collection: AudiobookCollection) -> MatchResult:
        if not collection.files:
            return MatchResult(query=collection.title)
        query = build_query(collection.files[0], title=collection.title)
        return self._resolve(query, [f.path for f in collection.files])

    def match(self, work: Work) -> MatchResult:
        if isinstance(work, AudiobookCollection):
            return self.match_collection(work)
        return self.match_file(work)

    def _resolve(self, query: str, paths: list[Path]) -> MatchResult:
        primary = paths[0]
        hit = self.cache.get_for_file(primary)
        if hit is not None:
            log.debug(f"Path cache hit for {primary.name}")
            return MatchResult(query=query, metadata=hit, source="cache-path")

        # Serialize identical queries so the second caller reads the first's result
        with self._query_lock(query):
            hit = self.cache.get_for_query(query)
            if hit is not None:
                log.debug(f"Query cache hit for {query!r}")
                for p in paths:
                    self.cache.save_for_file(p, hit)
                return MatchResult(query=query, metadata=hit, source="cache-query")

            metadata, source = self._search_in_order(query)
            if metadata is None:
                log.info(f"No match for {query!r}")
                return MatchResult(query=query)

            self.cache.save_for_query(query, metadata)
            for p in paths:
                self.cache.save_for_file(p, metadata)
            log.info(f"Matched {query!r} -> {metadata.title!r} via {source}")
            return MatchResult(query=query, metadata=metadata, source=source)

    def _search_in_order(self, query: str) -> tuple[AudiobookMetadata | None, str]:
        for provider in self.providers:
            try:
                candidates = provider.search(query)
            except Exception as e:
                log.warning(f"{provider.name} search failed for {query!r}: {e}")
                continue
            if candidates:
                return candidates[0], provider.name
            log.debug(f"{provider.name}: no candidates for {query!r}")
        return None, "none"

    # -- Batch matching --

    def match_many(
        self,
        works: list[Work],
        max_workers: int = 4,
        cancel: CancelToken | None = None,
        on_result: Callable[[Work, MatchResult], None] | None = None,
    ) -> BatchResult:
        """Match works with at most max_workers provider lookups in flight.

        Cancelling stops new submissions; finished matches are kept.
        batch.results follows the input order of the works that ran.
        """
        batch = BatchResult(total=len(works))
        if not works:
            return batch

        queued = list(enumerate(works))
        active: dict[Future, int] = {}
        finished: dict[int, MatchResult] = {}

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            while queued or active:
                while queued and len(active) < max_workers:
                    if cancel is not None and cancel.cancelled:
                        log.info(f"Batch match cancelled with {len(queued)} works left")
                        batch.cancelled = True
                        queued.clear()
                        break
                    index, work = queued.pop(0)
                    active[executor.submit(self.match, work)] = index

                if not active:
                    break
                done, _ = wait(active.keys(), return_when=FIRST_COMPLETED)
                for future in done:
                    index = active.pop(future)
                    work = works[index]
                    try:
                        result = future.result()
                    except Exception as e:
                        log.error(f"Matching failed for {_work_name(work)}: {e}")
                        batch.failed += 1
                        continue
                    finished[index] = result
                    if result.matched:
                        batch.matched += 1
                    else:
                        batch.unmatched += 1
                    if on_result is not None:
                        on_result(work, result)

        batch.results = [finished[i] for i in sorted(finished)]
        log.info(
            f"Batch match: {batch.matched} matched, {batch.unmatched} unmatched, "
            f"{batch.failed} failed of {batch.total}"
        )
        return batch

    # -- Manual search --

    def search(self, query: str, author_hint: str = "") -> list[AudiobookMetadata]:
        """All providers' candidates, de-duplicated and ranked best-first.

        Never touches the cache.
        """
        if not query.strip():
            return []
        pooled: list[tuple[int, AudiobookMetadata]] = []
        for provider in self.providers:
            try:
                candidates = provider.search(query)
            except Exception as e:
                log.warning(f"{provider.name} search failed for {query!r}: {e}")
                continue
            pooled.extend(enumerate(candidates))

        ranked = [c for _, c in rank_candidates(pooled, query, author_hint)]
        return dedupe_candidates(ranked)

    def search_covers(self, query: str, per_provider: int = 3) -> list[str]:
        """Thumbnail URLs from each provider's top results."""
        urls: list[str] = []
        for provider in self.providers:
            try:
                candidates = provider.search(query)
            except Exception as e:
                log.warning(f"{provider.name} cover search failed: {e}")
                continue
            for c in candidates[:per_provider]:
                if c.thumbnail_url and c.thumbnail_url not in urls:
                    urls.append(c.thumbnail_url)
        return urls


def _work_name(work: Work) -> str:
    if isinstance(work, AudiobookCollection):
        return work.title
    return work.full_name
