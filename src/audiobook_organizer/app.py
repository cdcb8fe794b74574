"""Wiring of cache, providers, matcher, scanner and library behind one object.

This is the surface a presentation layer (the CLI here) talks to. It owns
the data-directory lock for its lifetime and flushes the cache on close.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from .cache import MetadataCache
from .concurrency import CancelToken, acquire_global_lock
from .events import EventBus
from .library import LibraryModel, Work
from .matcher import MetadataMatcher
from .models import AudiobookMetadata, BatchResult, MatchResult, ScanResult
from .scanner import DirectoryScanner
from .storage import LibraryStorage

if TYPE_CHECKING:
    from .api.base import MetadataProvider
    from .config import OrganizerConfig

log = logger.bind(stage="app")


class Organizer:
    """Application facade over the library model and metadata matcher."""

    def __init__(
        self,
        config: OrganizerConfig,
        providers: list[MetadataProvider] | None = None,
        lock: bool = True,
    ) -> None:
        self.config = config
        config.ensure_dirs()
        self._lock_handle = acquire_global_lock(config.lock_dir, skip=not lock)

        self.cache = MetadataCache(config.cache_path, save_delay=config.cache_save_delay)
        self.matcher = MetadataMatcher(
            providers if providers is not None else config.build_providers(), self.cache,
        )
        self.scanner = DirectoryScanner(
            excluded_dirs=config.excluded_dirs, read_tags=config.read_tags,
        )
        self.library = LibraryModel(
            LibraryStorage(config.library_path), self.scanner, self.matcher, EventBus(),
        )
        self.library.load()
        self.cancel_token = CancelToken()

    def __enter__(self) -> Organizer:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def events(self) -> EventBus:
        return self.library.bus

    def works(self) -> list[Work]:
        return self.library.works()

    def scan_directory(self, path: Path, match: bool | None = None, recursive: bool | None = None) -> ScanResult:
        return self.library.add_directory(
            Path(path),
            recursive=self.config.recursive_scan if recursive is None else recursive,
            match=self.config.match_on_scan if match is None else match,
            cancel=self.cancel_token,
            max_workers=self.config.max_parallel_matches,
        )

    def match(self, path: Path) -> MatchResult:
        return self.library.match_work(path)

    def match_all(self, on_result=None) -> BatchResult:
        return self.library.match_works(
            cancel=self.cancel_token,
            max_workers=self.config.max_parallel_matches,
            on_result=on_result,
        )

    def search(self, query: str, author_hint: str = "") -> list[AudiobookMetadata]:
        return self.matcher.search(query, author_hint)

    def apply_metadata(self, path: Path, metadata: AudiobookMetadata) -> Work:
        return self.library.apply_metadata(path, metadata)

    def clear_cache(self) -> None:
        self.cache.clear()

    def cancel(self) -> None:
        self.cancel_token.cancel()

    def close(self) -> None:
        self.cache.close()
        if self._lock_handle is not None:
            self._lock_handle.close()
            self._lock_handle = None
        log.debug("Organizer closed")
