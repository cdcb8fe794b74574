"""Persistent metadata cache keyed by normalized query or file path.

Entries live in memory and are flushed to a single JSON object on disk
(``{key: metadata}``). Writes are debounced: a burst of saves produces one
disk write once the burst has been quiet for ``save_delay`` seconds.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
import threading
from pathlib import Path

from loguru import logger

from .models import AudiobookMetadata

log = logger.bind(stage="cache")

PATH_KEY_PREFIX = "file:"


def make_key(text: str) -> str:
    """SHA-256 of the trimmed, lower-cased text."""
    return hashlib.sha256(text.strip().lower().encode("utf-8")).hexdigest()


def query_key(query: str) -> str:
    return make_key(query)


def path_key(path: Path | str) -> str:
    """Path keys live in their own namespace so they never collide with queries."""
    return PATH_KEY_PREFIX + make_key(str(path))


class MetadataCache:
    """In-memory key -> metadata map backed by a JSON file."""

    def __init__(self, cache_file: Path, save_delay: float = 0.3) -> None:
        self.cache_file = cache_file
        self.save_delay = save_delay
        self._entries: dict[str, AudiobookMetadata] = {}
        self._lock = threading.RLock()
        # Held across a disk write; taken before _lock, never after it
        self._write_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._dirty = False
        self._load()

    # -- Loading --

    def _load(self) -> None:
        if not self.cache_file.exists():
            log.debug(f"No cache file at {self.cache_file}, starting empty")
            return
        try:
            raw = json.loads(self.cache_file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
            log.warning(f"Unreadable cache file {self.cache_file}, starting empty: {exc}")
            return
        if not isinstance(raw, dict):
            log.warning(f"Cache file {self.cache_file} is not a JSON object, starting empty")
            return

        skipped = 0
        for key, value in raw.items():
            try:
                self._entries[key] = AudiobookMetadata.from_dict(value)
            except (TypeError, ValueError, KeyError, AttributeError) as exc:
                skipped += 1
                log.warning(f"Skipping malformed cache entry {key[:12]}: {exc}")
        log.info(f"Loaded {len(self._entries)} cache entries ({skipped} skipped)")

    # -- Key/value API --

    def get(self, key: str) -> AudiobookMetadata | None:
        with self._lock:
            return self._entries.get(key)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def save(self, key: str, metadata: AudiobookMetadata) -> None:
        """Store metadata under key and schedule a debounced flush.

        A cached thumbnail survives an incoming entry that has none.
        """
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None and existing.thumbnail_url and not metadata.thumbnail_url:
                metadata = AudiobookMetadata.from_dict(
                    {**metadata.to_dict(), "thumbnailUrl": existing.thumbnail_url},
                )
            self._entries[key] = metadata
            self._dirty = True
            self._schedule_flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._entries.pop(key, None) is not None:
                self._dirty = True
                self._schedule_flush()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -- Convenience wrappers for the two key spaces --

    def get_for_query(self, query: str) -> AudiobookMetadata | None:
        return self.get(query_key(query))

    def save_for_query(self, query: str, metadata: AudiobookMetadata) -> None:
        self.save(query_key(query), metadata)

    def get_for_file(self, path: Path | str) -> AudiobookMetadata | None:
        return self.get(path_key(path))

    def save_for_file(self, path: Path | str, metadata: AudiobookMetadata) -> None:
        self.save(path_key(path), metadata)

    # -- Persistence --

    def _schedule_flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = threading.Timer(self.save_delay, self.flush)
        self._timer.daemon = True
        self._timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def flush(self) -> None:
        """Write the whole map to disk now if anything changed."""
        with self._write_lock:
            with self._lock:
                self._cancel_timer()
                if not self._dirty:
                    return
                payload = {key: md.to_dict() for key, md in self._entries.items()}
                self._dirty = False
            try:
                self._atomic_write(payload)
            except OSError as exc:
                log.error(f"Failed to write cache {self.cache_file}: {exc}")
                with self._lock:
                    self._dirty = True
                return
        log.debug(f"Flushed {len(payload)} cache entries to {self.cache_file}")

    def _atomic_write(self, payload: dict) -> None:
        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.cache_file.parent), suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.cache_file)
        except BaseException:
            # Clean up temp file on any failure
            try:
                os.unlink(tmp_path)
            except OSError as cleanup_err:
                log.warning(f"Failed to cleanup temp file {tmp_path}: {cleanup_err}")
            raise

    def clear(self) -> None:
        """Drop every entry, cancel any pending write, delete the file.

        Waits for an in-flight write so it can't recreate the file afterwards.
        """
        with self._write_lock, self._lock:
            self._cancel_timer()
            self._entries.clear()
            self._dirty = False
            try:
                self.cache_file.unlink()
            except FileNotFoundError:
                pass
        log.info("Metadata cache cleared")

    def close(self) -> None:
        """Flush pending writes; call before the process exits."""
        self.flush()
