"""Persisted library snapshot (watched directories, files, collections, shelves)."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from .errors import StorageError
from .models import AudiobookCollection, AudiobookFile, Shelf

log = logger.bind(stage="storage")

SNAPSHOT_VERSION = 1

# Anything a malformed entry can raise while being decoded
ENTRY_ERRORS = (TypeError, ValueError, KeyError, IndexError, AttributeError)


@dataclass
class LibrarySnapshot:
    directories: list[Path] = field(default_factory=list)
    files: list[AudiobookFile] = field(default_factory=list)
    collections: list[AudiobookCollection] = field(default_factory=list)
    shelves: list[Shelf] = field(default_factory=list)


def _section(data: dict, name: str) -> list:
    value = data.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        log.warning(f"Library section {name!r} is not a list, ignoring it")
        return []
    return value


def _decode(entries: list, decode: Callable[[Any], Any], kind: str) -> list:
    decoded = []
    for entry in entries:
        try:
            decoded.append(decode(entry))
        except ENTRY_ERRORS as exc:
            log.warning(f"Skipping malformed {kind} entry: {exc}")
    return decoded


class LibraryStorage:
    """Reads and atomically writes the library JSON document.

    A missing or corrupt document loads as an empty library; individual
    malformed entries and sections are skipped.
    """

    def __init__(self, library_file: Path) -> None:
        self.library_file = library_file

    def load(self) -> LibrarySnapshot:
        snapshot = LibrarySnapshot()
        if not self.library_file.exists():
            log.debug(f"No library at {self.library_file}, starting empty")
            return snapshot
        try:
            data = json.loads(self.library_file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
            log.warning(f"Unreadable library {self.library_file}, starting empty: {exc}")
            return snapshot
        if not isinstance(data, dict):
            log.warning(f"Library {self.library_file} is not a JSON object, starting empty")
            return snapshot

        snapshot.directories = [
            Path(d) for d in _section(data, "directories") if isinstance(d, str) and d
        ]
        snapshot.files = _decode(_section(data, "files"), AudiobookFile.from_dict, "file")
        snapshot.collections = [
            c for c in _decode(
                _section(data, "collections"), AudiobookCollection.from_dict, "collection",
            )
            if c.files
        ]
        snapshot.shelves = _decode(_section(data, "shelves"), Shelf.from_dict, "shelf")

        log.debug(
            f"Loaded library: {len(snapshot.files)} files, "
            f"{len(snapshot.collections)} collections, {len(snapshot.shelves)} shelves"
        )
        return snapshot

    def save(self, snapshot: LibrarySnapshot) -> None:
        """Write the whole snapshot. Raises StorageError on I/O failure."""
        data = {
            "version": SNAPSHOT_VERSION,
            "directories": [str(d) for d in snapshot.directories],
            "files": [f.to_dict() for f in snapshot.files],
            "collections": [c.to_dict() for c in snapshot.collections],
            "shelves": [s.to_dict() for s in snapshot.shelves],
        }
        try:
            self._atomic_write(data)
        except OSError as exc:
            log.error(f"Failed to write library {self.library_file}: {exc}")
            raise StorageError(f"Failed to write library {self.library_file}: {exc}") from exc

    def _atomic_write(self, data: dict) -> None:
        self.library_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.library_file.parent), suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self.library_file)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError as cleanup_err:
                log.warning(f"Failed to cleanup temp file {tmp_path}: {cleanup_err}")
            raise

    def delete(self) -> None:
        try:
            self.library_file.unlink()
        except FileNotFoundError:
            pass
