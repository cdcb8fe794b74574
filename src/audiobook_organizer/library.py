"""The library: known works, their metadata, and the user's own data.

Every mutation is persisted through LibraryStorage before the matching
LibraryEvent is published, so subscribers never observe unsaved state.
A file path belongs to at most one work: either a standalone file or
exactly one collection. Shelves reference works by path; a series shelf
is kept automatically for every series spanning two or more works.
"""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Union

from loguru import logger

from .errors import LibraryError
from .events import EventBus
from .models import (
    AudiobookCollection,
    AudiobookFile,
    AudiobookMetadata,
    BatchResult,
    Bookmark,
    LibraryEvent,
    MatchResult,
    MetadataUpdateMode,
    Note,
    ScanResult,
    Shelf,
    ShelfType,
    utcnow,
)
from .ops.organize import generate_new_filename, move_file, rename_file
from .sanitize import generate_file_id
from .storage import LibrarySnapshot

if TYPE_CHECKING:
    from .concurrency import CancelToken
    from .matcher import MetadataMatcher
    from .scanner import DirectoryScanner
    from .storage import LibraryStorage

log = logger.bind(stage="library")

Work = Union[AudiobookFile, AudiobookCollection]

# Groups merged per persist+publish while adding a directory
SCAN_BATCH_SIZE = 5


class LibraryModel:
    """In-memory library backed by a JSON snapshot."""

    def __init__(
        self,
        storage: LibraryStorage,
        scanner: DirectoryScanner,
        matcher: MetadataMatcher | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.storage = storage
        self.scanner = scanner
        self.matcher = matcher
        self.bus = bus or EventBus()
        self.files: list[AudiobookFile] = []
        self.collections: list[AudiobookCollection] = []
        self.directories: list[Path] = []
        self.shelves: list[Shelf] = []

    # -- Persistence --

    def load(self) -> None:
        """Replace in-memory state with the stored snapshot.

        Entries whose files have vanished are kept until clean() is called.
        """
        snapshot = self.storage.load()
        self.directories = snapshot.directories
        self.files = snapshot.files
        self.collections = snapshot.collections
        self.shelves = snapshot.shelves
        log.info(
            f"Library loaded: {len(self.files)} files, {len(self.collections)} collections, "
            f"{len(self.shelves)} shelves"
        )

    def _commit(self, event: LibraryEvent, payload=None) -> None:
        self._sync_series_shelves()
        self._prune_shelves()
        self.storage.save(LibrarySnapshot(
            directories=list(self.directories),
            files=list(self.files),
            collections=list(self.collections),
            shelves=list(self.shelves),
        ))
        self.bus.publish(event, payload)

    # -- Lookup --

    def works(self) -> list[Work]:
        return [*self.files, *self.collections]

    def all_files(self) -> list[AudiobookFile]:
        """Standalone files and collection members."""
        return [*self.files, *(f for c in self.collections for f in c.files)]

    def known_paths(self) -> set[Path]:
        return {f.path for f in self.all_files()}

    def find(self, path: Path | str) -> Work | None:
        """The work that owns path: a standalone file or a collection."""
        path = Path(path)
        for f in self.files:
            if f.path == path:
                return f
        for c in self.collections:
            if path in c.paths or c.directory_path == path:
                return c
        return None

    def get_file(self, path: Path | str) -> AudiobookFile | None:
        path = Path(path)
        return next((f for f in self.all_files() if f.path == path), None)

    def get_collection(self, title: str) -> AudiobookCollection | None:
        return next((c for c in self.collections if c.title == title), None)

    def _require(self, path: Path | str) -> Work:
        work = self.find(path)
        if work is None:
            raise LibraryError(f"Not in library: {path}")
        return work

    # -- Scanning --

    def add_directory(
        self,
        directory: Path,
        recursive: bool = True,
        match: bool = False,
        cancel: CancelToken | None = None,
        max_workers: int = 4,
    ) -> ScanResult:
        """Scan directory and merge newly found works into the library.

        Already-known paths are left untouched. New works get any metadata
        the cache already holds for their path; with match=True the rest are
        resolved through the matcher afterwards.
        """
        directory = Path(directory).resolve()
        result = self.scanner.scan(directory, recursive=recursive, cancel=cancel)

        if directory not in self.directories:
            self.directories.append(directory)

        known = self.known_paths()
        added: list[Work] = []
        pending = 0
        for title, members in result.groups.items():
            new = [m for m in members if m.path not in known]
            if not new:
                continue
            for m in new:
                self._attach_cached(m)
            work = self._merge_group(title, members, new)
            added.append(work)
            known.update(m.path for m in new)
            pending += 1
            if pending >= SCAN_BATCH_SIZE:
                self._commit(LibraryEvent.FILES_CHANGED, directory)
                pending = 0

        self._commit(LibraryEvent.FILES_CHANGED, directory)
        log.info(f"Added {len(added)} works from {directory}")

        if match and added and self.matcher is not None:
            self.match_works(
                [w for w in added if not w.has_complete_metadata],
                cancel=cancel,
                max_workers=max_workers,
            )
        return result

    def _attach_cached(self, file: AudiobookFile) -> None:
        if self.matcher is None or file.metadata is not None:
            return
        cached = self.matcher.cache.get_for_file(file.path)
        if cached is not None:
            file.metadata = cached

    def _merge_group(
        self, title: str, members: list[AudiobookFile], new: list[AudiobookFile],
    ) -> Work:
        owner = next(
            (w for w in (self.find(m.path) for m in members if m not in new) if w is not None),
            None,
        )
        if owner is None:
            if len(new) == 1:
                self.files.append(new[0])
                return new[0]
            collection = AudiobookCollection.from_files(new, title)
            collection.metadata = next((f.metadata for f in new if f.metadata), None)
            if collection.metadata is not None:
                self._propagate(collection)
            self.collections.append(collection)
            return collection

        if isinstance(owner, AudiobookCollection):
            owner.files.extend(new)
            owner.sort_files()
            if owner.metadata is not None:
                self._propagate(owner)
            return owner

        # A standalone file gained sibling parts
        self.files.remove(owner)
        collection = AudiobookCollection.from_files([owner, *new], title, metadata=owner.metadata)
        if collection.metadata is not None:
            self._propagate(collection)
        self.collections.append(collection)
        return collection

    def remove_directory(self, directory: Path) -> int:
        """Forget the directory and every work beneath it. Returns works removed."""
        directory = Path(directory).resolve()

        def _inside(p: Path) -> bool:
            return p == directory or directory in p.parents

        before = len(self.files) + len(self.collections)
        self.files = [f for f in self.files if not _inside(f.path)]
        self.collections = [c for c in self.collections if not _inside(c.directory_path)]
        self.directories = [d for d in self.directories if d != directory]
        removed = before - len(self.files) - len(self.collections)
        self._commit(LibraryEvent.FILES_CHANGED, directory)
        return removed

    def rescan(self, match: bool = False, cancel: CancelToken | None = None) -> None:
        """Re-scan every watched directory that still exists."""
        for directory in list(self.directories):
            if cancel is not None and cancel.cancelled:
                break
            if directory.is_dir():
                self.add_directory(directory, match=match, cancel=cancel)
            else:
                log.warning(f"Watched directory is gone: {directory}")

    # -- Metadata --

    @staticmethod
    def _propagate(collection: AudiobookCollection) -> None:
        for f in collection.files:
            f.metadata = collection.metadata

    def _set_metadata(
        self, work: Work, metadata: AudiobookMetadata, mode: MetadataUpdateMode,
    ) -> None:
        current = work.metadata
        if current is None:
            merged = AudiobookMetadata(id=generate_file_id(_work_path(work))).merge(metadata, mode)
        else:
            merged = current.merge(metadata, mode)
        work.metadata = merged
        if isinstance(work, AudiobookCollection):
            self._propagate(work)

    def update_metadata(
        self,
        path: Path | str,
        metadata: AudiobookMetadata,
        mode: MetadataUpdateMode = MetadataUpdateMode.UPDATE,
    ) -> Work:
        work = self._require(path)
        self._set_metadata(work, metadata, mode)
        self._commit(LibraryEvent.METADATA_CHANGED, work)
        return work

    def apply_metadata(self, path: Path | str, metadata: AudiobookMetadata) -> Work:
        """Apply a user-chosen search result, keeping the user's own data.

        The choice is cached under the work's paths so later matches reuse it.
        """
        work = self.update_metadata(path, metadata, MetadataUpdateMode.UPDATE)
        if self.matcher is not None:
            for f in _work_files(work):
                self.matcher.cache.save_for_file(f.path, work.metadata)
        return work

    def match_work(self, path: Path | str) -> MatchResult:
        """Resolve one work through the matcher and apply a hit."""
        if self.matcher is None:
            raise LibraryError("No metadata matcher configured")
        work = self._require(path)
        result = self.matcher.match(work)
        if result.matched:
            self._set_metadata(work, result.metadata, MetadataUpdateMode.UPDATE)
            self._commit(LibraryEvent.METADATA_CHANGED, work)
        return result

    def match_works(
        self,
        works: list[Work] | None = None,
        cancel: CancelToken | None = None,
        max_workers: int = 4,
        on_result: Callable[[Work, MatchResult], None] | None = None,
    ) -> BatchResult:
        """Batch-match works (default: everything needing metadata)."""
        if self.matcher is None:
            raise LibraryError("No metadata matcher configured")
        targets = self.works_needing_metadata() if works is None else works

        def _apply(work: Work, result: MatchResult) -> None:
            if result.matched:
                self._set_metadata(work, result.metadata, MetadataUpdateMode.UPDATE)
            if on_result is not None:
                on_result(work, result)

        batch = self.matcher.match_many(
            targets, max_workers=max_workers, cancel=cancel, on_result=_apply,
        )
        if batch.matched:
            self._commit(LibraryEvent.METADATA_CHANGED, None)
        return batch

    # -- User data --

    def _update_user(self, path: Path | str, **changes) -> Work:
        work = self._require(path)
        md = work.metadata or AudiobookMetadata(
            id=generate_file_id(_work_path(work)), title=work.display_name,
        )
        work.metadata = md.with_user_data(**changes)
        if isinstance(work, AudiobookCollection):
            self._propagate(work)
        self._commit(LibraryEvent.USER_DATA_CHANGED, work)
        return work

    def _user_metadata(self, path: Path | str) -> AudiobookMetadata:
        work = self._require(path)
        return work.metadata or AudiobookMetadata()

    def set_favorite(self, path: Path | str, favorite: bool = True) -> Work:
        return self._update_user(path, is_favorite=favorite)

    def set_rating(self, path: Path | str, rating: int) -> Work:
        if not 0 <= rating <= 5:
            raise LibraryError(f"Rating must be between 0 and 5, got {rating}")
        return self._update_user(path, user_rating=rating)

    def set_tags(self, path: Path | str, tags: list[str]) -> Work:
        cleaned = list(dict.fromkeys(t.strip() for t in tags if t.strip()))
        return self._update_user(path, user_tags=cleaned)

    def set_playback_position(self, path: Path | str, position: float) -> Work:
        return self._update_user(path, playback_position=max(0.0, position), last_played=utcnow())

    def add_bookmark(self, path: Path | str, bookmark: Bookmark) -> Work:
        current = self._user_metadata(path).bookmarks
        return self._update_user(path, bookmarks=[*current, bookmark])

    def remove_bookmark(self, path: Path | str, bookmark_id: str) -> Work:
        current = self._user_metadata(path).bookmarks
        return self._update_user(path, bookmarks=[b for b in current if b.id != bookmark_id])

    def add_note(self, path: Path | str, note: Note) -> Work:
        current = self._user_metadata(path).notes
        return self._update_user(path, notes=[*current, note])

    def remove_note(self, path: Path | str, note_id: str) -> Work:
        current = self._user_metadata(path).notes
        return self._update_user(path, notes=[n for n in current if n.id != note_id])

    # -- Partitions and queries --

    def complete_works(self) -> list[Work]:
        return [w for w in self.works() if w.has_complete_metadata]

    def works_needing_metadata(self) -> list[Work]:
        return [w for w in self.works() if not w.has_complete_metadata]

    def works_by_author(self, author: str) -> list[Work]:
        needle = author.strip().lower()
        return [
            w for w in self.works()
            if w.metadata and any(a.lower() == needle for a in w.metadata.authors)
        ]

    def works_by_series(self, series: str) -> list[Work]:
        needle = series.strip().lower()
        works = [w for w in self.works() if w.metadata and w.metadata.series.lower() == needle]
        return sorted(works, key=lambda w: _position_key(w.metadata.series_position))

    def works_by_tag(self, tag: str) -> list[Work]:
        return [w for w in self.works() if w.metadata and tag in w.metadata.user_tags]

    def favorites(self) -> list[Work]:
        return [w for w in self.works() if w.metadata and w.metadata.is_favorite]

    def all_authors(self) -> list[str]:
        return sorted({a for w in self.works() if w.metadata for a in w.metadata.authors})

    def all_series(self) -> list[str]:
        return sorted({w.metadata.series for w in self.works() if w.metadata and w.metadata.series})

    def all_tags(self) -> list[str]:
        return sorted({t for w in self.works() if w.metadata for t in w.metadata.user_tags})

    def statistics(self) -> dict:
        works = self.works()
        providers = Counter(w.metadata.provider for w in works if w.metadata and w.metadata.provider)
        return {
            "works": len(works),
            "standalone_files": len(self.files),
            "collections": len(self.collections),
            "audio_files": len(self.all_files()),
            "total_size": sum(f.size for f in self.all_files()),
            "complete": len(self.complete_works()),
            "needing_metadata": len(self.works_needing_metadata()),
            "favorites": len(self.favorites()),
            "shelves": len(self.shelves),
            "series_shelves": len(self.shelves_by_type(ShelfType.SERIES)),
            "providers": dict(providers),
        }

    # -- Shelves --

    def get_shelf(self, shelf_id: str) -> Shelf | None:
        return next((s for s in self.shelves if s.id == shelf_id), None)

    def _require_shelf(self, shelf_id: str) -> Shelf:
        shelf = self.get_shelf(shelf_id)
        if shelf is None:
            raise LibraryError(f"No such shelf: {shelf_id}")
        return shelf

    def create_shelf(
        self,
        name: str,
        description: str = "",
        paths: list[Path | str] | None = None,
        shelf_type: ShelfType = ShelfType.CUSTOM,
    ) -> Shelf:
        name = name.strip()
        if not name:
            raise LibraryError("Shelf name must not be empty")
        keys = [_work_key(self._require(p)) for p in paths or []]
        shelf = Shelf(
            name=name, type=shelf_type, description=description.strip(),
            paths=list(dict.fromkeys(keys)),
        )
        self.shelves.append(shelf)
        log.info(f"Created shelf {name!r} with {shelf.book_count} works")
        self._commit(LibraryEvent.SHELVES_CHANGED, shelf)
        return shelf

    def update_shelf(
        self,
        shelf_id: str,
        name: str | None = None,
        description: str | None = None,
        cover_image_path: str | None = None,
    ) -> Shelf:
        shelf = self._require_shelf(shelf_id)
        if name is not None:
            if not name.strip():
                raise LibraryError("Shelf name must not be empty")
            shelf.name = name.strip()
        if description is not None:
            shelf.description = description.strip()
        if cover_image_path is not None:
            shelf.cover_image_path = cover_image_path
        shelf.touch()
        self._commit(LibraryEvent.SHELVES_CHANGED, shelf)
        return shelf

    def delete_shelf(self, shelf_id: str) -> None:
        shelf = self._require_shelf(shelf_id)
        self.shelves.remove(shelf)
        log.info(f"Deleted shelf {shelf.name!r}")
        self._commit(LibraryEvent.SHELVES_CHANGED, shelf)

    def add_to_shelf(self, shelf_id: str, path: Path | str) -> Shelf:
        shelf = self._require_shelf(shelf_id)
        work = self._require(path)
        if not any(shelf.contains(f.path) for f in _work_files(work)):
            shelf.paths.append(_work_key(work))
            shelf.touch()
            self._commit(LibraryEvent.SHELVES_CHANGED, shelf)
        return shelf

    def remove_from_shelf(self, shelf_id: str, path: Path | str) -> Shelf:
        shelf = self._require_shelf(shelf_id)
        work = self.find(path)
        targets = {Path(path)} | ({f.path for f in _work_files(work)} if work else set())
        remaining = [p for p in shelf.paths if p not in targets]
        if len(remaining) != len(shelf.paths):
            shelf.paths = remaining
            shelf.touch()
            self._commit(LibraryEvent.SHELVES_CHANGED, shelf)
        return shelf

    def shelves_for(self, path: Path | str) -> list[Shelf]:
        """Every shelf holding the work that owns path."""
        work = self.find(path)
        if work is None:
            return []
        paths = {f.path for f in _work_files(work)}
        return [s for s in self.shelves if any(p in paths for p in s.paths)]

    def shelf_works(self, shelf_id: str) -> list[Work]:
        """Works on a shelf, ordered by series position (unnumbered last)."""
        shelf = self._require_shelf(shelf_id)
        works: list[Work] = []
        for p in shelf.paths:
            work = self.find(p)
            if work is not None and not any(w is work for w in works):
                works.append(work)
        return sorted(works, key=lambda w: _position_key(w.metadata.series_position if w.metadata else ""))

    def shelves_by_type(self, shelf_type: ShelfType) -> list[Shelf]:
        return [s for s in self.shelves if s.type == shelf_type]

    def search_shelves(self, query: str) -> list[Shelf]:
        needle = query.strip().lower()
        return [
            s for s in self.shelves
            if needle in s.name.lower() or needle in s.description.lower()
        ]

    def _sync_series_shelves(self) -> None:
        """Keep one automatic shelf per series that spans two or more works."""
        by_series: dict[str, list[Work]] = {}
        for work in self.works():
            if work.metadata is not None and work.metadata.series:
                by_series.setdefault(work.metadata.series, []).append(work)
        eligible = {series: works for series, works in by_series.items() if len(works) >= 2}

        auto = {s.series_name: s for s in self.shelves if s.auto_created and s.type == ShelfType.SERIES}
        for series, works in eligible.items():
            works.sort(key=lambda w: _position_key(w.metadata.series_position))
            paths = [_work_key(w) for w in works]
            shelf = auto.get(series)
            if shelf is None:
                self.shelves.append(Shelf.for_series(series, paths))
                log.debug(f"Created series shelf {series!r} with {len(paths)} works")
            elif shelf.paths != paths:
                shelf.paths = paths
                shelf.touch()
        self.shelves = [
            s for s in self.shelves
            if not (s.auto_created and s.type == ShelfType.SERIES and s.series_name not in eligible)
        ]

    def _prune_shelves(self) -> None:
        known = self.known_paths()
        for shelf in self.shelves:
            kept = [p for p in shelf.paths if p in known]
            if len(kept) != len(shelf.paths):
                shelf.paths = kept
                shelf.touch()

    def _rekey_shelves(self, old: set[Path], new: Path) -> None:
        for shelf in self.shelves:
            if not any(p in old for p in shelf.paths):
                continue
            rekeyed = [new if p in old else p for p in shelf.paths]
            shelf.paths = list(dict.fromkeys(rekeyed))
            shelf.touch()

    # -- File changes --

    def replace_file(self, old_path: Path | str, new_path: Path | str) -> AudiobookFile:
        """Point a library entry at its new location, keeping its metadata."""
        old = self.get_file(old_path)
        if old is None:
            raise LibraryError(f"Not in library: {old_path}")
        new_path = Path(new_path)
        moved = AudiobookFile.from_path(new_path)
        moved.metadata = old.metadata
        moved.file_metadata = old.file_metadata

        owner = self._require(old_path)
        if isinstance(owner, AudiobookCollection):
            owner.files[owner.files.index(old)] = moved
            owner.sort_files()
            owner.directory_path = owner.files[0].path.parent
        else:
            self.files[self.files.index(old)] = moved
        self._rekey_shelves({old.path}, new_path)
        self._commit(LibraryEvent.FILE_REPLACED, (Path(old_path), new_path))
        return moved

    def rename_work(self, path: Path | str, pattern: str, dry_run: bool = False) -> list[Path]:
        """Rename a work's files from its metadata. Collection members get a part suffix."""
        work = self._require(path)
        if work.metadata is None:
            raise LibraryError(f"No metadata to rename from: {path}")

        renamed: list[Path] = []
        members = _work_files(work)
        for index, f in enumerate(members, start=1):
            new_name = generate_new_filename(f, pattern, work.metadata)
            if isinstance(work, AudiobookCollection):
                stem = new_name[: -len(f.extension)] if f.extension else new_name
                new_name = f"{stem} - Part {index:02d}{f.extension}"
            dest = rename_file(f, new_name, dry_run=dry_run)
            if not dry_run and dest != f.path:
                self.replace_file(f.path, dest)
            renamed.append(dest)
        return renamed

    def move_work(self, path: Path | str, dest_dir: Path, dry_run: bool = False) -> list[Path]:
        work = self._require(path)
        moved: list[Path] = []
        for f in _work_files(work):
            dest = move_file(f, Path(dest_dir), dry_run=dry_run)
            if not dry_run and dest != f.path:
                self.replace_file(f.path, dest)
            moved.append(dest)
        return moved

    def clean(self) -> int:
        """Drop entries whose files no longer exist. Returns files dropped.

        A collection left with one file becomes a standalone file carrying
        the collection's metadata; one left with none is dropped.
        """
        before = len(self.all_files())
        self.files = [f for f in self.files if f.path.exists()]
        survivors = []
        for c in self.collections:
            gone = {f.path for f in c.files if not f.path.exists()}
            if not gone:
                survivors.append(c)
                continue
            c.files = [f for f in c.files if f.path not in gone]
            if c.files:
                self._rekey_shelves(gone, c.files[0].path)
            if len(c.files) == 1:
                single = c.files[0]
                if c.metadata is not None:
                    single.metadata = c.metadata
                self.files.append(single)
                log.debug(f"Collection {c.title!r} reduced to one file, now standalone")
            elif c.files:
                survivors.append(c)
        self.collections = survivors
        dropped = before - len(self.all_files())
        if dropped:
            log.info(f"Removed {dropped} missing files from library")
            self._commit(LibraryEvent.FILES_CHANGED, None)
        return dropped

    def clear(self, keep_directories: bool = False) -> None:
        self.files = []
        self.collections = []
        if not keep_directories:
            self.directories = []
        self._commit(LibraryEvent.LIBRARY_CLEARED, None)


def _work_files(work: Work) -> list[AudiobookFile]:
    if isinstance(work, AudiobookCollection):
        return list(work.files)
    return [work]


def _work_key(work: Work) -> Path:
    """Path a shelf stores for work."""
    if isinstance(work, AudiobookCollection):
        return work.files[0].path
    return work.path


def _work_path(work: Work) -> Path:
    if isinstance(work, AudiobookCollection):
        return work.directory_path / work.title
    return work.path


def _position_key(position: str) -> tuple[int, float, str]:
    try:
        return (0, float(position), "")
    except ValueError:
        return (1, 0.0, position)
