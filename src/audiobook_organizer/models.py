"""Core enums, constants, and data types for the audiobook organizer.

Enums:
    MetadataUpdateMode -- How fetched metadata is merged into a work's existing
                          metadata (enhance, update, replace, direct).
    LibraryEvent       -- Change notifications published by the library model.
    ProviderName       -- Identifiers of the built-in metadata providers.
    ShelfType          -- Kind of shelf (custom, series, author, genre, year, favorite).

Data types:
    AudiobookMetadata   -- Bibliographic record plus user-owned data (rating,
                           tags, favorite, bookmarks, notes). JSON form uses
                           camelCase keys and ignores unknown keys on load.
    AudiobookFile       -- One audio file on disk with online and embedded metadata.
    AudiobookCollection -- Ordered multi-file work sharing one metadata record.
    Shelf               -- User-curated or automatic series grouping of works.
    ScanResult          -- Grouped output of a directory scan.
    MatchResult         -- Outcome of matching one work against cache/providers.
    BatchResult         -- Counters for a batch match run.
"""

from __future__ import annotations

import dataclasses
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path
from typing import Any

from .parser import (
    clean_for_display,
    extract_author,
    extract_ordinal,
    parse_filename,
)


class MetadataUpdateMode(StrEnum):
    ENHANCE = "enhance"
    UPDATE = "update"
    REPLACE = "replace"
    DIRECT = "direct"


class LibraryEvent(StrEnum):
    FILES_CHANGED = "files-changed"
    METADATA_CHANGED = "metadata-changed"
    USER_DATA_CHANGED = "user-data-changed"
    FILE_REPLACED = "file-replaced"
    LIBRARY_CLEARED = "library-cleared"
    SHELVES_CHANGED = "shelves-changed"


class ProviderName(StrEnum):
    GOOGLE_BOOKS = "google_books"
    OPEN_LIBRARY = "open_library"
    AUDIBLE = "audible"


AUDIO_EXTENSIONS = frozenset({
    ".mp3", ".m4a", ".m4b", ".aac", ".flac", ".ogg", ".wma", ".wav", ".opus",
})

# Containers whose embedded tags are worth reading
TAG_EXTENSIONS = frozenset({".mp3", ".m4a", ".m4b", ".flac", ".ogg", ".opus"})

DEFAULT_EXCLUDED_DIRS = (
    "To - DO", "To-DO", "ToDo", "To_DO",
    "temp", "temporary", "incomplete", "working", "in progress",
)


def utcnow() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    return [str(v) for v in value if v is not None and str(v)]


def _require_dict(data: Any, kind: str) -> dict:
    if not isinstance(data, dict):
        raise TypeError(f"{kind} must be a JSON object, got {type(data).__name__}")
    return data


def _object_list(value: Any, kind: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"{kind} must be a list, got {type(value).__name__}")
    return value


def _opt_float(value: Any) -> float | None:
    return None if value is None or value == "" else float(value)


def _opt_int(value: Any) -> int | None:
    return None if value is None or value == "" else int(value)


@dataclass
class Bookmark:
    position: float
    title: str = ""
    note: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "position": self.position,
            "createdAt": self.created_at,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Bookmark:
        data = _require_dict(data, "bookmark")
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            title=str(data.get("title") or ""),
            position=float(data.get("position") or 0.0),
            created_at=str(data.get("createdAt") or utcnow()),
            note=str(data.get("note") or ""),
        )


@dataclass
class Note:
    content: str
    position: float | None = None
    chapter: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "createdAt": self.created_at,
            "position": self.position,
            "chapter": self.chapter,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Note:
        data = _require_dict(data, "note")
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            content=str(data.get("content") or ""),
            created_at=str(data.get("createdAt") or utcnow()),
            position=_opt_float(data.get("position")),
            chapter=data.get("chapter"),
        )


# Fields owned by metadata providers; replaced on update/replace
PROVIDER_FIELDS = (
    "title", "authors", "description", "publisher", "published_date",
    "categories", "average_rating", "ratings_count", "thumbnail_url",
    "language", "series", "series_position", "provider",
)

# Facts read from the audio file itself
AUDIO_FIELDS = ("audio_duration", "bitrate", "channels", "sample_rate", "file_format")

# Fields owned by the user; never touched by provider merges
USER_FIELDS = (
    "user_rating", "user_tags", "is_favorite", "bookmarks", "notes",
    "playback_position", "last_played",
)


@dataclass
class AudiobookMetadata:
    """Bibliographic record for one work plus the user's own data."""

    id: str = ""
    title: str = ""
    authors: list[str] = field(default_factory=list)
    description: str = ""
    publisher: str = ""
    published_date: str = ""
    categories: list[str] = field(default_factory=list)
    average_rating: float = 0.0
    ratings_count: int = 0
    thumbnail_url: str = ""
    language: str = ""
    series: str = ""
    series_position: str = ""
    provider: str = ""

    audio_duration: float | None = None
    bitrate: int | None = None
    channels: int | None = None
    sample_rate: int | None = None
    file_format: str = ""

    user_rating: int = 0
    user_tags: list[str] = field(default_factory=list)
    is_favorite: bool = False
    bookmarks: list[Bookmark] = field(default_factory=list)
    notes: list[Note] = field(default_factory=list)
    playback_position: float | None = None
    last_played: str | None = None

    # -- Derived --

    @property
    def authors_formatted(self) -> str:
        return ", ".join(self.authors) if self.authors else "Unknown"

    @property
    def primary_author(self) -> str:
        return self.authors[0] if self.authors else "Unknown"

    @property
    def year(self) -> str:
        head = self.published_date[:4]
        return head if re.fullmatch(r"\d{4}", head) else ""

    @property
    def is_complete(self) -> bool:
        """Title, at least one author, and one of series/description/date."""
        return bool(
            self.title.strip()
            and any(a.strip() for a in self.authors)
            and (self.series or self.description or self.published_date)
        )

    # -- Merging --

    def enhance(self, other: AudiobookMetadata) -> AudiobookMetadata:
        """Fill only the empty fields from other; nothing set is overwritten."""
        changes = {}
        for name in ("id",) + PROVIDER_FIELDS + AUDIO_FIELDS:
            if not getattr(self, name) and getattr(other, name):
                changes[name] = getattr(other, name)
        return dataclasses.replace(self, **changes)

    def update_version(self, other: AudiobookMetadata) -> AudiobookMetadata:
        """Take other's provider fields, keep our id, audio facts and user data."""
        changes = {name: getattr(other, name) for name in PROVIDER_FIELDS}
        for name in AUDIO_FIELDS:
            if getattr(other, name):
                changes[name] = getattr(other, name)
        changes["id"] = self.id or other.id
        return dataclasses.replace(self, **changes)

    def replace_book(self, other: AudiobookMetadata) -> AudiobookMetadata:
        """Switch to a different book: provider fields from other, user data reset."""
        updated = self.update_version(other)
        defaults = AudiobookMetadata()
        return dataclasses.replace(
            updated, **{name: getattr(defaults, name) for name in USER_FIELDS},
        )

    def merge(self, other: AudiobookMetadata, mode: MetadataUpdateMode) -> AudiobookMetadata:
        if mode == MetadataUpdateMode.ENHANCE:
            return self.enhance(other)
        if mode == MetadataUpdateMode.UPDATE:
            return self.update_version(other)
        if mode == MetadataUpdateMode.REPLACE:
            return self.replace_book(other)
        return dataclasses.replace(other, id=other.id or self.id)

    def with_user_data(self, **changes: Any) -> AudiobookMetadata:
        unknown = set(changes) - set(USER_FIELDS)
        if unknown:
            raise ValueError(f"Not user-owned fields: {sorted(unknown)}")
        return dataclasses.replace(self, **changes)

    # -- Serialization --

    def to_dict(self) -> dict:
        data: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if f.name in ("bookmarks", "notes"):
                value = [item.to_dict() for item in value]
            elif isinstance(value, list):
                value = list(value)
            data[_camel(f.name)] = value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> AudiobookMetadata:
        """Build from camelCase JSON. Unknown keys are ignored.

        Raises TypeError/ValueError when a known key holds an unusable value.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Expected a JSON object, got {type(data).__name__}")

        def get(name: str, default: Any = None) -> Any:
            value = data.get(_camel(name))
            return default if value is None else value

        return cls(
            id=str(get("id", "")),
            title=str(get("title", "")),
            authors=_str_list(get("authors")),
            description=str(get("description", "")),
            publisher=str(get("publisher", "")),
            published_date=str(get("published_date", "")),
            categories=_str_list(get("categories")),
            average_rating=float(get("average_rating", 0.0)),
            ratings_count=int(get("ratings_count", 0)),
            thumbnail_url=str(get("thumbnail_url", "")),
            language=str(get("language", "")),
            series=str(get("series", "")),
            series_position=str(get("series_position", "")),
            provider=str(get("provider", "")),
            audio_duration=_opt_float(get("audio_duration")),
            bitrate=_opt_int(get("bitrate")),
            channels=_opt_int(get("channels")),
            sample_rate=_opt_int(get("sample_rate")),
            file_format=str(get("file_format", "")),
            user_rating=int(get("user_rating", 0)),
            user_tags=_str_list(get("user_tags")),
            is_favorite=bool(get("is_favorite", False)),
            bookmarks=[Bookmark.from_dict(b) for b in _object_list(get("bookmarks"), "bookmarks")],
            notes=[Note.from_dict(n) for n in _object_list(get("notes"), "notes")],
            playback_position=_opt_float(get("playback_position")),
            last_played=get("last_played"),
        )


@dataclass
class AudiobookFile:
    """A single audio file known to the library."""

    path: Path
    filename: str
    extension: str
    size: int = 0
    last_modified: float = 0.0
    metadata: AudiobookMetadata | None = None
    file_metadata: AudiobookMetadata | None = None

    @classmethod
    def from_path(cls, path: Path) -> AudiobookFile:
        """Stat a file on disk. Raises OSError if it cannot be read."""
        st = path.stat()
        return cls(
            path=path,
            filename=path.stem,
            extension=path.suffix.lower(),
            size=st.st_size,
            last_modified=st.st_mtime,
        )

    @property
    def full_name(self) -> str:
        return self.filename + self.extension

    @property
    def display_name(self) -> str:
        for md in (self.metadata, self.file_metadata):
            if md is not None and md.title:
                return md.title
        return clean_for_display(self.filename)

    @property
    def author(self) -> str:
        for md in (self.metadata, self.file_metadata):
            if md is not None and md.authors:
                return md.authors_formatted
        return extract_author(self.filename, self.path)

    @property
    def series(self) -> str:
        for md in (self.metadata, self.file_metadata):
            if md is not None and md.series:
                return md.series
        return parse_filename(self.filename, self.path).series or ""

    @property
    def series_position(self) -> str:
        for md in (self.metadata, self.file_metadata):
            if md is not None and md.series_position:
                return md.series_position
        return parse_filename(self.filename, self.path).series_position or ""

    @property
    def ordinal(self) -> int | None:
        return extract_ordinal(self.filename)

    @property
    def has_complete_metadata(self) -> bool:
        return self.metadata is not None and self.metadata.is_complete

    @property
    def needs_metadata_review(self) -> bool:
        return not self.has_complete_metadata

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "filename": self.filename,
            "extension": self.extension,
            "size": self.size,
            "lastModified": self.last_modified,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "fileMetadata": self.file_metadata.to_dict() if self.file_metadata else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> AudiobookFile:
        data = _require_dict(data, "file entry")
        path = Path(data["path"])
        metadata = data.get("metadata")
        file_metadata = data.get("fileMetadata")
        return cls(
            path=path,
            filename=str(data.get("filename") or path.stem),
            extension=str(data.get("extension") or path.suffix.lower()),
            size=int(data.get("size") or 0),
            last_modified=float(data.get("lastModified") or 0.0),
            metadata=AudiobookMetadata.from_dict(metadata) if metadata else None,
            file_metadata=AudiobookMetadata.from_dict(file_metadata) if file_metadata else None,
        )


def file_sort_key(file: AudiobookFile) -> tuple:
    """Numeric ordinal ascending, files without one last, then by filename."""
    ordinal = file.ordinal
    return (ordinal is None, ordinal or 0, file.filename.lower())


@dataclass
class AudiobookCollection:
    """A multi-file work. Member files share the collection's metadata."""

    title: str
    files: list[AudiobookFile]
    directory_path: Path
    metadata: AudiobookMetadata | None = None

    @classmethod
    def from_files(
        cls,
        files: list[AudiobookFile],
        title: str,
        metadata: AudiobookMetadata | None = None,
    ) -> AudiobookCollection:
        if not files:
            raise ValueError("A collection needs at least one file")
        collection = cls(
            title=title,
            files=list(files),
            directory_path=files[0].path.parent,
            metadata=metadata,
        )
        collection.sort_files()
        return collection

    def sort_files(self) -> None:
        self.files.sort(key=file_sort_key)

    @property
    def paths(self) -> set[Path]:
        return {f.path for f in self.files}

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)

    @property
    def last_modified(self) -> float:
        return max((f.last_modified for f in self.files), default=0.0)

    @property
    def display_name(self) -> str:
        if self.metadata is not None and self.metadata.title:
            return self.metadata.title
        return self.title

    @property
    def author(self) -> str:
        if self.metadata is not None and self.metadata.authors:
            return self.metadata.authors_formatted
        return self.files[0].author if self.files else "Unknown"

    @property
    def has_complete_metadata(self) -> bool:
        return self.metadata is not None and self.metadata.is_complete

    @property
    def files_needing_metadata(self) -> list[AudiobookFile]:
        return [f for f in self.files if f.needs_metadata_review]

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "directoryPath": str(self.directory_path),
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "files": [f.to_dict() for f in self.files],
        }

    @classmethod
    def from_dict(cls, data: dict) -> AudiobookCollection:
        data = _require_dict(data, "collection entry")
        files = [AudiobookFile.from_dict(f) for f in _object_list(data.get("files"), "files")]
        metadata = data.get("metadata")
        directory = data.get("directoryPath")
        return cls(
            title=str(data["title"]),
            files=files,
            directory_path=Path(directory) if directory else files[0].path.parent,
            metadata=AudiobookMetadata.from_dict(metadata) if metadata else None,
        )


class ShelfType(StrEnum):
    SERIES = "series"
    AUTHOR = "author"
    CUSTOM = "custom"
    GENRE = "genre"
    YEAR = "year"
    FAVORITE = "favorite"


@dataclass
class Shelf:
    """A named grouping of works, curated by the user or built from a series.

    Works are referenced by path: a standalone file's path, or the first
    member path of a multi-file collection.
    """

    name: str
    type: ShelfType = ShelfType.CUSTOM
    description: str = ""
    paths: list[Path] = field(default_factory=list)
    cover_image_path: str = ""
    series_name: str = ""
    auto_created: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)

    @classmethod
    def for_series(cls, series: str, paths: list[Path]) -> Shelf:
        return cls(
            name=series,
            type=ShelfType.SERIES,
            paths=list(paths),
            series_name=series,
            auto_created=True,
        )

    @property
    def book_count(self) -> int:
        return len(self.paths)

    def contains(self, path: Path | str) -> bool:
        return Path(path) in self.paths

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": str(self.type),
            "description": self.description,
            "paths": [str(p) for p in self.paths],
            "coverImagePath": self.cover_image_path,
            "seriesName": self.series_name,
            "autoCreated": self.auto_created,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Shelf:
        data = _require_dict(data, "shelf entry")
        name = str(data["name"]).strip()
        if not name:
            raise ValueError("Shelf name is empty")
        try:
            shelf_type = ShelfType(data.get("type") or ShelfType.CUSTOM)
        except ValueError:
            shelf_type = ShelfType.CUSTOM
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            name=name,
            type=shelf_type,
            description=str(data.get("description") or ""),
            paths=[Path(p) for p in _object_list(data.get("paths"), "paths") if p],
            cover_image_path=str(data.get("coverImagePath") or ""),
            series_name=str(data.get("seriesName") or ""),
            auto_created=bool(data.get("autoCreated", False)),
            created_at=str(data.get("createdAt") or utcnow()),
            updated_at=str(data.get("updatedAt") or utcnow()),
        )


@dataclass
class ScanResult:
    """Grouped scan output: display title -> ordered member files."""

    root: Path
    groups: dict[str, list[AudiobookFile]] = field(default_factory=dict)
    skipped: list[Path] = field(default_factory=list)
    cancelled: bool = False

    @property
    def file_count(self) -> int:
        return sum(len(files) for files in self.groups.values())

    def standalone(self) -> list[AudiobookFile]:
        return [files[0] for files in self.groups.values() if len(files) == 1]

    def collections(self) -> list[AudiobookCollection]:
        return [
            AudiobookCollection.from_files(files, title)
            for title, files in self.groups.items()
            if len(files) > 1
        ]


@dataclass
class MatchResult:
    """Outcome of matching one work. metadata is None when nothing matched."""

    query: str
    metadata: AudiobookMetadata | None = None
    source: str = "none"

    @property
    def matched(self) -> bool:
        return self.metadata is not None

    @property
    def from_cache(self) -> bool:
        return self.source.startswith("cache")


@dataclass
class BatchResult:
    """Counters for a batch match run."""

    total: int = 0
    matched: int = 0
    unmatched: int = 0
    failed: int = 0
    cancelled: bool = False
    results: list[MatchResult] = field(default_factory=list)
