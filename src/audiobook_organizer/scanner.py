"""Directory walking and grouping of audio files into works.

A work is either a single standalone file or a multi-file collection
(parts, discs, chapters) that shares one title inside one directory.
"""

from __future__ import annotations

import os
import re
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from .errors import ScanError
from .ffprobe import extract_file_metadata
from .models import (
    AUDIO_EXTENSIONS,
    DEFAULT_EXCLUDED_DIRS,
    AudiobookFile,
    ScanResult,
    file_sort_key,
)
from .parser import work_title

if TYPE_CHECKING:
    from .concurrency import CancelToken

log = logger.bind(stage="scanner")

# Filenames that are a bare chapter/part/track marker
_CHAPTER_PATTERNS = (
    re.compile(r"^(?:Chapter|Kapitel|Ch)\.?\s*(\d+)", re.IGNORECASE),
    re.compile(r"^(\d+)(?:\s*|\.)(?:[ _\-]|$)"),
    re.compile(r"^Part\s*(\d+)", re.IGNORECASE),
    re.compile(r"^Disc\s*(\d+)", re.IGNORECASE),
    re.compile(r"^CD\s*(\d+)", re.IGNORECASE),
    re.compile(r"^Track\s*(\d+)", re.IGNORECASE),
    re.compile(r"^\d+\s*(?:Track|CD|Disc|Chapter|Part)\s*(\d+)", re.IGNORECASE),
    re.compile(r"^of\s+(\d+)", re.IGNORECASE),
)

_MARKER_WORDS = frozenset({"chapter", "kapitel", "ch", "part", "disc", "cd", "track"})

_FOLDER_PREFIX_RE = re.compile(r"^[!_\d]+\s*[-_\s]+")
_FOLDER_PARENS_RE = re.compile(r"\s*\([^)]*\)\s*$")
_FOLDER_SUFFIX_RE = re.compile(r"\s+(?:Audiobook|Unabridged|Collection|Series)$", re.IGNORECASE)


def extract_chapter_number(filename: str) -> int | None:
    """Chapter number when the filename starts with a chapter marker."""
    for pattern in _CHAPTER_PATTERNS:
        m = pattern.match(filename)
        if m:
            return int(m.group(1))
    return None


def is_likely_chapter(filename: str) -> bool:
    return extract_chapter_number(filename) is not None


def title_from_directory(name: str) -> str:
    """Readable work title from a folder name like "01 - The Hobbit (Unabridged)"."""
    cleaned = _FOLDER_PREFIX_RE.sub("", name)
    cleaned = _FOLDER_PARENS_RE.sub("", cleaned)
    cleaned = _FOLDER_SUFFIX_RE.sub("", cleaned)
    cleaned = re.sub(r"[_.]", " ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned or name


def _normalize(title: str) -> str:
    s = re.sub(r"[^\w\s]", " ", title.lower())
    return re.sub(r"\s+", " ", s).strip()


class DirectoryScanner:
    """Finds audio files under a root and groups them into works."""

    def __init__(
        self,
        extensions: frozenset[str] = AUDIO_EXTENSIONS,
        excluded_dirs: list[str] | tuple[str, ...] = DEFAULT_EXCLUDED_DIRS,
        read_tags: bool = False,
    ) -> None:
        self.extensions = frozenset(e.lower() for e in extensions)
        self.excluded_dirs = {d.lower() for d in excluded_dirs}
        self.read_tags = read_tags

    def is_excluded(self, dirname: str) -> bool:
        return dirname.lower() in self.excluded_dirs

    def is_audio_file(self, path: Path) -> bool:
        return path.suffix.lower() in self.extensions

    def list_audio_files(
        self,
        root: Path,
        recursive: bool = True,
        cancel: CancelToken | None = None,
    ) -> tuple[list[AudiobookFile], list[Path], bool]:
        """Walk root in sorted order.

        Returns (files, skipped paths, cancelled). Raises ScanError only
        when root itself can't be read.
        """
        root = Path(root)
        if not root.is_dir():
            raise ScanError(root, "not a directory")
        try:
            os.listdir(root)
        except OSError as e:
            raise ScanError(root, str(e)) from e

        files: list[AudiobookFile] = []
        skipped: list[Path] = []

        def _on_error(err: OSError) -> None:
            log.warning(f"Skipping unreadable directory {err.filename}: {err.strerror}")
            skipped.append(Path(err.filename))

        for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
            if recursive:
                dirnames[:] = sorted(d for d in dirnames if not self.is_excluded(d))
            else:
                dirnames[:] = []

            for name in sorted(filenames):
                if cancel is not None and cancel.cancelled:
                    log.info(f"Scan of {root} cancelled after {len(files)} files")
                    return files, skipped, True

                path = Path(dirpath) / name
                if not self.is_audio_file(path):
                    continue
                try:
                    audio = AudiobookFile.from_path(path)
                except OSError as e:
                    log.warning(f"Skipping unreadable file {path}: {e}")
                    skipped.append(path)
                    continue
                if self.read_tags:
                    audio.file_metadata = extract_file_metadata(path)
                files.append(audio)

        log.debug(f"Found {len(files)} audio files under {root} ({len(skipped)} skipped)")
        return files, skipped, False

    def count_audio_files(self, root: Path, recursive: bool = True) -> int:
        files, _, _ = self.list_audio_files(root, recursive=recursive)
        return len(files)

    def scan(
        self,
        root: Path,
        recursive: bool = True,
        cancel: CancelToken | None = None,
    ) -> ScanResult:
        """Group every audio file under root into works keyed by title.

        Deterministic for an unchanged directory tree.
        """
        root = Path(root)
        files, skipped, cancelled = self.list_audio_files(root, recursive, cancel)
        result = ScanResult(root=root, skipped=skipped, cancelled=cancelled)

        by_dir: dict[Path, list[AudiobookFile]] = defaultdict(list)
        for f in files:
            by_dir[f.path.parent].append(f)

        for directory, dir_files in by_dir.items():
            for title, members in self.group_directory(directory, dir_files):
                members.sort(key=file_sort_key)
                result.groups[self._unique_title(result.groups, title, directory)] = members

        log.info(
            f"Scanned {root}: {len(files)} files in {len(result.groups)} works"
            + (" (cancelled)" if cancelled else "")
        )
        return result

    def group_directory(
        self, directory: Path, files: list[AudiobookFile],
    ) -> list[tuple[str, list[AudiobookFile]]]:
        """Split one directory's files into (title, members) groups."""
        buckets: dict[str, list[AudiobookFile]] = {}
        titles: dict[str, str] = {}
        for f in files:
            title = work_title(f.filename) or f.filename
            key = _normalize(title) or f.filename.lower()
            buckets.setdefault(key, []).append(f)
            titles.setdefault(key, title)

        # Only chapter-numbered files with no meaningful shared title: one work
        shared_title_is_marker = len(buckets) == 1 and next(iter(buckets)) in _MARKER_WORDS
        if (
            len(files) > 1
            and (len(buckets) > 1 or shared_title_is_marker)
            and all(is_likely_chapter(f.filename) for f in files)
        ):
            log.debug(f"Treating {len(files)} numbered files in {directory.name!r} as one work")
            return [(title_from_directory(directory.name), list(files))]

        return [(titles[key], members) for key, members in buckets.items()]

    @staticmethod
    def _unique_title(groups: dict, title: str, directory: Path) -> str:
        if title not in groups:
            return title
        candidate = f"{title} ({directory.name})"
        n = 2
        while candidate in groups:
            candidate = f"{title} ({directory.name} {n})"
            n += 1
        return candidate
