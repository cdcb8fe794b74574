"""Filename and path heuristics for title/author/series extraction.

Pure functions, no filesystem access. Everything here works on the
filename stem and the name of its parent directory only.
"""

import re
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

log = logger.bind(stage="parser")

# Words that mark text as part of a title rather than an author name
TITLE_KEYWORDS = ("book", "part", "volume", "chapter", "series")

# Parent folders that say nothing about the book
GENERIC_FOLDERS = frozenset({"audio", "audiobooks", "books", "files", "media", "library"})

UNKNOWN_AUTHOR = "Unknown Author"

_NOISE_RE = re.compile(r"\b(?:Audiobook|Unabridged)\b", re.IGNORECASE)
_AUTHOR_TITLE_RE = re.compile(r"^(.*?)\s+-\s+(.*)$")
_TITLE_BY_RE = re.compile(r"^(.*?)\s+by\s+(.*)$", re.IGNORECASE)
_BY_SUFFIX_RE = re.compile(r".*\sby\s+(.*?)$", re.IGNORECASE)
_SERIES_BOOK_RE = re.compile(r"^(.*?)\s+Book\s+(\d+)\s+-\s+(.*)$", re.IGNORECASE)
_DIR_SPLIT_RE = re.compile(r"^(.*?)\s+-\s+(.*?)$")

_SERIES_NUMBER_TITLE_RE = re.compile(r"^(?:Book\s+)?(\d+)\s*[-_:]\s*(.+)$", re.IGNORECASE)
_CHAPTER_PREFIX_RE = re.compile(
    r"^(?:Chapter|Track|Part|CD|Disc)\s*\d+\s*[-_:]\s*", re.IGNORECASE,
)
_OF_PREFIX_RE = re.compile(r"^of\s+\d+\s*[-_:]\s*", re.IGNORECASE)
_NUMBER_PREFIX_RE = re.compile(r"^\d+\s*[-_:]\s*")

# Ordinal detection, most specific first
_ORDINAL_PATTERNS = (
    re.compile(r"\b(?:chapter|kapitel|ch)\.?\s*(\d+)", re.IGNORECASE),
    re.compile(r"\b(?:part|pt)\.?\s*(\d+)", re.IGNORECASE),
    re.compile(r"\b(?:disc|disk|cd)\s*(\d+)", re.IGNORECASE),
    re.compile(r"\btrack\s*(\d+)", re.IGNORECASE),
    re.compile(r"\bbook\s*(\d+)", re.IGNORECASE),
    re.compile(r"^(\d+)(?:\D|$)"),
    re.compile(r"(?:^|\D)(\d+)$"),
)

_ORDINAL_SUFFIX_RE = re.compile(
    r"[\s_\-.,]*[\(\[]?\b(?:chapter|kapitel|ch|part|pt|disc|disk|cd|track)\.?\s*\d+"
    r"(?:\s*of\s*\d+)?[\)\]]?$",
    re.IGNORECASE,
)
_ORDINAL_PREFIX_RE = re.compile(
    r"^(?:(?:chapter|kapitel|ch|part|pt|disc|disk|cd|track)\.?\s*)?\d+"
    r"(?:\s*of\s*\d+)?\s*(?:[-_:.]\s*|\s+|$)",
    re.IGNORECASE,
)
_TRAILING_NUMBER_RE = re.compile(r"[\s_\-]+\d{1,3}$")
_ABRIDGED_RE = re.compile(r"\s*[\(\[]\s*(?:un)?abridged\s*[\)\]]", re.IGNORECASE)
_SERIES_POSITION_RE = re.compile(
    r"(?:book|volume|vol\.?|#|part)\s*(\d+(?:\.\d+)?)", re.IGNORECASE,
)
_AUTHOR_SPLIT_RE = re.compile(r"\s*(?:,|;|&|\band\b)\s*", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedFilename:
    """Heuristic fields extracted from a filename and its parent directory."""

    title: str
    author: str | None = None
    series: str | None = None
    series_position: str | None = None

    @property
    def has_author(self) -> bool:
        return bool(self.author)

    @property
    def has_series(self) -> bool:
        return bool(self.series)


def looks_like_title(text: str) -> bool:
    """True when text contains a word that usually belongs to a title."""
    lower = text.lower()
    return any(keyword in lower for keyword in TITLE_KEYWORDS)


def clean_name(filename: str) -> str:
    """Drop edition noise and separator characters from a filename stem.

    Underscores and dots become spaces. Hyphens are kept so that the
    " - " separator between author and title survives.
    """
    name = re.sub(r"[_.]", " ", filename)
    name = _NOISE_RE.sub("", name)
    name = re.sub(r"\s+", " ", name).strip()
    # Orphaned separators left behind by noise removal
    name = re.sub(r"^-\s+|\s+-$", "", name).strip()
    return name


def parse_filename(filename: str, full_path: str | Path | None = None) -> ParsedFilename:
    """Extract title, author and series hints from a filename.

    Patterns are tried in priority order and the first match wins:
    "Author - Title", "Title by Author", "Series Book N - Title", then the
    parent directory name, and finally the cleaned filename as the title.
    """
    name = clean_name(filename)

    m = _AUTHOR_TITLE_RE.match(name)
    if m:
        author_part, title_part = m.group(1).strip(), m.group(2).strip()
        if author_part and title_part and not looks_like_title(author_part):
            return ParsedFilename(title=title_part, author=author_part)

    m = _TITLE_BY_RE.match(name)
    if m and m.group(1).strip() and m.group(2).strip():
        return ParsedFilename(title=m.group(1).strip(), author=m.group(2).strip())

    m = _SERIES_BOOK_RE.match(name)
    if m:
        return ParsedFilename(
            title=m.group(3).strip(),
            series=m.group(1).strip(),
            series_position=m.group(2).strip(),
        )

    if full_path is not None:
        from_dir = _parse_directory(Path(full_path))
        if from_dir is not None:
            return ParsedFilename(
                title=name,
                author=from_dir.author,
                series=from_dir.series,
                series_position=from_dir.series_position,
            )

    return ParsedFilename(title=name)


def _parse_directory(full_path: Path) -> ParsedFilename | None:
    """Read an "X - Y" parent directory as author and title, either way round."""
    parent = full_path.parent.name
    if not parent or parent.lower() in GENERIC_FOLDERS:
        return None

    m = _DIR_SPLIT_RE.match(parent)
    if not m:
        return None

    first, second = m.group(1).strip(), m.group(2).strip()
    if not first or not second:
        return None
    if not looks_like_title(first):
        return ParsedFilename(title=second, author=first)
    if not looks_like_title(second):
        return ParsedFilename(title=first, author=second)
    return None


def clean_for_display(filename: str) -> str:
    """Strip numbering prefixes and author prefixes for presentation."""
    m = _SERIES_NUMBER_TITLE_RE.match(filename)
    if m:
        return m.group(2)

    cleaned = _CHAPTER_PREFIX_RE.sub("", filename, count=1)
    cleaned = _OF_PREFIX_RE.sub("", cleaned, count=1)
    cleaned = _NUMBER_PREFIX_RE.sub("", cleaned, count=1)

    m = _AUTHOR_TITLE_RE.match(cleaned)
    if m and not looks_like_title(m.group(1)):
        return m.group(2)

    return cleaned


def extract_author(filename: str, full_path: str | Path | None = None) -> str:
    """Best-effort author from a filename or its directory."""
    m = _AUTHOR_TITLE_RE.match(filename)
    if m and m.group(1).strip() and not looks_like_title(m.group(1)):
        return m.group(1).strip()

    m = _BY_SUFFIX_RE.match(filename)
    if m and m.group(1).strip():
        return m.group(1).strip()

    if full_path is not None:
        from_dir = _parse_directory(Path(full_path))
        if from_dir is not None and from_dir.has_author:
            return from_dir.author

    return UNKNOWN_AUTHOR


def generate_search_query(parsed: ParsedFilename) -> str:
    """Join title, author and series into a provider query."""
    parts = [parsed.title] if parsed.title else []
    if parsed.has_author:
        parts.append(parsed.author)
    if parsed.has_series:
        parts.append(parsed.series)
    query = " ".join(parts)
    log.debug(f"Generated search query: {query!r}")
    return query


def clean_audiobook_title(title: str) -> str:
    """Remove (Unabridged)/(Abridged) markers and stray whitespace."""
    cleaned = _ABRIDGED_RE.sub("", title)
    cleaned = _NOISE_RE.sub("", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip(" -")


def extract_ordinal(filename: str) -> int | None:
    """Detect the part/chapter/disc number of a file, if any."""
    for pattern in _ORDINAL_PATTERNS:
        m = pattern.search(filename)
        if m:
            return int(m.group(1))
    return None


def strip_ordinal(name: str) -> str:
    """Remove part/chapter numbering so all parts of a work share a title.

    "Book1 - Part 2" -> "Book1", "01 - The Hobbit" -> "The Hobbit",
    "The Hobbit CD 3" -> "The Hobbit".
    """
    stripped = name.strip()
    while True:
        reduced = _ORDINAL_SUFFIX_RE.sub("", stripped).strip(" -_.,")
        if reduced == stripped or not reduced:
            break
        stripped = reduced

    reduced = _ORDINAL_PREFIX_RE.sub("", stripped, count=1).strip(" -_.,")
    if reduced:
        stripped = reduced

    reduced = _TRAILING_NUMBER_RE.sub("", stripped).strip(" -_.,")
    if reduced:
        stripped = reduced
    return stripped


def work_title(filename: str) -> str:
    """Title shared by every part of a multi-file work.

    Ordinals come off first so "Dune - Part 2" stays "Dune"; what remains
    goes through parse_filename, so "Tolkien - The Hobbit - Part 1" yields
    "The Hobbit".
    """
    base = strip_ordinal(clean_audiobook_title(clean_name(filename)))
    return clean_audiobook_title(parse_filename(base).title) or base


def extract_series_position(text: str) -> str:
    """Find "Book 3", "Vol. 2", "#4" style positions; empty string if none."""
    m = _SERIES_POSITION_RE.search(text)
    return m.group(1) if m else ""


def parse_authors(text: str) -> list[str]:
    """Split an author string on commas, semicolons, '&' and 'and'."""
    if not text or not text.strip():
        return []
    return [a.strip() for a in _AUTHOR_SPLIT_RE.split(text) if a and a.strip()]
