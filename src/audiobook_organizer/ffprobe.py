"""Embedded tag and stream inspection via the ffprobe subprocess."""

import json
import re
import subprocess
from pathlib import Path

from loguru import logger

from .models import TAG_EXTENSIONS, AudiobookMetadata
from .parser import parse_authors

log = logger.bind(stage="ffprobe")

FILE_METADATA_PROVIDER = "File Metadata"

_ALBUM_SERIES_RE = re.compile(r"(.*?)(?:\s+Book\s+|\s*#)(\d+)", re.IGNORECASE)
_ALBUM_SERIES_NAME_RE = re.compile(r"(.*?)\s+Series\b", re.IGNORECASE)


def _run_ffprobe(args: list[str]) -> subprocess.CompletedProcess:
    """Run ffprobe with common flags."""
    return subprocess.run(
        ["ffprobe", "-v", "error"] + args,
        capture_output=True,
        text=True,
    )


def probe(file: Path) -> dict:
    """Return ffprobe's JSON description of format and streams.

    Empty dict when ffprobe is missing, fails, or prints garbage.
    """
    try:
        result = _run_ffprobe([
            "-show_format", "-show_streams", "-of", "json", str(file),
        ])
    except FileNotFoundError:
        log.debug("ffprobe not installed, skipping tag extraction")
        return {}
    if result.returncode != 0:
        log.debug(f"ffprobe failed for {file}: {result.stderr.strip()}")
        return {}
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError:
        return {}


def extract_author_from_tags(tags: dict) -> str:
    """Extract a clean author name from embedded tags.

    Checks album_artist first (more reliable), then artist.
    Strips narrator credits, role annotations, and junk.
    Returns empty string if no usable author found.
    """
    for key in ("album_artist", "artist", "composer"):
        raw = tags.get(key, "")
        if not raw:
            continue
        cleaned = _clean_author_tag(raw)
        if cleaned:
            return cleaned
    return ""


# Role/credit indicators that mean the rest isn't the author
_ROLE_WORDS = frozenset({
    "introduction", "narrator", "narrated", "read", "performed",
    "foreword", "afterword", "translated", "edited", "abridged",
    "unabridged", "producer", "director",
})


def _clean_author_tag(raw: str) -> str:
    """Clean an artist/album_artist tag into a usable author name.

    "Unknown"/"Various Artists" -> empty, "Author - introduction" -> "Author",
    "Author, Narrated by X" -> "Author", "Author; Narrator" -> "Author".
    """
    name = raw.strip()
    if name.lower() in ("", "unknown", "various", "various artists", "n/a", "none"):
        return ""

    if " - " in name:
        left, right = name.split(" - ", 1)
        if any(right.strip().lower().startswith(w) for w in _ROLE_WORDS):
            name = left.strip()

    if ", " in name:
        parts = name.split(", ")
        kept = [parts[0]]
        for part in parts[1:]:
            if any(w in part.lower() for w in _ROLE_WORDS):
                break
            kept.append(part)
        name = ", ".join(kept)

    if "; " in name:
        name = name.split("; ", 1)[0].strip()

    if len(name) < 3:
        return ""
    return name


def series_from_album(album: str) -> tuple[str, str]:
    """Read "Series Book 3" / "Series #3" / "Series Series" album tags."""
    if not album:
        return "", ""
    m = _ALBUM_SERIES_RE.match(album)
    if m and m.group(1).strip():
        return m.group(1).strip(), m.group(2)
    m = _ALBUM_SERIES_NAME_RE.match(album)
    if m and m.group(1).strip():
        return m.group(1).strip(), ""
    return "", ""


def extract_file_metadata(file: Path) -> AudiobookMetadata | None:
    """Build metadata from a file's embedded tags and stream info.

    None when the format isn't tag-bearing or nothing useful was found.
    """
    if file.suffix.lower() not in TAG_EXTENSIONS:
        return None

    data = probe(file)
    fmt = data.get("format", {})
    tags = {k.lower(): v for k, v in (fmt.get("tags") or {}).items()}
    if not tags and not fmt:
        return None

    stream = next(
        (s for s in data.get("streams", []) if s.get("codec_type") == "audio"),
        {},
    )

    author = extract_author_from_tags(tags)
    series, position = series_from_album(tags.get("album", ""))
    date = str(tags.get("date") or tags.get("year") or "")
    genre = tags.get("genre", "")

    md = AudiobookMetadata(
        id=file.name,
        title=(tags.get("title") or "").strip(),
        authors=parse_authors(author),
        description=(tags.get("comment") or tags.get("description") or "").strip(),
        publisher=(tags.get("publisher") or "").strip(),
        published_date=date.strip(),
        categories=[genre] if genre else [],
        language=tags.get("language", ""),
        series=series,
        series_position=position,
        provider=FILE_METADATA_PROVIDER,
        audio_duration=_to_float(fmt.get("duration")),
        bitrate=_to_int(fmt.get("bit_rate")),
        channels=_to_int(stream.get("channels")),
        sample_rate=_to_int(stream.get("sample_rate")),
        file_format=file.suffix.lower().lstrip("."),
    )
    log.debug(f"Tags for {file.name}: title={md.title!r} authors={md.authors}")
    return md


def _to_float(value) -> float | None:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _to_int(value) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def duration_to_timestamp(seconds: float) -> str:
    """Convert seconds to HH:MM:SS."""
    total = int(seconds)
    h = total // 3600
    m = (total % 3600) // 60
    s = total % 60
    return f"{h:02d}:{m:02d}:{s:02d}"
