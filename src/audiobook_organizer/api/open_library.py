"""Open Library search provider."""

from loguru import logger

from ..models import AudiobookMetadata
from .base import get_json, series_from_title

log = logger.bind(stage="openlib")

SEARCH_URL = "https://openlibrary.org/search.json"
COVER_URL = "https://covers.openlibrary.org/b"
PROVIDER_NAME = "Open Library"


class OpenLibraryProvider:
    """Free open catalog. Needs no API key."""

    def __init__(self, timeout: float = 10.0, limit: int = 10) -> None:
        self.timeout = timeout
        self.limit = limit

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    def update_api_key(self, api_key: str) -> None:
        """Open Library is keyless."""

    def search(self, query: str) -> list[AudiobookMetadata]:
        if not query.strip():
            return []

        log.debug(f"Open Library search: query={query!r}")
        data = get_json(
            PROVIDER_NAME, SEARCH_URL, {"q": query, "limit": str(self.limit)}, self.timeout,
        )
        results = [parse_doc(doc) for doc in data.get("docs") or [] if doc.get("title")]
        log.debug(f"Open Library results: {len(results)} docs")
        return results


def parse_doc(doc: dict) -> AudiobookMetadata:
    title = doc.get("title", "")
    series, position = series_from_title(title)

    publishers = doc.get("publisher") or []
    languages = doc.get("language") or []
    year = doc.get("first_publish_year")

    return AudiobookMetadata(
        id=str(doc.get("key", "")).removeprefix("/works/"),
        title=title,
        authors=[str(a) for a in doc.get("author_name") or []],
        publisher=str(publishers[0]) if publishers else "",
        published_date=str(year) if year else "",
        categories=[str(s) for s in (doc.get("subject") or [])[:10]],
        average_rating=float(doc.get("ratings_average") or 0.0),
        ratings_count=int(doc.get("ratings_count") or 0),
        thumbnail_url=cover_url(doc),
        language=str(languages[0]) if languages else "",
        series=series,
        series_position=position,
        provider=PROVIDER_NAME,
    )


def cover_url(doc: dict) -> str:
    if doc.get("cover_i"):
        return f"{COVER_URL}/id/{doc['cover_i']}-L.jpg"
    if doc.get("cover_edition_key"):
        return f"{COVER_URL}/olid/{doc['cover_edition_key']}-L.jpg"
    return ""
