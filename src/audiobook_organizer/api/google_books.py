"""Google Books volumes search provider."""

from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from loguru import logger

from ..models import AudiobookMetadata
from .base import force_https, get_json, series_from_title

log = logger.bind(stage="google")

BASE_URL = "https://www.googleapis.com/books/v1/volumes"
PROVIDER_NAME = "Google Books"

# Largest first
_IMAGE_SIZES = ("extraLarge", "large", "medium", "small", "thumbnail", "smallThumbnail")


class GoogleBooksProvider:
    """Commercial catalog. Works without a key at a lower quota."""

    def __init__(self, api_key: str = "", timeout: float = 10.0, max_results: int = 10) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.max_results = max_results

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    def update_api_key(self, api_key: str) -> None:
        self.api_key = api_key

    def search(self, query: str) -> list[AudiobookMetadata]:
        if not query.strip():
            return []

        params = {"q": query, "maxResults": str(self.max_results)}
        if self.api_key:
            params["key"] = self.api_key

        log.debug(f"Google Books search: query={query!r}")
        data = get_json(PROVIDER_NAME, BASE_URL, params, self.timeout)

        results = []
        for item in data.get("items") or []:
            md = parse_volume(item)
            if md is not None:
                results.append(md)
        log.debug(f"Google Books results: {len(results)} volumes")
        return results


def parse_volume(item: dict) -> AudiobookMetadata | None:
    """Convert one volumes[] item; None when it carries no volumeInfo."""
    info = item.get("volumeInfo") or {}
    if not info:
        return None

    title = info.get("title") or "Unknown Title"
    subtitle = info.get("subtitle") or ""
    series, position = _series_info(info.get("seriesInfo") or {})
    if not series:
        series, position = series_from_title(title)
    if not series and subtitle:
        series, position = series_from_title(subtitle)

    return AudiobookMetadata(
        id=item.get("id", ""),
        title=title,
        authors=[str(a) for a in info.get("authors") or []],
        description=info.get("description") or "",
        publisher=info.get("publisher") or "",
        published_date=info.get("publishedDate") or "",
        categories=[str(c) for c in info.get("categories") or []],
        average_rating=float(info.get("averageRating") or 0.0),
        ratings_count=int(info.get("ratingsCount") or 0),
        thumbnail_url=pick_image(info.get("imageLinks") or {}),
        language=info.get("language") or "",
        series=series,
        series_position=position,
        provider=PROVIDER_NAME,
    )


def _series_info(series_info: dict) -> tuple[str, str]:
    series = position = ""
    volume_series = series_info.get("volumeSeries") or []
    if volume_series:
        first = volume_series[0]
        series = (first.get("series") or {}).get("title", "") or ""
        if first.get("orderNumber") is not None:
            position = str(first["orderNumber"])
    if not position and series_info.get("bookDisplayNumber") is not None:
        position = str(series_info["bookDisplayNumber"])
    return series, position


def pick_image(image_links: dict) -> str:
    """Largest available cover, served over https at full size."""
    url = next((image_links[k] for k in _IMAGE_SIZES if image_links.get(k)), "")
    if not url:
        return ""
    return _full_size(force_https(url))


def _full_size(url: str) -> str:
    parsed = urlparse(url)
    if "books.google.com" not in parsed.netloc:
        return url
    query = parse_qs(parsed.query)
    if "id" in query:
        return (
            "https://books.google.com/books/publisher/content/images/frontcover/"
            f"{query['id'][0]}?fife=w800-h1200"
        )
    query["zoom"] = ["0"]
    for key in ("w", "h", "edge"):
        query.pop(key, None)
    return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))
