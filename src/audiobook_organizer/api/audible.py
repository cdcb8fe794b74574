"""Audible catalog search provider.

Queries the public Audible product catalog API. Unlike the book catalogs it
knows narrators, runtimes, and audiobook-specific series numbering.
"""

from loguru import logger

from ..models import AudiobookMetadata
from .base import get_json, strip_html

log = logger.bind(stage="audible")

PROVIDER_NAME = "Audible"

_RESPONSE_GROUPS = (
    "category_ladders,contributors,media,product_desc,"
    "product_attrs,product_extended_attrs,rating,series"
)


class AudibleProvider:
    """Audible catalog search for one marketplace region (com, co.uk, de, ...)."""

    def __init__(self, region: str = "com", timeout: float = 10.0, num_results: int = 10) -> None:
        self.region = region
        self.timeout = timeout
        self.num_results = num_results

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    def update_api_key(self, api_key: str) -> None:
        """The catalog endpoint is public."""

    def search(self, query: str) -> list[AudiobookMetadata]:
        if not query.strip():
            return []

        params = {
            "keywords": query,
            "num_results": str(self.num_results),
            "products_sort_by": "Relevance",
            "response_groups": _RESPONSE_GROUPS,
            "image_sizes": "500,1024",
        }
        log.debug(f"Audible search: query={query!r} region={self.region}")
        data = get_json(
            PROVIDER_NAME,
            f"https://api.audible.{self.region}/1.0/catalog/products",
            params,
            self.timeout,
        )
        results = [parse_product(p) for p in data.get("products") or [] if p.get("title")]
        log.debug(f"Audible results: {len(results)} products")
        return results


def parse_product(p: dict) -> AudiobookMetadata:
    series_info = _pick_best_series(p.get("series") or []) or {}
    images = p.get("product_images") or {}
    runtime = p.get("runtime_length_min")
    genre = _extract_genre(p.get("category_ladders") or [])
    rating = ((p.get("rating") or {}).get("overall_distribution") or {})

    return AudiobookMetadata(
        id=p.get("asin", ""),
        title=p.get("title", ""),
        authors=[a.get("name", "") for a in (p.get("authors") or []) if a.get("name")],
        description=strip_html(p.get("publisher_summary") or ""),
        publisher=p.get("publisher_name") or "",
        published_date=p.get("release_date") or "",
        categories=[genre] if genre else [],
        average_rating=float(rating.get("display_average_rating") or 0.0),
        ratings_count=int(rating.get("num_ratings") or 0),
        thumbnail_url=images.get("1024", images.get("500", "")),
        language=p.get("language") or "",
        series=series_info.get("title", "") or "",
        series_position=str(series_info.get("sequence", "") or ""),
        provider=PROVIDER_NAME,
        audio_duration=float(runtime) * 60 if runtime else None,
    )


def _pick_best_series(series_list: list[dict]) -> dict | None:
    """Pick the most specific series when Audible returns multiple.

    Audible often lists both a sub-series (e.g., "Liveship Traders", Book 2)
    and its umbrella series (e.g., "Realms of the Elderlings", Book 5).
    The lowest position identifies the specific one.
    """
    if not series_list:
        return None
    if len(series_list) == 1:
        return series_list[0]

    def _sort_key(s: dict) -> float:
        try:
            return float(s.get("sequence", "") or "")
        except (ValueError, TypeError):
            return 999.0

    best = min(series_list, key=_sort_key)
    log.debug(
        f"Multi-series: picked '{best.get('title')}' #{best.get('sequence')} "
        f"from {[s.get('title') for s in series_list]}"
    )
    return best


def _extract_genre(category_ladders: list[dict]) -> str:
    """Join the first category ladder with '/', e.g. "Science Fiction/Space Opera"."""
    if not category_ladders:
        return ""
    ladder = category_ladders[0].get("ladder", [])
    names = [step.get("name", "") for step in ladder if step.get("name")]
    return "/".join(names)
