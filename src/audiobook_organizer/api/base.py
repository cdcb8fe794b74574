"""MetadataProvider protocol and helpers shared by the HTTP providers."""

import re
from typing import Protocol, runtime_checkable

import httpx
from loguru import logger

from ..errors import ProviderError
from ..models import AudiobookMetadata

log = logger.bind(stage="provider")

USER_AGENT = "audiobook-organizer/0.1.0"

_SERIES_TITLE_PATTERNS = (
    re.compile(r"^(.*?)\s*\(\s*Book\s*(\d+)\s*\)", re.IGNORECASE),
    re.compile(r"^(.*?)\s*\[\s*Book\s*(\d+)\s*\]", re.IGNORECASE),
    re.compile(r"^(.*?)\s*(?:Series\s*)?Book\s*(\d+)", re.IGNORECASE),
    re.compile(r"^(.*?)\s*#(\d+)"),
)


@runtime_checkable
class MetadataProvider(Protocol):
    """A bibliographic source searched by free-text query.

    search() returns candidates best-first; an empty list means no match.
    Transport or API failures raise ProviderError.
    """

    @property
    def name(self) -> str: ...

    def search(self, query: str) -> list[AudiobookMetadata]: ...

    def update_api_key(self, api_key: str) -> None: ...


def get_json(provider: str, url: str, params: dict, timeout: float) -> dict:
    """GET a JSON document, mapping every transport failure to ProviderError."""
    try:
        resp = httpx.get(
            url,
            params=params,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )
    except httpx.TimeoutException as e:
        raise ProviderError(provider, f"timed out after {timeout:.0f}s") from e
    except httpx.HTTPError as e:
        raise ProviderError(provider, f"request failed: {e}") from e

    if resp.status_code in (401, 403):
        raise ProviderError(provider, "API key is invalid or quota exceeded", resp.status_code)
    if resp.status_code != 200:
        raise ProviderError(provider, f"HTTP {resp.status_code}", resp.status_code)

    try:
        data = resp.json()
    except ValueError as e:
        raise ProviderError(provider, f"invalid JSON response: {e}") from e
    if not isinstance(data, dict):
        raise ProviderError(provider, "unexpected response shape")
    return data


def series_from_title(title: str) -> tuple[str, str]:
    """Pull "Series Book 3" / "Series #3" style series info out of a title."""
    for pattern in _SERIES_TITLE_PATTERNS:
        m = pattern.match(title)
        if m and m.group(1).strip():
            return m.group(1).strip(" :-,"), m.group(2)
    return "", ""


def force_https(url: str) -> str:
    if url.startswith("http:"):
        return "https:" + url[len("http:"):]
    return url


def strip_html(text: str) -> str:
    """Strip HTML tags from text."""
    return re.sub(r"<[^>]+>", "", text).strip()
