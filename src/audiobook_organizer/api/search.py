"""Fuzzy ranking of provider candidates for manual search.

Automatic matching trusts the provider's own ordering. When the user searches
by hand we pool every provider's candidates and rank them here instead.
"""

from loguru import logger
from rapidfuzz import fuzz

from ..models import AudiobookMetadata

log = logger.bind(stage="search")


def score_candidate(
    candidate: AudiobookMetadata,
    title_hint: str,
    author_hint: str = "",
    position: int = 0,
) -> float:
    """Weights: title 60%, author 30%, provider rank bonus 10%."""
    title_score = fuzz.token_sort_ratio(title_hint.lower(), candidate.title.lower()) * 0.6

    if author_hint:
        author_scores = [
            fuzz.partial_ratio(author_hint.lower(), a.lower()) for a in candidate.authors
        ]
        author_score = max(author_scores, default=0) * 0.3
    else:
        # Query text may contain the author anywhere
        author_score = max(
            (fuzz.partial_ratio(a.lower(), title_hint.lower()) for a in candidate.authors),
            default=0,
        ) * 0.3

    position_score = max(10 - (position * 2), 0)
    return round(title_score + author_score + position_score, 1)


def dedupe_candidates(candidates: list[AudiobookMetadata]) -> list[AudiobookMetadata]:
    """Drop repeats of the same title+first author, keeping the first seen.

    A later duplicate still donates a thumbnail the first one lacks.
    """
    seen: dict[tuple[str, str], int] = {}
    unique: list[AudiobookMetadata] = []
    for c in candidates:
        key = (c.title.strip().lower(), (c.authors[0] if c.authors else "").strip().lower())
        if key in seen:
            kept = unique[seen[key]]
            if not kept.thumbnail_url and c.thumbnail_url:
                unique[seen[key]] = kept.enhance(c)
            continue
        seen[key] = len(unique)
        unique.append(c)
    return unique


def rank_candidates(
    candidates: list[tuple[int, AudiobookMetadata]],
    title_hint: str,
    author_hint: str = "",
) -> list[tuple[float, AudiobookMetadata]]:
    """Score (provider_rank, candidate) pairs, best first."""
    log.debug(f"Ranking {len(candidates)} candidates against title={title_hint!r}")
    scored = [
        (score_candidate(c, title_hint, author_hint, position), c)
        for position, c in candidates
    ]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    if scored:
        log.debug(f"Best candidate: {scored[0][1].title!r} score={scored[0][0]:.0f}")
    return scored


def _word_similarity(a: str, b: str) -> float:
    """Jaccard overlap of words longer than two characters."""
    words_a = {w for w in a.lower().split() if len(w) > 2}
    words_b = {w for w in b.lower().split() if len(w) > 2}
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def calculate_similarity(current: AudiobookMetadata, new: AudiobookMetadata) -> float:
    """0..1 estimate of whether two records describe the same book.

    Title 0.4, authors 0.4, series 0.2. Drives the "update this version" vs
    "this is a different book" suggestion.
    """
    title = max(
        _word_similarity(current.title, new.title),
        fuzz.token_set_ratio(current.title.lower(), new.title.lower()) / 100,
    )
    authors = _word_similarity(" ".join(current.authors), " ".join(new.authors))
    if current.series and new.series:
        series = _word_similarity(current.series, new.series)
    else:
        series = 0.0
    return round(title * 0.4 + authors * 0.4 + series * 0.2, 3)
