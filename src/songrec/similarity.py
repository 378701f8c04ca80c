import logging

import numpy as np

from .features import FeatureCache
from .models import CatalogItem
from .config import (
    COSINE_WEIGHT,
    DIVERSITY_WEIGHT,
    DIVERSITY_WEIGHTS,
    GENRE_DIFF_PENALTY,
    ARTIST_DIFF_PENALTY,
    SAME_ARTIST_BOOST,
    SAME_GENRE_BOOST,
    TEMPO_SCALE,
)

logger = logging.getLogger(__name__)


def _norm_text(value: str | None) -> str:
    return (value or "").strip().lower()


def same_artist(a: CatalogItem, b: CatalogItem) -> bool:
    return _norm_text(a.artist) == _norm_text(b.artist)


def same_genre(a: CatalogItem, b: CatalogItem) -> bool:
    """Genres match case-insensitively; an empty genre never matches."""
    genre = _norm_text(a.genre)
    return bool(genre) and genre == _norm_text(b.genre)


def cosine_similarity(va: np.ndarray, vb: np.ndarray) -> float:
    """Cosine of two vectors; exactly 0.0 when either norm is zero."""
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb)) / (norm_a * norm_b)


def diversity_score(a: CatalogItem, b: CatalogItem) -> float:
    """
    0-1 "difference" between two items.

    Weighted absolute differences in tempo, energy, valence and
    danceability, plus flat penalties when genres (both non-empty) or
    artists differ.
    """
    genre_a, genre_b = _norm_text(a.genre), _norm_text(b.genre)
    genre_diff = GENRE_DIFF_PENALTY if genre_a and genre_b and genre_a != genre_b else 0.0
    artist_diff = ARTIST_DIFF_PENALTY if not same_artist(a, b) else 0.0

    score = (
        DIVERSITY_WEIGHTS['tempo'] * abs(a.tempo - b.tempo) / TEMPO_SCALE
        + DIVERSITY_WEIGHTS['energy'] * abs(a.energy - b.energy)
        + DIVERSITY_WEIGHTS['valence'] * abs(a.valence - b.valence)
        + DIVERSITY_WEIGHTS['danceability'] * abs(a.danceability - b.danceability)
        + DIVERSITY_WEIGHTS['genre'] * genre_diff
        + DIVERSITY_WEIGHTS['artist'] * artist_diff
    )
    return min(score, 1.0)


class SimilarityScorer:
    """
    Bounded similarity between two catalog items.

    Pure cosine over audio features clusters results by artist and tempo,
    so the cosine is blended with a diversity term and only modest
    same-artist / same-genre boosts are added on top.
    """

    def score(self, a: CatalogItem, b: CatalogItem, cache: FeatureCache | None = None) -> float:
        if cache is None:
            cache = FeatureCache()
        va = cache.get(a)
        vb = cache.get(b)

        if not va.any() or not vb.any():
            return 0.0

        cosine = cosine_similarity(va, vb)
        diversity = diversity_score(a, b)
        if a.id == b.id or (diversity == 0.0 and np.array_equal(va, vb)):
            # Indistinguishable items are maximally similar
            return 1.0

        combined = COSINE_WEIGHT * cosine + DIVERSITY_WEIGHT * diversity
        if same_artist(a, b):
            combined += SAME_ARTIST_BOOST
        if same_genre(a, b):
            combined += SAME_GENRE_BOOST

        return max(0.0, min(combined, 1.0))
