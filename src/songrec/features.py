"""
Audio feature vectors for content similarity.

Vectors are derived data: they are built lazily per request and held in a
FeatureCache owned by that request, never attached to the shared
CatalogItem.
"""
import logging

import numpy as np

from .models import CatalogItem
from .config import (
    KEY_SCALE,
    LOUDNESS_FLOOR_DB,
    TEMPO_SCALE,
    TIME_SIGNATURE_SCALE,
    POPULARITY_FEATURE_WEIGHT,
)

logger = logging.getLogger(__name__)

FEATURE_NAMES = (
    'danceability',
    'energy',
    'key',
    'loudness',
    'mode',
    'speechiness',
    'acousticness',
    'instrumentalness',
    'liveness',
    'valence',
    'tempo',
    'time_signature',
    'popularity',
)
VECTOR_SIZE = len(FEATURE_NAMES)


def build_feature_vector(item: CatalogItem) -> np.ndarray:
    """
    Encode one item's audio attributes as 13 floats.

    0-1 descriptors pass through; key, loudness, tempo and time signature
    are scaled to roughly 0-1. Out-of-range inputs are not clamped, so a
    pathological item simply scores lower against typical ones.
    """
    return np.array([
        item.danceability,
        item.energy,
        item.key / KEY_SCALE,
        (item.loudness + LOUDNESS_FLOOR_DB) / LOUDNESS_FLOOR_DB,
        1.0 if item.mode else 0.0,
        item.speechiness,
        item.acousticness,
        item.instrumentalness,
        item.liveness,
        item.valence,
        item.tempo / TEMPO_SCALE,
        item.time_signature / TIME_SIGNATURE_SCALE,
        (item.popularity / 100.0) * POPULARITY_FEATURE_WEIGHT,
    ], dtype=np.float64)


class FeatureCache:
    """Request-scoped side table of feature vectors keyed by item id."""

    def __init__(self):
        self._vectors: dict[str, np.ndarray] = {}
        self.builds = 0

    def get(self, item: CatalogItem) -> np.ndarray:
        vector = self._vectors.get(item.id)
        if vector is None:
            vector = build_feature_vector(item)
            self._vectors[item.id] = vector
            self.builds += 1
        return vector
