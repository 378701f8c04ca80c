"""
Configuration constants for the song recommender.

This module centralizes all magic numbers and configurable parameters.
Tunable values can be overridden via environment variables; components never
read them directly but receive an immutable RecommenderConfig instead.
"""
import os
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_bool_env(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None or raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    logger.warning(f"Invalid {key}='{raw}', using default {default}")
    return default


# Database Configuration
DB_PATH = Path(os.environ.get("SONGREC_DB", "data/songrec.db"))
IMPORT_CHUNK_SIZE = 500

# Retry behaviour for transient store failures (SQLite "database is locked")
STORE_MAX_RETRIES = 3
STORE_RETRY_DELAY = 0.1

# Request-level configuration (overridable)
SIMILARITY_THRESHOLD = _get_float_env("SONGREC_SIMILARITY_THRESHOLD", 0.6, min_val=0.0)
CONTENT_WEIGHT = _get_float_env("SONGREC_CONTENT_WEIGHT", 0.5, min_val=0.0)
COLLABORATIVE_WEIGHT = _get_float_env("SONGREC_COLLABORATIVE_WEIGHT", 0.5, min_val=0.0)
DEFAULT_LIMIT = _get_int_env("SONGREC_DEFAULT_LIMIT", 10, min_val=1)
MAX_LIMIT = _get_int_env("SONGREC_MAX_LIMIT", 20, min_val=1)
TIE_SMOOTHING = _get_bool_env("SONGREC_TIE_SMOOTHING", True)

# Feature vector normalization
KEY_SCALE = 11.0
LOUDNESS_FLOOR_DB = 60.0
TEMPO_SCALE = 250.0
TIME_SIGNATURE_SCALE = 7.0
POPULARITY_FEATURE_WEIGHT = 0.5  # half-weighted so popularity does not dominate audio features

# Similarity blend
COSINE_WEIGHT = 0.7
DIVERSITY_WEIGHT = 0.3
SAME_ARTIST_BOOST = 0.15
SAME_GENRE_BOOST = 0.08

# Diversity (difference) score
DIVERSITY_WEIGHTS = {
    'tempo': 0.2,
    'energy': 0.2,
    'valence': 0.2,
    'danceability': 0.15,
    'genre': 0.15,
    'artist': 0.1,
}
GENRE_DIFF_PENALTY = 0.3
ARTIST_DIFF_PENALTY = 0.2

# Content explanations
SIMILAR_DANCEABILITY_DELTA = 0.1
SIMILAR_ENERGY_DELTA = 0.1
SIMILAR_VALENCE_DELTA = 0.15
MOOD_UPBEAT_VALENCE = 0.7
MOOD_MELLOW_VALENCE = 0.3
MATCH_TIER_VERY_HIGH = 0.8
MATCH_TIER_GOOD = 0.6

# Collaborative scoring
COLLAB_WEIGHTS = {
    'genre': 0.5,
    'popularity': 0.15,
    'diversity': 0.25,
    'artist': 0.1,
}
COLLAB_POOL_FACTOR = 3  # candidate pool = limit * factor most popular items
COLLAB_MIN_SCORE = 0.05
GENRE_UNEXPLORED_MAX_LIKES = 1
GENRE_EXPLORED_MAX_LIKES = 3
GENRE_UNEXPLORED_BONUS = 0.25
GENRE_EXPLORED_BONUS = 0.15
NEW_ARTIST_BONUS = 0.1

# Tie smoothing
COLLAB_TIE_WINDOW = 0.05
COLLAB_TIE_STEP = 0.01
HYBRID_TIE_WINDOW = 0.03
HYBRID_TIE_STEP = 0.005

# Hybrid blending
HYBRID_FETCH_FACTOR = 2

# Popularity labels
POPULARITY_HIGH = 80
POPULARITY_MED = 60
POPULARITY_TRENDING = 75

# User similarity (Jaccard on likes, cosine on play counts)
USER_SIM_LIKE_WEIGHT = 0.6
USER_SIM_PLAY_WEIGHT = 0.4

# Final scores may drift slightly above 1.0 after blending; clamp down
MAX_SCORE = 1.0


@dataclass(frozen=True)
class RecommenderConfig:
    """Immutable request-level settings injected into every component."""

    similarity_threshold: float = 0.6
    content_weight: float = 0.5
    collaborative_weight: float = 0.5
    default_limit: int = 10
    max_limit: int = 20
    tie_smoothing: bool = True

    def __post_init__(self) -> None:
        if self.default_limit < 1 or self.max_limit < 1:
            raise ValueError("limits must be positive")
        if min(self.similarity_threshold, self.content_weight, self.collaborative_weight) < 0:
            raise ValueError("threshold and weights must be non-negative")

    @classmethod
    def from_env(cls) -> "RecommenderConfig":
        """Snapshot the environment-derived module constants."""
        return cls(
            similarity_threshold=SIMILARITY_THRESHOLD,
            content_weight=CONTENT_WEIGHT,
            collaborative_weight=COLLABORATIVE_WEIGHT,
            default_limit=DEFAULT_LIMIT,
            max_limit=MAX_LIMIT,
            tie_smoothing=TIE_SMOOTHING,
        )

    def bound_limit(self, limit: int | None) -> int:
        """Apply the caller-side limit policy: default when unset, ceiling at max_limit."""
        if limit is None or limit <= 0:
            limit = self.default_limit
        return min(limit, self.max_limit)
