import logging
from collections import Counter
from dataclasses import dataclass, field

import numpy as np

from .models import CatalogItem, UserHistory
from .config import USER_SIM_LIKE_WEIGHT, USER_SIM_PLAY_WEIGHT

logger = logging.getLogger(__name__)


@dataclass
class ListeningProfile:
    """Aggregated preferences from a user's likes, built once per request."""
    n_likes: int = 0
    n_plays: int = 0

    # Items already liked or played (excluded from recommendations)
    known_ids: set[str] = field(default_factory=set)
    # Lower-cased genre -> number of liked items in that genre
    genre_counts: Counter = field(default_factory=Counter)
    # Lower-cased artists across liked items
    artists: set[str] = field(default_factory=set)

    def genre_count(self, genre: str | None) -> int:
        return self.genre_counts.get((genre or "").strip().lower(), 0)

    def genre_affinity(self, genre: str | None) -> float:
        """Share of the user's likes in this genre (0 with no likes or no genre)."""
        if not self.n_likes or not (genre or "").strip():
            return 0.0
        return self.genre_count(genre) / self.n_likes

    def knows_artist(self, artist: str | None) -> bool:
        return (artist or "").strip().lower() in self.artists

    @property
    def top_genres(self) -> list[tuple[str, int]]:
        return self.genre_counts.most_common()


def build_listening_profile(history: UserHistory, liked_items: list[CatalogItem]) -> ListeningProfile:
    """
    Build the genre histogram and artist set over the user's liked items.

    Args:
        history: The user's likes and plays
        liked_items: Catalog items resolved from the user's likes (items that
            vanished from the catalog are simply missing)

    Note that the affinity denominator is the number of likes, not the
    number of resolved items, so likes on deleted songs dilute affinity.
    """
    profile = ListeningProfile(
        n_likes=len(history.likes),
        n_plays=len(history.plays),
        known_ids=history.known_item_ids(),
    )

    for item in liked_items:
        genre = (item.genre or "").strip().lower()
        if genre:
            profile.genre_counts[genre] += 1
        artist = (item.artist or "").strip().lower()
        if artist:
            profile.artists.add(artist)

    logger.debug(
        f"Profile for {history.user_id}: {profile.n_likes} likes, {profile.n_plays} plays, "
        f"{len(profile.genre_counts)} genres, {len(profile.artists)} artists"
    )
    return profile


def user_similarity(a: UserHistory, b: UserHistory) -> float:
    """
    Taste similarity of two users in [0, 1].

    Weighted blend of Jaccard similarity over liked items and cosine
    similarity over play-count vectors.
    """
    likes_a = {like.item_id for like in a.likes}
    likes_b = {like.item_id for like in b.likes}
    union = likes_a | likes_b
    like_sim = len(likes_a & likes_b) / len(union) if union else 0.0

    plays_a: Counter = Counter()
    plays_b: Counter = Counter()
    for play in a.plays:
        plays_a[play.item_id] += play.play_count
    for play in b.plays:
        plays_b[play.item_id] += play.play_count

    play_sim = 0.0
    all_ids = sorted(set(plays_a) | set(plays_b))
    if all_ids:
        va = np.array([plays_a[i] for i in all_ids], dtype=np.float64)
        vb = np.array([plays_b[i] for i in all_ids], dtype=np.float64)
        norm_a, norm_b = np.linalg.norm(va), np.linalg.norm(vb)
        if norm_a > 0 and norm_b > 0:
            play_sim = float(np.dot(va, vb) / (norm_a * norm_b))

    return like_sim * USER_SIM_LIKE_WEIGHT + play_sim * USER_SIM_PLAY_WEIGHT
