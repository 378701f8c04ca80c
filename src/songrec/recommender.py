import logging

from .config import (
    RecommenderConfig,
    SIMILAR_DANCEABILITY_DELTA,
    SIMILAR_ENERGY_DELTA,
    SIMILAR_VALENCE_DELTA,
    MOOD_UPBEAT_VALENCE,
    MOOD_MELLOW_VALENCE,
    MATCH_TIER_VERY_HIGH,
    MATCH_TIER_GOOD,
    COLLAB_WEIGHTS,
    COLLAB_POOL_FACTOR,
    COLLAB_MIN_SCORE,
    GENRE_UNEXPLORED_MAX_LIKES,
    GENRE_EXPLORED_MAX_LIKES,
    GENRE_UNEXPLORED_BONUS,
    GENRE_EXPLORED_BONUS,
    NEW_ARTIST_BONUS,
    COLLAB_TIE_WINDOW,
    COLLAB_TIE_STEP,
    HYBRID_TIE_WINDOW,
    HYBRID_TIE_STEP,
    HYBRID_FETCH_FACTOR,
    POPULARITY_HIGH,
    POPULARITY_MED,
)
from .features import FeatureCache
from .models import CatalogItem, RecommendationResult, ScoreKind, UserId, assign_ranks
from .profile import ListeningProfile, build_listening_profile
from .similarity import SimilarityScorer, same_artist, same_genre
from .stores import CatalogStore, UserBehaviorStore
from .utils import attempt

logger = logging.getLogger(__name__)

EXPLANATION_SEPARATOR = " • "


def _percent(score: float) -> int:
    return int(round(score * 100))


def _truncate(results: list[RecommendationResult], limit: int) -> list[RecommendationResult]:
    return results[:max(limit, 0)]


def _sort_key(tie_smoothing: bool):
    # Without tie smoothing, near-ties are ordered by item id instead
    if tie_smoothing:
        return lambda r: -r.score
    return lambda r: (-r.score, r.item.id)


def popularity_label(popularity: int) -> str | None:
    if popularity > POPULARITY_HIGH:
        return "Highly popular"
    if popularity > POPULARITY_MED:
        return "Popular"
    return None


def mood_label(valence: float) -> str:
    if valence > MOOD_UPBEAT_VALENCE:
        return "upbeat/positive"
    if valence < MOOD_MELLOW_VALENCE:
        return "mellow/sad"
    return "neutral"


def explain_content_match(seed: CatalogItem, item: CatalogItem, score: float) -> str:
    """
    Human-readable reasons for a content match, strongest signals first.

    Falls back to a match-tier sentence keyed by score band when no
    specific attribute matched.
    """
    reasons = [f"Similarity score: {_percent(score)}%"]

    if same_artist(seed, item) and seed.artist:
        reasons.append(f"Same artist: {seed.artist}")
    if same_genre(seed, item):
        reasons.append(f"Same genre: {seed.genre}")
    if abs(seed.danceability - item.danceability) < SIMILAR_DANCEABILITY_DELTA:
        reasons.append("Similar danceability")
    if abs(seed.energy - item.energy) < SIMILAR_ENERGY_DELTA:
        reasons.append("Similar energy level")
    if abs(seed.valence - item.valence) < SIMILAR_VALENCE_DELTA:
        reasons.append(f"Similar mood: {mood_label(seed.valence)}")

    if len(reasons) == 1:
        if score >= MATCH_TIER_VERY_HIGH:
            reasons.append("Very high audio feature match")
        elif score >= MATCH_TIER_GOOD:
            reasons.append("Good audio feature match")
        else:
            reasons.append("Moderate audio feature match")

    return EXPLANATION_SEPARATOR.join(reasons)


class ContentRecommender:
    """Rank catalog items by audio/metadata similarity to one seed item."""

    def __init__(
        self,
        catalog: CatalogStore,
        config: RecommenderConfig | None = None,
        scorer: SimilarityScorer | None = None,
    ):
        self.catalog = catalog
        self.config = config or RecommenderConfig()
        self.scorer = scorer or SimilarityScorer()

    def recommend(self, seed_id: str, limit: int) -> list[RecommendationResult]:
        """
        Score every other catalog item against the seed.

        Raises ItemNotFound if the seed does not resolve. Ties keep catalog
        iteration order; truncation happens after ranking.
        """
        seed = self.catalog.get_by_id(seed_id)
        all_items = self.catalog.get_all()

        cache = FeatureCache()
        threshold = self.config.similarity_threshold
        results = []
        for item in all_items:
            if item.id == seed.id:
                continue

            score = self.scorer.score(seed, item, cache)
            if score >= threshold:
                results.append(RecommendationResult(
                    item=item,
                    score=score,
                    kind=ScoreKind.CONTENT,
                    explanation=explain_content_match(seed, item, score),
                ))

        results.sort(key=lambda r: -r.score)
        logger.debug(
            f"Content pass for {seed.id}: {len(all_items)} items, {len(results)} above "
            f"threshold {threshold}, {cache.builds} vectors built"
        )
        return assign_ranks(_truncate(results, limit))


def _diversity_bonus(profile: ListeningProfile, genre: str) -> float:
    """Reward genres the user has barely explored."""
    if not (genre or "").strip():
        return 0.0
    count = profile.genre_count(genre)
    if count <= GENRE_UNEXPLORED_MAX_LIKES:
        return GENRE_UNEXPLORED_BONUS
    if count <= GENRE_EXPLORED_MAX_LIKES:
        return GENRE_EXPLORED_BONUS
    return 0.0


def _smooth_collaborative_ties(results: list[RecommendationResult], tie_smoothing: bool) -> list[RecommendationResult]:
    """
    Separate near-identical scores so the ranking is not flat.

    Adjacent results closer than the tie window nudge the earlier one up by
    an index-derived step; the list is then re-sorted once. The nudge depends
    on position, so it is not permutation-stable.
    """
    if not tie_smoothing:
        results.sort(key=_sort_key(False))
        return results

    for i in range(len(results) - 1):
        if abs(results[i].score - results[i + 1].score) < COLLAB_TIE_WINDOW:
            results[i].score += (i % 3) * COLLAB_TIE_STEP
    results.sort(key=lambda r: -r.score)
    return results


class CollaborativeRecommender:
    """
    Rank popular items against a user's listening profile.

    Combines genre affinity with popularity, an exploration bonus for
    under-liked genres and a novelty bonus for unknown artists.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        behavior: UserBehaviorStore,
        config: RecommenderConfig | None = None,
    ):
        self.catalog = catalog
        self.behavior = behavior
        self.config = config or RecommenderConfig()

    def build_profile(self, user_id: UserId) -> ListeningProfile:
        history = self.behavior.get_user(user_id)
        liked_ids = [like.item_id for like in history.likes]
        liked_items = self.catalog.get_by_ids(liked_ids) if liked_ids else []
        return build_listening_profile(history, liked_items)

    def score_item(self, item: CatalogItem, profile: ListeningProfile) -> tuple[float, list[str]]:
        """Score one candidate; returns (score, reasons)."""
        genre_affinity = profile.genre_affinity(item.genre)
        popularity = item.popularity / 100.0
        diversity = _diversity_bonus(profile, item.genre)
        artist_bonus = NEW_ARTIST_BONUS if not profile.knows_artist(item.artist) else 0.0

        score = (
            genre_affinity * COLLAB_WEIGHTS['genre']
            + popularity * COLLAB_WEIGHTS['popularity']
            + diversity * COLLAB_WEIGHTS['diversity']
            + artist_bonus * COLLAB_WEIGHTS['artist']
        )

        reasons = []
        if genre_affinity > 0:
            reasons.append(f"Matches your taste in {item.genre}")
        elif diversity > 0:
            reasons.append(f"New genre to explore: {item.genre}")
        if artist_bonus and item.artist:
            reasons.append(f"New artist for you: {item.artist}")
        label = popularity_label(item.popularity)
        if label:
            reasons.append(label)

        return score, reasons

    def recommend(self, user_id: UserId, limit: int) -> list[RecommendationResult]:
        """Raises UserNotFound if the user cannot be resolved."""
        profile = self.build_profile(user_id)

        # Popular subset approximates the full catalog at bounded cost
        pool = self.catalog.get_top_by_popularity(limit * COLLAB_POOL_FACTOR)

        results = []
        for item in pool:
            if item.id in profile.known_ids:
                continue

            score, reasons = self.score_item(item, profile)
            if score > COLLAB_MIN_SCORE:
                explanation = EXPLANATION_SEPARATOR.join([f"Match score: {_percent(score)}%", *reasons])
                results.append(RecommendationResult(
                    item=item,
                    score=score,
                    kind=ScoreKind.COLLABORATIVE,
                    explanation=explanation,
                ))

        results.sort(key=lambda r: -r.score)
        results = _smooth_collaborative_ties(results, self.config.tie_smoothing)

        logger.debug(f"Collaborative pass for {user_id}: pool {len(pool)}, {len(results)} scored")
        return assign_ranks(_truncate(results, limit))


def _smooth_hybrid_ties(results: list[RecommendationResult], tie_smoothing: bool) -> list[RecommendationResult]:
    """
    Single pass: a result within the tie window of its predecessor is pushed
    down by a small position-derived step. No re-sort afterwards, so the
    returned order (and the ranks assigned from it) may not follow score.
    """
    if not tie_smoothing:
        results.sort(key=_sort_key(False))
        return results

    for i in range(len(results) - 1):
        if abs(results[i].score - results[i + 1].score) < HYBRID_TIE_WINDOW:
            step = ((i + 1) % 5) * HYBRID_TIE_STEP
            results[i + 1].score = max(0.0, results[i + 1].score - step)
    return results


class HybridBlender:
    """Weighted merge of content-based and collaborative rankings."""

    def __init__(
        self,
        content: ContentRecommender,
        collaborative: CollaborativeRecommender,
        config: RecommenderConfig | None = None,
    ):
        self.content = content
        self.collaborative = collaborative
        self.config = config or RecommenderConfig()

    def recommend(self, user_id: UserId, seed_id: str, limit: int) -> list[RecommendationResult]:
        """
        Blend both strategies over ``2 * limit`` candidates each.

        Content errors (including a missing seed) propagate. The collaborative
        contribution is best-effort: guests and a zero weight skip it, and a
        domain failure degrades to content-only results.
        """
        fetch = limit * HYBRID_FETCH_FACTOR
        content_recs = self.content.recommend(seed_id, fetch)

        collab_recs: list[RecommendationResult] = []
        if not user_id.is_guest and self.config.collaborative_weight > 0:
            outcome = attempt(self.collaborative.recommend, user_id, fetch)
            if outcome.ok:
                collab_recs = outcome.value
            else:
                logger.warning(f"Collaborative step failed for {user_id}, using content only: {outcome.error}")

        merged: dict[str, RecommendationResult] = {}
        sources: dict[str, list[str]] = {}

        def _accumulate(recs: list[RecommendationResult], weight: float, source: str) -> None:
            for rec in recs:
                entry = merged.get(rec.item.id)
                if entry is None:
                    entry = RecommendationResult(item=rec.item, score=0.0, kind=ScoreKind.HYBRID)
                    merged[rec.item.id] = entry
                entry.score += rec.score * weight
                sources.setdefault(rec.item.id, []).append(source)

        _accumulate(content_recs, self.config.content_weight, "Similar to the seed song")
        _accumulate(collab_recs, self.config.collaborative_weight, "Fits your listening history")

        results = sorted(merged.values(), key=lambda r: -r.score)
        results = _smooth_hybrid_ties(results, self.config.tie_smoothing)
        results = _truncate(results, limit)

        for rec in results:
            rec.explanation = EXPLANATION_SEPARATOR.join(
                [f"Hybrid score: {_percent(rec.score)}%", *sources[rec.item.id]]
            )

        logger.debug(
            f"Hybrid blend for {user_id} / {seed_id}: {len(content_recs)} content, "
            f"{len(collab_recs)} collaborative, {len(merged)} merged"
        )
        return assign_ranks(results)
