
from .config import RecommenderConfig, MAX_SCORE, POPULARITY_TRENDING
from .models import RecommendationResult, ScoreKind, UserId, assign_ranks
from .orchestrator import SmartOrchestrator, popular_fallback
from .recommender import (
    EXPLANATION_SEPARATOR,
    CollaborativeRecommender,
    ContentRecommender,
    HybridBlender,
    popularity_label,
)
from .similarity import SimilarityScorer
from .stores import CatalogStore, UserBehaviorStore


def _default_explanation(rec: RecommendationResult) -> str:
    percent = int(round(rec.score * 100))
    if rec.kind is ScoreKind.POPULAR_FALLBACK:
        parts = [f"Popularity score: {percent}%"]
        if rec.item.popularity > POPULARITY_TRENDING:
            parts.append("Trending now")
        else:
            parts.append("Popular with listeners")
        return EXPLANATION_SEPARATOR.join(parts)
    if rec.kind is ScoreKind.HYBRID:
        return EXPLANATION_SEPARATOR.join(
            [f"Hybrid score: {percent}%", "Combines content similarity and user preferences"]
        )
    parts = [f"Match score: {percent}%"]
    label = popularity_label(rec.item.popularity)
    if label:
        parts.append(label)
    return EXPLANATION_SEPARATOR.join(parts)


def finalize(results: list[RecommendationResult]) -> list[RecommendationResult]:
    """Clamp scores, fill missing explanations and renumber ranks."""
    for rec in results:
        rec.score = min(rec.score, MAX_SCORE)
        if not rec.explanation:
            rec.explanation = _default_explanation(rec)
    return assign_ranks(results)


class RecommendationEngine:
    """
    The four caller-facing recommendation operations.

    Limits are bounded here (default when unset, capped at ``max_limit``)
    and applied by each strategy after internal ranking.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        behavior: UserBehaviorStore,
        config: RecommenderConfig | None = None,
    ):
        self.config = config or RecommenderConfig.from_env()
        self.catalog = catalog
        self.behavior = behavior
        self.scorer = SimilarityScorer()
        self.content_recommender = ContentRecommender(catalog, self.config, self.scorer)
        self.collaborative_recommender = CollaborativeRecommender(catalog, behavior, self.config)
        self.hybrid_blender = HybridBlender(
            self.content_recommender, self.collaborative_recommender, self.config
        )
        self.orchestrator = SmartOrchestrator(
            catalog, behavior, self.collaborative_recommender, self.hybrid_blender
        )

    def content(self, seed_id: str, limit: int | None = None) -> list[RecommendationResult]:
        limit = self.config.bound_limit(limit)
        return finalize(self.content_recommender.recommend(seed_id, limit))

    def collaborative(self, user_id: UserId, limit: int | None = None) -> list[RecommendationResult]:
        limit = self.config.bound_limit(limit)
        return finalize(self.collaborative_recommender.recommend(user_id, limit))

    def hybrid(self, user_id: UserId, seed_id: str, limit: int | None = None) -> list[RecommendationResult]:
        if not seed_id:
            raise ValueError("Song ID is required for hybrid recommendations")
        limit = self.config.bound_limit(limit)
        return finalize(self.hybrid_blender.recommend(user_id, seed_id, limit))

    def smart(self, user_id: UserId, limit: int | None = None) -> list[RecommendationResult]:
        limit = self.config.bound_limit(limit)
        return finalize(self.orchestrator.recommend(user_id, limit))

    def popular(self, limit: int | None = None) -> list[RecommendationResult]:
        limit = self.config.bound_limit(limit)
        return finalize(popular_fallback(self.catalog, limit))
