"""
Strategy selection for "smart" recommendations.

Per request the orchestrator walks a small state machine over one user:
cold start -> popularity list; otherwise pick a seed from history and run
the hybrid blend, falling back to collaborative and then popularity when
the seed has vanished from the catalog.
"""
import logging
from dataclasses import dataclass
from enum import Enum

from .errors import ItemNotFound
from .models import RecommendationResult, ScoreKind, UserId, assign_ranks
from .recommender import CollaborativeRecommender, HybridBlender
from .stores import CatalogStore, UserBehaviorStore
from .utils import attempt

logger = logging.getLogger(__name__)


class SeedStrategy(Enum):
    LAST_LIKED = "last_liked"
    MOST_PLAYED = "most_played"
    LAST_PLAYED = "last_played"
    RANDOM_LIKED = "random_liked"
    NONE = "none"


@dataclass(frozen=True)
class SeedChoice:
    item_id: str | None
    strategy: SeedStrategy

    @property
    def found(self) -> bool:
        return self.item_id is not None


def popular_fallback(catalog: CatalogStore, limit: int) -> list[RecommendationResult]:
    """Most popular items, scored popularity/100."""
    items = catalog.get_top_by_popularity(max(limit, 0))
    results = [
        RecommendationResult(
            item=item,
            score=item.popularity / 100.0,
            kind=ScoreKind.POPULAR_FALLBACK,
        )
        for item in items
    ]
    results.sort(key=lambda r: -r.score)
    return assign_ranks(results[:max(limit, 0)])


class SmartOrchestrator:
    def __init__(
        self,
        catalog: CatalogStore,
        behavior: UserBehaviorStore,
        collaborative: CollaborativeRecommender,
        hybrid: HybridBlender,
    ):
        self.catalog = catalog
        self.behavior = behavior
        self.collaborative = collaborative
        self.hybrid = hybrid

    def find_seed(self, user_id: UserId) -> SeedChoice:
        """
        Pick the seed item by priority: most recent like, most-played item
        with more than one play, most recent play, a random liked item.
        """
        like = self.behavior.most_recent_like(user_id)
        if like is not None:
            return SeedChoice(like.item_id, SeedStrategy.LAST_LIKED)

        play = self.behavior.most_played(user_id)
        if play is not None and play.play_count > 1:
            return SeedChoice(play.item_id, SeedStrategy.MOST_PLAYED)

        play = self.behavior.most_recent_play(user_id)
        if play is not None:
            return SeedChoice(play.item_id, SeedStrategy.LAST_PLAYED)

        like = self.behavior.random_liked(user_id)
        if like is not None:
            return SeedChoice(like.item_id, SeedStrategy.RANDOM_LIKED)

        return SeedChoice(None, SeedStrategy.NONE)

    def recommend(self, user_id: UserId, limit: int) -> list[RecommendationResult]:
        logger.info(f"Smart recommendations for user {user_id}, limit {limit}")

        if user_id.is_guest:
            logger.info("Guest user, returning popular songs")
            return popular_fallback(self.catalog, limit)

        history = self.behavior.get_user(user_id)
        logger.debug(f"User stats: {len(history.likes)} likes, {len(history.plays)} plays")
        if history.is_cold_start:
            logger.info("New user detected, returning popular songs")
            return popular_fallback(self.catalog, limit)

        seed = self.find_seed(user_id)
        if not seed.found:
            logger.info("No suitable seed song found, using collaborative")
            return self.collaborative.recommend(user_id, limit)

        logger.info(f"Using seed song {seed.item_id} (strategy: {seed.strategy.value})")
        try:
            return self.hybrid.recommend(user_id, seed.item_id, limit)
        except ItemNotFound as exc:
            if exc.item_id != seed.item_id:
                raise
            logger.warning(f"Seed song {seed.item_id} no longer exists, falling back to collaborative")

        outcome = attempt(self.collaborative.recommend, user_id, limit)
        if outcome.ok:
            return outcome.value

        logger.warning(f"Collaborative fallback failed: {outcome.error}; returning popular songs")
        return popular_fallback(self.catalog, limit)
