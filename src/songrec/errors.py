"""Error kinds surfaced by the recommendation engine and its stores."""


class RecommendationError(Exception):
    """Base class for failures a caller is expected to handle."""


class ItemNotFound(RecommendationError):
    """A seed or candidate item id did not resolve in the catalog (404-equivalent)."""

    def __init__(self, item_id: str):
        super().__init__(f"Song not found: {item_id}")
        self.item_id = item_id


class UserNotFound(RecommendationError):
    """A user id did not resolve in the behavior store (404-equivalent)."""

    def __init__(self, user_id):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class UpstreamStoreError(RecommendationError):
    """Generic store failure (500-equivalent)."""
