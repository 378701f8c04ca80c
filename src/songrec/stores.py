"""
Read-only capability interfaces consumed by the engine, plus in-memory
implementations used by tests and small embedded catalogs.
"""
from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from typing import Iterable

from .errors import ItemNotFound, UserNotFound
from .models import CatalogItem, Like, Play, UserHistory, UserId

logger = logging.getLogger(__name__)


class CatalogStore(ABC):
    """Read-only access to the song catalog."""

    @abstractmethod
    def get_by_id(self, item_id: str) -> CatalogItem:
        """Raises ItemNotFound for an unknown id."""

    @abstractmethod
    def get_by_ids(self, item_ids: Iterable[str]) -> list[CatalogItem]:
        """Resolve ids in request order, silently skipping unknown ones."""

    @abstractmethod
    def get_top_by_popularity(self, n: int) -> list[CatalogItem]:
        ...

    @abstractmethod
    def get_all(self) -> list[CatalogItem]:
        """Every item, in stable catalog order."""


class UserBehaviorStore(ABC):
    """Read-only access to likes and plays, plus the seed-selection queries."""

    @abstractmethod
    def get_user(self, user_id: UserId) -> UserHistory:
        """Raises UserNotFound for an unknown user."""

    @abstractmethod
    def most_recent_like(self, user_id: UserId) -> Like | None:
        ...

    @abstractmethod
    def most_played(self, user_id: UserId) -> Play | None:
        ...

    @abstractmethod
    def most_recent_play(self, user_id: UserId) -> Play | None:
        ...

    @abstractmethod
    def random_liked(self, user_id: UserId) -> Like | None:
        ...


def _timestamp_key(value):
    # None sorts as the oldest timestamp
    return (value is not None, value)


class InMemoryCatalogStore(CatalogStore):
    """Catalog backed by a list; iteration order is insertion order."""

    def __init__(self, items: Iterable[CatalogItem] = ()):
        self._items: dict[str, CatalogItem] = {}
        for item in items:
            self._items[item.id] = item

    def add(self, item: CatalogItem) -> None:
        self._items[item.id] = item

    def remove(self, item_id: str) -> None:
        self._items.pop(item_id, None)

    def get_by_id(self, item_id: str) -> CatalogItem:
        try:
            return self._items[item_id]
        except KeyError:
            raise ItemNotFound(item_id) from None

    def get_by_ids(self, item_ids: Iterable[str]) -> list[CatalogItem]:
        """Resolve ids, silently skipping unknown ones (like an SQL IN query)."""
        return [self._items[i] for i in dict.fromkeys(item_ids) if i in self._items]

    def get_top_by_popularity(self, n: int) -> list[CatalogItem]:
        if n <= 0:
            return []
        return sorted(self._items.values(), key=lambda item: -item.popularity)[:n]

    def get_all(self) -> list[CatalogItem]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)


class InMemoryBehaviorStore(UserBehaviorStore):
    """Likes and plays keyed by user; users must be registered to resolve."""

    def __init__(self, rng: random.Random | None = None):
        self._likes: dict[UserId, list[Like]] = {}
        self._plays: dict[UserId, list[Play]] = {}
        self._rng = rng or random.Random()

    def add_user(self, user_id: UserId) -> None:
        self._likes.setdefault(user_id, [])
        self._plays.setdefault(user_id, [])

    def add_like(self, like: Like) -> None:
        self.add_user(like.user_id)
        self._likes[like.user_id].append(like)

    def add_play(self, play: Play) -> None:
        self.add_user(play.user_id)
        self._plays[play.user_id].append(play)

    def get_user(self, user_id: UserId) -> UserHistory:
        if user_id not in self._likes:
            raise UserNotFound(user_id)
        return UserHistory(
            user_id=user_id,
            likes=tuple(self._likes[user_id]),
            plays=tuple(self._plays[user_id]),
        )

    def most_recent_like(self, user_id: UserId) -> Like | None:
        likes = self._likes.get(user_id) or []
        if not likes:
            return None
        return max(likes, key=lambda like: _timestamp_key(like.created_at))

    def most_played(self, user_id: UserId) -> Play | None:
        plays = self._plays.get(user_id) or []
        if not plays:
            return None
        return max(plays, key=lambda play: (play.play_count, _timestamp_key(play.last_played)))

    def most_recent_play(self, user_id: UserId) -> Play | None:
        plays = self._plays.get(user_id) or []
        if not plays:
            return None
        return max(plays, key=lambda play: _timestamp_key(play.last_played))

    def random_liked(self, user_id: UserId) -> Like | None:
        likes = self._likes.get(user_id) or []
        if not likes:
            return None
        return self._rng.choice(likes)
