from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any


def parse_timestamp_naive(value: str | datetime | None) -> datetime | None:
    """
    Parse an ISO timestamp (or pass a datetime through) as a naive datetime.

    Mixing naive and aware datetimes breaks ordering comparisons, so
    timezone info is always dropped.
    """
    if value is None or value == "":
        return None
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


@dataclass(frozen=True)
class CatalogItem:
    """A song with its categorical attributes and audio descriptors."""

    id: str
    title: str = ""
    artist: str = ""
    album: str = ""
    genre: str = ""
    popularity: int = 0
    duration_ms: int = 0
    danceability: float = 0.0
    energy: float = 0.0
    key: int = 0
    loudness: float = 0.0
    mode: int = 0
    speechiness: float = 0.0
    acousticness: float = 0.0
    instrumentalness: float = 0.0
    liveness: float = 0.0
    valence: float = 0.0
    tempo: float = 0.0
    time_signature: int = 0

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CatalogItem":
        """Build an item from a JSON/DB row, ignoring unknown keys and NULLs."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in payload.items() if k in known and v is not None}
        values['id'] = str(payload['id'])
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class UserId:
    """
    Caller identity, constructed once at the authentication boundary.

    Token claims may carry numeric or string ids; ``parse`` normalizes both
    so the engine never re-interprets identity representations.
    """

    value: str

    @classmethod
    def parse(cls, raw: Any) -> "UserId":
        if raw is None:
            return cls.GUEST
        if isinstance(raw, UserId):
            return raw
        if isinstance(raw, bool):
            raise ValueError(f"Invalid user id: {raw!r}")
        if isinstance(raw, float):
            if not raw.is_integer():
                raise ValueError(f"Invalid user id: {raw!r}")
            raw = int(raw)
        return cls(str(raw).strip())

    @property
    def is_guest(self) -> bool:
        return self.value in ("", "0")

    def __str__(self) -> str:
        return self.value


UserId.GUEST = UserId("")


@dataclass(frozen=True)
class Like:
    user_id: UserId
    item_id: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class Play:
    user_id: UserId
    item_id: str
    play_count: int = 1
    last_played: datetime | None = None


@dataclass(frozen=True)
class UserHistory:
    """Read-only snapshot of a user's likes and plays."""

    user_id: UserId
    likes: tuple[Like, ...] = ()
    plays: tuple[Play, ...] = ()

    @property
    def is_cold_start(self) -> bool:
        return not self.likes and not self.plays

    def known_item_ids(self) -> set[str]:
        """Items the user already liked or played."""
        return {like.item_id for like in self.likes} | {play.item_id for play in self.plays}


class ScoreKind(str, Enum):
    CONTENT = "content"
    COLLABORATIVE = "collaborative"
    HYBRID = "hybrid"
    POPULAR_FALLBACK = "popular_fallback"


@dataclass
class RecommendationResult:
    item: CatalogItem
    score: float
    kind: ScoreKind
    explanation: str | None = None
    rank: int = 0

    @property
    def item_id(self) -> str:
        return self.item.id

    @property
    def display_score(self) -> float:
        """Score rounded to two decimals for presentation."""
        return round(self.score, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "song": self.item.to_dict(),
            "score": self.display_score,
            "score_type": self.kind.value,
            "explanation": self.explanation,
        }


def assign_ranks(results: list[RecommendationResult]) -> list[RecommendationResult]:
    """Number results 1..n in their current order."""
    for i, result in enumerate(results, 1):
        result.rank = i
    return results
