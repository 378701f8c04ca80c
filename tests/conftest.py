import importlib
import random
import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from songrec.models import CatalogItem, Like, Play, UserId, parse_timestamp_naive  # noqa: E402
from songrec.stores import InMemoryBehaviorStore, InMemoryCatalogStore  # noqa: E402


def make_song(song_id: str, **overrides) -> CatalogItem:
    """A mid-range song; override only the attributes a test cares about."""
    values = dict(
        title=f"Song {song_id}",
        artist="Artist",
        album="Album",
        genre="pop",
        popularity=50,
        duration_ms=200000,
        danceability=0.5,
        energy=0.5,
        key=5,
        loudness=-8.0,
        mode=1,
        speechiness=0.05,
        acousticness=0.2,
        instrumentalness=0.0,
        liveness=0.1,
        valence=0.5,
        tempo=120.0,
        time_signature=4,
    )
    values.update(overrides)
    return CatalogItem(id=song_id, **values)


def make_like(user_id: UserId, item_id: str, created_at: str | None = None) -> Like:
    return Like(user_id, item_id, parse_timestamp_naive(created_at))


def make_play(user_id: UserId, item_id: str, count: int = 1, last_played: str | None = None) -> Play:
    return Play(user_id, item_id, count, parse_timestamp_naive(last_played))


@pytest.fixture
def catalog():
    return InMemoryCatalogStore()


@pytest.fixture
def behavior():
    return InMemoryBehaviorStore(rng=random.Random(7))


@pytest.fixture
def alice():
    return UserId("alice")


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("SONGREC_DB", str(db_path))
    import songrec.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("SONGREC_DB", str(db_path))

    import songrec.config as config
    import songrec.database as database

    importlib.reload(config)
    importlib.reload(database)

    yield database
    database.close_pool()


@pytest.fixture
def fresh_cli(fresh_db):
    """CLI module rebound to the temporary database."""
    import songrec.cli as cli

    importlib.reload(cli)
    return cli
