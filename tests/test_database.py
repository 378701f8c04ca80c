import sqlite3

import pytest

from songrec.errors import ItemNotFound, UpstreamStoreError, UserNotFound
from songrec.models import UserId

from conftest import make_like, make_play, make_song


@pytest.fixture
def populated(fresh_db):
    db = fresh_db
    db.init_db()
    alice = UserId("alice")
    with db.get_db() as conn:
        db.import_songs(conn, [
            make_song("a", genre="Rock", popularity=50),
            make_song("b", genre="rock", popularity=90),
            make_song("c", genre="jazz", popularity=90),
            make_song("d", genre="", popularity=10),
        ])
        db.import_users(conn, [UserId("newbie")])
        db.import_likes(conn, [
            make_like(alice, "a", "2024-01-01T00:00:00"),
            make_like(alice, "b", "2024-05-01T00:00:00+02:00"),
        ])
        db.import_plays(conn, [
            make_play(alice, "c", 3, "2024-02-01T00:00:00"),
            make_play(alice, "d", 1, "2024-06-01T00:00:00"),
        ])
    return db


def test_init_db_creates_expected_tables(fresh_db):
    db = fresh_db
    db.init_db()

    with db.get_db(read_only=True) as conn:
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }

    assert {"songs", "users", "user_likes", "user_plays"}.issubset(tables)


def test_init_db_is_idempotent(fresh_db):
    fresh_db.init_db()
    fresh_db.init_db()


def test_nested_transactions_commit_once(fresh_db):
    db = fresh_db
    db.init_db()

    with db.get_db() as conn:
        conn.execute("INSERT INTO users (user_id) VALUES (?)", ("u1",))
        with db.get_db() as inner:
            inner.execute("INSERT INTO user_likes (user_id, song_id) VALUES (?, ?)", ("u1", "a"))

    with db.get_db(read_only=True) as conn:
        assert conn.execute("SELECT COUNT(*) FROM user_likes").fetchone()[0] == 1


def test_failed_transaction_rolls_back(fresh_db):
    db = fresh_db
    db.init_db()

    with pytest.raises(RuntimeError):
        with db.get_db() as conn:
            conn.execute("INSERT INTO users (user_id) VALUES (?)", ("u1",))
            raise RuntimeError("abort")

    assert db.get_stats()["users"] == 0


def test_catalog_store_queries(populated):
    store = populated.SqliteCatalogStore()

    assert store.get_by_id("a").genre == "Rock"
    assert [i.id for i in store.get_all()] == ["a", "b", "c", "d"]
    # Equal popularity keeps insertion order
    assert [i.id for i in store.get_top_by_popularity(3)] == ["b", "c", "a"]
    assert store.get_top_by_popularity(0) == []
    assert [i.id for i in store.get_by_ids(["d", "missing", "a"])] == ["d", "a"]

    with pytest.raises(ItemNotFound):
        store.get_by_id("missing")


def test_behavior_store_history(populated):
    store = populated.SqliteBehaviorStore()
    alice = UserId("alice")

    history = store.get_user(alice)

    assert [like.item_id for like in history.likes] == ["a", "b"]
    assert history.likes[1].created_at.tzinfo is None
    assert {play.item_id: play.play_count for play in history.plays} == {"c": 3, "d": 1}
    assert store.get_user(UserId("newbie")).is_cold_start

    with pytest.raises(UserNotFound):
        store.get_user(UserId("ghost"))


def test_behavior_store_seed_queries(populated):
    store = populated.SqliteBehaviorStore()
    alice = UserId("alice")

    assert store.most_recent_like(alice).item_id == "b"
    assert store.most_played(alice).item_id == "c"
    assert store.most_recent_play(alice).item_id == "d"
    assert store.random_liked(alice).item_id in {"a", "b"}
    assert store.most_recent_like(UserId("newbie")) is None


def test_repeated_play_imports_accumulate(populated):
    db = populated
    alice = UserId("alice")
    with db.get_db() as conn:
        db.import_plays(conn, [make_play(alice, "c", 2, "2024-08-01T00:00:00")])

    play = db.SqliteBehaviorStore().most_played(alice)

    assert play.play_count == 5
    assert play.last_played.month == 8


def test_stats_and_top_genres(populated):
    stats = populated.get_stats()

    assert stats == {"songs": 4, "users": 2, "likes": 2, "plays": 2}
    assert populated.load_top_genres()[0] == ("rock", 2)


def test_driver_errors_become_upstream_errors(populated, monkeypatch):
    def broken_fetch(sql, params=()):
        raise sqlite3.DatabaseError("disk image is malformed")

    monkeypatch.setattr(populated, "_fetch", broken_fetch)

    with pytest.raises(UpstreamStoreError) as exc_info:
        populated.SqliteCatalogStore().get_all()
    assert isinstance(exc_info.value.__cause__, sqlite3.DatabaseError)


def test_locked_database_is_retried(populated, monkeypatch):
    calls = []

    class FlakyConnection:
        def __init__(self, real):
            self.real = real

        def execute(self, sql, params=()):
            calls.append(sql)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return self.real.execute(sql, params)

        def rollback(self):
            self.real.rollback()

    pool = populated._get_pool()
    real_get_connection = pool.get_connection
    monkeypatch.setattr(pool, "get_connection", lambda: FlakyConnection(real_get_connection()))
    monkeypatch.setattr("time.sleep", lambda _: None)

    assert populated.SqliteCatalogStore().get_by_id("a").id == "a"
    assert len(calls) == 2


def test_end_to_end_engine_over_sqlite(populated):
    from songrec.config import RecommenderConfig
    from songrec.engine import RecommendationEngine

    engine = RecommendationEngine(
        populated.SqliteCatalogStore(), populated.SqliteBehaviorStore(), RecommenderConfig()
    )

    # Every catalog song is already known, so only the seed-driven content side contributes
    recs = engine.smart(UserId("alice"), 5)
    assert recs
    assert all(r.kind.value == "hybrid" for r in recs)
    assert "b" not in [r.item.id for r in recs]

    assert [r.kind.value for r in engine.smart(UserId("newbie"), 2)] == ["popular_fallback"] * 2
