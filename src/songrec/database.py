import sqlite3
import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterable

from .config import DB_PATH, IMPORT_CHUNK_SIZE, STORE_MAX_RETRIES, STORE_RETRY_DELAY
from .errors import ItemNotFound, UpstreamStoreError, UserNotFound
from .models import CatalogItem, Like, Play, UserHistory, UserId, parse_timestamp_naive
from .stores import CatalogStore, UserBehaviorStore
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)

SONG_COLUMNS = (
    "id", "title", "artist", "album", "genre", "popularity", "duration_ms",
    "danceability", "energy", "key", "loudness", "mode", "speechiness",
    "acousticness", "instrumentalness", "liveness", "valence", "tempo",
    "time_signature",
)


class ConnectionPool:
    """
    Thread-safe SQLite connection pool.

    One connection per thread (SQLite threading requirement), periodic
    health checks via SELECT 1, and nested transaction depth tracking so
    only the outermost ``get_db`` block commits.
    """

    def __init__(self, db_path, health_check_interval: int = 300):
        self._db_path = db_path
        self._health_check_interval = health_check_interval

        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._last_health_check: dict[int, float] = {}
        self._transaction_depth: dict[int, int] = {}

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")

        return conn

    def _health_check(self, conn: sqlite3.Connection) -> bool:
        try:
            conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection for the current thread, creating if necessary."""
        thread_id = threading.get_ident()
        now = time.time()

        with self._lock:
            conn = self._connections.get(thread_id)

            if conn is not None:
                last_check = self._last_health_check.get(thread_id, 0)
                if now - last_check > self._health_check_interval:
                    if self._health_check(conn):
                        self._last_health_check[thread_id] = now
                    else:
                        logger.warning(f"Connection for thread {thread_id} failed health check, replacing")
                        conn.close()
                        conn = None

            if conn is None:
                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._last_health_check[thread_id] = now
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")

            return conn

    def get_transaction_depth(self) -> int:
        return self._transaction_depth.get(threading.get_ident(), 0)

    def increment_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = self._transaction_depth.get(thread_id, 0) + 1

    def decrement_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 1)
            self._transaction_depth[thread_id] = max(0, depth - 1)

    def close_all(self):
        """Close all connections (call on application shutdown)."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")

            self._connections.clear()
            self._last_health_check.clear()
            self._transaction_depth.clear()
            logger.debug("Connection pool closed")


# Global pool instance
_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    """Get or create the global connection pool."""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Get database connection with proper transaction handling.

    Args:
        read_only: If True, skip commit on exit

    Only the outermost context commits or rolls back; inner contexts are
    no-ops for transaction control.
    """
    pool = _get_pool()
    conn = pool.get_connection()

    is_outermost = pool.get_transaction_depth() == 0
    pool.increment_transaction_depth()

    try:
        yield conn

        if is_outermost and not read_only:
            conn.commit()

    except Exception:
        if is_outermost:
            conn.rollback()
        raise

    finally:
        pool.decrement_transaction_depth()


def close_pool():
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def init_db() -> None:
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS songs (
                id TEXT PRIMARY KEY,
                title TEXT,
                artist TEXT,
                album TEXT,
                genre TEXT,
                popularity INTEGER DEFAULT 0,
                duration_ms INTEGER DEFAULT 0,
                danceability REAL DEFAULT 0,
                energy REAL DEFAULT 0,
                key INTEGER DEFAULT 0,
                loudness REAL DEFAULT 0,
                mode INTEGER DEFAULT 0,
                speechiness REAL DEFAULT 0,
                acousticness REAL DEFAULT 0,
                instrumentalness REAL DEFAULT 0,
                liveness REAL DEFAULT 0,
                valence REAL DEFAULT 0,
                tempo REAL DEFAULT 0,
                time_signature INTEGER DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY
            );

            CREATE TABLE IF NOT EXISTS user_likes (
                user_id TEXT,
                song_id TEXT,
                created_at TEXT,    -- ISO timestamp
                PRIMARY KEY (user_id, song_id)
            );

            CREATE TABLE IF NOT EXISTS user_plays (
                user_id TEXT,
                song_id TEXT,
                play_count INTEGER DEFAULT 1,
                last_played TEXT,   -- ISO timestamp
                PRIMARY KEY (user_id, song_id)
            );

            CREATE INDEX IF NOT EXISTS idx_songs_popularity ON songs(popularity);
            CREATE INDEX IF NOT EXISTS idx_likes_user ON user_likes(user_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_plays_user ON user_plays(user_id, play_count);
        """)
    logger.debug(f"Database initialised at {DB_PATH}")


def _is_locked(exc: Exception) -> bool:
    return isinstance(exc, sqlite3.OperationalError) and "locked" in str(exc).lower()


@retry_with_backoff(
    max_retries=STORE_MAX_RETRIES,
    initial_delay=STORE_RETRY_DELAY,
    exceptions=(sqlite3.OperationalError,),
    should_retry=_is_locked,
)
def _fetch(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_db(read_only=True) as conn:
        return conn.execute(sql, params).fetchall()


def _query(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    """Run a read query, surfacing driver failures as UpstreamStoreError."""
    try:
        return _fetch(sql, params)
    except sqlite3.Error as e:
        raise UpstreamStoreError(f"Query failed: {e}") from e


def _row_to_item(row: sqlite3.Row) -> CatalogItem:
    return CatalogItem.from_dict(dict(row))


def _chunks(values: list, size: int):
    for i in range(0, len(values), size):
        yield values[i:i + size]


class SqliteCatalogStore(CatalogStore):
    """CatalogStore over the ``songs`` table; catalog order is insertion order."""

    def get_by_id(self, item_id: str) -> CatalogItem:
        rows = _query("SELECT * FROM songs WHERE id = ?", (item_id,))
        if not rows:
            raise ItemNotFound(item_id)
        return _row_to_item(rows[0])

    def get_by_ids(self, item_ids: Iterable[str]) -> list[CatalogItem]:
        ids = list(dict.fromkeys(item_ids))
        found: dict[str, CatalogItem] = {}
        for chunk in _chunks(ids, IMPORT_CHUNK_SIZE):
            placeholders = ",".join("?" * len(chunk))
            for row in _query(f"SELECT * FROM songs WHERE id IN ({placeholders})", tuple(chunk)):
                found[row["id"]] = _row_to_item(row)
        return [found[i] for i in ids if i in found]

    def get_top_by_popularity(self, n: int) -> list[CatalogItem]:
        if n <= 0:
            return []
        rows = _query("SELECT * FROM songs ORDER BY popularity DESC, rowid LIMIT ?", (n,))
        return [_row_to_item(row) for row in rows]

    def get_all(self) -> list[CatalogItem]:
        return [_row_to_item(row) for row in _query("SELECT * FROM songs ORDER BY rowid")]


def _row_to_like(user_id: UserId, row: sqlite3.Row) -> Like:
    return Like(
        user_id=user_id,
        item_id=row["song_id"],
        created_at=parse_timestamp_naive(row["created_at"]),
    )


def _row_to_play(user_id: UserId, row: sqlite3.Row) -> Play:
    return Play(
        user_id=user_id,
        item_id=row["song_id"],
        play_count=row["play_count"],
        last_played=parse_timestamp_naive(row["last_played"]),
    )


class SqliteBehaviorStore(UserBehaviorStore):
    """
    UserBehaviorStore over ``user_likes`` / ``user_plays``.

    SQLite sorts NULL timestamps first ascending, so they rank as the
    oldest entries in the DESC seed queries.
    """

    def get_user(self, user_id: UserId) -> UserHistory:
        if not _query("SELECT 1 FROM users WHERE user_id = ?", (user_id.value,)):
            raise UserNotFound(user_id)

        likes = _query(
            "SELECT song_id, created_at FROM user_likes WHERE user_id = ? ORDER BY rowid",
            (user_id.value,),
        )
        plays = _query(
            "SELECT song_id, play_count, last_played FROM user_plays WHERE user_id = ? ORDER BY rowid",
            (user_id.value,),
        )
        return UserHistory(
            user_id=user_id,
            likes=tuple(_row_to_like(user_id, row) for row in likes),
            plays=tuple(_row_to_play(user_id, row) for row in plays),
        )

    def _first_like(self, user_id: UserId, order_by: str) -> Like | None:
        rows = _query(
            f"SELECT song_id, created_at FROM user_likes WHERE user_id = ? ORDER BY {order_by} LIMIT 1",
            (user_id.value,),
        )
        return _row_to_like(user_id, rows[0]) if rows else None

    def _first_play(self, user_id: UserId, order_by: str) -> Play | None:
        rows = _query(
            f"SELECT song_id, play_count, last_played FROM user_plays WHERE user_id = ? ORDER BY {order_by} LIMIT 1",
            (user_id.value,),
        )
        return _row_to_play(user_id, rows[0]) if rows else None

    def most_recent_like(self, user_id: UserId) -> Like | None:
        return self._first_like(user_id, "created_at DESC")

    def most_played(self, user_id: UserId) -> Play | None:
        return self._first_play(user_id, "play_count DESC, last_played DESC")

    def most_recent_play(self, user_id: UserId) -> Play | None:
        return self._first_play(user_id, "last_played DESC")

    def random_liked(self, user_id: UserId) -> Like | None:
        return self._first_like(user_id, "RANDOM()")


def _timestamp_text(value) -> str | None:
    ts = parse_timestamp_naive(value)
    return ts.isoformat() if ts else None


def import_songs(conn: sqlite3.Connection, items: list[CatalogItem]) -> int:
    """Upsert catalog items. Caller owns the transaction."""
    placeholders = ",".join("?" * len(SONG_COLUMNS))
    conn.executemany(
        f"INSERT OR REPLACE INTO songs ({', '.join(SONG_COLUMNS)}) VALUES ({placeholders})",
        [tuple(getattr(item, col) for col in SONG_COLUMNS) for item in items],
    )
    return len(items)


def import_users(conn: sqlite3.Connection, user_ids: Iterable[UserId]) -> None:
    conn.executemany(
        "INSERT OR IGNORE INTO users (user_id) VALUES (?)",
        [(uid.value,) for uid in user_ids],
    )


def import_likes(conn: sqlite3.Connection, likes: list[Like]) -> int:
    import_users(conn, {like.user_id for like in likes})
    conn.executemany(
        "INSERT OR REPLACE INTO user_likes (user_id, song_id, created_at) VALUES (?, ?, ?)",
        [(like.user_id.value, like.item_id, _timestamp_text(like.created_at)) for like in likes],
    )
    return len(likes)


def import_plays(conn: sqlite3.Connection, plays: list[Play]) -> int:
    import_users(conn, {play.user_id for play in plays})
    conn.executemany(
        """INSERT INTO user_plays (user_id, song_id, play_count, last_played) VALUES (?, ?, ?, ?)
           ON CONFLICT(user_id, song_id) DO UPDATE SET
               play_count = play_count + excluded.play_count,
               last_played = MAX(COALESCE(last_played, ''), COALESCE(excluded.last_played, ''))""",
        [(p.user_id.value, p.item_id, p.play_count, _timestamp_text(p.last_played)) for p in plays],
    )
    return len(plays)


def get_stats() -> dict[str, int]:
    with get_db(read_only=True) as conn:
        return {
            'songs': conn.execute("SELECT COUNT(*) FROM songs").fetchone()[0],
            'users': conn.execute("SELECT COUNT(*) FROM users").fetchone()[0],
            'likes': conn.execute("SELECT COUNT(*) FROM user_likes").fetchone()[0],
            'plays': conn.execute("SELECT COUNT(*) FROM user_plays").fetchone()[0],
        }


def load_top_genres(limit: int = 5) -> list[tuple[str, int]]:
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT LOWER(genre) AS genre, COUNT(*) AS n
            FROM songs
            WHERE genre IS NOT NULL AND genre != ''
            GROUP BY LOWER(genre)
            ORDER BY n DESC, genre
            LIMIT ?
        """, (limit,)).fetchall()
    return [(row["genre"], row["n"]) for row in rows]
