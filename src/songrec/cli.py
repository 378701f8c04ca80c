import argparse
import json
import logging
import atexit
import sys

from tqdm import tqdm

from .config import IMPORT_CHUNK_SIZE, RecommenderConfig
from .database import (
    init_db, get_db, close_pool, get_stats, load_top_genres,
    import_songs, import_users, import_likes, import_plays,
    SqliteCatalogStore, SqliteBehaviorStore,
)
from .engine import RecommendationEngine
from .errors import RecommendationError
from .models import CatalogItem, Like, Play, UserId, RecommendationResult, parse_timestamp_naive
from .profile import user_similarity

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)


def _batched(items: list, size: int = IMPORT_CHUNK_SIZE):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _parse_like(raw: dict) -> Like:
    return Like(
        user_id=UserId.parse(raw['user_id']),
        item_id=str(raw['song_id']),
        created_at=parse_timestamp_naive(raw.get('created_at')),
    )


def _parse_play(raw: dict) -> Play:
    return Play(
        user_id=UserId.parse(raw['user_id']),
        item_id=str(raw['song_id']),
        play_count=int(raw.get('play_count', 1)),
        last_played=parse_timestamp_naive(raw.get('last_played')),
    )


def build_engine() -> RecommendationEngine:
    return RecommendationEngine(SqliteCatalogStore(), SqliteBehaviorStore(), RecommenderConfig.from_env())


def cmd_init_db(args: argparse.Namespace) -> None:
    init_db()
    logger.info("Database initialised")


def cmd_import(args: argparse.Namespace) -> int | None:
    """Import songs, users, likes and plays from a JSON dump."""
    try:
        with open(args.file, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Unable to read import file {args.file}: {e}")
        return 1

    init_db()

    songs = [CatalogItem.from_dict(raw) for raw in data.get('songs', [])]
    likes = [_parse_like(raw) for raw in data.get('likes', [])]
    plays = [_parse_play(raw) for raw in data.get('plays', [])]
    users = [UserId.parse(raw) for raw in data.get('users', [])]

    with get_db() as conn:
        if users:
            import_users(conn, users)
            logger.info(f"Imported {len(users)} users")

        if songs:
            for chunk in tqdm(list(_batched(songs)), desc="Songs"):
                import_songs(conn, chunk)
            logger.info(f"Imported {len(songs)} songs")

        if likes:
            for chunk in tqdm(list(_batched(likes)), desc="Likes"):
                import_likes(conn, chunk)
            logger.info(f"Imported {len(likes)} likes")

        if plays:
            for chunk in tqdm(list(_batched(plays)), desc="Plays"):
                import_plays(conn, chunk)
            logger.info(f"Imported {len(plays)} plays")

    logger.info(f"Import completed from {args.file}")


def cmd_stats(args: argparse.Namespace) -> None:
    """Show database statistics."""
    stats = get_stats()

    logger.info("\nDatabase Statistics:")
    logger.info(f"  Songs: {stats['songs']}")
    logger.info(f"  Users: {stats['users']}")
    logger.info(f"  Likes: {stats['likes']}")
    logger.info(f"  Plays: {stats['plays']}")

    top_genres = load_top_genres()
    if top_genres:
        logger.info("\nTop genres:")
        for genre, count in top_genres:
            logger.info(f"  {genre}: {count} songs")


def _print_results(results: list[RecommendationResult], title: str, output_format: str) -> None:
    if output_format == 'json':
        logger.info(json.dumps([r.to_dict() for r in results], indent=2))
        return

    logger.info(f"\n{title}:")
    if not results:
        logger.info("  No recommendations")
    for r in results:
        logger.info(f"{r.rank}. {r.item.title} - {r.item.artist} [{r.item.genre}] Score: {r.display_score:.2f} ({r.kind.value})")
        if r.explanation:
            logger.info(f"   Why: {r.explanation}")


def cmd_recommend(args: argparse.Namespace) -> None:
    engine = build_engine()
    strategy = args.strategy
    user_id = UserId.parse(args.user)

    if strategy in ('content', 'hybrid') and not args.song:
        raise SystemExit(f"--song is required for the {strategy} strategy")
    if strategy == 'collaborative' and user_id.is_guest:
        raise SystemExit("--user is required for the collaborative strategy")

    if strategy == 'content':
        results = engine.content(args.song, args.limit)
        title = f"Songs similar to {args.song}"
    elif strategy == 'collaborative':
        results = engine.collaborative(user_id, args.limit)
        title = f"Recommendations for user {user_id}"
    elif strategy == 'hybrid':
        results = engine.hybrid(user_id, args.song, args.limit)
        title = f"Hybrid recommendations for user {user_id.value or 'guest'} from {args.song}"
    else:
        results = engine.smart(user_id, args.limit)
        title = f"Smart recommendations for user {user_id.value or 'guest'}"

    _print_results(results, title, args.format)


def cmd_user_similarity(args: argparse.Namespace) -> None:
    behavior = SqliteBehaviorStore()
    a = behavior.get_user(UserId.parse(args.user_a))
    b = behavior.get_user(UserId.parse(args.user_b))
    similarity = user_similarity(a, b)
    logger.info(f"Similarity between {a.user_id} and {b.user_id}: {similarity:.2f}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Song Recommender")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create the database schema")
    init_parser.set_defaults(func=cmd_init_db)

    import_parser = subparsers.add_parser("import", help="Import songs and listening history from JSON")
    import_parser.add_argument("file", help="Input JSON file path")
    import_parser.set_defaults(func=cmd_import)

    stats_parser = subparsers.add_parser("stats", help="Show database statistics")
    stats_parser.set_defaults(func=cmd_stats)

    rec_parser = subparsers.add_parser("recommend", help="Generate recommendations")
    rec_parser.add_argument("--strategy", choices=["content", "collaborative", "hybrid", "smart"],
                            default="smart", help="Recommendation strategy")
    rec_parser.add_argument("--user", help="User id (omit for a guest)")
    rec_parser.add_argument("--song", help="Seed song id (content and hybrid)")
    rec_parser.add_argument("--limit", type=int, help="Number of recommendations")
    rec_parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    rec_parser.set_defaults(func=cmd_recommend)

    sim_parser = subparsers.add_parser("user-similarity", help="Compare two users' listening taste")
    sim_parser.add_argument("user_a", help="First user id")
    sim_parser.add_argument("user_b", help="Second user id")
    sim_parser.set_defaults(func=cmd_user_similarity)

    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        status = args.func(args)
    except RecommendationError as e:
        logger.error(str(e))
        return 1
    return status or 0


if __name__ == "__main__":
    sys.exit(main())
