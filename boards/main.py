"""
Command line entry point for the results board.

    python -m boards.main init-db
    python -m boards.main previews sp
    python -m boards.main page 47458 --cat-id 1
    python -m boards.main page 52642 --coop
    python -m boards.main submit 47458 76561198000000000 2550
    python -m boards.main invalidate coop

Output is JSON on stdout; logs go to stdout and LOG_DIR.
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from boards.config import Config
from boards.database.database import Database
from boards.operations.score_operations import ScoreOperations
from boards.services.cache_coordinator import CacheCoordinator
from boards.services.cache_persistence import CachePersistence, create_cache_persistence
from boards.services.leaderboard import LeaderboardService
from boards.services.preview_aggregator import PreviewAggregator
from boards.services.result_source import ResultSourceService
from boards.utils.board_exceptions import BoardException
from boards.utils.logger import setup_logger


class BoardApp:
    """Wires the store, cache persistence and services together."""

    def __init__(self):
        self.db: Optional[Database] = None
        self.persistence: Optional[CachePersistence] = None
        self.leaderboard: Optional[LeaderboardService] = None
        self.score_operations: Optional[ScoreOperations] = None
        self.logger = setup_logger(__name__)

    async def setup(self):
        """Initialize database, cache backend and services"""
        self.logger.info("Setting up results board...")
        Config.validate()

        self.db = Database()
        await self.db.initialize()

        self.persistence = await create_cache_persistence()
        result_source = ResultSourceService(self.db.session_factory)
        coordinator = CacheCoordinator(self.persistence, adopt_persisted=Config.CACHE_ADOPT_PERSISTED)
        self.leaderboard = LeaderboardService(
            result_source,
            coordinator,
            aggregator=PreviewAggregator(result_source)
        )
        self.score_operations = ScoreOperations(self.db, self.leaderboard)
        self.logger.info("Results board setup complete")

    async def close(self):
        """Drain cache work and release connections"""
        if self.leaderboard:
            await self.leaderboard.cleanup()
        if self.persistence:
            await self.persistence.close()
        if self.db:
            await self.db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='boards', description='Results board ranking and preview cache')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('init-db', help='Create tables in DATABASE_URL')

    previews = subparsers.add_parser('previews', help='Print the board-wide preview aggregate')
    previews.add_argument('kind', choices=['sp', 'coop'])

    page = subparsers.add_parser('page', help='Print the full ranked board for one map')
    page.add_argument('map_id')
    page.add_argument('--cat-id', type=int, default=None, help="Category (defaults to the map's default)")
    page.add_argument('--game-id', type=int, default=None)
    page.add_argument('--coop', action='store_true', help='Show the cooperative board')

    submit = subparsers.add_parser('submit', help='Record a solo score')
    submit.add_argument('map_id')
    submit.add_argument('player_id')
    submit.add_argument('score', type=int)
    submit.add_argument('--cat-id', type=int, default=None)
    submit.add_argument('--note', default=None)

    invalidate = subparsers.add_parser('invalidate', help='Mark a preview aggregate stale')
    invalidate.add_argument('kind', choices=['sp', 'coop'])

    return parser


async def run(args: argparse.Namespace) -> int:
    app = BoardApp()
    try:
        await app.setup()

        if args.command == 'init-db':
            output = {'database': Config.DATABASE_URL, 'initialized': True}
        elif args.command == 'previews':
            records = await app.leaderboard.get_preview(args.kind)
            output = [record.to_dict() for record in records]
        elif args.command == 'page':
            if args.coop:
                ranked = await app.leaderboard.get_coop_ranked_page(args.map_id, args.cat_id, args.game_id)
            else:
                ranked = await app.leaderboard.get_ranked_page(args.map_id, args.cat_id, args.game_id)
            output = [entry.to_dict() for entry in ranked]
        elif args.command == 'submit':
            changelog_id = await app.score_operations.submit_score(
                args.player_id, args.map_id, args.score, category_id=args.cat_id, note=args.note
            )
            output = {'changelog_id': changelog_id}
        elif args.command == 'invalidate':
            await app.leaderboard.invalidate(args.kind)
            output = {'invalidated': args.kind}

        print(json.dumps(output, indent=2))
        return 0

    except BoardException as e:
        app.logger.error(f"{args.command} failed: {e}")
        print(json.dumps({'error': e.user_message}), file=sys.stderr)
        return 1

    finally:
        await app.close()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
