"""
Score write operations.

Every mutation commits in its own transaction and only then marks the
affected preview aggregate stale. Solo rows invalidate the solo previews,
rows belonging to a coop bundle invalidate the coop previews, and a player
ban touches both.
"""

from typing import Optional, Dict, Any

from sqlalchemy.exc import SQLAlchemyError

from boards.constants import BoardKind
from boards.database.models import Changelog
from boards.utils.board_exceptions import (
    ScoreValidationError, ScoreNotFoundError, MapNotFoundError, DatabaseError
)
from boards.utils.dedup import is_placeholder
from boards.utils.logger import setup_logger
from boards.utils.ranking import RankingUtility

logger = setup_logger(__name__)


def _kind_for_row(row: Changelog) -> BoardKind:
    return BoardKind.COOP if row.coop_id is not None else BoardKind.SP


class ScoreOperations:
    """
    Business logic for submitting and moderating scores.

    Args:
        database: Database instance that owns the transactions
        leaderboard_service: LeaderboardService whose caches are invalidated
    """

    def __init__(self, database, leaderboard_service):
        self.db = database
        self.leaderboard_service = leaderboard_service
        self.logger = logger

    async def submit_score(
        self,
        player_id: str,
        map_id: str,
        score: int,
        category_id: Optional[int] = None,
        note: Optional[str] = None,
        youtube_id: Optional[str] = None,
        demo_id: Optional[int] = None,
        submission: bool = False,
        verified: bool = True
    ) -> int:
        """
        Record a solo score and invalidate the solo previews.

        The row also records the player's previous best, the ranks before and
        after, and the improvement, measured against the board at submit time.

        Returns:
            int: The new changelog id

        Raises:
            ScoreValidationError: If the player id or score is invalid
            MapNotFoundError: If the map is not registered
            DatabaseError: If the insert fails
        """
        self._validate_player(player_id, score)
        self._validate_score(score)
        category_id = await self._resolve_category(map_id, category_id)
        details = await self.leaderboard_service.score_details(map_id, player_id, score, category_id)

        values = {
            'profile_number': player_id,
            'map_id': map_id,
            'score': score,
            'category_id': category_id,
            'note': note,
            'youtube_id': youtube_id,
            'demo_id': demo_id,
            'submission': submission,
            'verified': verified,
            'previous_id': details.previous_id,
            'pre_rank': details.pre_rank,
            'post_rank': details.post_rank,
            'score_delta': details.score_delta,
        }
        try:
            changelog_id = await self.db.insert_changelog(values)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to submit score for {player_id} on {map_id}: {e}")
            raise DatabaseError("score submission", str(e))

        self.logger.info(f"Score {score} submitted for {player_id} on {map_id} (changelog {changelog_id})")
        await self.leaderboard_service.invalidate(BoardKind.SP)
        return changelog_id

    async def submit_coop_score(
        self,
        player_id_a: str,
        player_id_b: str,
        map_id: str,
        score: int,
        category_id: Optional[int] = None,
        a_is_host: bool = True,
        note_a: Optional[str] = None,
        note_b: Optional[str] = None,
        youtube_id_a: Optional[str] = None,
        youtube_id_b: Optional[str] = None,
        demo_id_a: Optional[int] = None,
        demo_id_b: Optional[int] = None,
        submission: bool = False
    ) -> int:
        """
        Record a cooperative run (both halves plus the bundle) and invalidate
        the coop previews.

        Returns:
            int: The new coop bundle id
        """
        self._validate_player(player_id_a, score)
        self._validate_player(player_id_b, score)
        if player_id_a == player_id_b:
            raise ScoreValidationError(score, "A cooperative run needs two different players.")
        self._validate_score(score)
        category_id = await self._resolve_category(map_id, category_id)

        shared = {
            'map_id': map_id,
            'score': score,
            'category_id': category_id,
            'submission': submission,
        }
        values_a = dict(shared, profile_number=player_id_a, note=note_a, youtube_id=youtube_id_a, demo_id=demo_id_a)
        values_b = dict(shared, profile_number=player_id_b, note=note_b, youtube_id=youtube_id_b, demo_id=demo_id_b)
        try:
            bundle_id = await self.db.insert_coop_bundled(values_a, values_b, p1_is_host=a_is_host)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to submit coop score for {player_id_a}/{player_id_b} on {map_id}: {e}")
            raise DatabaseError("coop score submission", str(e))

        self.logger.info(f"Coop score {score} submitted for {player_id_a}/{player_id_b} on {map_id} (bundle {bundle_id})")
        await self.leaderboard_service.invalidate(BoardKind.COOP)
        return bundle_id

    async def update_score(self, changelog_id: int, **changes) -> Changelog:
        """
        Edit an existing changelog row.

        Raises:
            ScoreNotFoundError: If the row does not exist
            ScoreValidationError: If a new score is invalid or a field is not editable
        """
        if 'score' in changes:
            self._validate_score(changes['score'])
        return await self._apply_changes(changelog_id, changes, "score update")

    async def set_score_banned(self, changelog_id: int, banned: bool = True) -> Changelog:
        return await self._apply_changes(changelog_id, {'banned': banned}, "score ban")

    async def set_score_verified(self, changelog_id: int, verified: bool = True) -> Changelog:
        return await self._apply_changes(changelog_id, {'verified': verified}, "score verification")

    async def delete_score(self, changelog_id: int) -> Changelog:
        """Delete a changelog row and invalidate the board it belonged to."""
        try:
            row = await self.db.delete_changelog(changelog_id)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to delete changelog {changelog_id}: {e}")
            raise DatabaseError("score deletion", str(e))
        if row is None:
            raise ScoreNotFoundError(changelog_id)

        self.logger.info(f"Deleted changelog {changelog_id}")
        await self.leaderboard_service.invalidate(_kind_for_row(row))
        return row

    async def set_player_banned(self, player_id: str, banned: bool = True) -> bool:
        """
        Ban or unban a player. Affects both boards.

        Returns:
            bool: False if the player is unknown (nothing is invalidated)
        """
        try:
            found = await self.db.set_user_banned(player_id, banned)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to set banned={banned} for player {player_id}: {e}")
            raise DatabaseError("player ban", str(e))
        if not found:
            self.logger.warning(f"Cannot set banned={banned}: player {player_id} not found")
            return False

        self.logger.info(f"Player {player_id} banned={banned}")
        await self.leaderboard_service.invalidate_all()
        return True

    async def _apply_changes(self, changelog_id: int, changes: Dict[str, Any], operation: str) -> Changelog:
        try:
            row = await self.db.update_changelog(changelog_id, changes)
        except ValueError as e:
            raise ScoreValidationError(changes.get('score'), str(e))
        except SQLAlchemyError as e:
            self.logger.error(f"Failed {operation} on changelog {changelog_id}: {e}")
            raise DatabaseError(operation, str(e))
        if row is None:
            raise ScoreNotFoundError(changelog_id)

        self.logger.info(f"Applied {operation} to changelog {changelog_id}: {changes}")
        await self.leaderboard_service.invalidate(_kind_for_row(row))
        return row

    async def _resolve_category(self, map_id: str, category_id: Optional[int]) -> int:
        map_row = await self.db.get_map(map_id)
        if map_row is None:
            raise MapNotFoundError(map_id)
        return category_id if category_id is not None else map_row.default_cat_id

    @staticmethod
    def _validate_player(player_id: str, score):
        if is_placeholder(player_id):
            raise ScoreValidationError(score, "A real player id is required.")

    @staticmethod
    def _validate_score(score):
        if not RankingUtility.is_valid_score(score):
            raise ScoreValidationError(score, "Score must be a positive whole number.")
