"""
Raw result source for solo and cooperative boards.

Reads score rows from the relational store, already filtered to verified,
unbanned runs by unbanned users and ordered by score ascending. Deduplication
and ranking happen above this layer.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased

from boards.services.base import BaseService
from boards.database.models import Chapter, Map, User, Changelog, CoopBundled
from boards.data_models.leaderboard import ScoreEntry, PairedScoreEntry, MapInfo, PbHistory
from boards.utils.board_exceptions import UpstreamFetchError

logger = logging.getLogger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ResultSourceService(BaseService):
    """Store-backed source of ordered candidate rows and map registry lookups."""

    async def get_maps(self, game_id: int = 1, is_coop: bool = False) -> List[MapInfo]:
        """Public maps of a game, solo or cooperative, in registry order."""
        query = (
            select(Map.steam_id, Map.name, Map.default_cat_id, Chapter.is_multiplayer)
            .join(Chapter, Map.chapter_id == Chapter.id)
            .where(
                Chapter.game_id == game_id,
                Chapter.is_multiplayer == is_coop,
                Map.is_public == True
            )
            .order_by(Map.id)
        )
        try:
            async with self.get_session() as session:
                result = await session.execute(query)
                return [
                    MapInfo(
                        map_id=row.steam_id,
                        name=row.name,
                        default_cat_id=row.default_cat_id,
                        is_coop=bool(row.is_multiplayer)
                    )
                    for row in result
                ]
        except SQLAlchemyError as e:
            logger.error(f"Failed to load maps for game {game_id} (coop={is_coop}): {e}")
            raise UpstreamFetchError("map listing", str(e))

    async def get_default_category(self, map_id: str) -> Optional[int]:
        """Default category of a map, or None when the map is unknown."""
        try:
            async with self.get_session() as session:
                return await session.scalar(
                    select(Map.default_cat_id).where(Map.steam_id == map_id)
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to load default category for map {map_id}: {e}")
            raise UpstreamFetchError("default category lookup", str(e))

    async def fetch_ranked_candidates(
        self,
        map_id: str,
        category_id: int,
        game_id: int = 1,
        limit: Optional[int] = None
    ) -> List[ScoreEntry]:
        """Best-first solo rows for one map/category/game. May repeat a player."""
        user_name = func.coalesce(User.board_name, User.steam_name).label('user_name')
        query = (
            select(Changelog, user_name, User.avatar)
            .join(User, User.profile_number == Changelog.profile_number)
            .join(Map, Map.steam_id == Changelog.map_id)
            .join(Chapter, Chapter.id == Map.chapter_id)
            .where(
                Changelog.map_id == map_id,
                Changelog.category_id == category_id,
                Changelog.coop_id.is_(None),
                Changelog.banned == False,
                Changelog.verified == True,
                User.banned == False,
                Chapter.game_id == game_id
            )
            .order_by(Changelog.score.asc(), Changelog.timestamp.asc(), Changelog.id.asc())
        )
        if limit is not None:
            query = query.limit(limit)

        try:
            async with self.get_session() as session:
                result = await session.execute(query)
                return [
                    ScoreEntry(
                        player_id=row.Changelog.profile_number,
                        score=row.Changelog.score,
                        map_id=row.Changelog.map_id,
                        category_id=row.Changelog.category_id,
                        timestamp=_iso(row.Changelog.timestamp),
                        note=row.Changelog.note,
                        youtube_id=row.Changelog.youtube_id,
                        demo_id=row.Changelog.demo_id,
                        submission=bool(row.Changelog.submission),
                        user_name=row.user_name,
                        avatar=row.avatar,
                        changelog_id=row.Changelog.id
                    )
                    for row in result
                ]
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch solo results for map {map_id}, category {category_id}: {e}")
            raise UpstreamFetchError("solo result fetch", str(e))

    async def fetch_coop_candidates(
        self,
        map_id: str,
        category_id: int,
        game_id: int = 1,
        limit: Optional[int] = None
    ) -> List[PairedScoreEntry]:
        """Best-first cooperative rows for one map/category/game. Both halves must qualify."""
        c1 = aliased(Changelog)
        c2 = aliased(Changelog)
        u1 = aliased(User)
        u2 = aliased(User)
        query = (
            select(
                CoopBundled.p1_is_host,
                c1.profile_number.label('profile_number1'),
                c2.profile_number.label('profile_number2'),
                c1.score,
                c1.timestamp,
                c1.category_id,
                c1.note.label('note1'),
                c2.note.label('note2'),
                c1.youtube_id.label('youtube_id1'),
                c2.youtube_id.label('youtube_id2'),
                c1.demo_id.label('demo_id1'),
                c2.demo_id.label('demo_id2'),
                c1.submission.label('submission1'),
                c2.submission.label('submission2'),
                func.coalesce(u1.board_name, u1.steam_name).label('user_name1'),
                func.coalesce(u2.board_name, u2.steam_name).label('user_name2'),
                u1.avatar.label('avatar1'),
                u2.avatar.label('avatar2'),
            )
            .select_from(CoopBundled)
            .join(c1, c1.id == CoopBundled.cl_id1)
            .join(c2, c2.id == CoopBundled.cl_id2)
            .join(u1, u1.profile_number == CoopBundled.p_id1)
            .join(u2, u2.profile_number == CoopBundled.p_id2)
            .join(Map, Map.steam_id == c1.map_id)
            .join(Chapter, Chapter.id == Map.chapter_id)
            .where(
                c1.map_id == map_id,
                c1.category_id == category_id,
                c1.banned == False,
                c2.banned == False,
                c1.verified == True,
                c2.verified == True,
                u1.banned == False,
                u2.banned == False,
                Chapter.game_id == game_id
            )
            .order_by(c1.score.asc(), c1.timestamp.asc(), CoopBundled.id.asc())
        )
        if limit is not None:
            query = query.limit(limit)

        try:
            async with self.get_session() as session:
                result = await session.execute(query)
                return [
                    PairedScoreEntry(
                        player_id_a=row.profile_number1,
                        player_id_b=row.profile_number2,
                        score=row.score,
                        map_id=map_id,
                        category_id=row.category_id,
                        a_is_host=bool(row.p1_is_host),
                        timestamp=_iso(row.timestamp),
                        user_name_a=row.user_name1,
                        user_name_b=row.user_name2,
                        avatar_a=row.avatar1,
                        avatar_b=row.avatar2,
                        note_a=row.note1,
                        note_b=row.note2,
                        youtube_id_a=row.youtube_id1,
                        youtube_id_b=row.youtube_id2,
                        demo_id_a=row.demo_id1,
                        demo_id_b=row.demo_id2,
                        submission_a=bool(row.submission1),
                        submission_b=bool(row.submission2)
                    )
                    for row in result
                ]
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch coop results for map {map_id}, category {category_id}: {e}")
            raise UpstreamFetchError("coop result fetch", str(e))

    async def get_banned_scores(self, map_id: str, category_id: int) -> List[Tuple[str, int]]:
        """(player_id, score) for every banned solo run on a map/category."""
        query = (
            select(Changelog.profile_number, Changelog.score)
            .where(
                Changelog.map_id == map_id,
                Changelog.category_id == category_id,
                Changelog.coop_id.is_(None),
                Changelog.banned == True
            )
            .order_by(Changelog.score.asc())
        )
        try:
            async with self.get_session() as session:
                result = await session.execute(query)
                return [(row.profile_number, row.score) for row in result]
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch banned scores for map {map_id}: {e}")
            raise UpstreamFetchError("banned score listing", str(e))

    async def is_score_banned(
        self,
        map_id: str,
        player_id: str,
        score: int,
        category_id: int,
        game_id: int = 1
    ) -> bool:
        """True when a banned run with this exact player/score exists."""
        query = (
            select(func.count(Changelog.id))
            .join(Map, Map.steam_id == Changelog.map_id)
            .join(Chapter, Chapter.id == Map.chapter_id)
            .where(
                Changelog.map_id == map_id,
                Changelog.profile_number == player_id,
                Changelog.score == score,
                Changelog.category_id == category_id,
                Changelog.banned == True,
                Chapter.game_id == game_id
            )
        )
        try:
            async with self.get_session() as session:
                return (await session.scalar(query) or 0) > 0
        except SQLAlchemyError as e:
            logger.error(f"Failed to check banned score for {player_id} on map {map_id}: {e}")
            raise UpstreamFetchError("banned score lookup", str(e))

    async def get_coop_banned_scores(self, map_id: str, category_id: int) -> List[Tuple[str, str, int]]:
        """(player_id_a, player_id_b, score) for coop runs where either half is banned or unverified."""
        c1 = aliased(Changelog)
        c2 = aliased(Changelog)
        query = (
            select(
                c1.profile_number.label('profile_number1'),
                c2.profile_number.label('profile_number2'),
                c1.score
            )
            .select_from(CoopBundled)
            .join(c1, c1.id == CoopBundled.cl_id1)
            .join(c2, c2.id == CoopBundled.cl_id2)
            .where(
                c1.map_id == map_id,
                c1.category_id == category_id,
                or_(
                    c1.banned == True,
                    c1.verified == False,
                    c2.banned == True,
                    c2.verified == False
                )
            )
            .order_by(c1.score.asc(), CoopBundled.id.asc())
        )
        try:
            async with self.get_session() as session:
                result = await session.execute(query)
                return [(row.profile_number1, row.profile_number2, row.score) for row in result]
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch banned coop scores for map {map_id}: {e}")
            raise UpstreamFetchError("banned coop score listing", str(e))

    async def get_pb_history(
        self,
        map_id: str,
        player_id: str,
        category_id: int,
        game_id: int = 1
    ) -> Optional[PbHistory]:
        """
        All solo runs of one player on a map/category, newest first.

        Banned and unverified runs are included and flagged. Returns None
        when the player is unknown.
        """
        query = (
            select(Changelog)
            .join(Map, Map.steam_id == Changelog.map_id)
            .join(Chapter, Chapter.id == Map.chapter_id)
            .where(
                Changelog.profile_number == player_id,
                Changelog.map_id == map_id,
                Changelog.category_id == category_id,
                Changelog.coop_id.is_(None),
                Chapter.game_id == game_id
            )
            .order_by(Changelog.timestamp.desc(), Changelog.id.desc())
        )
        try:
            async with self.get_session() as session:
                user = await session.get(User, player_id)
                if user is None:
                    return None
                rows = (await session.execute(query)).scalars().all()
                entries = [
                    ScoreEntry(
                        player_id=row.profile_number,
                        score=row.score,
                        map_id=row.map_id,
                        category_id=row.category_id,
                        timestamp=_iso(row.timestamp),
                        note=row.note,
                        youtube_id=row.youtube_id,
                        demo_id=row.demo_id,
                        submission=bool(row.submission),
                        user_name=user.user_name,
                        avatar=user.avatar,
                        changelog_id=row.id,
                        banned=bool(row.banned),
                        verified=bool(row.verified)
                    )
                    for row in rows
                ]
                return PbHistory(
                    player_id=player_id,
                    user_name=user.user_name,
                    avatar=user.avatar,
                    entries=entries
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch PB history for {player_id} on map {map_id}: {e}")
            raise UpstreamFetchError("PB history", str(e))
